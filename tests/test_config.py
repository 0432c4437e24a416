"""Tests for YAML configuration loading."""

from pathlib import Path

import pytest
import yaml

from model_gateway.config import (
    GatewayConfig,
    RouterConfig,
    _apply_env_overrides,
    _find_config_file,
    get_effective_config,
    load_config,
)


class TestDefaults:
    """Test GatewayConfig defaults."""

    def test_router_defaults(self):
        config = GatewayConfig()

        assert config.default_model == "auto"
        assert config.router.max_retries == 3
        assert config.router.timeout_seconds == 30.0
        assert config.router.confidence_threshold == 0.7
        assert config.router.health_threshold == 40.0
        assert config.router.rate_limit_max_wait_seconds == 0.0
        assert config.health.window_size == 50
        assert config.default_fallbacks == ["gpt-4o-mini", "gpt-3.5-turbo"]

    def test_standard_chains_present(self):
        config = GatewayConfig()

        assert set(config.chains) >= {"openai", "anthropic", "gemini", "openrouter", "deepseek"}
        assert config.chains["anthropic"].primary == "claude-3-opus"
        assert config.chains["openrouter"].fallbacks == []

    def test_custom_chain_kept_and_defaults_filled(self):
        config = GatewayConfig(chains={"openai": {"primary": "gpt-4o-mini"}})

        assert config.chains["openai"].primary == "gpt-4o-mini"
        assert config.chains["openai"].fallbacks == []
        assert "anthropic" in config.chains

    def test_blank_default_model_rejected(self):
        with pytest.raises(ValueError):
            GatewayConfig(default_model="  ")

    def test_router_bounds(self):
        with pytest.raises(ValueError):
            RouterConfig(max_retries=0)
        with pytest.raises(ValueError):
            RouterConfig(confidence_threshold=1.5)

    def test_credentials_as_dict_skips_unset(self):
        config = GatewayConfig(credentials={"openai": "sk", "groq": None})

        assert config.credentials.as_dict() == {"openai": "sk"}


class TestLoadConfig:
    """Test load_config()."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path / "absent.yaml") == GatewayConfig()
        assert load_config(None) == GatewayConfig()

    def test_loads_yaml_with_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_OPENAI_KEY", "sk-from-env")
        path = tmp_path / "model_gateway.yaml"
        path.write_text(
            """
gateway:
  default_model: claude-3-opus
  router:
    max_retries: 5
    rate_limit_max_wait_seconds: 2
  credentials:
    openai: ${TEST_OPENAI_KEY}
    groq: ${TEST_UNSET_KEY}
  discovery:
    local_discovery: false
"""
        )

        config = load_config(path)

        assert config.default_model == "claude-3-opus"
        assert config.router.max_retries == 5
        assert config.router.rate_limit_max_wait_seconds == 2.0
        assert config.credentials.openai == "sk-from-env"
        assert config.credentials.groq is None
        assert config.discovery.local_discovery is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "model_gateway.yaml"
        path.write_text("")

        assert load_config(path) == GatewayConfig()

    def test_invalid_yaml_lenient_and_strict(self, tmp_path):
        path = tmp_path / "model_gateway.yaml"
        path.write_text("gateway: [unclosed")

        assert load_config(path) == GatewayConfig()
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(path, strict=True)

    def test_invalid_values_lenient_and_strict(self, tmp_path):
        path = tmp_path / "model_gateway.yaml"
        path.write_text("gateway:\n  router:\n    max_retries: 0\n")

        assert load_config(path).router.max_retries == 3
        with pytest.raises(ValueError, match="Configuration error"):
            load_config(path, strict=True)

    def test_to_yaml_round_trips(self):
        config = GatewayConfig(default_model="gpt-4o")

        dumped = yaml.safe_load(config.to_yaml())

        assert GatewayConfig(**dumped["gateway"]) == config


class TestEnvironment:
    """Test file discovery and environment overrides."""

    def test_env_var_path_wins(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("gateway: {}\n")
        monkeypatch.setenv("MODEL_GATEWAY_CONFIG", str(path))

        assert _find_config_file() == path

    def test_cwd_file_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path / "home"))
        (tmp_path / "model_gateway.yaml").write_text("gateway: {}\n")

        assert _find_config_file() == tmp_path / "model_gateway.yaml"

    def test_nothing_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path / "home"))

        assert _find_config_file() is None

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("DEFAULT_MODEL", "gpt-4o")
        monkeypatch.setenv("OLLAMA_URL", "http://gpu-box:11434")
        monkeypatch.setenv("MODEL_GATEWAY_LOCAL_DISCOVERY", "false")
        monkeypatch.setenv("MODEL_GATEWAY_TIMEOUT", "12.5")
        monkeypatch.setenv("MODEL_GATEWAY_MAX_RETRIES", "4")

        config = _apply_env_overrides(GatewayConfig())

        assert config.credentials.openai == "sk-env"
        assert config.default_model == "gpt-4o"
        assert config.discovery.ollama_url == "http://gpu-box:11434"
        assert config.discovery.local_discovery is False
        assert config.router.timeout_seconds == 12.5
        assert config.router.max_retries == 4

    def test_env_beats_yaml(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = tmp_path / "model_gateway.yaml"
        path.write_text("gateway:\n  default_model: claude-3-opus\n")
        monkeypatch.setenv("DEFAULT_MODEL", "gpt-4o")

        config = get_effective_config(path)

        assert config.default_model == "gpt-4o"
