"""YAML configuration for the model gateway.

Configuration Priority: Environment Variables > YAML > Defaults

Example YAML configuration (model_gateway.yaml):

    gateway:
      default_model: auto
      router:
        max_retries: 3
        timeout_seconds: 30
        confidence_threshold: 0.7
      health:
        window_size: 50
      chains:
        openai:
          primary: gpt-4o
          fallbacks: [gpt-4o-mini, gpt-3.5-turbo]
          ensemble_models: [gpt-4o, claude-3-sonnet]
      discovery:
        ollama_url: http://localhost:11434
        probe_timeout_seconds: 2
      credentials:
        openai: ${OPENAI_API_KEY}
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# Credential names understood by the static provider table, mapped to the
# environment variable each one is read from.
CREDENTIAL_ENV_VARS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "ollama": "OLLAMA_API_KEY",
    "groq": "GROQ_API_KEY",
}


# =============================================================================
# Sub-configuration Models
# =============================================================================


class RouterConfig(BaseModel):
    """Fallback router behaviour."""

    max_retries: int = Field(default=3, ge=1, le=20)
    timeout_seconds: float = Field(default=30.0, gt=0, le=3600)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    use_ensemble_for_critical: bool = True
    health_threshold: float = Field(default=40.0, ge=0.0, le=100.0)
    # A rate-limited candidate is retried in the same call only when its
    # Retry-After fits in this budget. 0 disables same-call retries.
    rate_limit_max_wait_seconds: float = Field(default=0.0, ge=0.0, le=300.0)


class HealthConfig(BaseModel):
    """Health profiler window."""

    window_size: int = Field(default=50, ge=1, le=10000)


class ChainConfig(BaseModel):
    """An ordered try-in-order chain for one provider."""

    primary: str
    fallbacks: List[str] = Field(default_factory=list)
    ensemble_models: List[str] = Field(default_factory=list)


class ProviderEndpointConfig(BaseModel):
    """Endpoint override for one provider."""

    base_url: Optional[str] = None
    timeout_seconds: float = Field(default=120.0, ge=1.0, le=3600.0)


class DiscoveryConfig(BaseModel):
    """Local endpoint discovery."""

    local_discovery: bool = True
    ollama_url: str = Field(default="http://localhost:11434")
    lmstudio_url: str = Field(default="http://localhost:1234")
    probe_timeout_seconds: float = Field(default=2.0, gt=0, le=60.0)


class StreamingConfig(BaseModel):
    """Simulated streaming for providers without native streaming."""

    word_chunk_delay_seconds: float = Field(default=0.0, ge=0.0, le=1.0)


class CredentialsConfig(BaseModel):
    """API credentials, one per provider."""

    openai: Optional[str] = None
    anthropic: Optional[str] = None
    mistral: Optional[str] = None
    deepseek: Optional[str] = None
    gemini: Optional[str] = None
    openrouter: Optional[str] = None
    ollama: Optional[str] = None
    groq: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        """Return only the credentials that are set."""
        return {name: value for name, value in self.model_dump().items() if value}


def _default_chains() -> Dict[str, ChainConfig]:
    return {
        "openai": ChainConfig(
            primary="gpt-4o",
            fallbacks=["gpt-4o-mini", "gpt-3.5-turbo"],
            ensemble_models=["gpt-4o", "claude-3-sonnet"],
        ),
        "anthropic": ChainConfig(
            primary="claude-3-opus",
            fallbacks=["claude-3-sonnet", "claude-3-haiku"],
            ensemble_models=["claude-3-opus", "gpt-4o"],
        ),
        "gemini": ChainConfig(
            primary="gemini-2.0-flash",
            fallbacks=["gemini-1.5-pro-latest", "gemini-1.5-flash-latest"],
            ensemble_models=["gemini-2.0-flash", "gpt-4o-mini"],
        ),
        # OpenRouter routes across its own upstreams
        "openrouter": ChainConfig(primary="openrouter/auto"),
        "deepseek": ChainConfig(
            primary="deepseek-chat",
            fallbacks=["deepseek-coder"],
            ensemble_models=["deepseek-chat", "gpt-3.5-turbo"],
        ),
    }


# =============================================================================
# Main Configuration
# =============================================================================


class GatewayConfig(BaseModel):
    """Root configuration for the model gateway."""

    default_model: str = Field(default="auto")
    default_fallbacks: List[str] = Field(
        default_factory=lambda: ["gpt-4o-mini", "gpt-3.5-turbo"]
    )
    router: RouterConfig = Field(default_factory=RouterConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    chains: Dict[str, ChainConfig] = Field(default_factory=dict)
    providers: Dict[str, ProviderEndpointConfig] = Field(default_factory=dict)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)

    @field_validator("default_model")
    @classmethod
    def validate_default_model(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("default_model must not be empty, use 'auto'")
        return v

    @model_validator(mode="after")
    def ensure_default_chains(self) -> "GatewayConfig":
        """Ensure the standard provider chains exist."""
        for name, chain in _default_chains().items():
            if name not in self.chains:
                self.chains[name] = chain
        return self

    def provider_endpoint(self, provider: str) -> ProviderEndpointConfig:
        return self.providers.get(provider) or ProviderEndpointConfig()

    def to_yaml(self) -> str:
        config_dict = {"gateway": self.to_dict()}
        return yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR_NAME} references with environment values."""
    if isinstance(value, str):
        for var_name in re.findall(r"\$\{([^}]+)\}", value):
            value = value.replace(f"${{{var_name}}}", os.getenv(var_name, ""))
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def load_config(
    config_path: Optional[Path] = None,
    strict: bool = False,
) -> GatewayConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to YAML configuration file. If None, uses defaults.
        strict: If True, raise ValueError on validation errors. If False,
                fall back to defaults on errors.

    Returns:
        GatewayConfig object

    Raises:
        ValueError: If strict=True and configuration is invalid
    """
    if config_path is None or not config_path.exists():
        return GatewayConfig()

    try:
        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            return GatewayConfig()

        raw_config = _substitute_env_vars(raw_config)
        # Empty strings from unset ${VARS} mean "not configured"
        credentials = raw_config.get("gateway", {}).get("credentials")
        if isinstance(credentials, dict):
            for name in [k for k, v in credentials.items() if v == ""]:
                credentials[name] = None

        return GatewayConfig(**raw_config.get("gateway", {}))

    except yaml.YAMLError as e:
        if strict:
            raise ValueError(f"Invalid YAML: {e}")
        logger.warning("Ignoring invalid YAML in %s: %s", config_path, e)
        return GatewayConfig()
    except Exception as e:
        if strict:
            raise ValueError(f"Configuration error: {e}")
        logger.warning("Ignoring invalid configuration in %s: %s", config_path, e)
        return GatewayConfig()


def _find_config_file() -> Optional[Path]:
    """Find configuration file in standard locations.

    Search order:
    1. MODEL_GATEWAY_CONFIG environment variable
    2. ./model_gateway.yaml (current directory)
    3. ~/.config/model-gateway/model_gateway.yaml
    """
    env_path = os.getenv("MODEL_GATEWAY_CONFIG")
    if env_path:
        path = Path(env_path)
        if path.exists():
            return path

    cwd_path = Path.cwd() / "model_gateway.yaml"
    if cwd_path.exists():
        return cwd_path

    home_path = Path.home() / ".config" / "model-gateway" / "model_gateway.yaml"
    if home_path.exists():
        return home_path

    return None


def _apply_env_overrides(config: GatewayConfig) -> GatewayConfig:
    """Apply environment variable overrides to configuration."""
    config_dict = config.to_dict()

    for cred_name, env_var in CREDENTIAL_ENV_VARS.items():
        if os.getenv(env_var):
            config_dict.setdefault("credentials", {})[cred_name] = os.getenv(env_var)

    default_model = os.getenv("DEFAULT_MODEL")
    if default_model:
        config_dict["default_model"] = default_model

    ollama_url = os.getenv("OLLAMA_URL")
    if ollama_url:
        config_dict.setdefault("discovery", {})["ollama_url"] = ollama_url
    lmstudio_url = os.getenv("LMSTUDIO_URL")
    if lmstudio_url:
        config_dict.setdefault("discovery", {})["lmstudio_url"] = lmstudio_url
    local_discovery = os.getenv("MODEL_GATEWAY_LOCAL_DISCOVERY")
    if local_discovery:
        config_dict.setdefault("discovery", {})["local_discovery"] = local_discovery.lower() in ("true", "1", "yes")

    timeout = os.getenv("MODEL_GATEWAY_TIMEOUT")
    if timeout:
        config_dict.setdefault("router", {})["timeout_seconds"] = float(timeout)
    max_retries = os.getenv("MODEL_GATEWAY_MAX_RETRIES")
    if max_retries:
        config_dict.setdefault("router", {})["max_retries"] = int(max_retries)

    return GatewayConfig(**config_dict)


def get_effective_config(config_path: Optional[Path] = None) -> GatewayConfig:
    """Get the configuration with all overrides applied.

    Priority: Environment Variables (including .env) > YAML > Defaults

    Args:
        config_path: Optional explicit path to configuration file.
                    If None, searches standard locations.
    """
    load_dotenv()

    if config_path is None:
        config_path = _find_config_file()

    config = load_config(config_path)
    return _apply_env_overrides(config)
