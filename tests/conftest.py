"""Shared test configuration and fixtures."""
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest

from model_gateway.config import CREDENTIAL_ENV_VARS, GatewayConfig
from model_gateway.providers.base import ProviderAdapter
from model_gateway.providers.types import ChatMessage, ModelInfo, ModelKind

# =============================================================================
# Environment Reset
# =============================================================================


@pytest.fixture(autouse=True)
def reset_env(monkeypatch):
    """Clear environment variables before each test."""
    for env_var in CREDENTIAL_ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)
    for env_var in (
        "DEFAULT_MODEL",
        "OLLAMA_URL",
        "LMSTUDIO_URL",
        "MODEL_GATEWAY_CONFIG",
        "MODEL_GATEWAY_LOCAL_DISCOVERY",
        "MODEL_GATEWAY_TIMEOUT",
        "MODEL_GATEWAY_MAX_RETRIES",
    ):
        monkeypatch.delenv(env_var, raising=False)


# =============================================================================
# Fake Provider Adapter
# =============================================================================


class FakeAdapter(ProviderAdapter):
    """Scriptable in-memory adapter.

    Each model gets a queue of outcomes. A string is returned, an exception
    is raised, a coroutine function is awaited. The last outcome repeats once
    the queue is down to one item.
    """

    def __init__(
        self,
        name: str,
        models: List[str],
        kind: ModelKind = ModelKind.CLOUD,
        streaming: bool = False,
        list_error: Optional[BaseException] = None,
    ):
        super().__init__(api_key="test-key")
        self._name = name
        self._models = models
        self._kind = kind
        self._streaming = streaming
        self._list_error = list_error
        self._scripts: Dict[str, List[Any]] = {}
        self._stream_scripts: Dict[str, List[Any]] = {}
        self.calls: List[str] = []
        self.stream_calls: List[str] = []
        self.stream_closed = False

    @property
    def provider_name(self) -> str:
        return self._name

    @property
    def kind(self) -> ModelKind:
        return self._kind

    @property
    def supports_streaming(self) -> bool:
        return self._streaming

    def script(self, model_id: str, *outcomes: Any) -> "FakeAdapter":
        self._scripts[model_id] = list(outcomes)
        return self

    def script_stream(self, model_id: str, *items: Any) -> "FakeAdapter":
        self._stream_scripts[model_id] = list(items)
        return self

    async def complete(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> str:
        self.calls.append(model_id)
        queue = self._scripts.get(model_id, ["ok"])
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return outcome

    async def stream(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        self.stream_calls.append(model_id)
        if model_id not in self._stream_scripts:
            async for fragment in super().stream(model_id, messages, timeout=timeout):
                yield fragment
            return
        try:
            for item in self._stream_scripts[model_id]:
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.stream_closed = True

    async def list_models(self) -> List[ModelInfo]:
        if self._list_error is not None:
            raise self._list_error
        return [ModelInfo(id=m, provider=self._name, kind=self._kind) for m in self._models]


@pytest.fixture
def make_adapter():
    """Factory for FakeAdapter instances."""

    def _make(name: str, models: List[str], **kwargs: Any) -> FakeAdapter:
        return FakeAdapter(name, models, **kwargs)

    return _make


@pytest.fixture
def gateway_config():
    """Config with local discovery off so nothing touches the network."""
    config = GatewayConfig()
    config.discovery.local_discovery = False
    return config


@pytest.fixture
def make_context(gateway_config):
    """Build a GatewayContext whose registry is populated from fake adapters."""
    from model_gateway.gateway import GatewayContext

    async def _make(*adapters: FakeAdapter, config: Optional[GatewayConfig] = None):
        context = GatewayContext.create(
            config or gateway_config,
            adapter_factory=lambda credentials: list(adapters),
        )
        await context.registry.rebuild({})
        return context

    return _make


MESSAGES = [{"role": "user", "content": "Hello"}]


@pytest.fixture
def messages():
    return list(MESSAGES)


# =============================================================================
# Custom Pytest Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
