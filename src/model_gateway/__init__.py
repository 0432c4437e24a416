"""Model Gateway - one chat interface over many LLM providers.

Adds automatic model selection, ordered fallback across models and
providers, ensemble verification for critical calls and live token
streaming.

Usage:
    from model_gateway import Gateway

    gateway = Gateway()
    await gateway.update_credentials({"openai": "sk-...", "anthropic": "sk-ant-..."})
    answer = await gateway.chat([{"role": "user", "content": "Explain CRDTs"}])

    stream = gateway.chat_stream([{"role": "user", "content": "Write a haiku"}])
    async for fragment in stream:
        print(fragment, end="")
    if stream.error:
        print(f"stream failed: {stream.error}")
"""

from model_gateway.config import GatewayConfig, get_effective_config, load_config
from model_gateway.ensemble import EnsembleExecutor, ensemble_confidence
from model_gateway.events import EventLog, GatewayEvent, GatewayEventType
from model_gateway.fallback import (
    ExecutionResult,
    FallbackRouter,
    ModelChain,
    estimate_confidence,
    estimate_cost,
)
from model_gateway.gateway import ChatStream, Gateway, GatewayContext, GatewayStatus
from model_gateway.health import HealthProfiler, HealthSample
from model_gateway.providers.errors import (
    AllCandidatesExhausted,
    AuthError,
    GatewayError,
    Malformed,
    NoModelSelected,
    ProviderError,
    ProviderTimeout,
    RateLimited,
    Unavailable,
)
from model_gateway.providers.types import ChatMessage, ModelInfo, ModelKind
from model_gateway.registry import ModelRegistry
from model_gateway.streaming import Frame, StreamDecoder

__version__ = "0.1.0"

__all__ = [
    # Facade
    "Gateway",
    "GatewayContext",
    "GatewayStatus",
    "ChatStream",
    # Components
    "ModelRegistry",
    "HealthProfiler",
    "HealthSample",
    "FallbackRouter",
    "ModelChain",
    "ExecutionResult",
    "EnsembleExecutor",
    "StreamDecoder",
    "Frame",
    "EventLog",
    "GatewayEvent",
    "GatewayEventType",
    # Heuristics
    "estimate_confidence",
    "estimate_cost",
    "ensemble_confidence",
    # Types
    "ChatMessage",
    "ModelInfo",
    "ModelKind",
    # Configuration
    "GatewayConfig",
    "load_config",
    "get_effective_config",
    # Errors
    "GatewayError",
    "ProviderError",
    "AuthError",
    "RateLimited",
    "ProviderTimeout",
    "Unavailable",
    "Malformed",
    "NoModelSelected",
    "AllCandidatesExhausted",
    "__version__",
]
