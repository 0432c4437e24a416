"""Provider adapters and the static provider table.

Adapters are chosen from a fixed table keyed by credential name; there is no
dynamic plugin loading. Local servers (Ollama, LM Studio) need no credential
and are added when local discovery is enabled.
"""

import logging
from typing import Dict, List, Mapping, Optional, Type

import httpx

from ..config import GatewayConfig
from .anthropic import AnthropicAdapter
from .base import ProviderAdapter
from .errors import (
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
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter, OllamaCloudAdapter
from .openai_compat import (
    DeepSeekAdapter,
    GroqAdapter,
    LMStudioAdapter,
    MistralAdapter,
    OpenAIAdapter,
    OpenAICompatibleAdapter,
    OpenRouterAdapter,
)
from .types import ChatMessage, ModelInfo, ModelKind, ModelPerformance, normalize_messages

logger = logging.getLogger(__name__)

# Credential name -> adapter class
PROVIDER_TABLE: Dict[str, Type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "mistral": MistralAdapter,
    "deepseek": DeepSeekAdapter,
    "gemini": GeminiAdapter,
    "openrouter": OpenRouterAdapter,
    "groq": GroqAdapter,
    "ollama": OllamaCloudAdapter,
}

# Cloud catalog probes get a longer budget than local discovery
CLOUD_PROBE_TIMEOUT = 5.0


def build_adapters(
    credentials: Mapping[str, Optional[str]],
    config: Optional[GatewayConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[ProviderAdapter]:
    """Instantiate one adapter per configured provider.

    Args:
        credentials: Credential name -> secret. Empty values are ignored.
        config: Gateway configuration for endpoint overrides and discovery.
        transport: Optional httpx transport shared by every adapter.

    Returns:
        Adapters in table order, cloud providers first, then local servers.
    """
    config = config or GatewayConfig()
    adapters: List[ProviderAdapter] = []

    for name, adapter_cls in PROVIDER_TABLE.items():
        secret = credentials.get(name)
        if not secret:
            continue
        endpoint = config.provider_endpoint(name)
        kwargs = {}
        if adapter_cls is OllamaCloudAdapter:
            kwargs["probe_timeout"] = CLOUD_PROBE_TIMEOUT
        adapters.append(
            adapter_cls(
                api_key=secret,
                base_url=endpoint.base_url,
                default_timeout=endpoint.timeout_seconds,
                transport=transport,
                **kwargs,
            )
        )

    unknown = set(credentials) - set(PROVIDER_TABLE)
    if unknown:
        logger.warning("Ignoring credentials for unknown providers: %s", sorted(unknown))

    discovery = config.discovery
    if discovery.local_discovery:
        ollama_endpoint = config.provider_endpoint("ollama")
        adapters.append(
            OllamaAdapter(
                base_url=discovery.ollama_url,
                default_timeout=ollama_endpoint.timeout_seconds,
                transport=transport,
                probe_timeout=discovery.probe_timeout_seconds,
            )
        )
        lmstudio_endpoint = config.provider_endpoint("lmstudio")
        adapters.append(
            LMStudioAdapter(
                base_url=f"{discovery.lmstudio_url.rstrip('/')}/v1",
                default_timeout=lmstudio_endpoint.timeout_seconds,
                transport=transport,
                probe_timeout=discovery.probe_timeout_seconds,
            )
        )

    logger.debug("Built adapters: %s", [a.provider_name for a in adapters])
    return adapters


__all__ = [
    "PROVIDER_TABLE",
    "build_adapters",
    "ProviderAdapter",
    "OpenAICompatibleAdapter",
    "OpenAIAdapter",
    "DeepSeekAdapter",
    "MistralAdapter",
    "OpenRouterAdapter",
    "GroqAdapter",
    "LMStudioAdapter",
    "AnthropicAdapter",
    "GeminiAdapter",
    "OllamaAdapter",
    "OllamaCloudAdapter",
    "ChatMessage",
    "ModelInfo",
    "ModelKind",
    "ModelPerformance",
    "normalize_messages",
    "GatewayError",
    "ProviderError",
    "AuthError",
    "RateLimited",
    "ProviderTimeout",
    "Unavailable",
    "Malformed",
    "NoModelSelected",
    "AllCandidatesExhausted",
]
