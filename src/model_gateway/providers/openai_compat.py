"""OpenAI-compatible provider adapters.

OpenAI, DeepSeek, Mistral, OpenRouter, Groq and LM Studio all speak the
``/chat/completions`` dialect: Bearer auth, ``choices[0].message.content``
for blocking calls and SSE frames carrying ``choices[0].delta.content``
terminated by ``data: [DONE]``. They differ only in base URL, extra headers
and how their catalog is obtained.
"""

import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional

from ..streaming import StreamDecoder
from .base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, ProviderAdapter
from .errors import ProviderError, RateLimited, Unavailable
from .types import ChatMessage, ModelInfo, ModelKind

logger = logging.getLogger(__name__)


class OpenAICompatibleAdapter(ProviderAdapter):
    """Adapter for any endpoint implementing the OpenAI chat completions API.

    Subclasses set ``name``, ``default_base_url`` and ``catalog``; the
    catalog is a static list of ``{"id", "name", "capabilities"}`` entries
    unless ``list_models`` is overridden.
    """

    name: str = "openai-compatible"
    catalog: List[Dict[str, Any]] = []
    max_tokens: int = DEFAULT_MAX_TOKENS
    extra_headers: Dict[str, str] = {}

    @property
    def provider_name(self) -> str:
        return self.name

    @property
    def supports_streaming(self) -> bool:
        return True

    def _headers(self, model_id: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.requires_api_key:
            headers["Authorization"] = f"Bearer {self._require_api_key(model_id)}"
        elif self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        headers.update(self.extra_headers)
        return headers

    def _payload(
        self, model_id: str, messages: List[ChatMessage], stream: bool = False
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": [m.to_dict() for m in messages],
            "temperature": DEFAULT_TEMPERATURE,
            "max_tokens": self.max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def complete(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> str:
        data = await self._request_json(
            "POST",
            f"{self._base_url}/chat/completions",
            model_id=model_id,
            headers=self._headers(model_id),
            payload=self._payload(model_id, messages),
            timeout=timeout,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise self._malformed(model_id, "missing choices[0].message.content") from e
        return content or ""

    async def stream(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        frames = self._stream_frames(
            f"{self._base_url}/chat/completions",
            StreamDecoder(),
            model_id=model_id,
            headers=self._headers(model_id),
            payload=self._payload(model_id, messages, stream=True),
            timeout=timeout,
        )
        try:
            async for frame in frames:
                if isinstance(frame.data, dict) and frame.data.get("error"):
                    raise self._stream_error(model_id, frame.data["error"])
                token = _delta_content(frame.data)
                if token:
                    yield token
        finally:
            await frames.aclose()

    def _stream_error(self, model_id: str, error: Any) -> ProviderError:
        """Map an in-band ``{"error": {...}}`` frame to the error taxonomy."""
        if isinstance(error, dict):
            message = error.get("message") or str(error)
            code = error.get("code")
        else:
            message, code = str(error), None
        text = f"{self.provider_name} stream error: {message}"
        if str(code) == "429" or code == "rate_limit_exceeded":
            return RateLimited(text, provider=self.provider_name, model_id=model_id)
        return Unavailable(text, provider=self.provider_name, model_id=model_id)

    async def list_models(self) -> List[ModelInfo]:
        return [
            ModelInfo(
                id=entry["id"],
                provider=self.provider_name,
                name=entry.get("name", entry["id"]),
                kind=self.kind,
                capabilities=list(entry.get("capabilities", ["text"])),
            )
            for entry in self.catalog
        ]


def _delta_content(data: Any) -> Optional[str]:
    """Pull the token out of a chat.completion.chunk frame."""
    try:
        return data["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


class OpenAIAdapter(OpenAICompatibleAdapter):
    name = "openai"
    default_base_url = "https://api.openai.com/v1"
    catalog = [
        {"id": "gpt-4o", "name": "GPT-4o", "capabilities": ["text", "vision", "code"]},
        {"id": "gpt-4o-mini", "name": "GPT-4o Mini", "capabilities": ["text", "code"]},
        {"id": "gpt-3.5-turbo", "name": "GPT-3.5 Turbo"},
    ]


class DeepSeekAdapter(OpenAICompatibleAdapter):
    name = "deepseek"
    default_base_url = "https://api.deepseek.com/v1"
    catalog = [
        {"id": "deepseek-chat", "name": "DeepSeek Chat"},
        {"id": "deepseek-coder", "name": "DeepSeek Coder", "capabilities": ["text", "code"]},
    ]


class MistralAdapter(OpenAICompatibleAdapter):
    name = "mistral"
    default_base_url = "https://api.mistral.ai/v1"
    catalog = [
        {"id": "mistral-large-latest", "name": "Mistral Large"},
        {"id": "mistral-medium-latest", "name": "Mistral Medium"},
    ]


class OpenRouterAdapter(OpenAICompatibleAdapter):
    name = "openrouter"
    default_base_url = "https://openrouter.ai/api/v1"
    extra_headers = {"HTTP-Referer": "https://github.com/model-gateway", "X-Title": "Model Gateway"}
    catalog = [
        {"id": "openrouter/auto", "name": "OpenRouter Auto"},
    ]


# Groq lists speech and moderation models alongside chat models
GROQ_EXCLUDED_MARKERS = ("whisper", "distil", "guard")

GROQ_DISPLAY_NAMES = {
    "llama-3.3-70b-versatile": "Llama 3.3 70B",
    "llama-3.1-70b-versatile": "Llama 3.1 70B",
    "llama-3.1-8b-instant": "Llama 3.1 8B Instant",
    "llama3-70b-8192": "Llama 3 70B",
    "llama3-8b-8192": "Llama 3 8B",
    "mixtral-8x7b-32768": "Mixtral 8x7B",
    "gemma2-9b-it": "Gemma 2 9B",
}


def format_groq_name(model_id: str) -> str:
    if model_id in GROQ_DISPLAY_NAMES:
        return GROQ_DISPLAY_NAMES[model_id]
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), model_id.replace("-", " "))


class GroqAdapter(OpenAICompatibleAdapter):
    """Groq: catalog fetched from ``GET /models`` and filtered to chat models."""

    name = "groq"
    default_base_url = "https://api.groq.com/openai/v1"
    max_tokens = 4096

    async def list_models(self) -> List[ModelInfo]:
        data = await self._request_json(
            "GET", f"{self._base_url}/models", headers=self._headers()
        )
        entries = data.get("data", []) if isinstance(data, dict) else []
        models = []
        for entry in entries:
            model_id = entry.get("id", "")
            if not model_id or any(marker in model_id for marker in GROQ_EXCLUDED_MARKERS):
                continue
            models.append(
                ModelInfo(id=model_id, provider=self.provider_name, name=format_groq_name(model_id))
            )
        logger.debug("Groq catalog: %d chat models", len(models))
        return models


LMSTUDIO_ID_PREFIX = "lmstudio-"


class LMStudioAdapter(OpenAICompatibleAdapter):
    """Local LM Studio server.

    Models are registered as ``lmstudio-<name>``; the bare name is sent
    upstream. No credential is required.
    """

    name = "lmstudio"
    default_base_url = "http://localhost:1234/v1"
    requires_api_key = False

    def __init__(self, *args: Any, probe_timeout: float = 2.0, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._probe_timeout = probe_timeout

    @property
    def kind(self) -> ModelKind:
        return ModelKind.LOCAL

    async def list_models(self) -> List[ModelInfo]:
        data = await self._request_json(
            "GET",
            f"{self._base_url}/models",
            headers=self._headers(),
            timeout=self._probe_timeout,
        )
        entries = data.get("data", []) if isinstance(data, dict) else []
        return [
            ModelInfo(
                id=f"{LMSTUDIO_ID_PREFIX}{entry['id']}",
                provider=self.provider_name,
                name=f"LM Studio: {entry['id']}",
                kind=ModelKind.LOCAL,
                remote_id=entry["id"],
            )
            for entry in entries
            if entry.get("id")
        ]
