"""Ollama adapters: a local server and the hosted cloud API.

Both use ``POST /api/chat``. Streaming responses are newline-delimited JSON
objects (no ``data:`` prefix) carrying ``message.content``; the stream ends
on an object with ``"done": true`` or when the server closes the connection.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ..streaming import StreamDecoder
from .base import ProviderAdapter
from .errors import Unavailable
from .types import ChatMessage, ModelInfo, ModelKind

logger = logging.getLogger(__name__)

OLLAMA_ID_PREFIX = "ollama-"
OLLAMA_CLOUD_ID_PREFIX = "ollama-cloud-"

# Registered when the cloud catalog is empty
OLLAMA_CLOUD_DEFAULT_MODELS = ["llama2", "llama3", "codellama", "mistral", "mixtral", "deepseek-coder"]


class OllamaAdapter(ProviderAdapter):
    """Local Ollama server. Models register as ``ollama-<name>``."""

    default_base_url = "http://localhost:11434"
    requires_api_key = False
    id_prefix = OLLAMA_ID_PREFIX

    def __init__(self, *args: Any, probe_timeout: float = 2.0, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._probe_timeout = probe_timeout

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def kind(self) -> ModelKind:
        return ModelKind.LOCAL

    @property
    def supports_streaming(self) -> bool:
        return True

    def _headers(self, model_id: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.requires_api_key:
            headers["Authorization"] = f"Bearer {self._require_api_key(model_id)}"
        return headers

    @staticmethod
    def _payload(model_id: str, messages: List[ChatMessage], stream: bool) -> Dict[str, Any]:
        return {
            "model": model_id,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
        }

    async def complete(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> str:
        data = await self._request_json(
            "POST",
            f"{self._base_url}/api/chat",
            model_id=model_id,
            headers=self._headers(model_id),
            payload=self._payload(model_id, messages, stream=False),
            timeout=timeout,
        )
        if not isinstance(data, dict):
            raise self._malformed(model_id, "expected a JSON object")
        message = data.get("message") or {}
        return message.get("content") or data.get("response") or ""

    async def stream(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        frames = self._stream_frames(
            f"{self._base_url}/api/chat",
            StreamDecoder(prefix=None, sentinel=None),
            model_id=model_id,
            headers=self._headers(model_id),
            payload=self._payload(model_id, messages, stream=True),
            timeout=timeout,
        )
        try:
            async for frame in frames:
                if not isinstance(frame.data, dict):
                    continue
                if frame.data.get("error"):
                    raise Unavailable(
                        f"Ollama stream error: {frame.data['error']}",
                        provider=self.provider_name,
                        model_id=model_id,
                    )
                token = (frame.data.get("message") or {}).get("content")
                if token:
                    yield token
                if frame.data.get("done"):
                    return
        finally:
            await frames.aclose()

    async def _fetch_tags(self) -> List[str]:
        data = await self._request_json(
            "GET",
            f"{self._base_url}/api/tags",
            headers=self._headers(),
            timeout=self._probe_timeout,
        )
        entries = data.get("models", []) if isinstance(data, dict) else []
        return [entry["name"] for entry in entries if isinstance(entry, dict) and entry.get("name")]

    async def list_models(self) -> List[ModelInfo]:
        return [self._model_info(name) for name in await self._fetch_tags()]

    def _model_info(self, name: str) -> ModelInfo:
        return ModelInfo(
            id=f"{self.id_prefix}{name}",
            provider=self.provider_name,
            name=f"Ollama: {name}",
            kind=self.kind,
            remote_id=name,
        )


class OllamaCloudAdapter(OllamaAdapter):
    """Hosted Ollama with Bearer auth. Models register as ``ollama-cloud-<name>``."""

    default_base_url = "https://api.ollama.ai"
    requires_api_key = True
    id_prefix = OLLAMA_CLOUD_ID_PREFIX

    @property
    def provider_name(self) -> str:
        return "ollama-cloud"

    @property
    def kind(self) -> ModelKind:
        return ModelKind.CLOUD

    async def list_models(self) -> List[ModelInfo]:
        names = await self._fetch_tags()
        if not names:
            logger.info("Ollama Cloud catalog empty, registering default models")
            names = list(OLLAMA_CLOUD_DEFAULT_MODELS)
        return [self._model_info(name) for name in names]

    def _model_info(self, name: str) -> ModelInfo:
        return ModelInfo(
            id=f"{self.id_prefix}{name}",
            provider=self.provider_name,
            name=f"Ollama Cloud: {name}",
            kind=ModelKind.CLOUD,
            remote_id=name,
        )
