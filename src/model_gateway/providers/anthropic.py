"""Anthropic Messages API adapter."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from ..streaming import StreamDecoder
from .base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, ProviderAdapter
from .errors import Unavailable
from .types import ChatMessage, ModelInfo

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):
    """Adapter for ``POST /v1/messages``.

    System messages are lifted out of the message list into the top-level
    ``system`` field. Streaming uses SSE events without a ``[DONE]`` line:
    tokens arrive in ``content_block_delta`` events and ``message_stop``
    ends the stream.
    """

    default_base_url = "https://api.anthropic.com/v1"

    # Registry id -> dated upstream id
    catalog = [
        {"id": "claude-3-opus", "name": "Claude 3 Opus", "remote_id": "claude-3-opus-20240229"},
        {"id": "claude-3-sonnet", "name": "Claude 3 Sonnet", "remote_id": "claude-3-sonnet-20240229"},
        {"id": "claude-3-haiku", "name": "Claude 3 Haiku", "remote_id": "claude-3-haiku-20240307"},
    ]

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def supports_streaming(self) -> bool:
        return True

    def _headers(self, model_id: Optional[str] = None) -> Dict[str, str]:
        return {
            "x-api-key": self._require_api_key(model_id),
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _split_system(messages: List[ChatMessage]) -> Tuple[Optional[str], List[Dict[str, str]]]:
        system_parts = []
        conversation = []
        for msg in messages:
            if msg.normalized_role() == "system":
                system_parts.append(msg.content)
            else:
                conversation.append(msg.to_dict())
        return ("\n\n".join(system_parts) or None), conversation

    def _payload(
        self, model_id: str, messages: List[ChatMessage], stream: bool = False
    ) -> Dict[str, Any]:
        system, conversation = self._split_system(messages)
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": conversation,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "temperature": DEFAULT_TEMPERATURE,
        }
        if system:
            payload["system"] = system
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
            f"{self._base_url}/messages",
            model_id=model_id,
            headers=self._headers(model_id),
            payload=self._payload(model_id, messages),
            timeout=timeout,
        )
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise self._malformed(model_id, "missing content blocks")
        return "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )

    async def stream(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        frames = self._stream_frames(
            f"{self._base_url}/messages",
            StreamDecoder(sentinel=None),
            model_id=model_id,
            headers=self._headers(model_id),
            payload=self._payload(model_id, messages, stream=True),
            timeout=timeout,
        )
        try:
            async for frame in frames:
                if not isinstance(frame.data, dict):
                    continue
                event_type = frame.data.get("type")
                if event_type == "content_block_delta":
                    text = (frame.data.get("delta") or {}).get("text")
                    if text:
                        yield text
                elif event_type == "message_stop":
                    return
                elif event_type == "error":
                    error = frame.data.get("error") or {}
                    raise Unavailable(
                        f"Anthropic stream error: {error.get('type', 'unknown')}",
                        provider=self.provider_name,
                        model_id=model_id,
                    )
        finally:
            await frames.aclose()

    async def list_models(self) -> List[ModelInfo]:
        return [
            ModelInfo(
                id=entry["id"],
                provider=self.provider_name,
                name=entry["name"],
                remote_id=entry["remote_id"],
                capabilities=["text", "vision", "code"],
            )
            for entry in self.catalog
        ]
