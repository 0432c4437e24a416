"""Google Gemini adapter.

Gemini authenticates with a ``?key=`` query parameter rather than a header
and has no native streaming here; ``stream()`` falls back to word-chunking a
full completion.

The catalog is discovered from ``GET /models`` and ordered best-first:
paid (pro) models before free ones, newer versions first.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from .base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, ProviderAdapter
from .errors import AuthError, ProviderError
from .types import ChatMessage, DiscoveredModel, ModelInfo, sort_discovered_models

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"(\d+\.?\d*)")

# Used when the listing endpoint fails or returns nothing usable
FALLBACK_CATALOG = [
    DiscoveredModel(id="gemini-2.0-flash", name="Gemini 2.0 Flash", is_paid=False, tier="flash", version="2.0"),
    DiscoveredModel(
        id="gemini-1.5-pro-latest",
        name="Gemini 1.5 Pro",
        is_paid=True,
        tier="pro",
        version="1.5",
        capabilities=["text", "vision"],
    ),
    DiscoveredModel(id="gemini-1.5-flash-latest", name="Gemini 1.5 Flash", is_paid=False, tier="flash", version="1.5"),
]


def classify_gemini_model(entry: Dict[str, Any]) -> Optional[DiscoveredModel]:
    """Turn one ``/models`` entry into a DiscoveredModel.

    Returns None for entries that are not Gemini chat models.
    """
    full_name = str(entry.get("name", "")).replace("models/", "")
    methods = entry.get("supportedGenerationMethods") or []
    if "gemini" not in full_name or "generateContent" not in methods:
        return None

    if "pro" in full_name:
        tier = "pro"
    elif "flash" in full_name:
        tier = "flash"
    elif "nano" in full_name:
        tier = "nano"
    else:
        tier = "other"

    match = _VERSION_PATTERN.search(full_name)
    version = match.group(1) if match else "1.0"

    input_limit = entry.get("inputTokenLimit") or 0
    capabilities = ["text"]
    if "vision" in full_name or input_limit > 100000:
        capabilities.append("vision")
    if "code" in full_name:
        capabilities.append("code")
    if input_limit > 500000:
        capabilities.append("long-context")

    return DiscoveredModel(
        id=full_name,
        name=entry.get("displayName") or full_name,
        is_paid=tier == "pro",
        tier=tier,
        version=version,
        capabilities=capabilities,
    )


class GeminiAdapter(ProviderAdapter):
    """Adapter for the Generative Language ``generateContent`` API."""

    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    @property
    def provider_name(self) -> str:
        return "gemini"

    def _params(self, model_id: Optional[str] = None) -> Dict[str, str]:
        return {"key": self._require_api_key(model_id)}

    @staticmethod
    def _payload(messages: List[ChatMessage]) -> Dict[str, Any]:
        contents = []
        system_parts = []
        for msg in messages:
            role = msg.normalized_role()
            if role == "system":
                system_parts.append({"text": msg.content})
                continue
            contents.append(
                {
                    "role": "model" if role == "assistant" else "user",
                    "parts": [{"text": msg.content}],
                }
            )
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": DEFAULT_TEMPERATURE,
                "maxOutputTokens": DEFAULT_MAX_TOKENS,
            },
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    async def complete(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> str:
        data = await self._request_json(
            "POST",
            f"{self._base_url}/models/{model_id}:generateContent",
            model_id=model_id,
            headers={"Content-Type": "application/json"},
            payload=self._payload(messages),
            params=self._params(model_id),
            timeout=timeout,
        )
        try:
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise self._malformed(model_id, "missing candidates[0].content.parts") from e

    async def discover_models(self) -> List[DiscoveredModel]:
        """Fetch and order the live catalog.

        Raises:
            AuthError: If the key is rejected. Other failures fall back to
                a built-in catalog.
        """
        try:
            data = await self._request_json(
                "GET", f"{self._base_url}/models", params=self._params()
            )
        except AuthError:
            raise
        except ProviderError as e:
            logger.warning("Gemini model discovery failed, using fallback catalog: %s", e)
            return list(FALLBACK_CATALOG)

        entries = data.get("models", []) if isinstance(data, dict) else []
        discovered = [m for m in (classify_gemini_model(e) for e in entries) if m is not None]
        if not discovered:
            return list(FALLBACK_CATALOG)

        ordered = sort_discovered_models(discovered)
        logger.debug(
            "Discovered %d Gemini models (%d paid)",
            len(ordered),
            sum(1 for m in ordered if m.is_paid),
        )
        return ordered

    async def list_models(self) -> List[ModelInfo]:
        return [
            ModelInfo(
                id=model.id,
                provider=self.provider_name,
                name=f"{model.name} ({'Pro' if model.is_paid else 'Free'})",
                capabilities=list(model.capabilities),
            )
            for model in await self.discover_models()
        ]
