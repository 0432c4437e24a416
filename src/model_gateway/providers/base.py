"""Provider adapter contract.

One ``ProviderAdapter`` subclass exists per remote provider. It knows how to
authenticate, shape the request body, perform a blocking completion and a
streaming completion, and list the models it serves. Failures are raised as
typed ``ProviderError`` subclasses so the router can decide what to do next.

Adapters never touch registry or health state; that is the router's job.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..streaming import Frame, StreamDecoder, chunk_words
from .errors import AuthError, Malformed, ProviderTimeout, RateLimited, Unavailable
from .types import ChatMessage, ModelInfo, ModelKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
DEFAULT_RETRY_AFTER = 60
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4000


class ProviderAdapter(ABC):
    """Base class for provider adapters.

    Args:
        api_key: Provider credential, if the provider needs one.
        base_url: Override for the provider's API root.
        default_timeout: Request timeout in seconds when a call passes none.
        transport: Optional httpx transport (used by tests to mock HTTP).
    """

    default_base_url: str = ""
    requires_api_key: bool = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = (base_url or self.default_base_url).rstrip("/")
        self._default_timeout = default_timeout
        self._transport = transport

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name used as ``ModelInfo.provider`` for this adapter's models."""

    @property
    def kind(self) -> ModelKind:
        return ModelKind.CLOUD

    @property
    def supports_streaming(self) -> bool:
        """Whether ``stream()`` yields tokens natively from the provider."""
        return False

    @property
    def base_url(self) -> str:
        return self._base_url

    @abstractmethod
    async def complete(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> str:
        """Send a blocking completion request and return the full text."""

    async def stream(
        self,
        model_id: str,
        messages: List[ChatMessage],
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Yield incremental text fragments.

        Providers without native streaming word-chunk a full completion.
        """
        text = await self.complete(model_id, messages, timeout=timeout)
        for fragment in chunk_words(text):
            yield fragment

    @abstractmethod
    async def list_models(self) -> List[ModelInfo]:
        """Return the models this adapter contributes to the registry."""

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _timeout(self, timeout: Optional[float]) -> float:
        return timeout if timeout is not None else self._default_timeout

    def _client(self, timeout: Optional[float]) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout(timeout), transport=self._transport)

    def _require_api_key(self, model_id: Optional[str] = None) -> str:
        if not self._api_key:
            raise AuthError(
                f"No API key configured for {self.provider_name}",
                provider=self.provider_name,
                model_id=model_id,
            )
        return self._api_key

    def _raise_for_status(self, response: httpx.Response, model_id: Optional[str]) -> None:
        """Translate an HTTP error status into a typed ProviderError."""
        status = response.status_code
        if status < 400:
            return

        provider = self.provider_name
        if status == 429:
            retry_after = response.headers.get("Retry-After", str(DEFAULT_RETRY_AFTER))
            raise RateLimited(
                f"Rate limited by {provider} for {model_id}",
                provider=provider,
                model_id=model_id,
                retry_after=int(retry_after) if retry_after.isdigit() else DEFAULT_RETRY_AFTER,
            )
        if status in (401, 403):
            raise AuthError(
                f"Authentication failed for {provider}: {status}",
                provider=provider,
                model_id=model_id,
            )
        if status in (408, 504):
            raise ProviderTimeout(
                f"{provider} timed out upstream: {status}",
                provider=provider,
                model_id=model_id,
            )
        if status == 404 or status >= 500:
            raise Unavailable(
                f"{provider} unavailable for {model_id}: {status}",
                provider=provider,
                model_id=model_id,
            )
        raise Malformed(
            f"Bad request for {model_id}: {response.text[:200]}",
            provider=provider,
            model_id=model_id,
        )

    def _transport_error(self, error: Exception, model_id: Optional[str], timeout: float) -> Exception:
        if isinstance(error, httpx.TimeoutException):
            return ProviderTimeout(
                f"Timeout after {timeout}s", provider=self.provider_name, model_id=model_id
            )
        return Unavailable(
            f"{self.provider_name} transport error: {error}",
            provider=self.provider_name,
            model_id=model_id,
        )

    def _malformed(self, model_id: Optional[str], detail: str) -> Malformed:
        return Malformed(
            f"Unexpected response from {self.provider_name}: {detail}",
            provider=self.provider_name,
            model_id=model_id,
        )

    async def _request_json(
        self,
        method: str,
        url: str,
        model_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Perform a request and return the decoded JSON body.

        Raises:
            ProviderError: Typed failure for status, transport or body errors.
        """
        effective_timeout = self._timeout(timeout)
        try:
            async with self._client(effective_timeout) as client:
                response = await client.request(
                    method, url, headers=headers, json=payload, params=params
                )
        except httpx.HTTPError as e:
            raise self._transport_error(e, model_id, effective_timeout) from e

        self._raise_for_status(response, model_id)
        try:
            return response.json()
        except ValueError as e:
            raise self._malformed(model_id, "invalid JSON body") from e

    async def _stream_frames(
        self,
        url: str,
        decoder: StreamDecoder,
        model_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[Frame]:
        """POST a streaming request and yield decoded frames.

        The HTTP stream is released when the consumer stops iterating,
        whether the stream finished, failed or was cancelled.
        """
        effective_timeout = self._timeout(timeout)
        try:
            async with self._client(effective_timeout) as client:
                async with client.stream(
                    "POST", url, headers=headers, json=payload, params=params
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        self._raise_for_status(response, model_id)

                    async for chunk in response.aiter_bytes():
                        for frame in decoder.feed(chunk):
                            yield frame
                        if decoder.done:
                            return

                    for frame in decoder.flush():
                        yield frame
        except httpx.HTTPError as e:
            raise self._transport_error(e, model_id, effective_timeout) from e
