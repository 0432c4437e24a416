"""Error taxonomy for the model gateway.

Provider adapters raise a typed ``ProviderError`` subclass instead of a
generic exception so the fallback router can decide whether to skip, retry
or give up on a candidate. Callers of the gateway only ever see
``NoModelSelected`` and ``AllCandidatesExhausted``.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..fallback import ExecutionResult


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ProviderError(GatewayError):
    """Failure of a single adapter call.

    Attributes:
        provider: Provider name (e.g. "openai")
        model_id: Upstream model identifier, if known
        kind: Short machine-readable failure kind
    """

    kind = "error"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model_id = model_id


class AuthError(ProviderError):
    """Missing or rejected credential. Never retried."""

    kind = "auth_error"


class RateLimited(ProviderError):
    """Provider answered 429."""

    kind = "rate_limited"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model_id: Optional[str] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message, provider=provider, model_id=model_id)
        self.retry_after = retry_after


class ProviderTimeout(ProviderError):
    """The attempt exceeded its time budget."""

    kind = "timeout"


class Unavailable(ProviderError):
    """Transport or server-side failure."""

    kind = "unavailable"


class Malformed(ProviderError):
    """Request rejected as invalid or response had an unexpected shape."""

    kind = "malformed"


class NoModelSelected(GatewayError):
    """No model is configured or selected for the call."""


class AllCandidatesExhausted(GatewayError):
    """Every candidate in the chain failed or was skipped."""

    def __init__(self, message: str, result: "ExecutionResult"):
        super().__init__(message)
        self.result = result


__all__ = [
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
