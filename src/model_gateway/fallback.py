"""Ordered fallback across models and providers.

A call walks its model chain in order. Candidates that are unregistered,
unavailable or unhealthy are skipped without using up an attempt. Each real
attempt is bounded by the per-call timeout and by ``max_retries`` overall.
The first success wins; a critical call whose answer looks weak is escalated
to an ensemble instead.

Example:
    >>> router = FallbackRouter(registry, profiler, events)
    >>> result = await router.execute(
    ...     [{"role": "user", "content": "hello"}],
    ...     chain=ModelChain("gpt-4o", ["claude-3-sonnet"]),
    ... )
    >>> result.model_used, result.attempts
    ('claude-3-sonnet', 2)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import ChainConfig, GatewayConfig, RouterConfig
from .events import EventLog, GatewayEventType
from .health import HealthProfiler, HealthSample
from .providers.errors import NoModelSelected, ProviderError, ProviderTimeout, RateLimited, Unavailable
from .providers.types import MessageLike, normalize_messages
from .registry import ModelRegistry

if TYPE_CHECKING:
    from .ensemble import EnsembleExecutor

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.7
MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95
HEDGING_PHRASES = (
    "i'm not sure",
    "i don't know",
    "might be",
    "possibly",
    "uncertain",
    "unclear",
    "may or may not",
)

# USD per token, matched by substring of the model id (longest key first)
COST_PER_TOKEN: Dict[str, float] = {
    "gpt-4o": 0.00003,
    "gpt-4o-mini": 0.000003,
    "gpt-3.5-turbo": 0.000002,
    "claude-3-opus": 0.00006,
    "claude-3-sonnet": 0.00001,
    "gemini": 0.000005,
    "deepseek": 0.000001,
}
DEFAULT_COST_PER_TOKEN = 0.00001
CHARS_PER_TOKEN = 4


@dataclass
class ModelChain:
    """Primary model, ordered fallbacks and optional ensemble members."""

    primary: str
    fallbacks: List[str] = field(default_factory=list)
    ensemble_models: List[str] = field(default_factory=list)

    def effective_sequence(self) -> List[str]:
        """Primary then fallbacks, duplicates removed, first occurrence kept."""
        seen = set()
        sequence = []
        for model_id in [self.primary, *self.fallbacks]:
            if model_id not in seen:
                seen.add(model_id)
                sequence.append(model_id)
        return sequence

    def ensemble_members(self) -> List[str]:
        """Configured ensemble, or the primary plus the first fallback."""
        if self.ensemble_models:
            return list(self.ensemble_models)
        return [self.primary, *self.fallbacks[:1]]

    @classmethod
    def from_config(cls, chain: ChainConfig) -> "ModelChain":
        return cls(
            primary=chain.primary,
            fallbacks=list(chain.fallbacks),
            ensemble_models=list(chain.ensemble_models),
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one routed call.

    Attributes:
        success: Whether any candidate produced a response
        response: Response text, or a failure summary
        model_used: Winning model id, ``ensemble(a,b)`` or "" on failure
        attempts: Real attempts made (skips excluded)
        total_latency_ms: Wall time for the whole call
        fallbacks_used: Model ids that were tried and rejected, in order
        confidence_score: Heuristic confidence in [0, 1]
        error: Last underlying failure, if any
    """

    success: bool
    response: str
    model_used: str
    attempts: int
    total_latency_ms: float
    fallbacks_used: Tuple[str, ...] = ()
    confidence_score: float = 0.0
    error: Optional[BaseException] = field(default=None, compare=False)


def estimate_confidence(response: str) -> float:
    """Heuristic confidence in a single response.

    Starts at 0.7, rewards length and fenced code, penalises each hedging
    phrase, and clamps to [0.3, 0.95].
    """
    confidence = BASE_CONFIDENCE
    if len(response) > 500:
        confidence += 0.05
    if len(response) > 1000:
        confidence += 0.05

    lowered = response.lower()
    for phrase in HEDGING_PHRASES:
        if phrase in lowered:
            confidence -= 0.1

    if "```" in response:
        confidence += 0.1

    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, round(confidence, 4)))


def estimate_cost(model_id: str, response_length: int) -> float:
    """Rough USD cost of a response of ``response_length`` characters."""
    tokens = response_length / CHARS_PER_TOKEN
    lowered = model_id.lower()
    for key in sorted(COST_PER_TOKEN, key=len, reverse=True):
        if key in lowered:
            return tokens * COST_PER_TOKEN[key]
    return tokens * DEFAULT_COST_PER_TOKEN


class FallbackRouter:
    """Runs calls along a model chain with health-gated fallback.

    Args:
        registry: Source of models and adapters
        profiler: Shared health profiler
        events: Event log for routing events
        config: Gateway configuration (router settings and chains)
        ensemble: Executor used when escalating critical calls
    """

    def __init__(
        self,
        registry: ModelRegistry,
        profiler: HealthProfiler,
        events: EventLog,
        config: Optional[GatewayConfig] = None,
        ensemble: Optional["EnsembleExecutor"] = None,
    ):
        gateway_config = config or GatewayConfig()
        self._registry = registry
        self._profiler = profiler
        self._events = events
        self._config = gateway_config.router.model_copy()
        self._default_fallbacks = list(gateway_config.default_fallbacks)
        self._chains: Dict[str, ModelChain] = {
            name: ModelChain.from_config(chain) for name, chain in gateway_config.chains.items()
        }
        if ensemble is None:
            from .ensemble import EnsembleExecutor

            ensemble = EnsembleExecutor(registry, profiler, events)
        self._ensemble = ensemble

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, **overrides: Any) -> RouterConfig:
        """Update router settings (max_retries, timeout_seconds, ...).

        Raises:
            ValueError: On unknown keys or invalid values
        """
        unknown = set(overrides) - set(RouterConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown router settings: {sorted(unknown)}")
        self._config = RouterConfig(**{**self._config.model_dump(), **overrides})
        return self.get_config()

    def add_chain(self, name: str, chain: ModelChain) -> None:
        self._chains[name] = chain

    def get_config(self) -> RouterConfig:
        return self._config.model_copy()

    @property
    def chains(self) -> Dict[str, ModelChain]:
        return dict(self._chains)

    # ------------------------------------------------------------------
    # Chain resolution
    # ------------------------------------------------------------------

    def resolve_chain(
        self,
        primary_model: Optional[str] = None,
        required_capabilities: Optional[Iterable[str]] = None,
    ) -> Optional[ModelChain]:
        """Build the chain for a call.

        The primary is ``primary_model`` or the registry's current model.
        Fallbacks come from the chain configured for the primary's provider,
        or the default fallbacks when that provider has none.

        With ``required_capabilities``, candidates lacking any of the tags are
        dropped. If none of the chain qualifies, every registered model that
        does is used instead, in registry order.

        Returns:
            The chain, or None when there is no usable primary model.
        """
        primary = primary_model
        if primary is None:
            current = self._registry.current_model
            primary = current.id if current else None

        chain: Optional[ModelChain] = None
        if primary:
            configured = self._chain_for_model(primary)
            if configured is None:
                chain = ModelChain(primary=primary, fallbacks=list(self._default_fallbacks))
            else:
                chain = ModelChain(
                    primary=primary,
                    fallbacks=[configured.primary, *configured.fallbacks],
                    ensemble_models=list(configured.ensemble_models),
                )

        if not required_capabilities:
            return chain

        required = set(required_capabilities)
        sequence = chain.effective_sequence() if chain else []
        capable = [m for m in sequence if self._registry.has_capabilities(m, required)]
        if not capable:
            capable = [m.id for m in self._registry.find_models(required)]
        if not capable:
            logger.warning(f"No registered model has capabilities {sorted(required)}")
            return None
        ensemble = [m for m in (chain.ensemble_models if chain else []) if m in capable]
        return ModelChain(primary=capable[0], fallbacks=capable[1:], ensemble_models=ensemble)

    def _chain_for_model(self, model_id: str) -> Optional[ModelChain]:
        model = self._registry.get_model(model_id)
        if model is not None:
            return self._chains.get(model.provider)
        for chain in self._chains.values():
            if model_id in chain.effective_sequence():
                return chain
        return None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def skip_reason(self, model_id: str) -> Optional[str]:
        model = self._registry.get_model(model_id)
        if model is None:
            return "unregistered"
        if not model.available:
            return "unavailable"
        if self._registry.get_adapter(model_id) is None:
            return "no_adapter"
        if not self._profiler.is_healthy(model_id, self._config.health_threshold):
            return "unhealthy"
        return None

    async def execute(
        self,
        messages: Iterable[MessageLike],
        chain: Optional[ModelChain] = None,
        primary_model: Optional[str] = None,
        is_critical: bool = False,
        timeout_ms: Optional[float] = None,
        required_capabilities: Optional[Iterable[str]] = None,
        prior_failures: Sequence[Tuple[str, BaseException]] = (),
    ) -> ExecutionResult:
        """Run a call along the chain.

        Args:
            messages: Conversation as ChatMessage or role/content dicts
            chain: Explicit chain. Resolved from ``primary_model`` if omitted.
            primary_model: Model to try first when no chain is given
            is_critical: Escalate weak answers to an ensemble
            timeout_ms: Per-attempt timeout, defaults to the router setting
            required_capabilities: Capability tags every candidate must carry
                when the chain is resolved here
            prior_failures: ``(model_id, error)`` pairs already attempted by
                the caller for this call. They count against ``max_retries``.

        Raises:
            NoModelSelected: If no chain can be resolved
        """
        chat_messages = normalize_messages(messages)
        if required_capabilities is not None:
            required_capabilities = list(required_capabilities)
        if chain is None:
            chain = self.resolve_chain(primary_model, required_capabilities)
            if chain is None:
                if required_capabilities:
                    raise NoModelSelected(
                        f"No registered model has capabilities {sorted(set(required_capabilities))}"
                    )
                raise NoModelSelected("No model selected and no primary model given")

        config = self._config
        timeout = timeout_ms / 1000.0 if timeout_ms is not None else config.timeout_seconds
        start = time.monotonic()
        attempts = len(prior_failures)
        fallbacks_used: List[str] = [model_id for model_id, _ in prior_failures]
        last_error: Optional[BaseException] = prior_failures[-1][1] if prior_failures else None
        skipped: List[str] = []

        for model_id in chain.effective_sequence():
            if attempts >= config.max_retries:
                break

            reason = self.skip_reason(model_id)
            if reason is not None:
                logger.info(f"Skipping {model_id}: {reason}")
                skipped.append(f"{model_id} ({reason})")
                self._events.emit(
                    GatewayEventType.FALLBACK,
                    {"failed_model": model_id, "reason": "skipped", "detail": reason, "attempt": attempts},
                )
                continue

            model = self._registry.get_model(model_id)
            adapter = self._registry.get_adapter(model_id)
            rate_limit_retried = False

            while True:
                attempts += 1
                attempt_start = time.monotonic()
                try:
                    response = await asyncio.wait_for(
                        adapter.complete(model.remote_id, chat_messages, timeout=timeout),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError:
                    error: ProviderError = ProviderTimeout(
                        f"Timeout after {timeout}s", provider=model.provider, model_id=model_id
                    )
                except ProviderError as e:
                    error = e
                except Exception as e:
                    logger.warning(f"Unexpected error from {model.provider} adapter: {e!r}")
                    error = Unavailable(str(e) or type(e).__name__, provider=model.provider, model_id=model_id)
                    error.__cause__ = e
                else:
                    latency_ms = (time.monotonic() - attempt_start) * 1000
                    return await self._on_success(
                        chain,
                        chat_messages,
                        model_id,
                        response,
                        latency_ms,
                        attempts,
                        fallbacks_used,
                        start,
                        is_critical,
                        timeout,
                    )

                latency_ms = (time.monotonic() - attempt_start) * 1000
                self._profiler.record(
                    model_id, HealthSample(model_id=model_id, success=False, latency_ms=latency_ms)
                )

                if (
                    isinstance(error, RateLimited)
                    and not rate_limit_retried
                    and config.rate_limit_max_wait_seconds > 0
                    and error.retry_after is not None
                    and error.retry_after <= config.rate_limit_max_wait_seconds
                    and attempts < config.max_retries
                ):
                    logger.info(f"{model_id} rate limited, retrying in {error.retry_after}s")
                    rate_limit_retried = True
                    await asyncio.sleep(error.retry_after)
                    continue

                last_error = error
                fallbacks_used.append(model_id)
                logger.warning(f"Model {model_id} failed ({error.kind}): {error}")
                self._events.emit(
                    GatewayEventType.FALLBACK,
                    {
                        "failed_model": model_id,
                        "reason": error.kind,
                        "error": str(error),
                        "attempt": attempts,
                    },
                )
                break

        total_latency_ms = (time.monotonic() - start) * 1000
        self._events.emit(
            GatewayEventType.ALL_FAILED,
            {
                "attempts": attempts,
                "fallbacks_used": list(fallbacks_used),
                "skipped": list(skipped),
                "error": str(last_error) if last_error else None,
            },
        )
        if attempts:
            response = f"All {attempts} attempts failed. Last error: {last_error}"
        else:
            response = f"No candidate could be attempted. Skipped: {', '.join(skipped) or 'none'}"
        return ExecutionResult(
            success=False,
            response=response,
            model_used="",
            attempts=attempts,
            total_latency_ms=total_latency_ms,
            fallbacks_used=tuple(fallbacks_used),
            confidence_score=0.0,
            error=last_error,
        )

    async def _on_success(
        self,
        chain: ModelChain,
        messages: List,
        model_id: str,
        response: str,
        latency_ms: float,
        attempts: int,
        fallbacks_used: List[str],
        start: float,
        is_critical: bool,
        timeout: float,
    ) -> ExecutionResult:
        self._profiler.record(
            model_id,
            HealthSample(
                model_id=model_id,
                success=True,
                latency_ms=latency_ms,
                cost=estimate_cost(model_id, len(response)),
            ),
        )
        self._registry.update_performance(model_id, latency_ms)
        confidence = estimate_confidence(response)

        if (
            is_critical
            and confidence < self._config.confidence_threshold
            and self._config.use_ensemble_for_critical
        ):
            members = chain.ensemble_members()
            logger.info(f"Low confidence {confidence} from {model_id} on critical call, running ensemble")
            self._events.emit(
                GatewayEventType.ESCALATION,
                {"model_id": model_id, "confidence": confidence, "ensemble_models": members},
            )
            return await self._ensemble.run(messages, members, timeout)

        self._events.emit(
            GatewayEventType.SUCCESS,
            {"model_id": model_id, "attempts": attempts, "latency_ms": round(latency_ms, 2)},
        )
        return ExecutionResult(
            success=True,
            response=response,
            model_used=model_id,
            attempts=attempts,
            total_latency_ms=(time.monotonic() - start) * 1000,
            fallbacks_used=tuple(fallbacks_used),
            confidence_score=confidence,
        )
