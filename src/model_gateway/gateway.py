"""Gateway facade: the entry point collaborators use.

Two contracts are offered: "send messages, get a string" (``chat``) and
"send messages, get incremental text fragments" (``chat_stream``). All
shared state lives in an explicit ``GatewayContext`` rather than module
singletons, so several independent gateways can coexist (and tests can build
their own).

Example:
    >>> gateway = Gateway()
    >>> await gateway.update_credentials({"openai": "sk-..."})
    >>> await gateway.chat([{"role": "user", "content": "hi"}])
    'Hello! How can I help?'
    >>> stream = gateway.chat_stream([{"role": "user", "content": "hi"}])
    >>> async for fragment in stream:
    ...     print(fragment, end="")
    >>> stream.error is None
    True
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Iterable, List, Mapping, Optional

from .config import GatewayConfig
from .ensemble import EnsembleExecutor
from .events import EventLog, GatewayEventType
from .fallback import ExecutionResult, FallbackRouter, ModelChain, estimate_cost
from .health import HealthProfiler, HealthSample
from .providers.errors import AllCandidatesExhausted, NoModelSelected
from .providers.types import ChatMessage, MessageLike, ModelInfo, normalize_messages
from .registry import AdapterFactory, ModelRegistry
from .streaming import chunk_words

logger = logging.getLogger(__name__)


@dataclass
class GatewayStatus:
    """Point-in-time summary of the gateway."""

    total_models: int
    healthy_models: int
    last_selected_model: Optional[str]


@dataclass
class GatewayContext:
    """Everything one gateway instance shares across calls."""

    config: GatewayConfig
    events: EventLog
    profiler: HealthProfiler
    registry: ModelRegistry
    ensemble: EnsembleExecutor
    router: FallbackRouter

    @classmethod
    def create(
        cls,
        config: Optional[GatewayConfig] = None,
        adapter_factory: Optional[AdapterFactory] = None,
    ) -> "GatewayContext":
        """Wire a fresh set of components from configuration."""
        config = config or GatewayConfig()
        events = EventLog()
        profiler = HealthProfiler(window_size=config.health.window_size)
        registry = ModelRegistry(config=config, events=events, adapter_factory=adapter_factory)
        ensemble = EnsembleExecutor(registry, profiler, events)
        router = FallbackRouter(registry, profiler, events, config=config, ensemble=ensemble)
        return cls(
            config=config,
            events=events,
            profiler=profiler,
            registry=registry,
            ensemble=ensemble,
            router=router,
        )


class ChatStream:
    """Async iterator of response fragments for one streaming call.

    Failures never raise out of iteration; the stream simply ends and the
    cause is left on ``error``. ``model_used`` names the model that produced
    the fragments once the stream has finished.
    """

    def __init__(self, producer: Callable[["ChatStream"], AsyncIterator[str]]):
        self.error: Optional[BaseException] = None
        self.model_used: Optional[str] = None
        self.used_fallback = False
        self._iterator = producer(self)

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> str:
        return await self._iterator.__anext__()

    async def aclose(self) -> None:
        """Stop early and release the underlying HTTP stream."""
        await self._iterator.aclose()

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def collect(self) -> str:
        """Drain the stream and return the concatenated text."""
        return "".join([fragment async for fragment in self])


class Gateway:
    """Unified chat interface over every configured provider.

    Args:
        context: Pre-built context. Created from ``config`` when omitted.
        config: Configuration used when no context is given.
    """

    def __init__(
        self,
        context: Optional[GatewayContext] = None,
        config: Optional[GatewayConfig] = None,
    ):
        self._context = context or GatewayContext.create(config)
        self._credentials: Dict[str, Optional[str]] = {}

    @property
    def context(self) -> GatewayContext:
        return self._context

    @property
    def events(self) -> EventLog:
        return self._context.events

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Build the registry from the configured credentials."""
        return await self.update_credentials(self._context.config.credentials.as_dict())

    async def update_credentials(self, credentials: Mapping[str, Optional[str]]) -> int:
        """Replace credentials and rebuild the registry.

        Returns:
            Number of registered models
        """
        self._credentials = dict(credentials)
        logger.info(f"Updating credentials for providers: {sorted(k for k, v in credentials.items() if v)}")
        return await self._context.registry.rebuild(self._credentials)

    def list_models(self) -> List[ModelInfo]:
        return self._context.registry.list_models()

    def select_model(self, model_id: str) -> bool:
        return self._context.registry.select(model_id)

    @property
    def current_model(self) -> Optional[ModelInfo]:
        return self._context.registry.current_model

    def status(self) -> GatewayStatus:
        registry = self._context.registry
        threshold = self._context.router.get_config().health_threshold
        models = registry.list_models()
        healthy = [
            m for m in models if m.available and self._context.profiler.is_healthy(m.id, threshold)
        ]
        current = registry.current_model
        return GatewayStatus(
            total_models=len(models),
            healthy_models=len(healthy),
            last_selected_model=current.id if current else None,
        )

    # ------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------

    async def execute(
        self,
        messages: Iterable[MessageLike],
        primary_model: Optional[str] = None,
        is_critical: bool = False,
        timeout_ms: Optional[float] = None,
        required_capabilities: Optional[Iterable[str]] = None,
    ) -> ExecutionResult:
        """Route a call and return the full ExecutionResult.

        Raises:
            NoModelSelected: If no model is selected and none was given
        """
        return await self._context.router.execute(
            messages,
            primary_model=primary_model,
            is_critical=is_critical,
            timeout_ms=timeout_ms,
            required_capabilities=required_capabilities,
        )

    async def chat(
        self,
        messages: Iterable[MessageLike],
        primary_model: Optional[str] = None,
        is_critical: bool = False,
        timeout_ms: Optional[float] = None,
        required_capabilities: Optional[Iterable[str]] = None,
    ) -> str:
        """Route a call and return the response text.

        Raises:
            NoModelSelected: If no model is selected and none was given
            AllCandidatesExhausted: If every candidate failed or was skipped
        """
        result = await self.execute(
            messages,
            primary_model=primary_model,
            is_critical=is_critical,
            timeout_ms=timeout_ms,
            required_capabilities=required_capabilities,
        )
        if not result.success:
            raise AllCandidatesExhausted(result.response, result)
        return result.response

    def chat_stream(
        self,
        messages: Iterable[MessageLike],
        primary_model: Optional[str] = None,
        timeout_ms: Optional[float] = None,
        required_capabilities: Optional[Iterable[str]] = None,
    ) -> ChatStream:
        """Stream a response as text fragments.

        Uses the primary model's native streaming when available. If that
        fails before the first fragment, or the provider cannot stream, the
        fallback chain runs and its full answer is word-chunked.
        """
        chat_messages = normalize_messages(messages)
        if required_capabilities is not None:
            required_capabilities = list(required_capabilities)
        return ChatStream(
            lambda stream: self._produce_stream(
                stream, chat_messages, primary_model, timeout_ms, required_capabilities
            )
        )

    async def _produce_stream(
        self,
        stream: ChatStream,
        messages: List[ChatMessage],
        primary_model: Optional[str],
        timeout_ms: Optional[float],
        required_capabilities: Optional[Iterable[str]] = None,
    ) -> AsyncIterator[str]:
        ctx = self._context
        chain = ctx.router.resolve_chain(primary_model, required_capabilities)
        if chain is None:
            if required_capabilities:
                message = f"No registered model has capabilities {sorted(set(required_capabilities))}"
            else:
                message = "No model selected and no primary model given"
            stream.error = NoModelSelected(message)
            ctx.events.emit(GatewayEventType.STREAM_FAILED, {"reason": "no_model_selected"})
            return

        timeout = timeout_ms / 1000.0 if timeout_ms is not None else ctx.router.get_config().timeout_seconds
        primary = chain.primary
        adapter = ctx.registry.get_adapter(primary)
        model = ctx.registry.get_model(primary)
        remaining = chain.effective_sequence()
        native_error: Optional[BaseException] = None

        if (
            model is not None
            and adapter is not None
            and adapter.supports_streaming
            and ctx.router.skip_reason(primary) is None
        ):
            emitted = []
            start = time.monotonic()
            fragments = adapter.stream(model.remote_id, messages, timeout=timeout)
            try:
                async for fragment in fragments:
                    emitted.append(fragment)
                    yield fragment
            except Exception as e:
                self._record(primary, False, start)
                if emitted:
                    logger.warning(f"Stream from {primary} failed after {len(emitted)} fragments: {e}")
                    stream.error = e
                    stream.model_used = primary
                    ctx.events.emit(
                        GatewayEventType.STREAM_FAILED,
                        {"model_id": primary, "error": str(e), "fragments": len(emitted)},
                    )
                    return
                logger.info(f"Native stream from {primary} failed before first fragment: {e}")
                ctx.events.emit(
                    GatewayEventType.STREAM_FALLBACK,
                    {"model_id": primary, "reason": "stream_error", "error": str(e)},
                )
                native_error = e
                remaining = [m for m in remaining if m != primary]
            else:
                self._record(primary, True, start, text="".join(emitted))
                stream.model_used = primary
                return
            finally:
                await fragments.aclose()
        else:
            ctx.events.emit(
                GatewayEventType.STREAM_FALLBACK,
                {"model_id": primary, "reason": "no_native_stream"},
            )

        if not remaining:
            result = ExecutionResult(
                success=False,
                response=f"All 1 attempts failed. Last error: {native_error}",
                model_used="",
                attempts=1,
                total_latency_ms=0.0,
                fallbacks_used=(primary,),
                error=native_error,
            )
            stream.error = AllCandidatesExhausted(result.response, result)
            ctx.events.emit(GatewayEventType.STREAM_FAILED, {"model_id": primary, "reason": "exhausted"})
            return

        fallback_chain = ModelChain(
            primary=remaining[0],
            fallbacks=remaining[1:],
            ensemble_models=list(chain.ensemble_models),
        )
        # A failed native attempt counts against the retry budget
        result = await ctx.router.execute(
            messages,
            chain=fallback_chain,
            timeout_ms=timeout_ms,
            prior_failures=[(primary, native_error)] if native_error is not None else (),
        )
        if not result.success:
            stream.error = AllCandidatesExhausted(result.response, result)
            ctx.events.emit(
                GatewayEventType.STREAM_FAILED,
                {"model_id": primary, "reason": "exhausted", "attempts": result.attempts},
            )
            return

        stream.model_used = result.model_used
        stream.used_fallback = True
        delay = ctx.config.streaming.word_chunk_delay_seconds
        for fragment in chunk_words(result.response):
            yield fragment
            if delay:
                await asyncio.sleep(delay)

    def _record(self, model_id: str, success: bool, start: float, text: str = "") -> None:
        latency_ms = (time.monotonic() - start) * 1000
        self._context.profiler.record(
            model_id,
            HealthSample(
                model_id=model_id,
                success=success,
                latency_ms=latency_ms,
                cost=estimate_cost(model_id, len(text)) if success else 0.0,
            ),
        )
        if success:
            self._context.registry.update_performance(model_id, latency_ms)
