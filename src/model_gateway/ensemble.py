"""Ensemble verification for critical calls.

Every member model answers the same messages concurrently. The longest
answer is returned, and agreement between answers (mean pairwise Jaccard
overlap of their word sets) becomes the confidence score.
"""

import asyncio
import logging
import time
from itertools import combinations
from typing import Iterable, List, Optional, Set, Tuple

from .events import EventLog, GatewayEventType
from .fallback import ExecutionResult, estimate_cost
from .health import HealthProfiler, HealthSample
from .providers.errors import ProviderTimeout, Unavailable
from .providers.types import MessageLike, normalize_messages
from .registry import ModelRegistry

logger = logging.getLogger(__name__)

SINGLE_RESULT_CONFIDENCE = 0.7
MAX_ENSEMBLE_CONFIDENCE = 0.95
DEFAULT_ENSEMBLE_TIMEOUT = 30.0
ENSEMBLE_FAILED_MESSAGE = "Ensemble failed - no models responded"


def _tokenize(text: str) -> Set[str]:
    return set(text.lower().split())


def _jaccard_similarity(text1: str, text2: str) -> float:
    """Calculate Jaccard similarity between two texts."""
    tokens1 = _tokenize(text1)
    tokens2 = _tokenize(text2)

    if not tokens1 and not tokens2:
        return 1.0

    if not tokens1 or not tokens2:
        return 0.0

    return len(tokens1 & tokens2) / len(tokens1 | tokens2)


def ensemble_confidence(responses: List[str]) -> float:
    """Confidence from agreement between member responses.

    One response scores 0.7; more score ``0.5 + mean_jaccard * 0.5`` capped
    at 0.95.
    """
    if not responses:
        return 0.0
    if len(responses) == 1:
        return SINGLE_RESULT_CONFIDENCE

    similarities = [_jaccard_similarity(a, b) for a, b in combinations(responses, 2)]
    mean_similarity = sum(similarities) / len(similarities)
    return min(MAX_ENSEMBLE_CONFIDENCE, 0.5 + mean_similarity * 0.5)


class EnsembleExecutor:
    """Runs a set of models concurrently and merges their answers."""

    def __init__(self, registry: ModelRegistry, profiler: HealthProfiler, events: EventLog):
        self._registry = registry
        self._profiler = profiler
        self._events = events

    async def _run_member(self, model_id: str, messages: List, timeout: float) -> Tuple[str, str]:
        model = self._registry.get_model(model_id)
        adapter = self._registry.get_adapter(model_id)
        if model is None or adapter is None:
            raise Unavailable(f"Model {model_id} is not registered", model_id=model_id)

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                adapter.complete(model.remote_id, messages, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self._record(model_id, False, start)
            raise ProviderTimeout(f"Timeout after {timeout}s", provider=model.provider, model_id=model_id)
        except Exception:
            self._record(model_id, False, start)
            raise

        self._record(model_id, True, start, cost=estimate_cost(model_id, len(response)))
        return model_id, response

    def _record(self, model_id: str, success: bool, start: float, cost: float = 0.0) -> None:
        self._profiler.record(
            model_id,
            HealthSample(
                model_id=model_id,
                success=success,
                latency_ms=(time.monotonic() - start) * 1000,
                cost=cost,
            ),
        )

    async def run(
        self,
        messages: Iterable[MessageLike],
        models: Iterable[str],
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """Query every member concurrently and pick the longest answer.

        One member failing, timing out or being cancelled never affects
        the others.
        """
        chat_messages = normalize_messages(messages)
        members = list(dict.fromkeys(models))
        member_timeout = timeout if timeout is not None else DEFAULT_ENSEMBLE_TIMEOUT
        start = time.monotonic()

        logger.info(f"Running ensemble with {len(members)} models: {members}")
        results = await asyncio.gather(
            *(self._run_member(model_id, chat_messages, member_timeout) for model_id in members),
            return_exceptions=True,
        )

        successes: List[Tuple[str, str]] = []
        failed: List[str] = []
        last_error: Optional[BaseException] = None
        for model_id, result in zip(members, results):
            if isinstance(result, BaseException):
                logger.warning(f"Ensemble member {model_id} failed: {result!r}")
                failed.append(model_id)
                last_error = result
            else:
                successes.append(result)

        total_latency_ms = (time.monotonic() - start) * 1000

        if not successes:
            self._events.emit(
                GatewayEventType.ENSEMBLE_COMPLETE,
                {"success": False, "models": members, "failed": sorted(failed)},
            )
            return ExecutionResult(
                success=False,
                response=ENSEMBLE_FAILED_MESSAGE,
                model_used="",
                attempts=len(members),
                total_latency_ms=total_latency_ms,
                fallbacks_used=tuple(sorted(failed)),
                confidence_score=0.0,
                error=last_error,
            )

        # Longest wins; ties go to the smallest model id
        best_id, best_response = min(successes, key=lambda item: (-len(item[1]), item[0]))
        confidence = ensemble_confidence([response for _, response in successes])
        model_used = f"ensemble({','.join(sorted(model_id for model_id, _ in successes))})"

        self._events.emit(
            GatewayEventType.ENSEMBLE_COMPLETE,
            {
                "success": True,
                "model_used": model_used,
                "selected": best_id,
                "confidence": round(confidence, 4),
                "failed": sorted(failed),
            },
        )
        return ExecutionResult(
            success=True,
            response=best_response,
            model_used=model_used,
            attempts=len(members),
            total_latency_ms=total_latency_ms,
            fallbacks_used=tuple(sorted(failed)),
            confidence_score=confidence,
        )
