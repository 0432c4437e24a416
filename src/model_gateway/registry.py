"""Model registry: the set of addressable models and the active selection.

The registry is rebuilt wholesale whenever credentials change. A rebuild
instantiates the static adapter table, probes every adapter's catalog
concurrently, builds a fresh model map and only then swaps it in under the
lock, so readers always see either the old snapshot or the new one.

Example:
    >>> registry = ModelRegistry(config)
    >>> await registry.rebuild({"openai": "sk-..."})
    3
    >>> registry.current_model.id
    'gpt-3.5-turbo'
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .config import GatewayConfig
from .events import EventLog, GatewayEventType
from .providers import ProviderAdapter, build_adapters
from .providers.types import ModelInfo, ModelKind, sort_discovered_models

logger = logging.getLogger(__name__)

# Preference order used when no explicit default model is configured
AUTO_SELECT_PRIORITY = [
    "llama-3.3-70b-versatile",
    "llama-3.1-70b-versatile",
    "mixtral-8x7b-32768",
    "gemini-2.0-flash",
    "gemini-1.5-flash-latest",
    "gemini-1.5-pro-latest",
    "claude-3-opus",
    "gpt-4-turbo",
    "claude-3-sonnet",
    "gpt-3.5-turbo",
]

AdapterFactory = Callable[[Mapping[str, Optional[str]]], List[ProviderAdapter]]


@dataclass
class RegistrySnapshot:
    """Immutable-by-convention view swapped in by ``rebuild``."""

    models: Dict[str, ModelInfo] = field(default_factory=dict)
    adapters: Dict[str, ProviderAdapter] = field(default_factory=dict)
    built_at: Optional[datetime] = None


class ModelRegistry:
    """Thread-safe registry of models, adapters and the current selection.

    Args:
        config: Gateway configuration (default model, discovery timeouts)
        events: Event log for registry events
        adapter_factory: Builds adapters from credentials. Defaults to the
            static provider table.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        events: Optional[EventLog] = None,
        adapter_factory: Optional[AdapterFactory] = None,
    ):
        self._config = config or GatewayConfig()
        self._events = events
        self._adapter_factory = adapter_factory or (
            lambda credentials: build_adapters(credentials, self._config)
        )
        self._snapshot = RegistrySnapshot()
        self._current: Optional[ModelInfo] = None
        self._lock = threading.Lock()
        self._generation = 0

    async def rebuild(self, credentials: Mapping[str, Optional[str]]) -> int:
        """Rebuild the registry from credentials.

        Probe failures are logged and the failing adapter contributes no
        models. Safe to call repeatedly. When rebuilds overlap, only the most
        recently started one is installed; an older one that finishes later
        is discarded.

        Returns:
            Number of models registered by this rebuild
        """
        with self._lock:
            self._generation += 1
            generation = self._generation

        adapters = self._adapter_factory(credentials)
        catalogs = await asyncio.gather(*(self._probe(adapter) for adapter in adapters))

        models: Dict[str, ModelInfo] = {}
        adapter_map: Dict[str, ProviderAdapter] = {}
        for adapter, catalog in zip(adapters, catalogs):
            adapter_map.setdefault(adapter.provider_name, adapter)
            for model in catalog:
                if model.id in models:
                    logger.warning(
                        f"Duplicate model id {model.id} from {model.provider}, "
                        f"keeping {models[model.id].provider}"
                    )
                    continue
                models[model.id] = model

        snapshot = RegistrySnapshot(
            models=models,
            adapters=adapter_map,
            built_at=datetime.now(timezone.utc),
        )
        current: Optional[ModelInfo] = None
        with self._lock:
            stale = generation != self._generation
            if not stale:
                self._snapshot = snapshot
                self._current = self._pick(snapshot.models)
                current = self._current

        if stale:
            logger.info(f"Discarding rebuild {generation}, superseded by rebuild {self._generation}")
            return len(models)

        logger.info(f"Registry rebuilt: {len(models)} models from {len(adapter_map)} providers")
        self._emit(
            GatewayEventType.REGISTRY_REBUILT,
            {"model_count": len(models), "providers": sorted(adapter_map)},
        )
        self._announce(current)
        return len(models)

    async def _probe(self, adapter: ProviderAdapter) -> List[ModelInfo]:
        timeout = None
        if adapter.kind == ModelKind.LOCAL:
            timeout = self._config.discovery.probe_timeout_seconds
        try:
            catalog = await asyncio.wait_for(adapter.list_models(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info(f"{adapter.provider_name} not reachable within {timeout}s")
            return []
        except Exception as e:
            logger.warning(f"Model discovery failed for {adapter.provider_name}: {e}")
            return []
        logger.debug(f"{adapter.provider_name}: {len(catalog)} models")
        return catalog

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, model_id: str) -> bool:
        """Make ``model_id`` the active model. Returns False if unknown or unavailable."""
        with self._lock:
            model = self._snapshot.models.get(model_id)
            if model is None or not model.available:
                return False
            self._current = model
        self._emit(GatewayEventType.MODEL_SELECTED, {"model_id": model_id, "provider": model.provider})
        return True

    def auto_select(self) -> Optional[ModelInfo]:
        """Pick the active model from preference, priority list, then local models."""
        with self._lock:
            self._current = self._pick(self._snapshot.models)
            current = self._current
        self._announce(current)
        return current

    def _pick(self, models: Dict[str, ModelInfo]) -> Optional[ModelInfo]:
        preference = self._config.default_model
        preferred = [] if preference == "auto" else [preference]
        for model_id in [*preferred, *AUTO_SELECT_PRIORITY]:
            model = models.get(model_id)
            if model is not None and model.available:
                return model
        for model in models.values():
            if model.kind == ModelKind.LOCAL and model.available:
                return model
        return None

    def _announce(self, current: Optional[ModelInfo]) -> None:
        if current is None:
            logger.warning("No models available for auto-selection")
            return
        self._emit(GatewayEventType.MODEL_SELECTED, {"model_id": current.id, "provider": current.provider})

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def current_model(self) -> Optional[ModelInfo]:
        with self._lock:
            return self._current

    def get_model(self, model_id: str) -> Optional[ModelInfo]:
        with self._lock:
            return self._snapshot.models.get(model_id)

    def get_adapter(self, model_id: str) -> Optional[ProviderAdapter]:
        """Return the adapter serving ``model_id``, or None if unregistered."""
        with self._lock:
            model = self._snapshot.models.get(model_id)
            if model is None:
                return None
            return self._snapshot.adapters.get(model.provider)

    def list_models(self) -> List[ModelInfo]:
        with self._lock:
            return list(self._snapshot.models.values())

    def find_models(self, capabilities: Iterable[str]) -> List[ModelInfo]:
        """Available models carrying every tag in ``capabilities``."""
        required = set(capabilities)
        with self._lock:
            return [
                m for m in self._snapshot.models.values() if m.available and required <= set(m.capabilities)
            ]

    def has_capabilities(self, model_id: str, capabilities: Iterable[str]) -> bool:
        model = self.get_model(model_id)
        return model is not None and set(capabilities) <= set(model.capabilities)

    def update_performance(self, model_id: str, latency_ms: float) -> None:
        """Fold a successful call's latency into the model's running average."""
        with self._lock:
            model = self._snapshot.models.get(model_id)
            if model is None:
                return
            perf = model.performance
            if perf.avg_latency_ms:
                perf.avg_latency_ms = (perf.avg_latency_ms + latency_ms) / 2
            else:
                perf.avg_latency_ms = latency_ms
            perf.last_used = datetime.now(timezone.utc)

    def _emit(self, event_type: GatewayEventType, data: Dict) -> None:
        if self._events is not None:
            self._events.emit(event_type, data)


__all__ = [
    "AUTO_SELECT_PRIORITY",
    "ModelRegistry",
    "RegistrySnapshot",
    "sort_discovered_models",
]
