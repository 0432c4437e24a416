"""Provider-agnostic types shared by adapters, the registry and the router."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union


class ModelKind(Enum):
    """Where a model runs."""

    CLOUD = "cloud"
    LOCAL = "local"


@dataclass
class ChatMessage:
    """A single chat message.

    ``role`` is one of "system", "user", "assistant". The legacy role
    "agent" is accepted and treated as "assistant".
    """

    role: str
    content: str

    def normalized_role(self) -> str:
        return "assistant" if self.role == "agent" else self.role

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.normalized_role(), "content": self.content}


MessageLike = Union[ChatMessage, Dict[str, Any]]


def normalize_messages(messages: Iterable[MessageLike]) -> List[ChatMessage]:
    """Coerce dicts and ChatMessage instances into ChatMessage objects.

    Args:
        messages: Messages as ChatMessage or {"role", "content"} dicts

    Returns:
        List of ChatMessage with roles normalized
    """
    result = []
    for msg in messages:
        if isinstance(msg, ChatMessage):
            result.append(ChatMessage(role=msg.normalized_role(), content=msg.content))
        else:
            role = msg.get("role", "user")
            result.append(
                ChatMessage(
                    role="assistant" if role == "agent" else role,
                    content=str(msg.get("content", "")),
                )
            )
    return result


@dataclass
class ModelPerformance:
    """Rolling performance figures for one model."""

    avg_latency_ms: float = 0.0
    last_used: Optional[datetime] = None
    accuracy: float = 0.9


@dataclass
class ModelInfo:
    """Identity and metadata for one addressable model.

    Attributes:
        id: Registry key, unique across all providers
        provider: Name of the provider adapter serving this model
        name: Human-readable display name
        kind: Cloud or local
        available: Whether the model may be selected
        remote_id: Identifier sent upstream (defaults to ``id``)
        capabilities: Capability tags (text, vision, code, long-context)
        performance: Rolling latency / usage stats
    """

    id: str
    provider: str
    name: str = ""
    kind: ModelKind = ModelKind.CLOUD
    available: bool = True
    remote_id: Optional[str] = None
    capabilities: List[str] = field(default_factory=lambda: ["text"])
    performance: ModelPerformance = field(default_factory=ModelPerformance)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id
        if self.remote_id is None:
            self.remote_id = self.id

    @property
    def is_local(self) -> bool:
        return self.kind == ModelKind.LOCAL


# Tier rank used when ordering discovered catalogs
TIER_RANK = {"pro": 0, "flash": 1, "nano": 2, "other": 3}


@dataclass
class DiscoveredModel:
    """A catalog entry reported by a provider's model listing endpoint."""

    id: str
    name: str
    is_paid: bool = False
    tier: str = "other"
    version: str = "1.0"
    capabilities: List[str] = field(default_factory=lambda: ["text"])


def _version_key(version: str) -> float:
    try:
        return float(version)
    except ValueError:
        return 0.0


def sort_discovered_models(models: Iterable[DiscoveredModel]) -> List[DiscoveredModel]:
    """Order a discovered catalog best-first.

    Paid tier before free tier; within a tier newer version first, then
    tier rank (pro, flash, nano, other), then id so the order is total.
    """
    return sorted(
        models,
        key=lambda m: (
            0 if m.is_paid else 1,
            -_version_key(m.version),
            TIER_RANK.get(m.tier, TIER_RANK["other"]),
            m.id,
        ),
    )
