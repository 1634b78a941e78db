"""
Optimistic Engine: Shared Types

Data classes used across the cache, mutator, snapshot manager, dispatcher
and drag controller. These are the contracts that bind the engine together.

Key shapes:
- `Entity` is immutable; every change produces a new instance
- a grouped view is `dict[category, tuple[Entity, ...]]`, ordered per category
- `MutationDescriptor` describes one intended change and never changes after creation
- `SnapshotHandle` records the pre-mutation placement of the entities a mutation touches
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------


class MutationKind:
    RECATEGORIZE = "recategorize"
    REORDER = "reorder"
    ADJUST_COUNT = "adjust-count"


MUTATION_KINDS: set[str] = {
    MutationKind.RECATEGORIZE,
    MutationKind.REORDER,
    MutationKind.ADJUST_COUNT,
}


class CountAction:
    ADD = "add"
    REMOVE = "remove"
    ADJUST = "adjust"


COUNT_ACTIONS: set[str] = {CountAction.ADD, CountAction.REMOVE, CountAction.ADJUST}


class CommitState:
    IDLE = "idle"
    SPECULATING = "speculating"
    COMMITTING = "committing"
    RECONCILED = "reconciled"
    ROLLED_BACK = "rolled_back"


TERMINAL_STATES: set[str] = {CommitState.RECONCILED, CommitState.ROLLED_BACK}

# Legal state machine edges. Terminal states have no outgoing edges.
COMMIT_TRANSITIONS: dict[str, set[str]] = {
    CommitState.IDLE: {CommitState.SPECULATING},
    CommitState.SPECULATING: {CommitState.COMMITTING, CommitState.ROLLED_BACK},
    CommitState.COMMITTING: {CommitState.RECONCILED, CommitState.ROLLED_BACK},
    CommitState.RECONCILED: set(),
    CommitState.ROLLED_BACK: set(),
}


class DragPhase:
    IDLE = "idle"
    DRAGGING = "dragging"
    DRAG_OVER = "drag_over"
    DROPPED = "dropped"
    CANCELLED = "cancelled"


ACTIVE_DRAG_PHASES: set[str] = {DragPhase.DRAGGING, DragPhase.DRAG_OVER}


class NotificationKind:
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


# Entity attributes a patch may touch
PATCHABLE_FIELDS: set[str] = {"category", "count", "fields", "updated_at"}


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Entity:
    """
    One rendered record: a work order on the board, a spare part in stock.

    `category` is the grouping attribute (work-order status, storage location).
    `count` is only set for counted entities and is never negative.
    `fields` carries display data the engine does not interpret.
    """

    id: str
    category: str
    count: int | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "count": self.count,
            "fields": dict(self.fields),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Entity:
        return cls(
            id=d["id"],
            category=d["category"],
            count=d.get("count"),
            fields=dict(d.get("fields", {})),
            updated_at=d.get("updated_at"),
        )


@dataclass(frozen=True)
class Placement:
    """
    Where an entity sat in the grouped view, and what it looked like there.

    `prev_id` / `next_id` are its neighbours in the category at that moment.
    Restoring puts the entity back next to them when they are still there,
    and falls back to `index` when they are not.
    """

    entity: Entity
    category: str
    index: int
    prev_id: str | None = None
    next_id: str | None = None


@dataclass(frozen=True)
class SnapshotHandle:
    """Pre-mutation placements of the entities one mutation touches."""

    mutation_id: str
    entries: dict[str, Placement]
    taken_at: str

    @property
    def entity_ids(self) -> tuple[str, ...]:
        return tuple(self.entries)


@dataclass(frozen=True)
class MutationDescriptor:
    """
    An intended change to one entity.

    recategorize: target_category (+ optional target_index)
    reorder:      target_category (the category it is reordered in) + target_index
    adjust-count: action (add/remove/adjust) + amount
    """

    mutation_id: str
    entity_id: str
    kind: str
    target_category: str | None = None
    target_index: int | None = None
    action: str | None = None
    amount: int | None = None
    performed_by: str | None = None
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "mutation_id": self.mutation_id,
            "entity_id": self.entity_id,
            "kind": self.kind,
            "created_at": self.created_at,
        }
        if self.target_category is not None:
            d["target_category"] = self.target_category
        if self.target_index is not None:
            d["target_index"] = self.target_index
        if self.action is not None:
            d["action"] = self.action
        if self.amount is not None:
            d["amount"] = self.amount
        if self.performed_by is not None:
            d["performed_by"] = self.performed_by
        return d


@dataclass(frozen=True)
class AuditRecord:
    """Append-only inventory log line. Timestamp and id are assigned by the store."""

    id: str
    entity_id: str
    change_amount: int
    resulting_value: int
    action: str
    performed_by: str | None
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "change_amount": self.change_amount,
            "resulting_value": self.resulting_value,
            "action": self.action,
            "performed_by": self.performed_by,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AuditRecord:
        return cls(
            id=str(d["id"]),
            entity_id=str(d["entity_id"]),
            change_amount=d["change_amount"],
            resulting_value=d["resulting_value"],
            action=d["action"],
            performed_by=d.get("performed_by"),
            timestamp=d["timestamp"],
        )


@dataclass
class MutationOutcome:
    """Final result of one dispatched mutation."""

    mutation_id: str
    entity_id: str
    kind: str
    state: str
    error: str | None = None
    warning: str | None = None
    cancelled: bool = False
    authoritative: dict[str, Any] = field(default_factory=dict)
    audit_record: AuditRecord | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == CommitState.RECONCILED


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def new_mutation_id() -> str:
    return f"mut_{uuid.uuid4().hex[:12]}"
