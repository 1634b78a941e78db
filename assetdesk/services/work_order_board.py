"""
Work order kanban board.

Cards are grouped by status. Dragging a card to another column, or pressing
one of the card buttons, moves it at once and commits the status change in
the background; a rejected change puts the card back.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from assetdesk.config import settings
from engine.optimistic.cache import EntityCache
from engine.optimistic.dispatcher import CommitDispatcher, CommitTicket
from engine.optimistic.drag import DragController
from engine.optimistic.errors import EntityNotFound
from engine.optimistic.mutations import make_recategorize
from engine.optimistic.notifications import Notifier
from engine.optimistic.store import RemoteStore
from engine.optimistic.types import Entity, MutationDescriptor, MutationKind

logger = logging.getLogger(__name__)

# (column title, work order status), in display order. Cancelled orders are not on the board.
BOARD_COLUMNS: tuple[tuple[str, str], ...] = (
    ("Backlog", "Open"),
    ("Scheduled", "On Hold"),
    ("In Progress", "In Progress"),
    ("Completed", "Completed"),
)
BOARD_STATUSES: tuple[str, ...] = tuple(status for _, status in BOARD_COLUMNS)
COLUMN_TITLES: dict[str, str] = {status: title for title, status in BOARD_COLUMNS}

# Display data carried on each card
CARD_FIELDS = (
    "work_order_number",
    "title",
    "priority",
    "work_order_type",
    "asset_id",
    "assigned_to",
    "due_date",
    "completed_at",
)

FAILURE_PREFIX = "Failed to update work order"


def work_order_entity(record: dict[str, Any]) -> Entity:
    """Turn a work order from the API into a board card."""
    return Entity(
        id=str(record["id"]),
        category=record["status"],
        fields={k: record[k] for k in CARD_FIELDS if k in record},
        updated_at=record.get("updated_at"),
    )


def _drop_message(descriptor: MutationDescriptor) -> str | None:
    if descriptor.kind == MutationKind.RECATEGORIZE:
        return f"Work order moved to {COLUMN_TITLES.get(descriptor.target_category, descriptor.target_category)}"
    return None


class WorkOrderBoard:
    """The board's cache, its dispatcher and its drag controller."""

    def __init__(self, store: RemoteStore, notifier: Notifier | None = None, *, commit_timeout: float | None = None):
        if commit_timeout is None:
            commit_timeout = settings.COMMIT_TIMEOUT_SECONDS
        self.store = store
        self.cache = EntityCache(categories=BOARD_STATUSES)
        self.dispatcher = CommitDispatcher(self.cache, store, notifier, commit_timeout=commit_timeout)
        self.drag = DragController(
            self.dispatcher,
            categories=BOARD_STATUSES,
            message_for=_drop_message,
            failure_prefix=FAILURE_PREFIX,
        )

    def load(self, records: list[dict[str, Any]]) -> int:
        """Replace the board with a fresh list of work orders. Returns the number of cards shown."""
        cards = [work_order_entity(r) for r in records if r.get("status") in BOARD_STATUSES]
        self.dispatcher.reload(cards)
        logger.info("board: loaded %d cards (%d skipped)", len(cards), len(records) - len(cards))
        return len(cards)

    def columns(self) -> list[tuple[str, str, tuple[Entity, ...]]]:
        """[(column title, status, cards)] in display order."""
        return [(title, status, self.cache.by_category(status)) for title, status in BOARD_COLUMNS]

    def start_work(self, work_order_id: str, *, performed_by: str | None = None) -> CommitTicket | None:
        """The card's Start Work button."""
        return self._move(work_order_id, "In Progress", performed_by)

    def complete(self, work_order_id: str, *, performed_by: str | None = None) -> CommitTicket | None:
        """The card's Complete button."""
        return self._move(work_order_id, "Completed", performed_by)

    def _move(self, work_order_id: str, status: str, performed_by: str | None) -> CommitTicket | None:
        card = self.cache.get(work_order_id)
        if card is None:
            raise EntityNotFound(work_order_id)
        if card.category == status:
            return None
        descriptor = make_recategorize(work_order_id, status, performed_by=performed_by)
        return self.dispatcher.dispatch(
            descriptor,
            success_message=_drop_message(descriptor),
            failure_prefix=FAILURE_PREFIX,
        )

    def status_counts(self) -> dict[str, int]:
        """Header counters: pending (open or on hold), in progress, completed."""
        counts = Counter(card.category for card in self.cache)
        return {
            "pending": counts["Open"] + counts["On Hold"],
            "in_progress": counts["In Progress"],
            "completed": counts["Completed"],
        }

    async def close(self) -> None:
        await self.dispatcher.close()
