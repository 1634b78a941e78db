"""
Spare part inventory with optimistic stock updates.

Parts are grouped by storage location. A stock change shows immediately,
commits as an add / remove / adjust transition against the stored quantity,
and on success is written to the inventory log.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from assetdesk.config import settings
from engine.optimistic.audit import AuditAppender
from engine.optimistic.cache import EntityCache
from engine.optimistic.dispatcher import CommitDispatcher, CommitTicket
from engine.optimistic.errors import EntityNotFound, MutationRejected
from engine.optimistic.mutations import make_count_adjustment
from engine.optimistic.notifications import Notifier
from engine.optimistic.store import RemoteStore
from engine.optimistic.types import Entity

logger = logging.getLogger(__name__)

UNASSIGNED_LOCATION = "Unassigned"

IN_STOCK = "In Stock"
LOW_STOCK = "Low Stock"
OUT_OF_STOCK = "Out of Stock"

PART_FIELDS = (
    "part_name",
    "part_number",
    "supplier",
    "minimum_threshold",
    "reorder_quantity",
    "unit_cost",
    "asset_id",
)


def stock_status(quantity: int, minimum_threshold: int) -> str:
    if quantity == 0:
        return OUT_OF_STOCK
    if quantity <= minimum_threshold:
        return LOW_STOCK
    return IN_STOCK


def spare_part_entity(record: dict[str, Any]) -> Entity:
    """Turn a spare part from the API into a counted entity."""
    return Entity(
        id=str(record["id"]),
        category=record.get("storage_location") or UNASSIGNED_LOCATION,
        count=int(record["quantity"]),
        fields={k: record[k] for k in PART_FIELDS if k in record},
        updated_at=record.get("updated_at"),
    )


# Engine rejection codes, worded as the stock form shows them
_FORM_MESSAGES = {
    "INVALID_AMOUNT": "Enter a valid non-negative number.",
    "NEGATIVE_AMOUNT": "Enter a valid non-negative number.",
    "INSUFFICIENT_COUNT": "Cannot remove {amount}, only {available} in stock",
}


def _threshold(part: Entity) -> int:
    return int(part.fields.get("minimum_threshold") or 0)


def _unit_cost(part: Entity) -> Decimal:
    # Decimal columns arrive as JSON strings.
    return Decimal(str(part.fields.get("unit_cost") or 0))


class InventoryLedger:
    """Stock levels for every spare part, kept in one optimistic cache."""

    def __init__(
        self,
        store: RemoteStore,
        notifier: Notifier | None = None,
        *,
        commit_timeout: float | None = None,
        audit_retry_attempts: int | None = None,
        audit_retry_delay: float | None = None,
        low_stock_limit: int | None = None,
    ):
        """Options left as None come from settings."""
        if commit_timeout is None:
            commit_timeout = settings.COMMIT_TIMEOUT_SECONDS
        if audit_retry_attempts is None:
            audit_retry_attempts = settings.AUDIT_RETRY_ATTEMPTS
        if audit_retry_delay is None:
            audit_retry_delay = settings.AUDIT_RETRY_DELAY_SECONDS
        self.store = store
        self.low_stock_limit = settings.LOW_STOCK_ALERT_LIMIT if low_stock_limit is None else low_stock_limit
        self.cache = EntityCache()
        self.audit = AuditAppender(store, retry_attempts=audit_retry_attempts, retry_delay=audit_retry_delay)
        self.dispatcher = CommitDispatcher(
            self.cache,
            store,
            notifier,
            audit=self.audit,
            commit_timeout=commit_timeout,
        )

    def load(self, records: list[dict[str, Any]]) -> int:
        """Replace the ledger with a fresh list of spare parts."""
        parts = [spare_part_entity(r) for r in records]
        self.dispatcher.reload(parts)
        logger.info("inventory: loaded %d parts in %d locations", len(parts), len(self.cache.categories))
        return len(parts)

    def adjust_stock(
        self,
        part_id: str,
        action: str,
        amount: int,
        *,
        performed_by: str | None = None,
    ) -> CommitTicket:
        """
        Add, remove or set the stock of one part.

        Raises:
            EntityNotFound: no such part is loaded
            MutationRejected: the amount is not a non-negative whole number, or
                a remove asks for more than is in stock. Nothing is applied.
        """
        descriptor = make_count_adjustment(part_id, action, amount, performed_by=performed_by)
        try:
            return self.dispatcher.dispatch(descriptor, failure_prefix="Failed to update stock")
        except MutationRejected as e:
            message = _FORM_MESSAGES.get(e.code)
            if message is None:
                raise
            available = self.cache.get(part_id).count
            raise MutationRejected(e.code, message.format(amount=amount, available=available)) from e

    def status(self, part_id: str) -> str:
        part = self.cache.get(part_id)
        if part is None:
            raise EntityNotFound(part_id)
        return stock_status(part.count, _threshold(part))

    def low_stock(self) -> list[Entity]:
        """Parts that are running low but not yet out, lowest first."""
        low = [p for p in self.cache if 0 < p.count <= _threshold(p)]
        low.sort(key=lambda p: p.count)
        return low[: self.low_stock_limit]

    def stats(self) -> dict[str, Any]:
        parts = list(self.cache)
        return {
            "total_parts": len(parts),
            "low_stock_parts": sum(1 for p in parts if 0 < p.count <= _threshold(p)),
            "out_of_stock_parts": sum(1 for p in parts if p.count == 0),
            "total_value": sum((p.count * _unit_cost(p) for p in parts), Decimal("0")),
        }

    async def close(self) -> None:
        await self.dispatcher.close()
