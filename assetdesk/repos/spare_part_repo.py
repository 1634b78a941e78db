"""Repository for spare part operations."""

from __future__ import annotations

from uuid import UUID

import asyncpg

from assetdesk.db import conn
from assetdesk.models.spare_part import SparePart


class InsufficientStock(Exception):
    """A remove asked for more units than the part has on hand."""

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock: only {available} available")


def _row_to_spare_part(row: asyncpg.Record) -> SparePart:
    """Convert a database row to a SparePart model."""
    return SparePart(
        id=row["id"],
        part_name=row["part_name"],
        part_number=row["part_number"],
        quantity=row["quantity"],
        asset_id=row["asset_id"],
        description=row["description"] or "",
        supplier=row["supplier"] or "",
        storage_location=row["storage_location"] or "",
        minimum_threshold=row["minimum_threshold"],
        reorder_quantity=row["reorder_quantity"],
        unit_cost=row["unit_cost"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SparePartRepo:
    """All spare-part database operations."""

    async def list_all(self) -> list[SparePart]:
        """List every spare part ordered by name."""
        async with conn() as c:
            rows = await c.fetch("SELECT * FROM spare_parts ORDER BY part_name")
            return [_row_to_spare_part(r) for r in rows]

    async def get(self, part_id: UUID) -> SparePart | None:
        async with conn() as c:
            row = await c.fetchrow("SELECT * FROM spare_parts WHERE id = $1", part_id)
            return _row_to_spare_part(row) if row else None

    async def adjust_stock(self, part_id: UUID, action: str, amount: int) -> tuple[SparePart, int] | None:
        """
        Apply a stock transition to the current quantity.

        The row is locked for the duration of the transaction, so concurrent
        transitions against the same part serialize and each one is computed
        from the value the previous one left behind.

        Args:
            part_id: Spare part UUID
            action: "add", "remove" or "adjust"
            amount: Non-negative quantity

        Returns:
            (updated part, previous quantity), or None if no such part exists

        Raises:
            InsufficientStock: if a remove exceeds the quantity on hand
            ValueError: on an unknown action
        """
        async with conn() as c:
            current = await c.fetchval(
                "SELECT quantity FROM spare_parts WHERE id = $1 FOR UPDATE",
                part_id,
            )
            if current is None:
                return None

            if action == "add":
                new_quantity = current + amount
            elif action == "remove":
                if amount > current:
                    raise InsufficientStock(current, amount)
                new_quantity = current - amount
            elif action == "adjust":
                new_quantity = amount
            else:
                raise ValueError(f"Unknown stock action: {action}")

            row = await c.fetchrow(
                """
                UPDATE spare_parts
                SET quantity = $2, updated_at = now()
                WHERE id = $1
                RETURNING *
                """,
                part_id,
                new_quantity,
            )
            return _row_to_spare_part(row), current
