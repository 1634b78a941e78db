"""Repository for the append-only inventory log."""

from __future__ import annotations

from uuid import UUID, uuid4

import asyncpg

from assetdesk.db import conn
from assetdesk.models.spare_part import CreateInventoryLogRequest, InventoryLog


def _row_to_log(row: asyncpg.Record) -> InventoryLog:
    return InventoryLog(
        id=row["id"],
        spare_part_id=row["spare_part_id"],
        change_amount=row["change_amount"],
        resulting_quantity=row["resulting_quantity"],
        action=row["action"],
        performed_by=row["performed_by"],
        created_at=row["created_at"],
    )


class InventoryLogRepo:
    """Inventory log operations. Rows are only ever inserted."""

    async def append(self, part_id: UUID, req: CreateInventoryLogRequest) -> InventoryLog:
        """
        Record a stock transition that has already been applied.

        Args:
            part_id: Spare part UUID
            req: The change, the resulting quantity and who made it

        Returns:
            The stored log row
        """
        async with conn() as c:
            row = await c.fetchrow(
                """
                INSERT INTO inventory_logs
                    (id, spare_part_id, change_amount, resulting_quantity, action, performed_by, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, now())
                RETURNING *
                """,
                uuid4(),
                part_id,
                req.change_amount,
                req.resulting_quantity,
                req.action,
                req.performed_by,
            )
            return _row_to_log(row)

    async def list_for_part(self, part_id: UUID, limit: int = 100) -> list[InventoryLog]:
        """Most recent log rows for a part, newest first."""
        async with conn() as c:
            rows = await c.fetch(
                """
                SELECT * FROM inventory_logs
                WHERE spare_part_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                part_id,
                limit,
            )
            return [_row_to_log(r) for r in rows]
