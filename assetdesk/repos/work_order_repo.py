"""Repository for work order operations."""

from __future__ import annotations

from uuid import UUID

import asyncpg

from assetdesk.db import conn
from assetdesk.models.work_order import WorkOrder


def _row_to_work_order(row: asyncpg.Record) -> WorkOrder:
    """Convert a database row to a WorkOrder model."""
    return WorkOrder(
        id=row["id"],
        work_order_number=row["work_order_number"],
        title=row["title"],
        description=row["description"],
        asset_id=row["asset_id"],
        priority=row["priority"],
        status=row["status"],
        work_order_type=row["work_order_type"],
        assigned_to=row["assigned_to"],
        due_date=row["due_date"],
        estimated_cost=row["estimated_cost"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class WorkOrderRepo:
    """All work-order database operations."""

    async def list_all(self) -> list[WorkOrder]:
        """
        List every work order, newest first.

        Returns:
            List of WorkOrder models
        """
        async with conn() as c:
            rows = await c.fetch("SELECT * FROM work_orders ORDER BY created_at DESC")
            return [_row_to_work_order(r) for r in rows]

    async def get(self, work_order_id: UUID) -> WorkOrder | None:
        async with conn() as c:
            row = await c.fetchrow("SELECT * FROM work_orders WHERE id = $1", work_order_id)
            return _row_to_work_order(row) if row else None

    async def update_status(self, work_order_id: UUID, status: str) -> WorkOrder | None:
        """
        Move a work order to a new status.

        completed_at is stamped the first time the order reaches Completed
        and left untouched afterwards.

        Args:
            work_order_id: Work order UUID
            status: Target status

        Returns:
            Updated WorkOrder, or None if no such order exists
        """
        async with conn() as c:
            row = await c.fetchrow(
                """
                UPDATE work_orders
                SET status = $2,
                    completed_at = CASE
                        WHEN $2 = 'Completed' THEN COALESCE(completed_at, now())
                        ELSE completed_at
                    END,
                    updated_at = now()
                WHERE id = $1
                RETURNING *
                """,
                work_order_id,
                status,
            )
            return _row_to_work_order(row) if row else None
