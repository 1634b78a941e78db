"""Work order routes. List for the board, and the status change a drop commits."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from assetdesk.models.work_order import UpdateStatusRequest, UpdateStatusResponse, WorkOrder
from assetdesk.repos.work_order_repo import WorkOrderRepo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/work-orders", tags=["work-orders"])
work_order_repo = WorkOrderRepo()


@router.get("", status_code=200)
async def list_work_orders() -> list[WorkOrder]:
    """List all work orders, newest first."""
    return await work_order_repo.list_all()


@router.patch("/{work_order_id}/status", status_code=200)
async def update_work_order_status(work_order_id: UUID, req: UpdateStatusRequest) -> UpdateStatusResponse:
    """Move a work order to another status and return the stored values."""
    wo = await work_order_repo.update_status(work_order_id, req.status)
    if not wo:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work order not found.")
    logger.info("work_orders: status updated id=%s status=%s", work_order_id, wo.status)
    return UpdateStatusResponse.from_model(wo)
