"""Spare part routes. Listing, stock transitions and the inventory log."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from assetdesk.models.spare_part import (
    CreateInventoryLogRequest,
    InventoryLog,
    SparePart,
    StockAdjustRequest,
    StockAdjustResponse,
)
from assetdesk.repos.inventory_log_repo import InventoryLogRepo
from assetdesk.repos.spare_part_repo import InsufficientStock, SparePartRepo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/spare-parts", tags=["spare-parts"])
spare_part_repo = SparePartRepo()
inventory_log_repo = InventoryLogRepo()


@router.get("", status_code=200)
async def list_spare_parts() -> list[SparePart]:
    """List all spare parts ordered by name."""
    return await spare_part_repo.list_all()


@router.post("/{part_id}/stock", status_code=200)
async def adjust_stock(part_id: UUID, req: StockAdjustRequest) -> StockAdjustResponse:
    """
    Apply a stock transition to the stored quantity.

    The response carries both the new and the previous quantity so the
    caller can derive the applied change without trusting its own cache.
    """
    try:
        result = await spare_part_repo.adjust_stock(part_id, req.action, req.amount)
    except InsufficientStock as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Spare part not found.")

    part, previous = result
    logger.info(
        "spare_parts: stock %s id=%s amount=%d %d->%d",
        req.action,
        part_id,
        req.amount,
        previous,
        part.quantity,
    )
    return StockAdjustResponse(
        id=part.id,
        quantity=part.quantity,
        previous_quantity=previous,
        updated_at=part.updated_at,
    )


@router.post("/{part_id}/logs", status_code=201)
async def create_inventory_log(part_id: UUID, req: CreateInventoryLogRequest) -> InventoryLog:
    """Append one line to the part's inventory log."""
    part = await spare_part_repo.get(part_id)
    if not part:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Spare part not found.")
    return await inventory_log_repo.append(part_id, req)


@router.get("/{part_id}/logs", status_code=200)
async def list_inventory_logs(part_id: UUID, limit: int = 100) -> list[InventoryLog]:
    """Recent inventory log lines for a part, newest first."""
    return await inventory_log_repo.list_for_part(part_id, limit=limit)
