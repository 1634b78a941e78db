"""Spare part and inventory log models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

StockAction = Literal["add", "remove", "adjust"]


class SparePart(BaseModel):
    """Core spare part model. Represents a row in the spare_parts table."""

    id: UUID
    part_name: str
    part_number: str
    quantity: int = Field(ge=0)
    asset_id: UUID | None = None
    description: str = ""
    supplier: str = ""
    storage_location: str = ""
    minimum_threshold: int = 0
    reorder_quantity: int = 0
    unit_cost: Decimal = Decimal("0")
    created_at: datetime
    updated_at: datetime


class StockAdjustRequest(BaseModel):
    """
    An intended stock transition. The server applies it to its own current
    quantity; clients never send the absolute value they expect.
    """

    model_config = {"extra": "forbid"}

    action: StockAction
    amount: int = Field(ge=0)


class StockAdjustResponse(BaseModel):
    """Authoritative quantity after a stock transition."""

    id: UUID
    quantity: int
    previous_quantity: int
    updated_at: datetime


class CreateInventoryLogRequest(BaseModel):
    """Audit line for a stock transition that has already been applied."""

    model_config = {"extra": "forbid"}

    change_amount: int
    resulting_quantity: int = Field(ge=0)
    action: StockAction
    performed_by: str | None = None


class InventoryLog(BaseModel):
    """Row in the append-only inventory_logs table."""

    id: UUID
    spare_part_id: UUID
    change_amount: int
    resulting_quantity: int
    action: StockAction
    performed_by: str | None = None
    created_at: datetime
