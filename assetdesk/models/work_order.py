"""Work order models for the maintenance board."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel

WorkOrderStatus = Literal["Open", "In Progress", "On Hold", "Completed", "Cancelled"]
WorkOrderPriority = Literal["Low", "Medium", "High", "Critical"]
WorkOrderType = Literal["Preventive", "Corrective", "Inspection", "Warranty", "Emergency"]


class WorkOrder(BaseModel):
    """Core work order model. Represents a row in the work_orders table."""

    id: UUID
    work_order_number: str
    title: str
    description: str | None = None
    asset_id: UUID | None = None
    priority: WorkOrderPriority = "Medium"
    status: WorkOrderStatus = "Open"
    work_order_type: WorkOrderType | None = None
    assigned_to: UUID | None = None
    due_date: datetime | None = None
    estimated_cost: Decimal | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class UpdateStatusRequest(BaseModel):
    """What the board sends when a card lands in another column."""

    model_config = {"extra": "forbid"}

    status: WorkOrderStatus


class UpdateStatusResponse(BaseModel):
    """Authoritative values after a status change."""

    id: UUID
    status: WorkOrderStatus
    completed_at: datetime | None = None
    updated_at: datetime

    @classmethod
    def from_model(cls, wo: WorkOrder) -> UpdateStatusResponse:
        return cls(id=wo.id, status=wo.status, completed_at=wo.completed_at, updated_at=wo.updated_at)
