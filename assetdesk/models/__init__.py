"""
Pydantic models for AssetDesk.

All data shapes defined here. No imports from db, repos, or routes.
"""

from assetdesk.models.spare_part import (
    CreateInventoryLogRequest,
    InventoryLog,
    SparePart,
    StockAdjustRequest,
    StockAdjustResponse,
)
from assetdesk.models.work_order import UpdateStatusRequest, UpdateStatusResponse, WorkOrder

__all__ = [
    # Work order models
    "WorkOrder",
    "UpdateStatusRequest",
    "UpdateStatusResponse",
    # Spare part models
    "SparePart",
    "StockAdjustRequest",
    "StockAdjustResponse",
    # Inventory log models
    "InventoryLog",
    "CreateInventoryLogRequest",
]
