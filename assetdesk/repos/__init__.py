"""
Repository layer. SQL lives here and nowhere else.

Each repo returns pydantic models, never raw asyncpg records.
"""

from assetdesk.repos.inventory_log_repo import InventoryLogRepo
from assetdesk.repos.spare_part_repo import InsufficientStock, SparePartRepo
from assetdesk.repos.work_order_repo import WorkOrderRepo

__all__ = ["WorkOrderRepo", "SparePartRepo", "InsufficientStock", "InventoryLogRepo"]
