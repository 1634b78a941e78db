"""
Pytest configuration and fixtures for AssetDesk service tests.

Route tests run against the ASGI app with the repositories patched, so no
database is needed.
"""

from __future__ import annotations

import os

# Set test environment variables before importing config
os.environ.setdefault("TESTING", "true")

from datetime import UTC, datetime  # noqa: E402
from decimal import Decimal  # noqa: E402
from uuid import uuid4  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from assetdesk.main import app  # noqa: E402
from assetdesk.models.spare_part import InventoryLog, SparePart  # noqa: E402
from assetdesk.models.work_order import WorkOrder  # noqa: E402


@pytest_asyncio.fixture
async def async_client():
    """Async HTTP client against the ASGI app."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def work_order():
    now = datetime.now(UTC)
    return WorkOrder(
        id=uuid4(),
        work_order_number="WO-1001",
        title="Replace pump seal",
        priority="High",
        status="Open",
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def spare_part():
    now = datetime.now(UTC)
    return SparePart(
        id=uuid4(),
        part_name="Bearing 6204",
        part_number="BRG-6204",
        quantity=10,
        storage_location="Shelf A",
        minimum_threshold=3,
        unit_cost=Decimal("12.50"),
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def inventory_log(spare_part):
    return InventoryLog(
        id=uuid4(),
        spare_part_id=spare_part.id,
        change_amount=-2,
        resulting_quantity=8,
        action="remove",
        performed_by="tech@plant",
        created_at=datetime.now(UTC),
    )
