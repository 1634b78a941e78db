"""
AssetDesk FastAPI application.

Entry point for the API server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from assetdesk import db
from assetdesk.config import settings
from assetdesk.routes import spare_parts as spare_part_routes
from assetdesk.routes import work_orders as work_order_routes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown logic:
    - Configure logging
    - Initialize database pool
    - Close database pool on shutdown
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Startup
    await db.init_pool()
    logger.info("main: database pool initialized env=%s", settings.ENVIRONMENT)

    yield

    # Shutdown
    await db.close_pool()
    logger.info("main: database pool closed")


app = FastAPI(
    title="AssetDesk",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
)

# Register routes
app.include_router(work_order_routes.router)
app.include_router(spare_part_routes.router)


@app.get("/health")
async def health():
    """Health check endpoint for uptime monitoring."""
    return {"status": "ok"}
