"""
RemoteStore over the AssetDesk HTTP API.

Recategorize maps to a work order status change, count adjustments to a
spare part stock transition, and audit lines to the inventory log. Reorder
stays local (inherited default).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from assetdesk.config import settings
from engine.optimistic.errors import CommitFailed, CommitTimeout
from engine.optimistic.store import RemoteStore
from engine.optimistic.types import AuditRecord

logger = logging.getLogger(__name__)


class ApiStore(RemoteStore):
    """HTTP-backed store for the optimistic engine."""

    def __init__(
        self,
        api_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        """URL and timeout default to ASSETDESK_API_URL and API_TIMEOUT_SECONDS."""
        self.api_url = (api_url or settings.API_URL).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.API_TIMEOUT_SECONDS if timeout is None else timeout)

    def _headers(self) -> dict:
        """Build request headers."""
        return {"Content-Type": "application/json", "Accept": "application/json"}

    async def _request(self, method: str, path: str, data: dict | None = None) -> Any:
        """
        Make a request and return the decoded JSON body.

        Raises:
            CommitTimeout: the server did not answer in time
            CommitFailed: transport error or non-2xx response (message is the server's detail)
        """
        url = f"{self.api_url}{path}"
        try:
            res = await self.client.request(method, url, json=data, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.warning("api_store: timeout %s %s", method, path)
            raise CommitTimeout(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            logger.warning("api_store: transport error %s %s: %s", method, path, e)
            raise CommitFailed(f"Could not reach the server: {e}") from e

        if res.is_error:
            detail = _error_detail(res)
            logger.warning("api_store: %s %s -> %d %s", method, path, res.status_code, detail)
            raise CommitFailed(detail)
        return res.json()

    # -- reads ---------------------------------------------------------------

    async def list_work_orders(self) -> list[dict]:
        return await self._request("GET", "/api/work-orders")

    async def list_spare_parts(self) -> list[dict]:
        return await self._request("GET", "/api/spare-parts")

    # -- RemoteStore ---------------------------------------------------------

    async def persist_recategorize(self, entity_id: str, target_category: str) -> dict[str, Any]:
        body = await self._request("PATCH", f"/api/work-orders/{entity_id}/status", {"status": target_category})
        return {
            "category": body["status"],
            "updated_at": body.get("updated_at"),
            "fields": {"completed_at": body.get("completed_at")},
        }

    async def persist_count_adjust(self, entity_id: str, action: str, amount: int) -> dict[str, Any]:
        body = await self._request("POST", f"/api/spare-parts/{entity_id}/stock", {"action": action, "amount": amount})
        return {
            "resulting_value": body["quantity"],
            "previous_value": body.get("previous_quantity"),
            "updated_at": body.get("updated_at"),
        }

    async def append_audit(
        self,
        entity_id: str,
        change_amount: int,
        resulting_value: int,
        action: str,
        performed_by: str | None,
    ) -> AuditRecord:
        body = await self._request(
            "POST",
            f"/api/spare-parts/{entity_id}/logs",
            {
                "change_amount": change_amount,
                "resulting_quantity": resulting_value,
                "action": action,
                "performed_by": performed_by,
            },
        )
        return AuditRecord(
            id=str(body["id"]),
            entity_id=str(body["spare_part_id"]),
            change_amount=body["change_amount"],
            resulting_value=body["resulting_quantity"],
            action=body["action"],
            performed_by=body.get("performed_by"),
            timestamp=body["created_at"],
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def _error_detail(res: httpx.Response) -> str:
    try:
        body = res.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, str) and detail:
        return detail
    if detail:
        # FastAPI validation errors come back as a list of dicts.
        return f"Request rejected ({res.status_code}): {detail}"
    return f"Request failed with status {res.status_code}"
