"""
Optimistic Engine: Remote Store Protocol

The engine's only persistence boundary. Every method is async and either
returns a plain dict of authoritative values or raises CommitFailed.

Implement against the AssetDesk API for production (assetdesk.services.api_store),
or use MemoryStore in tests.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

from engine.optimistic.errors import CommitFailed
from engine.optimistic.mutator import next_count
from engine.optimistic.types import COUNT_ACTIONS, AuditRecord, CountAction, now_iso


class RemoteStore:
    """
    Abstract persistence interface.

    Result dicts:
      persist_recategorize → {"category", "updated_at"?, "fields"?}
      persist_reorder      → {}
      persist_count_adjust → {"resulting_value", "previous_value"?, "updated_at"?}
    """

    async def persist_recategorize(self, entity_id: str, target_category: str) -> dict[str, Any]:
        raise NotImplementedError

    async def persist_reorder(self, entity_id: str, target_category: str, target_index: int) -> dict[str, Any]:
        """Intra-category order is not stored remotely; reordering is local only."""
        return {}

    async def persist_count_adjust(self, entity_id: str, action: str, amount: int) -> dict[str, Any]:
        raise NotImplementedError

    async def append_audit(
        self,
        entity_id: str,
        change_amount: int,
        resulting_value: int,
        action: str,
        performed_by: str | None,
    ) -> AuditRecord:
        raise NotImplementedError


@dataclass
class HeldCall:
    """A store call parked by MemoryStore.hold until a test releases it."""

    method: str
    args: tuple[Any, ...]
    future: asyncio.Future = field(repr=False)


class MemoryStore(RemoteStore):
    """
    In-memory store for testing.

    `records` is the authoritative state: {entity_id: {"category", "count", "fields", "updated_at"}}.
    Set `hold = True` to park every call until `release()` is called, which
    lets tests resolve commits in any order. `fail_next(method, exc)` makes
    the next call of that method raise.
    """

    def __init__(self, records: dict[str, dict[str, Any]] | None = None) -> None:
        self.records: dict[str, dict[str, Any]] = {k: dict(v) for k, v in (records or {}).items()}
        self.audit_log: list[AuditRecord] = []
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.hold = False
        self.held: list[HeldCall] = []
        self._failures: dict[str, list[BaseException]] = {}

    # -- test controls -------------------------------------------------------

    def fail_next(self, method: str, exc: BaseException | None = None) -> None:
        self._failures.setdefault(method, []).append(exc or CommitFailed(f"{method} rejected"))

    def release(self, index: int = 0, error: BaseException | None = None) -> None:
        """Let a held call continue, or make it fail with `error`."""
        call = self.held.pop(index)
        if error is None:
            call.future.set_result(None)
        else:
            call.future.set_exception(error)

    def release_all(self) -> None:
        while self.held:
            self.release(0)

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if self.hold:
            future = asyncio.get_running_loop().create_future()
            self.held.append(HeldCall(method=method, args=args, future=future))
            await future
        queued = self._failures.get(method)
        if queued:
            raise queued.pop(0)

    def _record(self, entity_id: str) -> dict[str, Any]:
        record = self.records.get(entity_id)
        if record is None:
            raise CommitFailed(f"record '{entity_id}' not found")
        return record

    # -- RemoteStore ---------------------------------------------------------

    async def persist_recategorize(self, entity_id: str, target_category: str) -> dict[str, Any]:
        await self._enter("persist_recategorize", entity_id, target_category)
        record = self._record(entity_id)
        record["category"] = target_category
        record["updated_at"] = now_iso()
        return {"category": target_category, "updated_at": record["updated_at"]}

    async def persist_reorder(self, entity_id: str, target_category: str, target_index: int) -> dict[str, Any]:
        await self._enter("persist_reorder", entity_id, target_category, target_index)
        return {}

    async def persist_count_adjust(self, entity_id: str, action: str, amount: int) -> dict[str, Any]:
        await self._enter("persist_count_adjust", entity_id, action, amount)
        if action not in COUNT_ACTIONS:
            raise CommitFailed(f"unknown stock action '{action}'")
        record = self._record(entity_id)
        previous = record.get("count") or 0
        if action == CountAction.REMOVE and amount > previous:
            raise CommitFailed(f"Insufficient stock: only {previous} available")
        record["count"] = next_count(previous, action, amount)
        record["updated_at"] = now_iso()
        return {
            "resulting_value": record["count"],
            "previous_value": previous,
            "updated_at": record["updated_at"],
        }

    async def append_audit(
        self,
        entity_id: str,
        change_amount: int,
        resulting_value: int,
        action: str,
        performed_by: str | None,
    ) -> AuditRecord:
        await self._enter("append_audit", entity_id, change_amount, resulting_value, action, performed_by)
        record = AuditRecord(
            id=str(uuid.uuid4()),
            entity_id=entity_id,
            change_amount=change_amount,
            resulting_value=resulting_value,
            action=action,
            performed_by=performed_by,
            timestamp=now_iso(),
        )
        self.audit_log.append(record)
        return record
