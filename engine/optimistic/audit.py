"""
Optimistic Engine: Audit Appender

Writes the inventory log line for a counter change that the store has
already confirmed. Never called from the speculative phase.

A failed append is a partial failure: the counter change stays, the caller
raises a warning, and the append is retried in the background.
"""

from __future__ import annotations

import asyncio
import logging

from engine.optimistic.errors import AuditAppendFailed
from engine.optimistic.store import RemoteStore
from engine.optimistic.types import AuditRecord

logger = logging.getLogger(__name__)


class AuditAppender:
    """Appends audit records through the remote store."""

    def __init__(self, store: RemoteStore, *, retry_attempts: int = 3, retry_delay: float = 1.0) -> None:
        self._store = store
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._retries: set[asyncio.Task] = set()

    async def append(
        self,
        entity_id: str,
        change_amount: int,
        resulting_value: int,
        action: str,
        performed_by: str | None,
    ) -> AuditRecord:
        try:
            return await self._store.append_audit(entity_id, change_amount, resulting_value, action, performed_by)
        except Exception as e:
            raise AuditAppendFailed(f"audit append failed for '{entity_id}': {e}") from e

    def retry_in_background(
        self,
        entity_id: str,
        change_amount: int,
        resulting_value: int,
        action: str,
        performed_by: str | None,
    ) -> asyncio.Task:
        """Schedule retries of a failed append. The task result is the record, or None."""
        task = asyncio.create_task(
            self._retry(entity_id, change_amount, resulting_value, action, performed_by)
        )
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)
        return task

    async def _retry(
        self,
        entity_id: str,
        change_amount: int,
        resulting_value: int,
        action: str,
        performed_by: str | None,
    ) -> AuditRecord | None:
        for attempt in range(1, self.retry_attempts + 1):
            await asyncio.sleep(self.retry_delay)
            try:
                record = await self.append(entity_id, change_amount, resulting_value, action, performed_by)
            except AuditAppendFailed as e:
                logger.warning("audit: retry %d/%d failed for %s: %s", attempt, self.retry_attempts, entity_id, e)
                continue
            logger.info("audit: appended %s on retry %d", entity_id, attempt)
            return record

        logger.error(
            "audit: giving up on %s change=%d resulting=%d after %d retries",
            entity_id,
            change_amount,
            resulting_value,
            self.retry_attempts,
        )
        return None

    async def drain(self) -> None:
        """Wait for outstanding background retries."""
        if self._retries:
            await asyncio.gather(*list(self._retries), return_exceptions=True)

    def cancel_retries(self) -> None:
        for task in list(self._retries):
            task.cancel()
