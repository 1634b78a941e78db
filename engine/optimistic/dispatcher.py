"""
Optimistic Engine: Commit Dispatcher

Coordinates one mutation from speculative apply to settlement:

  idle → speculating → committing → reconciled | rolled_back

This is where IO happens. The mutator and cache are pure / synchronous.

Per-entity lineage
------------------
Mutations on the same entity may be dispatched while earlier ones are still
committing. Each new mutation snapshots the entity as it looks at that moment
(after the earlier speculation) and settlement runs strictly in the order the
mutations were applied, whatever order their commits resolve in.

When the head of a lineage settles and other mutations (or a drag preview)
still sit on top of it, the entity is re-derived:

  1. put the entity at its new confirmed base
     (pre-state on failure; pre-state + this mutation + authoritative values on success)
  2. replay every remaining pending mutation through the mutator,
     rebasing each one's snapshot to the state it now starts from
  3. re-apply the drag preview, if any

So a rollback undoes only its own delta: later counter increments survive,
and a later recategorize keeps its own target.

A reload goes through the same path: the fresh data becomes every live
lineage's start, and the pending mutations replay on top of it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from engine.optimistic.audit import AuditAppender
from engine.optimistic.cache import EntityCache
from engine.optimistic.errors import (
    AuditAppendFailed,
    CommitCancelled,
    CommitFailed,
    CommitTimeout,
    EntityNotFound,
    InvalidTransition,
    MutationRejected,
    describe_failure,
)
from engine.optimistic.mutator import (
    GroupedView,
    apply_mutation,
    placement_of,
    restore_placement,
    validate_count_change,
)
from engine.optimistic.notifications import LoggingNotifier, Notifier
from engine.optimistic.snapshots import SnapshotManager
from engine.optimistic.store import RemoteStore
from engine.optimistic.types import (
    COMMIT_TRANSITIONS,
    MUTATION_KINDS,
    CommitState,
    CountAction,
    Entity,
    MutationDescriptor,
    MutationKind,
    MutationOutcome,
    NotificationKind,
    Placement,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Bookkeeping
# ---------------------------------------------------------------------------


@dataclass
class _Commit:
    descriptor: MutationDescriptor
    settled: asyncio.Future
    success_message: str | None = None
    failure_prefix: str = "Failed to save change"
    state: str = CommitState.IDLE
    task: asyncio.Task | None = None
    resolved: bool = False
    persisted: bool = False
    result: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    audit_record: Any = None
    audit_error: AuditAppendFailed | None = None
    cancel_by_user: bool = False
    outcome: MutationOutcome | None = None

    @property
    def mutation_id(self) -> str:
        return self.descriptor.mutation_id

    @property
    def entity_id(self) -> str:
        return self.descriptor.entity_id


@dataclass
class _Lineage:
    """Everything not yet confirmed for one entity."""

    pending: list[_Commit] = field(default_factory=list)
    overlay: MutationDescriptor | None = None
    base: Placement | None = None


class CommitTicket:
    """Handle returned by dispatch(). Await wait() for the outcome."""

    def __init__(self, commit: _Commit) -> None:
        self._commit = commit

    @property
    def mutation_id(self) -> str:
        return self._commit.mutation_id

    @property
    def entity_id(self) -> str:
        return self._commit.entity_id

    @property
    def descriptor(self) -> MutationDescriptor:
        return self._commit.descriptor

    @property
    def state(self) -> str:
        return self._commit.state

    @property
    def outcome(self) -> MutationOutcome | None:
        return self._commit.outcome

    def done(self) -> bool:
        return self._commit.settled.done()

    async def wait(self) -> MutationOutcome:
        return await asyncio.shield(self._commit.settled)

    def __repr__(self) -> str:  # pragma: no cover
        return f"CommitTicket({self.mutation_id!r}, state={self.state!r})"


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class CommitDispatcher:
    """Applies mutations speculatively and settles them against the remote store."""

    def __init__(
        self,
        cache: EntityCache,
        store: RemoteStore,
        notifier: Notifier | None = None,
        *,
        snapshots: SnapshotManager | None = None,
        audit: AuditAppender | None = None,
        commit_timeout: float | None = 15.0,
    ) -> None:
        self._cache = cache
        self._store = store
        self._notifier = notifier or LoggingNotifier()
        self._snapshots = snapshots or SnapshotManager(cache)
        self._audit = audit or AuditAppender(store)
        self.commit_timeout = commit_timeout
        self._commits: dict[str, _Commit] = {}
        self._lineages: dict[str, _Lineage] = {}

    # -- introspection -------------------------------------------------------

    @property
    def cache(self) -> EntityCache:
        return self._cache

    @property
    def snapshots(self) -> SnapshotManager:
        return self._snapshots

    @property
    def in_flight(self) -> tuple[str, ...]:
        return tuple(self._commits)

    def state_of(self, mutation_id: str) -> str | None:
        """State of an unsettled mutation. Settled mutations report through their ticket."""
        commit = self._commits.get(mutation_id)
        return commit.state if commit else None

    def pending_for(self, entity_id: str) -> tuple[str, ...]:
        lineage = self._lineages.get(entity_id)
        if lineage is None:
            return ()
        return tuple(c.mutation_id for c in lineage.pending)

    def preview_for(self, entity_id: str) -> MutationDescriptor | None:
        lineage = self._lineages.get(entity_id)
        return lineage.overlay if lineage else None

    # -- dispatch ------------------------------------------------------------

    def dispatch(
        self,
        descriptor: MutationDescriptor,
        *,
        success_message: str | None = None,
        failure_prefix: str | None = None,
    ) -> CommitTicket:
        """
        Apply a mutation to the cache now and start committing it.

        Raises MutationRejected (nothing applied) when the change is invalid.
        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        mid = descriptor.mutation_id
        eid = descriptor.entity_id

        if mid in self._commits:
            raise ValueError(f"mutation '{mid}' was already dispatched")
        self._validate(descriptor)

        commit = _Commit(
            descriptor=descriptor,
            settled=loop.create_future(),
            success_message=success_message,
            failure_prefix=failure_prefix or "Failed to save change",
        )
        self._transition(commit, CommitState.SPECULATING)

        lineage = self._lineages.get(eid)
        overlay = lineage.overlay if lineage else None
        with self._cache.batch():
            if overlay is not None:
                # The snapshot must not include an uncommitted drag preview.
                lineage.overlay = None
                self._rederive(eid)
            self._snapshots.take(mid, [eid], view=self._settled_view(eid))
            self._cache.commit_view(apply_mutation(self._cache.view, descriptor))
            lineage = self._lineages.setdefault(eid, _Lineage())
            lineage.pending.append(commit)
            if overlay is not None:
                lineage.overlay = overlay
                self._cache.commit_view(apply_mutation(self._cache.view, overlay))

        self._commits[mid] = commit
        self._transition(commit, CommitState.COMMITTING)
        commit.task = loop.create_task(self._commit(commit))
        commit.task.add_done_callback(partial(self._on_task_done, commit))

        logger.info(
            "dispatcher: committing %s kind=%s entity=%s pending=%d",
            mid,
            descriptor.kind,
            eid,
            len(lineage.pending),
        )
        return CommitTicket(commit)

    def _validate(self, descriptor: MutationDescriptor) -> None:
        if descriptor.kind not in MUTATION_KINDS:
            raise MutationRejected("UNKNOWN_KIND", f"'{descriptor.kind}' is not a mutation kind")
        entity = self._cache.get(descriptor.entity_id)
        if entity is None:
            raise EntityNotFound(descriptor.entity_id)
        if descriptor.kind == MutationKind.ADJUST_COUNT:
            validate_count_change(entity.count, descriptor.action, descriptor.amount)
        elif not descriptor.target_category:
            raise MutationRejected("MISSING_CATEGORY", f"{descriptor.kind} requires a target category")
        if descriptor.kind == MutationKind.REORDER and descriptor.target_index is None:
            raise MutationRejected("MISSING_INDEX", "reorder requires a target index")

    # -- reload --------------------------------------------------------------

    def reload(self, entities: Iterable[Entity]) -> None:
        """
        Install a fresh load from the store underneath everything unsettled.

        Every entity with pending mutations or a drag preview starts again
        from its freshly loaded state: the oldest pending snapshot is rebased
        onto it, then the pending mutations and the preview are replayed on
        top. A later rollback therefore restores the fresh data, not the data
        the cache held before the reload.
        """
        with self._cache.batch():
            self._cache.replace_all(entities)
            live = []
            for eid, lineage in list(self._lineages.items()):
                if eid not in self._cache:
                    # Dropped by the reload; pending commits still settle on their own.
                    lineage.overlay = None
                    lineage.base = None
                    if not lineage.pending:
                        self._lineages.pop(eid, None)
                    continue
                start = self._cache.placement(eid)
                lineage.base = start
                if lineage.pending:
                    self._snapshots.rebase(lineage.pending[0].mutation_id, {eid: start})
                live.append(eid)
            for eid in live:
                self._replay(eid, self._lineages[eid])
        logger.info("dispatcher: reloaded %d entities, %d with unsettled changes", len(self._cache), len(live))

    # -- drag preview --------------------------------------------------------

    def preview(self, entity_id: str, descriptor: MutationDescriptor) -> None:
        """Show an uncommitted change on top of everything pending for the entity."""
        if entity_id not in self._cache:
            raise EntityNotFound(entity_id)
        lineage = self._lineages.get(entity_id)
        if lineage is None:
            lineage = _Lineage(base=self._placement(entity_id))
            self._lineages[entity_id] = lineage
        lineage.overlay = descriptor
        self._rederive(entity_id)

    def clear_preview(self, entity_id: str) -> None:
        lineage = self._lineages.get(entity_id)
        if lineage is None or lineage.overlay is None:
            return
        lineage.overlay = None
        self._rederive(entity_id)

    # -- cancellation --------------------------------------------------------

    def cancel(self, mutation_id: str, *, user_initiated: bool = True) -> bool:
        """
        Cancel a commit whose result is not known yet. The mutation settles as
        rolled back. Returns False if it is too late to cancel.
        """
        commit = self._commits.get(mutation_id)
        if commit is None or commit.resolved or commit.persisted:
            return False
        if commit.task is None or commit.task.done():
            return False
        commit.cancel_by_user = user_initiated
        commit.task.cancel()
        return True

    async def close(self) -> None:
        """
        Tear down: cancel everything in flight and wait for it to settle.

        Commits that already persisted only have their audit append cut
        short; they settle as reconciled with an audit warning.
        """
        for mid, commit in list(self._commits.items()):
            if self.cancel(mid, user_initiated=True):
                continue
            if commit.persisted and not commit.resolved and commit.task is not None and not commit.task.done():
                commit.task.cancel()
        waiting = [c.settled for c in self._commits.values()]
        if waiting:
            await asyncio.gather(*waiting)
        self._audit.cancel_retries()

    # -- commit task ---------------------------------------------------------

    async def _commit(self, commit: _Commit) -> None:
        d = commit.descriptor
        try:
            result = await asyncio.wait_for(self._persist(d), timeout=self.commit_timeout)
            if d.kind == MutationKind.ADJUST_COUNT and "resulting_value" not in (result or {}):
                raise CommitFailed("store did not return the resulting value")
        except asyncio.TimeoutError:
            commit.error = CommitTimeout(f"no answer after {self.commit_timeout}s")
        except Exception as e:
            commit.error = e
        else:
            commit.persisted = True
            commit.result = dict(result or {})
            if d.kind == MutationKind.ADJUST_COUNT:
                await self._append_audit(commit)
        self._resolve(commit)

    async def _persist(self, d: MutationDescriptor) -> dict[str, Any]:
        if d.kind == MutationKind.RECATEGORIZE:
            return await self._store.persist_recategorize(d.entity_id, d.target_category)
        if d.kind == MutationKind.REORDER:
            return await self._store.persist_reorder(d.entity_id, d.target_category, d.target_index)
        return await self._store.persist_count_adjust(d.entity_id, d.action, d.amount)

    async def _append_audit(self, commit: _Commit) -> None:
        d = commit.descriptor
        resulting = commit.result["resulting_value"]
        change = self._change_amount(commit)
        try:
            try:
                commit.audit_record = await asyncio.wait_for(
                    self._audit.append(d.entity_id, change, resulting, d.action, d.performed_by),
                    timeout=self.commit_timeout,
                )
            except asyncio.TimeoutError as e:
                message = f"audit append for '{d.entity_id}' timed out after {self.commit_timeout}s"
                raise AuditAppendFailed(message) from e
        except AuditAppendFailed as e:
            logger.warning("dispatcher: partial failure on %s, counter kept: %s", d.mutation_id, e)
            commit.audit_error = e
            self._audit.retry_in_background(d.entity_id, change, resulting, d.action, d.performed_by)

    def _change_amount(self, commit: _Commit) -> int:
        d = commit.descriptor
        resulting = commit.result["resulting_value"]
        previous = commit.result.get("previous_value")
        if previous is not None:
            return resulting - previous
        if d.action == CountAction.ADD:
            return d.amount
        if d.action == CountAction.REMOVE:
            return -d.amount
        handle = self._snapshots.get(d.mutation_id)
        before = handle.entries[d.entity_id].entity.count if handle else None
        return resulting - (before or 0)

    def _on_task_done(self, commit: _Commit, task: asyncio.Task) -> None:
        if task.cancelled():
            if not commit.resolved:
                if commit.persisted:
                    commit.audit_error = AuditAppendFailed("audit append cancelled")
                else:
                    commit.error = CommitCancelled(user_initiated=commit.cancel_by_user)
                self._resolve(commit)
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("dispatcher: commit task for %s crashed", commit.mutation_id, exc_info=exc)
        if not commit.resolved:
            commit.error = exc
            self._resolve(commit)

    # -- settlement ----------------------------------------------------------

    def _resolve(self, commit: _Commit) -> None:
        commit.resolved = True
        lineage = self._lineages.get(commit.entity_id)
        while lineage is not None and lineage.pending and lineage.pending[0].resolved:
            self._settle(lineage.pending[0], lineage)
            lineage = self._lineages.get(commit.entity_id)

    def _settle(self, commit: _Commit, lineage: _Lineage) -> None:
        d = commit.descriptor
        eid = d.entity_id
        handle = self._snapshots.get(d.mutation_id)
        interleaved = len(lineage.pending) > 1 or lineage.overlay is not None

        with self._cache.batch():
            if commit.error is None:
                if interleaved and handle is not None and eid in self._cache:
                    self._cache.restore(handle.entries[eid])
                    self._cache.commit_view(apply_mutation(self._cache.view, d))
                if handle is not None:
                    self._snapshots.discard(handle)
                if eid in self._cache:
                    self._cache.patch(eid, _authoritative_patch(d, commit.result))
                state = CommitState.RECONCILED
            else:
                if handle is not None:
                    self._snapshots.restore(handle)
                state = CommitState.ROLLED_BACK

            lineage.pending.pop(0)
            if eid not in self._cache:
                lineage.base = None
            else:
                lineage.base = self._placement(eid)
                if lineage.pending or lineage.overlay is not None:
                    self._replay(eid, lineage)

            if not lineage.pending and (lineage.overlay is None or eid not in self._cache):
                self._lineages.pop(eid, None)

        self._transition(commit, state)
        self._finish(commit)

    def _rederive(self, entity_id: str) -> None:
        """Rebuild an entity from its lineage start: pending mutations, then preview."""
        lineage = self._lineages.get(entity_id)
        if lineage is None:
            return
        if entity_id not in self._cache:
            # Dropped by a reload; pending commits still settle on their own.
            lineage.overlay = None
            if not lineage.pending:
                self._lineages.pop(entity_id, None)
            return
        if lineage.pending:
            handle = self._snapshots.get(lineage.pending[0].mutation_id)
            start = handle.entries[entity_id]
        else:
            start = lineage.base
        with self._cache.batch():
            if start is not None:
                self._cache.restore(start)
            self._replay(entity_id, lineage)
        if not lineage.pending and lineage.overlay is None:
            self._lineages.pop(entity_id, None)

    def _lineage_start(self, entity_id: str, lineage: _Lineage) -> Placement | None:
        if lineage.pending:
            handle = self._snapshots.get(lineage.pending[0].mutation_id)
            return handle.entries.get(entity_id) if handle else None
        return lineage.base

    def _settled_view(self, entity_id: str) -> GroupedView:
        """The cache view with the unsettled changes of every other entity undone."""
        view = self._cache.view
        for other, lineage in self._lineages.items():
            if other == entity_id or other not in self._cache:
                continue
            start = self._lineage_start(other, lineage)
            if start is not None:
                view = restore_placement(view, start)
        return view

    def _placement(self, entity_id: str) -> Placement:
        """
        Placement of an entity as it is now, with neighbours taken from the
        settled view. Two cards moved out of one column and both rolled back
        then land in their original order.
        """
        return placement_of(self._settled_view(entity_id), entity_id)

    def _replay(self, entity_id: str, lineage: _Lineage) -> None:
        for pending in lineage.pending:
            self._snapshots.rebase(pending.mutation_id, {entity_id: self._placement(entity_id)})
            self._cache.commit_view(apply_mutation(self._cache.view, pending.descriptor))
        if lineage.overlay is not None:
            self._cache.commit_view(apply_mutation(self._cache.view, lineage.overlay))

    def _finish(self, commit: _Commit) -> None:
        d = commit.descriptor
        self._commits.pop(d.mutation_id, None)

        error_text = describe_failure(commit.error) if commit.error is not None else None
        warning = None
        if commit.audit_error is not None:
            warning = "Stock was updated, but the change could not be written to the audit log"
        cancelled = isinstance(commit.error, CommitCancelled)

        outcome = MutationOutcome(
            mutation_id=d.mutation_id,
            entity_id=d.entity_id,
            kind=d.kind,
            state=commit.state,
            error=error_text,
            warning=warning,
            cancelled=cancelled,
            authoritative=dict(commit.result),
            audit_record=commit.audit_record,
        )
        commit.outcome = outcome

        if commit.state == CommitState.RECONCILED:
            logger.info("dispatcher: reconciled %s entity=%s", d.mutation_id, d.entity_id)
            self._notifier.notify(NotificationKind.SUCCESS, commit.success_message or _success_message(d, commit.result))
            if warning:
                self._notifier.notify(NotificationKind.WARNING, warning)
        else:
            logger.warning("dispatcher: rolled back %s entity=%s reason=%s", d.mutation_id, d.entity_id, error_text)
            if not (cancelled and commit.error.user_initiated):
                self._notifier.notify(NotificationKind.ERROR, f"{commit.failure_prefix}: {error_text}")

        if not commit.settled.done():
            commit.settled.set_result(outcome)

    def _transition(self, commit: _Commit, state: str) -> None:
        if state not in COMMIT_TRANSITIONS[commit.state]:
            raise InvalidTransition(f"{commit.mutation_id}: {commit.state} -> {state}")
        commit.state = state


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _authoritative_patch(d: MutationDescriptor, result: dict[str, Any]) -> dict[str, Any]:
    patch: dict[str, Any] = {}
    if result.get("updated_at"):
        patch["updated_at"] = result["updated_at"]
    if result.get("fields"):
        patch["fields"] = dict(result["fields"])
    if d.kind == MutationKind.RECATEGORIZE:
        patch["category"] = result.get("category") or d.target_category
    elif d.kind == MutationKind.ADJUST_COUNT:
        patch["count"] = result["resulting_value"]
    return patch


def _success_message(d: MutationDescriptor, result: dict[str, Any]) -> str:
    if d.kind == MutationKind.RECATEGORIZE:
        return f"Moved to {result.get('category') or d.target_category}"
    if d.kind == MutationKind.REORDER:
        return "Order updated"
    return f"Count updated to {result['resulting_value']}"
