"""
Optimistic Engine: Snapshot Manager

An arena of snapshot handles keyed by mutation id. A handle records only the
entities its mutation touches, so restoring it can never undo changes made
to other entities by other mutations.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from engine.optimistic import mutator
from engine.optimistic.cache import EntityCache
from engine.optimistic.errors import EntityNotFound
from engine.optimistic.types import Placement, SnapshotHandle, now_iso


class SnapshotManager:
    """Takes, rebases, restores and discards per-mutation snapshots."""

    def __init__(self, cache: EntityCache) -> None:
        self._cache = cache
        self._arena: dict[str, SnapshotHandle] = {}

    @property
    def live(self) -> tuple[str, ...]:
        """Mutation ids that still own a snapshot."""
        return tuple(self._arena)

    def __len__(self) -> int:
        return len(self._arena)

    def __contains__(self, mutation_id: object) -> bool:
        return mutation_id in self._arena

    def get(self, mutation_id: str) -> SnapshotHandle | None:
        return self._arena.get(mutation_id)

    def take(
        self,
        mutation_id: str,
        entity_ids: Iterable[str],
        view: mutator.GroupedView | None = None,
    ) -> SnapshotHandle:
        """
        Capture the placement of the given entities, in the cache or in `view`
        when the caller knows a better pre-state to record neighbours against.
        """
        if mutation_id in self._arena:
            raise ValueError(f"mutation '{mutation_id}' already owns a snapshot")
        source = self._cache.view if view is None else view
        entries = {}
        for eid in entity_ids:
            placement = mutator.placement_of(source, eid)
            if placement is None:
                raise EntityNotFound(eid)
            entries[eid] = placement
        handle = SnapshotHandle(mutation_id=mutation_id, entries=entries, taken_at=now_iso())
        self._arena[mutation_id] = handle
        return handle

    def rebase(self, mutation_id: str, entries: dict[str, Placement]) -> SnapshotHandle:
        """
        Replace recorded pre-states. Used when an earlier mutation on the same
        entity settles and this mutation now starts from a different state.
        """
        handle = self._arena[mutation_id]
        rebased = replace(handle, entries={**handle.entries, **entries})
        self._arena[mutation_id] = rebased
        return rebased

    def restore(self, handle: SnapshotHandle) -> bool:
        """Put the handle's entities back as recorded, then drop the handle."""
        self._arena.pop(handle.mutation_id, None)
        changed = False
        with self._cache.batch():
            for placement in handle.entries.values():
                if placement.entity.id in self._cache:
                    changed = self._cache.restore(placement) or changed
        return changed

    def discard(self, handle: SnapshotHandle) -> None:
        self._arena.pop(handle.mutation_id, None)
