"""
Optimistic Engine: Entity Cache

The single source of truth for rendering. Holds the grouped view of one
collection (board work orders, inventory parts) and is the only object that
swaps it. All operations are synchronous in-process dict/tuple work.

Views are replaced, never edited: readers may hold on to `cache.view` and
compare by identity to detect changes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from engine.optimistic import mutator
from engine.optimistic.errors import EntityNotFound, MutationRejected
from engine.optimistic.types import PATCHABLE_FIELDS, Entity, Placement

Listener = Callable[[dict[str, tuple[Entity, ...]]], None]


class EntityCache:
    """Keyed, category-grouped store of entities."""

    def __init__(self, categories: Sequence[str] = (), entities: Iterable[Entity] = ()) -> None:
        self._configured: tuple[str, ...] = tuple(categories)
        self._view: mutator.GroupedView = mutator.group_entities(entities, self._configured)
        self._index: dict[str, tuple[str, int]] = {}
        self._listeners: list[Listener] = []
        self._batch_depth = 0
        self._dirty = False
        self._reindex()

    # -- reads ---------------------------------------------------------------

    @property
    def view(self) -> mutator.GroupedView:
        """Current grouped view. Treat as read-only."""
        return self._view

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(self._view)

    def get(self, entity_id: str) -> Entity | None:
        loc = self._index.get(entity_id)
        if loc is None:
            return None
        category, index = loc
        return self._view[category][index]

    def by_category(self, category: str) -> tuple[Entity, ...]:
        return self._view.get(category, ())

    def locate(self, entity_id: str) -> tuple[str, int] | None:
        return self._index.get(entity_id)

    def placement(self, entity_id: str) -> Placement:
        if entity_id not in self._index:
            raise EntityNotFound(entity_id)
        return mutator.placement_of(self._view, entity_id)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._index

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[Entity]:
        for items in self._view.values():
            yield from items

    # -- writes --------------------------------------------------------------

    def replace_all(self, entities: Iterable[Entity]) -> None:
        """
        Mirror a fresh load from the store. Drops everything held before.

        With commits in flight, reload through CommitDispatcher.reload so that
        unsettled snapshots move onto the fresh data.
        """
        self._install(mutator.group_entities(entities, self._configured))

    def commit_view(self, view: mutator.GroupedView) -> bool:
        """Install a view produced by the mutator. Returns False if nothing changed."""
        if view is self._view:
            return False
        self._install(view)
        return True

    def restore(self, placement: Placement) -> bool:
        """Put one entity back where (and as) a placement recorded it, next to its old neighbours."""
        return self.commit_view(mutator.restore_placement(self._view, placement))

    def patch(self, entity_id: str, partial: dict[str, Any]) -> bool:
        """
        Apply authoritative values to one entity.

        Idempotent: patching with data the entity already has changes nothing
        and notifies nobody. A category change moves the entity to the end of
        its new category.
        """
        unknown = set(partial) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot patch fields: {sorted(unknown)}")

        current = self.get(entity_id)
        if current is None:
            raise EntityNotFound(entity_id)

        changes: dict[str, Any] = {}
        if "count" in partial and partial["count"] != current.count:
            if partial["count"] is not None and partial["count"] < 0:
                raise MutationRejected("NEGATIVE_COUNT", f"count for '{entity_id}' cannot be negative")
            changes["count"] = partial["count"]
        if "updated_at" in partial and partial["updated_at"] != current.updated_at:
            changes["updated_at"] = partial["updated_at"]
        if partial.get("fields"):
            merged = {**current.fields, **partial["fields"]}
            if merged != current.fields:
                changes["fields"] = merged

        category = partial.get("category") or current.category
        if not changes and category == current.category:
            return False

        updated = replace(current, **changes)
        cur_cat, cur_idx = self._index[entity_id]
        if category == cur_cat:
            return self.commit_view(mutator.place(self._view, updated, cur_cat, cur_idx))
        return self.commit_view(mutator.place(self._view, updated, category))

    # -- notifications -------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a re-render callback. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def batch(self):
        """Coalesce the notifications of several writes into one."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._dirty = False
                self._notify()

    # -- internals -----------------------------------------------------------

    def _install(self, view: mutator.GroupedView) -> None:
        self._view = view
        self._reindex()
        if self._batch_depth:
            self._dirty = True
        else:
            self._notify()

    def _reindex(self) -> None:
        index: dict[str, tuple[str, int]] = {}
        for category, items in self._view.items():
            for i, entity in enumerate(items):
                if entity.id in index:
                    raise ValueError(f"entity '{entity.id}' appears in more than one place")
                index[entity.id] = (category, i)
        self._index = index

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._view)
