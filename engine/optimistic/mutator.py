"""
Optimistic Engine: Speculative Mutator

Pure functions: (grouped view, change) → grouped view
No side effects. No IO. Deterministic.

A grouped view is `dict[category, tuple[Entity, ...]]`. Inputs are never
modified. When a transform has nothing to do it returns the input view object
itself; otherwise it returns a new dict that shares every untouched category
tuple with the input, so unaffected groups stay reference-equal.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace

from engine.optimistic.errors import MutationRejected
from engine.optimistic.types import (
    COUNT_ACTIONS,
    CountAction,
    Entity,
    MutationDescriptor,
    MutationKind,
    Placement,
)

GroupedView = dict[str, tuple[Entity, ...]]


# ---------------------------------------------------------------------------
# Grouping helpers
# ---------------------------------------------------------------------------


def group_entities(entities: Iterable[Entity], categories: Sequence[str] = ()) -> GroupedView:
    """
    Build a grouped view. Configured categories come first (possibly empty),
    then any other category in the order it is first seen.
    """
    groups: dict[str, list[Entity]] = {c: [] for c in categories}
    seen: set[str] = set()
    for entity in entities:
        if entity.id in seen:
            raise ValueError(f"duplicate entity id: {entity.id}")
        seen.add(entity.id)
        groups.setdefault(entity.category, []).append(entity)
    return {c: tuple(items) for c, items in groups.items()}


def locate(view: GroupedView, entity_id: str) -> tuple[str, int] | None:
    """Return (category, index) of an entity, or None."""
    for category, items in view.items():
        for i, entity in enumerate(items):
            if entity.id == entity_id:
                return category, i
    return None


def _clamp(index: int | None, length: int) -> int:
    if index is None or index > length:
        return length
    return max(index, 0)


def place(view: GroupedView, entity: Entity, category: str, index: int | None = None) -> GroupedView:
    """
    Put `entity` at `index` of `category`, removing any other copy of it first.
    The entity's own category attribute is aligned with the group it lands in.
    """
    if entity.category != category:
        entity = replace(entity, category=category)

    current = locate(view, entity.id)
    if current is not None:
        cur_cat, cur_idx = current
        if cur_cat == category and view[cur_cat][cur_idx] is entity and (index is None or cur_idx == index):
            return view

    new_view = dict(view)
    if current is not None:
        cur_cat, cur_idx = current
        items = view[cur_cat]
        new_view[cur_cat] = items[:cur_idx] + items[cur_idx + 1 :]

    target = new_view.get(category, ())
    at = _clamp(index, len(target))
    new_view[category] = target[:at] + (entity,) + target[at:]
    return new_view


def placement_of(view: GroupedView, entity_id: str) -> Placement | None:
    """Record where an entity sits, with its neighbours, or None."""
    current = locate(view, entity_id)
    if current is None:
        return None
    category, index = current
    items = view[category]
    return Placement(
        entity=items[index],
        category=category,
        index=index,
        prev_id=items[index - 1].id if index > 0 else None,
        next_id=items[index + 1].id if index + 1 < len(items) else None,
    )


def restore_placement(view: GroupedView, placement: Placement) -> GroupedView:
    """
    Put an entity back as a placement recorded it: after its old predecessor
    if that is still in the category, else before its old successor, else at
    the recorded index.
    """
    entity = placement.entity
    ids = [e.id for e in view.get(placement.category, ()) if e.id != entity.id]
    if placement.prev_id is not None and placement.prev_id in ids:
        index = ids.index(placement.prev_id) + 1
    elif placement.next_id is not None and placement.next_id in ids:
        index = ids.index(placement.next_id)
    else:
        index = placement.index
    return place(view, entity, placement.category, index)


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


def recategorize(
    view: GroupedView,
    entity_id: str,
    target_category: str,
    target_index: int | None = None,
) -> GroupedView:
    """Move an entity to the end (or `target_index`) of another category."""
    current = locate(view, entity_id)
    if current is None:
        return view
    category, index = current
    if category == target_category:
        return view
    entity = view[category][index]
    return place(view, entity, target_category, target_index)


def reorder_within_category(
    view: GroupedView,
    entity_id: str,
    target_index: int,
    category: str | None = None,
) -> GroupedView:
    """
    Remove an entity and reinsert it at `target_index` of its own category.
    `target_index` counts positions in the list without the entity.
    """
    current = locate(view, entity_id)
    if current is None:
        return view
    cur_cat, cur_idx = current
    if category is not None and cur_cat != category:
        return view

    items = view[cur_cat]
    rest = items[:cur_idx] + items[cur_idx + 1 :]
    at = _clamp(target_index, len(rest))
    if at == cur_idx:
        return view

    new_view = dict(view)
    new_view[cur_cat] = rest[:at] + (items[cur_idx],) + rest[at:]
    return new_view


def next_count(current: int, action: str, amount: int) -> int:
    """Optimistic counter arithmetic. `remove` clamps at zero."""
    if action == CountAction.ADD:
        return current + amount
    if action == CountAction.REMOVE:
        return max(current - amount, 0)
    if action == CountAction.ADJUST:
        return amount
    raise MutationRejected("UNKNOWN_ACTION", f"'{action}' is not one of {sorted(COUNT_ACTIONS)}")


def validate_count_change(current: int | None, action: str, amount: object) -> None:
    """Reject a counter change that the store would refuse. Raises MutationRejected."""
    if current is None:
        raise MutationRejected("NOT_COUNTED", "entity has no count")
    if action not in COUNT_ACTIONS:
        raise MutationRejected("UNKNOWN_ACTION", f"'{action}' is not one of {sorted(COUNT_ACTIONS)}")
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise MutationRejected("INVALID_AMOUNT", "amount must be an integer")
    if amount < 0:
        raise MutationRejected("NEGATIVE_AMOUNT", "amount must be zero or more")
    if action == CountAction.REMOVE and amount > current:
        raise MutationRejected("INSUFFICIENT_COUNT", f"cannot remove {amount}, only {current} available")


def adjust_count(view: GroupedView, entity_id: str, action: str, amount: int) -> GroupedView:
    """Replace the entity's count in place (same category, same index)."""
    current = locate(view, entity_id)
    if current is None:
        return view
    category, index = current
    entity = view[category][index]
    if entity.count is None:
        return view

    count = next_count(entity.count, action, amount)
    if count == entity.count:
        return view

    items = view[category]
    new_view = dict(view)
    new_view[category] = items[:index] + (replace(entity, count=count),) + items[index + 1 :]
    return new_view


def apply_mutation(view: GroupedView, descriptor: MutationDescriptor) -> GroupedView:
    """Apply one descriptor through the matching transform."""
    if descriptor.kind == MutationKind.RECATEGORIZE:
        return recategorize(view, descriptor.entity_id, descriptor.target_category, descriptor.target_index)
    if descriptor.kind == MutationKind.REORDER:
        return reorder_within_category(
            view,
            descriptor.entity_id,
            descriptor.target_index if descriptor.target_index is not None else 0,
            descriptor.target_category,
        )
    if descriptor.kind == MutationKind.ADJUST_COUNT:
        return adjust_count(view, descriptor.entity_id, descriptor.action, descriptor.amount)
    raise MutationRejected("UNKNOWN_KIND", f"'{descriptor.kind}' is not a mutation kind")
