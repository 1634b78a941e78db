"""
Optimistic Engine: Mutation Construction

Factory functions for creating well-formed mutation descriptors.
Used by the drag controller and the board/inventory services, and by tests
to build descriptors concisely.
"""

from __future__ import annotations

from engine.optimistic.types import (
    MutationDescriptor,
    MutationKind,
    new_mutation_id,
    now_iso,
)


def make_recategorize(
    entity_id: str,
    target_category: str,
    target_index: int | None = None,
    *,
    performed_by: str | None = None,
    mutation_id: str | None = None,
) -> MutationDescriptor:
    return MutationDescriptor(
        mutation_id=mutation_id or new_mutation_id(),
        entity_id=entity_id,
        kind=MutationKind.RECATEGORIZE,
        target_category=target_category,
        target_index=target_index,
        performed_by=performed_by,
        created_at=now_iso(),
    )


def make_reorder(
    entity_id: str,
    category: str,
    target_index: int,
    *,
    performed_by: str | None = None,
    mutation_id: str | None = None,
) -> MutationDescriptor:
    return MutationDescriptor(
        mutation_id=mutation_id or new_mutation_id(),
        entity_id=entity_id,
        kind=MutationKind.REORDER,
        target_category=category,
        target_index=target_index,
        performed_by=performed_by,
        created_at=now_iso(),
    )


def make_count_adjustment(
    entity_id: str,
    action: str,
    amount: int,
    *,
    performed_by: str | None = None,
    mutation_id: str | None = None,
) -> MutationDescriptor:
    """
    Build an adjust-count descriptor.

    The descriptor carries the intended transition (add / remove / adjust),
    never the absolute value the client expects to end up with.
    """
    return MutationDescriptor(
        mutation_id=mutation_id or new_mutation_id(),
        entity_id=entity_id,
        kind=MutationKind.ADJUST_COUNT,
        action=action,
        amount=amount,
        performed_by=performed_by,
        created_at=now_iso(),
    )
