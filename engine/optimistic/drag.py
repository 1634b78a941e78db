"""
Optimistic Engine: Drag Interaction Controller

Turns a continuous pointer / keyboard gesture into discrete events:

  idle → dragging → (drag_over)* → dropped | cancelled

While the gesture is live the card is previewed in whatever category it is
over (a local, uncommitted change owned by the dispatcher). Only the drop
produces a mutation descriptor, and at most one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from engine.optimistic.dispatcher import CommitDispatcher, CommitTicket
from engine.optimistic.errors import DragInProgress, EntityNotFound, InvalidTransition, NoActiveDrag
from engine.optimistic.mutations import make_recategorize, make_reorder
from engine.optimistic.types import ACTIVE_DRAG_PHASES, DragPhase, MutationDescriptor

logger = logging.getLogger(__name__)

DRAG_TRANSITIONS: dict[str, set[str]] = {
    DragPhase.IDLE: {DragPhase.DRAGGING},
    DragPhase.DRAGGING: {DragPhase.DRAG_OVER, DragPhase.DROPPED, DragPhase.CANCELLED},
    DragPhase.DRAG_OVER: {DragPhase.DRAG_OVER, DragPhase.DROPPED, DragPhase.CANCELLED},
    DragPhase.DROPPED: {DragPhase.DRAGGING},
    DragPhase.CANCELLED: {DragPhase.DRAGGING},
}


@dataclass(frozen=True)
class DragSession:
    entity_id: str
    source_category: str
    source_index: int
    over_category: str


@dataclass(frozen=True)
class DropTarget:
    """Where the card was released: a category, and the card it landed on, if any."""

    category: str
    over_entity_id: str | None = None


class DragController:
    """One gesture at a time over one cache, committing through one dispatcher."""

    def __init__(
        self,
        dispatcher: CommitDispatcher,
        *,
        categories: Iterable[str] | None = None,
        message_for: Callable[[MutationDescriptor], str | None] | None = None,
        failure_prefix: str | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._cache = dispatcher.cache
        self._categories = frozenset(categories) if categories is not None else None
        self._message_for = message_for
        self._failure_prefix = failure_prefix
        self.phase: str = DragPhase.IDLE
        self.session: DragSession | None = None

    @property
    def active(self) -> bool:
        return self.phase in ACTIVE_DRAG_PHASES

    def is_drop_zone(self, category: str | None) -> bool:
        if category is None:
            return False
        if self._categories is not None:
            return category in self._categories
        return category in self._cache.view

    # -- gesture -------------------------------------------------------------

    def grab(self, entity_id: str) -> DragSession:
        if self.active:
            raise DragInProgress(f"already dragging '{self.session.entity_id}'")
        location = self._cache.locate(entity_id)
        if location is None:
            raise EntityNotFound(entity_id)
        category, index = location
        self._transition(DragPhase.DRAGGING)
        self.session = DragSession(
            entity_id=entity_id,
            source_category=category,
            source_index=index,
            over_category=category,
        )
        return self.session

    def drag_over(self, category: str) -> None:
        """Pointer entered a category's drop zone. Unknown zones are ignored."""
        session = self._require_session()
        if not self.is_drop_zone(category) or category == session.over_category:
            return

        eid = session.entity_id
        if category == session.source_category:
            self._dispatcher.clear_preview(eid)
        else:
            self._dispatcher.preview(eid, make_recategorize(eid, category, mutation_id=f"preview_{eid}"))

        self.session = replace(session, over_category=category)
        self._transition(DragPhase.DRAG_OVER)

    def drop(self, target: DropTarget | None, *, performed_by: str | None = None) -> CommitTicket | None:
        """
        Release the card. Returns the ticket of the one mutation issued, or None
        when the drop was a no-op or landed outside every drop zone.
        """
        session = self._require_session()
        if target is None or not self.is_drop_zone(target.category):
            self.cancel()
            return None

        eid = session.entity_id
        self._dispatcher.clear_preview(eid)
        self._transition(DragPhase.DROPPED)

        location = self._cache.locate(eid)
        if location is None:
            logger.warning("drag: %s disappeared during the gesture", eid)
            return None
        category, index = location

        siblings = [e.id for e in self._cache.by_category(target.category) if e.id != eid]
        if target.over_entity_id == eid and target.category == category:
            final_index = index
        elif target.over_entity_id in siblings:
            final_index = siblings.index(target.over_entity_id)
        else:
            final_index = len(siblings)

        if target.category == category and final_index == index:
            logger.debug("drag: %s dropped where it started", eid)
            return None

        if target.category != category:
            descriptor = make_recategorize(eid, target.category, final_index, performed_by=performed_by)
        else:
            descriptor = make_reorder(eid, category, final_index, performed_by=performed_by)

        message = self._message_for(descriptor) if self._message_for else None
        return self._dispatcher.dispatch(descriptor, success_message=message, failure_prefix=self._failure_prefix)

    def cancel(self) -> None:
        """Abort the gesture. Undoes the preview only; nothing is committed."""
        session = self._require_session()
        self._dispatcher.clear_preview(session.entity_id)
        self._transition(DragPhase.CANCELLED)

    # -- internals -----------------------------------------------------------

    def _require_session(self) -> DragSession:
        if not self.active or self.session is None:
            raise NoActiveDrag("no drag gesture is active")
        return self.session

    def _transition(self, phase: str) -> None:
        if phase not in DRAG_TRANSITIONS[self.phase]:
            raise InvalidTransition(f"drag: {self.phase} -> {phase}")
        self.phase = phase
