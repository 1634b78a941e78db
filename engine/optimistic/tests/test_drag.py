"""
DragController tests: preview during the gesture, at most one mutation per drop.
"""

import pytest

from engine.optimistic.drag import DragController, DropTarget
from engine.optimistic.errors import DragInProgress, EntityNotFound, NoActiveDrag
from engine.optimistic.mutations import make_recategorize
from engine.optimistic.types import DragPhase, MutationKind, NotificationKind

STATUSES = ("Open", "On Hold", "In Progress", "Completed")


@pytest.fixture
def drag(dispatcher):
    return DragController(dispatcher, categories=STATUSES)


def column(cache, category):
    return [e.id for e in cache.by_category(category)]


class TestGesture:
    def test_grab(self, drag):
        session = drag.grab("wo2")
        assert drag.phase == DragPhase.DRAGGING
        assert drag.active
        assert (session.source_category, session.source_index) == ("Open", 1)

    def test_grab_unknown(self, drag):
        with pytest.raises(EntityNotFound):
            drag.grab("missing")
        assert drag.phase == DragPhase.IDLE

    def test_one_gesture_at_a_time(self, drag):
        drag.grab("wo1")
        with pytest.raises(DragInProgress):
            drag.grab("wo2")

    def test_events_need_a_gesture(self, drag):
        with pytest.raises(NoActiveDrag):
            drag.drag_over("Completed")
        with pytest.raises(NoActiveDrag):
            drag.drop(DropTarget("Completed"))
        with pytest.raises(NoActiveDrag):
            drag.cancel()

    def test_preview_follows_pointer(self, drag, cache, store):
        drag.grab("wo1")
        drag.drag_over("On Hold")
        assert cache.locate("wo1") == ("On Hold", 0)
        drag.drag_over("Completed")
        assert cache.locate("wo1") == ("Completed", 0)
        assert column(cache, "On Hold") == []
        drag.drag_over("Open")
        assert cache.locate("wo1") == ("Open", 0)
        assert drag.phase == DragPhase.DRAG_OVER
        assert store.calls == []

    def test_unknown_zone_ignored(self, drag, cache):
        drag.grab("wo1")
        drag.drag_over("Shelf A")
        assert cache.locate("wo1") == ("Open", 0)
        assert drag.phase == DragPhase.DRAGGING

    def test_cancel_restores_original_position(self, drag, cache, dispatcher, store):
        drag.grab("wo1")
        drag.drag_over("Completed")
        drag.cancel()
        assert cache.locate("wo1") == ("Open", 0)
        assert drag.phase == DragPhase.CANCELLED
        assert dispatcher.preview_for("wo1") is None
        assert store.calls == []

    def test_new_gesture_after_cancel(self, drag):
        drag.grab("wo1")
        drag.cancel()
        drag.grab("wo2")
        assert drag.phase == DragPhase.DRAGGING


class TestDrop:
    @pytest.mark.asyncio
    async def test_drop_in_other_column(self, drag, cache, store):
        drag.grab("wo1")
        drag.drag_over("In Progress")
        ticket = drag.drop(DropTarget("In Progress"))

        assert drag.phase == DragPhase.DROPPED
        assert ticket.descriptor.kind == MutationKind.RECATEGORIZE
        assert column(cache, "In Progress") == ["wo3", "wo1"]

        outcome = await ticket.wait()
        assert outcome.succeeded
        assert store.records["wo1"]["category"] == "In Progress"
        assert [c[0] for c in store.calls] == ["persist_recategorize"]

    @pytest.mark.asyncio
    async def test_drop_on_a_card(self, drag, cache):
        drag.grab("wo1")
        ticket = drag.drop(DropTarget("In Progress", over_entity_id="wo3"))
        assert ticket.descriptor.target_index == 0
        assert column(cache, "In Progress") == ["wo1", "wo3"]
        await ticket.wait()

    @pytest.mark.asyncio
    async def test_reorder_within_column(self, drag, cache, store):
        cache.patch("wo3", {"category": "Open"})
        assert column(cache, "Open") == ["wo1", "wo2", "wo3"]

        drag.grab("wo1")
        ticket = drag.drop(DropTarget("Open", over_entity_id="wo3"))

        assert ticket.descriptor.kind == MutationKind.REORDER
        assert column(cache, "Open") == ["wo2", "wo1", "wo3"]
        await ticket.wait()
        assert [c[0] for c in store.calls] == ["persist_reorder"]

    def test_drop_where_it_started(self, drag, cache, store):
        drag.grab("wo2")
        drag.drag_over("Completed")
        assert drag.drop(DropTarget("Open", over_entity_id="wo2")) is None
        assert column(cache, "Open") == ["wo1", "wo2"]
        assert drag.phase == DragPhase.DROPPED
        assert store.calls == []

    def test_drop_outside_every_zone(self, drag, cache, store):
        drag.grab("wo1")
        drag.drag_over("Completed")
        assert drag.drop(None) is None
        assert drag.phase == DragPhase.CANCELLED
        assert cache.locate("wo1") == ("Open", 0)
        assert store.calls == []

    def test_drop_on_invalid_zone(self, drag, cache):
        drag.grab("wo1")
        assert drag.drop(DropTarget("Shelf A")) is None
        assert drag.phase == DragPhase.CANCELLED
        assert cache.locate("wo1") == ("Open", 0)

    @pytest.mark.asyncio
    async def test_one_notification_per_gesture(self, drag, notifier):
        drag.grab("wo1")
        for category in ("On Hold", "In Progress", "Completed"):
            drag.drag_over(category)
        await drag.drop(DropTarget("Completed")).wait()
        assert notifier.messages == [(NotificationKind.SUCCESS, "Moved to Completed")]

    @pytest.mark.asyncio
    async def test_rejected_drop_snaps_back(self, drag, cache, store, notifier):
        store.fail_next("persist_recategorize")
        drag.grab("wo2")
        outcome = await drag.drop(DropTarget("Completed")).wait()
        assert not outcome.succeeded
        assert cache.locate("wo2") == ("Open", 1)
        assert len(notifier.of_kind(NotificationKind.ERROR)) == 1

    @pytest.mark.asyncio
    async def test_message_and_prefix_hooks(self, dispatcher, store, notifier):
        drag = DragController(
            dispatcher,
            categories=STATUSES,
            message_for=lambda d: f"Work order moved to {d.target_category}",
            failure_prefix="Failed to update work order",
        )
        drag.grab("wo1")
        await drag.drop(DropTarget("On Hold")).wait()
        store.fail_next("persist_recategorize", RuntimeError("offline"))
        drag.grab("wo2")
        await drag.drop(DropTarget("On Hold")).wait()
        assert notifier.messages == [
            (NotificationKind.SUCCESS, "Work order moved to On Hold"),
            (NotificationKind.ERROR, "Failed to update work order: offline"),
        ]


class TestDragWhileCommitting:
    @pytest.mark.asyncio
    async def test_settlement_keeps_preview(self, drag, dispatcher, cache, store, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_recategorize("wo1", "On Hold"))
        await spin()

        drag.grab("wo1")
        drag.drag_over("Completed")
        assert cache.locate("wo1") == ("Completed", 0)

        store.release_all()
        await ticket.wait()
        # Settled underneath the pointer; the card is still where it is being dragged.
        assert cache.locate("wo1") == ("Completed", 0)

        drag.cancel()
        assert cache.locate("wo1") == ("On Hold", 0)
        assert cache.get("wo1").updated_at == store.records["wo1"]["updated_at"]
