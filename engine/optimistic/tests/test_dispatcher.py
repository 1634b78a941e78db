"""
CommitDispatcher tests: speculative apply, reconcile, rollback, cancellation,
timeouts and partial audit failures.
"""

import asyncio
from dataclasses import replace

import pytest

from engine.optimistic.dispatcher import CommitDispatcher
from engine.optimistic.errors import CommitFailed, EntityNotFound, MutationRejected
from engine.optimistic.mutations import make_count_adjustment, make_recategorize, make_reorder
from engine.optimistic.types import CommitState, Entity, MutationDescriptor, NotificationKind


class TestDispatch:
    @pytest.mark.asyncio
    async def test_applies_before_commit_resolves(self, dispatcher, cache, store, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_recategorize("wo1", "In Progress"))

        assert cache.locate("wo1") == ("In Progress", 1)
        assert ticket.state == CommitState.COMMITTING
        assert dispatcher.state_of(ticket.mutation_id) == CommitState.COMMITTING
        assert dispatcher.in_flight == (ticket.mutation_id,)
        assert not ticket.done()

        await spin()
        store.release_all()
        outcome = await ticket.wait()
        assert outcome.succeeded

    @pytest.mark.asyncio
    async def test_notifies_listeners_once_per_apply(self, dispatcher, cache, store):
        seen = []
        cache.subscribe(seen.append)
        store.hold = True
        dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        assert len(seen) == 1
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_rejected_before_anything_is_applied(self, dispatcher, cache, store):
        view = cache.view
        with pytest.raises(MutationRejected) as exc_info:
            dispatcher.dispatch(make_count_adjustment("p1", "remove", 11))
        assert exc_info.value.code == "INSUFFICIENT_COUNT"
        assert cache.view is view
        assert store.calls == []
        assert len(dispatcher.snapshots) == 0

    @pytest.mark.asyncio
    async def test_unknown_entity(self, dispatcher):
        with pytest.raises(EntityNotFound):
            dispatcher.dispatch(make_recategorize("missing", "Open"))

    @pytest.mark.asyncio
    async def test_unknown_kind(self, dispatcher):
        with pytest.raises(MutationRejected) as exc_info:
            dispatcher.dispatch(MutationDescriptor(mutation_id="m", entity_id="wo1", kind="archive"))
        assert exc_info.value.code == "UNKNOWN_KIND"

    @pytest.mark.asyncio
    async def test_recategorize_needs_target(self, dispatcher):
        with pytest.raises(MutationRejected) as exc_info:
            dispatcher.dispatch(MutationDescriptor(mutation_id="m", entity_id="wo1", kind="recategorize"))
        assert exc_info.value.code == "MISSING_CATEGORY"

    @pytest.mark.asyncio
    async def test_count_change_on_uncounted_entity(self, dispatcher):
        with pytest.raises(MutationRejected) as exc_info:
            dispatcher.dispatch(make_count_adjustment("wo1", "add", 1))
        assert exc_info.value.code == "NOT_COUNTED"

    @pytest.mark.asyncio
    async def test_duplicate_mutation_id(self, dispatcher, store):
        store.hold = True
        dispatcher.dispatch(make_recategorize("wo1", "Completed", mutation_id="m1"))
        with pytest.raises(ValueError):
            dispatcher.dispatch(make_recategorize("wo2", "Completed", mutation_id="m1"))
        await dispatcher.close()

    def test_dispatch_needs_running_loop(self, dispatcher):
        with pytest.raises(RuntimeError):
            dispatcher.dispatch(make_recategorize("wo1", "Completed"))


class TestReconcile:
    @pytest.mark.asyncio
    async def test_authoritative_values_patched(self, dispatcher, cache, store, notifier):
        outcome = await dispatcher.dispatch(make_recategorize("wo1", "Completed")).wait()

        assert outcome.state == CommitState.RECONCILED
        assert outcome.authoritative["category"] == "Completed"
        assert cache.get("wo1").updated_at == store.records["wo1"]["updated_at"]
        assert store.records["wo1"]["category"] == "Completed"
        assert notifier.of_kind(NotificationKind.SUCCESS) == ["Moved to Completed"]
        assert len(dispatcher.snapshots) == 0
        assert dispatcher.in_flight == ()

    @pytest.mark.asyncio
    async def test_custom_messages(self, dispatcher, store, notifier):
        await dispatcher.dispatch(make_recategorize("wo1", "Completed"), success_message="Done!").wait()
        store.fail_next("persist_recategorize", CommitFailed("nope"))
        await dispatcher.dispatch(make_recategorize("wo2", "Completed"), failure_prefix="Could not move").wait()
        assert notifier.messages == [
            (NotificationKind.SUCCESS, "Done!"),
            (NotificationKind.ERROR, "Could not move: nope"),
        ]

    @pytest.mark.asyncio
    async def test_server_count_wins(self, dispatcher, cache, store):
        # Someone else took 4 units since the list was loaded.
        store.records["p1"]["count"] = 6
        outcome = await dispatcher.dispatch(make_count_adjustment("p1", "remove", 2)).wait()

        assert outcome.succeeded
        assert cache.get("p1").count == 4
        assert outcome.audit_record.change_amount == -2
        assert outcome.audit_record.resulting_value == 4

    @pytest.mark.asyncio
    async def test_reorder_is_local_only(self, dispatcher, cache, store, notifier):
        outcome = await dispatcher.dispatch(make_reorder("wo1", "Open", 1)).wait()
        assert outcome.succeeded
        assert [e.id for e in cache.by_category("Open")] == ["wo2", "wo1"]
        assert store.calls == [("persist_reorder", ("wo1", "Open", 1))]
        assert notifier.of_kind(NotificationKind.SUCCESS) == ["Order updated"]

    @pytest.mark.asyncio
    async def test_store_without_resulting_value_rolls_back(self, cache, notifier, audit):
        class ForgetfulStore:
            async def persist_count_adjust(self, entity_id, action, amount):
                return {}

        dispatcher = CommitDispatcher(cache, ForgetfulStore(), notifier, audit=audit)
        outcome = await dispatcher.dispatch(make_count_adjustment("p1", "add", 3)).wait()
        assert outcome.state == CommitState.ROLLED_BACK
        assert cache.get("p1").count == 10


class TestRollback:
    @pytest.mark.asyncio
    async def test_restores_exact_position(self, dispatcher, cache, store, notifier):
        store.fail_next("persist_recategorize", CommitFailed("Insufficient privileges"))
        outcome = await dispatcher.dispatch(make_recategorize("wo1", "Completed")).wait()

        assert outcome.state == CommitState.ROLLED_BACK
        assert outcome.error == "Insufficient privileges"
        assert cache.locate("wo1") == ("Open", 0)
        assert notifier.of_kind(NotificationKind.ERROR) == ["Failed to save change: Insufficient privileges"]
        assert len(dispatcher.snapshots) == 0

    @pytest.mark.asyncio
    async def test_error_message_mapping(self, dispatcher, store, notifier):
        store.fail_next("persist_recategorize", CommitFailed("new row violates row-level security policy"))
        outcome = await dispatcher.dispatch(make_recategorize("wo1", "Completed")).wait()
        assert outcome.error == "You do not have permission to perform this action"

    @pytest.mark.asyncio
    async def test_unexpected_exception_rolls_back(self, dispatcher, cache, store):
        store.fail_next("persist_count_adjust", RuntimeError("connection reset"))
        outcome = await dispatcher.dispatch(make_count_adjustment("p1", "add", 1)).wait()
        assert outcome.state == CommitState.ROLLED_BACK
        assert cache.get("p1").count == 10

    @pytest.mark.asyncio
    async def test_timeout(self, cache, store, notifier, audit):
        dispatcher = CommitDispatcher(cache, store, notifier, audit=audit, commit_timeout=0.01)
        store.hold = True
        outcome = await dispatcher.dispatch(make_recategorize("wo1", "Completed")).wait()

        assert outcome.state == CommitState.ROLLED_BACK
        assert outcome.error == "The server took too long to respond"
        assert cache.locate("wo1") == ("Open", 0)
        assert notifier.of_kind(NotificationKind.ERROR) == [
            "Failed to save change: The server took too long to respond"
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("first", ["wo1", "wo2"])
    async def test_two_moves_out_of_one_column_keep_their_order(self, dispatcher, cache, store, spin, first):
        store.hold = True
        tickets = {
            "wo1": dispatcher.dispatch(make_recategorize("wo1", "Completed")),
            "wo2": dispatcher.dispatch(make_recategorize("wo2", "Completed")),
        }
        await spin()
        assert cache.by_category("Open") == ()

        second = "wo2" if first == "wo1" else "wo1"
        for eid in (first, second):
            index = next(i for i, call in enumerate(store.held) if call.args[0] == eid)
            store.release(index, CommitFailed("rejected"))
            await tickets[eid].wait()

        assert [e.id for e in cache.by_category("Open")] == ["wo1", "wo2"]
        assert cache.by_category("Completed") == ()


class TestReload:
    @pytest.mark.asyncio
    async def test_rollback_restores_reloaded_data(self, dispatcher, cache, store, entities, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_count_adjustment("p1", "remove", 3))
        await spin()

        dispatcher.reload([replace(e, count=40) if e.id == "p1" else e for e in entities])
        assert cache.get("p1").count == 37

        store.release(0, CommitFailed("rejected"))
        outcome = await ticket.wait()

        assert outcome.state == CommitState.ROLLED_BACK
        assert cache.get("p1").count == 40

    @pytest.mark.asyncio
    async def test_confirmed_after_reload_takes_server_value(self, dispatcher, cache, store, entities, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_count_adjustment("p1", "add", 5))
        await spin()

        dispatcher.reload([replace(e, count=40) if e.id == "p1" else e for e in entities])
        assert cache.get("p1").count == 45

        store.hold = False
        store.release(0)
        outcome = await ticket.wait()

        assert outcome.succeeded
        assert cache.get("p1").count == 15

    @pytest.mark.asyncio
    async def test_pending_move_replayed_on_fresh_order(self, dispatcher, cache, store, entities, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        await spin()

        fresh = [Entity(id="wo0", category="Open")] + list(entities)
        dispatcher.reload(fresh)
        assert [e.id for e in cache.by_category("Open")] == ["wo0", "wo2"]
        assert cache.locate("wo1") == ("Completed", 0)

        store.release(0, CommitFailed("rejected"))
        await ticket.wait()

        assert [e.id for e in cache.by_category("Open")] == ["wo0", "wo1", "wo2"]

    @pytest.mark.asyncio
    async def test_entity_dropped_by_reload(self, dispatcher, cache, store, entities, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        await spin()

        dispatcher.reload([e for e in entities if e.id != "wo1"])
        store.release(0, CommitFailed("rejected"))
        outcome = await ticket.wait()

        assert outcome.state == CommitState.ROLLED_BACK
        assert "wo1" not in cache
        assert dispatcher.pending_for("wo1") == ()

    def test_reload_keeps_preview(self, dispatcher, cache, entities):
        dispatcher.preview("wo1", make_recategorize("wo1", "Completed"))
        dispatcher.reload(entities)

        assert cache.locate("wo1") == ("Completed", 0)
        dispatcher.clear_preview("wo1")
        assert cache.locate("wo1") == ("Open", 0)


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_while_committing(self, dispatcher, cache, store, notifier, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        await spin()

        assert dispatcher.cancel(ticket.mutation_id)
        outcome = await ticket.wait()

        assert outcome.cancelled
        assert outcome.state == CommitState.ROLLED_BACK
        assert cache.locate("wo1") == ("Open", 0)
        # The user asked for it; no error toast.
        assert notifier.of_kind(NotificationKind.ERROR) == []

    @pytest.mark.asyncio
    async def test_cancel_before_commit_starts(self, dispatcher, cache, store):
        ticket = dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        assert dispatcher.cancel(ticket.mutation_id)
        outcome = await ticket.wait()
        assert outcome.cancelled
        assert cache.locate("wo1") == ("Open", 0)
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_system_cancel_is_reported(self, dispatcher, store, notifier, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        await spin()
        dispatcher.cancel(ticket.mutation_id, user_initiated=False)
        await ticket.wait()
        assert notifier.of_kind(NotificationKind.ERROR) == ["Failed to save change: The change was cancelled"]

    @pytest.mark.asyncio
    async def test_too_late_once_persisted(self, dispatcher, cache, store, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_count_adjustment("p1", "add", 5))
        await spin()
        store.release(0)
        await spin()
        # Stock is stored; only the audit append is outstanding.
        assert store.held[0].method == "append_audit"
        assert dispatcher.cancel(ticket.mutation_id) is False

        store.release_all()
        outcome = await ticket.wait()
        assert outcome.succeeded
        assert cache.get("p1").count == 15

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_settled(self, dispatcher):
        assert dispatcher.cancel("nope") is False
        ticket = dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        await ticket.wait()
        assert dispatcher.cancel(ticket.mutation_id) is False

    @pytest.mark.asyncio
    async def test_close_settles_everything(self, dispatcher, cache, store, spin):
        store.hold = True
        t1 = dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        t2 = dispatcher.dispatch(make_count_adjustment("p1", "add", 1))
        await spin()

        await dispatcher.close()

        assert t1.done() and t2.done()
        assert cache.locate("wo1") == ("Open", 0)
        assert cache.get("p1").count == 10
        assert dispatcher.in_flight == ()


class TestAuditPartialFailure:
    @pytest.mark.asyncio
    async def test_counter_kept_and_warning_raised(self, dispatcher, cache, store, notifier, audit):
        store.fail_next("append_audit", CommitFailed("log table locked"))
        outcome = await dispatcher.dispatch(make_count_adjustment("p1", "remove", 3, performed_by="tech@plant")).wait()

        assert outcome.state == CommitState.RECONCILED
        assert outcome.warning == "Stock was updated, but the change could not be written to the audit log"
        assert outcome.audit_record is None
        assert cache.get("p1").count == 7
        assert notifier.of_kind(NotificationKind.SUCCESS) == ["Count updated to 7"]
        assert notifier.of_kind(NotificationKind.WARNING) == [outcome.warning]

        await audit.drain()
        assert len(store.audit_log) == 1
        record = store.audit_log[0]
        assert (record.change_amount, record.resulting_value, record.action) == (-3, 7, "remove")
        assert record.performed_by == "tech@plant"

    @pytest.mark.asyncio
    async def test_audit_written_after_confirmed_change(self, dispatcher, store):
        await dispatcher.dispatch(make_count_adjustment("p1", "adjust", 4)).wait()
        assert [c[0] for c in store.calls] == ["persist_count_adjust", "append_audit"]
        assert store.audit_log[0].change_amount == -6

    @pytest.mark.asyncio
    async def test_no_audit_for_failed_change(self, dispatcher, store):
        store.fail_next("persist_count_adjust")
        await dispatcher.dispatch(make_count_adjustment("p1", "add", 1)).wait()
        assert store.audit_log == []
        assert [c[0] for c in store.calls] == ["persist_count_adjust"]

    @pytest.mark.asyncio
    async def test_hung_audit_append_times_out(self, cache, store, notifier, audit, spin):
        dispatcher = CommitDispatcher(cache, store, notifier, audit=audit, commit_timeout=0.05)
        store.hold = True
        ticket = dispatcher.dispatch(make_count_adjustment("p1", "add", 1))
        await spin()
        store.release(0)
        await spin()
        assert [c.method for c in store.held] == ["append_audit"]
        store.hold = False

        outcome = await ticket.wait()

        assert outcome.succeeded
        assert outcome.warning is not None
        assert cache.get("p1").count == 11
        assert notifier.of_kind(NotificationKind.WARNING) == [outcome.warning]

        await audit.drain()
        assert [(r.change_amount, r.resulting_value) for r in store.audit_log] == [(1, 11)]

    @pytest.mark.asyncio
    async def test_close_cuts_short_a_hung_audit_append(self, dispatcher, cache, store, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_count_adjustment("p1", "add", 1))
        await spin()
        store.release(0)
        await spin()
        assert [c.method for c in store.held] == ["append_audit"]

        await asyncio.wait_for(dispatcher.close(), timeout=1.0)

        outcome = ticket.outcome
        assert outcome.succeeded
        assert outcome.warning is not None
        assert cache.get("p1").count == 11
        assert store.records["p1"]["count"] == 11
        assert dispatcher.in_flight == ()


class TestTicket:
    @pytest.mark.asyncio
    async def test_wait_is_shielded(self, dispatcher, store, spin):
        store.hold = True
        ticket = dispatcher.dispatch(make_recategorize("wo1", "Completed"))
        waiter = asyncio.create_task(ticket.wait())
        await spin()
        waiter.cancel()
        await spin()
        assert not ticket.done()
        store.release_all()
        outcome = await ticket.wait()
        assert outcome.succeeded
        assert ticket.outcome is outcome
