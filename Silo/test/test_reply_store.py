"""
Unit tests for the optimistic reply store.

Tests cover:
- Placeholder insert, reconcile and rollback
- Duplicate-free merging of responses, pushes and page loads
- Ordering and tie-break
- Soft delete
- Threading modes and pagination
"""

import asyncio
from dataclasses import replace

import pytest

from Silo.core.client.models import (
    ChangeType,
    ConversationKind,
    EntityId,
    RemoteEvent,
    ThreadingMode,
)
from Silo.core.client.services.reply_store import OptimisticReplyStore
from Silo.core.client.utils.exceptions import (
    BackendError,
    SoftDeleteError,
    SubmissionError,
    ValidationError,
)
from Silo.test.fakes import (
    DISCUSSION_ID,
    DM_ID,
    OTHER,
    VIEWER,
    FakeBackend,
    make_entity,
    ts,
)


def insert_event(entity):
    return RemoteEvent(ChangeType.INSERT, entity.id, entity)


def dm_store(backend, **kwargs):
    return OptimisticReplyStore(backend, ConversationKind.DIRECT, DM_ID, VIEWER, **kwargs)


class TestSubmitAndReconcile:
    """Placeholder lifecycle."""

    def setup_method(self):
        self.backend = FakeBackend()
        self.store = dm_store(self.backend)

    def test_hello_placeholder_then_confirmed_as_42(self):
        """Submit to an empty conversation, then settle with id 42."""
        local_id = self.store.submit_optimistic("Hello")

        assert len(self.store) == 1
        assert self.store.entities[0].id == local_id
        assert self.store.entities[0].is_placeholder

        confirmed = make_entity(42, "Hello", at=5, author_id=VIEWER)
        self.store.reconcile(local_id, confirmed)

        assert len(self.store) == 1
        only = self.store.entities[0]
        assert only.id == EntityId.remote(42)
        assert only.created_at == ts(5)
        assert not only.is_placeholder

    def test_empty_content_rejected(self):
        with pytest.raises(ValidationError):
            self.store.submit_optimistic("   ")
        assert len(self.store) == 0

    def test_content_is_trimmed(self):
        local_id = self.store.submit_optimistic("  spaced  ")
        assert self.store.get(local_id).content == "spaced"

    def test_placeholder_is_authored_by_viewer(self):
        local_id = self.store.submit_optimistic("mine")
        assert self.store.get(local_id).author_id == VIEWER

    def test_failed_insert_rolls_back(self):
        local_id = self.store.submit_optimistic("doomed")

        with pytest.raises(SubmissionError) as exc_info:
            self.store.reconcile(local_id, BackendError("denied by policy", {"status": 403}))

        assert len(self.store) == 0
        assert isinstance(exc_info.value.cause, BackendError)

    def test_rollback_keeps_other_entities(self):
        existing = make_entity(1, "older", at=0)
        self.store.apply_remote_event(insert_event(existing))
        local_id = self.store.submit_optimistic("doomed")

        with pytest.raises(SubmissionError):
            self.store.reconcile(local_id, BackendError("nope"))

        assert [e.id for e in self.store.entities] == [existing.id]

    def test_reconcile_keeps_placeholder_label(self):
        local_id = self.store.submit_optimistic("hi", label="OP")
        stored = self.store.reconcile(local_id, make_entity(7, "hi", author_id=VIEWER))
        assert stored.label == "OP"

    def test_draft_for_unknown_placeholder(self):
        with pytest.raises(ValidationError):
            self.store.draft_for(EntityId.new_local())

    def test_draft_carries_reply_reference(self):
        local_id = self.store.submit_optimistic("re", reply_to_id="9")
        draft = self.store.draft_for(local_id)
        assert draft.reply_to_id == "9"
        assert draft.conversation_id == DM_ID


class TestNoDuplicates:
    """The response and the realtime echo of one row, in either order."""

    def setup_method(self):
        self.backend = FakeBackend()
        self.store = dm_store(self.backend)

    def test_response_then_push(self):
        local_id = self.store.submit_optimistic("Hello")
        confirmed = make_entity(42, "Hello", at=5, author_id=VIEWER)

        self.store.reconcile(local_id, confirmed)
        self.store.apply_remote_event(insert_event(replace(confirmed)))

        assert [e.id for e in self.store.entities] == [EntityId.remote(42)]

    def test_push_then_response(self):
        local_id = self.store.submit_optimistic("Hello")
        confirmed = make_entity(42, "Hello", at=5, author_id=VIEWER)

        self.store.apply_remote_event(insert_event(replace(confirmed)))
        assert len(self.store) == 1
        assert not self.store.entities[0].is_placeholder

        self.store.reconcile(local_id, confirmed)
        assert [e.id for e in self.store.entities] == [EntityId.remote(42)]

    def test_push_of_own_row_then_failure_is_not_rolled_back(self):
        local_id = self.store.submit_optimistic("Hello")
        confirmed = make_entity(42, "Hello", at=5, author_id=VIEWER)
        self.store.apply_remote_event(insert_event(confirmed))

        settled = self.store.reconcile(local_id, BackendError("connection reset"))

        assert settled.id == EntityId.remote(42)
        assert len(self.store) == 1

    def test_push_from_other_author_does_not_adopt(self):
        self.store.submit_optimistic("Hello")
        theirs = make_entity(43, "Hello", at=5, author_id=OTHER)

        self.store.apply_remote_event(insert_event(theirs))

        assert len(self.store) == 2

    def test_duplicate_delivery_on_three_entities(self):
        for i in range(3):
            self.store.apply_remote_event(insert_event(make_entity(i + 1, f"m{i}", at=i)))
        assert len(self.store) == 3

        duplicate = make_entity(2, "m1", at=1)
        self.store.apply_remote_event(insert_event(duplicate))
        self.store.apply_remote_event(insert_event(replace(duplicate)))

        assert len(self.store) == 3

    @pytest.mark.asyncio
    async def test_push_during_initial_load_is_merged(self):
        row = make_entity(5, "both", at=1)
        self.backend.add_rows(row)

        self.store.apply_remote_event(insert_event(replace(row)))
        await self.store.load_initial()

        assert [e.id for e in self.store.entities] == [row.id]


class TestOrdering:
    """Render order is creation time, ties broken by id."""

    def setup_method(self):
        self.backend = FakeBackend()
        self.store = dm_store(self.backend)

    def test_out_of_order_pushes_are_sorted(self):
        for id_, at in ((3, 30), (1, 10), (2, 20)):
            self.store.apply_remote_event(insert_event(make_entity(id_, at=at)))
        assert [e.id.value for e in self.store.entities] == ["1", "2", "3"]

    def test_equal_timestamps_tie_break_numerically(self):
        for id_ in (10, 9, 100):
            self.store.apply_remote_event(insert_event(make_entity(id_, at=0)))
        assert [e.id.value for e in self.store.entities] == ["9", "10", "100"]

    def test_remote_before_local_at_equal_time(self):
        local_id = self.store.submit_optimistic("pending")
        placeholder = self.store.get(local_id)
        remote = make_entity(1, "confirmed")
        remote.created_at = placeholder.created_at

        self.store.apply_remote_event(insert_event(remote))

        assert [e.is_placeholder for e in self.store.entities] == [False, True]

    @pytest.mark.asyncio
    async def test_initial_load_is_ascending(self):
        self.backend.add_rows(make_entity(1, at=0), make_entity(2, at=10), make_entity(3, at=20))

        entities = await self.store.load_initial()

        assert [e.id.value for e in entities] == ["1", "2", "3"]


class TestLoading:
    """Initial load and older pages."""

    def setup_method(self):
        self.backend = FakeBackend()
        self.store = dm_store(self.backend, page_size=2)

    @pytest.mark.asyncio
    async def test_load_failure_sets_error_and_propagates(self):
        self.backend.failures["fetch_entities"] = BackendError("offline")

        with pytest.raises(BackendError):
            await self.store.load_initial()

        assert isinstance(self.store.error, BackendError)
        assert len(self.store) == 0
        assert self.backend.count("fetch_entities") == 1

    @pytest.mark.asyncio
    async def test_load_keeps_latest_page(self):
        self.backend.add_rows(*(make_entity(i, at=i) for i in range(1, 6)))

        entities = await self.store.load_initial()

        assert [e.id.value for e in entities] == ["4", "5"]
        assert self.store.has_more

    @pytest.mark.asyncio
    async def test_load_older_prepends(self):
        self.backend.add_rows(*(make_entity(i, at=i) for i in range(1, 6)))
        await self.store.load_initial()

        added = await self.store.load_older()

        assert added == 2
        assert [e.id.value for e in self.store.entities] == ["2", "3", "4", "5"]

    @pytest.mark.asyncio
    async def test_load_older_stops_at_start(self):
        self.backend.add_rows(make_entity(1, at=1))
        await self.store.load_initial()

        assert not self.store.has_more
        assert await self.store.load_older() == 0

    @pytest.mark.asyncio
    async def test_results_after_discard_are_ignored(self):
        self.backend.add_rows(make_entity(1))
        self.store.discard()

        assert await self.store.load_initial() == []
        assert len(self.store) == 0


class TestSoftDelete:
    """Soft delete is monotonic and idempotent."""

    def setup_method(self):
        self.backend = FakeBackend()
        self.store = dm_store(self.backend)
        self.entity = make_entity(1, "secret", author_id=VIEWER)
        self.store.apply_remote_event(insert_event(self.entity))

    @pytest.mark.asyncio
    async def test_delete_twice(self):
        first = await self.store.soft_delete(self.entity.id)
        second = await self.store.soft_delete(self.entity.id)

        assert first.is_deleted and second.is_deleted
        assert len(self.store) == 1
        assert self.backend.count("mark_deleted") == 1

    @pytest.mark.asyncio
    async def test_deleted_entity_keeps_slot_with_tombstone_text(self):
        deleted = await self.store.soft_delete(self.entity.id)
        assert deleted.display_content == "Message deleted"

    @pytest.mark.asyncio
    async def test_failed_delete_reverts(self):
        self.backend.failures["mark_deleted"] = BackendError("denied")

        with pytest.raises(SoftDeleteError):
            await self.store.soft_delete(self.entity.id)

        assert not self.store.get(self.entity.id).is_deleted

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_flag_confirmed_by_push(self):
        gate = asyncio.Event()
        self.backend.gates["mark_deleted"] = gate
        self.backend.failures["mark_deleted"] = BackendError("timeout")

        pending = asyncio.ensure_future(self.store.soft_delete(self.entity.id))
        await asyncio.sleep(0)
        confirmed = replace(self.entity, is_deleted=True)
        self.store.apply_remote_event(RemoteEvent(ChangeType.UPDATE, confirmed.id, confirmed))
        gate.set()
        result = await pending

        assert result.is_deleted
        assert self.store.get(self.entity.id).is_deleted

    @pytest.mark.asyncio
    async def test_placeholder_cannot_be_deleted(self):
        local_id = self.store.submit_optimistic("pending")
        with pytest.raises(ValidationError):
            await self.store.soft_delete(local_id)

    def test_stale_update_does_not_undelete(self):
        deleted = replace(self.entity, is_deleted=True)
        self.store.apply_remote_event(RemoteEvent(ChangeType.UPDATE, deleted.id, deleted))

        stale = replace(self.entity, is_deleted=False)
        self.store.apply_remote_event(RemoteEvent(ChangeType.UPDATE, stale.id, stale))

        assert self.store.get(self.entity.id).is_deleted

    def test_remote_delete_marks_deleted(self):
        self.store.apply_remote_event(RemoteEvent(ChangeType.DELETE, self.entity.id))

        assert len(self.store) == 1
        assert self.store.get(self.entity.id).is_deleted


class TestThreading:
    """Parent references under each threading mode."""

    def _store(self, mode):
        store = OptimisticReplyStore(
            FakeBackend(), ConversationKind.DISCUSSION, DISCUSSION_ID, VIEWER, threading=mode,
        )
        root = make_entity(1, "root", kind=ConversationKind.DISCUSSION)
        child = make_entity(2, "child", at=1, kind=ConversationKind.DISCUSSION, parent_id="1")
        store.apply_remote_event(insert_event(root))
        store.apply_remote_event(insert_event(child))
        return store

    def test_one_level_reparents_to_root(self):
        store = self._store(ThreadingMode.ONE_LEVEL)
        local_id = store.submit_optimistic("deep", "2")
        assert store.get(local_id).parent_id == "1"

    def test_arbitrary_keeps_parent(self):
        store = self._store(ThreadingMode.ARBITRARY)
        local_id = store.submit_optimistic("deep", "2")
        assert store.get(local_id).parent_id == "2"

    def test_flat_drops_parent(self):
        store = self._store(ThreadingMode.FLAT)
        local_id = store.submit_optimistic("deep", "2")
        assert store.get(local_id).parent_id is None


class TestScoping:
    """Pushes and calls after teardown or for other conversations."""

    def setup_method(self):
        self.store = dm_store(FakeBackend())

    def test_push_for_other_conversation_dropped(self):
        stray = make_entity(1, conversation_id="conv-other")
        assert self.store.apply_remote_event(insert_event(stray)) is None
        assert len(self.store) == 0

    def test_discard_ignores_late_results(self):
        local_id = self.store.submit_optimistic("late")
        self.store.discard()

        assert self.store.reconcile(local_id, make_entity(1, author_id=VIEWER)) is None
        assert self.store.apply_remote_event(insert_event(make_entity(2))) is None
        assert len(self.store) == 0

    def test_submit_after_discard_rejected(self):
        self.store.discard()
        with pytest.raises(ValidationError):
            self.store.submit_optimistic("too late")

    def test_on_change_called_for_visible_changes(self):
        calls = []
        self.store.on_change = lambda: calls.append(len(self.store))
        local_id = self.store.submit_optimistic("a")
        self.store.reconcile(local_id, make_entity(1, "a", author_id=VIEWER))
        assert calls == [1, 1]
