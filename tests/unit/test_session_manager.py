"""
Unit Tests for Session Persistence Manager

Tests session creation fallbacks, resume, completion and retry of
unsynced completions.
"""

import pytest
import sys
import os
from datetime import datetime, timedelta
from typing import List, Optional

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "vocab_session_engine", "src"))

from vocab_session_engine.remote_gateway import (
    OfflineGateway,
    RemoteCompleteResult,
    RemoteCreateResult,
    RemoteSessionGateway,
)
from vocab_session_engine.scoring import aggregate_stats, grade_answer
from vocab_session_engine.session_manager import SessionManager
from vocab_session_engine.session_state import (
    Item,
    SessionMode,
    SessionNamespace,
    SessionState,
    SyncState,
)
from vocab_session_engine.snapshot import SessionSnapshot
from vocab_session_engine.snapshot_store import FileSnapshotStore, InMemorySnapshotStore

ITEMS = [
    Item(item_id="w1", prompt="casa", accepted_answers=("casa",)),
    Item(item_id="w2", prompt="perro", accepted_answers=("perro",)),
    Item(item_id="w3", prompt="gato", accepted_answers=("gato",)),
]
ITEM_IDS = [item.item_id for item in ITEMS]


class FakeGateway(RemoteSessionGateway):
    """Scriptable remote gateway that records calls."""

    def __init__(self, user_id: Optional[str] = "user-1"):
        self.user_id = user_id
        self.create_error: Optional[Exception] = None
        self.create_result = RemoteCreateResult(session_id="row-1")
        self.complete_results: List[RemoteCompleteResult] = []
        self.completions = []

    async def identity(self):
        return self.user_id

    async def create_session(self, mode, lesson_id):
        if self.create_error:
            raise self.create_error
        return self.create_result

    async def complete_session(self, row_id, lesson_id, mode, stats, records, draft_notes=None):
        self.completions.append({
            "row_id": row_id,
            "lesson_id": lesson_id,
            "mode": mode,
            "stats": stats,
            "records": records,
            "draft_notes": draft_notes,
        })
        if self.complete_results:
            return self.complete_results.pop(0)
        return RemoteCompleteResult(success=True)


class BrokenStore(InMemorySnapshotStore):
    """Store whose writes always fail."""

    def _write(self, key, data):
        raise OSError("disk full")


class TestSessionCreation:
    """Test suite for create_session and open_session."""

    @pytest.fixture
    def store(self):
        """Create in-memory store."""
        return InMemorySnapshotStore()

    @pytest.mark.asyncio
    async def test_remote_session(self, store):
        manager = SessionManager(store, FakeGateway())

        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        assert state.session_id == "remote:row-1"
        assert state.sync_state == SyncState.REMOTE_PENDING
        assert store.get(SessionMode.STUDY, "lesson-1").session_id == "remote:row-1"

    @pytest.mark.asyncio
    async def test_guest_without_identity(self, store):
        manager = SessionManager(store, FakeGateway(user_id=None))

        state = await manager.create_session(SessionMode.TEST, "lesson-1", ITEM_IDS)

        assert state.namespace == SessionNamespace.GUEST
        assert state.session_id.startswith("guest:lesson-1:")
        assert state.sync_state == SyncState.NO_REMOTE
        assert store.get(SessionMode.TEST, "lesson-1").session_id == state.session_id

    @pytest.mark.asyncio
    async def test_remote_create_throws_falls_back_to_local(self, store):
        """A throwing remote create still yields a usable session and pointer."""
        gateway = FakeGateway()
        gateway.create_error = ConnectionError("network down")
        manager = SessionManager(store, gateway)

        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        assert state.namespace == SessionNamespace.LOCAL
        assert state.session_id.startswith("local:lesson-1:")
        assert store.get(SessionMode.STUDY, "lesson-1").session_id == state.session_id

    @pytest.mark.asyncio
    async def test_remote_create_error_result_falls_back_to_local(self, store):
        gateway = FakeGateway()
        gateway.create_result = RemoteCreateResult(error="permission denied")
        manager = SessionManager(store, gateway)

        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        assert state.namespace == SessionNamespace.LOCAL

    @pytest.mark.asyncio
    async def test_offline_gateway_with_user(self, store):
        manager = SessionManager(store, OfflineGateway(user_id="user-1"))

        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        assert state.namespace == SessionNamespace.LOCAL

    @pytest.mark.asyncio
    async def test_open_session_resumes_existing(self, store):
        manager = SessionManager(store, FakeGateway())
        created = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)
        created.current_index = 2
        manager.persist(created)

        opened = await manager.open_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        assert opened.session_id == created.session_id
        assert opened.current_index == 2


class TestResume:
    """Test suite for resume."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("store_kind", ["memory", "file"])
    async def test_round_trip(self, store_kind, tmp_path):
        """A reloaded manager rebuilds index, completions and every answer."""
        def make_store():
            if store_kind == "memory":
                return shared
            return FileSnapshotStore(tmp_path)

        shared = InMemorySnapshotStore()
        manager = SessionManager(make_store(), FakeGateway())
        state = await manager.create_session(SessionMode.TEST, "lesson-1", ITEM_IDS)
        state.record_progress(grade_answer(ITEMS[0], "casa", clue_level=1))
        state.record_progress(grade_answer(ITEMS[1], "pero", clue_level=2))
        state.mark_completed(0)
        state.mark_completed(1)
        state.current_index = 2
        state.elapsed_seconds = 33
        assert manager.persist(state) is True

        reloaded = SessionManager(make_store(), FakeGateway())
        resumed = await reloaded.resume(SessionMode.TEST, "lesson-1", ITEM_IDS)

        assert resumed.session_id == state.session_id
        assert resumed.current_index == 2
        assert resumed.completed_indices == {0, 1}
        assert resumed.elapsed_seconds == 33
        assert resumed.progress_by_item_id == state.progress_by_item_id

    @pytest.mark.asyncio
    async def test_nothing_to_resume(self):
        manager = SessionManager(InMemorySnapshotStore(), FakeGateway())

        assert await manager.resume(SessionMode.STUDY, "lesson-1") is None

    @pytest.mark.asyncio
    async def test_changed_item_list_is_parked(self):
        store = InMemorySnapshotStore()
        manager = SessionManager(store, FakeGateway(user_id=None))
        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        resumed = await manager.resume(SessionMode.STUDY, "lesson-1", ["w1", "w2"])

        assert resumed is None
        assert store.get(SessionMode.STUDY, "lesson-1") is None
        assert [s.session_id for s in store.parked(SessionMode.STUDY, "lesson-1")] == [state.session_id]

    @pytest.mark.asyncio
    async def test_finished_unsynced_session_is_retried_not_resumed(self):
        store = InMemorySnapshotStore()
        gateway = FakeGateway()
        gateway.complete_results = [RemoteCompleteResult(success=False, error="timeout")]
        manager = SessionManager(store, gateway)
        state = await manager.create_session(SessionMode.TEST, "lesson-1", ITEM_IDS)
        state.record_progress(grade_answer(ITEMS[0], "casa"))
        result = await manager.complete(state)
        assert result.retained is True

        resumed = await manager.resume(SessionMode.TEST, "lesson-1", ITEM_IDS)

        assert resumed is None
        assert len(gateway.completions) == 2
        assert store.parked(SessionMode.TEST, "lesson-1") == []


class TestPersist:
    """Test suite for persist."""

    @pytest.mark.asyncio
    async def test_store_failure_reported_not_raised(self):
        manager = SessionManager(BrokenStore(), FakeGateway(user_id=None))

        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        assert state.namespace == SessionNamespace.GUEST
        assert manager.persist(state) is False


class TestComplete:
    """Test suite for complete and retry_pending."""

    @pytest.fixture
    def store(self):
        """Create in-memory store."""
        return InMemorySnapshotStore()

    @pytest.mark.asyncio
    async def test_remote_success_clears_snapshot(self, store):
        gateway = FakeGateway()
        manager = SessionManager(store, gateway)
        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)
        state.record_progress(grade_answer(ITEMS[1], "perro"))
        state.record_progress(grade_answer(ITEMS[0], "casa"))
        state.set_note("w3", "sounds like 'got a'")

        result = await manager.complete(state, aggregate_stats(state))

        assert result.success is True
        assert result.retained is False
        assert state.finished is True
        assert state.sync_state == SyncState.REMOTE_CONFIRMED
        assert store.get(SessionMode.STUDY, "lesson-1") is None

        call = gateway.completions[0]
        assert call["row_id"] == "row-1"
        assert [p.item_id for p in call["records"]] == ["w1", "w2"]
        assert call["draft_notes"] == {"w3": "sounds like 'got a'"}
        assert call["stats"].points_earned == 6

    @pytest.mark.asyncio
    async def test_remote_failure_retains_snapshot(self, store):
        gateway = FakeGateway()
        gateway.complete_results = [RemoteCompleteResult(success=False, error="503")]
        manager = SessionManager(store, gateway)
        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        result = await manager.complete(state)

        assert result.success is False
        assert result.error == "503"
        assert result.retained is True
        snapshot = store.get(SessionMode.STUDY, "lesson-1")
        assert snapshot.finished is True
        assert snapshot.sync_state == SyncState.REMOTE_PENDING

    @pytest.mark.asyncio
    async def test_gateway_exception_retains_snapshot(self, store):
        class ExplodingGateway(FakeGateway):
            async def complete_session(self, *args, **kwargs):
                raise ConnectionError("reset by peer")

        manager = SessionManager(store, ExplodingGateway())
        state = await manager.create_session(SessionMode.TEST, "lesson-1", ITEM_IDS)

        result = await manager.complete(state)

        assert result.success is False
        assert "reset by peer" in result.error
        assert store.get(SessionMode.TEST, "lesson-1") is not None

    @pytest.mark.asyncio
    async def test_guest_completion_is_kept_locally(self, store):
        gateway = FakeGateway(user_id=None)
        manager = SessionManager(store, gateway)
        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)

        result = await manager.complete(state)

        assert result.success is False
        assert result.retained is True
        assert result.error
        assert gateway.completions == []
        assert store.get(SessionMode.STUDY, "lesson-1").finished is True

    @pytest.mark.asyncio
    async def test_test_mode_sends_no_notes(self, store):
        gateway = FakeGateway()
        manager = SessionManager(store, gateway)
        state = await manager.create_session(SessionMode.TEST, "lesson-1", ITEM_IDS)

        await manager.complete(state)

        assert gateway.completions[0]["draft_notes"] == {}

    @pytest.mark.asyncio
    async def test_retry_pending(self, store):
        gateway = FakeGateway()
        gateway.complete_results = [RemoteCompleteResult(success=False, error="offline")]
        manager = SessionManager(store, gateway)
        state = await manager.create_session(SessionMode.STUDY, "lesson-1", ITEM_IDS)
        await manager.complete(state)
        # A reload parks the finished snapshot (retry fails again)
        gateway.complete_results = [RemoteCompleteResult(success=False, error="offline")]
        await manager.resume(SessionMode.STUDY, "lesson-1", ITEM_IDS)
        assert len(store.parked(SessionMode.STUDY, "lesson-1")) == 1

        confirmed = await manager.retry_pending(SessionMode.STUDY, "lesson-1")

        assert confirmed == 1
        assert store.parked(SessionMode.STUDY, "lesson-1") == []
        assert len(gateway.completions) == 3

class TestParkedRetention:
    """Test suite for removal of parked snapshots that cannot be re-sent."""

    def parked_snapshot(self, session_id, days_old, sync_state=SyncState.NO_REMOTE, finished=True):
        state = SessionState(
            session_id=session_id,
            mode=SessionMode.STUDY,
            lesson_id="lesson-1",
            item_ids=list(ITEM_IDS),
            sync_state=sync_state,
            finished=finished,
        )
        snapshot = SessionSnapshot.from_state(state)
        return snapshot.model_copy(update={"saved_at": datetime.now() - timedelta(days=days_old)})

    @pytest.mark.asyncio
    async def test_old_guest_and_unfinished_snapshots_removed(self):
        store = InMemorySnapshotStore()
        store.park(self.parked_snapshot("guest:lesson-1:old", days_old=45))
        store.park(self.parked_snapshot("local:lesson-1:stale", days_old=31, finished=False))
        store.park(self.parked_snapshot("guest:lesson-1:recent", days_old=2))
        manager = SessionManager(store, FakeGateway(), parked_retention_days=30)

        confirmed = await manager.retry_pending(SessionMode.STUDY, "lesson-1")

        assert confirmed == 0
        remaining = [s.session_id for s in store.parked(SessionMode.STUDY, "lesson-1")]
        assert remaining == ["guest:lesson-1:recent"]

    @pytest.mark.asyncio
    async def test_old_unsynced_remote_completion_is_kept(self):
        store = InMemorySnapshotStore()
        store.park(self.parked_snapshot("remote:row-9", days_old=90, sync_state=SyncState.REMOTE_PENDING))
        gateway = FakeGateway()
        gateway.complete_results = [RemoteCompleteResult(success=False, error="offline")]
        manager = SessionManager(store, gateway, parked_retention_days=30)

        confirmed = await manager.retry_pending(SessionMode.STUDY, "lesson-1")

        assert confirmed == 0
        assert [s.session_id for s in store.parked(SessionMode.STUDY, "lesson-1")] == ["remote:row-9"]
        assert gateway.completions[0]["row_id"] == "row-9"



if __name__ == "__main__":
    pytest.main([__file__, "-v"])
