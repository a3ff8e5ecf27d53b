"""
Session Persistence Manager

Keeps a session's progress safe across reloads, network failures and guest
usage with two tiers:

- a local snapshot, written synchronously on every change and keyed by
  (mode, lesson_id), that is the source of truth while the session runs
- a best-effort remote session row (remote: ids only) that receives a single
  completion write at the end

The local snapshot is only cleared once the completion write is confirmed.
Snapshots that cannot be resumed (finished but unsynced, or built for a
different item list) are parked rather than thrown away.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from vocab_session_engine.logger import get_logger
from vocab_session_engine.remote_gateway import (
    RemoteCompleteResult,
    RemoteCreateResult,
    RemoteSessionGateway,
)
from vocab_session_engine.scoring import AggregateStats, aggregate_stats
from vocab_session_engine.session_state import (
    SessionMode,
    SessionNamespace,
    SessionState,
    SyncState,
    guest_session_id,
    local_session_id,
    remote_row_id,
    remote_session_id,
)
from vocab_session_engine.snapshot import SessionSnapshot
from vocab_session_engine.snapshot_store import SnapshotStore

logger = get_logger(__name__)

# Parked snapshots that can never be re-sent are dropped after this many days
DEFAULT_PARKED_RETENTION_DAYS = 30


@dataclass
class CompletionResult:
    """Outcome of finishing a session."""
    success: bool
    error: Optional[str] = None
    retained: bool = False  # local snapshot kept for a later retry


class SessionManager:
    """
    Creates, resumes, persists and completes sessions.

    Never raises for storage or remote failures; those are logged and
    reported through return values.
    """

    def __init__(
        self,
        store: SnapshotStore,
        gateway: RemoteSessionGateway,
        parked_retention_days: int = DEFAULT_PARKED_RETENTION_DAYS,
    ):
        """
        Initialize SessionManager.

        Args:
            store: Local snapshot store
            gateway: Remote session gateway
            parked_retention_days: Age after which parked snapshots that
                cannot be re-sent (guest, local, unfinished) are removed
        """
        self.store = store
        self.gateway = gateway
        self.parked_retention_days = parked_retention_days

    async def resume(
        self,
        mode: SessionMode,
        lesson_id: str,
        item_ids: Optional[List[str]] = None,
    ) -> Optional[SessionState]:
        """
        Restore the incomplete session for a lesson, if there is one.

        Args:
            mode: Session mode
            lesson_id: Lesson identifier
            item_ids: Current item list of the lesson; a snapshot built for a
                different list is not resumed

        Returns:
            SessionState with its original id, or None
        """
        try:
            snapshot = self.store.get(mode, lesson_id)
        except Exception as e:
            logger.error(f"❌ [SessionManager] Could not read snapshot for {mode.value}/{lesson_id}", error=e)
            snapshot = None

        state = None
        if snapshot is not None:
            if snapshot.finished:
                self._park(snapshot, "finished but not synced")
            elif item_ids is not None and list(item_ids) != snapshot.item_ids:
                self._park(snapshot, "item list changed")
            else:
                state = snapshot.to_state()
                logger.info(f"💾 [SessionManager] Resumed session {state.session_id}", data={
                    "lesson_id": lesson_id,
                    "mode": mode.value,
                    "current_index": state.current_index,
                    "answered": len(state.progress_by_item_id),
                    "elapsed_seconds": state.elapsed_seconds,
                })

        await self.retry_pending(mode, lesson_id)
        return state

    async def create_session(self, mode: SessionMode, lesson_id: str, item_ids: List[str]) -> SessionState:
        """
        Start a new session and write its first snapshot.

        Guests get a guest: id; authenticated users get a remote: id, or a
        local: id when the remote row cannot be created.

        Returns:
            SessionState
        """
        user_id = await self._identity()

        if not user_id:
            session_id = guest_session_id(lesson_id)
            sync_state = SyncState.NO_REMOTE
        else:
            try:
                result = await self.gateway.create_session(mode, lesson_id)
            except Exception as e:
                result = RemoteCreateResult(error=str(e))

            if result.ok:
                session_id = remote_session_id(result.session_id)
                sync_state = SyncState.REMOTE_PENDING
            else:
                logger.warning(f"⚠️ [SessionManager] Remote session create failed, continuing locally: {result.error}")
                session_id = local_session_id(lesson_id)
                sync_state = SyncState.NO_REMOTE

        state = SessionState(
            session_id=session_id,
            mode=mode,
            lesson_id=lesson_id,
            item_ids=list(item_ids),
            sync_state=sync_state,
        )

        try:
            previous = self.store.get(mode, lesson_id)
        except Exception:
            previous = None
        if previous is not None and previous.session_id != session_id:
            self._park(previous, "replaced by a new session")

        self.persist(state)
        logger.info(f"💾 [SessionManager] Created session {session_id}", data={
            "lesson_id": lesson_id,
            "mode": mode.value,
            "items": len(state.item_ids),
            "sync_state": sync_state.value,
        })
        return state

    async def open_session(self, mode: SessionMode, lesson_id: str, item_ids: List[str]) -> SessionState:
        """Resume the lesson's incomplete session or create a new one."""
        state = await self.resume(mode, lesson_id, item_ids)
        if state is not None:
            return state
        return await self.create_session(mode, lesson_id, item_ids)

    def persist(self, state: SessionState) -> bool:
        """
        Write a full snapshot of the session.

        Returns:
            True if written, False if the store failed
        """
        state.last_updated = datetime.now()
        try:
            snapshot = SessionSnapshot.from_state(state)
            self.store.set(state.mode, state.lesson_id, snapshot)
            return True
        except Exception as e:
            logger.error(f"❌ [SessionManager] Failed to persist session {state.session_id}", error=e)
            return False

    async def complete(self, state: SessionState, stats: Optional[AggregateStats] = None) -> CompletionResult:
        """
        Finish a session and reconcile it with the remote store.

        Args:
            state: Session to finish
            stats: Aggregate statistics (computed from state if None)

        Returns:
            CompletionResult; retained is True when the local snapshot was kept
        """
        stats = stats or aggregate_stats(state)
        state.finished = True

        if state.sync_state is SyncState.REMOTE_CONFIRMED:
            self._clear(state)
            return CompletionResult(success=True)

        if state.namespace is not SessionNamespace.REMOTE:
            self.persist(state)
            logger.warning(f"⚠️ [SessionManager] Session {state.session_id} has no remote record, keeping it locally")
            return CompletionResult(
                success=False,
                error="Progress saved on this device only",
                retained=True,
            )

        result = await self._send_completion(state, stats)
        if result.success:
            state.sync_state = SyncState.REMOTE_CONFIRMED
            self._clear(state)
            logger.success(f"[SessionManager] Completed session {state.session_id}", data=stats.to_dict())
            return CompletionResult(success=True)

        self.persist(state)
        logger.warning(f"⚠️ [SessionManager] Completion write failed for {state.session_id}, kept for retry", data={
            "error": result.error,
        })
        return CompletionResult(
            success=False,
            error=result.error or "Completion write failed",
            retained=True,
        )

    async def retry_pending(self, mode: SessionMode, lesson_id: str) -> int:
        """
        Re-send completion writes for parked remote sessions.

        Parked snapshots that can never be re-sent are removed once they
        are older than the retention period.

        Returns:
            Number of sessions confirmed
        """
        try:
            parked = self.store.parked(mode, lesson_id)
        except Exception as e:
            logger.error(f"❌ [SessionManager] Could not list parked snapshots for {mode.value}/{lesson_id}", error=e)
            return 0

        cutoff = datetime.now() - timedelta(days=self.parked_retention_days)
        confirmed = 0
        for snapshot in parked:
            if not snapshot.finished or snapshot.sync_state is not SyncState.REMOTE_PENDING:
                if snapshot.saved_at < cutoff:
                    self._prune(snapshot)
                continue
            state = snapshot.to_state()
            result = await self._send_completion(state, aggregate_stats(state))
            if not result.success:
                logger.debug(f"🔁 [SessionManager] Retry for {state.session_id} failed: {result.error}")
                continue
            try:
                self.store.unpark(mode, snapshot.session_id)
            except Exception as e:
                logger.error(f"❌ [SessionManager] Could not unpark {snapshot.session_id}", error=e)
            confirmed += 1

        if confirmed:
            logger.info(f"🔁 [SessionManager] Synced {confirmed} pending session(s) for {mode.value}/{lesson_id}")
        return confirmed

    async def _identity(self) -> Optional[str]:
        try:
            return await self.gateway.identity()
        except Exception as e:
            logger.warning(f"⚠️ [SessionManager] Identity lookup failed, treating user as guest: {e}")
            return None

    async def _send_completion(self, state: SessionState, stats: AggregateStats) -> RemoteCompleteResult:
        records = [
            state.progress_by_item_id[item_id]
            for item_id in state.item_ids
            if item_id in state.progress_by_item_id and state.progress_by_item_id[item_id].has_answered
        ]
        draft_notes = dict(state.draft_notes) if state.mode is SessionMode.STUDY else {}
        try:
            return await self.gateway.complete_session(
                remote_row_id(state.session_id),
                state.lesson_id,
                state.mode,
                stats,
                records,
                draft_notes,
            )
        except Exception as e:
            return RemoteCompleteResult(success=False, error=str(e))

    def _park(self, snapshot: SessionSnapshot, reason: str):
        try:
            self.store.park(snapshot)
            self.store.clear(snapshot.mode, snapshot.lesson_id)
            logger.info(f"📦 [SessionManager] Parked session {snapshot.session_id}: {reason}")
        except Exception as e:
            logger.error(f"❌ [SessionManager] Could not park session {snapshot.session_id}", error=e)

    def _prune(self, snapshot: SessionSnapshot):
        try:
            self.store.unpark(snapshot.mode, snapshot.session_id)
            logger.info(f"🧹 [SessionManager] Removed parked session {snapshot.session_id} saved {snapshot.saved_at:%Y-%m-%d}")
        except Exception as e:
            logger.error(f"❌ [SessionManager] Could not remove parked session {snapshot.session_id}", error=e)

    def _clear(self, state: SessionState):
        try:
            self.store.clear(state.mode, state.lesson_id)
        except Exception as e:
            logger.error(f"❌ [SessionManager] Could not clear snapshot for {state.session_id}", error=e)
