"""
Remote Session Gateways

The durable store behind remote: sessions. A gateway knows who the user is,
creates a session row when a lesson is opened and writes the completion
record (aggregate stats plus per-item results) when it is finished.

Gateways never raise for remote failures: every outcome comes back as a
result object so the engine can keep the learner moving.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from vocab_session_engine.scoring import AggregateStats
from vocab_session_engine.session_state import ItemProgress, SessionMode

logger = logging.getLogger(__name__)

DEFAULT_MASTERY_STREAK = 3

WORD_NOT_STARTED = "not-started"
WORD_STUDYING = "studying"
WORD_MASTERED = "mastered"


@dataclass
class RemoteCreateResult:
    session_id: Optional[str] = None  # row id, without the remote: prefix
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.session_id is not None and self.error is None


@dataclass
class RemoteCompleteResult:
    success: bool
    error: Optional[str] = None


class RemoteSessionGateway(ABC):
    """Durable store for session rows and completion records."""

    @abstractmethod
    async def identity(self) -> Optional[str]:
        """Authenticated user id, or None for a guest."""

    @abstractmethod
    async def create_session(self, mode: SessionMode, lesson_id: str) -> RemoteCreateResult:
        """Create a session row for the current user."""

    @abstractmethod
    async def complete_session(
        self,
        row_id: str,
        lesson_id: str,
        mode: SessionMode,
        stats: AggregateStats,
        records: List[ItemProgress],
        draft_notes: Optional[Dict[str, Optional[str]]] = None,
    ) -> RemoteCompleteResult:
        """
        Write the completion record for a session row.

        Args:
            row_id: Session row id
            lesson_id: Lesson the session belongs to
            mode: Session mode
            stats: Aggregate session statistics
            records: Progress of every answered item
            draft_notes: Study notes for items that were never answered

        Returns:
            RemoteCompleteResult
        """


class OfflineGateway(RemoteSessionGateway):
    """
    Gateway with no durable store.

    With a user id it behaves like an authenticated user whose network is
    down (sessions become local:); without one every session is a guest.
    """

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id

    async def identity(self) -> Optional[str]:
        return self.user_id

    async def create_session(self, mode: SessionMode, lesson_id: str) -> RemoteCreateResult:
        return RemoteCreateResult(error="Remote store unavailable")

    async def complete_session(self, row_id, lesson_id, mode, stats, records, draft_notes=None) -> RemoteCompleteResult:
        return RemoteCompleteResult(success=False, error="Remote store unavailable")


# ---------------------------------------------------------------------------
# Progress rules
# ---------------------------------------------------------------------------

def next_review_delay(mastered: bool, is_correct: bool) -> timedelta:
    """Simple spaced repetition: 1 day once mastered, 4 hours if right, 1 hour if wrong."""
    if mastered:
        return timedelta(days=1)
    if is_correct:
        return timedelta(hours=4)
    return timedelta(hours=1)


def word_progress_after_study(
    existing: Optional[Dict[str, Any]],
    is_correct: bool,
    note: Optional[str],
    now: datetime,
    mastery_streak: int = DEFAULT_MASTERY_STREAK,
) -> Dict[str, Any]:
    """Word progress fields after answering the word in Study mode."""
    existing = existing or {}
    streak = (existing.get("correct_streak") or 0) + 1 if is_correct else 0
    mastered = streak >= mastery_streak
    return {
        "status": WORD_MASTERED if mastered else WORD_STUDYING,
        "correct_streak": streak,
        "last_studied_at": now.isoformat(),
        "next_review_at": (now + next_review_delay(mastered, is_correct)).isoformat(),
        "mastered_at": now.isoformat() if mastered else existing.get("mastered_at"),
        "user_notes": note if note is not None else existing.get("user_notes"),
    }


def notes_only_progress(existing: Optional[Dict[str, Any]], note: Optional[str]) -> Dict[str, Any]:
    """Fields for saving a note on a word that was not answered."""
    if existing:
        return {"user_notes": note}
    return {"status": WORD_NOT_STARTED, "correct_streak": 0, "user_notes": note}


def word_progress_after_test(
    existing: Optional[Dict[str, Any]],
    progress: ItemProgress,
    now: datetime,
    mastery_streak: int = DEFAULT_MASTERY_STREAK,
) -> Dict[str, Any]:
    """Word progress fields after answering the word in Test mode."""
    existing = existing or {}
    is_correct = progress.mistake_count == 0
    best_clue_level = existing.get("best_clue_level")
    if best_clue_level is None:
        best_clue_level = 2
    # Lowest clue level that still produced a correct answer
    if is_correct and progress.clue_level < best_clue_level:
        best_clue_level = progress.clue_level

    streak = (existing.get("correct_streak") or 0) + 1 if is_correct else 0
    mastered = streak >= mastery_streak
    return {
        "status": WORD_MASTERED if mastered else WORD_STUDYING,
        "correct_streak": streak,
        "times_tested": (existing.get("times_tested") or 0) + 1,
        "total_points_earned": (existing.get("total_points_earned") or 0) + progress.points_earned,
        "best_clue_level": best_clue_level,
        "last_mistake_count": progress.mistake_count,
        "last_studied_at": now.isoformat(),
        "mastered_at": now.isoformat() if mastered else existing.get("mastered_at"),
    }


def lesson_progress(
    existing: Optional[Dict[str, Any]],
    word_statuses: Iterable[str],
    total_words: int,
    additional_seconds: int,
    now: datetime,
) -> Dict[str, Any]:
    """Lesson progress aggregated from the statuses of its words."""
    statuses = list(word_statuses)
    mastered = sum(1 for status in statuses if status == WORD_MASTERED)
    studied = sum(1 for status in statuses if status != WORD_NOT_STARTED)
    completion = int(100 * mastered / total_words + 0.5) if total_words > 0 else 0

    if completion >= 100:
        status = WORD_MASTERED
    elif studied > 0:
        status = WORD_STUDYING
    else:
        status = WORD_NOT_STARTED

    existing = existing or {}
    return {
        "status": status,
        "completion_percent": completion,
        "words_mastered": mastered,
        "total_study_time_seconds": (existing.get("total_study_time_seconds") or 0) + additional_seconds,
        "last_studied_at": now.isoformat(),
    }


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

class SupabaseSessionGateway(RemoteSessionGateway):
    """
    Remote gateway backed by Supabase tables.

    Tables used: study_sessions, user_word_progress, user_lesson_progress,
    lessons, words, user_test_scores and test_questions.
    """

    def __init__(self, supabase_client, user_id: Optional[str] = None, mastery_streak: int = DEFAULT_MASTERY_STREAK):
        """
        Initialize the gateway.

        Args:
            supabase_client: Supabase client instance
            user_id: Explicit user id; otherwise taken from the client's auth session
            mastery_streak: Consecutive correct answers that master a word
        """
        self.supabase = supabase_client
        self.user_id = user_id
        self.mastery_streak = mastery_streak

    async def identity(self) -> Optional[str]:
        if self.user_id:
            return self.user_id
        try:
            response = self.supabase.auth.get_user()
        except Exception as e:
            logger.warning(f"⚠️ [SupabaseGateway] Could not read auth user: {e}")
            return None
        user = getattr(response, "user", None) if response else None
        return user.id if user else None

    async def create_session(self, mode: SessionMode, lesson_id: str) -> RemoteCreateResult:
        user_id = await self.identity()
        if not user_id:
            return RemoteCreateResult(error="User not authenticated")

        try:
            result = self.supabase.table('study_sessions').insert({
                "user_id": user_id,
                "lesson_id": lesson_id,
                "session_type": mode.value,
                "started_at": datetime.now().isoformat(),
                "words_studied": 0,
                "words_mastered": 0,
            }).execute()
        except Exception as e:
            logger.error(f"❌ [SupabaseGateway] Error creating {mode.value} session for lesson {lesson_id}: {e}")
            return RemoteCreateResult(error=str(e))

        if not result.data:
            return RemoteCreateResult(error="Session insert returned no row")

        row_id = str(result.data[0]["id"])
        logger.info(f"✅ [SupabaseGateway] Created {mode.value} session {row_id} for lesson {lesson_id}")
        return RemoteCreateResult(session_id=row_id)

    async def complete_session(
        self,
        row_id: str,
        lesson_id: str,
        mode: SessionMode,
        stats: AggregateStats,
        records: List[ItemProgress],
        draft_notes: Optional[Dict[str, Optional[str]]] = None,
    ) -> RemoteCompleteResult:
        user_id = await self.identity()
        if not user_id:
            return RemoteCompleteResult(success=False, error="User not authenticated")

        try:
            if mode is SessionMode.TEST:
                return self._complete_test(user_id, row_id, lesson_id, stats, records)
            return self._complete_study(user_id, row_id, lesson_id, stats, records, draft_notes or {})
        except Exception as e:
            logger.error(f"❌ [SupabaseGateway] Error completing session {row_id}: {e}")
            return RemoteCompleteResult(success=False, error=str(e))

    # Study

    def _complete_study(self, user_id, row_id, lesson_id, stats, records, draft_notes) -> RemoteCompleteResult:
        now = datetime.now()
        existing = self._existing_word_progress(user_id, [p.item_id for p in records] + list(draft_notes))

        updates = {
            progress.item_id: word_progress_after_study(
                existing.get(progress.item_id), progress.is_correct, progress.user_note, now, self.mastery_streak
            )
            for progress in records
        }
        words_mastered = sum(1 for fields in updates.values() if fields["status"] == WORD_MASTERED)

        # The session row decides success; word writes below are best-effort
        self._end_session_row(user_id, row_id, stats.items_answered, words_mastered, stats.elapsed_seconds)

        failed = 0
        for word_id, fields in updates.items():
            if not self._write_word_progress(user_id, word_id, existing.get(word_id), fields):
                failed += 1
        for word_id, note in draft_notes.items():
            fields = notes_only_progress(existing.get(word_id), note)
            if not self._write_word_progress(user_id, word_id, existing.get(word_id), fields):
                failed += 1
        if failed:
            logger.warning(f"⚠️ [SupabaseGateway] Failed to update {failed} word(s) for session {row_id}")

        self._update_lesson_progress(user_id, lesson_id, stats.elapsed_seconds, now)
        logger.info(f"✅ [SupabaseGateway] Completed study session {row_id} ({len(records)} answered, {words_mastered} mastered)")
        return RemoteCompleteResult(success=True)

    def _update_lesson_progress(self, user_id: str, lesson_id: str, additional_seconds: int, now: datetime):
        try:
            words = self.supabase.table('words').select('id').eq('lesson_id', lesson_id).execute()
            word_ids = [row["id"] for row in (words.data or [])]
            if not word_ids:
                logger.warning(f"⚠️ [SupabaseGateway] No words found for lesson {lesson_id}")
                return

            lesson = self.supabase.table('lessons').select('word_count').eq('id', lesson_id).execute()
            total_words = (lesson.data[0].get("word_count") if lesson.data else None) or len(word_ids)

            statuses = self.supabase.table('user_word_progress') \
                .select('status') \
                .eq('user_id', user_id) \
                .in_('word_id', word_ids) \
                .execute()

            existing = self.supabase.table('user_lesson_progress') \
                .select('*') \
                .eq('user_id', user_id) \
                .eq('lesson_id', lesson_id) \
                .limit(1) \
                .execute()
            existing_row = existing.data[0] if existing.data else None

            fields = lesson_progress(
                existing_row,
                [row["status"] for row in (statuses.data or [])],
                total_words,
                additional_seconds,
                now,
            )
            if existing_row:
                self.supabase.table('user_lesson_progress').update(fields).eq('id', existing_row["id"]).execute()
            else:
                self.supabase.table('user_lesson_progress').insert(
                    {"user_id": user_id, "lesson_id": lesson_id, **fields}
                ).execute()
        except Exception as e:
            logger.warning(f"⚠️ [SupabaseGateway] Error updating lesson progress for {lesson_id}: {e}")

    # Test

    def _complete_test(self, user_id, row_id, lesson_id, stats, records) -> RemoteCompleteResult:
        now = datetime.now()
        existing = self._existing_word_progress(user_id, [p.item_id for p in records])
        updates = {
            progress.item_id: word_progress_after_test(existing.get(progress.item_id), progress, now, self.mastery_streak)
            for progress in records
        }
        mastered_count = sum(1 for fields in updates.values() if fields["status"] == WORD_MASTERED)
        new_words_count = sum(
            1 for progress in records
            if (existing.get(progress.item_id) or {}).get("status", WORD_NOT_STARTED) == WORD_NOT_STARTED
        )

        self._end_session_row(user_id, row_id, stats.items_total, mastered_count, stats.elapsed_seconds)

        score = self.supabase.table('user_test_scores').insert({
            "user_id": user_id,
            "lesson_id": lesson_id,
            "milestone": "other",
            "total_questions": stats.items_total,
            "correct_answers": stats.items_correct,
            "points_earned": stats.points_earned,
            "max_points": stats.max_points,
            "score_percent": stats.score_percent,
            "duration_seconds": stats.elapsed_seconds,
            "new_words_count": new_words_count,
            "mastered_words_count": mastered_count,
            "taken_at": now.isoformat(),
        }).execute()
        if not score.data:
            return RemoteCompleteResult(success=False, error="Test score insert returned no row")
        test_score_id = score.data[0]["id"]

        if records:
            try:
                self.supabase.table('test_questions').insert([
                    {
                        "test_score_id": test_score_id,
                        "word_id": progress.item_id,
                        "user_answer": progress.user_answer,
                        "correct_answer": progress.matched_answer,
                        "clue_level": progress.clue_level,
                        "mistake_count": progress.mistake_count,
                        "points_earned": progress.points_earned,
                        "max_points": progress.max_points,
                        "time_to_answer_ms": progress.time_to_answer_ms,
                        "answered_at": (progress.answered_at or now).isoformat(),
                    }
                    for progress in records
                ]).execute()
            except Exception as e:
                logger.warning(f"⚠️ [SupabaseGateway] Error saving test questions for score {test_score_id}: {e}")

        for word_id, fields in updates.items():
            self._write_word_progress(user_id, word_id, existing.get(word_id), fields)

        logger.info(f"✅ [SupabaseGateway] Completed test session {row_id} (score {stats.score_percent}%)")
        return RemoteCompleteResult(success=True)

    # Shared

    def _end_session_row(self, user_id: str, row_id: str, words_studied: int, words_mastered: int, duration_seconds: int):
        self.supabase.table('study_sessions').update({
            "ended_at": datetime.now().isoformat(),
            "words_studied": words_studied,
            "words_mastered": words_mastered,
            "duration_seconds": duration_seconds,
        }).eq('id', row_id).eq('user_id', user_id).execute()

    def _existing_word_progress(self, user_id: str, word_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not word_ids:
            return {}
        result = self.supabase.table('user_word_progress') \
            .select('*') \
            .eq('user_id', user_id) \
            .in_('word_id', list(dict.fromkeys(word_ids))) \
            .execute()
        return {row["word_id"]: row for row in (result.data or [])}

    def _write_word_progress(self, user_id: str, word_id: str, existing: Optional[Dict[str, Any]], fields: Dict[str, Any]) -> bool:
        try:
            if existing:
                self.supabase.table('user_word_progress').update(fields).eq('id', existing["id"]).execute()
            else:
                self.supabase.table('user_word_progress').insert(
                    {"user_id": user_id, "word_id": word_id, **fields}
                ).execute()
            return True
        except Exception as e:
            logger.warning(f"⚠️ [SupabaseGateway] Error updating progress for word {word_id}: {e}")
            return False
