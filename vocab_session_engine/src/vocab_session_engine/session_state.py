"""
Session State Data Model

Defines the items, per-item progress and SessionState dataclasses shared by
every part of the learning session engine.
"""

import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from vocab_session_engine.errors import ItemLockedError


class SessionMode(Enum):
    """Session modes."""
    STUDY = "study"
    TEST = "test"


class AnswerGrade(Enum):
    """Coarse correctness bucket derived from the mistake count."""
    CORRECT = "correct"
    HALF_CORRECT = "half-correct"
    INCORRECT = "incorrect"


class AudioKind(Enum):
    """Logical audio channels attached to an item."""
    MEANING = "meaning"
    TARGET = "target"
    TRIGGER = "trigger"


class SyncState(Enum):
    """Reconciliation state between the local snapshot and the remote row."""
    NO_REMOTE = "no-remote"  # local: / guest: sessions
    REMOTE_PENDING = "remote-pending"  # row exists, completion not confirmed
    REMOTE_CONFIRMED = "remote-confirmed"


class SessionNamespace(Enum):
    """Session id prefixes."""
    REMOTE = "remote"
    LOCAL = "local"
    GUEST = "guest"


def _timestamp_ms() -> int:
    return time.time_ns() // 1_000_000


def remote_session_id(row_id: str) -> str:
    """Session id for a durable-store row."""
    return f"{SessionNamespace.REMOTE.value}:{row_id}"


def local_session_id(lesson_id: str, timestamp_ms: Optional[int] = None) -> str:
    """Session id for an authenticated user whose remote create failed."""
    stamp = timestamp_ms if timestamp_ms is not None else _timestamp_ms()
    return f"{SessionNamespace.LOCAL.value}:{lesson_id}:{stamp}"


def guest_session_id(lesson_id: str, timestamp_ms: Optional[int] = None) -> str:
    """Session id for a user without an authenticated identity."""
    stamp = timestamp_ms if timestamp_ms is not None else _timestamp_ms()
    return f"{SessionNamespace.GUEST.value}:{lesson_id}:{stamp}"


def session_namespace(session_id: str) -> SessionNamespace:
    """
    Get the namespace of a session id.

    Raises:
        ValueError: If the id carries no known prefix
    """
    prefix, sep, _ = session_id.partition(":")
    if not sep:
        raise ValueError(f"Session id has no namespace: {session_id!r}")
    try:
        return SessionNamespace(prefix)
    except ValueError:
        raise ValueError(f"Unknown session id namespace: {session_id!r}") from None


def remote_row_id(session_id: str) -> str:
    """Strip the remote: prefix to get the durable-store row id."""
    if session_namespace(session_id) is not SessionNamespace.REMOTE:
        raise ValueError(f"Not a remote session id: {session_id!r}")
    return session_id.split(":", 1)[1]


@dataclass(frozen=True)
class Item:
    """A vocabulary item, read-only for the engine."""
    item_id: str
    prompt: str
    accepted_answers: Tuple[str, ...]
    audio_urls: Dict[str, str] = field(default_factory=dict)  # AudioKind.value -> url
    trigger_text: Optional[str] = None
    trigger_image_url: Optional[str] = None

    def __post_init__(self):
        answers = tuple(self.accepted_answers)
        if not answers:
            raise ValueError(f"Item {self.item_id} has no accepted answers")
        object.__setattr__(self, "accepted_answers", answers)

    def audio_url(self, kind: AudioKind) -> Optional[str]:
        """URL for an audio channel, or None when the item has none."""
        return self.audio_urls.get(kind.value) or None

    @property
    def all_audio_urls(self) -> List[str]:
        return [url for url in (self.audio_url(kind) for kind in AudioKind) if url]


@dataclass(frozen=True)
class ItemProgress:
    """
    Result of answering one item.

    Immutable once created; only the user note may be replaced, through
    with_note(), and doing so never re-scores the item.
    """
    item_id: str
    user_answer: str
    is_correct: bool
    grade: AnswerGrade
    mistake_count: int
    points_earned: int
    max_points: int
    score_letter: str
    clue_level: int = 0
    matched_answer: Optional[str] = None
    user_note: Optional[str] = None
    answered_at: Optional[datetime] = None
    time_to_answer_ms: Optional[int] = None
    has_answered: bool = True

    def with_note(self, note: Optional[str]) -> "ItemProgress":
        return replace(self, user_note=note)


@dataclass
class SessionState:
    """State of one Study or Test pass over a lesson."""
    session_id: str
    mode: SessionMode
    lesson_id: str
    item_ids: List[str]
    current_index: int = 0
    progress_by_item_id: Dict[str, ItemProgress] = field(default_factory=dict)
    completed_indices: Set[int] = field(default_factory=set)
    elapsed_seconds: int = 0
    # Notes typed on Study items that have not been answered yet
    draft_notes: Dict[str, Optional[str]] = field(default_factory=dict)
    sync_state: SyncState = SyncState.NO_REMOTE
    finished: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.item_ids:
            raise ValueError("A session needs at least one item")
        if not 0 <= self.current_index < len(self.item_ids):
            raise ValueError(f"current_index {self.current_index} out of range")
        invalid = {i for i in self.completed_indices if not 0 <= i < len(self.item_ids)}
        if invalid:
            raise ValueError(f"completed_indices out of range: {sorted(invalid)}")
        self.completed_indices = set(self.completed_indices)

    @property
    def item_count(self) -> int:
        return len(self.item_ids)

    @property
    def current_item_id(self) -> str:
        return self.item_ids[self.current_index]

    @property
    def is_last_index(self) -> bool:
        return self.current_index == len(self.item_ids) - 1

    @property
    def namespace(self) -> SessionNamespace:
        return session_namespace(self.session_id)

    def is_valid_index(self, index: int) -> bool:
        return 0 <= index < len(self.item_ids)

    def progress_for(self, item_id: str) -> Optional[ItemProgress]:
        return self.progress_by_item_id.get(item_id)

    def record_progress(self, progress: ItemProgress):
        """Store the first answer for an item."""
        if progress.item_id in self.progress_by_item_id:
            raise ItemLockedError(progress.item_id)
        # A drafted note carries over into the answer
        if progress.user_note is None and progress.item_id in self.draft_notes:
            progress = progress.with_note(self.draft_notes.pop(progress.item_id))
        self.progress_by_item_id[progress.item_id] = progress

    def set_note(self, item_id: str, note: Optional[str]):
        """Replace the note for an item without touching its score."""
        existing = self.progress_by_item_id.get(item_id)
        if existing is not None:
            self.progress_by_item_id[item_id] = existing.with_note(note)
        else:
            self.draft_notes[item_id] = note

    def note_for(self, item_id: str) -> Optional[str]:
        existing = self.progress_by_item_id.get(item_id)
        if existing is not None:
            return existing.user_note
        return self.draft_notes.get(item_id)

    def mark_completed(self, index: int):
        if not self.is_valid_index(index):
            raise ValueError(f"index {index} out of range")
        self.completed_indices.add(index)
