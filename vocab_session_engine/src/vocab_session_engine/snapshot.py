"""
Session Snapshot Schema

A snapshot is the serialized form of a SessionState written to the local
store. It is self-contained: a snapshot alone rebuilds an equivalent
SessionState without any other component state.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from vocab_session_engine.session_state import (
    AnswerGrade,
    ItemProgress,
    SessionMode,
    SessionState,
    SyncState,
)

SNAPSHOT_VERSION = 1


class ItemProgressRecord(BaseModel):
    """Stored form of ItemProgress."""
    item_id: str
    user_answer: str
    is_correct: bool
    grade: AnswerGrade
    mistake_count: int = Field(ge=0)
    points_earned: int = Field(ge=0)
    max_points: int = Field(ge=1, le=3)
    score_letter: str
    clue_level: int = Field(default=0, ge=0, le=2)
    matched_answer: Optional[str] = None
    user_note: Optional[str] = None
    answered_at: Optional[datetime] = None
    time_to_answer_ms: Optional[int] = None
    has_answered: bool = True

    @classmethod
    def from_progress(cls, progress: ItemProgress) -> "ItemProgressRecord":
        return cls(**asdict(progress))

    def to_progress(self) -> ItemProgress:
        return ItemProgress(**self.model_dump())


class SessionSnapshot(BaseModel):
    """Stored form of SessionState."""
    version: int = SNAPSHOT_VERSION
    session_id: str
    mode: SessionMode
    lesson_id: str
    item_ids: List[str] = Field(min_length=1)
    current_index: int = Field(default=0, ge=0)
    completed_indices: List[int] = Field(default_factory=list)
    progress: Dict[str, ItemProgressRecord] = Field(default_factory=dict)
    draft_notes: Dict[str, Optional[str]] = Field(default_factory=dict)
    elapsed_seconds: int = Field(default=0, ge=0)
    sync_state: SyncState = SyncState.NO_REMOTE
    finished: bool = False
    started_at: datetime
    saved_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _check_consistency(self) -> "SessionSnapshot":
        count = len(self.item_ids)
        if self.current_index >= count:
            raise ValueError(f"current_index {self.current_index} out of range for {count} items")
        if any(not 0 <= i < count for i in self.completed_indices):
            raise ValueError("completed_indices out of range")

        known = set(self.item_ids)
        unknown = sorted(set(self.progress) - known)
        if unknown:
            raise ValueError(f"progress for unknown items: {unknown}")
        for item_id, record in self.progress.items():
            if record.item_id != item_id:
                raise ValueError(f"progress key {item_id!r} holds a record for {record.item_id!r}")
        return self

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionSnapshot":
        return cls(
            session_id=state.session_id,
            mode=state.mode,
            lesson_id=state.lesson_id,
            item_ids=list(state.item_ids),
            current_index=state.current_index,
            completed_indices=sorted(state.completed_indices),
            progress={
                item_id: ItemProgressRecord.from_progress(progress)
                for item_id, progress in state.progress_by_item_id.items()
            },
            draft_notes=dict(state.draft_notes),
            elapsed_seconds=state.elapsed_seconds,
            sync_state=state.sync_state,
            finished=state.finished,
            started_at=state.started_at,
            saved_at=datetime.now(),
        )

    def to_state(self) -> SessionState:
        return SessionState(
            session_id=self.session_id,
            mode=self.mode,
            lesson_id=self.lesson_id,
            item_ids=list(self.item_ids),
            current_index=self.current_index,
            progress_by_item_id={
                item_id: record.to_progress() for item_id, record in self.progress.items()
            },
            completed_indices=set(self.completed_indices),
            elapsed_seconds=self.elapsed_seconds,
            draft_notes=dict(self.draft_notes),
            sync_state=self.sync_state,
            finished=self.finished,
            started_at=self.started_at,
            last_updated=self.saved_at,
        )

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "SessionSnapshot":
        return cls.model_validate_json(data)
