"""
Clue Controller (Test mode)

Tracks how many hints the learner has revealed for the current item and
locks the item once an answer is submitted.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from vocab_session_engine.answer_matcher import AnswerMatcher
from vocab_session_engine.errors import ItemLockedError
from vocab_session_engine.scoring import MAX_CLUE_LEVEL, grade_answer
from vocab_session_engine.session_state import Item, ItemProgress

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HintVisibility:
    """Which parts of the memory trigger are revealed."""
    show_image: bool
    show_text: bool

    @classmethod
    def for_clue_level(cls, clue_level: int, locked: bool = False) -> "HintVisibility":
        # Answered items always show the full hint
        if locked:
            return cls(show_image=True, show_text=True)
        return cls(show_image=clue_level >= 1, show_text=clue_level >= 2)


class ClueController:
    """Hint level and answer lock for one Test-mode item at a time."""

    def __init__(self, matcher: Optional[AnswerMatcher] = None):
        self.matcher = matcher or AnswerMatcher()
        self.item: Optional[Item] = None
        self.clue_level = 0
        self.locked = False
        self._entered_at: Optional[float] = None

    @property
    def hints_remaining(self) -> int:
        return MAX_CLUE_LEVEL - self.clue_level

    @property
    def hint_visibility(self) -> HintVisibility:
        return HintVisibility.for_clue_level(self.clue_level, self.locked)

    def enter(self, item: Item, progress: Optional[ItemProgress] = None):
        """
        Switch to an item, restoring its stored clue level if already answered.

        Args:
            item: Item being shown
            progress: Stored progress for the item, if any
        """
        self.item = item
        self._entered_at = time.monotonic()
        if progress is not None and progress.has_answered:
            self.clue_level = progress.clue_level
            self.locked = True
        else:
            self.clue_level = 0
            self.locked = False

    def reveal_clue(self) -> bool:
        """
        Reveal the next hint.

        Returns:
            True if a hint was revealed, False if none left or the item is locked
        """
        if self.locked or self.clue_level >= MAX_CLUE_LEVEL:
            return False
        self.clue_level += 1
        logger.debug(f"💡 [ClueController] Clue level {self.clue_level} for {self.item.item_id if self.item else '-'}")
        return True

    def reset(self):
        """Hide revealed hints again; answered items keep their stored level."""
        if not self.locked:
            self.clue_level = 0

    def submit_answer(self, raw_answer: str) -> ItemProgress:
        """
        Grade an answer at the current clue level and lock the item.

        Raises:
            ItemLockedError: If the item was already answered
            EmptyAnswerError: If the answer is empty after normalization
        """
        if self.item is None:
            raise RuntimeError("No item entered")
        if self.locked:
            raise ItemLockedError(self.item.item_id)

        elapsed_ms = None
        if self._entered_at is not None:
            elapsed_ms = int((time.monotonic() - self._entered_at) * 1000)

        progress = grade_answer(
            self.item,
            raw_answer,
            clue_level=self.clue_level,
            matcher=self.matcher,
            time_to_answer_ms=elapsed_ms,
        )
        self.locked = True
        return progress
