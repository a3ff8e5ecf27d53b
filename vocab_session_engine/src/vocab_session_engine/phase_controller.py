"""
Item Phase Controller (Study mode)

Drives the reveal sequence for one item:

    reveal-first -> reveal-second -> show-trigger -> show-input -> show-feedback

Each reveal phase plays its audio channel (if the item has one), waits a
short settle delay and then moves on. The audio -> delay -> transition chain
runs as a single task per phase, and the controller keeps at most one such
task alive. Navigation cancels it before anything else happens, so a step
scheduled for one item can never fire against another.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from vocab_session_engine.answer_matcher import AnswerMatcher
from vocab_session_engine.audio import AudioChannel
from vocab_session_engine.errors import PhaseError
from vocab_session_engine.scoring import grade_answer
from vocab_session_engine.session_state import AudioKind, Item, ItemProgress

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY_SECONDS = 1.0


class StudyPhase(Enum):
    """Study phases, in forward order."""
    REVEAL_FIRST = "reveal-first"
    REVEAL_SECOND = "reveal-second"
    SHOW_TRIGGER = "show-trigger"
    SHOW_INPUT = "show-input"
    SHOW_FEEDBACK = "show-feedback"


PHASE_AUDIO = {
    StudyPhase.REVEAL_FIRST: AudioKind.MEANING,
    StudyPhase.REVEAL_SECOND: AudioKind.TARGET,
    StudyPhase.SHOW_TRIGGER: AudioKind.TRIGGER,
}

NEXT_PHASE = {
    StudyPhase.REVEAL_FIRST: StudyPhase.REVEAL_SECOND,
    StudyPhase.REVEAL_SECOND: StudyPhase.SHOW_TRIGGER,
    StudyPhase.SHOW_TRIGGER: StudyPhase.SHOW_INPUT,
}

_PHASE_ORDER = list(StudyPhase)


@dataclass(frozen=True)
class PhaseVisibility:
    """What the presentation layer may show in a phase."""
    show_target: bool
    show_hint: bool
    show_input: bool

    @classmethod
    def for_phase(cls, phase: StudyPhase) -> "PhaseVisibility":
        position = _PHASE_ORDER.index(phase)
        return cls(
            show_target=position >= _PHASE_ORDER.index(StudyPhase.REVEAL_SECOND),
            show_hint=position >= _PHASE_ORDER.index(StudyPhase.SHOW_TRIGGER),
            show_input=position >= _PHASE_ORDER.index(StudyPhase.SHOW_INPUT),
        )


class ItemPhaseController:
    """
    Per-item reveal state machine for Study mode.

    Must be used from inside a running event loop: entering an item schedules
    its first reveal step as a task.
    """

    def __init__(
        self,
        audio: AudioChannel,
        settle_delay: float = DEFAULT_SETTLE_DELAY_SECONDS,
        matcher: Optional[AnswerMatcher] = None,
        on_phase_change: Optional[Callable[[StudyPhase], None]] = None,
    ):
        """
        Initialize the controller.

        Args:
            audio: Channel used for the reveal audio
            settle_delay: Seconds to wait after each clip before advancing
            matcher: Answer matcher (shared default if None)
            on_phase_change: Called with the new phase after every transition
        """
        self.audio = audio
        self.settle_delay = settle_delay
        self.matcher = matcher or AnswerMatcher()
        self.on_phase_change = on_phase_change

        self.item: Optional[Item] = None
        self.phase = StudyPhase.REVEAL_FIRST
        self._pending: Optional[asyncio.Task] = None
        # Bumped on every entry/cancel; a step only acts for its own generation
        self._generation = 0
        self._input_shown_at: Optional[float] = None

    @property
    def visibility(self) -> PhaseVisibility:
        return PhaseVisibility.for_phase(self.phase)

    @property
    def has_pending_step(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def enter(self, item: Item):
        """(Re)enter an item at reveal-first."""
        self.cancel_pending()
        self.item = item
        self._input_shown_at = None
        self.audio.preload(item.all_audio_urls)
        self._transition(StudyPhase.REVEAL_FIRST)

    def restart(self):
        """Replay the current item from the beginning."""
        if self.item is not None:
            self.enter(self.item)

    def cancel_pending(self):
        """Cancel the scheduled step and any audio it is playing."""
        self._generation += 1
        task, self._pending = self._pending, None
        if task is not None and not task.done():
            task.cancel()
        self.audio.stop()

    async def shutdown(self):
        """Cancel the pending step and wait for it to unwind."""
        task = self._pending
        self.cancel_pending()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def submit_answer(self, raw_answer: str) -> ItemProgress:
        """
        Grade an answer typed in show-input and move to show-feedback.

        Raises:
            PhaseError: If the input is not showing
            EmptyAnswerError: If the answer is empty after normalization
        """
        if self.item is None or self.phase is not StudyPhase.SHOW_INPUT:
            raise PhaseError(f"Cannot submit during {self.phase.value}")

        elapsed_ms = None
        if self._input_shown_at is not None:
            elapsed_ms = int((time.monotonic() - self._input_shown_at) * 1000)

        progress = grade_answer(
            self.item,
            raw_answer,
            clue_level=0,
            matcher=self.matcher,
            time_to_answer_ms=elapsed_ms,
        )
        self._transition(StudyPhase.SHOW_FEEDBACK)
        return progress

    async def wait_until_idle(self):
        """Wait until no reveal step is scheduled (e.g. input is showing)."""
        while self._pending is not None:
            task = self._pending
            await asyncio.wait({task})
            if self._pending is task:
                self._pending = None

    def _transition(self, phase: StudyPhase):
        self.phase = phase
        logger.debug(f"🎬 [PhaseController] {self.item.item_id if self.item else '-'} -> {phase.value}")

        if phase is StudyPhase.SHOW_INPUT:
            self._input_shown_at = time.monotonic()

        if self.on_phase_change:
            self.on_phase_change(phase)

        if phase in PHASE_AUDIO:
            task = asyncio.get_running_loop().create_task(
                self._run_reveal_step(self.item, phase, self._generation)
            )
            task.add_done_callback(self._log_step_failure)
            self._pending = task

    async def _run_reveal_step(self, item: Item, phase: StudyPhase, generation: int):
        url = item.audio_url(PHASE_AUDIO[phase])
        if url:
            try:
                await self.audio.play(url)
            except Exception as e:
                logger.warning(f"⚠️ [PhaseController] Audio failed for {item.item_id} ({phase.value}): {e}")

        await asyncio.sleep(self.settle_delay)

        if generation != self._generation or self.item is not item or self.phase is not phase:
            logger.debug(f"⏭️ [PhaseController] Dropping stale step {phase.value} for {item.item_id}")
            return

        self._pending = None
        self._transition(NEXT_PHASE[phase])

    @staticmethod
    def _log_step_failure(task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"❌ [PhaseController] Reveal step failed: {error}", exc_info=error)
