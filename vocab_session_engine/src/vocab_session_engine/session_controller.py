"""
Session Controller

Orchestrates one Study or Test pass over a lesson's ordered items: opens or
resumes the session, drives per-item phase/clue state, records answers and
notes, keeps the elapsed-seconds tick and finishes the session exactly once.

All timers (phase steps, the tick) are tasks owned by this controller and are
cancelled on navigation, finish and close.
"""

import asyncio
import logging
import time
from typing import Callable, ClassVar, Dict, List, Optional

from vocab_session_engine.answer_matcher import normalize_answer
from vocab_session_engine.audio import AudioChannel, NullAudioChannel
from vocab_session_engine.clue_controller import ClueController, HintVisibility
from vocab_session_engine.config import EngineSettings
from vocab_session_engine.errors import (
    EmptyAnswerError,
    ItemLockedError,
    ModeError,
    SessionInUseError,
    SessionNotActiveError,
)
from vocab_session_engine.phase_controller import ItemPhaseController, PhaseVisibility, StudyPhase
from vocab_session_engine.scoring import AggregateStats, aggregate_stats
from vocab_session_engine.session_manager import CompletionResult, SessionManager
from vocab_session_engine.session_state import Item, ItemProgress, SessionMode, SessionState

logger = logging.getLogger(__name__)


class SessionController:
    """
    Drives a single learning session.

    Usage:
        controller = SessionController(items, SessionMode.STUDY, lesson_id, manager)
        await controller.start()
        ...
        result = await controller.finish()
    """

    # Session ids currently held by a live controller
    _active_sessions: ClassVar[Dict[str, "SessionController"]] = {}

    def __init__(
        self,
        items: List[Item],
        mode: SessionMode,
        lesson_id: str,
        manager: SessionManager,
        audio: Optional[AudioChannel] = None,
        settings: Optional[EngineSettings] = None,
        on_phase_change: Optional[Callable[[StudyPhase], None]] = None,
    ):
        """
        Initialize the controller.

        Args:
            items: Lesson items in presentation order
            mode: Study or Test
            lesson_id: Lesson identifier
            manager: Persistence manager
            audio: Audio channel (silent channel if None)
            settings: Engine settings (defaults if None)
            on_phase_change: Study phase listener for the presentation layer
        """
        if not items:
            raise ValueError("A session needs at least one item")

        self.items = list(items)
        self.mode = mode
        self.lesson_id = lesson_id
        self.manager = manager
        self.audio = audio or NullAudioChannel()
        self.settings = settings or EngineSettings()

        self.phase_controller: Optional[ItemPhaseController] = None
        self.clue_controller: Optional[ClueController] = None
        if mode is SessionMode.STUDY:
            self.phase_controller = ItemPhaseController(
                self.audio,
                settle_delay=self.settings.settle_delay_seconds,
                on_phase_change=on_phase_change,
            )
        else:
            self.clue_controller = ClueController()

        self.state: Optional[SessionState] = None
        self.result: Optional[CompletionResult] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._clock_started: Optional[float] = None
        self._elapsed_base = 0
        self._starting: Optional[asyncio.Task] = None
        self._finishing: Optional[asyncio.Task] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self.state.session_id if self.state else None

    @property
    def is_active(self) -> bool:
        return self.state is not None and self._finishing is None and not self._closed

    @property
    def is_finished(self) -> bool:
        return self.result is not None

    @property
    def current_index(self) -> int:
        return self._require_state().current_index

    @property
    def current_item(self) -> Item:
        return self.items[self.current_index]

    @property
    def current_progress(self) -> Optional[ItemProgress]:
        return self._require_state().progress_for(self.current_item.item_id)

    @property
    def current_note(self) -> Optional[str]:
        return self._require_state().note_for(self.current_item.item_id)

    @property
    def phase(self) -> Optional[StudyPhase]:
        return self.phase_controller.phase if self.phase_controller else None

    @property
    def visibility(self) -> Optional[PhaseVisibility]:
        return self.phase_controller.visibility if self.phase_controller else None

    @property
    def hint_visibility(self) -> Optional[HintVisibility]:
        return self.clue_controller.hint_visibility if self.clue_controller else None

    @property
    def clue_level(self) -> int:
        return self.clue_controller.clue_level if self.clue_controller else 0

    @property
    def hints_remaining(self) -> int:
        return self.clue_controller.hints_remaining if self.clue_controller else 0

    def stats(self) -> AggregateStats:
        """Attempted, correct, points against the maximum and elapsed time."""
        state = self._require_state()
        self._sync_elapsed()
        return aggregate_stats(state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> SessionState:
        """
        Open (resume or create) the session and show the current item.

        Concurrent calls share one opening; a failed start is not retried.

        Raises:
            SessionInUseError: If another live controller holds the session
        """
        if self.state is not None:
            return self.state
        if self._starting is None:
            self._starting = asyncio.get_running_loop().create_task(self._start())
        return await asyncio.shield(self._starting)

    async def _start(self) -> SessionState:
        state = await self.manager.open_session(self.mode, self.lesson_id, [item.item_id for item in self.items])
        holder = self._active_sessions.get(state.session_id)
        if holder is not None and holder is not self:
            raise SessionInUseError(state.session_id)

        self._active_sessions[state.session_id] = self
        self.state = state
        self._enter_current()
        self._elapsed_base = state.elapsed_seconds
        self._clock_started = time.monotonic()
        self._tick_task = asyncio.get_running_loop().create_task(self._tick())

        logger.info(f"🎓 [SessionController] Started {self.mode.value} session {state.session_id} at item {state.current_index + 1}/{state.item_count}")
        return state

    async def finish(self) -> CompletionResult:
        """
        Finish the session (early exit or after the last item).

        Runs once; later calls return the same result.
        """
        self._require_state()
        if self._finishing is None:
            if self._closed:
                raise SessionNotActiveError("Session was closed")
            self._finishing = asyncio.get_running_loop().create_task(self._finish())
        return await asyncio.shield(self._finishing)

    async def close(self):
        """Tear down without finishing; the snapshot stays for a later resume."""
        if self.state is None or self._closed:
            return
        if self._finishing is not None:
            await asyncio.shield(self._finishing)
            return

        self._closed = True
        await self._stop_timers()
        self._persist()
        self._release()
        logger.info(f"🎓 [SessionController] Closed session {self.state.session_id} at item {self.state.current_index + 1}")

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def advance(self) -> bool:
        """
        Mark the current item completed and move on; finishes after the last item.

        Returns:
            True if moved to the next item, False if the session finished
        """
        state = self._require_active()
        state.mark_completed(state.current_index)

        if state.is_last_index:
            await self.finish()
            return False

        self._leave_current()
        state.current_index += 1
        self._persist()
        self._enter_current()
        return True

    def jump_to(self, index: int) -> bool:
        """
        Show another item without marking the current one completed.

        Returns:
            False (state untouched) if the index is out of range
        """
        state = self._require_active()
        if not state.is_valid_index(index):
            logger.warning(f"⚠️ [SessionController] Ignoring jump to {index}, session has {state.item_count} items")
            return False

        self._leave_current()
        state.current_index = index
        self._persist()
        self._enter_current()
        return True

    def restart_current(self):
        """Replay the current item's reveal sequence or hide its revealed clues."""
        self._require_active()
        if self.phase_controller:
            self.phase_controller.restart()
        else:
            self.clue_controller.reset()

    # ------------------------------------------------------------------
    # Item actions
    # ------------------------------------------------------------------

    def submit_answer(self, raw_answer: str) -> ItemProgress:
        """
        Grade and store the answer for the current item.

        Raises:
            EmptyAnswerError: If the answer is empty after normalization
            ItemLockedError: If the item already has an answer
            PhaseError: In Study mode, if the input is not showing
        """
        state = self._require_active()
        item = self.current_item

        if not normalize_answer(raw_answer or ""):
            raise EmptyAnswerError("Answer is empty")
        if state.progress_for(item.item_id) is not None:
            raise ItemLockedError(item.item_id)

        if self.phase_controller:
            progress = self.phase_controller.submit_answer(raw_answer)
        else:
            progress = self.clue_controller.submit_answer(raw_answer)

        state.record_progress(progress)
        self._persist()

        stored = state.progress_for(item.item_id)
        logger.info(f"📝 [SessionController] {item.item_id}: {stored.grade.value}, {stored.points_earned}/{stored.max_points} ({stored.score_letter})")
        return stored

    def reveal_clue(self) -> bool:
        """Reveal the next hint (Test mode). Returns False if nothing changed."""
        self._require_active()
        if self.clue_controller is None:
            raise ModeError("Clues are only available in test mode")
        return self.clue_controller.reveal_clue()

    def edit_note(self, note: Optional[str]):
        """
        Set the note for the current item (Study mode). Never re-scores.

        Raises:
            ModeError: In Test mode
        """
        state = self._require_active()
        if self.mode is not SessionMode.STUDY:
            raise ModeError("Notes can only be edited in study mode")
        state.set_note(self.current_item.item_id, note)
        self._persist()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_state(self) -> SessionState:
        if self.state is None:
            raise SessionNotActiveError("Session has not started")
        return self.state

    def _require_active(self) -> SessionState:
        state = self._require_state()
        if not self.is_active:
            raise SessionNotActiveError(f"Session {state.session_id} is no longer active")
        return state

    def _persist(self):
        self._sync_elapsed()
        self.manager.persist(self.state)

    def _enter_current(self):
        item = self.current_item
        if self.phase_controller:
            self.phase_controller.enter(item)
        else:
            self.clue_controller.enter(item, self.state.progress_for(item.item_id))

        # Warm the cache for the next item
        next_index = self.state.current_index + 1
        if next_index < len(self.items):
            self.audio.preload(self.items[next_index].all_audio_urls)

    def _leave_current(self):
        if self.phase_controller:
            self.phase_controller.cancel_pending()
        else:
            self.audio.stop()

    def _sync_elapsed(self):
        # Wall-clock seconds since start, on top of any resumed time
        if self._clock_started is not None:
            self.state.elapsed_seconds = self._elapsed_base + int(time.monotonic() - self._clock_started)

    async def _tick(self):
        while True:
            await asyncio.sleep(self.settings.tick_seconds)
            self._sync_elapsed()

    async def _stop_timers(self):
        if self.phase_controller:
            await self.phase_controller.shutdown()
        else:
            self.audio.stop()

        self._sync_elapsed()
        self._clock_started = None
        task, self._tick_task = self._tick_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _finish(self) -> CompletionResult:
        await self._stop_timers()
        stats = aggregate_stats(self.state)
        try:
            result = await self.manager.complete(self.state, stats)
        finally:
            self._release()
        self.result = result

        if result.success:
            logger.info(f"🏁 [SessionController] Finished session {self.state.session_id}: {stats.points_earned}/{stats.max_points} ({stats.score_percent}%)")
        else:
            logger.warning(f"⚠️ [SessionController] Finished session {self.state.session_id} without sync: {result.error}")
        return result

    def _release(self):
        if self.state is not None and self._active_sessions.get(self.state.session_id) is self:
            del self._active_sessions[self.state.session_id]
