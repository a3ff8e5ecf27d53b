"""
Unit Tests for Item Phase Controller

Tests the Study reveal sequence, audio coordination and cancellation of
pending steps on navigation.
"""

import pytest
import asyncio
import sys
import os
from typing import List, Optional

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "vocab_session_engine", "src"))

from vocab_session_engine.audio import AudioChannel, NullAudioChannel
from vocab_session_engine.errors import EmptyAnswerError, PhaseError
from vocab_session_engine.phase_controller import ItemPhaseController, PhaseVisibility, StudyPhase
from vocab_session_engine.session_state import AnswerGrade, Item


class GatedAudioChannel(AudioChannel):
    """Audio channel whose clips only finish when the test releases them."""

    def __init__(self):
        self.played: List[str] = []
        self.stop_calls = 0
        self._gate: Optional[asyncio.Event] = None

    async def play(self, url: str) -> None:
        self.played.append(url)
        self._gate = asyncio.Event()
        await self._gate.wait()

    def stop(self) -> None:
        self.stop_calls += 1

    def finish_clip(self):
        self._gate.set()


class FailingAudioChannel(NullAudioChannel):
    """Audio channel whose playback always fails."""

    async def play(self, url: str) -> None:
        self.played.append(url)
        raise RuntimeError("decoder error")


def make_item(item_id: str, with_audio: bool = True) -> Item:
    audio = {}
    if with_audio:
        audio = {
            "meaning": f"https://cdn/{item_id}/meaning.mp3",
            "target": f"https://cdn/{item_id}/target.mp3",
            "trigger": f"https://cdn/{item_id}/trigger.mp3",
        }
    return Item(
        item_id=item_id,
        prompt="casa",
        accepted_answers=("casa",),
        audio_urls=audio,
        trigger_text="Casa sounds like 'cause a'",
    )


async def settle():
    """Let scheduled tasks run up to their next await."""
    for _ in range(5):
        await asyncio.sleep(0)


class TestPhaseVisibility:
    """Test suite for PhaseVisibility."""

    def test_reveal_first_shows_nothing(self):
        assert PhaseVisibility.for_phase(StudyPhase.REVEAL_FIRST) == PhaseVisibility(False, False, False)

    def test_target_from_reveal_second(self):
        visibility = PhaseVisibility.for_phase(StudyPhase.REVEAL_SECOND)
        assert visibility.show_target is True
        assert visibility.show_hint is False

    def test_hint_from_show_trigger(self):
        visibility = PhaseVisibility.for_phase(StudyPhase.SHOW_TRIGGER)
        assert visibility.show_hint is True
        assert visibility.show_input is False

    def test_everything_in_feedback(self):
        assert PhaseVisibility.for_phase(StudyPhase.SHOW_FEEDBACK) == PhaseVisibility(True, True, True)


class TestItemPhaseController:
    """Test suite for ItemPhaseController."""

    @pytest.fixture
    def audio(self):
        """Create a silent audio channel."""
        return NullAudioChannel()

    @pytest.fixture
    def controller(self, audio):
        """Create controller with no settle delay."""
        return ItemPhaseController(audio, settle_delay=0)

    @pytest.mark.asyncio
    async def test_runs_reveal_sequence_to_input(self, controller, audio):
        phases = []
        controller.on_phase_change = phases.append
        item = make_item("w1")

        controller.enter(item)
        await controller.wait_until_idle()

        assert controller.phase == StudyPhase.SHOW_INPUT
        assert phases == [
            StudyPhase.REVEAL_FIRST,
            StudyPhase.REVEAL_SECOND,
            StudyPhase.SHOW_TRIGGER,
            StudyPhase.SHOW_INPUT,
        ]
        assert audio.played == [
            "https://cdn/w1/meaning.mp3",
            "https://cdn/w1/target.mp3",
            "https://cdn/w1/trigger.mp3",
        ]
        assert controller.has_pending_step is False

    @pytest.mark.asyncio
    async def test_missing_audio_still_advances(self, controller, audio):
        controller.enter(make_item("w1", with_audio=False))
        await controller.wait_until_idle()

        assert controller.phase == StudyPhase.SHOW_INPUT
        assert audio.played == []

    @pytest.mark.asyncio
    async def test_audio_failure_treated_as_completed(self):
        audio = FailingAudioChannel()
        controller = ItemPhaseController(audio, settle_delay=0)

        controller.enter(make_item("w1"))
        await controller.wait_until_idle()

        assert controller.phase == StudyPhase.SHOW_INPUT
        assert len(audio.played) == 3

    @pytest.mark.asyncio
    async def test_enter_preloads_item_audio(self, controller, audio):
        controller.enter(make_item("w1"))

        assert "https://cdn/w1/trigger.mp3" in audio.preloaded
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_waits_for_audio_before_advancing(self):
        audio = GatedAudioChannel()
        controller = ItemPhaseController(audio, settle_delay=0)

        controller.enter(make_item("w1"))
        await settle()
        assert controller.phase == StudyPhase.REVEAL_FIRST

        audio.finish_clip()
        await settle()
        assert controller.phase == StudyPhase.REVEAL_SECOND

        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_navigation_cancels_pending_step(self):
        """A clip pending for the old item never advances the new one."""
        audio = GatedAudioChannel()
        controller = ItemPhaseController(audio, settle_delay=0)
        first, second = make_item("w1"), make_item("w2")

        controller.enter(first)
        await settle()
        stale_task = controller._pending

        controller.enter(second)
        await settle()

        assert stale_task.cancelled()
        assert audio.stop_calls >= 1
        assert controller.item is second
        assert controller.phase == StudyPhase.REVEAL_FIRST
        assert audio.played == ["https://cdn/w1/meaning.mp3", "https://cdn/w2/meaning.mp3"]

        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_stale_step_does_nothing(self):
        """A step that wakes after navigation is dropped."""
        controller = ItemPhaseController(GatedAudioChannel(), settle_delay=0)
        first, second = make_item("w1", with_audio=False), make_item("w2")
        controller.enter(first)
        old_generation = controller._generation
        controller.enter(second)

        await controller._run_reveal_step(first, StudyPhase.REVEAL_FIRST, old_generation)

        assert controller.item is second
        assert controller.phase == StudyPhase.REVEAL_FIRST
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_settle_delay_timer_cancelled_on_navigation(self, audio):
        controller = ItemPhaseController(audio, settle_delay=10)
        controller.enter(make_item("w1"))
        await settle()
        assert controller.has_pending_step is True

        controller.enter(make_item("w2"))
        await settle()

        assert controller.item.item_id == "w2"
        assert controller.phase == StudyPhase.REVEAL_FIRST
        await controller.shutdown()
        assert controller.has_pending_step is False

    @pytest.mark.asyncio
    async def test_submit_moves_to_feedback(self, controller):
        controller.enter(make_item("w1"))
        await controller.wait_until_idle()

        progress = controller.submit_answer("Casa")

        assert progress.grade == AnswerGrade.CORRECT
        assert progress.clue_level == 0
        assert progress.points_earned == 3
        assert progress.time_to_answer_ms is not None
        assert controller.phase == StudyPhase.SHOW_FEEDBACK
        assert controller.visibility.show_input is True

    @pytest.mark.asyncio
    async def test_submit_before_input_raises(self, controller):
        controller.enter(make_item("w1"))

        with pytest.raises(PhaseError):
            controller.submit_answer("casa")
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_submit_twice_raises(self, controller):
        controller.enter(make_item("w1"))
        await controller.wait_until_idle()
        controller.submit_answer("casa")

        with pytest.raises(PhaseError):
            controller.submit_answer("casa")

    @pytest.mark.asyncio
    async def test_empty_submit_keeps_input(self, controller):
        controller.enter(make_item("w1"))
        await controller.wait_until_idle()

        with pytest.raises(EmptyAnswerError):
            controller.submit_answer("   ")
        assert controller.phase == StudyPhase.SHOW_INPUT

    @pytest.mark.asyncio
    async def test_restart_returns_to_reveal_first(self, controller, audio):
        item = make_item("w1")
        controller.enter(item)
        await controller.wait_until_idle()

        controller.restart()

        assert controller.item is item
        assert controller.phase == StudyPhase.REVEAL_FIRST
        await controller.wait_until_idle()
        assert controller.phase == StudyPhase.SHOW_INPUT
        assert audio.played.count("https://cdn/w1/meaning.mp3") == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
