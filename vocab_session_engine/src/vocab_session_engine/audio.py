"""
Audio Channel

The engine treats audio as an opaque capability: play a URL to completion,
stop whatever is playing, and optionally warm a cache of upcoming URLs.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class AudioChannel(ABC):
    """Single playback channel shared by a session."""

    @abstractmethod
    async def play(self, url: str) -> None:
        """
        Play a URL and return when playback ends.

        Cancelling the awaiting task must stop playback.
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop current playback; a pending play() returns."""

    def preload(self, urls: Iterable[Optional[str]]) -> None:
        """Hint that these URLs will be played soon."""


class NullAudioChannel(AudioChannel):
    """
    Channel that finishes every clip immediately.

    Used for headless sessions where nothing can be played; phases still
    advance after their settle delay.
    """

    def __init__(self):
        self.played: List[str] = []
        self.preloaded: List[str] = []

    async def play(self, url: str) -> None:
        self.played.append(url)
        logger.debug(f"🔇 [Audio] Skipping playback for {url}")
        await asyncio.sleep(0)

    def stop(self) -> None:
        pass

    def preload(self, urls: Iterable[Optional[str]]) -> None:
        for url in urls:
            if url and url not in self.preloaded:
                self.preloaded.append(url)
