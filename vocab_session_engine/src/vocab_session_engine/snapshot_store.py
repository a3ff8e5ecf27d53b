"""
Local Snapshot Stores

Durable-on-device storage for session snapshots, modelled as a flat
key-value space:

    <prefix>_<mode>_lesson_<lesson_id>      -> session id of the incomplete session
    <prefix>_<mode>_session_<session_id>    -> snapshot JSON
    <prefix>_<mode>_parked_<session_id>     -> snapshot JSON of a finished,
                                               not yet synced session

Writers are expected to be single-instance; the last write wins.
"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
from urllib.parse import quote, unquote

from vocab_session_engine.session_state import SessionMode
from vocab_session_engine.snapshot import SessionSnapshot

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PREFIX = "vocab"


class SnapshotStore(ABC):
    """Snapshot storage keyed by (mode, lesson_id)."""

    def __init__(self, prefix: str = DEFAULT_STORAGE_PREFIX):
        self.prefix = prefix

    # Key-value primitives implemented by backends

    @abstractmethod
    def _read(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def _write(self, key: str, data: str):
        ...

    @abstractmethod
    def _delete(self, key: str):
        ...

    @abstractmethod
    def _keys(self) -> Iterable[str]:
        ...

    # Keys

    def _lesson_key(self, mode: SessionMode, lesson_id: str) -> str:
        return f"{self.prefix}_{mode.value}_lesson_{lesson_id}"

    def _session_key(self, mode: SessionMode, session_id: str) -> str:
        return f"{self.prefix}_{mode.value}_session_{session_id}"

    def _parked_prefix(self, mode: SessionMode) -> str:
        return f"{self.prefix}_{mode.value}_parked_"

    # Public API

    def get(self, mode: SessionMode, lesson_id: str) -> Optional[SessionSnapshot]:
        """
        Get the snapshot the (mode, lesson_id) pointer refers to.

        Returns:
            SessionSnapshot, or None if there is none or it cannot be read
        """
        session_id = self._read(self._lesson_key(mode, lesson_id))
        if not session_id:
            return None

        data = self._read(self._session_key(mode, session_id))
        if data is None:
            logger.warning(f"⚠️ [SnapshotStore] Pointer for {mode.value}/{lesson_id} refers to missing session {session_id}, removing it")
            self._delete(self._lesson_key(mode, lesson_id))
            return None

        try:
            return SessionSnapshot.from_json(data)
        except ValueError as e:
            logger.error(f"❌ [SnapshotStore] Unreadable snapshot for session {session_id}: {e}")
            return None

    def set(self, mode: SessionMode, lesson_id: str, snapshot: SessionSnapshot):
        """Write a snapshot and point (mode, lesson_id) at it."""
        self._write(self._session_key(mode, snapshot.session_id), snapshot.to_json())
        # Pointer last, so it never refers to data that was not written
        self._write(self._lesson_key(mode, lesson_id), snapshot.session_id)

    def clear(self, mode: SessionMode, lesson_id: str):
        """Remove the pointer and the snapshot it refers to."""
        lesson_key = self._lesson_key(mode, lesson_id)
        session_id = self._read(lesson_key)
        if session_id:
            self._delete(self._session_key(mode, session_id))
        self._delete(lesson_key)

    def park(self, snapshot: SessionSnapshot):
        """Keep a snapshot that was moved off the lesson pointer."""
        self._write(self._parked_prefix(snapshot.mode) + snapshot.session_id, snapshot.to_json())

    def parked(self, mode: SessionMode, lesson_id: Optional[str] = None) -> List[SessionSnapshot]:
        """Parked snapshots for a mode, optionally limited to one lesson."""
        prefix = self._parked_prefix(mode)
        snapshots = []
        for key in sorted(self._keys()):
            if not key.startswith(prefix):
                continue
            data = self._read(key)
            if data is None:
                continue
            try:
                snapshot = SessionSnapshot.from_json(data)
            except ValueError as e:
                logger.error(f"❌ [SnapshotStore] Unreadable parked snapshot {key}: {e}")
                continue
            if lesson_id is None or snapshot.lesson_id == lesson_id:
                snapshots.append(snapshot)
        return snapshots

    def unpark(self, mode: SessionMode, session_id: str):
        self._delete(self._parked_prefix(mode) + session_id)


class InMemorySnapshotStore(SnapshotStore):
    """Snapshot store held in a dict of serialized strings."""

    def __init__(self, prefix: str = DEFAULT_STORAGE_PREFIX):
        super().__init__(prefix)
        self._data: Dict[str, str] = {}

    def _read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def _write(self, key: str, data: str):
        self._data[key] = data

    def _delete(self, key: str):
        self._data.pop(key, None)

    def _keys(self) -> Iterable[str]:
        return list(self._data.keys())


class FileSnapshotStore(SnapshotStore):
    """
    Snapshot store backed by one file per key in a directory.

    Writes go through a temporary file and an atomic rename, so a crash
    mid-write leaves the previous snapshot intact.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path], prefix: str = DEFAULT_STORAGE_PREFIX):
        super().__init__(prefix)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + self.SUFFIX)

    def _read(self, key: str) -> Optional[str]:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, key: str, data: str):
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _delete(self, key: str):
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def _keys(self) -> Iterable[str]:
        return [
            unquote(path.name[: -len(self.SUFFIX)])
            for path in self.directory.glob(f"*{self.SUFFIX}")
        ]
