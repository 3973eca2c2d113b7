"""
Frame-indexed debug logger.

Provides functionality to:
- Record named loggable values into the current frame
- Advance to a new frame
- Export the buffer to a file or live host session when it changed
- Run a final best-effort export on teardown
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional

from .convert import to_loggable
from .errors import (
    AlreadyInitializedError,
    EmptyFrameError,
    HoulogError,
    LockFailureError,
    LoggerDisposedError,
)
from .exporter import build_columns
from .loggable import Loggable
from .targets import ExportTarget


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogEntry:
    """
    One named value recorded in a frame.

    ``metadata`` is the encoded document, filled in when the value is
    recorded; entries built without it are encoded at export.
    """
    name: str
    value: Loggable
    metadata: Optional[str] = None


@dataclass
class FrameData:
    """Entries of one frame in insertion order."""
    entries: List[LogEntry] = field(default_factory=list)


@dataclass
class LoggerState:
    frames: List[FrameData] = field(default_factory=lambda: [FrameData()])
    dirty: bool = True


class LoggerSlot:
    """
    Holds at most one logger.

    PROCESS_SLOT is the process-wide slot used by default; a scoped
    application or a test passes its own slot to DebugLogger.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._logger: Optional["DebugLogger"] = None

    def claim(self, debug_logger: "DebugLogger") -> None:
        """
        Raises:
            AlreadyInitializedError: If the slot already holds a logger
        """
        with self._lock:
            if self._logger is not None:
                raise AlreadyInitializedError("a debug logger is already initialized")
            self._logger = debug_logger

    def get(self) -> Optional["DebugLogger"]:
        return self._logger

    @property
    def occupied(self) -> bool:
        return self._logger is not None


PROCESS_SLOT = LoggerSlot()


class DebugLogger:
    """
    Thread-safe recorder of named debug values, grouped in frames.

    One lock guards the whole buffer; record, next_frame and export hold it
    for their full duration.

    Usage:
        with DebugLogger(FileTarget("debug.geo")) as dlog:
            dlog.record("target", (1.0, 2.0, 3.0))
            dlog.next_frame()
            dlog.record("path", Line((0, 0, 0), (1, 1, 1)))
        # leaving the block exports and closes
    """

    def __init__(self, target: ExportTarget, slot: Optional[LoggerSlot] = None):
        """
        Initialize the logger with one empty frame.

        Args:
            target: Where exports go; owned by the logger from now on
            slot: Slot to claim (default: the process-wide slot)

        Raises:
            AlreadyInitializedError: If the slot already holds a logger
        """
        self._target = target
        self._state = LoggerState()
        self._lock = threading.Lock()
        self._poisoned = False
        self._closing = False
        self._closed = False
        self.export_count = 0

        (slot if slot is not None else PROCESS_SLOT).claim(self)

    @contextmanager
    def _locked(self, mutating: bool = True) -> Iterator[LoggerState]:
        with self._lock:
            if self._poisoned:
                raise LockFailureError("logger state is unusable after an earlier failure")
            if self._closed:
                raise LoggerDisposedError("debug logger has been closed")
            try:
                yield self._state
            except HoulogError:
                raise
            except BaseException:
                # a half-applied mutation leaves the buffer in an unknown state
                if mutating:
                    self._poisoned = True
                raise

    @staticmethod
    def _current_frame(state: LoggerState) -> FrameData:
        if not state.frames:
            raise EmptyFrameError("no active frame in the debug log")
        return state.frames[-1]

    def record(self, name: str, value: Any) -> None:
        """
        Append a value to the current frame.

        Args:
            name: Entry name; duplicates are allowed
            value: Loggable or any type the conversion layer accepts

        Raises:
            TypeError: If the value cannot be converted
            SerializationError: If the value's metadata cannot be encoded
            LoggerDisposedError: If the logger was closed
            LockFailureError: If the state was corrupted by an earlier failure
        """
        loggable = to_loggable(value)
        entry = LogEntry(name=str(name), value=loggable, metadata=loggable.as_json())
        with self._locked() as state:
            self._current_frame(state).entries.append(entry)
            state.dirty = True

    def next_frame(self) -> int:
        """
        Start a new empty frame.

        Returns:
            Index of the new frame
        """
        with self._locked() as state:
            state.frames.append(FrameData())
            state.dirty = True
            return len(state.frames) - 1

    def export(self) -> bool:
        """
        Export the buffer if anything changed since the last export.

        A failed export leaves the buffer marked dirty, so calling export
        again retries it.

        Returns:
            True if an export was committed, False if there was nothing new

        Raises:
            HostCommunicationError: If the host rejected the export
        """
        with self._locked(mutating=False) as state:
            if not state.dirty:
                logger.debug("Debug log unchanged since last export")
                return False

            state.dirty = False
            try:
                columns = build_columns(state.frames)
                self._target.commit(columns)
            except BaseException:
                state.dirty = True
                raise

            self.export_count += 1
            logger.info(
                "Exported %d entries in %d frames to %s",
                columns.point_count, len(state.frames), self._target.describe(),
            )
            return True

    def close(self) -> None:
        """
        Export one last time and release the target.

        Failures are logged, never raised. Safe to call more than once.
        """
        with self._lock:
            if self._closing:
                return
            self._closing = True

        try:
            self.export()
        except Exception:
            logger.exception("Failed to save debug log to %s", self._target.describe())
        finally:
            with self._lock:
                self._closed = True
            try:
                self._target.close()
            except Exception:
                logger.exception("Failed to close %s", self._target.describe())

    def __enter__(self) -> "DebugLogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def target(self) -> ExportTarget:
        return self._target

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._state.dirty

    @property
    def frame_count(self) -> int:
        with self._lock:
            return len(self._state.frames)

    @property
    def entry_count(self) -> int:
        with self._lock:
            return sum(len(frame.entries) for frame in self._state.frames)

    def snapshot(self) -> List[FrameData]:
        """Copy of the frame buffer."""
        with self._lock:
            return [FrameData(list(frame.entries)) for frame in self._state.frames]
