"""
Process-wide recorder entry points.

Instrumented code calls ``houlog(name, value)`` without holding a logger
reference. One of the init functions installs the process logger once;
a final export runs at interpreter exit.

    import houlog

    houlog.init_file_logger("debug.geo")
    houlog.houlog("origin", (0.0, 0.0, 0.0))
    houlog.next_frame()
    houlog.export_now()
"""

import atexit
import logging
from pathlib import Path
from typing import Any, Optional, Union

from .bridge import RemoteSession
from .config import LoggerConfig
from .errors import AlreadyInitializedError, NotInitializedError
from .host import HostSession
from .logger import PROCESS_SLOT, DebugLogger
from .targets import ExportTarget, FileTarget, LiveSessionTarget


logger = logging.getLogger(__name__)


def _install(target: ExportTarget, owns_target: bool = True) -> DebugLogger:
    try:
        dlog = DebugLogger(target, slot=PROCESS_SLOT)
    except AlreadyInitializedError:
        if owns_target:
            target.close()
        raise
    atexit.register(dlog.close)
    logger.info("Debug logger initialized (%s)", target.describe())
    return dlog


def _check_uninitialized() -> None:
    if PROCESS_SLOT.occupied:
        raise AlreadyInitializedError("a debug logger is already initialized")


def init_file_logger(path: Union[str, Path]) -> DebugLogger:
    """
    Install the process logger exporting to a geometry file.

    Raises:
        AlreadyInitializedError: If a logger already exists
    """
    _check_uninitialized()
    return _install(FileTarget(path))


def init_live_logger(
    session: Optional[HostSession] = None,
    config: Optional[LoggerConfig] = None
) -> DebugLogger:
    """
    Install the process logger pushing into a running host session.

    Args:
        session: Connected host session; the logger takes ownership. When
            omitted, connect to config.host:config.port (127.0.0.1:9090)
        config: Connection and node settings (default: from environment)

    Raises:
        AlreadyInitializedError: If a logger already exists
        HostCommunicationError: If connecting to the host fails
    """
    _check_uninitialized()
    config = config if config is not None else LoggerConfig.from_env()
    if session is None:
        session = RemoteSession.connect(config.host, config.port, config.timeout)
    target = LiveSessionTarget(session, config.container_path, config.node_name)
    return _install(target)


def get_logger() -> Optional[DebugLogger]:
    return PROCESS_SLOT.get()


def _require() -> DebugLogger:
    dlog = PROCESS_SLOT.get()
    if dlog is None:
        raise NotInitializedError("debug logger not initialized")
    return dlog


def houlog(name: str, value: Any) -> None:
    """
    Record a value in the current frame of the process logger.

    Without a logger (or after shutdown) the value is dropped with a warning.
    """
    dlog = PROCESS_SLOT.get()
    if dlog is None:
        logger.warning("Debug logger not initialized; dropped entry %r", name)
        return
    try:
        dlog.record(name, value)
    except NotInitializedError as e:
        logger.warning("%s; dropped entry %r", e, name)


def next_frame() -> int:
    """
    Advance the process logger to a new frame.

    Raises:
        NotInitializedError: If no logger was initialized
    """
    return _require().next_frame()


def export_now() -> bool:
    """
    Export the process logger if anything changed.

    Raises:
        NotInitializedError: If no logger was initialized
    """
    return _require().export()


def shutdown() -> None:
    """Close the process logger now instead of at interpreter exit."""
    dlog = PROCESS_SLOT.get()
    if dlog is None:
        return
    atexit.unregister(dlog.close)
    dlog.close()
