"""
Debug geometry recorder.

Modules:
- loggable: Recordable variants and the kind registry
- convert: Normalization of producer values into variants
- logger: Frame buffer and the thread-safe DebugLogger
- exporter: Flattening of frames into point attribute columns
- targets: File and live-session export targets
- host: Geometry host protocols and the in-process LocalSession
- bridge: Socket transport to a running host (RemoteSession, BridgeServer)
- geo: Point geometry container and .geo file IO
- replay: Reading recordings back
- api: Process-wide entry points (houlog, next_frame, export_now)
"""

import logging

from .errors import (
    HoulogError,
    NotInitializedError,
    LoggerDisposedError,
    AlreadyInitializedError,
    LockFailureError,
    EmptyFrameError,
    HostCommunicationError,
    SerializationError,
)
from .loggable import (
    Loggable, Point3, Transform, Rotation, Scalar, Polyline, Polygon,
    Mesh, Armature, Capsule, Sphere,
    register_loggable, decode_metadata, registered_kinds
)
from .convert import Line, to_loggable, register_conversion
from .logger import LogEntry, FrameData, DebugLogger, LoggerSlot, PROCESS_SLOT
from .exporter import ExportColumns, build_columns, write_columns
from .targets import ExportTarget, FileTarget, LiveSessionTarget
from .host import LocalSession
from .bridge import RemoteSession, BridgeServer, BridgeServerConfig
from .config import LoggerConfig
from .replay import RecordingReader, RecordedEntry, validate_recording
from .api import (
    init_file_logger, init_live_logger, houlog, next_frame, export_now,
    get_logger, shutdown
)
from .logging_config import (
    configure_from_env,
    disable_logging,
    enable_console_logging,
    enable_file_logging,
    set_level,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Errors
    "HoulogError",
    "NotInitializedError",
    "LoggerDisposedError",
    "AlreadyInitializedError",
    "LockFailureError",
    "EmptyFrameError",
    "HostCommunicationError",
    "SerializationError",
    # Variants
    "Loggable",
    "Point3",
    "Transform",
    "Rotation",
    "Scalar",
    "Polyline",
    "Polygon",
    "Mesh",
    "Armature",
    "Capsule",
    "Sphere",
    "register_loggable",
    "decode_metadata",
    "registered_kinds",
    # Conversion
    "Line",
    "to_loggable",
    "register_conversion",
    # Logger
    "LogEntry",
    "FrameData",
    "DebugLogger",
    "LoggerSlot",
    "PROCESS_SLOT",
    # Export
    "ExportColumns",
    "build_columns",
    "write_columns",
    "ExportTarget",
    "FileTarget",
    "LiveSessionTarget",
    # Hosts
    "LocalSession",
    "RemoteSession",
    "BridgeServer",
    "BridgeServerConfig",
    # Config
    "LoggerConfig",
    # Replay
    "RecordingReader",
    "RecordedEntry",
    "validate_recording",
    # Process-wide API
    "init_file_logger",
    "init_live_logger",
    "houlog",
    "next_frame",
    "export_now",
    "get_logger",
    "shutdown",
    # Logging
    "configure_from_env",
    "disable_logging",
    "enable_console_logging",
    "enable_file_logging",
    "set_level",
]
