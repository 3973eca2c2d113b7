"""
Error types raised by the houlog recorder.

Validation problems in loggable payloads raise ValueError and unsupported
record types raise TypeError; everything else derives from HoulogError.
"""


class HoulogError(RuntimeError):
    """Base class for recorder failures."""


class NotInitializedError(HoulogError):
    """An operation needed a logger but none has been constructed."""


class LoggerDisposedError(NotInitializedError):
    """The logger has been closed and no longer accepts operations."""


class AlreadyInitializedError(HoulogError):
    """A second logger was constructed for the same slot."""


class LockFailureError(HoulogError):
    """The shared logger state is unusable after a failed critical section."""


class EmptyFrameError(HoulogError):
    """The frame buffer lost its last frame. Should be unreachable."""


class HostCommunicationError(HoulogError):
    """The geometry host rejected a request or could not be reached."""


class SerializationError(HoulogError):
    """A metadata document could not be encoded."""
