"""
Error taxonomy for the generation core.
"""
from .models import ErrorKind


class StudioError(Exception):
    """Base class for all generation service errors."""


class StorageUnavailable(StudioError):
    """The quota store could not be read or written."""


class GenerationError(StudioError):
    """A single generation call failed. Recorded per descriptor, never fatal."""
    kind = ErrorKind.TRANSPORT_ERROR


class TransportError(GenerationError):
    kind = ErrorKind.TRANSPORT_ERROR


class RateLimited(GenerationError):
    kind = ErrorKind.RATE_LIMITED


class InvalidRequest(GenerationError):
    kind = ErrorKind.INVALID_REQUEST


class EmptyBatchError(StudioError, ValueError):
    """Raised when a batch with no descriptors is submitted."""


class BatchAborted(StorageUnavailable):
    """
    Raised when a run is aborted by a storage failure after it started.
    Handlers for StorageUnavailable catch it too.

    The partially built result is attached so callers can still report
    the descriptors that already completed.
    """

    def __init__(self, message: str, result):
        super().__init__(message)
        self.result = result
