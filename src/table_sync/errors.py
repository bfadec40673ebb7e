"""Error taxonomy for table synchronization."""

from enum import Enum


class ErrorKind(str, Enum):
    """Classification recorded alongside a failed synchronization."""

    CONFIGURATION = "configuration"
    CONNECTIVITY = "connectivity"
    EXTRACTION = "extraction"
    MERGE = "merge"
    PERSISTENCE = "persistence"
    CONCURRENT_RUN = "concurrent_run"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


class SyncError(Exception):
    """Base class for all synchronization errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED


class ConfigurationError(SyncError):
    """Raised when configuration is invalid or missing."""

    kind = ErrorKind.CONFIGURATION


class ConnectivityError(SyncError):
    """Raised when a database cannot be reached."""

    kind = ErrorKind.CONNECTIVITY


class ExtractionError(SyncError):
    """Raised when reading changed rows from the source fails."""

    kind = ErrorKind.EXTRACTION


class MergeError(SyncError):
    """Raised when applying a batch to the destination fails."""

    kind = ErrorKind.MERGE


class PersistenceError(SyncError):
    """Raised when the run log cannot be read or written."""

    kind = ErrorKind.PERSISTENCE


class ConcurrentRunError(SyncError):
    """Raised when another run for the same table is still in progress."""

    kind = ErrorKind.CONCURRENT_RUN


class RunLogStateError(SyncError):
    """Raised when a run log entry is no longer Running when it is completed."""

    kind = ErrorKind.PERSISTENCE


class OperationCancelledError(SyncError):
    """Raised at an I/O boundary once cancellation has been requested."""

    kind = ErrorKind.CANCELLED


def classify_error(error: BaseException) -> ErrorKind:
    """Map any exception to its ErrorKind."""
    if isinstance(error, SyncError):
        return error.kind
    return ErrorKind.UNEXPECTED
