"""Error taxonomy for the sync engine."""

from enum import Enum


class ErrorKind(Enum):
    REMOTE_FETCH_FAILED = "remote_fetch_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    NOT_EXPANDABLE = "not_expandable"


class SyncError(Exception):
    """Base error raised by the sync engine.

    Attributes:
        kind: Which failure this is.
        cause: The underlying exception, if any.
    """

    kind: ErrorKind

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class RemoteFetchFailed(SyncError):
    """The design service could not be reached or refused the request.

    The cached document is left untouched.
    """

    kind = ErrorKind.REMOTE_FETCH_FAILED


class PersistenceFailed(SyncError):
    """Sync state could not be written. The triggering mutation is rolled back."""

    kind = ErrorKind.PERSISTENCE_FAILED


class NotExpandable(SyncError):
    """Children were requested for a leaf layer."""

    kind = ErrorKind.NOT_EXPANDABLE
