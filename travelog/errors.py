"""Exception hierarchy shared by the journal store, remote clients and sync engine."""

from __future__ import annotations


class TravelogError(Exception):
    """Base class for all travelog failures."""


class SyncError(TravelogError):
    """A sync pass could not run."""


class SyncInProgressError(SyncError):
    """Another sync pass for the same user is still in flight; retry later."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Sync already in progress for user '{user_id}'")
        self.user_id = user_id


class NetworkUnavailableError(SyncError):
    """The remote store is unreachable; the whole pass was aborted."""


class RemoteError(TravelogError):
    """A single remote call failed."""


class RemoteNetworkError(RemoteError):
    """Transport-level failure: unreachable host, timeout, gateway error."""


class RemoteLogicError(RemoteError):
    """The remote store rejected the request or returned an unusable payload."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


class RecordError(TravelogError):
    """An operation on a single local record was refused."""


class RecordNotFoundError(RecordError):
    def __init__(self, record_id: str) -> None:
        super().__init__(f"No record with id '{record_id}'")
        self.record_id = record_id


class RecordInConflictError(RecordError):
    """Conflicting records only accept an explicit resolution."""

    def __init__(self, record_id: str) -> None:
        super().__init__(
            f"Record '{record_id}' is in conflict; resolve it before editing"
        )
        self.record_id = record_id


__all__ = [
    "TravelogError",
    "SyncError",
    "SyncInProgressError",
    "NetworkUnavailableError",
    "RemoteError",
    "RemoteNetworkError",
    "RemoteLogicError",
    "RecordError",
    "RecordNotFoundError",
    "RecordInConflictError",
]
