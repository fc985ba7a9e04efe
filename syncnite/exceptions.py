"""Application-level exception types.

Convention:
- ``ValidationError``: the caller's input was invalid (unknown collection,
  malformed id, path traversal). Rejects the whole request; HTTP 400.
- ``NotFoundError``: entity or media absent. A normal "nothing here" result,
  never logged as an error; HTTP 404.
- ``TransientIOError``: a single download or file write failed during the
  apply phase. Recorded in the apply outcome, never raised out of a pass.
- ``FatalIOError``: the pass cannot continue (snapshot commit, group
  directory). The previous snapshot stays the on-disk truth; HTTP 500.
- ``LockedError``: a reconciliation for the same key is already running;
  HTTP 423, never queued.
- ``InternalServerError``: for errors whose details must never reach clients.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for delta-synchronization errors."""

    code: str = "sync_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ValidationError(SyncError):
    """Raised when request input is invalid (bad group, id, or media path)."""

    code = "invalid_input"


class NotFoundError(SyncError):
    """Raised when an entity or media file does not exist."""

    code = "not_found"


class TransientIOError(SyncError):
    """A recoverable per-item I/O failure during apply."""

    code = "transient_io_error"


class FatalIOError(SyncError):
    """An I/O failure that aborts the whole reconciliation pass."""

    code = "fatal_io_error"


class ScanIncompleteError(FatalIOError):
    """The remote scan stopped before every section was fully listed.

    Raised before any diffing so that a truncated scan can never be mistaken
    for mass deletions.
    """

    code = "scan_incomplete"


class RemoteError(SyncError):
    """The remote library answered with an error or an unusable payload."""

    code = "remote_error"


class LockedError(SyncError):
    """Raised when a reconciliation for the same key is already in progress."""

    code = "sync_in_progress"

    def __init__(self, key: str) -> None:
        super().__init__(f"Sync already in progress for {key}")
        self.key = key


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``syncnite/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """
