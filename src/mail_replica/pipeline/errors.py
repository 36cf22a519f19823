"""Exceptions shared by the sync engine and remote clients."""

from __future__ import annotations

from mail_replica.models.types import SyncResult


class SyncError(RuntimeError):
    """Base class for errors raised by the sync engine itself."""


class SyncInProgressError(SyncError):
    """Raised when an operation targets a source that is already syncing."""

    def __init__(self, source: str) -> None:
        super().__init__(f"A sync operation for {source!r} is already running")
        self.source = source


class UnknownSourceError(SyncError):
    """Raised when no remote client is registered for a source."""

    def __init__(self, source: str) -> None:
        super().__init__(f"No remote client registered for source {source!r}")
        self.source = source


class CursorExpiredError(RuntimeError):
    """Raised by a remote client when a change cursor is no longer retained."""


class MessageNotFoundError(RuntimeError):
    """Raised by a remote client when a message id no longer exists."""


class SyncCancelledError(Exception):
    """Raised when a run stops because its cancel token was set.

    Deliberately not a SyncError: callers distinguish "I cancelled this" from
    "this failed". ``partial`` holds the counts written before stopping.
    """

    def __init__(self, partial: SyncResult) -> None:
        super().__init__(
            f"Sync was cancelled (+{partial.added} -{partial.deleted}, "
            f"{partial.errors} errors)",
        )
        self.partial = partial
