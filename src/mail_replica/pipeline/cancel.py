"""Cooperative cancellation token."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class CancelledCheck(Exception):
    """Internal signal raised by ``CancelToken.raise_if_cancelled``."""


class CancelToken:
    """Flag passed down a sync call chain and checked at suspension points.

    Setting the token never interrupts an in-flight request; the engine stops
    at the next check (before a listing page, change page or fetch batch).
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """Return True once ``cancel`` has been called."""
        return self._cancelled

    @property
    def reason(self) -> str | None:
        """Return the reason given to ``cancel``, if any."""
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.info("Cancellation requested (reason=%s)", reason or "unspecified")

    def raise_if_cancelled(self) -> None:
        """Raise ``CancelledCheck`` when cancellation was requested."""
        if self._cancelled:
            raise CancelledCheck(self._reason or "cancelled")
