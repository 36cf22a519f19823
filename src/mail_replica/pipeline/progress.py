"""Progress observers: fan-out hub and a bounded async channel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from mail_replica.models.types import ProgressEvent, SyncPhase

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[ProgressEvent], None]


def null_observer(event: ProgressEvent) -> None:
    """Discard progress events."""


class ProgressHub:
    """Deliver each event to every subscribed observer.

    An observer that raises is logged and skipped; it never aborts the sync
    run that produced the event.
    """

    def __init__(self, *observers: ProgressObserver) -> None:
        self._observers: list[ProgressObserver] = list(observers)

    def subscribe(self, observer: ProgressObserver) -> Callable[[], None]:
        """Add an observer and return a function that removes it again."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def __call__(self, event: ProgressEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception("Progress observer %r failed", observer)


class ProgressChannel:
    """Bounded queue of progress events consumed with ``async for``.

    When the consumer falls behind, the oldest buffered event is dropped so
    the producer never blocks. Iteration ends after a ``done`` event or an
    explicit ``close``.
    """

    def __init__(self, *, maxsize: int = 64) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._dropped = 0
        self._closed = False

    @property
    def dropped(self) -> int:
        """Number of events discarded because the buffer was full."""
        return self._dropped

    def __call__(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._put(event)
        if event.phase == SyncPhase.done:
            self.close()

    def close(self) -> None:
        """Stop iteration once buffered events are consumed."""
        if self._closed:
            return
        self._closed = True
        self._put(None)

    def _put(self, item: ProgressEvent | None) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self._dropped += 1

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item
