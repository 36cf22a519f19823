"""Shared fixtures: an in-memory remote mailbox and a temporary replica."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from mail_replica.config.settings import SyncSettings
from mail_replica.models.remote import (
    ChangePage,
    MailboxInfo,
    MessageHeader,
    MessageIdPage,
    MessagePart,
    RemoteMessage,
)
from mail_replica.models.types import ProgressEvent
from mail_replica.pipeline.engine import SyncEngine
from mail_replica.pipeline.errors import CursorExpiredError, MessageNotFoundError
from mail_replica.storage.replica_db import ReplicaDb

BASE_DATE_MS = 1_700_000_000_000


def make_message(
    message_id: str,
    *,
    subject: str | None = None,
    sender: str = "Alice <alice@example.com>",
    to: str = "bob@example.com",
    date_ms: int = BASE_DATE_MS,
    labels: tuple[str, ...] = ("INBOX",),
    thread_id: str | None = None,
    body: str = "aGVsbG8",  # "hello"
) -> RemoteMessage:
    """Build a remote message with a single text/plain body."""
    return RemoteMessage(
        id=message_id,
        thread_id=thread_id or f"t-{message_id}",
        headers=[
            MessageHeader(name="From", value=sender),
            MessageHeader(name="To", value=to),
            MessageHeader(name="Subject", value=subject or f"Subject {message_id}"),
        ],
        internal_date=date_ms,
        label_ids=list(labels),
        snippet=f"snippet {message_id}",
        payload=MessagePart(mime_type="text/plain", body_data=body),
        raw={"id": message_id},
    )


@dataclass
class _Change:
    history_id: int
    kind: str
    message_id: str


@dataclass
class FakeMailbox:
    """In-memory remote mailbox implementing ``RemoteMessageClient``.

    Listing is newest first with offset page tokens. Every add/delete bumps
    a history counter and appends to a change log served by ``list_changes``.
    ``empty_page_token`` makes the first listing page empty but still paged.
    """

    change_page_size: int = 100
    expired_before: int = 0
    failing_ids: dict[str, Exception] = field(default_factory=dict)
    changes_error: Exception | None = None
    gate: asyncio.Event | None = None
    empty_page_token: str | None = None

    history_id: int = 100
    fetch_calls: list[str] = field(default_factory=list)
    _messages: dict[str, RemoteMessage] = field(default_factory=dict)
    _order: list[str] = field(default_factory=list)
    _log: list[_Change] = field(default_factory=list)

    def add(self, message_id: str, **kwargs: object) -> RemoteMessage:
        """Deliver a new message (it becomes the newest)."""
        message = make_message(message_id, **kwargs)  # type: ignore[arg-type]
        self._messages[message_id] = message
        self._order.insert(0, message_id)
        self._record("added", message_id)
        return message

    def add_many(self, count: int, *, prefix: str = "m") -> list[str]:
        """Deliver ``count`` messages with increasing dates; return their ids."""
        ids = [f"{prefix}{i:03d}" for i in range(1, count + 1)]
        for i, message_id in enumerate(ids):
            self.add(message_id, date_ms=BASE_DATE_MS + i * 60_000)
        return ids

    def delete(self, message_id: str) -> None:
        """Remove a message from the mailbox."""
        self._messages.pop(message_id, None)
        if message_id in self._order:
            self._order.remove(message_id)
        self._record("deleted", message_id)

    def replay_added(self, message_id: str) -> None:
        """Log another "added" record for an existing message."""
        self._record("added", message_id)

    def _record(self, kind: str, message_id: str) -> None:
        self.history_id += 1
        self._log.append(_Change(self.history_id, kind, message_id))

    async def get_mailbox_info(self) -> MailboxInfo:
        if self.gate is not None:
            await self.gate.wait()
        return MailboxInfo(approx_total=len(self._order), current_cursor=str(self.history_id))

    async def list_message_ids(self, *, limit: int, page_token: str | None = None) -> MessageIdPage:
        if page_token is None and self.empty_page_token is not None:
            return MessageIdPage(ids=[], next_page_token=self.empty_page_token)
        offset = int(page_token or 0)
        ids = self._order[offset : offset + limit]
        end = offset + len(ids)
        return MessageIdPage(
            ids=ids,
            next_page_token=str(end) if end < len(self._order) else None,
        )

    async def fetch_message(self, message_id: str) -> RemoteMessage:
        self.fetch_calls.append(message_id)
        if message_id in self.failing_ids:
            raise self.failing_ids[message_id]
        message = self._messages.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    async def list_changes(self, *, since_cursor: str, page_token: str | None = None) -> ChangePage:
        if self.changes_error is not None:
            raise self.changes_error
        since = int(since_cursor)
        if since < self.expired_before:
            raise CursorExpiredError(f"history {since} expired")

        pending = [change for change in self._log if change.history_id > since]
        offset = int(page_token or 0)
        page = pending[offset : offset + self.change_page_size]
        end = offset + len(page)
        return ChangePage(
            added_ids=[c.message_id for c in page if c.kind == "added"],
            deleted_ids=[c.message_id for c in page if c.kind == "deleted"],
            next_cursor=str(self.history_id),
            next_page_token=str(end) if end < len(pending) else None,
        )


class EventLog(list[ProgressEvent]):
    """Progress observer that keeps every event."""

    def __call__(self, event: ProgressEvent) -> None:
        self.append(event)


@pytest.fixture
def db(tmp_path: Path) -> Iterator[ReplicaDb]:
    replica = ReplicaDb(sqlite_path=tmp_path / "replica.sqlite3")
    replica.init_schema()
    yield replica
    replica.close()


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(batch_size=8, page_size=10, default_limit=50)


@pytest.fixture
def engine(db: ReplicaDb, mailbox: FakeMailbox, sync_settings: SyncSettings) -> SyncEngine:
    return SyncEngine(store=db, clients={"gmail": mailbox}, settings=sync_settings)
