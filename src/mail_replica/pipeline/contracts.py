"""Collaborator contracts injected into the sync engine."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from mail_replica.models.remote import ChangePage, MailboxInfo, MessageIdPage, RemoteMessage
from mail_replica.models.state import Item, SyncStateRow
from mail_replica.models.types import ContactObservation


class RemoteMessageClient(Protocol):
    """Remote mailbox API: listing, fetching and a change feed.

    Cursors and page tokens are opaque strings; callers only pass them back.
    Any call may fail. ``list_changes`` raises ``CursorExpiredError`` when
    ``since_cursor`` is no longer retained, and ``fetch_message`` raises
    ``MessageNotFoundError`` for ids that no longer exist.
    """

    async def get_mailbox_info(self) -> MailboxInfo:
        """Return an approximate total and the current change cursor."""
        ...

    async def list_message_ids(
        self,
        *,
        limit: int,
        page_token: str | None = None,
    ) -> MessageIdPage:
        """List up to ``limit`` message ids, newest first."""
        ...

    async def fetch_message(self, message_id: str) -> RemoteMessage:
        """Fetch one full message."""
        ...

    async def list_changes(
        self,
        *,
        since_cursor: str,
        page_token: str | None = None,
    ) -> ChangePage:
        """Return one page of changes after ``since_cursor``."""
        ...


class ReplicaStore(Protocol):
    """Local replica operations the sync engine depends on."""

    def upsert_items(self, items: Sequence[Item]) -> int:
        """Insert or overwrite items in one transaction; return the count."""
        ...

    def delete_items(self, item_ids: Iterable[str]) -> int:
        """Delete items by id; return how many rows were removed."""
        ...

    def prune_items(self, *, source_type: str, keep_source_ids: Iterable[str]) -> int:
        """Delete items of a source whose source id is not in ``keep_source_ids``."""
        ...

    def count_items(self, source_type: str | None = None) -> int:
        """Count items, optionally for one source."""
        ...

    def upsert_contacts(self, observations: Sequence[ContactObservation]) -> int:
        """Merge contact observations into the address book."""
        ...

    def get_sync_state(self, source_type: str) -> SyncStateRow | None:
        """Return the sync state of a source, if any."""
        ...

    def put_sync_state(self, state: SyncStateRow) -> None:
        """Insert or replace the sync state of a source."""
        ...

    def clear_source(self, source_type: str) -> int:
        """Atomically delete a source's items and sync state."""
        ...
