"""Validated domain models (Pydantic)."""

from __future__ import annotations

from mail_replica.models.remote import (
    ChangePage,
    MailboxInfo,
    MessageHeader,
    MessageIdPage,
    MessagePart,
    RemoteMessage,
)
from mail_replica.models.state import Contact, Item, SyncStateRow, make_item_id
from mail_replica.models.types import (
    ContactObservation,
    ProgressEvent,
    SourceType,
    SyncMode,
    SyncPhase,
    SyncResult,
    SyncStatus,
)

__all__ = [
    "ChangePage",
    "Contact",
    "ContactObservation",
    "Item",
    "MailboxInfo",
    "MessageHeader",
    "MessageIdPage",
    "MessagePart",
    "ProgressEvent",
    "RemoteMessage",
    "SourceType",
    "SyncMode",
    "SyncPhase",
    "SyncResult",
    "SyncStateRow",
    "SyncStatus",
    "make_item_id",
]
