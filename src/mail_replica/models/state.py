"""Pydantic models for replica rows."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from mail_replica.models.base import AppModel, RecordModel


def make_item_id(source_type: str, source_id: str) -> str:
    """Build the replica-wide item key for a remote message.

    Args:
        source_type: Source name, e.g. "gmail".
        source_id: Source-specific message id.

    Returns:
        Composite id such as "gmail:18e12345abcd".
    """
    return f"{source_type}:{source_id}"


class Item(RecordModel):
    """Normalized message record stored in the replica."""

    id: str = Field(min_length=3)
    source_type: str = Field(min_length=1)
    source_id: str = Field(min_length=1)
    thread_key: str | None = None

    from_: str = ""
    to: str = ""
    cc: str = ""

    subject: str = ""
    snippet: str = ""
    plain_body: str = ""
    html_body: str = ""
    date: int

    labels: list[str] = Field(default_factory=list)

    message_id: str = ""
    in_reply_to: str = ""
    references: str = ""

    raw: dict[str, Any] = Field(default_factory=dict)
    synced_at: int

    @field_validator("labels")
    @classmethod
    def _labels_as_set(cls, value: list[str]) -> list[str]:
        """Store labels sorted and without duplicates."""
        return sorted({label for label in value if label})

    @model_validator(mode="after")
    def _id_matches_source(self) -> Item:
        """Reject items whose id is not derived from (source_type, source_id)."""
        expected = make_item_id(self.source_type, self.source_id)
        if self.id != expected:
            raise ValueError(f"item id {self.id!r} does not match {expected!r}")
        return self


class Contact(AppModel):
    """Row model for the contacts table."""

    email: str = Field(min_length=3)
    name: str = ""
    first_seen: int
    last_seen: int

    @model_validator(mode="after")
    def _seen_ordering(self) -> Contact:
        """Enforce first_seen <= last_seen."""
        if self.first_seen > self.last_seen:
            raise ValueError("first_seen must not be after last_seen")
        return self


class SyncStateRow(AppModel):
    """Row model for the sync_state table."""

    source_type: str = Field(min_length=1)
    change_cursor: str | None = None
    last_sync_at: datetime | None = None
    total_items: int = Field(default=0, ge=0)
    backfill_cursor: str | None = None
