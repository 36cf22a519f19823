"""Models exchanged with remote message clients."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from mail_replica.models.base import AppModel, RecordModel


class MailboxInfo(AppModel):
    """Mailbox size estimate and the current change-feed position."""

    approx_total: int = Field(default=0, ge=0)
    current_cursor: str | None = None


class MessageIdPage(AppModel):
    """One page of a message-id listing."""

    ids: list[str] = Field(default_factory=list)
    next_page_token: str | None = None


class ChangePage(AppModel):
    """One page of the remote change feed."""

    added_ids: list[str] = Field(default_factory=list)
    deleted_ids: list[str] = Field(default_factory=list)
    next_cursor: str | None = None
    next_page_token: str | None = None


class MessageHeader(RecordModel):
    """Single message header."""

    name: str
    value: str = ""


class MessagePart(RecordModel):
    """MIME part tree; ``body_data`` is base64url as delivered by the remote."""

    mime_type: str = ""
    body_data: str | None = None
    parts: list[MessagePart] = Field(default_factory=list)


class RemoteMessage(RecordModel):
    """Full message as returned by a remote client."""

    id: str = Field(min_length=1)
    thread_id: str | None = None
    headers: list[MessageHeader] = Field(default_factory=list)
    internal_date: int | None = None
    label_ids: list[str] = Field(default_factory=list)
    snippet: str = ""
    payload: MessagePart | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    def header(self, name: str) -> str:
        """Return the first header value matching ``name`` case-insensitively."""
        lowered = name.lower()
        for header in self.headers:
            if header.name.lower() == lowered:
                return header.value
        return ""
