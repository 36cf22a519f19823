"""Map remote messages onto the replica's Item shape."""

from __future__ import annotations

import time

from mail_replica.models.remote import RemoteMessage
from mail_replica.models.state import Item, make_item_id
from mail_replica.utils.email import decode_header_value, header_date_millis, html_body, plain_body

NO_SUBJECT = "(no subject)"


def now_millis() -> int:
    """Return the current time in epoch milliseconds."""
    return int(time.time() * 1000)


def message_date_millis(message: RemoteMessage, *, fallback: int) -> int:
    """Pick the message timestamp.

    Order: the ``Date`` header, the server internal timestamp, ``fallback``.

    Args:
        message: Remote message.
        fallback: Value used when neither source is usable.

    Returns:
        Epoch milliseconds.
    """
    from_header = header_date_millis(message.header("Date"))
    if from_header is not None:
        return from_header
    if message.internal_date is not None:
        return message.internal_date
    return fallback


def normalize_message(
    message: RemoteMessage,
    *,
    source_type: str,
    synced_at: int | None = None,
) -> Item:
    """Convert a remote message into an Item.

    Pure apart from reading the clock when ``synced_at`` is omitted.

    Args:
        message: Fetched remote message.
        source_type: Source the message came from.
        synced_at: Local write timestamp (epoch millis).

    Returns:
        Normalized Item keyed by ``(source_type, message.id)``.
    """
    written_at = synced_at if synced_at is not None else now_millis()
    return Item(
        id=make_item_id(source_type, message.id),
        source_type=source_type,
        source_id=message.id,
        thread_key=make_item_id(source_type, message.thread_id) if message.thread_id else None,
        from_=message.header("From"),
        to=message.header("To"),
        cc=message.header("Cc"),
        subject=decode_header_value(message.header("Subject")) or NO_SUBJECT,
        snippet=message.snippet,
        plain_body=plain_body(message.payload),
        html_body=html_body(message.payload),
        date=message_date_millis(message, fallback=written_at),
        labels=list(message.label_ids),
        message_id=message.header("Message-ID"),
        in_reply_to=message.header("In-Reply-To"),
        references=message.header("References"),
        raw=message.raw,
        synced_at=written_at,
    )
