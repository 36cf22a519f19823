"""Email header, address, and body-decoding utilities."""

from __future__ import annotations

import base64
import binascii
import html
import re
from collections.abc import Iterator
from datetime import UTC
from email.header import decode_header, make_header
from email.utils import getaddresses, parsedate_to_datetime

from mail_replica.models.remote import MessagePart

_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def parse_address_list(value: str | None) -> list[tuple[str, str]]:
    """Split a participant header into ``(email, display_name)`` pairs.

    Emails are lowercased; display names lose surrounding quotes and
    whitespace. Entries without an ``@`` are dropped.

    Args:
        value: Raw header value, e.g. ``'"Doe, Jane" <Jane@x.org>, bob@y.org'``.

    Returns:
        Pairs in header order, duplicates preserved.
    """
    if not value:
        return []
    out: list[tuple[str, str]] = []
    for name, addr in getaddresses([value]):
        email_norm = addr.strip().lower()
        if "@" not in email_norm:
            continue
        out.append((email_norm, name.strip().strip("\"'").strip()))
    return out


def decode_header_value(value: str) -> str:
    """Decode RFC 2047-encoded header values, returning input on failure.

    Args:
        value: Raw header value.

    Returns:
        Best-effort decoded value.
    """
    try:
        return str(make_header(decode_header(value)))
    except (LookupError, UnicodeDecodeError, ValueError):
        return value


def header_date_millis(value: str | None) -> int | None:
    """Parse an RFC 2822 ``Date`` header into epoch milliseconds.

    Args:
        value: Raw ``Date`` header value.

    Returns:
        Epoch milliseconds, or None if missing or unparseable.
    """
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def decode_base64url(data: str) -> str:
    """Decode unpadded base64url text into UTF-8 (invalid bytes replaced).

    Args:
        data: base64url-encoded string.

    Returns:
        Decoded text, or an empty string for malformed input.
    """
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError):
        return ""
    return raw.decode("utf-8", errors="replace")


def iter_parts(part: MessagePart) -> Iterator[MessagePart]:
    """Walk a MIME part tree depth-first, parent before children."""
    yield part
    for child in part.parts:
        yield from iter_parts(child)


def find_part(part: MessagePart | None, mime_type: str) -> MessagePart | None:
    """Return the first part of ``mime_type`` carrying body data.

    Args:
        part: Root part of the message.
        mime_type: MIME type to look for, e.g. ``text/plain``.

    Returns:
        The matching part, or None.
    """
    if part is None:
        return None
    for candidate in iter_parts(part):
        if candidate.mime_type.lower() == mime_type and candidate.body_data:
            return candidate
    return None


def strip_html(markup: str) -> str:
    """Reduce HTML to whitespace-collapsed text."""
    text = _STYLE_RE.sub("", markup)
    text = _SCRIPT_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text).replace("\xa0", " ")
    return _WS_RE.sub(" ", text).strip()


def plain_body(payload: MessagePart | None) -> str:
    """Return the best text rendering of a message body.

    Single-part bodies are decoded directly (HTML gets its tags stripped).
    Multipart messages prefer ``text/plain`` and fall back to tag-stripped
    ``text/html``.

    Args:
        payload: Root MIME part.

    Returns:
        Body text, ``"(no body)"`` for multipart messages without text parts,
        or an empty string when there is no payload.
    """
    if payload is None:
        return ""
    if payload.body_data and not payload.parts:
        text = decode_base64url(payload.body_data)
        return strip_html(text) if payload.mime_type.lower() == "text/html" else text

    plain = find_part(payload, "text/plain")
    if plain is not None and plain.body_data:
        return decode_base64url(plain.body_data)

    rich = find_part(payload, "text/html")
    if rich is not None and rich.body_data:
        return strip_html(decode_base64url(rich.body_data))

    return "(no body)"


def html_body(payload: MessagePart | None) -> str:
    """Return the raw ``text/html`` part of a message, if any."""
    rich = find_part(payload, "text/html")
    if rich is None or not rich.body_data:
        return ""
    return decode_base64url(rich.body_data)
