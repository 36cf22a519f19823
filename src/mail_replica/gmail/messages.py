"""Translate Gmail API resources into remote-client models."""

from __future__ import annotations

from typing import Any

from mail_replica.models.remote import ChangePage, MessageHeader, MessagePart, RemoteMessage


def _part_from_resource(part: dict[str, Any]) -> MessagePart:
    """Convert a Gmail ``MessagePart`` resource recursively."""
    body = part.get("body") or {}
    return MessagePart(
        mime_type=str(part.get("mimeType") or ""),
        body_data=body.get("data") or None,
        parts=[_part_from_resource(child) for child in part.get("parts") or []],
    )


def message_from_resource(resource: dict[str, Any]) -> RemoteMessage:
    """Build a RemoteMessage from a ``users.messages.get(format=full)`` response.

    Args:
        resource: Gmail Message resource.

    Returns:
        RemoteMessage with the resource kept verbatim in ``raw``.

    Raises:
        ValueError: If the resource has no id.
    """
    if not resource.get("id"):
        raise ValueError(f"Gmail message resource without id: {resource!r}")

    payload = resource.get("payload")
    headers = (payload or {}).get("headers") or []
    internal_date = resource.get("internalDate")

    return RemoteMessage(
        id=str(resource["id"]),
        thread_id=str(resource["threadId"]) if resource.get("threadId") else None,
        headers=[
            MessageHeader(name=str(h["name"]), value=str(h.get("value") or ""))
            for h in headers
            if h.get("name")
        ],
        internal_date=int(internal_date) if internal_date not in (None, "") else None,
        label_ids=[str(x) for x in resource.get("labelIds") or []],
        snippet=str(resource.get("snippet") or ""),
        payload=_part_from_resource(payload) if payload else None,
        raw=resource,
    )


def _ids_from_records(records: list[dict[str, Any]]) -> list[str]:
    """Pull message ids out of ``messagesAdded``/``messagesDeleted`` entries."""
    out: list[str] = []
    for record in records:
        message = record.get("message") or {}
        if message.get("id"):
            out.append(str(message["id"]))
    return out


def change_page_from_history(response: dict[str, Any]) -> ChangePage:
    """Flatten a ``users.history.list`` response into a ChangePage.

    Ids keep feed order and may repeat; de-duplication is the caller's job.

    Args:
        response: History list response.

    Returns:
        ChangePage with added/deleted ids and continuation tokens.
    """
    added: list[str] = []
    deleted: list[str] = []
    for history in response.get("history") or []:
        added.extend(_ids_from_records(history.get("messagesAdded") or []))
        deleted.extend(_ids_from_records(history.get("messagesDeleted") or []))

    history_id = response.get("historyId")
    return ChangePage(
        added_ids=added,
        deleted_ids=deleted,
        next_cursor=str(history_id) if history_id else None,
        next_page_token=response.get("nextPageToken") or None,
    )
