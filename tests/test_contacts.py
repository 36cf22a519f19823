"""Tests for contact extraction."""

from __future__ import annotations

from mail_replica.models.state import Item
from mail_replica.pipeline.contacts import extract_contacts


def _item(source_id: str, *, date: int, from_: str = "", to: str = "", cc: str = "") -> Item:
    return Item(
        id=f"gmail:{source_id}",
        source_type="gmail",
        source_id=source_id,
        from_=from_,
        to=to,
        cc=cc,
        date=date,
        synced_at=date,
    )


def test_extract_contacts_aggregates_per_email() -> None:
    items = [
        _item("1", date=300, from_="bob@example.com", to="Carol <carol@example.com>"),
        _item("2", date=100, from_='"Bob B." <BOB@example.com>', cc="dave@example.com"),
        _item("3", date=200, from_="Bob Other <bob@example.com>"),
    ]

    contacts = {c.email: c for c in extract_contacts(items)}

    assert list(contacts) == ["bob@example.com", "carol@example.com", "dave@example.com"]
    bob = contacts["bob@example.com"]
    assert (bob.first_seen, bob.last_seen) == (100, 300)
    assert bob.name == "Bob B."
    assert contacts["carol@example.com"].name == "Carol"
    assert (contacts["dave@example.com"].first_seen, contacts["dave@example.com"].last_seen) == (100, 100)


def test_extract_contacts_skips_addresses_without_at() -> None:
    items = [_item("1", date=1, from_="MAILER-DAEMON", to="undisclosed-recipients:;")]
    assert extract_contacts(items) == []
