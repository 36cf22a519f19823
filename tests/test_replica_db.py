"""Tests for the sqlite replica store."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from mail_replica.models.state import Item, SyncStateRow, make_item_id
from mail_replica.models.types import ContactObservation
from mail_replica.storage.replica_db import DateRange, ReplicaDb


def _item(source_id: str, **overrides: object) -> Item:
    fields: dict[str, object] = {
        "id": make_item_id("gmail", source_id),
        "source_type": "gmail",
        "source_id": source_id,
        "thread_key": "gmail:t1",
        "from_": "Alice <alice@example.com>",
        "subject": f"Subject {source_id}",
        "snippet": "hello there",
        "plain_body": "hello there",
        "date": 1_000,
        "labels": ["INBOX"],
        "synced_at": 5_000,
    }
    fields.update(overrides)
    return Item(**fields)  # type: ignore[arg-type]


def _open(tmp_path: Path) -> ReplicaDb:
    db = ReplicaDb(sqlite_path=tmp_path / "replica.sqlite3")
    db.init_schema()
    return db


def test_upsert_overwrites_and_reindexes_labels(tmp_path: Path) -> None:
    """Upserting an existing id replaces the row and its label index."""
    db = _open(tmp_path)

    assert db.upsert_items([_item("a", labels=["INBOX", "STARRED"])]) == 1
    db.upsert_items([_item("a", subject="Edited", labels=["IMPORTANT"])])

    stored = db.get_item("gmail:a")
    assert stored is not None
    assert stored.subject == "Edited"
    assert stored.labels == ["IMPORTANT"]
    assert db.count_items() == 1
    assert db.items_by_label("STARRED") == []
    assert [i.id for i in db.items_by_label("IMPORTANT")] == ["gmail:a"]
    db.close()


def test_item_round_trip_keeps_raw_payload(tmp_path: Path) -> None:
    db = _open(tmp_path)
    item = _item("a", raw={"id": "a", "payload": {"mimeType": "text/plain"}}, cc="  spaced  ")
    db.upsert_items([item])

    assert db.get_item("gmail:a") == item
    db.close()


def test_delete_counts_only_existing_rows(tmp_path: Path) -> None:
    db = _open(tmp_path)
    db.upsert_items([_item("a"), _item("b")])

    removed = db.delete_items(["gmail:a", "gmail:missing", "gmail:a"])

    assert removed == 1
    assert db.count_items("gmail") == 1
    assert db.label_distribution("gmail") == [("INBOX", 1)]
    db.close()


def test_prune_keeps_listed_ids(tmp_path: Path) -> None:
    db = _open(tmp_path)
    db.upsert_items([_item("a"), _item("b"), _item("c")])

    assert db.prune_items(source_type="gmail", keep_source_ids=["a", "c"]) == 1
    assert db.get_item("gmail:b") is None
    db.close()


def test_queries(tmp_path: Path) -> None:
    db = _open(tmp_path)
    db.upsert_items(
        [
            _item("a", date=1_000, from_="Alice <alice@example.com>", subject="Quarterly report"),
            _item("b", date=3_000, from_="Bob <bob@example.com>", labels=["INBOX", "WORK"]),
            _item("c", date=2_000, from_="Alice <alice@example.com>", thread_key="gmail:t2"),
        ],
    )

    assert [i.source_id for i in db.recent_items("gmail", limit=2)] == ["b", "c"]
    assert [i.source_id for i in db.items_from("alice@")] == ["c", "a"]
    assert [i.source_id for i in db.thread_items("gmail:t1")] == ["a", "b"]
    assert [i.source_id for i in db.search_items("QUARTERLY")] == ["a"]
    assert db.search_items("   ") == []
    assert db.items_from("100%") == []
    assert db.top_senders("gmail", limit=1) == [("Alice <alice@example.com>", 2)]
    assert db.label_distribution("gmail") == [("INBOX", 3), ("WORK", 1)]
    assert db.date_range("gmail") == DateRange(oldest=1_000, newest=3_000)
    assert db.date_range("outlook") is None
    db.close()


def test_contacts_keep_first_seen_and_advance_last_seen(tmp_path: Path) -> None:
    db = _open(tmp_path)

    db.upsert_contacts([ContactObservation(email="carol@example.com", name="", first_seen=500, last_seen=900)])
    db.upsert_contacts([ContactObservation(email="carol@example.com", name="Carol", first_seen=100, last_seen=700)])
    db.upsert_contacts([ContactObservation(email="carol@example.com", name="Other", first_seen=50, last_seen=2_000)])

    carol = db.get_contact("Carol@Example.com")
    assert carol is not None
    assert carol.name == "Carol"
    assert carol.first_seen == 500
    assert carol.last_seen == 2_000
    assert db.count_contacts() == 1
    assert [c.email for c in db.list_contacts()] == ["carol@example.com"]
    db.close()


def test_sync_state_round_trip_and_clear(tmp_path: Path) -> None:
    """clear_source drops items and state together but keeps contacts."""
    db = _open(tmp_path)
    assert db.get_sync_state("gmail") is None

    state = SyncStateRow(
        source_type="gmail",
        change_cursor="42",
        last_sync_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
        total_items=2,
        backfill_cursor="page-2",
    )
    db.put_sync_state(state)
    assert db.get_sync_state("gmail") == state

    db.put_sync_state(state.model_copy(update={"backfill_cursor": None}))
    updated = db.get_sync_state("gmail")
    assert updated is not None
    assert updated.backfill_cursor is None

    db.upsert_items([_item("a"), _item("b")])
    db.upsert_contacts([ContactObservation(email="alice@example.com", first_seen=1, last_seen=1)])

    assert db.clear_source("gmail") == 2
    assert db.get_sync_state("gmail") is None
    assert db.count_items() == 0
    assert db.count_contacts() == 1
    db.close()


def test_reopen_keeps_data(tmp_path: Path) -> None:
    with _open(tmp_path) as db:
        db.upsert_items([_item("a")])

    with _open(tmp_path) as db:
        assert db.count_items("gmail") == 1
