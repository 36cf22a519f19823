"""SQLite persistence for the local mailbox replica."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mail_replica.models.state import Contact, Item, SyncStateRow
from mail_replica.models.types import ContactObservation

SCHEMA_VERSION = 1

_ITEM_COLUMNS = (
    "id",
    "source_type",
    "source_id",
    "thread_key",
    "from_addr",
    "to_addr",
    "cc_addr",
    "subject",
    "snippet",
    "plain_body",
    "html_body",
    "date",
    "labels_json",
    "message_id",
    "in_reply_to",
    "references_hdr",
    "raw_json",
    "synced_at",
)


def _utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(tz=UTC)


def _dt_to_iso(value: datetime) -> str:
    """Convert datetime to ISO string in UTC.

    Args:
        value: Datetime value.

    Returns:
        ISO-formatted string in UTC.
    """
    return value.astimezone(UTC).isoformat()


def _iso_to_dt(value: str) -> datetime:
    """Parse ISO datetime strings into timezone-aware datetimes.

    Args:
        value: ISO-formatted datetime string.

    Returns:
        Parsed datetime, defaulting to UTC if no timezone is present.
    """
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


def _like_escape(value: str) -> str:
    """Escape LIKE wildcards so user text matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class DateRange:
    """Oldest and newest item dates (epoch millis) for a source."""

    oldest: int
    newest: int


class ReplicaDb:
    """SQLite wrapper holding items, contacts and per-source sync state."""

    def __init__(self, *, sqlite_path: Path | str) -> None:
        """Initialize the database connection.

        Args:
            sqlite_path: Path to the sqlite database file, or ":memory:".
        """
        self._sqlite_path = sqlite_path
        self._conn = sqlite3.connect(
            sqlite_path,
            timeout=30,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON")

    @property
    def sqlite_path(self) -> Path | str:
        """Return the sqlite database path."""
        return self._sqlite_path

    def close(self) -> None:
        """Close the underlying sqlite connection."""
        self._conn.close()

    def __enter__(self) -> ReplicaDb:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Provide a transaction context manager."""
        cursor = self._conn.cursor()
        try:
            cursor.execute("BEGIN")
            yield self._conn
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise

    def init_schema(self) -> None:
        """Create tables if missing and ensure sqlite PRAGMA settings."""
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS items (
                  id TEXT PRIMARY KEY,
                  source_type TEXT NOT NULL,
                  source_id TEXT NOT NULL,
                  thread_key TEXT,
                  from_addr TEXT NOT NULL DEFAULT '',
                  to_addr TEXT NOT NULL DEFAULT '',
                  cc_addr TEXT NOT NULL DEFAULT '',
                  subject TEXT NOT NULL DEFAULT '',
                  snippet TEXT NOT NULL DEFAULT '',
                  plain_body TEXT NOT NULL DEFAULT '',
                  html_body TEXT NOT NULL DEFAULT '',
                  date INTEGER NOT NULL,
                  labels_json TEXT NOT NULL DEFAULT '[]',
                  message_id TEXT NOT NULL DEFAULT '',
                  in_reply_to TEXT NOT NULL DEFAULT '',
                  references_hdr TEXT NOT NULL DEFAULT '',
                  raw_json TEXT NOT NULL DEFAULT '{}',
                  synced_at INTEGER NOT NULL,
                  UNIQUE(source_type, source_id)
                )
                """,
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_items_source_date ON items(source_type, date)",
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_items_thread ON items(thread_key)")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS item_labels (
                  item_id TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
                  label TEXT NOT NULL,
                  PRIMARY KEY(item_id, label)
                )
                """,
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_item_labels_label ON item_labels(label)")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contacts (
                  email TEXT PRIMARY KEY,
                  name TEXT NOT NULL DEFAULT '',
                  first_seen INTEGER NOT NULL,
                  last_seen INTEGER NOT NULL
                )
                """,
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_contacts_last_seen ON contacts(last_seen)",
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_state (
                  source_type TEXT PRIMARY KEY,
                  change_cursor TEXT,
                  last_sync_at TEXT,
                  total_items INTEGER NOT NULL DEFAULT 0,
                  backfill_cursor TEXT,
                  updated_at TEXT NOT NULL
                )
                """,
            )

            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    # ── items ────────────────────────────────────────────────────────

    def upsert_items(self, items: Sequence[Item]) -> int:
        """Insert or overwrite items (and their label index) in one transaction.

        Args:
            items: Normalized items. The item id is the conflict key.

        Returns:
            Number of items written.
        """
        if not items:
            return 0
        placeholders = ", ".join("?" for _ in _ITEM_COLUMNS)
        updates = ",\n                  ".join(
            f"{col}=excluded.{col}" for col in _ITEM_COLUMNS if col != "id"
        )
        sql = f"""
                INSERT INTO items({", ".join(_ITEM_COLUMNS)})
                VALUES({placeholders})
                ON CONFLICT(id) DO UPDATE SET
                  {updates}
                """
        with self.transaction() as conn:
            conn.executemany(sql, [self._item_to_params(item) for item in items])
            conn.executemany(
                "DELETE FROM item_labels WHERE item_id=?",
                [(item.id,) for item in items],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO item_labels(item_id, label) VALUES(?, ?)",
                [(item.id, label) for item in items for label in item.labels],
            )
        return len(items)

    def delete_items(self, item_ids: Iterable[str]) -> int:
        """Delete items by id.

        Args:
            item_ids: Composite item ids.

        Returns:
            Number of rows actually removed.
        """
        ids = sorted(set(item_ids))
        if not ids:
            return 0
        removed = 0
        with self.transaction() as conn:
            for start in range(0, len(ids), 500):
                chunk = ids[start : start + 500]
                res = conn.execute(
                    f"DELETE FROM items WHERE id IN ({', '.join('?' for _ in chunk)})",
                    chunk,
                )
                removed += int(res.rowcount)
        return removed

    def prune_items(self, *, source_type: str, keep_source_ids: Iterable[str]) -> int:
        """Delete a source's items whose source id is not in ``keep_source_ids``.

        Args:
            source_type: Source to prune.
            keep_source_ids: Source ids that must survive.

        Returns:
            Number of rows removed.
        """
        keep = set(keep_source_ids)
        rows = self._conn.execute(
            "SELECT id, source_id FROM items WHERE source_type=?",
            (source_type,),
        ).fetchall()
        stale = [str(row["id"]) for row in rows if row["source_id"] not in keep]
        return self.delete_items(stale)

    def count_items(self, source_type: str | None = None) -> int:
        """Return the number of stored items.

        Args:
            source_type: Optional source filter.

        Returns:
            Item count.
        """
        if source_type is None:
            row = self._conn.execute("SELECT COUNT(*) AS c FROM items").fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) AS c FROM items WHERE source_type=?",
                (source_type,),
            ).fetchone()
        return int(row["c"]) if row else 0

    def get_item(self, item_id: str) -> Item | None:
        """Fetch one item by its composite id."""
        row = self._conn.execute("SELECT * FROM items WHERE id=?", (item_id,)).fetchone()
        return self._row_to_item(row) if row is not None else None

    def recent_items(self, source_type: str, *, limit: int = 10) -> list[Item]:
        """Return the newest items of a source (uses the source/date index)."""
        rows = self._conn.execute(
            "SELECT * FROM items WHERE source_type=? ORDER BY date DESC LIMIT ?",
            (source_type, limit),
        ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def items_by_label(self, label: str, *, limit: int = 10) -> list[Item]:
        """Return the newest items carrying ``label``."""
        rows = self._conn.execute(
            """
            SELECT items.* FROM items
            JOIN item_labels ON item_labels.item_id = items.id
            WHERE item_labels.label=?
            ORDER BY items.date DESC
            LIMIT ?
            """,
            (label, limit),
        ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def items_from(self, sender: str, *, limit: int = 10) -> list[Item]:
        """Return the newest items whose From header mentions ``sender``."""
        rows = self._conn.execute(
            r"""
            SELECT * FROM items
            WHERE from_addr LIKE ? ESCAPE '\'
            ORDER BY date DESC
            LIMIT ?
            """,
            (f"%{_like_escape(sender)}%", limit),
        ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def thread_items(self, thread_key: str) -> list[Item]:
        """Return all items of a thread, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM items WHERE thread_key=? ORDER BY date ASC",
            (thread_key,),
        ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def search_items(self, query: str, *, limit: int = 10) -> list[Item]:
        """Case-insensitive substring search over subject, sender, snippet and body.

        Args:
            query: Text to look for.
            limit: Maximum number of results.

        Returns:
            Matching items, newest first. Blank queries match nothing.
        """
        needle = query.strip()
        if not needle:
            return []
        pattern = f"%{_like_escape(needle)}%"
        rows = self._conn.execute(
            r"""
            SELECT * FROM items
            WHERE subject LIKE ?1 ESCAPE '\'
               OR from_addr LIKE ?1 ESCAPE '\'
               OR snippet LIKE ?1 ESCAPE '\'
               OR plain_body LIKE ?1 ESCAPE '\'
            ORDER BY date DESC
            LIMIT ?2
            """,
            (pattern, limit),
        ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def top_senders(self, source_type: str, *, limit: int = 10) -> list[tuple[str, int]]:
        """Return ``(from header, count)`` pairs, most frequent first."""
        rows = self._conn.execute(
            """
            SELECT from_addr, COUNT(*) AS c FROM items
            WHERE source_type=? AND from_addr != ''
            GROUP BY from_addr
            ORDER BY c DESC, from_addr ASC
            LIMIT ?
            """,
            (source_type, limit),
        ).fetchall()
        return [(str(row["from_addr"]), int(row["c"])) for row in rows]

    def label_distribution(self, source_type: str, *, limit: int = 10) -> list[tuple[str, int]]:
        """Return ``(label, count)`` pairs, most frequent first."""
        rows = self._conn.execute(
            """
            SELECT item_labels.label AS label, COUNT(*) AS c
            FROM item_labels
            JOIN items ON items.id = item_labels.item_id
            WHERE items.source_type=?
            GROUP BY item_labels.label
            ORDER BY c DESC, label ASC
            LIMIT ?
            """,
            (source_type, limit),
        ).fetchall()
        return [(str(row["label"]), int(row["c"])) for row in rows]

    def date_range(self, source_type: str) -> DateRange | None:
        """Return the oldest and newest item dates of a source."""
        row = self._conn.execute(
            "SELECT MIN(date) AS oldest, MAX(date) AS newest FROM items WHERE source_type=?",
            (source_type,),
        ).fetchone()
        if row is None or row["oldest"] is None:
            return None
        return DateRange(oldest=int(row["oldest"]), newest=int(row["newest"]))

    # ── contacts ─────────────────────────────────────────────────────

    def upsert_contacts(self, observations: Sequence[ContactObservation]) -> int:
        """Merge observed participants into the contacts table.

        New addresses take the observation as-is. Existing rows only move
        ``last_seen`` forward and only fill ``name`` when it is empty.

        Args:
            observations: One observation per email (see ``extract_contacts``).

        Returns:
            Number of observations applied.
        """
        if not observations:
            return 0
        with self.transaction() as conn:
            conn.executemany(
                """
                INSERT INTO contacts(email, name, first_seen, last_seen)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET
                  name=CASE
                    WHEN contacts.name = '' AND excluded.name != '' THEN excluded.name
                    ELSE contacts.name
                  END,
                  last_seen=MAX(contacts.last_seen, excluded.last_seen)
                """,
                [
                    (obs.email, obs.name, obs.first_seen, obs.last_seen)
                    for obs in observations
                ],
            )
        return len(observations)

    def get_contact(self, email: str) -> Contact | None:
        """Fetch a contact by (case-insensitive) email."""
        row = self._conn.execute(
            "SELECT * FROM contacts WHERE email=?",
            (email.strip().lower(),),
        ).fetchone()
        return self._row_to_contact(row) if row is not None else None

    def list_contacts(self, *, limit: int = 50) -> list[Contact]:
        """Return contacts, most recently seen first."""
        rows = self._conn.execute(
            "SELECT * FROM contacts ORDER BY last_seen DESC, email ASC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._row_to_contact(row) for row in rows]

    def count_contacts(self) -> int:
        """Return the number of known contacts."""
        row = self._conn.execute("SELECT COUNT(*) AS c FROM contacts").fetchone()
        return int(row["c"]) if row else 0

    # ── sync state ───────────────────────────────────────────────────

    def get_sync_state(self, source_type: str) -> SyncStateRow | None:
        """Fetch the sync state row of a source.

        Args:
            source_type: Source key.

        Returns:
            State row if present, otherwise None.
        """
        row = self._conn.execute(
            """
            SELECT source_type, change_cursor, last_sync_at, total_items, backfill_cursor
            FROM sync_state
            WHERE source_type=?
            """,
            (source_type,),
        ).fetchone()
        if row is None:
            return None
        return SyncStateRow(
            source_type=row["source_type"],
            change_cursor=row["change_cursor"],
            last_sync_at=_iso_to_dt(row["last_sync_at"]) if row["last_sync_at"] else None,
            total_items=int(row["total_items"]),
            backfill_cursor=row["backfill_cursor"],
        )

    def put_sync_state(self, state: SyncStateRow) -> None:
        """Insert or replace the sync state row of a source.

        Args:
            state: Complete state to persist.
        """
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_state(
                  source_type, change_cursor, last_sync_at, total_items,
                  backfill_cursor, updated_at
                )
                VALUES(?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_type) DO UPDATE SET
                  change_cursor=excluded.change_cursor,
                  last_sync_at=excluded.last_sync_at,
                  total_items=excluded.total_items,
                  backfill_cursor=excluded.backfill_cursor,
                  updated_at=excluded.updated_at
                """,
                (
                    state.source_type,
                    state.change_cursor,
                    _dt_to_iso(state.last_sync_at) if state.last_sync_at else None,
                    state.total_items,
                    state.backfill_cursor,
                    _dt_to_iso(_utcnow()),
                ),
            )

    def clear_source(self, source_type: str) -> int:
        """Delete all items and the sync state of a source atomically.

        Contacts are kept: they form a durable address book.

        Args:
            source_type: Source to clear.

        Returns:
            Number of items removed.
        """
        with self.transaction() as conn:
            res = conn.execute("DELETE FROM items WHERE source_type=?", (source_type,))
            conn.execute("DELETE FROM sync_state WHERE source_type=?", (source_type,))
            return int(res.rowcount)

    # ── row mapping ──────────────────────────────────────────────────

    def _item_to_params(self, item: Item) -> tuple[Any, ...]:
        """Flatten an Item into INSERT parameters in ``_ITEM_COLUMNS`` order."""
        return (
            item.id,
            item.source_type,
            item.source_id,
            item.thread_key,
            item.from_,
            item.to,
            item.cc,
            item.subject,
            item.snippet,
            item.plain_body,
            item.html_body,
            item.date,
            json.dumps(item.labels),
            item.message_id,
            item.in_reply_to,
            item.references,
            json.dumps(item.raw, ensure_ascii=False),
            item.synced_at,
        )

    def _row_to_item(self, row: Mapping[str, Any]) -> Item:
        """Convert a sqlite row to an Item.

        Args:
            row: Row mapping from sqlite.

        Returns:
            Item instance.
        """
        return Item(
            id=str(row["id"]),
            source_type=str(row["source_type"]),
            source_id=str(row["source_id"]),
            thread_key=row["thread_key"],
            from_=row["from_addr"],
            to=row["to_addr"],
            cc=row["cc_addr"],
            subject=row["subject"],
            snippet=row["snippet"],
            plain_body=row["plain_body"],
            html_body=row["html_body"],
            date=int(row["date"]),
            labels=json.loads(row["labels_json"]),
            message_id=row["message_id"],
            in_reply_to=row["in_reply_to"],
            references=row["references_hdr"],
            raw=json.loads(row["raw_json"]),
            synced_at=int(row["synced_at"]),
        )

    def _row_to_contact(self, row: Mapping[str, Any]) -> Contact:
        """Convert a sqlite row to a Contact."""
        return Contact(
            email=str(row["email"]),
            name=str(row["name"]),
            first_seen=int(row["first_seen"]),
            last_seen=int(row["last_seen"]),
        )
