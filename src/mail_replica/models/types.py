"""Shared enums and lightweight Pydantic models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from mail_replica.models.base import AppModel


class SourceType(StrEnum):
    """Remote sources the replica knows how to sync."""

    gmail = "gmail"


class SyncPhase(StrEnum):
    """Phases reported through progress events."""

    listing = "listing"
    downloading = "downloading"
    syncing = "syncing"
    done = "done"
    info = "info"


class SyncMode(StrEnum):
    """Kind of pass that produced a sync result."""

    full = "full"
    incremental = "incremental"
    backfill = "backfill"


class ProgressEvent(AppModel):
    """One progress update emitted by the sync engine."""

    phase: SyncPhase
    message: str = ""
    current: int | None = Field(default=None, ge=0)
    total: int | None = Field(default=None, ge=0)


class SyncResult(AppModel):
    """Counts produced by a sync operation."""

    mode: SyncMode
    added: int = Field(default=0, ge=0)
    deleted: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)


class SyncStatus(AppModel):
    """Summary of the replica state for one source."""

    synced: bool
    total_items: int = Field(default=0, ge=0)
    last_sync_at: datetime | None = None
    has_more_backfill: bool = False
    change_cursor: str | None = None


class ContactObservation(AppModel):
    """Participant address observed in one write batch."""

    email: str = Field(min_length=3)
    name: str = ""
    first_seen: int
    last_seen: int
