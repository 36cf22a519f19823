"""Remote-to-local mailbox synchronization engine.

Three operations per source:

1. ``sync``: the first call runs a full sync (capped by ``limit``); later
   calls read the remote change feed. An expired change cursor falls back to
   a full sync.
2. ``sync_more``: continues the historical backfill from where the last full
   sync or backfill stopped.
3. ``clear_data``: removes a source's items and sync state together.

Sync state is written only after the run's item writes, so an interrupted run
leaves cursors where they were.

Progress goes to a single ``on_progress`` callable. Fan it out with
``progress.ProgressHub`` or hand it to an async consumer through
``progress.ProgressChannel``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

from mail_replica.config.settings import SyncSettings
from mail_replica.models.state import Item, SyncStateRow, make_item_id
from mail_replica.models.types import (
    ProgressEvent,
    SyncMode,
    SyncPhase,
    SyncResult,
    SyncStatus,
)
from mail_replica.pipeline.cancel import CancelledCheck, CancelToken
from mail_replica.pipeline.contacts import extract_contacts
from mail_replica.pipeline.contracts import RemoteMessageClient, ReplicaStore
from mail_replica.pipeline.errors import (
    CursorExpiredError,
    SyncCancelledError,
    SyncInProgressError,
    UnknownSourceError,
)
from mail_replica.pipeline.normalize import normalize_message, now_millis
from mail_replica.pipeline.progress import ProgressObserver, null_observer

logger = logging.getLogger(__name__)


@dataclass
class _RunTotals:
    """Running counts of one sync run."""

    mode: SyncMode
    added: int = 0
    deleted: int = 0
    errors: int = 0

    def result(self) -> SyncResult:
        return SyncResult(
            mode=self.mode,
            added=self.added,
            deleted=self.deleted,
            errors=self.errors,
        )


@dataclass(frozen=True)
class _RunContext:
    """Collaborators shared by the steps of one run."""

    source: str
    client: RemoteMessageClient
    emit: ProgressObserver
    cancel: CancelToken
    totals: _RunTotals


def _progress(
    ctx: _RunContext,
    phase: SyncPhase,
    message: str,
    *,
    current: int | None = None,
    total: int | None = None,
) -> None:
    ctx.emit(ProgressEvent(phase=phase, message=message, current=current, total=total))


class SyncEngine:
    """Keeps a local replica in step with one or more remote mailboxes."""

    def __init__(
        self,
        *,
        store: ReplicaStore,
        clients: Mapping[str, RemoteMessageClient],
        settings: SyncSettings | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Local replica store.
            clients: Remote client per source key (e.g. ``{"gmail": client}``).
            settings: Batching and paging limits.
        """
        self._store = store
        self._clients = dict(clients)
        self._s = settings or SyncSettings()
        self._busy: set[str] = set()

    @property
    def sources(self) -> list[str]:
        """Return the registered source keys."""
        return sorted(self._clients)

    def is_busy(self, source: str) -> bool:
        """Return True while an operation on ``source`` is running."""
        return source in self._busy

    def get_sync_status(self, source: str) -> SyncStatus:
        """Summarize the replica state of a source.

        Args:
            source: Source key.

        Returns:
            SyncStatus; ``synced`` is False when no sync state exists.
        """
        state = self._store.get_sync_state(source)
        if state is None:
            return SyncStatus(synced=False)
        return SyncStatus(
            synced=True,
            total_items=state.total_items,
            last_sync_at=state.last_sync_at,
            has_more_backfill=state.backfill_cursor is not None,
            change_cursor=state.change_cursor,
        )

    async def sync(
        self,
        source: str,
        *,
        limit: int | None = None,
        on_progress: ProgressObserver | None = None,
        cancel: CancelToken | None = None,
    ) -> SyncResult:
        """Bring the replica up to date with the remote mailbox.

        Uses the change feed when a change cursor is stored; otherwise, or when
        the remote reports the cursor as expired, runs a full sync.

        Args:
            source: Source key.
            limit: Message cap for a full sync. None uses the configured
                default; 0 means no cap.
            on_progress: Observer receiving progress events.
            cancel: Cooperative cancellation token.

        Returns:
            Counts of added, deleted and failed messages.

        Raises:
            SyncInProgressError: If the source is already being synced.
            SyncCancelledError: If ``cancel`` was set during the run.
        """
        cap = self._resolve_limit(limit)
        client = self._client(source)
        with self._exclusive(source):
            state = self._store.get_sync_state(source)
            if state is not None and state.change_cursor:
                ctx = self._context(source, client, on_progress, cancel, SyncMode.incremental)
                try:
                    return await self._run(ctx, self._incremental_sync(ctx, state))
                except CursorExpiredError as exc:
                    logger.warning(
                        "Change cursor for %s expired; falling back to full sync: %s",
                        source,
                        exc,
                        extra={"source": source},
                    )
                    _progress(ctx, SyncPhase.info, "History expired, performing full re-sync...")
                    self._store.put_sync_state(state.model_copy(update={"change_cursor": None}))

            ctx = self._context(source, client, on_progress, cancel, SyncMode.full)
            return await self._run(ctx, self._full_sync(ctx, cap))

    async def sync_more(
        self,
        source: str,
        *,
        limit: int | None = None,
        on_progress: ProgressObserver | None = None,
        cancel: CancelToken | None = None,
    ) -> SyncResult:
        """Download older messages, resuming the stored backfill cursor.

        Args:
            source: Source key.
            limit: How many more messages to fetch. None uses the configured
                default; 0 fetches everything that remains.
            on_progress: Observer receiving progress events.
            cancel: Cooperative cancellation token.

        Returns:
            Counts of added and failed messages. Zero counts when the backfill
            is already complete.
        """
        cap = self._resolve_limit(limit)
        client = self._client(source)
        with self._exclusive(source):
            ctx = self._context(source, client, on_progress, cancel, SyncMode.backfill)
            state = self._store.get_sync_state(source)
            if state is None or state.backfill_cursor is None:
                _progress(ctx, SyncPhase.done, "All messages already synced")
                return ctx.totals.result()
            return await self._run(ctx, self._backfill(ctx, state, cap))

    async def clear_data(self, source: str) -> None:
        """Delete a source's items and sync state in one transaction.

        Contacts are kept.

        Raises:
            SyncInProgressError: If the source is currently syncing.
        """
        with self._exclusive(source):
            removed = self._store.clear_source(source)
        logger.info("Cleared %s items of %s", removed, source, extra={"source": source})

    # ── run plumbing ────────────────────────────────────────────────

    def _client(self, source: str) -> RemoteMessageClient:
        try:
            return self._clients[source]
        except KeyError:
            raise UnknownSourceError(source) from None

    def _resolve_limit(self, limit: int | None) -> int | None:
        """Map the public limit convention onto an optional cap."""
        if limit is None:
            limit = self._s.default_limit
        if limit < 0:
            raise ValueError("limit must be >= 0")
        return limit or None

    @contextmanager
    def _exclusive(self, source: str) -> Iterator[None]:
        """Reject overlapping operations on one source."""
        if source in self._busy:
            raise SyncInProgressError(source)
        self._busy.add(source)
        try:
            yield
        finally:
            self._busy.discard(source)

    def _context(
        self,
        source: str,
        client: RemoteMessageClient,
        on_progress: ProgressObserver | None,
        cancel: CancelToken | None,
        mode: SyncMode,
    ) -> _RunContext:
        return _RunContext(
            source=source,
            client=client,
            emit=on_progress or null_observer,
            cancel=cancel or CancelToken(),
            totals=_RunTotals(mode=mode),
        )

    async def _run(self, ctx: _RunContext, body: Awaitable[None]) -> SyncResult:
        """Await a run body, reporting how it ended.

        Cursor expiry passes through untouched so ``sync`` can fall back.
        """
        totals = ctx.totals
        logger.info("Starting %s sync of %s", totals.mode.value, ctx.source, extra={"source": ctx.source})
        try:
            await body
        except CancelledCheck:
            partial = totals.result()
            counts = f"+{partial.added} -{partial.deleted}, {partial.errors} errors"
            logger.info(
                "%s sync of %s cancelled (%s)",
                totals.mode.value,
                ctx.source,
                counts,
                extra={"source": ctx.source, **partial.model_dump(mode="json")},
            )
            _progress(ctx, SyncPhase.info, f"Sync cancelled ({counts})", current=partial.added)
            raise SyncCancelledError(partial) from None
        except CursorExpiredError:
            raise
        except Exception as exc:
            counts = f"+{totals.added} -{totals.deleted}, {totals.errors} errors"
            logger.error(
                "%s sync of %s failed (%s): %r",
                totals.mode.value,
                ctx.source,
                counts,
                exc,
                extra={"source": ctx.source, **totals.result().model_dump(mode="json")},
            )
            _progress(ctx, SyncPhase.info, f"Sync failed ({counts}): {exc}", current=totals.added)
            raise

        result = totals.result()
        logger.info(
            "Finished %s sync of %s",
            result.mode.value,
            ctx.source,
            extra={"source": ctx.source, **result.model_dump(mode="json")},
        )
        return result

    # ── full sync and backfill ──────────────────────────────────────

    async def _full_sync(self, ctx: _RunContext, cap: int | None) -> None:
        _progress(ctx, SyncPhase.info, "Getting mailbox info...")
        ctx.cancel.raise_if_cancelled()
        # Captured before listing so concurrent arrivals show up in the next
        # incremental pass.
        info = await ctx.client.get_mailbox_info()

        listing_total = info.approx_total if cap is None else min(info.approx_total or cap, cap)
        _progress(ctx, SyncPhase.listing, "Listing messages...", current=0, total=listing_total)
        ids, backfill_cursor = await self._collect_ids(
            ctx,
            cap=cap,
            page_token=None,
            total=listing_total,
            label="Listed",
        )
        if ids:
            await self._fetch_and_store(ctx, ids)
        else:
            backfill_cursor = None
        if backfill_cursor is None:
            ctx.totals.deleted += self._store.prune_items(
                source_type=ctx.source,
                keep_source_ids=ids,
            )

        self._store.put_sync_state(
            SyncStateRow(
                source_type=ctx.source,
                change_cursor=info.current_cursor,
                last_sync_at=datetime.now(tz=UTC),
                total_items=self._store.count_items(ctx.source),
                backfill_cursor=backfill_cursor,
            ),
        )
        added = ctx.totals.added
        _progress(ctx, SyncPhase.done, f"Synced {added} messages", current=added, total=added)

    async def _backfill(self, ctx: _RunContext, state: SyncStateRow, cap: int | None) -> None:
        _progress(ctx, SyncPhase.listing, "Loading more messages...", current=0)
        ids, next_token = await self._collect_ids(
            ctx,
            cap=cap,
            page_token=state.backfill_cursor,
            total=None,
            label="Listed more",
        )
        if ids:
            await self._fetch_and_store(ctx, ids)
        else:
            next_token = None

        total_items = self._store.count_items(ctx.source)
        self._store.put_sync_state(
            state.model_copy(
                update={
                    "backfill_cursor": next_token,
                    "total_items": total_items,
                    "last_sync_at": datetime.now(tz=UTC),
                },
            ),
        )
        added = ctx.totals.added
        if not ids:
            message = "All messages synced"
        elif next_token:
            message = f"Downloaded {added} more (more available)"
        else:
            message = f"Downloaded {added} more (all synced)"
        _progress(ctx, SyncPhase.done, message, current=total_items, total=total_items)

    async def _collect_ids(
        self,
        ctx: _RunContext,
        *,
        cap: int | None,
        page_token: str | None,
        total: int | None,
        label: str,
    ) -> tuple[list[str], str | None]:
        """Page through the id listing until ``cap`` ids or the end.

        Returns:
            Unique ids in listing order, and the page token at the stop point
            (None when the remote has no further pages).
        """
        ids: list[str] = []
        token = page_token
        while cap is None or len(ids) < cap:
            ctx.cancel.raise_if_cancelled()
            want = self._s.page_size if cap is None else min(self._s.page_size, cap - len(ids))
            page = await ctx.client.list_message_ids(limit=want, page_token=token)
            ids.extend(page.ids)
            _progress(
                ctx,
                SyncPhase.listing,
                f"{label} {len(ids)} messages...",
                current=len(ids),
                total=total,
            )
            token = page.next_page_token
            if not token or not page.ids:
                break
        return list(dict.fromkeys(ids)), token or None

    # ── incremental sync ────────────────────────────────────────────

    async def _incremental_sync(self, ctx: _RunContext, state: SyncStateRow) -> None:
        _progress(ctx, SyncPhase.syncing, "Checking for changes...")
        since = state.change_cursor
        assert since is not None
        latest = since
        page_token: str | None = None

        while True:
            ctx.cancel.raise_if_cancelled()
            page = await ctx.client.list_changes(since_cursor=since, page_token=page_token)
            if page.next_cursor:
                latest = page.next_cursor

            deleted_ids = list(dict.fromkeys(page.deleted_ids))
            gone = set(deleted_ids)
            # Dedup is per page; an id repeated on a later page is fetched again.
            added_ids = [mid for mid in dict.fromkeys(page.added_ids) if mid not in gone]

            if added_ids:
                await self._fetch_and_store(ctx, added_ids, announce=False)
            if deleted_ids:
                ctx.totals.deleted += self._store.delete_items(
                    make_item_id(ctx.source, mid) for mid in deleted_ids
                )

            _progress(
                ctx,
                SyncPhase.syncing,
                f"Changes: +{ctx.totals.added} -{ctx.totals.deleted}",
                current=ctx.totals.added + ctx.totals.deleted,
            )
            page_token = page.next_page_token
            if not page_token:
                break

        total_items = self._store.count_items(ctx.source)
        self._store.put_sync_state(
            state.model_copy(
                update={
                    "change_cursor": latest,
                    "total_items": total_items,
                    "last_sync_at": datetime.now(tz=UTC),
                },
            ),
        )
        added, deleted = ctx.totals.added, ctx.totals.deleted
        message = "Already up to date" if added == 0 and deleted == 0 else f"Synced: +{added} -{deleted}"
        _progress(ctx, SyncPhase.done, message, current=total_items, total=total_items)

    # ── shared batch fetch ──────────────────────────────────────────

    async def _fetch_and_store(
        self,
        ctx: _RunContext,
        ids: Sequence[str],
        *,
        announce: bool = True,
    ) -> None:
        """Fetch ids in bounded concurrent batches and upsert the results.

        A failed fetch only costs that message: it is logged and counted in
        the run's errors, and the run carries on.

        Args:
            ctx: Run context.
            ids: Remote message ids.
            announce: Emit ``downloading`` progress events.
        """
        total = len(ids)
        stored = 0
        if announce:
            _progress(ctx, SyncPhase.downloading, "Downloading messages...", current=0, total=total)

        for start in range(0, total, self._s.batch_size):
            ctx.cancel.raise_if_cancelled()
            batch = ids[start : start + self._s.batch_size]
            results = await asyncio.gather(
                *(ctx.client.fetch_message(mid) for mid in batch),
                return_exceptions=True,
            )

            synced_at = now_millis()
            items: list[Item] = []
            failures: list[Exception] = []
            for message_id, result in zip(batch, results, strict=True):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    failures.append(result)
                    logger.warning(
                        "Failed to fetch message %s from %s: %r",
                        message_id,
                        ctx.source,
                        result,
                        extra={"source": ctx.source, "message_id": message_id},
                    )
                    continue
                try:
                    items.append(normalize_message(result, source_type=ctx.source, synced_at=synced_at))
                except ValueError as exc:
                    failures.append(exc)
                    logger.warning(
                        "Failed to normalize message %s from %s: %r",
                        message_id,
                        ctx.source,
                        exc,
                        extra={"source": ctx.source, "message_id": message_id},
                    )

            ctx.totals.errors += len(failures)

            if items:
                self._store.upsert_items(items)
                self._store.upsert_contacts(extract_contacts(items))
            ctx.totals.added += len(items)
            stored += len(items)

            if announce:
                _progress(
                    ctx,
                    SyncPhase.downloading,
                    f"Downloaded {stored} of {total} messages",
                    current=stored,
                    total=total,
                )
