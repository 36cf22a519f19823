"""Typer CLI for the local mailbox replica."""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import UTC, datetime
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from mail_replica.cli.progress import RichProgressObserver, make_progress
from mail_replica.config.settings import AppSettings, GmailSettings, load_settings
from mail_replica.gmail.client import GmailClient
from mail_replica.models.types import SourceType, SyncResult
from mail_replica.pipeline.cancel import CancelToken
from mail_replica.pipeline.engine import SyncEngine
from mail_replica.pipeline.errors import SyncCancelledError
from mail_replica.pipeline.progress import ProgressHub
from mail_replica.storage.replica_db import ReplicaDb
from mail_replica.utils.logging import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Keep a local SQLite replica of a Gmail mailbox in sync.",
)

_ENV_FILE_HELP = "Optional path to a .env file (in addition to environment variables)."


def load_app_settings(*, env_file: Path | None) -> AppSettings:
    """Load settings and configure logging, exiting with code 2 on bad config.

    Args:
        env_file: Optional path to a .env file to load in addition to environment variables.

    Returns:
        Validated application settings.
    """
    try:
        settings = load_settings(env_file=env_file)
    except ValidationError as exc:
        typer.echo(f"Invalid configuration:\n{exc}", err=True)
        raise typer.Exit(code=2) from None
    configure_logging(settings=settings.logging)
    return settings


def _require_gmail(settings: AppSettings) -> GmailSettings:
    if settings.gmail is None:
        typer.echo(
            "Missing Gmail settings. Set REPLICA_GMAIL__CREDENTIALS_FILE.",
            err=True,
        )
        raise typer.Exit(code=2)
    return settings.gmail


def _open_db(settings: AppSettings) -> ReplicaDb:
    settings.storage.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    db = ReplicaDb(sqlite_path=settings.storage.sqlite_path)
    db.init_schema()
    return db


def _gmail_client(settings: GmailSettings) -> GmailClient:
    try:
        return GmailClient.from_settings(settings)
    except ValueError as exc:
        # Usually config/token file issues.
        logger.error("Gmail auth configuration error: %s", exc)
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from None


def _format_millis(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M")


async def _drive_sync(
    engine: SyncEngine,
    *,
    source: str,
    limit: int | None,
    backfill: bool,
    console: Console,
) -> SyncResult:
    """Run one sync with a progress display; SIGINT sets the cancel token."""
    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel, "interrupted")
        handles_sigint = True
    except NotImplementedError:
        # No loop signal handlers on Windows; Ctrl+C raises KeyboardInterrupt.
        handles_sigint = False

    try:
        with make_progress(console) as progress:
            observer = ProgressHub(RichProgressObserver(progress))
            run = engine.sync_more if backfill else engine.sync
            return await run(source, limit=limit, on_progress=observer, cancel=cancel)
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)


def _run_sync_command(
    *,
    env_file: Path | None,
    source: SourceType,
    limit: int | None,
    backfill: bool,
) -> None:
    settings = load_app_settings(env_file=env_file)
    gmail = _require_gmail(settings)
    console = Console()

    with _open_db(settings) as db:
        engine = SyncEngine(
            store=db,
            clients={SourceType.gmail.value: _gmail_client(gmail)},
            settings=settings.sync,
        )
        try:
            result = asyncio.run(
                _drive_sync(
                    engine,
                    source=source.value,
                    limit=limit,
                    backfill=backfill,
                    console=console,
                ),
            )
        except (SyncCancelledError, KeyboardInterrupt) as exc:
            console.print(f"[yellow]⚠[/yellow] {str(exc) or 'Sync was cancelled'}")
            raise typer.Exit(code=130) from None
        except Exception as exc:
            logger.exception("Sync failed")
            typer.echo(f"Sync failed: {exc}", err=True)
            raise typer.Exit(code=1) from None

    console.print(
        f"[bold green]{result.mode.value.capitalize()} sync finished:[/bold green] "
        f"+{result.added} -{result.deleted}, {result.errors} errors",
    )


@app.command("sync")
def sync_cmd(
    *,
    env_file: Path | None = typer.Option(
        default=None,
        exists=True,
        dir_okay=False,
        help=_ENV_FILE_HELP,
    ),
    source: SourceType = typer.Option(default=SourceType.gmail, help="Source to sync."),
    limit: int | None = typer.Option(
        default=None,
        min=0,
        help="Message cap for a full sync (0 = no cap; default from REPLICA_SYNC__DEFAULT_LIMIT).",
    ),
) -> None:
    """Sync new and deleted messages, running a full sync when needed.

    Args:
        env_file: Optional path to a .env file to load configuration from.
        source: Source to sync.
        limit: Message cap for a full sync.
    """
    _run_sync_command(env_file=env_file, source=source, limit=limit, backfill=False)


@app.command("sync-more")
def sync_more_cmd(
    *,
    env_file: Path | None = typer.Option(
        default=None,
        exists=True,
        dir_okay=False,
        help=_ENV_FILE_HELP,
    ),
    source: SourceType = typer.Option(default=SourceType.gmail, help="Source to backfill."),
    limit: int | None = typer.Option(
        default=None,
        min=0,
        help="How many older messages to fetch (0 = everything that remains).",
    ),
) -> None:
    """Download older messages beyond the initial sync window.

    Args:
        env_file: Optional path to a .env file to load configuration from.
        source: Source to backfill.
        limit: How many older messages to fetch.
    """
    _run_sync_command(env_file=env_file, source=source, limit=limit, backfill=True)


@app.command("status")
def status_cmd(
    *,
    env_file: Path | None = typer.Option(
        default=None,
        exists=True,
        dir_okay=False,
        help=_ENV_FILE_HELP,
    ),
    source: SourceType = typer.Option(default=SourceType.gmail),
) -> None:
    """Show the sync status of a source."""
    settings = load_app_settings(env_file=env_file)
    with _open_db(settings) as db:
        status = SyncEngine(store=db, clients={}, settings=settings.sync).get_sync_status(source.value)

    if not status.synced:
        typer.echo(f"{source.value}: never synced")
        return
    last = status.last_sync_at.isoformat() if status.last_sync_at else "-"
    typer.echo(f"{source.value}: {status.total_items} items")
    typer.echo(f"last sync: {last}")
    typer.echo(f"change cursor: {status.change_cursor or '-'}")
    typer.echo(f"older messages available: {'yes' if status.has_more_backfill else 'no'}")


@app.command("clear")
def clear_cmd(
    *,
    env_file: Path | None = typer.Option(
        default=None,
        exists=True,
        dir_okay=False,
        help=_ENV_FILE_HELP,
    ),
    source: SourceType = typer.Option(default=SourceType.gmail),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete a source's local items and sync state (contacts are kept)."""
    if not yes:
        typer.confirm(f"Delete all local {source.value} items and sync state?", abort=True)

    settings = load_app_settings(env_file=env_file)
    with _open_db(settings) as db:
        engine = SyncEngine(store=db, clients={}, settings=settings.sync)
        asyncio.run(engine.clear_data(source.value))
    typer.echo(f"Cleared {source.value} data.")


@app.command("recent")
def recent_cmd(
    *,
    env_file: Path | None = typer.Option(
        default=None,
        exists=True,
        dir_okay=False,
        help=_ENV_FILE_HELP,
    ),
    source: SourceType = typer.Option(default=SourceType.gmail),
    limit: int = typer.Option(default=10, min=1),
    label: str | None = typer.Option(default=None, help="Only items carrying this label."),
) -> None:
    """List the most recent stored messages."""
    settings = load_app_settings(env_file=env_file)
    with _open_db(settings) as db:
        if label:
            items = db.items_by_label(label, limit=limit)
        else:
            items = db.recent_items(source.value, limit=limit)

    table = Table("Date (UTC)", "From", "Subject", "Labels")
    for item in items:
        table.add_row(_format_millis(item.date), item.from_, item.subject, ", ".join(item.labels))
    Console().print(table)


@app.command("summary")
def summary_cmd(
    *,
    env_file: Path | None = typer.Option(
        default=None,
        exists=True,
        dir_okay=False,
        help=_ENV_FILE_HELP,
    ),
    source: SourceType = typer.Option(default=SourceType.gmail),
) -> None:
    """Print counts, date range, top senders and label distribution."""
    settings = load_app_settings(env_file=env_file)
    with _open_db(settings) as db:
        total = db.count_items(source.value)
        contacts = db.count_contacts()
        span = db.date_range(source.value)
        senders = db.top_senders(source.value, limit=10)
        labels = db.label_distribution(source.value, limit=10)

    console = Console()
    console.print(f"[bold]{source.value}[/bold]: {total} items, {contacts} contacts")
    if span is not None:
        console.print(f"  [dim]From[/dim] {_format_millis(span.oldest)} [dim]to[/dim] {_format_millis(span.newest)}")

    senders_table = Table("Sender", "Messages", title="Top senders")
    for sender, count in senders:
        senders_table.add_row(sender, str(count))
    console.print(senders_table)

    labels_table = Table("Label", "Messages", title="Labels")
    for name, count in labels:
        labels_table.add_row(name, str(count))
    console.print(labels_table)


@app.command("gmail-auth")
def gmail_auth_cmd(
    *,
    env_file: Path | None = typer.Option(
        default=None,
        exists=True,
        dir_okay=False,
        help=_ENV_FILE_HELP,
    ),
) -> None:
    """Run the Gmail OAuth flow and verify mailbox access.

    Args:
        env_file: Optional path to a .env file to load configuration from.
    """
    settings = load_app_settings(env_file=env_file)
    gmail = _require_gmail(settings)

    client = _gmail_client(gmail)
    try:
        profile = asyncio.run(client.get_profile())
    except Exception as exc:
        logger.exception("Gmail auth failed")
        typer.echo(f"Gmail auth failed: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if "emailAddress" not in profile:
        typer.echo(f"Unexpected Gmail profile response: {profile!r}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Gmail OAuth OK for: {profile['emailAddress']}")
    if "messagesTotal" in profile:
        typer.echo(f"messagesTotal: {profile.get('messagesTotal')}")
    if "historyId" in profile:
        typer.echo(f"historyId: {profile.get('historyId')}")
