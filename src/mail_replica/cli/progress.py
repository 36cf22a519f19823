"""Rich rendering of sync progress events."""

from __future__ import annotations

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)

from mail_replica.models.types import ProgressEvent, SyncPhase

_PHASE_STYLE: dict[SyncPhase, str] = {
    SyncPhase.listing: "cyan",
    SyncPhase.downloading: "magenta",
    SyncPhase.syncing: "blue",
}


def make_progress(console: Console) -> Progress:
    """Build the progress display used by sync commands."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        console=console,
        expand=True,
    )


class RichProgressObserver:
    """Progress observer drawing one bar per sync phase.

    ``info`` and ``done`` events are printed as lines above the bars.
    """

    def __init__(self, progress: Progress) -> None:
        self._progress = progress
        self._tasks: dict[SyncPhase, TaskID] = {}

    def __call__(self, event: ProgressEvent) -> None:
        if event.phase == SyncPhase.info:
            self._progress.console.print(f"[yellow]•[/yellow] {event.message}")
            return
        if event.phase == SyncPhase.done:
            for task in self._progress.tasks:
                if task.total is not None:
                    self._progress.update(task.id, completed=task.total)
            self._progress.console.print(f"[green]✔[/green] {event.message}")
            return

        style = _PHASE_STYLE.get(event.phase, "white")
        description = f"[bold {style}]{event.message or event.phase.value}"
        task_id = self._tasks.get(event.phase)
        if task_id is None:
            self._tasks[event.phase] = self._progress.add_task(
                description,
                total=event.total,
                completed=event.current or 0,
            )
            return
        self._progress.update(
            task_id,
            description=description,
            total=event.total,
            completed=event.current,
        )
