"""
Rich progress display for batch exports.

Each export item gets a progress task with two extra columns: the
latest status line reported by the export, and the elapsed time (which
freezes once the task completes).
"""

import logging
from typing import Dict, Optional, Tuple

from rich.console import Console
from rich.progress import (
    BarColumn, Progress, ProgressColumn, Task, TaskID, TaskProgressColumn, TextColumn
)
from rich.markup import escape
from rich.text import Text

from .exporter import BatchReporter, ProgressCallback
from .filters import ExportItem
from .stats import NULL_STATUS, StatusLogger

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Human-readable duration for batch summaries."""
    if seconds >= 3600:
        return f"{int(seconds // 3600)}h {int(seconds % 3600 // 60)}m {int(seconds % 60)}s"
    if seconds >= 60:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    if seconds >= 1:
        return f"{seconds:.1f}s"
    return f"{seconds * 1000:.0f}ms"


def format_elapsed(seconds: float) -> str:
    """Compact clock-style duration for the progress column."""
    whole = int(seconds)
    if whole >= 3600:
        return f"{whole // 3600}:{whole % 3600 // 60:02d}:{whole % 60:02d}"
    if whole >= 60:
        return f"{whole // 60}:{whole % 60:02d}"
    return f"{whole}.{int(seconds * 10) % 10}s"


class StatusColumn(ProgressColumn):
    """Shows the ``status`` field of a task, in red when the task failed."""

    def render(self, task: Task) -> Text:
        status = task.fields.get("status") or ""
        return Text(status, style="red" if task.fields.get("failed") else "grey50")


class ElapsedTimeColumn(ProgressColumn):
    """Shows time spent on a task, frozen at its final value once finished."""

    def render(self, task: Task) -> Text:
        elapsed = task.finished_time if task.finished else task.elapsed
        if elapsed is None:
            return Text("")
        return Text(format_elapsed(elapsed), style="grey50")


class ProgressTaskStatusLogger(StatusLogger):
    """Routes status lines into a progress task's status column."""

    def __init__(self, progress: Progress, task_id: TaskID):
        self.progress = progress
        self.task_id = task_id

    def log(self, message: str) -> None:
        self.progress.update(self.task_id, status=message)


def create_progress(console: Optional[Console] = None) -> Progress:
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        ElapsedTimeColumn(),
        StatusColumn(),
        console=console,
    )


class RichBatchReporter(BatchReporter):
    """
    Drives a rich Progress display from batch exporter hooks.

    When several items run in parallel, completed ones are hidden since
    they finish out of order.
    """

    def __init__(self, progress: Progress, hide_completed: bool = False, verbose: bool = False):
        self.progress = progress
        self.hide_completed = hide_completed
        self.verbose = verbose
        self._tasks: Dict[ExportItem, TaskID] = {}

    def batch_started(self, item_count: int) -> None:
        self.progress.console.print(f"Exporting {item_count} item(s)...")

    def item_started(self, item: ExportItem) -> Tuple[StatusLogger, ProgressCallback]:
        task_id = self.progress.add_task(escape(item.label), total=100, status="")
        self._tasks[item] = task_id

        def on_progress(fraction: float) -> None:
            self.progress.update(task_id, completed=max(0.0, min(fraction, 1.0)) * 100)

        if self.verbose:
            return ProgressTaskStatusLogger(self.progress, task_id), on_progress
        return NULL_STATUS, on_progress

    def item_finished(self, item: ExportItem, message_count: Optional[int] = None, error: Optional[str] = None) -> None:
        task_id = self._tasks.pop(item, None)
        if task_id is None:
            return

        status = error or ""
        if error is not None:
            logger.debug(f"Export of {item.label} failed: {error}")
        if message_count is not None and self.verbose:
            status = f"{message_count} message(s)"
        self.progress.update(
            task_id,
            completed=100,
            status=status,
            failed=error is not None,
            visible=not self.hide_completed
        )

    def item_skipped(self, label: str) -> None:
        self.progress.console.print(f"[grey50]Skipping {escape(label)}[/grey50]")
