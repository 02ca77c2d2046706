"""Rich progress display for an upload session.

Two tiers:

* **Session level** -- aggregate progress across all files
* **File level** -- one row per file with its status text
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from donorhub.models import TaskStatus
from donorhub.upload.session import UploadSession
from donorhub.upload.task import UploadTask


class SessionProgressDisplay:
    """Rich progress bars driven by session events.

    Usage::

        display = SessionProgressDisplay()
        session.add_listener(display.on_event)
        with display:
            await session.run()
    """

    def __init__(self, console: Console | None = None) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )
        self._session_task: TaskID | None = None
        self._file_tasks: dict[str, TaskID] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()
        self._session_task = self._progress.add_task(
            "[green]Session", total=100, status="starting..."
        )

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> SessionProgressDisplay:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_event(self, session: UploadSession, task: UploadTask) -> None:
        """Session listener: refresh the aggregate bar and *task*'s row."""
        if self._session_task is not None:
            summary = session.summary
            self._progress.update(
                self._session_task,
                completed=session.aggregate_progress_percent,
                status=f"{summary['completed']}/{summary['total']} done, "
                f"{summary['failed']} failed",
            )

        row = self._file_tasks.get(task.id)
        if row is None:
            row = self._progress.add_task(
                f"[blue]{_truncate_name(task.descriptor.name)}",
                total=100,
                status=task.status.value,
            )
            self._file_tasks[task.id] = row

        self._progress.update(
            row,
            completed=100 if task.status is TaskStatus.COMPLETED else task.progress_percent,
            status=_status_text(task),
        )


def _status_text(task: UploadTask) -> str:
    if task.status is TaskStatus.FAILED:
        return f"[red]FAIL[/red] {escape(str(task.last_error))}"
    if task.status is TaskStatus.COMPLETED:
        return "[green]done[/green]"
    return task.status.value.replace("_", " ")


def _truncate_name(name: str, max_len: int = 32) -> str:
    """Truncate a file name for display, keeping its tail."""
    if len(name) <= max_len:
        return name
    return "..." + name[-(max_len - 3) :]
