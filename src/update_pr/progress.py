"""Transfer progress rendering for fetch and push, and the wait spinner.

GitPython parses git's ``--progress`` output and calls ``update`` on a
``RemoteProgress``; the reporters here translate those calls into rich
progress bars. Each bar is created on first use and reused until the
fetch/push call that owns the reporter finishes. Rendering problems are
logged and swallowed so they can never fail a transfer.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from git import RemoteProgress
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from .constants import WAIT_TICK_SECONDS
from .observability import log_debug

_stdout_console: Optional[Console] = None
_stderr_console: Optional[Console] = None


def get_console(stderr: bool = False) -> Console:
    """Shared consoles for user-facing output."""
    global _stdout_console, _stderr_console
    if stderr:
        if _stderr_console is None:
            _stderr_console = Console(stderr=True)
        return _stderr_console
    if _stdout_console is None:
        _stdout_console = Console()
    return _stdout_console


def _bar_columns():
    return (
        TextColumn("{task.description}"),
        BarColumn(bar_width=None),
        TimeRemainingColumn(),
    )


class TransferReporter(RemoteProgress):
    """Base reporter: owns one rich ``Progress`` and lazily created tasks."""

    # op code -> bar label; subclasses fill this in
    LABELS: Dict[int, str] = {}

    def __init__(self, console: Optional[Console] = None):
        super().__init__()
        self.console = console or get_console()
        self._progress: Optional[Progress] = None
        self._tasks: Dict[int, TaskID] = {}

    @property
    def progress(self) -> Progress:
        if self._progress is None:
            self._progress = Progress(*_bar_columns(), console=self.console)
            self._progress.start()
        return self._progress

    def task(self, op: int, total: Optional[float]) -> Optional[TaskID]:
        label = self.LABELS.get(op)
        if label is None:
            return None
        if op not in self._tasks:
            self._tasks[op] = self.progress.add_task(label, total=total or None)
        return self._tasks[op]

    def update(self, op_code, cur_count, max_count=None, message=""):  # type: ignore[override]
        try:
            stage = op_code & RemoteProgress.OP_MASK
            task_id = self.task(stage, max_count)
            if task_id is None:
                return
            self.progress.update(task_id, completed=cur_count or 0, total=max_count or None)
        except Exception as exc:  # rendering must never break a transfer
            log_debug("progress rendering failed", error=str(exc))

    def println(self, message: str) -> None:
        if self._progress is not None:
            self._progress.console.print(message)
        else:
            self.console.print(message)

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

    def __enter__(self) -> "TransferReporter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class FetchProgress(TransferReporter):
    """Object download, object processing and delta resolution bars."""

    LABELS = {
        RemoteProgress.RECEIVING: "Downloading objects",
        RemoteProgress.COUNTING: "Processing objects",
        RemoteProgress.COMPRESSING: "Processing objects",
        RemoteProgress.RESOLVING: "Processing deltas",
    }

    def task(self, op: int, total: Optional[float]) -> Optional[TaskID]:
        # Counting and compressing share the "Processing objects" bar
        if op == RemoteProgress.COMPRESSING:
            op = RemoteProgress.COUNTING
        return super().task(op, total)


class PushProgress(TransferReporter):
    """A single bar tracking objects written to the remote."""

    LABELS = {
        RemoteProgress.WRITING: "Writing objects",
    }


def wait(
    seconds: float,
    console: Optional[Console] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Block for ``seconds`` while showing a spinner with elapsed time."""
    console = console or get_console()
    stop_at = clock() + seconds
    with Progress(
        SpinnerColumn(),
        TimeElapsedColumn(),
        TextColumn("{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Waiting...", total=None)
        while clock() < stop_at:
            sleep(min(WAIT_TICK_SECONDS, max(stop_at - clock(), 0)))
