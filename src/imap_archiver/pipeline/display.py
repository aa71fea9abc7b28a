"""Rich terminal progress bar driven by the progress tracker."""

from __future__ import annotations

from types import TracebackType

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)

from imap_archiver.archive.progress import ProgressSnapshot


class RichProgressObserver:
    """Progress observer that renders moves against the estimated total.

    Use as a context manager around the run and subscribe the instance to a
    ``ProgressTracker``.
    """

    def __init__(self, *, console: Console | None = None, description: str = "Archiving") -> None:
        """Initialize the observer.

        Args:
            console: Console to render to.
            description: Label shown next to the bar.
        """
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TaskProgressColumn(),
            TimeRemainingColumn(),
            console=console or Console(),
            expand=True,
        )
        self._task = self._progress.add_task(f"[bold magenta]{description}", total=None)

    def __enter__(self) -> RichProgressObserver:
        self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._progress.stop()

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        """Update the bar from a tracker snapshot."""
        total = snapshot.estimated_total
        # The estimate may be stale; never show more moved than total.
        if total is not None and snapshot.moved_count > total:
            total = snapshot.moved_count
        self._progress.update(self._task, total=total, completed=snapshot.moved_count)
