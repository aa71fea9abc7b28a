"""Progress accounting for an archival run."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeAlias
from dataclasses import dataclass

from imap_archiver.archive.errors import StoreError
from imap_archiver.archive.store import MailStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of run progress."""

    estimated_total: int | None
    moved_count: int


ProgressObserver: TypeAlias = Callable[[ProgressSnapshot], None]


class ProgressTracker:
    """Track confirmed moves against a one-time estimate of the mailbox size."""

    def __init__(self) -> None:
        self._estimated_total: int | None = None
        self._moved_count = 0
        self._snapshotted = False
        self._observers: list[ProgressObserver] = []

    @property
    def estimated_total(self) -> int | None:
        """Return the estimate taken before pagination, if known."""
        return self._estimated_total

    @property
    def moved_count(self) -> int:
        """Return the number of messages confirmed moved."""
        return self._moved_count

    def snapshot(self) -> ProgressSnapshot:
        """Return the current progress values."""
        return ProgressSnapshot(
            estimated_total=self._estimated_total,
            moved_count=self._moved_count,
        )

    def subscribe(self, observer: ProgressObserver) -> None:
        """Register a callback invoked on every progress change."""
        self._observers.append(observer)

    async def snapshot_estimate(self, store: MailStore, mailbox: str) -> int | None:
        """Record the store-reported message count of ``mailbox``.

        The estimate is only used for reporting, so a failing status call is
        logged and leaves it unknown.

        Args:
            store: Connected mail store.
            mailbox: Source mailbox name.

        Returns:
            The estimated total, or None if the store could not report it.

        Raises:
            RuntimeError: If an estimate was already taken for this run.
        """
        if self._snapshotted:
            raise RuntimeError("estimate already taken for this run")
        self._snapshotted = True
        try:
            self._estimated_total = await store.status_count(mailbox)
        except StoreError as exc:
            logger.warning("Could not read message count of %s: %s", mailbox, exc)
            self._estimated_total = None
        else:
            logger.info(
                "Estimated %d messages in %s",
                self._estimated_total,
                mailbox,
                extra={"estimated_total": self._estimated_total},
            )
        self._notify()
        return self._estimated_total

    def record_moved(self, n: int) -> None:
        """Add ``n`` confirmed moves.

        Raises:
            ValueError: If ``n`` is negative.
        """
        if n < 0:
            raise ValueError(f"moved count must not decrease: {n}")
        self._moved_count += n
        self._notify()

    def _notify(self) -> None:
        snap = self.snapshot()
        for observer in self._observers:
            observer(snap)
