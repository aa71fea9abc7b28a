"""End-to-end orchestration of one archival run."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from imap_archiver.archive.cutoff import compute_cutoff
from imap_archiver.archive.errors import ArchiverError, ConnectionFailedError, StoreError
from imap_archiver.archive.mover import BatchMover, RetryPolicy
from imap_archiver.archive.paginator import SequencePaginator
from imap_archiver.archive.progress import ProgressTracker
from imap_archiver.archive.store import MailStore
from imap_archiver.config.settings import ArchiveSettings
from imap_archiver.models.types import PreflightReport, RunOutcome, RunState, RunSummary

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.idle: frozenset({RunState.connected, RunState.failed}),
    RunState.connected: frozenset({RunState.mailbox_opened, RunState.failed}),
    RunState.mailbox_opened: frozenset({RunState.precondition_checked, RunState.failed}),
    RunState.precondition_checked: frozenset(
        {RunState.paginating, RunState.done, RunState.failed},
    ),
    RunState.paginating: frozenset({RunState.draining, RunState.done, RunState.failed}),
    RunState.draining: frozenset({RunState.paginating, RunState.done, RunState.failed}),
    RunState.done: frozenset({RunState.logged_out}),
    RunState.failed: frozenset({RunState.logged_out}),
    RunState.logged_out: frozenset(),
}


def local_now() -> datetime:
    """Return the current time in the local timezone."""
    return datetime.now().astimezone()


def find_container(containers: list[str], name: str) -> str | None:
    """Return the listed mailbox matching ``name`` case-insensitively.

    Args:
        containers: Mailbox names as listed by the server.
        name: Wanted mailbox name.

    Returns:
        The server's spelling of the mailbox, or None if absent.
    """
    wanted = name.casefold()
    for container in containers:
        if container.casefold() == wanted:
            return container
    return None


class ArchiveOrchestrator:
    """Coordinates connection, pagination and chunked moves for one run."""

    def __init__(
        self,
        *,
        settings: ArchiveSettings,
        store: MailStore,
        tracker: ProgressTracker | None = None,
        clock: Callable[[], datetime] = local_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Archive settings for this run.
            store: Mail store to archive in.
            tracker: Progress tracker; observers should subscribe before run().
            clock: Source of the run's start time.
            sleep: Awaitable used between move retries.
        """
        self._s = settings
        self._store = store
        self._tracker = tracker or ProgressTracker()
        self._clock = clock
        self._sleep = sleep
        self._state = RunState.idle
        self._states: list[RunState] = [RunState.idle]

    @property
    def state(self) -> RunState:
        """Return the current run state."""
        return self._state

    @property
    def tracker(self) -> ProgressTracker:
        """Return the progress tracker for this run."""
        return self._tracker

    def _transition(self, new: RunState) -> None:
        """Move to ``new``, rejecting transitions the run does not allow."""
        if new not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"invalid run state transition {self._state} -> {new}")
        logger.debug("Run state %s -> %s", self._state.value, new.value)
        self._state = new
        self._states.append(new)

    async def run(self) -> RunSummary:
        """Run one archival pass and always log out afterwards.

        Returns:
            Summary of what the run did and how it ended.

        Raises:
            RuntimeError: If the orchestrator was already used for a run.
        """
        if self._state != RunState.idle:
            raise RuntimeError("an orchestrator can only run once")

        settings = self._s
        cutoff = compute_cutoff(self._clock(), days=settings.cutoff_days)
        logger.info(
            "Archiving messages in %s received before %s to %s",
            settings.source_mailbox,
            cutoff.isoformat(),
            settings.archive_mailbox,
            extra={"cutoff": cutoff.isoformat(), "dry_run": settings.dry_run},
        )

        outcome = RunOutcome.failed
        error: str | None = None
        paginator: SequencePaginator | None = None
        matched = 0
        move_requests = 0
        failed_attempts = 0
        skipped_ids: list[int] = []

        try:
            archive = await self._prepare()
            if archive is None:
                logger.warning(
                    "Archive mailbox %r does not exist; nothing to do",
                    settings.archive_mailbox,
                )
                outcome = RunOutcome.archive_missing
                self._transition(RunState.done)
            else:
                await self._tracker.snapshot_estimate(self._store, settings.source_mailbox)

                paginator = SequencePaginator(
                    store=self._store,
                    cutoff=cutoff,
                    window_size=settings.batch_size,
                )
                mover = BatchMover(
                    store=self._store,
                    destination=archive,
                    batch_size=settings.batch_size,
                    tracker=self._tracker,
                    retry=RetryPolicy(
                        max_attempts=settings.move_max_attempts,
                        base_delay_s=settings.move_retry_base_delay_s,
                        max_delay_s=settings.move_retry_max_delay_s,
                    ),
                    sleep=self._sleep,
                )

                self._transition(RunState.paginating)
                async for page in paginator.pages():
                    matched += len(page)
                    if page.ids:
                        self._transition(RunState.draining)
                        if settings.dry_run:
                            logger.info(
                                "Dry run: would move %d messages from window %s",
                                len(page),
                                page.window.imap_set,
                                extra={"window_start": page.window.start},
                            )
                        else:
                            result = await mover.move_page(page)
                            move_requests += result.move_requests
                            failed_attempts += result.failed_attempts
                            skipped_ids.extend(result.skipped_ids)
                        if not page.is_last:
                            self._transition(RunState.paginating)

                self._transition(RunState.done)
                outcome = RunOutcome.completed
        except ArchiverError as exc:
            logger.error("Archival run failed in state %s: %s", self._state.value, exc)
            error = str(exc)
            self._transition(RunState.failed)
        except Exception:
            logger.exception("Archival run crashed in state %s", self._state.value)
            self._transition(RunState.failed)
            raise
        finally:
            await self._logout()
            if self._state in (RunState.done, RunState.failed):
                self._transition(RunState.logged_out)

        summary = RunSummary(
            outcome=outcome,
            cutoff=cutoff,
            source_mailbox=settings.source_mailbox,
            archive_mailbox=settings.archive_mailbox,
            dry_run=settings.dry_run,
            estimated_total=self._tracker.estimated_total,
            matched_count=matched,
            moved_count=self._tracker.moved_count,
            page_requests=paginator.requests if paginator is not None else 0,
            move_requests=move_requests,
            failed_move_attempts=failed_attempts,
            skipped_ids=skipped_ids,
            error=error,
            states=list(self._states),
        )
        if skipped_ids:
            logger.warning(
                "%d messages were skipped after exhausting move retries",
                len(skipped_ids),
                extra={"skipped_ids": skipped_ids},
            )
        logger.info(
            "Run finished: %s (moved=%d, matched=%d, pages=%d)",
            summary.outcome.value,
            summary.moved_count,
            summary.matched_count,
            summary.page_requests,
        )
        return summary

    async def check(self) -> PreflightReport:
        """Verify connectivity and report what a run would start from.

        No search or move is issued.

        Returns:
            PreflightReport for the configured mailboxes.

        Raises:
            ConnectionFailedError: If the session or mailbox cannot be opened.
        """
        cutoff = compute_cutoff(self._clock(), days=self._s.cutoff_days)
        try:
            archive = await self._prepare()
            try:
                count: int | None = await self._store.status_count(self._s.source_mailbox)
            except StoreError as exc:
                logger.warning("Could not read message count: %s", exc)
                count = None
        finally:
            await self._logout()

        return PreflightReport(
            source_mailbox=self._s.source_mailbox,
            archive_mailbox=archive or self._s.archive_mailbox,
            archive_exists=archive is not None,
            source_count=count,
            cutoff=cutoff,
        )

    async def _prepare(self) -> str | None:
        """Connect, open the source mailbox and look up the archive.

        Returns:
            The archive mailbox name as the server lists it, or None.

        Raises:
            ConnectionFailedError: If any of these steps fails.
        """
        settings = self._s
        try:
            await self._store.connect()
        except StoreError as exc:
            raise ConnectionFailedError(str(exc)) from exc
        self._transition(RunState.connected)

        try:
            await self._store.open_mailbox(settings.source_mailbox)
        except StoreError as exc:
            raise ConnectionFailedError(str(exc)) from exc
        self._transition(RunState.mailbox_opened)

        try:
            containers = await self._store.list_containers()
        except StoreError as exc:
            raise ConnectionFailedError(str(exc)) from exc
        archive = find_container(containers, settings.archive_mailbox)
        self._transition(RunState.precondition_checked)
        return archive

    async def _logout(self) -> None:
        """Attempt logout; failures are logged and otherwise ignored."""
        try:
            await self._store.logout()
        except StoreError as exc:
            logger.warning("Logout failed: %s", exc)
