"""Chunked message moves with per-chunk retry."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field

from imap_archiver.archive.errors import StoreError
from imap_archiver.archive.paginator import MessagePage
from imap_archiver.archive.progress import ProgressTracker
from imap_archiver.archive.store import MailStore

logger = logging.getLogger(__name__)


def iter_chunks(ids: Sequence[int], size: int) -> Iterator[tuple[int, ...]]:
    """Split identifiers into consecutive chunks of at most ``size``.

    Args:
        ids: Identifiers in store order.
        size: Maximum chunk length.

    Yields:
        Chunks in order.

    Raises:
        ValueError: If ``size`` is not positive.
    """
    if size < 1:
        raise ValueError(f"chunk size must be >= 1: {size}")
    for idx in range(0, len(ids), size):
        yield tuple(ids[idx : idx + size])


def backoff_delay(
    attempt: int,
    *,
    base_delay_s: float,
    max_delay_s: float,
    jitter_s: float = 0.25,
) -> float:
    """Return the wait before retry number ``attempt`` (1-based).

    A zero base delay disables waiting altogether.
    """
    if base_delay_s <= 0:
        return 0.0
    delay = min(max_delay_s, base_delay_s * (2 ** (attempt - 1)))
    return delay + random.uniform(0, jitter_s)


@dataclass(frozen=True)
class RetryPolicy:
    """How a failing chunk is retried.

    ``max_attempts`` of None retries forever; otherwise the chunk is skipped
    and reported once the attempts are used up.
    """

    max_attempts: int | None = None
    base_delay_s: float = 1.0
    max_delay_s: float = 60.0


@dataclass
class MoveOutcome:
    """Result of moving one page."""

    moved: int = 0
    chunks: int = 0
    move_requests: int = 0
    failed_attempts: int = 0
    skipped_ids: list[int] = field(default_factory=list)


class BatchMover:
    """Move pages of messages to the archive one chunk at a time."""

    def __init__(
        self,
        *,
        store: MailStore,
        destination: str,
        batch_size: int,
        tracker: ProgressTracker,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the mover.

        Args:
            store: Mail store with the source mailbox open.
            destination: Archive mailbox name as listed by the server.
            batch_size: Maximum identifiers per move request.
            tracker: Progress tracker credited after each successful chunk.
            retry: Retry policy for failing chunks.
            sleep: Awaitable used to wait between attempts.
        """
        self._store = store
        self._destination = destination
        self._batch_size = batch_size
        self._tracker = tracker
        self._retry = retry or RetryPolicy()
        self._sleep = sleep

    async def move_page(self, page: MessagePage) -> MoveOutcome:
        """Move every chunk of ``page`` strictly in order.

        A failed chunk is resubmitted with the same identifiers until it
        succeeds or the retry policy gives up on it.

        Args:
            page: Page of identifiers to move.

        Returns:
            Counts for the page and any identifiers that were skipped.
        """
        outcome = MoveOutcome()
        chunks = list(iter_chunks(page.ids, self._batch_size))
        outcome.chunks = len(chunks)

        cursor = 0
        attempt = 0
        while cursor < len(chunks):
            chunk = chunks[cursor]
            attempt += 1
            context = {
                "window_start": page.window.start,
                "chunk_index": cursor,
                "chunk_size": len(chunk),
                "attempt": attempt,
            }
            logger.info(
                "Moving chunk %d/%d (%d messages) to %s",
                cursor + 1,
                len(chunks),
                len(chunk),
                self._destination,
                extra=context,
            )
            outcome.move_requests += 1
            try:
                await self._store.move_messages(chunk, self._destination)
            except StoreError as exc:
                outcome.failed_attempts += 1
                logger.error(
                    "Moving chunk %d/%d failed (attempt %d): %s",
                    cursor + 1,
                    len(chunks),
                    attempt,
                    exc,
                    extra=context,
                )
                max_attempts = self._retry.max_attempts
                if max_attempts is not None and attempt >= max_attempts:
                    logger.error(
                        "Giving up on chunk %d/%d after %d attempts; skipping ids %s..%s",
                        cursor + 1,
                        len(chunks),
                        attempt,
                        chunk[0],
                        chunk[-1],
                        extra=context,
                    )
                    outcome.skipped_ids.extend(chunk)
                    cursor += 1
                    attempt = 0
                    continue
                await self._sleep(
                    backoff_delay(
                        attempt,
                        base_delay_s=self._retry.base_delay_s,
                        max_delay_s=self._retry.max_delay_s,
                    ),
                )
                continue

            outcome.moved += len(chunk)
            self._tracker.record_moved(len(chunk))
            cursor += 1
            attempt = 0

        return outcome
