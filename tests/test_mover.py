"""Tests for chunked moves and per-chunk retry."""

from __future__ import annotations

import pytest
from conftest import FakeMailStore, no_sleep

from imap_archiver.archive.mover import (
    BatchMover,
    RetryPolicy,
    backoff_delay,
    iter_chunks,
)
from imap_archiver.archive.paginator import MessagePage, SequenceWindow
from imap_archiver.archive.progress import ProgressTracker


def make_page(ids: list[int], size: int = 500) -> MessagePage:
    return MessagePage(window=SequenceWindow(start=1, size=size), ids=tuple(ids))


def make_mover(
    store: FakeMailStore,
    tracker: ProgressTracker,
    *,
    batch_size: int = 500,
    retry: RetryPolicy | None = None,
    sleeps: list[float] | None = None,
) -> BatchMover:
    async def sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    return BatchMover(
        store=store,
        destination="Archive",
        batch_size=batch_size,
        tracker=tracker,
        retry=retry or RetryPolicy(base_delay_s=0),
        sleep=sleep if sleeps is not None else no_sleep,
    )


def test_iter_chunks_splits_in_order() -> None:
    """iter_chunks should keep order and leave the remainder last."""
    assert list(iter_chunks([1, 2, 3, 4, 5], 2)) == [(1, 2), (3, 4), (5,)]
    assert list(iter_chunks([1, 2, 3], 3)) == [(1, 2, 3)]
    assert list(iter_chunks([], 3)) == []


def test_iter_chunks_rejects_zero_size() -> None:
    """Chunk size must be positive."""
    with pytest.raises(ValueError):
        list(iter_chunks([1], 0))


def test_backoff_delay_grows_and_caps() -> None:
    """backoff_delay should double per attempt up to the cap, plus jitter."""
    assert backoff_delay(3, base_delay_s=0, max_delay_s=10) == 0.0
    first = backoff_delay(1, base_delay_s=1.0, max_delay_s=10.0, jitter_s=0)
    third = backoff_delay(3, base_delay_s=1.0, max_delay_s=10.0, jitter_s=0)
    capped = backoff_delay(10, base_delay_s=1.0, max_delay_s=10.0, jitter_s=0)
    assert (first, third, capped) == (1.0, 4.0, 10.0)
    jittered = backoff_delay(1, base_delay_s=1.0, max_delay_s=10.0, jitter_s=0.5)
    assert 1.0 <= jittered <= 1.5


@pytest.mark.asyncio
async def test_page_sized_to_batch_is_one_chunk() -> None:
    """A page no larger than the batch size is moved in a single request."""
    store = FakeMailStore()
    tracker = ProgressTracker()
    ids = list(range(1, 301))

    outcome = await make_mover(store, tracker).move_page(make_page(ids))

    assert store.move_calls == [(tuple(ids), "Archive")]
    assert outcome.moved == 300
    assert outcome.chunks == 1
    assert tracker.moved_count == 300


@pytest.mark.asyncio
async def test_page_is_rechunked_in_order() -> None:
    """Pages larger than the batch size are split and moved sequentially."""
    store = FakeMailStore()
    tracker = ProgressTracker()

    outcome = await make_mover(store, tracker, batch_size=4).move_page(
        make_page(list(range(1, 11)), size=10),
    )

    assert [ids for ids, _ in store.move_calls] == [(1, 2, 3, 4), (5, 6, 7, 8), (9, 10)]
    assert outcome.chunks == 3
    assert outcome.move_requests == 3
    assert tracker.moved_count == 10


@pytest.mark.asyncio
async def test_failed_chunk_is_retried_with_same_ids() -> None:
    """A failing chunk is resubmitted unchanged and only counted once moved."""
    store = FakeMailStore(move_failures=3)
    tracker = ProgressTracker()
    counts: list[int] = []
    tracker.subscribe(lambda snap: counts.append(snap.moved_count))

    outcome = await make_mover(store, tracker, batch_size=2).move_page(
        make_page([7, 8, 9], size=3),
    )

    assert [ids for ids, _ in store.move_calls] == [(7, 8), (7, 8), (7, 8), (7, 8), (9,)]
    assert outcome.failed_attempts == 3
    assert outcome.moved == 3
    assert outcome.skipped_ids == []
    assert counts == [2, 3]


@pytest.mark.asyncio
async def test_failure_leaves_moved_count_unchanged() -> None:
    """Progress is untouched while a chunk keeps failing."""
    store = FakeMailStore(move_failures=1)
    tracker = ProgressTracker()
    counts: list[int] = []
    tracker.subscribe(lambda snap: counts.append(snap.moved_count))

    await make_mover(store, tracker).move_page(make_page([1, 2]))

    assert counts == [2]
    assert store.moved == [1, 2]


@pytest.mark.asyncio
async def test_unbounded_retry_waits_with_backoff() -> None:
    """Without an attempt limit the mover keeps retrying and backs off."""
    store = FakeMailStore(move_failures=4)
    tracker = ProgressTracker()
    sleeps: list[float] = []

    outcome = await make_mover(
        store,
        tracker,
        retry=RetryPolicy(max_attempts=None, base_delay_s=1.0, max_delay_s=5.0),
        sleeps=sleeps,
    ).move_page(make_page([1]))

    assert outcome.moved == 1
    assert len(sleeps) == 4
    assert sleeps[0] < 2.0
    assert sleeps[-1] >= 5.0


@pytest.mark.asyncio
async def test_bounded_retry_skips_and_reports_chunk() -> None:
    """With an attempt limit a chunk is skipped and reported, later chunks still move."""
    store = FakeMailStore(move_failures=2)
    tracker = ProgressTracker()

    outcome = await make_mover(
        store,
        tracker,
        batch_size=2,
        retry=RetryPolicy(max_attempts=2, base_delay_s=0),
    ).move_page(make_page([1, 2, 3, 4], size=4))

    assert [ids for ids, _ in store.move_calls] == [(1, 2), (1, 2), (3, 4)]
    assert outcome.skipped_ids == [1, 2]
    assert outcome.moved == 2
    assert tracker.moved_count == 2
