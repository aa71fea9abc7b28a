"""Tests for sequence-window pagination."""

from __future__ import annotations

import math
from datetime import UTC, datetime

import pytest
from conftest import NOW, OLD, RECENT, FakeMailStore

from imap_archiver.archive.errors import SearchFailedError
from imap_archiver.archive.paginator import MessagePage, SequencePaginator, SequenceWindow

CUTOFF = datetime(2026, 10, 10, tzinfo=UTC)


async def collect(paginator: SequencePaginator) -> list[MessagePage]:
    return [page async for page in paginator.pages()]


def test_sequence_window_bounds() -> None:
    """Windows are half-open and render as inclusive IMAP sets."""
    window = SequenceWindow(start=501, size=500)
    assert window.stop == 1001
    assert window.imap_set == "501:1000"
    assert window.next() == SequenceWindow(start=1001, size=500)


@pytest.mark.parametrize(("start", "size"), [(0, 10), (1, 0), (-3, 5)])
def test_sequence_window_rejects_non_positive(start: int, size: int) -> None:
    """Windows must start at 1 or later and cover at least one message."""
    with pytest.raises(ValueError):
        SequenceWindow(start=start, size=size)


@pytest.mark.asyncio
async def test_pages_for_1300_messages() -> None:
    """1300 old messages in windows of 500 yield pages of 500, 500 and 300."""
    store = FakeMailStore.with_old_messages(1300)
    paginator = SequencePaginator(store=store, cutoff=CUTOFF, window_size=500)

    pages = await collect(paginator)

    assert [len(p) for p in pages] == [500, 500, 300]
    assert [w.start for w in store.searches] == [1, 501, 1001]
    assert paginator.requests == 3
    assert paginator.exhausted
    assert pages[-1].is_last


@pytest.mark.asyncio
@pytest.mark.parametrize(("mailbox_size", "window"), [(1, 1), (7, 3), (10, 4), (999, 100), (5, 50)])
async def test_request_count_matches_ceil(mailbox_size: int, window: int) -> None:
    """Non-multiple mailbox sizes take ceil(m/w) requests, last page m mod w."""
    store = FakeMailStore.with_old_messages(mailbox_size)
    paginator = SequencePaginator(store=store, cutoff=CUTOFF, window_size=window)

    pages = await collect(paginator)

    expected_last = mailbox_size % window or window
    if mailbox_size % window == 0:
        # A full final page always asks for one more window.
        assert paginator.requests == mailbox_size // window + 1
        assert len(pages[-1]) == 0
        assert len(pages[-2]) == expected_last
    else:
        assert paginator.requests == math.ceil(mailbox_size / window)
        assert len(pages[-1]) == expected_last


@pytest.mark.asyncio
async def test_empty_mailbox_takes_one_request() -> None:
    """An empty first page ends pagination immediately."""
    store = FakeMailStore()
    paginator = SequencePaginator(store=store, cutoff=CUTOFF, window_size=500)

    pages = await collect(paginator)

    assert len(pages) == 1
    assert pages[0].ids == ()
    assert paginator.requests == 1


@pytest.mark.asyncio
async def test_short_page_stops_even_if_more_messages_exist() -> None:
    """Recent messages inside a window shorten the page and end pagination."""
    messages = [(1, OLD), (2, RECENT), (3, OLD), (4, OLD), (5, OLD), (6, OLD)]
    store = FakeMailStore(messages=messages)
    paginator = SequencePaginator(store=store, cutoff=CUTOFF, window_size=3)

    pages = await collect(paginator)

    assert [p.ids for p in pages] == [(1, 3)]
    assert paginator.requests == 1


@pytest.mark.asyncio
async def test_pages_are_lazy() -> None:
    """The next search only happens when the consumer asks for the next page."""
    store = FakeMailStore.with_old_messages(10)
    paginator = SequencePaginator(store=store, cutoff=CUTOFF, window_size=5)
    pages = paginator.pages()

    first = await anext(pages)
    assert first.ids == (1, 2, 3, 4, 5)
    assert len(store.searches) == 1
    assert paginator.next_window_start == 6

    await anext(pages)
    assert len(store.searches) == 2
    await pages.aclose()


@pytest.mark.asyncio
async def test_same_cutoff_for_every_window() -> None:
    """Every search uses the cutoff fixed at construction."""
    store = FakeMailStore.with_old_messages(12)
    paginator = SequencePaginator(store=store, cutoff=CUTOFF, window_size=5)

    await collect(paginator)

    assert store.search_cutoffs == [CUTOFF, CUTOFF, CUTOFF]


@pytest.mark.asyncio
async def test_ids_are_not_resorted() -> None:
    """Identifiers keep the order the store returned them in."""
    messages = [(30, OLD), (10, OLD), (20, OLD)]
    store = FakeMailStore(messages=messages)
    paginator = SequencePaginator(store=store, cutoff=NOW, window_size=10)

    page = await paginator.next_page(1)

    assert page.ids == (30, 10, 20)


@pytest.mark.asyncio
async def test_search_failure_is_fatal_and_names_window() -> None:
    """A failing search raises SearchFailedError carrying the window."""
    store = FakeMailStore.with_old_messages(20, fail_search_at=11)
    paginator = SequencePaginator(store=store, cutoff=CUTOFF, window_size=10)

    seen: list[MessagePage] = []
    with pytest.raises(SearchFailedError) as excinfo:
        async for page in paginator.pages():
            seen.append(page)

    assert len(seen) == 1
    assert excinfo.value.window == SequenceWindow(start=11, size=10)
    assert "11:20" in str(excinfo.value)
