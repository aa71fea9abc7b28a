"""Sequence-window pagination over a mailbox."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime

from imap_archiver.archive.errors import SearchFailedError, StoreError
from imap_archiver.archive.store import MailStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SequenceWindow:
    """Half-open range ``[start, start + size)`` of 1-based sequence numbers."""

    start: int
    size: int

    def __post_init__(self) -> None:
        """Validate window bounds.

        Raises:
            ValueError: If start or size is not positive.
        """
        if self.start < 1:
            raise ValueError(f"window start must be >= 1: {self.start}")
        if self.size < 1:
            raise ValueError(f"window size must be >= 1: {self.size}")

    @property
    def stop(self) -> int:
        """Return the first sequence number after the window."""
        return self.start + self.size

    @property
    def imap_set(self) -> str:
        """Return the window as an IMAP sequence set (inclusive bounds)."""
        return f"{self.start}:{self.stop - 1}"

    def next(self) -> SequenceWindow:
        """Return the window directly after this one."""
        return SequenceWindow(start=self.stop, size=self.size)


@dataclass(frozen=True)
class MessagePage:
    """Identifiers returned by one search over one window."""

    window: SequenceWindow
    ids: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.ids)

    @property
    def is_last(self) -> bool:
        """Return True when no further page should be requested."""
        return len(self.ids) < self.window.size


class SequencePaginator:
    """Lazily produce pages of messages received before a fixed cutoff."""

    def __init__(
        self,
        *,
        store: MailStore,
        cutoff: datetime,
        window_size: int,
        start: int = 1,
    ) -> None:
        """Initialize the paginator.

        Args:
            store: Mail store with the source mailbox already open.
            cutoff: Messages received before this instant match.
            window_size: Number of sequence numbers covered per search.
            start: First sequence number to search from.
        """
        self._store = store
        self._cutoff = cutoff
        self._window = SequenceWindow(start=start, size=window_size)
        self._requests = 0
        self._exhausted = False

    @property
    def next_window_start(self) -> int:
        """Return the sequence number the next search starts at."""
        return self._window.start

    @property
    def requests(self) -> int:
        """Return the number of searches issued so far."""
        return self._requests

    @property
    def exhausted(self) -> bool:
        """Return True once a short or empty page has been returned."""
        return self._exhausted

    async def next_page(self, start: int) -> MessagePage:
        """Search one window starting at ``start``.

        Args:
            start: First sequence number of the window.

        Returns:
            Matching identifiers in the order the store returned them.

        Raises:
            SearchFailedError: If the store search fails.
        """
        window = SequenceWindow(start=start, size=self._window.size)
        self._requests += 1
        logger.debug(
            "Searching window %s before %s",
            window.imap_set,
            self._cutoff.isoformat(),
            extra={"window_start": window.start, "window_size": window.size},
        )
        try:
            ids = await self._store.search(before=self._cutoff, window=window)
        except StoreError as exc:
            logger.error(
                "Search failed for window %s: %s",
                window.imap_set,
                exc,
                extra={"window_start": window.start, "window_size": window.size},
            )
            raise SearchFailedError(window, exc) from exc

        page = MessagePage(window=window, ids=tuple(ids))
        logger.info(
            "Window %s matched %d messages",
            window.imap_set,
            len(page),
            extra={"window_start": window.start, "matched": len(page)},
        )
        return page

    async def pages(self) -> AsyncIterator[MessagePage]:
        """Yield pages until a page shorter than the window size is returned.

        The next search is only issued when the consumer asks for the next
        page, so each page can be fully processed first.

        Yields:
            MessagePage items, including a final short or empty page.
        """
        while not self._exhausted:
            page = await self.next_page(self._window.start)
            if page.is_last:
                self._exhausted = True
            else:
                self._window = self._window.next()
            yield page
