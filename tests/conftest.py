"""Pytest fixtures for imap-archiver tests."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from imap_archiver.archive.errors import StoreError
from imap_archiver.archive.paginator import SequenceWindow

NOW = datetime(2026, 10, 17, 15, 30, tzinfo=UTC)
OLD = NOW - timedelta(days=30)
RECENT = NOW - timedelta(days=1)


@dataclass
class FakeMailStore:
    """In-memory mail store that records every call.

    Messages are kept in sequence order as ``(uid, received)`` pairs. Moved
    messages keep their sequence slot so windows stay stable across pages.
    """

    messages: list[tuple[int, datetime]] = field(default_factory=list)
    containers: list[str] = field(default_factory=lambda: ["INBOX", "Archive", "Sent"])

    fail_connect: bool = False
    fail_open: bool = False
    fail_list: bool = False
    fail_status: bool = False
    fail_logout: bool = False
    fail_search_at: int | None = None
    move_failures: int = 0

    calls: list[str] = field(default_factory=list)
    searches: list[SequenceWindow] = field(default_factory=list)
    search_cutoffs: list[datetime] = field(default_factory=list)
    move_calls: list[tuple[tuple[int, ...], str]] = field(default_factory=list)
    moved: list[int] = field(default_factory=list)
    logouts: int = 0

    @classmethod
    def with_old_messages(cls, count: int, **kwargs: object) -> FakeMailStore:
        """Build a store whose messages all predate the cutoff."""
        messages = [(uid, OLD) for uid in range(1, count + 1)]
        return cls(messages=messages, **kwargs)  # type: ignore[arg-type]

    async def connect(self) -> None:
        self.calls.append("connect")
        if self.fail_connect:
            raise StoreError("connection refused")

    async def logout(self) -> None:
        self.calls.append("logout")
        self.logouts += 1
        if self.fail_logout:
            raise StoreError("logout failed")

    async def open_mailbox(self, name: str) -> None:
        self.calls.append(f"open:{name}")
        if self.fail_open:
            raise StoreError(f"no mailbox {name}")

    async def search(self, *, before: datetime, window: SequenceWindow) -> list[int]:
        self.calls.append("search")
        self.searches.append(window)
        self.search_cutoffs.append(before)
        if self.fail_search_at is not None and window.start == self.fail_search_at:
            raise StoreError("search timed out")
        moved = set(self.moved)
        selected = self.messages[window.start - 1 : window.stop - 1]
        return [uid for uid, received in selected if received < before and uid not in moved]

    async def list_containers(self) -> list[str]:
        self.calls.append("list")
        if self.fail_list:
            raise StoreError("LIST failed")
        return list(self.containers)

    async def move_messages(self, ids: Sequence[int], destination: str) -> None:
        self.calls.append("move")
        self.move_calls.append((tuple(ids), destination))
        if self.move_failures > 0:
            self.move_failures -= 1
            raise StoreError("MOVE failed")
        self.moved.extend(ids)

    async def status_count(self, mailbox: str) -> int:
        self.calls.append("status")
        if self.fail_status:
            raise StoreError("STATUS failed")
        return len(self.messages) - len(self.moved)


async def no_sleep(delay: float) -> None:
    """Stand-in for asyncio.sleep that returns immediately."""


@pytest.fixture
def clock() -> datetime:
    """Fixed start time for runs."""
    return NOW
