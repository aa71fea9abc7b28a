"""Mail store interface consumed by the archival engine."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from imap_archiver.archive.paginator import SequenceWindow


class MailStore(Protocol):
    """Remote mailbox operations needed to archive messages.

    Implementations raise ``StoreError`` when a command fails.
    """

    async def connect(self) -> None:
        """Open and authenticate a session."""
        ...

    async def logout(self) -> None:
        """Close the session."""
        ...

    async def open_mailbox(self, name: str) -> None:
        """Select the mailbox that searches and moves operate on."""
        ...

    async def search(self, *, before: datetime, window: SequenceWindow) -> list[int]:
        """Return identifiers received before ``before`` within ``window``."""
        ...

    async def list_containers(self) -> list[str]:
        """Return the names of all mailboxes."""
        ...

    async def move_messages(self, ids: Sequence[int], destination: str) -> None:
        """Move the given messages to ``destination``."""
        ...

    async def status_count(self, mailbox: str) -> int:
        """Return the number of messages in ``mailbox``."""
        ...
