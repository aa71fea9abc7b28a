"""Error types raised by the archival engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from imap_archiver.archive.paginator import SequenceWindow


class ArchiverError(RuntimeError):
    """Base class for archiver errors."""


class StoreError(ArchiverError):
    """Raised by a mail store when a command fails."""


class ConnectionFailedError(ArchiverError):
    """Raised when the session or source mailbox cannot be established."""


class SearchFailedError(ArchiverError):
    """Raised when a page search fails."""

    def __init__(self, window: SequenceWindow, cause: BaseException) -> None:
        """Initialize the error.

        Args:
            window: Sequence window whose search failed.
            cause: Underlying store error.
        """
        super().__init__(f"Search failed for sequence window {window.imap_set}: {cause}")
        self.window = window
