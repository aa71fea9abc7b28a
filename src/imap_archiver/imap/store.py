"""IMAP-backed implementation of the archiver's mail store."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

import aioimaplib

from imap_archiver.archive.cutoff import imap_date
from imap_archiver.archive.errors import StoreError
from imap_archiver.archive.paginator import SequenceWindow
from imap_archiver.config.settings import ImapSettings
from imap_archiver.imap.client import ImapClient, ImapError

logger = logging.getLogger(__name__)

_IMAP_FAILURES: tuple[type[BaseException], ...] = (
    ImapError,
    aioimaplib.AioImapException,
    OSError,
    TimeoutError,
)


class ImapMailStore:
    """Mail store that talks to a single IMAP session.

    Searches use ``UID SEARCH <seq-set> BEFORE <date>`` so each page is bounded
    by sequence numbers while the returned identifiers are UIDs, which do not
    change when other messages are moved.
    """

    def __init__(self, *, settings: ImapSettings, client: ImapClient | None = None) -> None:
        """Initialize the store.

        Args:
            settings: IMAP connection settings.
            client: Optional preconfigured client (mainly for tests).
        """
        self._s = settings
        self._client = client or ImapClient(
            host=settings.host,
            port=settings.port,
            security=settings.security,
            verify_tls=settings.verify_tls,
            connection_timeout_s=settings.connection_timeout_s,
            greeting_timeout_s=settings.greeting_timeout_s,
            socket_timeout_s=settings.socket_timeout_s,
        )

    async def connect(self) -> None:
        """Connect and authenticate.

        Raises:
            StoreError: If the connection or login fails.
        """
        try:
            await self._client.connect()
            await self._client.login(username=self._s.username, password=self._s.password)
        except _IMAP_FAILURES as exc:
            target = f"{self._s.host}:{self._s.port}"
            raise StoreError(
                f"Could not connect to {target} as {self._s.username}: {exc!r}",
            ) from exc
        logger.info("Connected to %s:%s (%s)", self._s.host, self._s.port, self._s.security.value)

    async def logout(self) -> None:
        """Logout and drop the connection.

        Raises:
            StoreError: If LOGOUT fails.
        """
        try:
            await self._client.logout()
        except _IMAP_FAILURES as exc:
            raise StoreError(f"Logout failed: {exc!r}") from exc

    async def open_mailbox(self, name: str) -> None:
        """Select ``name`` as the working mailbox.

        Raises:
            StoreError: If SELECT fails.
        """
        try:
            info = await self._client.select(name)
        except _IMAP_FAILURES as exc:
            raise StoreError(f"Could not open mailbox {name!r}: {exc!r}") from exc
        logger.info("Opened %s (exists=%s)", name, info.exists)

    async def search(self, *, before: datetime, window: SequenceWindow) -> list[int]:
        """Return UIDs received before ``before`` within ``window``.

        Raises:
            StoreError: If the search fails.
        """
        criteria = [window.imap_set, "BEFORE", imap_date(before)]
        try:
            return await self._client.uid_search(criteria)
        except _IMAP_FAILURES as exc:
            raise StoreError(f"UID SEARCH {' '.join(criteria)} failed: {exc!r}") from exc

    async def list_containers(self) -> list[str]:
        """Return all mailbox names.

        Raises:
            StoreError: If LIST fails.
        """
        try:
            return await self._client.list_mailboxes()
        except _IMAP_FAILURES as exc:
            raise StoreError(f"Could not list mailboxes: {exc!r}") from exc

    async def move_messages(self, ids: Sequence[int], destination: str) -> None:
        """Move messages by UID to ``destination``.

        Raises:
            StoreError: If MOVE fails.
        """
        try:
            await self._client.uid_move(ids, destination)
        except _IMAP_FAILURES as exc:
            raise StoreError(
                f"Could not move {len(ids)} messages to {destination!r}: {exc!r}",
            ) from exc

    async def status_count(self, mailbox: str) -> int:
        """Return the STATUS MESSAGES count of ``mailbox``.

        Raises:
            StoreError: If STATUS fails.
        """
        try:
            return await self._client.status_messages(mailbox)
        except _IMAP_FAILURES as exc:
            raise StoreError(f"Could not read status of {mailbox!r}: {exc!r}") from exc
