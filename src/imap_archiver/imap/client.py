"""IMAP client wrapper with the commands the archiver needs."""

from __future__ import annotations

import asyncio
import imaplib
import logging
import re
import ssl
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import aioimaplib

from imap_archiver.models.types import TransportSecurity

_LIST_MAILBOX_RE = re.compile(
    rb'^\* LIST \([^\)]*\)\s+(?P<delim>NIL|"[^"]*"|[^\s]+)\s+(?P<name>.+)$',
)
_LITERAL_RE = re.compile(rb"^\{(?P<n>\d+)\}$")
_UIDVALIDITY_RE = re.compile(rb"\[UIDVALIDITY (?P<uidvalidity>\d+)\]")
_EXISTS_RE = re.compile(rb"(?i)\* (?P<exists>\d+) EXISTS")
_STATUS_MESSAGES_RE = re.compile(rb"(?i)\bMESSAGES (?P<messages>\d+)")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectInfo:
    """IMAP SELECT response metadata."""

    mailbox: str
    uidvalidity: int | None
    exists: int | None


class ImapError(RuntimeError):
    """Raised for IMAP command errors."""


class ImapClient:
    """Async IMAP client with basic helpers."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        security: TransportSecurity,
        verify_tls: bool = True,
        connection_timeout_s: float = 90.0,
        greeting_timeout_s: float = 16.0,
        socket_timeout_s: float = 300.0,
    ) -> None:
        """Initialize the IMAP client.

        Args:
            host: IMAP host.
            port: IMAP port.
            security: Implicit TLS or plaintext upgraded with STARTTLS.
            verify_tls: Whether to verify the server certificate.
            connection_timeout_s: Time allowed to open the connection.
            greeting_timeout_s: Time allowed for the server greeting.
            socket_timeout_s: Timeout for individual IMAP commands.
        """
        self._host = host
        self._port = port
        self._security = security
        self._verify_tls = verify_tls
        self._connect_timeout = connection_timeout_s
        self._greeting_timeout = greeting_timeout_s
        self._timeout = socket_timeout_s
        self._imap: aioimaplib.IMAP4 | aioimaplib.IMAP4_SSL | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to the IMAP server, upgrading with STARTTLS if configured.

        Raises:
            ImapError: If the server does not offer or refuses STARTTLS.
        """
        async with self._lock:
            if self._imap is not None:
                return
            context = self._ssl_context()
            if self._security == TransportSecurity.ssl:
                imap = aioimaplib.IMAP4_SSL(
                    self._host,
                    self._port,
                    timeout=self._timeout,
                    ssl_context=context,
                )
            else:
                imap = aioimaplib.IMAP4(self._host, self._port, timeout=self._timeout)
            # aioimaplib opens the socket and reads the greeting in one step.
            try:
                await asyncio.wait_for(
                    imap.wait_hello_from_server(),
                    timeout=self._connect_timeout + self._greeting_timeout,
                )
                if self._security == TransportSecurity.starttls:
                    await asyncio.wait_for(self._starttls(imap, context), timeout=self._timeout)
            except BaseException:
                if imap.protocol.transport is not None:
                    imap.protocol.transport.close()
                raise
            self._imap = imap

    async def _starttls(self, imap: aioimaplib.IMAP4, context: ssl.SSLContext) -> None:
        """Issue STARTTLS and wrap the open transport in TLS."""
        protocol = imap.protocol
        if not imap.has_capability("STARTTLS"):
            raise ImapError(f"IMAP server {self._host} does not offer STARTTLS")
        resp = await protocol.execute(
            aioimaplib.Command("STARTTLS", protocol.new_tag(), loop=protocol.loop),
        )
        if resp.result != "OK":
            raise ImapError(f"IMAP STARTTLS failed: {resp.result} {resp.lines!r}")
        loop = asyncio.get_running_loop()
        protocol.transport = await loop.start_tls(
            protocol.transport,
            protocol,
            context,
            server_hostname=self._host,
        )
        # Capabilities announced before the upgrade must be discarded.
        await protocol.capability()

    async def login(self, *, username: str, password: str) -> None:
        """Login to the IMAP server.

        Args:
            username: IMAP username.
            password: IMAP password.

        Raises:
            ImapError: If authentication fails.
        """
        async with self._lock:
            imap = self._require()
            resp = await asyncio.wait_for(imap.login(username, password), timeout=self._timeout)
            if resp.result != "OK":
                raise ImapError(f"IMAP login failed: {resp.result} {resp.lines!r}")

    async def logout(self) -> None:
        """Logout and close the IMAP connection."""
        async with self._lock:
            if self._imap is None:
                return
            try:
                await asyncio.wait_for(self._imap.logout(), timeout=self._timeout)
            finally:
                transport = self._imap.protocol.transport
                if transport is not None:
                    transport.close()
                self._imap = None

    async def list_mailboxes(self) -> list[str]:
        """List available IMAP mailboxes.

        Returns:
            List of mailbox names.

        Raises:
            ImapError: If the LIST command fails.
        """
        async with self._lock:
            imap = self._require()
            resp = await asyncio.wait_for(imap.list('""', "*"), timeout=self._timeout)
            if resp.result != "OK":
                raise ImapError(f"IMAP LIST failed: {resp.result} {resp.lines!r}")
            mailboxes = _parse_list_response(resp.lines)
            if not mailboxes:
                logger.debug("IMAP LIST raw lines: %r", resp.lines)
            return mailboxes

    async def select(self, mailbox: str) -> SelectInfo:
        """Select a mailbox and return metadata.

        Args:
            mailbox: Mailbox name.

        Returns:
            SelectInfo with UIDVALIDITY and EXISTS info.

        Raises:
            ImapError: If the SELECT command fails.
        """
        async with self._lock:
            imap = self._require()
            mbx = _imap_quote(mailbox)
            resp = await asyncio.wait_for(imap.select(mbx), timeout=self._timeout)
            if resp.result != "OK":
                raise ImapError(f"IMAP SELECT failed ({mailbox}): {resp.result} {resp.lines!r}")

            uidvalidity: int | None = None
            exists: int | None = None
            for line in resp.lines:
                match = _UIDVALIDITY_RE.search(line)
                if match:
                    uidvalidity = int(match.group("uidvalidity"))
                match = _EXISTS_RE.search(line)
                if match:
                    exists = int(match.group("exists"))

            return SelectInfo(mailbox=mailbox, uidvalidity=uidvalidity, exists=exists)

    async def uid_search(self, criteria: Iterable[str]) -> list[int]:
        """Run UID SEARCH and return matching UIDs in server order.

        Args:
            criteria: IMAP search criteria.

        Returns:
            List of matching UIDs.

        Raises:
            ImapError: If the SEARCH command fails.
        """
        criteria = list(criteria)
        async with self._lock:
            imap = self._require()
            resp = await asyncio.wait_for(
                imap.protocol.search(*criteria, by_uid=True),
                timeout=self._timeout,
            )
            if resp.result != "OK":
                raise ImapError(f"IMAP UID SEARCH failed: {resp.result} {resp.lines!r}")

            uids = _parse_search_response(resp.lines)
            if not uids:
                logger.debug(
                    "IMAP UID SEARCH returned no matches (criteria=%s, lines=%r)",
                    criteria,
                    resp.lines,
                )
            return uids

    async def uid_move(self, uids: Sequence[int], mailbox: str) -> None:
        """Move messages by UID.

        Uses the MOVE extension when the server has it. Otherwise copies the
        messages, flags them ``\\Deleted`` and expunges them, restricted to
        ``uids`` when UIDPLUS is available.

        Args:
            uids: Message UIDs.
            mailbox: Destination mailbox name.

        Raises:
            ImapError: If any of the commands fails.
        """
        if not uids:
            return
        uid_set = _format_uid_set(uids)
        async with self._lock:
            imap = self._require()
            if imap.has_capability("MOVE"):
                await self._uid_command(imap, "MOVE", uid_set, _imap_quote(mailbox))
                return
            logger.debug("IMAP server lacks MOVE; using COPY + STORE + EXPUNGE")
            await self._uid_command(imap, "COPY", uid_set, _imap_quote(mailbox))
            await self._uid_command(imap, "STORE", uid_set, "+FLAGS.SILENT", r"(\Deleted)")
            if imap.has_capability("UIDPLUS"):
                await self._uid_command(imap, "EXPUNGE", uid_set)
            else:
                resp = await asyncio.wait_for(imap.expunge(), timeout=self._timeout)
                if resp.result != "OK":
                    raise ImapError(f"IMAP EXPUNGE failed: {resp.result} {resp.lines!r}")

    async def _uid_command(self, imap: aioimaplib.IMAP4, command: str, *args: str) -> None:
        """Run a UID command and raise unless it succeeds."""
        resp = await asyncio.wait_for(imap.uid(command, *args), timeout=self._timeout)
        if resp.result != "OK":
            raise ImapError(f"IMAP UID {command} failed: {resp.result} {resp.lines!r}")

    async def status_messages(self, mailbox: str) -> int:
        """Return the MESSAGES count reported by STATUS.

        Args:
            mailbox: Mailbox name.

        Returns:
            Number of messages in the mailbox.

        Raises:
            ImapError: If the STATUS command fails or lacks a count.
        """
        async with self._lock:
            imap = self._require()
            resp = await asyncio.wait_for(
                imap.status(_imap_quote(mailbox), "(MESSAGES)"),
                timeout=self._timeout,
            )
            if resp.result != "OK":
                raise ImapError(f"IMAP STATUS failed ({mailbox}): {resp.result} {resp.lines!r}")
            count = _parse_status_messages(resp.lines)
            if count is None:
                raise ImapError(f"IMAP STATUS had no MESSAGES count: {resp.lines!r}")
            return count

    def _require(self) -> aioimaplib.IMAP4 | aioimaplib.IMAP4_SSL:
        """Return the underlying IMAP client or raise if not connected."""
        if self._imap is None:
            raise ImapError("IMAP client not connected")
        return self._imap

    def _ssl_context(self) -> ssl.SSLContext:
        """Build the TLS context for implicit TLS or STARTTLS."""
        context = ssl.create_default_context()
        if not self._verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context


def _format_uid_set(uids: Sequence[int]) -> str:
    """Render UIDs as a compact IMAP sequence set, keeping their order.

    Consecutive ascending runs collapse to ``a:b``.

    Args:
        uids: Message UIDs.

    Returns:
        Sequence set such as ``1:3,7,9:10``.
    """
    parts: list[str] = []
    run_start = run_end = uids[0]
    for uid in uids[1:]:
        if uid == run_end + 1:
            run_end = uid
            continue
        parts.append(f"{run_start}:{run_end}" if run_end != run_start else str(run_start))
        run_start = run_end = uid
    parts.append(f"{run_start}:{run_end}" if run_end != run_start else str(run_start))
    return ",".join(parts)


def _parse_search_response(lines: list[bytes]) -> list[int]:
    """Extract numbers from a SEARCH response in server order.

    Args:
        lines: IMAP SEARCH response lines.

    Returns:
        Matching identifiers.
    """
    ids: list[int] = []
    for line in lines:
        parts = line.split()
        if len(parts) >= 2 and parts[0] == b"*" and parts[1] == b"SEARCH":
            parts = parts[2:]

        if parts and all(p.isdigit() for p in parts):
            ids.extend(int(p) for p in parts)
    return ids


def _parse_status_messages(lines: list[bytes]) -> int | None:
    """Extract the MESSAGES count from a STATUS response.

    Args:
        lines: IMAP STATUS response lines.

    Returns:
        The message count, or None if absent.
    """
    for line in lines:
        match = _STATUS_MESSAGES_RE.search(line)
        if match:
            return int(match.group("messages"))
    return None


def _parse_list_response(lines: list[bytes]) -> list[str]:
    """Parse mailbox names from an IMAP LIST response.

    Args:
        lines: IMAP LIST response lines.

    Returns:
        Mailbox names.
    """
    out: list[str] = []
    idx = 0
    while idx < len(lines):
        line = lines[idx].strip()
        if line.startswith(b"+"):
            idx += 1
            continue
        if line.startswith(b"("):
            line = b"* LIST " + line
        match = _LIST_MAILBOX_RE.match(line)
        if not match:
            idx += 1
            continue

        name_token = match.group("name").strip()
        if b'"' in name_token:
            first_quote = name_token.find(b'"')
            last_quote = name_token.rfind(b'"')
            if last_quote > first_quote:
                name_token = name_token[first_quote : last_quote + 1]
        else:
            parts = name_token.split()
            if parts:
                name_token = parts[-1]

        literal_match = _LITERAL_RE.match(name_token)
        if literal_match:
            if idx + 1 >= len(lines):
                break
            raw_name = lines[idx + 1].strip()
            idx += 2
        else:
            raw_name = name_token
            idx += 1

        name = _decode_mailbox_name(raw_name)
        if name:
            out.append(name)

    return list(dict.fromkeys(out))


def _decode_mailbox_name(raw: bytes) -> str:
    """Decode an IMAP mailbox name with modified UTF-7 if needed.

    Args:
        raw: Raw mailbox token.

    Returns:
        Decoded mailbox name, or empty string if invalid.
    """
    value = raw.strip()
    if not value or value.upper() == b"NIL":
        return ""

    if value.startswith(b'"') and value.endswith(b'"') and len(value) >= 2:
        value = value[1:-1]
        value = value.replace(b'\\"', b'"').replace(b"\\\\", b"\\")

    decoded = value.decode("ascii", errors="replace")
    decoder = getattr(imaplib, "DecodeUTF7", None)
    if callable(decoder):
        try:
            return str(decoder(decoded))
        except ValueError:
            return decoded
    return decoded


def _imap_quote(value: str) -> str:
    """Quote a string for use in IMAP commands.

    Args:
        value: Raw mailbox name.

    Returns:
        Quoted string safe for IMAP commands.
    """
    stripped = value.strip()
    if not stripped:
        return '""'
    escaped = stripped.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
