"""Shared enums and lightweight Pydantic models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from imap_archiver.models.base import AppModel


class TransportSecurity(StrEnum):
    """How the IMAP connection is secured."""

    starttls = "starttls"
    ssl = "ssl"


class RunState(StrEnum):
    """States an archival run moves through."""

    idle = "idle"
    connected = "connected"
    mailbox_opened = "mailbox_opened"
    precondition_checked = "precondition_checked"
    paginating = "paginating"
    draining = "draining"
    done = "done"
    failed = "failed"
    logged_out = "logged_out"


class RunOutcome(StrEnum):
    """How an archival run ended."""

    completed = "completed"
    archive_missing = "archive_missing"
    failed = "failed"


class RunSummary(AppModel):
    """Summary of a single archival run."""

    outcome: RunOutcome
    cutoff: datetime
    source_mailbox: str
    archive_mailbox: str
    dry_run: bool = False

    estimated_total: int | None = Field(default=None, ge=0)
    matched_count: int = Field(default=0, ge=0)
    moved_count: int = Field(default=0, ge=0)
    page_requests: int = Field(default=0, ge=0)
    move_requests: int = Field(default=0, ge=0)
    failed_move_attempts: int = Field(default=0, ge=0)
    skipped_ids: list[int] = Field(default_factory=list)

    error: str | None = None
    states: list[RunState] = Field(default_factory=list)

    @property
    def exit_code(self) -> int:
        """Return the process exit code for this outcome."""
        return 1 if self.outcome == RunOutcome.failed else 0


class PreflightReport(AppModel):
    """Connectivity check result for the configured mailboxes."""

    source_mailbox: str
    archive_mailbox: str
    archive_exists: bool
    source_count: int | None = Field(default=None, ge=0)
    cutoff: datetime
