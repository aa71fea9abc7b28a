"""Validated domain models (Pydantic)."""

from __future__ import annotations

from imap_archiver.models.types import (
    PreflightReport,
    RunOutcome,
    RunState,
    RunSummary,
    TransportSecurity,
)

__all__ = [
    "PreflightReport",
    "RunOutcome",
    "RunState",
    "RunSummary",
    "TransportSecurity",
]
