"""
Error taxonomy for ingestion, matching and propagation.

Ambiguous/unmatched rows and identity conflicts are normally recorded as data
(see ``MatchResult`` and ``personIdConflict``). The matching exceptions exist
for callers that want to turn such a result into a hard failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import IngestionSummary


class WorkforceSyncError(Exception):
    """Base class for all workforce sync errors."""


class MatchAmbiguous(WorkforceSyncError):
    """More than one identity candidate under name-only fallback."""

    def __init__(self, person: str, cc: str = ""):
        self.person = person
        self.cc = cc
        super().__init__(f"Ambiguous match for {person!r} (cc={cc!r})")


class MatchUnmatched(WorkforceSyncError):
    """No identity candidate at all."""

    def __init__(self, person: str, cc: str = ""):
        self.person = person
        self.cc = cc
        super().__init__(f"No identity found for {person!r} (cc={cc!r})")


class IdentityConflict(WorkforceSyncError):
    """Attempt to replace an existing person id with a differing one."""

    def __init__(self, path: str, previous: str, incoming: str):
        self.path = path
        self.previous = previous
        self.incoming = incoming
        super().__init__(f"personId conflict @ {path}: {previous} -> {incoming}")


class MalformedWorkbook(WorkforceSyncError):
    """Header row or required columns could not be located."""

    def __init__(self, layout: str, reason: str):
        self.layout = layout
        self.reason = reason
        super().__init__(f"Malformed {layout} workbook: {reason}")


class PartialBatchFailure(WorkforceSyncError):
    """
    One or more batches failed after others were committed.

    Committed batches are not rolled back. ``summary`` holds what was written
    before the failure, when the failure happened during ingestion.
    """

    def __init__(
        self,
        message: str,
        committed_batches: int = 0,
        failed_collections: Optional[list[str]] = None,
        summary: Optional["IngestionSummary"] = None,
    ):
        self.committed_batches = committed_batches
        self.failed_collections = failed_collections or []
        self.summary = summary
        super().__init__(message)
