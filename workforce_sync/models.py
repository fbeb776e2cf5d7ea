"""
Domain models shared by matching, ingestion, propagation and consolidation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class SourceType(str, Enum):
    """The three spreadsheet exports."""
    EMPLOYEES = "employees"
    UTILIZATION = "utilization"
    DEPLOYMENT_PLAN = "deployment_plan"


class MatchStatus(str, Enum):
    """Outcome of resolving a (name, cost center) pair."""
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class MatchResult:
    """Tagged match result. ``person_id`` is set only when matched."""
    status: MatchStatus
    person_id: Optional[str] = None

    @classmethod
    def matched(cls, person_id: str) -> "MatchResult":
        return cls(MatchStatus.MATCHED, person_id)

    @classmethod
    def ambiguous(cls) -> "MatchResult":
        return cls(MatchStatus.AMBIGUOUS)

    @classmethod
    def unmatched(cls) -> "MatchResult":
        return cls(MatchStatus.UNMATCHED)

    @property
    def is_matched(self) -> bool:
        return self.status is MatchStatus.MATCHED


@dataclass(frozen=True)
class UnresolvedRow:
    """A spreadsheet row that could not be tied to exactly one identity."""
    collection: str
    row_index: int          # 1-based spreadsheet row number
    person: str
    cc: str
    reason: str             # "ambiguous" | "unmatched"


@dataclass
class IngestionSummary:
    """Per-run counts plus every unresolved row."""
    collection: str
    source_file: Optional[str] = None
    written: int = 0
    matched: int = 0
    ambiguous: int = 0
    unmatched: int = 0
    skipped: int = 0
    batches_committed: int = 0
    unresolved: list[UnresolvedRow] = field(default_factory=list)

    def record_unresolved(self, row_index: int, person: str, cc: str, result: MatchResult) -> None:
        if result.status is MatchStatus.AMBIGUOUS:
            self.ambiguous += 1
        else:
            self.unmatched += 1
        self.unresolved.append(
            UnresolvedRow(
                collection=self.collection,
                row_index=row_index,
                person=person,
                cc=cc,
                reason=result.status.value,
            )
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PropagationAction(str, Enum):
    """What the propagation engine did with one write event."""
    PROPAGATED = "propagated"           # source-of-truth id pushed to targets
    ASSIGNED = "assigned"               # id set on a record that had none
    CONFLICT = "conflict"               # differing id found, annotation written
    UNCHANGED = "unchanged"             # target already up to date
    NOT_FOUND = "not_found"             # no resolved id for (name, cc)
    AMBIGUOUS = "ambiguous"             # several resolved ids for name only
    SKIPPED = "skipped"                 # delete, no person, or no id to push


@dataclass
class PropagationOutcome:
    action: PropagationAction
    collection: str
    doc_id: str
    person_id: Optional[str] = None
    writes: int = 0
    conflicts: int = 0


@dataclass
class BackfillReport:
    scanned: int = 0
    propagated: int = 0
    writes: int = 0
