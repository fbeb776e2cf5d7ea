"""Employee master export -> ``employees`` collection (PersonIdentity)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ..canonical.id_utils import deterministic_id
from ..canonical.matcher import PersonMatcher
from ..canonical.normalization import display_name, split_person_name
from ..logging_config import get_logger
from ..models import IngestionSummary, SourceType
from ..store import now_iso
from .base import BaseIngestor, normalized_block
from .layouts import MasterLayout, resolve_master_layout
from .workbook import SheetGrid, to_bool, to_iso_date

logger = get_logger(__name__)


@dataclass(frozen=True)
class MasterRow:
    """One employee master row, typed once at the sheet boundary."""
    row_index: int
    first_name: str
    last_name: str
    cc: str = ""
    email: str = ""
    company: str = ""
    business_line: str = ""
    team: str = ""
    location: str = ""
    seniority_level: str = ""
    experience_since_year: str = ""
    available_from: Optional[str] = None
    available_for_staffing: Optional[bool] = None
    profile_url: str = ""

    @property
    def person(self) -> str:
        return display_name(self.last_name, self.first_name)

    @classmethod
    def from_sheet(cls, grid: SheetGrid, layout: MasterLayout, row: int) -> Optional["MasterRow"]:
        def text(name: str) -> str:
            return grid.text(row, layout.column(name))

        first, last = text("first_name"), text("last_name")
        if not first and not last:
            return None

        return cls(
            row_index=row,
            first_name=first,
            last_name=last,
            cc=text("cc"),
            email=text("email"),
            company=text("company"),
            business_line=text("business_line"),
            team=text("team"),
            location=text("location"),
            seniority_level=text("seniority_level"),
            experience_since_year=text("experience_since_year"),
            available_from=to_iso_date(grid.value(row, layout.column("available_from")), grid.epoch),
            available_for_staffing=to_bool(grid.value(row, layout.column("available_for_staffing"))),
            profile_url=grid.hyperlink(row, layout.column("profile_url")),
        )

    def to_document(self, source_file: Optional[str]) -> dict[str, Any]:
        person = self.person
        last_name, first_name = split_person_name(person)
        return {
            "person": person,
            "lastName": last_name,
            "firstName": first_name,
            "cc": self.cc,
            "email": self.email,
            "company": self.company,
            "businessLine": self.business_line,
            "team": self.team,
            "location": self.location,
            "seniorityLevel": self.seniority_level,
            "experienceSinceYear": self.experience_since_year,
            "availableFrom": self.available_from or "",
            "availableForStaffing": self.available_for_staffing,
            "profileUrl": self.profile_url,
            "normalized": normalized_block(person, self.cc),
            "sourceFile": source_file,
            "updatedAt": now_iso(),
        }


class MasterIngestor(BaseIngestor):
    """
    Writes PersonIdentity records under deterministic ids.

    No matching happens here: the master export is what everything else is
    matched against.
    """

    source_type = SourceType.EMPLOYEES
    requires_match = False

    def default_sheet(self) -> Optional[str]:
        return self.config.master_sheet

    def resolve_layout(self, grid: SheetGrid) -> MasterLayout:
        return resolve_master_layout(grid, self.config.master_header_scan_rows)

    async def stage_rows(
        self,
        grid: SheetGrid,
        layout: MasterLayout,
        matcher: Optional[PersonMatcher],
        summary: IngestionSummary,
        staged: dict[str, dict[str, Any]],
    ) -> None:
        for row in range(layout.data_start, grid.max_row + 1):
            record = MasterRow.from_sheet(grid, layout, row)
            if record is None:
                if not grid.row_is_blank(row):
                    summary.skipped += 1
                continue
            doc_id = deterministic_id(self.source_type.value, record.person, record.cc)
            staged[doc_id] = record.to_document(summary.source_file)
