"""
Deployment plan export -> ``deployment_plan`` collection.

Each week is a group of three columns: project, non-utilization percent and
location. The stored entry carries the derived utilization:

    utilizationPercent = 100 - nonUtilizationPercent
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..canonical.matcher import PersonMatcher
from ..canonical.normalization import split_person_name
from ..logging_config import get_logger
from ..models import IngestionSummary, MatchStatus, SourceType
from ..store import now_iso
from .base import BaseIngestor, normalized_block
from .layouts import PlanLayout, WeekTriple, resolve_plan_layout
from .workbook import SheetGrid, to_bool, to_iso_date, to_plain_percent

logger = get_logger(__name__)

# attribute column -> document field
_ATTRIBUTE_FIELDS = {
    "team": "team",
    "business_line": "businessLine",
    "department": "department",
    "grade": "grade",
    "plan_location": "planLocation",
}


@dataclass(frozen=True)
class PlanEntry:
    project: Optional[str]
    location: Optional[str]
    utilization_percent: Optional[float]

    @classmethod
    def from_sheet(cls, grid: SheetGrid, triple: WeekTriple, row: int) -> Optional["PlanEntry"]:
        project = grid.text(row, triple.project_column) or None
        location = grid.text(row, triple.location_column) or None
        non_utilization = to_plain_percent(
            grid.value(row, triple.non_utilization_column),
            grid.number_format(row, triple.non_utilization_column),
        )
        if project is None and location is None and non_utilization is None:
            return None
        utilization = round(100 - non_utilization, 6) if non_utilization is not None else None
        return cls(project, location, utilization)

    def to_dict(self) -> dict[str, Any]:
        entry: dict[str, Any] = {}
        if self.project is not None:
            entry["project"] = self.project
        if self.location is not None:
            entry["location"] = self.location
        if self.utilization_percent is not None:
            entry["utilizationPercent"] = self.utilization_percent
        return entry


@dataclass(frozen=True)
class PlanRow:
    row_index: int
    person: str
    cc: str
    weeks: dict[str, list[PlanEntry]] = field(default_factory=dict)
    attributes: dict[str, str] = field(default_factory=dict)
    available_from: Optional[str] = None
    available_for_staffing: Optional[bool] = None

    @classmethod
    def from_sheet(cls, grid: SheetGrid, layout: PlanLayout, row: int) -> Optional["PlanRow"]:
        person = grid.text(row, layout.name_column)
        if not person:
            return None

        weeks: dict[str, list[PlanEntry]] = {}
        for triple in layout.triples:
            entry = PlanEntry.from_sheet(grid, triple, row)
            if entry is not None:
                weeks.setdefault(triple.week, []).append(entry)

        attributes = {}
        for name, target in _ATTRIBUTE_FIELDS.items():
            value = grid.text(row, layout.attributes.get(name))
            if value:
                attributes[target] = value

        return cls(
            row_index=row,
            person=person,
            cc=grid.text(row, layout.cc_column),
            weeks=weeks,
            attributes=attributes,
            available_from=to_iso_date(
                grid.value(row, layout.attributes.get("available_from")), grid.epoch
            ),
            available_for_staffing=to_bool(
                grid.value(row, layout.attributes.get("available_for_staffing"))
            ),
        )

    def to_document(self, person_id: str, source_file: Optional[str]) -> dict[str, Any]:
        last_name, first_name = split_person_name(self.person)
        document: dict[str, Any] = {
            "person": self.person,
            "lastName": last_name,
            "firstName": first_name,
            "cc": self.cc,
            "personId": person_id,
            "values": {
                week: [entry.to_dict() for entry in entries]
                for week, entries in self.weeks.items()
            },
            "normalized": normalized_block(self.person, self.cc),
            "sourceFile": source_file,
            "updatedAt": now_iso(),
            "matchStatus": MatchStatus.MATCHED.value,
        }
        document.update(self.attributes)
        if self.available_from:
            document["availableFrom"] = self.available_from
        if self.available_for_staffing is not None:
            document["availableForStaffing"] = self.available_for_staffing
        return document


class DeploymentPlanIngestor(BaseIngestor):
    """
    Persons without any planned week are matched but not written.
    """

    source_type = SourceType.DEPLOYMENT_PLAN

    def default_sheet(self) -> Optional[str]:
        return self.config.plan_sheet

    def resolve_layout(self, grid: SheetGrid) -> PlanLayout:
        return resolve_plan_layout(
            grid,
            scan_rows=self.config.plan_header_scan_rows,
            week_label_rows=self.config.week_label_scan_rows,
            merged_lookahead=self.config.merged_lookahead_rows,
        )

    async def stage_rows(
        self,
        grid: SheetGrid,
        layout: PlanLayout,
        matcher: PersonMatcher,
        summary: IngestionSummary,
        staged: dict[str, dict[str, Any]],
    ) -> None:
        for row in range(layout.data_start, grid.max_row + 1):
            record = PlanRow.from_sheet(grid, layout, row)
            if record is None:
                if not grid.row_is_blank(row):
                    summary.skipped += 1
                continue

            result = matcher.match(record.person, record.cc)
            if not result.is_matched:
                summary.record_unresolved(row, record.person, record.cc, result)
                continue

            summary.matched += 1
            if not record.weeks:
                logger.debug("plan_row_without_weeks", row=row, person_id=result.person_id)
                continue
            staged[result.person_id] = record.to_document(result.person_id, summary.source_file)
