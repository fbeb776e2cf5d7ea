"""Historical utilization export -> ``utilization`` collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..canonical.matcher import PersonMatcher
from ..canonical.normalization import split_person_name, strip_trailing_id
from ..models import IngestionSummary, MatchStatus, SourceType
from ..store import now_iso
from .base import BaseIngestor, normalized_block
from .layouts import UtilizationLayout, resolve_utilization_layout
from .workbook import SheetGrid, to_percent


@dataclass(frozen=True)
class UtilizationRow:
    row_index: int
    person: str
    cc: str
    values: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_sheet(cls, grid: SheetGrid, layout: UtilizationLayout, row: int) -> Optional["UtilizationRow"]:
        person = strip_trailing_id(grid.value(row, layout.person_column))
        if not person:
            return None
        values: dict[str, float] = {}
        for week in layout.weeks:
            percent = to_percent(
                grid.value(row, week.column),
                grid.number_format(row, week.column),
            )
            if percent is not None:
                values[week.week] = percent
        return cls(
            row_index=row,
            person=person,
            cc=grid.text(row, layout.cc_column),
            values=values,
        )

    def to_document(self, person_id: str, source_file: Optional[str]) -> dict[str, Any]:
        last_name, first_name = split_person_name(self.person)
        return {
            "person": self.person,
            "lastName": last_name,
            "firstName": first_name,
            "cc": self.cc,
            "personId": person_id,
            "values": dict(self.values),
            "normalized": normalized_block(self.person, self.cc),
            "sourceFile": source_file,
            "updatedAt": now_iso(),
            "matchStatus": MatchStatus.MATCHED.value,
        }


class UtilizationIngestor(BaseIngestor):
    """Week columns become ``values: {"YY/WW": percent}`` keyed by person id."""

    source_type = SourceType.UTILIZATION

    def default_sheet(self) -> Optional[str]:
        return self.config.utilization_sheet

    def resolve_layout(self, grid: SheetGrid) -> UtilizationLayout:
        return resolve_utilization_layout(grid, self.config.utilization_header_scan_rows)

    async def stage_rows(
        self,
        grid: SheetGrid,
        layout: UtilizationLayout,
        matcher: PersonMatcher,
        summary: IngestionSummary,
        staged: dict[str, dict[str, Any]],
    ) -> None:
        for row in range(layout.data_start, grid.max_row + 1):
            record = UtilizationRow.from_sheet(grid, layout, row)
            if record is None:
                if not grid.row_is_blank(row):
                    summary.skipped += 1
                continue

            result = matcher.match(record.person, record.cc)
            if not result.is_matched:
                summary.record_unresolved(row, record.person, record.cc, result)
                continue

            summary.matched += 1
            staged[result.person_id] = record.to_document(result.person_id, summary.source_file)
