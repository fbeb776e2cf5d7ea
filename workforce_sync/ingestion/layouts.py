"""
Layout descriptors for the three spreadsheet exports.

Each export is detected once per sheet by a heuristic header scan. The result
is a frozen descriptor that the ingestor threads into its row extractor, so
nothing is re-detected per row. A sheet whose header cannot be located raises
``MalformedWorkbook`` before anything is written.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Pattern, Union

from ..errors import MalformedWorkbook
from ..logging_config import get_logger
from .workbook import SheetGrid, normalize_week_label

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DESCRIPTORS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MasterLayout:
    header_row: int
    columns: Mapping[str, int]
    kind: str = field(default="employees", init=False)

    @property
    def data_start(self) -> int:
        return self.header_row + 1

    def column(self, name: str) -> Optional[int]:
        return self.columns.get(name)


@dataclass(frozen=True)
class WeekColumn:
    column: int
    week: str


@dataclass(frozen=True)
class UtilizationLayout:
    header_row: int
    data_start: int
    person_column: int
    cc_column: Optional[int]
    weeks: tuple[WeekColumn, ...]
    kind: str = field(default="utilization", init=False)


@dataclass(frozen=True)
class WeekTriple:
    """Project / non-utilization percent / location columns of one week."""
    week: str
    project_column: int
    non_utilization_column: int
    location_column: int


@dataclass(frozen=True)
class PlanLayout:
    header_row: int
    name_column: int
    cc_column: Optional[int]
    first_project_column: int
    triples: tuple[WeekTriple, ...]
    attributes: Mapping[str, int]
    kind: str = field(default="deployment_plan", init=False)

    @property
    def data_start(self) -> int:
        return self.header_row + 1


LayoutDescriptor = Union[MasterLayout, UtilizationLayout, PlanLayout]


# ═══════════════════════════════════════════════════════════════════════════════
# COLUMN PATTERNS
# ═══════════════════════════════════════════════════════════════════════════════

# Order matters: a column is claimed by the first field that matches it.
MASTER_COLUMNS: tuple[tuple[str, Pattern[str]], ...] = (
    ("first_name", re.compile(r"vorname|first\s*name|given\s*name", re.I)),
    ("last_name", re.compile(r"nachname|last\s*name|surname|family\s*name", re.I)),
    ("email", re.compile(r"e-?mail", re.I)),
    ("company", re.compile(r"firma|company", re.I)),
    ("business_line", re.compile(r"business\s*line|\blob\b", re.I)),
    ("cc", re.compile(r"competence\s*center|cost\s*cent|kostenstelle|^cc$", re.I)),
    ("team", re.compile(r"teamname|^team$", re.I)),
    ("location", re.compile(r"standort|geschäftsstelle|^location$|office", re.I)),
    ("seniority_level", re.compile(r"karrierestufe|\blbs\b|seniority", re.I)),
    ("experience_since_year", re.compile(r"erfahrung|experience", re.I)),
    ("available_for_staffing", re.compile(r"verf.*staffing|staffbar|available\s*for\s*staffing", re.I)),
    ("available_from", re.compile(r"verf.*\bab\b|available\s*from", re.I)),
    ("profile_url", re.compile(r"link|profil", re.I)),
)

_FIRST_NAME = MASTER_COLUMNS[0][1]
_EMAIL = MASTER_COLUMNS[2][1]

_PERSON_LABEL = re.compile(r"mitarbeiter|^person|^name$|employee", re.I)
_CC_LABEL = re.compile(r"(^|\W)cc($|\W)|cost\s*cent|kostenstelle|competence\s*center", re.I)
_PROJECT_LABEL = re.compile(r"projekt|project", re.I)

PLAN_ATTRIBUTES: tuple[tuple[str, Pattern[str]], ...] = (
    ("team", re.compile(r"^team$", re.I)),
    ("business_line", re.compile(r"^lob$|business\s*line", re.I)),
    ("department", re.compile(r"^bereich$|department", re.I)),
    ("grade", re.compile(r"^vg$|grade", re.I)),
    ("plan_location", re.compile(r"^standort$|^location$", re.I)),
    ("available_for_staffing", re.compile(r"verf.*staffing|staffbar|available\s*for\s*staffing", re.I)),
    ("available_from", re.compile(r"verf.*\bab\b|available\s*from", re.I)),
)


def _assign_columns(
    labels: list[tuple[int, str]],
    patterns: tuple[tuple[str, Pattern[str]], ...],
) -> dict[str, int]:
    columns: dict[str, int] = {}
    claimed: set[int] = set()
    for name, pattern in patterns:
        for col, label in labels:
            if col in claimed or not label:
                continue
            if pattern.search(label):
                columns[name] = col
                claimed.add(col)
                break
    return columns


# ═══════════════════════════════════════════════════════════════════════════════
# RESOLUTION
# ═══════════════════════════════════════════════════════════════════════════════

def resolve_master_layout(grid: SheetGrid, scan_rows: int = 20) -> MasterLayout:
    """Header row = first row with a first-name label and an e-mail label."""
    for row in range(1, min(scan_rows, grid.max_row) + 1):
        labels = grid.header_labels(row)
        has_first = any(_FIRST_NAME.search(text) for _, text in labels if text)
        has_mail = any(_EMAIL.search(text) for _, text in labels if text)
        if not (has_first and has_mail):
            continue

        columns = _assign_columns(labels, MASTER_COLUMNS)
        if "last_name" not in columns:
            raise MalformedWorkbook("employees", f"no last name column in header row {row}")
        logger.debug("layout_resolved", layout="employees", header_row=row, columns=sorted(columns))
        return MasterLayout(header_row=row, columns=columns)

    raise MalformedWorkbook(
        "employees", f"no header with first name and e-mail in the first {scan_rows} rows"
    )


def resolve_utilization_layout(grid: SheetGrid, scan_rows: int = 20) -> UtilizationLayout:
    """
    Header row = first row carrying week labels whose person (and optional
    cost center) label sits in that row or the row right below it. Rows with
    week labels but no person label are passed over.
    """
    passed_over: list[int] = []
    for row in range(1, min(scan_rows, grid.max_row) + 1):
        weeks = []
        for col, text in grid.header_labels(row):
            week = normalize_week_label(text)
            if week:
                weeks.append(WeekColumn(col, week))
        if not weeks:
            continue

        first_week_col = weeks[0].column
        for label_row in (row, row + 1):
            labels = [
                (col, text) for col, text in grid.header_labels(label_row)
                if col < first_week_col and text
            ]
            person_col = next((c for c, t in labels if _PERSON_LABEL.search(t)), None)
            if person_col is None:
                continue
            cc_col = next((c for c, t in labels if c != person_col and _CC_LABEL.search(t)), None)
            layout = UtilizationLayout(
                header_row=row,
                data_start=label_row + 1,
                person_column=person_col,
                cc_column=cc_col,
                weeks=tuple(weeks),
            )
            logger.debug(
                "layout_resolved",
                layout="utilization",
                header_row=row,
                person_column=person_col,
                cc_column=cc_col,
                weeks=len(weeks),
            )
            return layout

        passed_over.append(row)

    if passed_over:
        raise MalformedWorkbook(
            "utilization", f"week labels in rows {passed_over} but no person column"
        )
    raise MalformedWorkbook("utilization", f"no week labels in the first {scan_rows} rows")


def resolve_plan_layout(
    grid: SheetGrid,
    scan_rows: int = 8,
    week_label_rows: int = 5,
    merged_lookahead: int = 3,
) -> PlanLayout:
    """Header row = first row whose first cell reads ``Name``."""
    for row in range(1, min(scan_rows, grid.max_row) + 1):
        if grid.text(row, 1).lower() != "name":
            continue

        labels = grid.header_labels(row)
        cc_col = next((c for c, t in labels if t.lower() == "cc"), None)
        first_project = next((c for c, t in labels if t and _PROJECT_LABEL.search(t)), None)
        if first_project is None:
            raise MalformedWorkbook("deployment_plan", f"no project column in header row {row}")

        attributes = _assign_columns(
            [(c, t) for c, t in labels if 1 < c < first_project and c != cc_col],
            PLAN_ATTRIBUTES,
        )
        triples = find_week_triples(grid, row, first_project, week_label_rows, merged_lookahead)
        if not triples:
            raise MalformedWorkbook("deployment_plan", "no week labels above the project columns")

        logger.debug(
            "layout_resolved",
            layout="deployment_plan",
            header_row=row,
            cc_column=cc_col,
            first_project_column=first_project,
            weeks=len(triples),
        )
        return PlanLayout(
            header_row=row,
            name_column=1,
            cc_column=cc_col,
            first_project_column=first_project,
            triples=triples,
            attributes=attributes,
        )

    raise MalformedWorkbook("deployment_plan", f"no 'Name' header in the first {scan_rows} rows")


def find_week_triples(
    grid: SheetGrid,
    header_row: int,
    first_project: int,
    week_label_rows: int = 5,
    merged_lookahead: int = 3,
) -> tuple[WeekTriple, ...]:
    """
    Week label of each 3-column group starting at ``first_project``.

    The label may sit in any of the top rows and any of the group's three
    columns (often a merged cell). When no group carries one, every label
    found in the rows just above the header row is aligned to the 3-column grid
    of the first hit instead.
    """
    triples: list[WeekTriple] = []
    label_rows = min(week_label_rows, header_row)
    for col in range(first_project, grid.max_column + 1, 3):
        week = _week_in_block(grid, col, label_rows)
        if week:
            triples.append(WeekTriple(week, col, col + 1, col + 2))
    if triples:
        return tuple(triples)

    hits: list[tuple[int, str]] = []
    for col in range(1, grid.max_column + 1):
        week = normalize_week_label(grid.value_above(header_row - 1, col, merged_lookahead))
        if week:
            hits.append((col, week))
    if not hits:
        return ()

    anchor = next((c for c, _ in hits if c >= first_project), hits[0][0])
    return tuple(
        WeekTriple(week, col, col + 1, col + 2)
        for col, week in hits
        if (col - anchor) % 3 == 0
    )


def _week_in_block(grid: SheetGrid, col: int, rows: int) -> Optional[str]:
    for row in range(1, rows + 1):
        for offset in range(3):
            if col + offset > grid.max_column:
                break
            week = normalize_week_label(grid.value(row, col + offset))
            if week:
                return week
    return None
