"""
Pytest configuration and fixtures for workforce sync tests.
"""

import asyncio
import sys
from datetime import datetime
from io import BytesIO
from pathlib import Path

import pytest
from openpyxl import Workbook

# Add the repository root to Python path
REPO_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(REPO_ROOT))

from workforce_sync.config import Settings

MASTER_HEADER = [
    "Vorname", "Nachname", "E-Mail", "Firma", "Business Line", "CC", "Team",
    "Standort", "Karrierestufe", "Erfahrung seit", "Verfügbar ab",
    "Verfügbar für Staffing", "Link zum Profil",
]


def _to_bytes(workbook: Workbook) -> bytes:
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    def _run(coro):
        return asyncio.run(coro)
    return _run


@pytest.fixture
def db_url(tmp_path) -> str:
    """SQLite file database, one per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'workforce.db'}"


@pytest.fixture
def test_settings(db_url) -> Settings:
    return Settings(database_url=db_url)


@pytest.fixture
def master_xlsx():
    """
    Build an employee master export.

    Each person is a dict with ``first``, ``last`` and optional ``cc``,
    ``email``, ``available_from``, ``staffing``, ``link``, ``team``, ...
    """
    def _build(people, sheet="Search Results", title_rows=2):
        wb = Workbook()
        ws = wb.active
        ws.title = sheet
        for i in range(title_rows):
            ws.append([f"Report line {i + 1}"])
        ws.append(MASTER_HEADER)
        for person in people:
            ws.append([
                person.get("first", ""),
                person.get("last", ""),
                person.get("email", f"{person.get('first', 'x').lower()}@example.com"),
                person.get("company", "ACME"),
                person.get("business_line", ""),
                person.get("cc", ""),
                person.get("team", ""),
                person.get("location", ""),
                person.get("seniority", ""),
                person.get("experience", ""),
                person.get("available_from"),
                person.get("staffing"),
                "Profil" if person.get("link") else None,
            ])
            if person.get("link"):
                ws.cell(row=ws.max_row, column=len(MASTER_HEADER)).hyperlink = person["link"]
        return _to_bytes(wb)
    return _build


@pytest.fixture
def utilization_xlsx():
    """
    Build a utilization export.

    ``rows`` are ``(person, cc, {week_header: value})``; a value may be a
    ``(value, number_format)`` tuple.
    """
    def _build(rows, weeks=("KW 25/01", "KW 25/02"), title="Utilization export"):
        wb = Workbook()
        ws = wb.active
        ws.title = "Auslastung"
        ws.append([title])
        ws.append([])
        ws.append(["", "", "Hierarchie Slicer - CC", "", "Mitarbeiter (ID)", *weeks])
        for person, cc, values in rows:
            ws.append(["", "", cc, "", person])
            row = ws.max_row
            for offset, week in enumerate(weeks):
                value = values.get(week)
                fmt = None
                if isinstance(value, tuple):
                    value, fmt = value
                if value is None:
                    continue
                cell = ws.cell(row=row, column=6 + offset, value=value)
                if fmt:
                    cell.number_format = fmt
        return _to_bytes(wb)
    return _build


@pytest.fixture
def plan_xlsx():
    """
    Build a deployment plan export.

    ``rows`` are dicts with ``name``, optional ``cc``, ``team`` and ``weeks``:
    ``{week_label: (project, nkv, location)}``.
    """
    def _build(rows, weeks=("KW34(2025)", "KW35(2025)"), with_cc=True, sheet="Einsatzplan",
               label_row=1, header_row=2, merge_labels=True):
        wb = Workbook()
        ws = wb.active
        ws.title = sheet
        fixed = ["Name", "Team", "LoB"] + (["CC"] if with_cc else [])
        first_project = len(fixed) + 1

        header = list(fixed)
        for _ in weeks:
            header.extend(["Projekt", "NKV (%)", "Ort"])
        for col, label in enumerate(header, start=1):
            ws.cell(row=header_row, column=col, value=label)

        for i, week in enumerate(weeks):
            col = first_project + 3 * i
            ws.cell(row=label_row, column=col, value=week)
            if merge_labels:
                ws.merge_cells(start_row=label_row, start_column=col, end_row=label_row, end_column=col + 2)

        row = header_row
        for entry in rows:
            row += 1
            ws.cell(row=row, column=1, value=entry["name"])
            ws.cell(row=row, column=2, value=entry.get("team"))
            ws.cell(row=row, column=3, value=entry.get("lob"))
            if with_cc:
                ws.cell(row=row, column=4, value=entry.get("cc"))
            for i, week in enumerate(weeks):
                triple = entry.get("weeks", {}).get(week)
                if not triple:
                    continue
                col = first_project + 3 * i
                for offset, value in enumerate(triple):
                    if value is not None:
                        ws.cell(row=row, column=col + offset, value=value)
        return _to_bytes(wb)
    return _build


@pytest.fixture
def sample_date() -> datetime:
    return datetime(2025, 3, 1)
