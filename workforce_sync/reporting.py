"""
Unresolved-rows report.

    collection,rowIndex,person,cc,reason
    "utilization","7","Schmidt, Anna","","ambiguous"

The header is plain; every data field is double-quoted with embedded quotes
doubled.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Union

import pandas as pd

from .models import UnresolvedRow

REPORT_COLUMNS = ["collection", "rowIndex", "person", "cc", "reason"]


def unresolved_frame(rows: Iterable[UnresolvedRow]) -> pd.DataFrame:
    records = [
        {
            "collection": row.collection,
            "rowIndex": row.row_index,
            "person": row.person,
            "cc": row.cc,
            "reason": row.reason,
        }
        for row in rows
    ]
    return pd.DataFrame.from_records(records, columns=REPORT_COLUMNS)


def unresolved_csv(rows: Iterable[UnresolvedRow]) -> str:
    """Render the report as CSV text."""
    frame = unresolved_frame(rows).astype(str)
    body = frame.to_csv(
        index=False,
        header=False,
        quoting=csv.QUOTE_ALL,
        lineterminator="\n",
    )
    return ",".join(REPORT_COLUMNS) + "\n" + body


def write_unresolved_report(rows: Iterable[UnresolvedRow], path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(unresolved_csv(rows), encoding="utf-8")
    return path
