from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from pathlib import Path

import pandas as pd

from ..models.merge_audit import AUDIT_HEADERS, MergedAuditRow
from ..models.seat_allocation import SeatAllocationRow
from ..services.merge import format_number
from ..services.view import display_order

"""CSV export.

Two reports:
- split export: every row in district -> item -> application number order,
  original master columns in original order, then Waiting Hall Quantity and
  Token Quantity
- merged audit export: fixed columns (see AUDIT_HEADERS)

Cells are rendered to strings before pandas writes them, so master values go
out exactly as they came in. pandas quotes only where needed (QUOTE_MINIMAL).
Files get a UTF-8 BOM so spreadsheet tools detect the encoding.
"""

__all__ = [
    "SPLIT_COLUMNS",
    "audit_export_table",
    "default_export_name",
    "encode_csv",
    "split_export_table",
    "write_csv",
]

SPLIT_COLUMNS: list[str] = ["Waiting Hall Quantity", "Token Quantity"]
_SPLIT_KEYS = {c.lower() for c in SPLIT_COLUMNS}

Table = tuple[list[str], list[list[str]]]


def _master_headers(rows: Sequence[SeatAllocationRow]) -> list[str]:
    for row in rows:
        if row.master_headers:
            return list(row.master_headers)
    return list(rows[0].master_row) if rows else []


def split_export_table(rows: Iterable[SeatAllocationRow]) -> Table:
    """Headers + string cells for the split export."""
    ordered = display_order(rows)
    # 既存の Waiting Hall / Token 列は重複させない
    headers = [h for h in _master_headers(ordered) if h.strip().lower() not in _SPLIT_KEYS]
    values = [
        [row.master_row.get(h, "") for h in headers]
        + [str(row.waiting_hall_quantity), str(row.token_quantity)]
        for row in ordered
    ]
    return headers + SPLIT_COLUMNS, values


def _cell(value: object) -> str:
    if isinstance(value, float):
        return format_number(value)
    return str(value)


def audit_export_table(audit_rows: Iterable[MergedAuditRow]) -> Table:
    values = [[_cell(v) for v in row.as_record().values()] for row in audit_rows]
    return list(AUDIT_HEADERS), values


def _frame(headers: list[str], values: list[list[str]]) -> pd.DataFrame:
    return pd.DataFrame(values, columns=headers, dtype=object)


def encode_csv(headers: list[str], values: list[list[str]]) -> str:
    """CSV text (no BOM), '\\n' line endings."""
    return _frame(headers, values).to_csv(index=False, lineterminator="\n")


def write_csv(path: Path, headers: list[str], values: list[list[str]]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    _frame(headers, values).to_csv(path, index=False, lineterminator="\n", encoding="utf-8-sig")
    return path


def default_export_name(prefix: str, today: date | None = None) -> str:
    """e.g. seat-allocation-2026-02-20.csv"""
    return f"{prefix}-{(today or date.today()).isoformat()}.csv"
