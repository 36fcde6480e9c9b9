from __future__ import annotations

import math
from dataclasses import dataclass

from hall_split.models.input_record import InputRecord, MasterRow

"""Record normalizer.

First decoded row is the header row, every following row is data. Required
headers are matched case-insensitively after strip(); extra columns are kept
verbatim in each row's MasterRow.
"""

__all__ = [
    "REQUIRED_HEADERS",
    "ImportPipelineError",
    "MalformedInputError",
    "MissingColumnsError",
    "NormalizedRow",
    "NormalizedTable",
    "normalize_rows",
    "parse_quantity",
]

REQUIRED_HEADERS: tuple[str, ...] = (
    "application number",
    "beneficiary name",
    "requested item",
    "quantity",
    "beneficiary type",
    "item type",
    "comments",
)


class ImportPipelineError(Exception):
    """Base for failures detected before anything is written to the store."""


class MalformedInputError(ImportPipelineError):
    """Raised when the CSV has no header + data rows, or no usable rows."""


class MissingColumnsError(ImportPipelineError):
    """Raised when required columns are missing from the header row."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required column(s): {', '.join(missing)}")


@dataclass(frozen=True)
class NormalizedRow:
    row_number: int  # 1-based data row number (header excluded)
    record: InputRecord
    master_row: MasterRow


@dataclass(frozen=True)
class NormalizedTable:
    headers: list[str]  # trimmed original headers, original order
    rows: list[NormalizedRow]
    dropped_blank_rows: int = 0


def parse_quantity(value: str) -> int:
    """Parse a quantity cell: thousands commas stripped, invalid/empty/negative -> 0.

    Fractional values are truncated toward zero.
    """
    cleaned = value.replace(",", "").strip()
    if not cleaned:
        return 0
    try:
        parsed = float(cleaned)
    except ValueError:
        return 0
    if not math.isfinite(parsed) or parsed < 0:
        return 0
    return int(parsed)


def _cell(row: list[str], index: int) -> str:
    return row[index] if index < len(row) else ""


def normalize_rows(rows: list[list[str]]) -> NormalizedTable:
    """Map decoded rows to InputRecord + MasterRow pairs.

    Steps:
    1. Require a header row and at least one data row
    2. Validate required headers (case-insensitive)
    3. Build records; blank filler rows are skipped
    """
    if len(rows) < 2:
        raise MalformedInputError("CSV is empty or invalid.")

    headers = [h.strip() for h in rows[0]]
    header_index: dict[str, int] = {}
    for idx, header in enumerate(headers):
        # 同名ヘッダは後勝ち
        header_index[header.lower()] = idx

    missing = [h for h in REQUIRED_HEADERS if h not in header_index]
    if missing:
        raise MissingColumnsError(missing)

    normalized: list[NormalizedRow] = []
    dropped = 0
    for number, raw in enumerate(rows[1:], start=1):
        record = InputRecord(
            application_number=_cell(raw, header_index["application number"]),
            beneficiary_name=_cell(raw, header_index["beneficiary name"]),
            requested_item=_cell(raw, header_index["requested item"]),
            quantity=parse_quantity(_cell(raw, header_index["quantity"])),
            beneficiary_type=_cell(raw, header_index["beneficiary type"]),
            item_type=_cell(raw, header_index["item type"]),
            comments=_cell(raw, header_index["comments"]),
        )
        if record.is_blank:
            dropped += 1
            continue
        master_row: MasterRow = {header: _cell(raw, idx) for idx, header in enumerate(headers)}
        normalized.append(NormalizedRow(row_number=number, record=record, master_row=master_row))

    return NormalizedTable(headers=headers, rows=normalized, dropped_blank_rows=dropped)
