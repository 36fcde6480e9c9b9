from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace

from ..csvio.normalizer import ImportPipelineError
from ..models.config_models import MergeFieldConfig
from ..models.input_record import MasterRow
from ..models.merge_audit import MergedAuditRow
from ..models.seat_allocation import SeatAllocationUploadRow

"""Deduplication and audit-safe merge engine.

Rows sharing the composite key (application number, district, requested item,
beneficiary name), each stripped and compared case-sensitively, collapse into
the first occurrence:

- quantity is summed; the split restarts at "all tokens"
- master-row quantity / total value / cost per unit columns are recomputed
- the typed comments are joined with " | " and truncated; the master-row
  comments cell keeps the first occurrence
- every other master-row column must be identical in the existing row, the
  incoming row (surrounding whitespace aside) and the merged result, otherwise
  MergeIntegrityViolation aborts the whole import

The key is computed here and nowhere else.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "CompositeKey",
    "MergeIntegrityViolation",
    "MergeResult",
    "audit_merge_integrity",
    "composite_key",
    "dedupe_rows",
    "extract_total_value",
    "format_number",
    "merge_master_rows",
    "parse_numeric",
]

CompositeKey = tuple[str, str, str, str]

COMMENT_SEPARATOR = " | "


class MergeIntegrityViolation(ImportPipelineError):
    """Raised when a merge would change a master column outside the allow-list."""

    def __init__(self, fields: list[str], key: CompositeKey | None = None) -> None:
        self.fields = fields
        self.key = key
        super().__init__(
            f"Merge audit failed. Unexpected master column change(s): {', '.join(fields)}"
        )


@dataclass(frozen=True)
class MergeResult:
    rows: list[SeatAllocationUploadRow]
    audit_rows: list[MergedAuditRow]
    warnings: list[str] = field(default_factory=list)


def composite_key(row: SeatAllocationUploadRow) -> CompositeKey:
    return (
        row.application_number.strip(),
        row.district.strip(),
        row.requested_item.strip(),
        row.beneficiary_name.strip(),
    )


def parse_numeric(value: object) -> float:
    """Lenient number parse for master-row money/quantity cells (invalid -> 0)."""
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return 0.0
        try:
            parsed = float(cleaned)
        except ValueError:
            return 0.0
        return parsed if math.isfinite(parsed) else 0.0
    return 0.0


def format_number(value: float) -> str:
    """Render a recomputed figure for a master-row cell (integers without '.0').

    Full float precision; the next merge re-reads the cell.
    """
    if value == int(value):
        return str(int(value))
    return repr(value)


def extract_total_value(master_row: MasterRow, fields: MergeFieldConfig) -> float:
    """First non-zero value found under any total value spelling, else 0."""
    for header, value in master_row.items():
        if fields.is_total_value(header):
            parsed = parse_numeric(value)
            if parsed:
                return parsed
    return 0.0


def _has_total_value(master_row: MasterRow, fields: MergeFieldConfig) -> bool:
    return any(fields.is_total_value(h) for h in master_row)


def _ordered_union(*rows: MasterRow) -> list[str]:
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


def merge_master_rows(
    existing: MasterRow,
    incoming: MasterRow,
    merged_quantity: int,
    fields: MergeFieldConfig,
) -> MasterRow:
    """Copy existing and overwrite only the recomputed columns.

    cost per unit is recomputed from the merged total value; when neither row
    carries a total value column it is left untouched (and therefore audited).
    """
    merged = dict(existing)
    merged_total = extract_total_value(existing, fields) + extract_total_value(incoming, fields)
    recompute_unit = _has_total_value(existing, fields) or _has_total_value(incoming, fields)
    unit_price = merged_total / merged_quantity if merged_quantity > 0 else 0.0

    for key in _ordered_union(existing, incoming):
        if fields.is_quantity(key):
            merged[key] = str(merged_quantity)
        elif fields.is_total_value(key):
            merged[key] = format_number(merged_total)
        elif fields.is_cost_per_unit(key):
            if recompute_unit:
                merged[key] = format_number(unit_price)
    return merged


def audit_merge_integrity(
    before: MasterRow,
    incoming: MasterRow,
    after: MasterRow,
    recomputed: Callable[[str], bool],
    may_differ: Callable[[str], bool] | None = None,
) -> list[str]:
    """Return the columns that changed outside the allow-lists.

    before -> after must be byte-identical except for recomputed columns.
    The incoming row may differ from before only in surrounding whitespace
    (the key is compared trimmed too), except for may_differ columns, which
    default to the recomputed ones.
    """
    may_differ = may_differ or recomputed
    unexpected: list[str] = []
    for key in _ordered_union(before, incoming, after):
        # 欠落キーは None として比較 (空文字とは別扱い)
        kept = before.get(key)
        if not recomputed(key) and kept != after.get(key):
            unexpected.append(key)
        elif not may_differ(key) and not _same_value(kept, incoming.get(key)):
            unexpected.append(key)
    return unexpected


def _same_value(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return a is b
    return a.strip() == b.strip()


def _join_comments(existing: str, incoming: str, max_length: int) -> str:
    return COMMENT_SEPARATOR.join(c for c in (existing, incoming) if c)[:max_length]


def dedupe_rows(
    rows: Iterable[SeatAllocationUploadRow],
    fields: MergeFieldConfig | None = None,
    comments_max_length: int = 2000,
) -> MergeResult:
    """Collapse rows that share a composite key.

    Args:
        rows: Upload rows in CSV order
        fields: Merge allow-list configuration (defaults when None)
        comments_max_length: Truncation length for joined comments

    Returns:
        MergeResult with rows in first-occurrence order (sort_order = input
        position, 1-based) and one audit row per key that merged.

    Raises:
        MergeIntegrityViolation: On the first merge that would alter a column
            outside the allow-list. Nothing is returned in that case.
    """
    fields = fields or MergeFieldConfig()
    merged_by_key: dict[CompositeKey, SeatAllocationUploadRow] = {}
    audit_by_key: dict[CompositeKey, MergedAuditRow] = {}
    warnings: list[str] = []

    for index, row in enumerate(rows):
        key = composite_key(row)
        existing = merged_by_key.get(key)
        if existing is None:
            merged_by_key[key] = replace(row, sort_order=index + 1)
            continue

        existing_quantity = existing.quantity
        incoming_quantity = row.quantity
        merged_quantity = existing_quantity + incoming_quantity
        comments = _join_comments(existing.comments, row.comments, comments_max_length)

        merged_master = merge_master_rows(existing.master_row, row.master_row, merged_quantity, fields)

        has_value = _has_total_value(existing.master_row, fields) or _has_total_value(row.master_row, fields)

        def recomputed(header: str) -> bool:
            if fields.is_cost_per_unit(header) and not has_value:
                return False
            return fields.is_recomputed(header)

        def may_differ(header: str) -> bool:
            if fields.is_cost_per_unit(header) and not has_value:
                return False
            return fields.may_differ(header)

        unexpected = audit_merge_integrity(
            existing.master_row, row.master_row, merged_master, recomputed, may_differ
        )
        if unexpected:
            logger.error(
                "merge audit failed key=%s row=%d columns=%s", "||".join(key), index + 1, unexpected
            )
            raise MergeIntegrityViolation(unexpected, key)

        if not has_value:
            message = (
                f"merged key {'||'.join(key)} has no total value column; value totals not tracked"
            )
            if message not in warnings:
                warnings.append(message)
                logger.warning(message)

        existing_total = extract_total_value(existing.master_row, fields)
        incoming_total = extract_total_value(row.master_row, fields)

        audit = audit_by_key.get(key)
        if audit is None:
            audit_by_key[key] = MergedAuditRow(
                application_number=existing.application_number,
                district=existing.district,
                requested_item=existing.requested_item,
                beneficiary_name=existing.beneficiary_name,
                merged_rows_count=2,
                quantity_before=existing_quantity,
                quantity_added=incoming_quantity,
                quantity_after=merged_quantity,
                total_value_before=existing_total,
                total_value_added=incoming_total,
                total_value_after=existing_total + incoming_total,
            )
        else:
            audit.add_occurrence(incoming_quantity, incoming_total)

        merged_by_key[key] = replace(
            existing,
            quantity=merged_quantity,
            waiting_hall_quantity=0,
            token_quantity=merged_quantity,
            comments=comments,
            master_row=merged_master,
            master_headers=existing.master_headers or row.master_headers,
        )
        logger.debug("merged key=%s quantity=%d", "||".join(key), merged_quantity)

    return MergeResult(
        rows=list(merged_by_key.values()),
        audit_rows=list(audit_by_key.values()),
        warnings=warnings,
    )
