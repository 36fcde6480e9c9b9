from __future__ import annotations

from dataclasses import dataclass

"""Merge audit model.

One MergedAuditRow exists per composite key that collected two or more input
rows during an import. It lives in memory only and is replaced by the next
import.
"""

__all__ = [
    "MergedAuditRow",
    "AUDIT_HEADERS",
]

AUDIT_HEADERS: list[str] = [
    "Application Number",
    "District",
    "Requested Item",
    "Beneficiary Name",
    "Merged Rows Count",
    "Quantity Before",
    "Quantity Added",
    "Quantity After",
    "Total Value Before",
    "Total Value Added",
    "Total Value After",
]


@dataclass
class MergedAuditRow:
    """Running merge totals for a single composite key.

    before = first occurrence, added = sum of every later occurrence,
    after = before + added. merged_rows_count starts at 2 on the first merge.
    """
    application_number: str
    district: str
    requested_item: str
    beneficiary_name: str
    merged_rows_count: int
    quantity_before: int
    quantity_added: int
    quantity_after: int
    total_value_before: float
    total_value_added: float
    total_value_after: float

    def add_occurrence(self, quantity: int, total_value: float) -> None:
        self.merged_rows_count += 1
        self.quantity_added += quantity
        self.quantity_after = self.quantity_before + self.quantity_added
        self.total_value_added += total_value
        self.total_value_after = self.total_value_before + self.total_value_added

    def as_record(self) -> dict[str, object]:
        """Map to the fixed export columns (AUDIT_HEADERS order)."""
        values = [
            self.application_number,
            self.district,
            self.requested_item,
            self.beneficiary_name,
            self.merged_rows_count,
            self.quantity_before,
            self.quantity_added,
            self.quantity_after,
            self.total_value_before,
            self.total_value_added,
            self.total_value_after,
        ]
        return dict(zip(AUDIT_HEADERS, values, strict=True))
