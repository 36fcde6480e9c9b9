from __future__ import annotations

import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from ..models.seat_allocation import SeatAllocationRow

"""Filter / sort view over the in-memory row set.

Everything here is a pure function of (rows, filter, sort): no store access,
no mutation of the rows passed in.

String comparison is "base sensitivity": case and accents are ignored, the
way the operators' spreadsheet tools order names.
"""

__all__ = [
    "ALL",
    "SORT_COLUMNS",
    "NUMERIC_COLUMNS",
    "SortState",
    "SplitTotals",
    "ViewFilter",
    "article_options",
    "display_order",
    "district_options",
    "filter_rows",
    "locale_key",
    "reconcile_filter",
    "sort_rows",
    "totals",
]

ALL = "all"

SORT_COLUMNS: tuple[str, ...] = (
    "district",
    "application_number",
    "beneficiary_name",
    "requested_item",
    "quantity",
    "waiting_hall_quantity",
    "token_quantity",
)
NUMERIC_COLUMNS = frozenset({"quantity", "waiting_hall_quantity", "token_quantity"})

INSTITUTION_LIKE_TYPES = frozenset({"institutions", "others"})


def locale_key(value: str) -> str:
    """Sort key ignoring case and accents."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


@dataclass(frozen=True)
class ViewFilter:
    """Operator filter selection. 'all' disables a filter."""
    search: str = ""
    beneficiary_type: str = ALL
    district: str = ALL  # district name, or institution name for institution-like types
    item: str = ALL

    @property
    def normalized_type(self) -> str:
        return self.beneficiary_type.strip().lower()

    @property
    def is_district_type(self) -> bool:
        return self.normalized_type == "district"

    @property
    def is_institution_like_type(self) -> bool:
        return self.normalized_type in INSTITUTION_LIKE_TYPES

    @property
    def primary_filter_enabled(self) -> bool:
        """District/institution filter only applies to district and institution-like types."""
        return self.is_district_type or self.is_institution_like_type


def _matches_primary(row: SeatAllocationRow, view_filter: ViewFilter) -> bool:
    if not view_filter.primary_filter_enabled or view_filter.district == ALL:
        return True
    if view_filter.is_district_type:
        return row.district == view_filter.district
    return row.beneficiary_name == view_filter.district


def filter_rows(rows: Iterable[SeatAllocationRow], view_filter: ViewFilter) -> list[SeatAllocationRow]:
    """Rows visible under the filter, input order kept."""
    query = view_filter.search.strip().lower()
    wanted_type = view_filter.normalized_type
    visible = []
    for row in rows:
        if wanted_type != ALL and row.beneficiary_type.lower() != wanted_type:
            continue
        if not _matches_primary(row, view_filter):
            continue
        if view_filter.item != ALL and row.requested_item != view_filter.item:
            continue
        if query and not (
            query in row.application_number.lower()
            or query in row.beneficiary_name.lower()
            or query in row.requested_item.lower()
            or query in row.comments.lower()
        ):
            continue
        visible.append(row)
    return visible


def _sorted_unique(values: Iterable[str]) -> list[str]:
    return sorted(set(values), key=locale_key)


def district_options(rows: Iterable[SeatAllocationRow], view_filter: ViewFilter) -> list[str]:
    """Choices for the district/institution filter.

    District type lists districts, institution-like types list beneficiary
    names, any other type lists nothing. Scoped by the item filter.
    """
    if not view_filter.primary_filter_enabled:
        return []
    wanted_type = view_filter.normalized_type
    scoped = [r for r in rows if r.beneficiary_type.lower() == wanted_type]
    if view_filter.item != ALL:
        scoped = [r for r in scoped if r.requested_item == view_filter.item]
    if view_filter.is_district_type:
        return _sorted_unique(r.district for r in scoped)
    return _sorted_unique(r.beneficiary_name for r in scoped)


def article_options(rows: Iterable[SeatAllocationRow], view_filter: ViewFilter) -> list[str]:
    """Choices for the requested-item filter, scoped by type and district filters."""
    wanted_type = view_filter.normalized_type
    scoped = [
        r for r in rows
        if (wanted_type == ALL or r.beneficiary_type.lower() == wanted_type)
        and _matches_primary(r, view_filter)
    ]
    return _sorted_unique(r.requested_item for r in scoped)


def reconcile_filter(rows: Sequence[SeatAllocationRow], view_filter: ViewFilter) -> ViewFilter:
    """Reset filters that no longer make sense.

    - district resets to 'all' unless the type is district or institution-like
    - item resets to 'all' when it is not among the current item options
    """
    result = view_filter
    if not result.primary_filter_enabled and result.district != ALL:
        result = replace(result, district=ALL)
    if result.item != ALL and result.item not in article_options(rows, result):
        result = replace(result, item=ALL)
    return result


@dataclass(frozen=True)
class SortState:
    column: str | None = None
    direction: str = "asc"

    def toggle(self, column: str) -> SortState:
        """Same column flips direction, a new column starts ascending."""
        if column not in SORT_COLUMNS:
            raise ValueError(f"unknown sort column: {column}")
        if self.column == column:
            return SortState(column, "desc" if self.direction == "asc" else "asc")
        return SortState(column, "asc")


def sort_rows(
    rows: Iterable[SeatAllocationRow], column: str | None, direction: str = "asc"
) -> list[SeatAllocationRow]:
    """Stable sort on one displayed column; no column keeps input order."""
    rows = list(rows)
    if column is None:
        return rows
    if column not in SORT_COLUMNS:
        raise ValueError(f"unknown sort column: {column}")
    reverse = direction == "desc"
    if column in NUMERIC_COLUMNS:
        return sorted(rows, key=lambda r: getattr(r, column) or 0, reverse=reverse)
    return sorted(rows, key=lambda r: locale_key(getattr(r, column) or ""), reverse=reverse)


def display_order(rows: Iterable[SeatAllocationRow]) -> list[SeatAllocationRow]:
    """District -> requested item -> application number."""
    return sorted(
        rows,
        key=lambda r: (
            locale_key(r.district),
            locale_key(r.requested_item),
            locale_key(r.application_number),
        ),
    )


@dataclass(frozen=True)
class SplitTotals:
    quantity: int = 0
    waiting_hall_quantity: int = 0
    token_quantity: int = 0


def totals(rows: Iterable[SeatAllocationRow]) -> SplitTotals:
    quantity = waiting = token = 0
    for row in rows:
        quantity += row.quantity
        waiting += row.waiting_hall_quantity
        token += row.token_quantity
    return SplitTotals(quantity, waiting, token)
