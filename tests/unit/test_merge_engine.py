from __future__ import annotations

import pytest

from hall_split.models.config_models import MergeFieldConfig
from hall_split.models.input_record import InputRecord
from hall_split.models.seat_allocation import SeatAllocationUploadRow
from hall_split.services.merge import (
    MergeIntegrityViolation,
    audit_merge_integrity,
    composite_key,
    dedupe_rows,
    extract_total_value,
    format_number,
    merge_master_rows,
)


def _row(
    app: str = "APP-1",
    name: str = "Chennai",
    item: str = "Sewing Machine",
    qty: int = 3,
    btype: str = "District",
    comments: str = "",
    extra: dict[str, str] | None = None,
) -> SeatAllocationUploadRow:
    master = {
        "Application Number": app,
        "Beneficiary Name": name,
        "Requested Item": item,
        "Quantity": str(qty),
        "Beneficiary Type": btype,
        "Item Type": "Article",
        "Comments": comments,
    }
    master.update(extra or {})
    record = InputRecord(app, name, item, qty, btype, "Article", comments)
    return SeatAllocationUploadRow.from_record(record, master, list(master))


def test_merge_sums_quantity_and_restarts_split():
    result = dedupe_rows([_row(qty=3), _row(qty=5)])
    assert len(result.rows) == 1
    merged = result.rows[0]
    assert merged.quantity == 8
    assert merged.token_quantity == 8
    assert merged.waiting_hall_quantity == 0
    assert merged.master_row["Quantity"] == "8"

    assert len(result.audit_rows) == 1
    audit = result.audit_rows[0]
    assert (audit.quantity_before, audit.quantity_added, audit.quantity_after) == (3, 5, 8)
    assert audit.merged_rows_count == 2


def test_three_occurrences_accumulate_audit():
    result = dedupe_rows([_row(qty=1), _row(qty=2), _row(qty=4)])
    audit = result.audit_rows[0]
    assert audit.merged_rows_count == 3
    assert audit.quantity_before == 1
    assert audit.quantity_added == 6
    assert audit.quantity_after == 7
    assert result.rows[0].quantity == 7


def test_total_value_summed_and_unit_cost_recomputed():
    a = _row(qty=3, extra={"Total Value": "300", "Cost Per Unit": "100"})
    b = _row(qty=5, extra={"Total Value": "600", "Cost Per Unit": "120"})
    result = dedupe_rows([a, b])
    master = result.rows[0].master_row
    assert master["Total Value"] == "900"
    assert master["Cost Per Unit"] == "112.5"
    audit = result.audit_rows[0]
    assert (audit.total_value_before, audit.total_value_added, audit.total_value_after) == (300.0, 600.0, 900.0)


def test_header_spelling_variants_are_recognised():
    a = _row(qty=2, extra={"TOTAL COST": "1,000", "unit_price": "500"})
    b = _row(qty=2, extra={"TOTAL COST": "1,000", "unit_price": "500"})
    result = dedupe_rows([a, b])
    master = result.rows[0].master_row
    assert master["TOTAL COST"] == "2000"
    assert master["unit_price"] == "500"


def test_unrelated_column_change_is_fatal():
    a = _row(extra={"Supplier Name": "Acme"})
    b = _row(extra={"Supplier Name": "Globex"})
    with pytest.raises(MergeIntegrityViolation) as ei:
        dedupe_rows([a, b])
    assert ei.value.fields == ["Supplier Name"]
    assert "Supplier Name" in str(ei.value)
    assert ei.value.key == ("APP-1", "Chennai", "Sewing Machine", "Chennai")


def test_column_present_in_only_one_row_is_fatal():
    with pytest.raises(MergeIntegrityViolation) as ei:
        dedupe_rows([_row(), _row(extra={"GST Number": "33AAA"})])
    assert ei.value.fields == ["GST Number"]


def test_ignored_fields_may_differ_and_first_wins():
    fields = MergeFieldConfig(ignored_fields=("Remarks",))
    a = _row(extra={"Remarks": "keep"})
    b = _row(extra={"Remarks": "drop"})
    result = dedupe_rows([a, b], fields=fields)
    assert result.rows[0].master_row["Remarks"] == "keep"


def test_missing_total_value_flags_a_warning():
    result = dedupe_rows([_row(qty=1), _row(qty=1)])
    assert result.warnings
    assert "no total value column" in result.warnings[0]


def test_unit_cost_difference_without_total_value_is_audited():
    a = _row(extra={"Cost Per Unit": "100"})
    b = _row(extra={"Cost Per Unit": "110"})
    with pytest.raises(MergeIntegrityViolation) as ei:
        dedupe_rows([a, b])
    assert ei.value.fields == ["Cost Per Unit"]


def test_comments_joined_and_truncated():
    result = dedupe_rows([_row(comments="first"), _row(comments="second")])
    assert result.rows[0].comments == "first | second"
    # マスター行の Comments セルは先頭行のまま
    assert result.rows[0].master_row["Comments"] == "first"

    result = dedupe_rows([_row(comments="x" * 8), _row(comments="y" * 8)], comments_max_length=10)
    assert result.rows[0].comments == "xxxxxxxx |"


def test_master_comments_cell_is_byte_identical_after_merge():
    rows = [_row(comments="first", qty=1), _row(comments="second", qty=2), _row(comments=" third ", qty=3)]
    merged = dedupe_rows(rows).rows[0]
    assert merged.master_row == {**rows[0].master_row, "Quantity": "6"}


def test_comments_change_is_reported_by_integrity_audit():
    fields = MergeFieldConfig()
    before = {"Comments": "first", "Quantity": "1"}
    incoming = {"Comments": "second", "Quantity": "2"}
    after = {"Comments": "first | second", "Quantity": "3"}
    assert audit_merge_integrity(before, incoming, after, fields.is_recomputed, fields.may_differ) == ["Comments"]
    after["Comments"] = "first"
    assert audit_merge_integrity(before, incoming, after, fields.is_recomputed, fields.may_differ) == []


def test_total_value_keeps_full_precision_across_occurrences():
    rows = [_row(qty=1, extra={"Total Value": "0.33333"}) for _ in range(3)]
    result = dedupe_rows(rows)
    total = float(result.rows[0].master_row["Total Value"])
    assert total == 0.33333 + 0.33333 + 0.33333
    assert result.audit_rows[0].total_value_after == total


def test_empty_comment_is_not_joined():
    result = dedupe_rows([_row(comments=""), _row(comments="only")])
    assert result.rows[0].comments == "only"


def test_key_is_trimmed_but_case_sensitive():
    result = dedupe_rows([_row(app="APP-1"), _row(app=" APP-1 ")])
    assert len(result.rows) == 1
    # 先頭行のセル値を保持
    assert result.rows[0].master_row["Application Number"] == "APP-1"
    result = dedupe_rows([_row(app="APP-1"), _row(app="app-1")])
    assert len(result.rows) == 2


def test_distinct_rows_keep_input_order_and_sort_order():
    rows = [_row(app="A3"), _row(app="A1"), _row(app="A3", qty=1), _row(app="A2")]
    result = dedupe_rows(rows)
    assert [r.application_number for r in result.rows] == ["A3", "A1", "A2"]
    assert [r.sort_order for r in result.rows] == [1, 2, 4]


def test_split_invariant_after_merge():
    rows = [_row(app=f"A{i % 3}", qty=i) for i in range(10)]
    for r in dedupe_rows(rows).rows:
        assert r.waiting_hall_quantity + r.token_quantity == r.quantity


def test_composite_key_uses_district_bucket():
    public = _row(name="Ravi", btype="Public")
    assert composite_key(public) == ("APP-1", "Non-District", "Sewing Machine", "Ravi")


def test_merge_master_rows_zero_quantity_unit_cost():
    fields = MergeFieldConfig()
    merged = merge_master_rows(
        {"Quantity": "0", "Total Value": "0", "Cost Per Unit": "5"},
        {"Quantity": "0", "Total Value": "0", "Cost Per Unit": "5"},
        0,
        fields,
    )
    assert merged["Cost Per Unit"] == "0"


def test_extract_total_value_first_non_zero():
    fields = MergeFieldConfig()
    assert extract_total_value({"Total Value": "0", "Total Amount": "250"}, fields) == 250.0
    assert extract_total_value({"Supplier": "x"}, fields) == 0.0


def test_audit_merge_integrity_reports_every_changed_column():
    before = {"A": "1", "B": "2", "Quantity": "1"}
    after = {"A": "1", "B": "3", "Quantity": "2", "C": ""}
    changed = audit_merge_integrity(before, before, after, lambda h: h == "Quantity")
    assert changed == ["B", "C"]


@pytest.mark.parametrize("value,expected", [(8.0, "8"), (112.5, "112.5"), (1 / 3, repr(1 / 3)), (0.0, "0")])
def test_format_number(value, expected):
    assert format_number(value) == expected
