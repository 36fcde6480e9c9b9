from __future__ import annotations

import re
from dataclasses import dataclass, field

"""Config dataclasses for the seat allocation split tool.

These are the typed result of hall_split.config.loader.load_config(). The
loader owns YAML parsing and schema validation; this module owns defaults and
the header-spelling rules used by the merge engine.
"""

# 既定の表記ゆれ一覧 (マスターCSVの列名)
DEFAULT_MERGE_FIELDS: dict[str, tuple[str, ...]] = {
    "quantity": ("Quantity", "QUANTITY", "quantity"),
    "total_value": (
        "Total Value",
        "TOTAL COST",
        "TOTAL VALUE",
        "Total Amount",
        "total_value",
        "total_amount",
    ),
    "cost_per_unit": ("Cost Per Unit", "COST PER UNIT", "cost_per_unit", "Unit Price"),
    "comments": ("Comments",),
}

_SEPARATORS = re.compile(r"[\s_]+")


def canonical_header(header: str) -> str:
    """Comparison form of a header: casefolded, '_' and whitespace runs collapsed."""
    return _SEPARATORS.sub(" ", header.strip()).casefold()


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    statement_timeout_ms: int | None = None


@dataclass(frozen=True)
class MergeFieldConfig:
    """Which master-row headers a merge may rewrite.

    quantity / total_value / cost_per_unit are recomputed on merge. comments and
    ignored_fields may differ between duplicates but the master cell keeps the
    first occurrence. Every other header must be identical across merged rows.
    """
    quantity: tuple[str, ...] = DEFAULT_MERGE_FIELDS["quantity"]
    total_value: tuple[str, ...] = DEFAULT_MERGE_FIELDS["total_value"]
    cost_per_unit: tuple[str, ...] = DEFAULT_MERGE_FIELDS["cost_per_unit"]
    comments: tuple[str, ...] = DEFAULT_MERGE_FIELDS["comments"]
    ignored_fields: tuple[str, ...] = ()

    def _matches(self, header: str, spellings: tuple[str, ...]) -> bool:
        canon = canonical_header(header)
        return any(canonical_header(s) == canon for s in spellings)

    def is_quantity(self, header: str) -> bool:
        return self._matches(header, self.quantity)

    def is_total_value(self, header: str) -> bool:
        return self._matches(header, self.total_value)

    def is_cost_per_unit(self, header: str) -> bool:
        return self._matches(header, self.cost_per_unit)

    def is_comments(self, header: str) -> bool:
        return self._matches(header, self.comments)

    def is_recomputed(self, header: str) -> bool:
        """Headers whose merged value is rewritten in the master row."""
        return (
            self.is_quantity(header)
            or self.is_total_value(header)
            or self.is_cost_per_unit(header)
        )

    def may_differ(self, header: str) -> bool:
        """Headers allowed to differ between duplicates."""
        return (
            self.is_recomputed(header)
            or self.is_comments(header)
            or self._matches(header, self.ignored_fields)
        )


@dataclass(frozen=True)
class HallSplitConfig:
    """Root configuration object for import, split editing and export."""
    session_name: str = "default"
    batch_size: int = 500  # replace-all の INSERT チャンク行数
    debounce_ms: int = 400  # 行単位の保存デバウンス
    comments_max_length: int = 2000
    bulk_max_workers: int = 8
    merge: MergeFieldConfig = field(default_factory=MergeFieldConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0
