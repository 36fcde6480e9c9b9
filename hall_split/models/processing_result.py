from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from datetime import datetime

from .merge_audit import MergedAuditRow
from .seat_allocation import SeatAllocationRow

"""Result models for imports and bulk split updates.

ImportResult aggregates what one CSV import did (counts, merge audit, chunk
timing); BulkUpdateResult reports the aggregate outcome of a bulk waiting
hall update.
"""


@dataclass(frozen=True)
class ImportResult:
    """Outcome of a successful import (rows are what the store read back)."""
    session_name: str
    source_file_name: str
    input_rows: int  # blank 行除外後の入力行数
    saved_rows: list[SeatAllocationRow]
    merged_audit_rows: list[MergedAuditRow]
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    total_chunks: int = 0
    avg_chunk_seconds: float = 0.0
    p95_chunk_seconds: float = 0.0

    @property
    def merged_groups(self) -> int:
        return len(self.merged_audit_rows)


@dataclass(frozen=True)
class BulkUpdateResult:
    """Aggregate outcome of a bulk 'full' / 'zero' update."""
    mode: str
    requested: int
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # row id -> error message

    @property
    def ok(self) -> bool:
        return not self.failed


class BatchStatsAccumulator:
    """Collects per-chunk insert timings and summarises them."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        """Add a batch timing measurement."""
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]  # 95th percentile (19th out of 20 quantiles, 0-indexed)

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
