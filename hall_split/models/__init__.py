"""Domain models for the seat allocation split tool.

This package contains the record, row, audit, config and result types shared
by the import pipeline, the session stores and the split controller.
"""

from .config_models import DatabaseConfig, HallSplitConfig, MergeFieldConfig
from .error_record import ErrorRecord
from .input_record import InputRecord, MasterRow
from .merge_audit import AUDIT_HEADERS, MergedAuditRow
from .processing_result import BatchStatsAccumulator, BulkUpdateResult, ImportResult
from .seat_allocation import SeatAllocationRow, SeatAllocationUploadRow

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "HallSplitConfig",
    "MergeFieldConfig",
    # Import models
    "InputRecord",
    "MasterRow",
    "MergedAuditRow",
    "AUDIT_HEADERS",
    "SeatAllocationRow",
    "SeatAllocationUploadRow",
    # Results
    "ImportResult",
    "BulkUpdateResult",
    "BatchStatsAccumulator",
    "ErrorRecord",
]
