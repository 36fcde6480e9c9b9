from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the failure log.

Each record is one JSON Lines entry with a fixed key set. row=-1 marks
import-level failures where no single row is to blame; otherwise row holds the
seat allocation row id (string) or the 1-based CSV data row number.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        session: Seat allocation session name
        source: CSV file name, or the operation name for split edits
        row: Row id / row number. -1 when the failure is not row specific
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human readable description
    """
    timestamp: str  # ISO8601 UTC
    session: str
    source: str
    row: int | str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(session: str, source: str, row: int | str, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            session=session,
            source=source,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        """Serialize to one JSON line without extra keys."""
        return json.dumps(asdict(self), ensure_ascii=False)
