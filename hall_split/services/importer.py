from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..csvio.decoder import decode, read_csv_text
from ..csvio.normalizer import (
    ImportPipelineError,
    MalformedInputError,
    MissingColumnsError,
    NormalizedTable,
    normalize_rows,
)
from ..db.batch_insert import PersistenceError
from ..db.session_store import collect_chunk_stats, normalize_session_name
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import HallSplitConfig
from ..models.error_record import ErrorRecord
from ..models.processing_result import ImportResult
from ..models.seat_allocation import SeatAllocationUploadRow
from .merge import MergeIntegrityViolation, MergeResult, dedupe_rows
from .summary import format_seconds

"""Import pipeline: CSV text -> decoded rows -> records -> dedupe/merge -> replace-all.

Everything up to and including the merge audit runs before the store is
touched, so MalformedInputError / MissingColumnsError /
MergeIntegrityViolation leave the existing session untouched. A
PersistenceError from the store may leave the session partially replaced
(see PostgresSessionStore.replace_session_rows).

Each failure is recorded in the error log with its error type and then
re-raised for the caller (CLI) to report.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ERROR_TYPES",
    "build_upload_rows",
    "import_csv_file",
    "import_csv_text",
    "prepare_import",
]

# 例外クラス -> エラーログ error_type
ERROR_TYPES: dict[type[Exception], str] = {
    MissingColumnsError: "MISSING_COLUMNS",
    MergeIntegrityViolation: "MERGE_INTEGRITY_VIOLATION",
    MalformedInputError: "MALFORMED_INPUT",
    PersistenceError: "PERSISTENCE_FAILURE",
}


def _error_type(error: Exception) -> str:
    for cls, name in ERROR_TYPES.items():
        if isinstance(error, cls):
            return name
    return "MALFORMED_INPUT"


def build_upload_rows(table: NormalizedTable) -> list[SeatAllocationUploadRow]:
    """One fresh upload row per normalized data row (W = 0, T = Q)."""
    return [
        SeatAllocationUploadRow.from_record(row.record, row.master_row, table.headers)
        for row in table.rows
    ]


def prepare_import(text: str, config: HallSplitConfig | None = None) -> MergeResult:
    """Decode, normalize and dedupe without touching any store.

    Raises:
        MalformedInputError: Fewer than two non-blank lines, or no usable rows
        MissingColumnsError: A required header is absent
        MergeIntegrityViolation: A duplicate differs in a protected column
    """
    config = config or HallSplitConfig()
    table = normalize_rows(decode(text))
    if table.dropped_blank_rows:
        logger.debug("dropped %d blank filler row(s)", table.dropped_blank_rows)

    result = dedupe_rows(
        build_upload_rows(table),
        fields=config.merge,
        comments_max_length=config.comments_max_length,
    )
    if not result.rows:
        raise MalformedInputError("No usable rows found in CSV.")
    return result


def import_csv_text(
    text: str,
    *,
    source_file_name: str,
    store: Any,
    config: HallSplitConfig | None = None,
    session_name: str | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> ImportResult:
    """Run the full import and replace the session with the merged rows.

    Args:
        text: CSV text (a leading byte-order mark is ignored)
        source_file_name: Recorded on every saved row
        store: Session store (PostgresSessionStore / MemorySessionStore)
        config: Tool configuration (defaults when None)
        session_name: Target session; falls back to config.session_name
        error_log: Buffer receiving one ErrorRecord on failure

    Returns:
        ImportResult with the rows as read back from the store
    """
    config = config or HallSplitConfig()
    session = normalize_session_name(session_name or config.session_name)
    start_time = datetime.now(UTC)

    try:
        merged = prepare_import(text, config)
        accumulator, callback = collect_chunk_stats()
        saved = store.replace_session_rows(
            session, source_file_name, merged.rows, metrics_callback=callback
        )
    except (ImportPipelineError, PersistenceError) as e:
        logger.error("import failed session=%s file=%s: %s", session, source_file_name, e)
        if error_log is not None:
            error_log.append(
                ErrorRecord.create(session, source_file_name, -1, _error_type(e), str(e))
            )
        raise

    end_time = datetime.now(UTC)
    total_chunks, avg_chunk, p95_chunk = accumulator.get_stats()
    input_rows = len(merged.rows) + sum(a.merged_rows_count - 1 for a in merged.audit_rows)

    if merged.audit_rows:
        logger.info(
            "merged %d duplicate group(s) (%d input row(s) -> %d row(s))",
            len(merged.audit_rows), input_rows, len(merged.rows),
        )
    logger.info("saved %d row(s) to session=%s", len(saved), session)
    logger.debug(
        "chunks=%d avg_chunk_sec=%s p95_chunk_sec=%s",
        total_chunks, format_seconds(avg_chunk), format_seconds(p95_chunk),
    )

    return ImportResult(
        session_name=session,
        source_file_name=source_file_name,
        input_rows=input_rows,
        saved_rows=saved,
        merged_audit_rows=merged.audit_rows,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=(end_time - start_time).total_seconds(),
        total_chunks=total_chunks,
        avg_chunk_seconds=avg_chunk,
        p95_chunk_seconds=p95_chunk,
    )


def import_csv_file(path: Path, **kwargs: Any) -> ImportResult:
    """import_csv_text() for a file on disk; source_file_name defaults to the file name."""
    kwargs.setdefault("source_file_name", path.name)
    return import_csv_text(read_csv_text(path), **kwargs)
