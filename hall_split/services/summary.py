from __future__ import annotations

from ..models.processing_result import ImportResult

"""SUMMARY line rendering for a finished import.

Format:
SUMMARY session={session} input_rows={n} saved_rows={n} merged_groups={n}
chunks={n} elapsed_sec={elapsed}
"""


def format_seconds(value: float) -> str:
    """Integers without decimals, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return str(round(value, 3))


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line for an ImportResult.

    Examples:
        >>> from datetime import datetime, timezone
        >>> start = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2026, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> result = ImportResult(
        ...     session_name="default", source_file_name="master.csv",
        ...     input_rows=3, saved_rows=[], merged_audit_rows=[],
        ...     start_time=start, end_time=end, elapsed_seconds=2.0, total_chunks=1,
        ... )
        >>> render_summary_line(result)
        'SUMMARY session=default input_rows=3 saved_rows=0 merged_groups=0 chunks=1 elapsed_sec=2'
    """
    return (
        f"SUMMARY session={result.session_name} "
        f"input_rows={result.input_rows} "
        f"saved_rows={len(result.saved_rows)} "
        f"merged_groups={result.merged_groups} "
        f"chunks={result.total_chunks} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)}"
    )
