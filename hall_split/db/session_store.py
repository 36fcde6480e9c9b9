from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..models.processing_result import BatchStatsAccumulator
from ..models.seat_allocation import SeatAllocationRow, SeatAllocationUploadRow
from ..services.progress import ProgressTracker
from .batch_insert import BatchMetrics, PersistenceError, batch_insert, chunked

"""PostgreSQL session replace-all store.

replace_session_rows() = DELETE every row of the session, then INSERT the new
rows in chunks of batch_size, then read the session back. The delete and each
chunk are separate committed transactions: a failure in chunk k leaves chunks
1..k-1 in place (partially replaced session). There is no session lock, so a
concurrent reader can see an empty or partial session mid-import.

Connections come from a ThreadedConnectionPool because split edits are
persisted from timer and worker threads.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "PostgresSessionStore",
    "PersistenceError",
    "DEFAULT_BATCH_SIZE",
    "INSERT_COLUMNS",
    "TABLE",
    "collect_chunk_stats",
    "upload_payload",
]

TABLE = "seat_allocation"
DEFAULT_BATCH_SIZE = 500
SCHEMA_PATH = Path(__file__).with_name("schema.sql")

INSERT_COLUMNS: list[str] = [
    "session_name",
    "source_file_name",
    "application_number",
    "beneficiary_name",
    "district",
    "requested_item",
    "quantity",
    "waiting_hall_quantity",
    "token_quantity",
    "beneficiary_type",
    "item_type",
    "comments",
    "master_row",
    "master_headers",
    "sort_order",
    "created_by",
    "updated_by",
]

FETCH_SQL = (
    f"SELECT * FROM {TABLE} WHERE session_name = %s "
    "ORDER BY sort_order ASC NULLS LAST, district ASC, requested_item ASC, application_number ASC"
)


def normalize_session_name(session_name: str) -> str:
    normalized = session_name.strip()
    if not normalized:
        raise ValueError("Session name is required.")
    return normalized


def upload_payload(
    session_name: str, source_file_name: str, rows: Sequence[SeatAllocationUploadRow]
) -> list[dict[str, Any]]:
    """Column dicts for the insert phase; sort_order falls back to the 1-based position."""
    payload = []
    for index, row in enumerate(rows):
        payload.append({
            "session_name": session_name,
            "source_file_name": source_file_name,
            "application_number": row.application_number,
            "beneficiary_name": row.beneficiary_name,
            "district": row.district,
            "requested_item": row.requested_item,
            "quantity": row.quantity,
            "waiting_hall_quantity": row.waiting_hall_quantity,
            "token_quantity": row.token_quantity,
            "beneficiary_type": row.beneficiary_type or None,
            "item_type": row.item_type or None,
            "comments": row.comments or None,
            "master_row": dict(row.master_row),
            "master_headers": list(row.master_headers),
            "sort_order": row.sort_order if row.sort_order is not None else index + 1,
            "created_by": None,
            "updated_by": None,
        })
    return payload


class PostgresSessionStore:
    """Seat allocation persistence backed by the seat_allocation table."""

    def __init__(
        self,
        pool: Any,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_factory: Callable[..., ProgressTracker] = ProgressTracker,
    ) -> None:
        self._pool = pool
        self.batch_size = batch_size
        self._progress_factory = progress_factory

    @classmethod
    def connect(
        cls,
        dsn: str,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        maxconn: int = 10,
        statement_timeout_ms: int | None = None,
    ) -> PostgresSessionStore:
        kwargs: dict[str, Any] = {}
        if statement_timeout_ms:
            kwargs["options"] = f"-c statement_timeout={statement_timeout_ms}"
        try:
            pool = ThreadedConnectionPool(1, maxconn, dsn, **kwargs)
        except psycopg2.Error as e:
            raise PersistenceError(f"connect failed: {e}") from e
        return cls(pool, batch_size=batch_size)

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        """One transaction: commit on success, rollback on error."""
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as e:
            raise PersistenceError(f"no connection available: {e}") from e
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
        except psycopg2.Error as e:
            raise PersistenceError(str(e)) from e
        finally:
            self._pool.putconn(conn)

    def close(self) -> None:
        self._pool.closeall()

    def ensure_schema(self) -> None:
        ddl = SCHEMA_PATH.read_text(encoding="utf-8")
        with self._cursor() as cur:
            cur.execute(ddl)

    def list_sessions(self) -> list[str]:
        """Distinct session names, most recently updated first."""
        with self._cursor() as cur:
            cur.execute(
                f"SELECT session_name, MAX(updated_at) AS last_updated FROM {TABLE} "
                "GROUP BY session_name ORDER BY last_updated DESC"
            )
            return [r["session_name"] for r in cur.fetchall() if r["session_name"]]

    def fetch_rows(self, session_name: str) -> list[SeatAllocationRow]:
        if not session_name.strip():
            return []
        with self._cursor() as cur:
            cur.execute(FETCH_SQL, (session_name.strip(),))
            return [SeatAllocationRow.from_mapping(dict(r)) for r in cur.fetchall()]

    def replace_session_rows(
        self,
        session_name: str,
        source_file_name: str,
        rows: Sequence[SeatAllocationUploadRow],
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> list[SeatAllocationRow]:
        """Delete the session, insert rows chunk by chunk, return the re-read session."""
        session = normalize_session_name(session_name)

        with self._cursor() as cur:
            cur.execute(f"DELETE FROM {TABLE} WHERE session_name = %s", (session,))
            logger.debug("session=%s deleted=%s", session, cur.rowcount)

        if not rows:
            return []

        payload = upload_payload(session, source_file_name, rows)
        chunks = chunked(payload, self.batch_size)
        inserted = 0
        with self._progress_factory(len(chunks), description=f"Saving {session}") as progress:
            for number, chunk in enumerate(chunks, start=1):
                values = [self._row_values(item) for item in chunk]
                try:
                    with self._cursor() as cur:
                        result = batch_insert(
                            cur,
                            table=TABLE,
                            columns=INSERT_COLUMNS,
                            rows=values,
                            page_size=self.batch_size,
                            metrics_callback=metrics_callback,
                        )
                except PersistenceError as e:
                    logger.error(
                        "session=%s chunk %d/%d failed after %d committed row(s): %s",
                        session, number, len(chunks), inserted, e,
                    )
                    raise
                inserted += result.inserted_rows
                progress.advance(rows=inserted)

        return self.fetch_rows(session)

    @staticmethod
    def _row_values(item: dict[str, Any]) -> list[Any]:
        values = []
        for col in INSERT_COLUMNS:
            value = item[col]
            if col in ("master_row", "master_headers"):
                value = Json(value)
            values.append(value)
        return values

    def update_row_quantities(self, row_id: str, waiting_hall_quantity: int, token_quantity: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE {TABLE} SET waiting_hall_quantity = %s, token_quantity = %s, "
                "updated_by = NULL, updated_at = now() WHERE id = %s",
                (waiting_hall_quantity, token_quantity, row_id),
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"row not found: {row_id}")


def collect_chunk_stats() -> tuple[BatchStatsAccumulator, Callable[[BatchMetrics], None]]:
    """Accumulator + matching metrics callback for replace_session_rows()."""
    accumulator = BatchStatsAccumulator()

    def callback(metrics: BatchMetrics) -> None:
        accumulator.add_batch_time(metrics.elapsed_seconds)

    return accumulator, callback
