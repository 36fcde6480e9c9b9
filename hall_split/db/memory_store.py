from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Sequence
from dataclasses import asdict
from datetime import UTC, datetime

from ..models.seat_allocation import SeatAllocationRow, SeatAllocationUploadRow
from .batch_insert import BatchMetrics, PersistenceError, chunked
from .session_store import DEFAULT_BATCH_SIZE, normalize_session_name, upload_payload

"""In-memory session store (dry-run mode and tests).

Same contract as PostgresSessionStore: uuid ids, server-side timestamps,
chunked inserts (chunk sizes are recorded in insert_calls) and the same fetch
ordering. Strings sort by code point rather than by database collation.
"""

__all__ = [
    "MemorySessionStore",
]


def _fetch_sort_key(row: SeatAllocationRow) -> tuple[object, ...]:
    # sort_order ASC NULLS LAST, district, requested_item, application_number
    return (
        row.sort_order is None,
        row.sort_order or 0,
        row.district,
        row.requested_item,
        row.application_number,
    )


class MemorySessionStore:
    def __init__(self, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.batch_size = batch_size
        self._rows: dict[str, SeatAllocationRow] = {}
        self._lock = threading.Lock()
        self.insert_calls: list[int] = []
        self.update_calls: list[tuple[str, int, int]] = []

    def close(self) -> None:
        pass

    def ensure_schema(self) -> None:
        pass

    def list_sessions(self) -> list[str]:
        with self._lock:
            latest: dict[str, datetime] = {}
            for row in self._rows.values():
                stamp = row.updated_at or datetime.min.replace(tzinfo=UTC)
                if row.session_name not in latest or stamp > latest[row.session_name]:
                    latest[row.session_name] = stamp
        return [name for name, _ in sorted(latest.items(), key=lambda kv: kv[1], reverse=True)]

    def fetch_rows(self, session_name: str) -> list[SeatAllocationRow]:
        session = session_name.strip()
        if not session:
            return []
        with self._lock:
            rows = [r for r in self._rows.values() if r.session_name == session]
        return sorted(rows, key=_fetch_sort_key)

    def replace_session_rows(
        self,
        session_name: str,
        source_file_name: str,
        rows: Sequence[SeatAllocationUploadRow],
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> list[SeatAllocationRow]:
        session = normalize_session_name(session_name)
        with self._lock:
            for row_id in [k for k, r in self._rows.items() if r.session_name == session]:
                del self._rows[row_id]

        if not rows:
            return []

        for chunk in chunked(upload_payload(session, source_file_name, rows), self.batch_size):
            self._insert_chunk(chunk, metrics_callback)

        return self.fetch_rows(session)

    def _insert_chunk(
        self,
        chunk: Sequence[dict[str, object]],
        metrics_callback: Callable[[BatchMetrics], None] | None,
    ) -> None:
        now = datetime.now(UTC)
        with self._lock:
            for item in chunk:
                row_id = str(uuid.uuid4())
                self._rows[row_id] = SeatAllocationRow.from_mapping(
                    {**item, "id": row_id, "created_at": now, "updated_at": now}
                )
            self.insert_calls.append(len(chunk))
        if metrics_callback is not None:
            stamp = now.timestamp()
            metrics_callback(BatchMetrics(len(chunk), 0.0, stamp, stamp))

    def update_row_quantities(self, row_id: str, waiting_hall_quantity: int, token_quantity: int) -> None:
        with self._lock:
            self.update_calls.append((row_id, waiting_hall_quantity, token_quantity))
            row = self._rows.get(row_id)
            if row is None:
                raise PersistenceError(f"row not found: {row_id}")
            data = asdict(row)
            data.update(
                waiting_hall_quantity=waiting_hall_quantity,
                token_quantity=token_quantity,
                updated_by=None,
                updated_at=datetime.now(UTC),
            )
            self._rows[row_id] = SeatAllocationRow.from_mapping(data)
