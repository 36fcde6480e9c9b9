from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from ..db.batch_insert import PersistenceError
from ..logging.error_log import ErrorLogBuffer
from ..models.error_record import ErrorRecord
from ..models.processing_result import BulkUpdateResult
from ..models.seat_allocation import SeatAllocationRow
from .view import ViewFilter, display_order, filter_rows

"""Split quantity controller.

Owns the in-memory row set of one session and keeps, for every row,
waiting_hall_quantity + token_quantity == quantity with
0 <= waiting_hall_quantity <= quantity.

Edits are optimistic: memory changes first, the store write follows.

- single-row edits are debounced per row id: a newer edit cancels the older
  timer, so a burst of steps becomes one write
- bulk edits cancel pending timers for their rows and write every row
  concurrently on a thread pool, then report the aggregate outcome
- writes for one row are serialised and carry a sequence number; a write
  older than one already stored is skipped, never applied on top
- failed writes are not retried and not rolled back; the operator is told to
  refresh

Every mutation returns a Future: result True (written), False (skipped as
stale), cancelled (superseded before it ran), or the PersistenceError.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "SplitController",
    "parse_waiting_input",
    "BULK_MODES",
]

BULK_MODES = ("full", "zero")

REFRESH_HINT = "Click refresh to reload latest data."


def parse_waiting_input(raw: Any) -> int:
    """Operator entry -> non-negative integer (invalid or empty -> 0, fractions floored)."""
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return max(0, raw)
    try:
        value = float(str(raw).strip())
    except ValueError:
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, math.floor(value))


@dataclass
class _PendingWrite:
    timer: Any
    future: Future
    seq: int
    waiting: int
    token: int


class SplitController:
    """Per-session split editor with debounced persistence."""

    def __init__(
        self,
        store: Any,
        rows: Iterable[SeatAllocationRow],
        *,
        session_name: str,
        debounce_seconds: float = 0.4,
        max_workers: int = 8,
        error_log: ErrorLogBuffer | None = None,
        on_warning: Callable[[str], None] | None = None,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self._store = store
        self.session_name = session_name
        self._debounce_seconds = debounce_seconds
        self._max_workers = max_workers
        self._error_log = error_log
        self._on_warning = on_warning
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._rows: dict[str, SeatAllocationRow] = {}
        self._order: list[str] = []
        self._pending: dict[str, _PendingWrite] = {}
        self._seq: dict[str, int] = {}
        self._written_seq: dict[str, int] = {}
        self._row_locks: dict[str, threading.Lock] = {}
        self._closed = False
        self.replace_rows(rows)

    # -- state -------------------------------------------------------------

    @property
    def rows(self) -> list[SeatAllocationRow]:
        """Current rows in display order (district -> item -> application number)."""
        with self._lock:
            return [self._rows[row_id] for row_id in self._order]

    def get(self, row_id: str) -> SeatAllocationRow:
        with self._lock:
            try:
                return self._rows[row_id]
            except KeyError:
                raise KeyError(f"unknown row id: {row_id}") from None

    def replace_rows(self, rows: Iterable[SeatAllocationRow]) -> None:
        """Swap in a freshly loaded row set (import, refresh, reset)."""
        ordered = display_order(rows)
        with self._lock:
            self._rows = {r.id: r for r in ordered}
            self._order = [r.id for r in ordered]

    def pending_row_ids(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    # -- single row edits --------------------------------------------------

    def step(self, row_id: str, delta: int) -> Future:
        """W <- clamp(W + delta, 0, Q)."""
        return self._edit(row_id, lambda row: row.waiting_hall_quantity + delta)

    def set_waiting(self, row_id: str, raw_value: Any) -> Future:
        """Direct entry; invalid input counts as 0, then clamped to [0, Q]."""
        waiting = parse_waiting_input(raw_value)
        return self._edit(row_id, lambda row: waiting)

    def _edit(self, row_id: str, compute: Callable[[SeatAllocationRow], int]) -> Future:
        with self._lock:
            self._ensure_open()
            row = self.get(row_id)
            updated = row.with_waiting_hall(compute(row))
            self._rows[row_id] = updated
            return self._schedule(updated)

    def _schedule(self, row: SeatAllocationRow) -> Future:
        self._cancel_pending(row.id)
        seq = self._next_seq(row.id)
        future: Future = Future()
        timer = self._timer_factory(
            self._debounce_seconds,
            self._on_timer,
            args=(row.id, seq),
        )
        timer.daemon = True
        self._pending[row.id] = _PendingWrite(
            timer=timer,
            future=future,
            seq=seq,
            waiting=row.waiting_hall_quantity,
            token=row.token_quantity,
        )
        timer.start()
        return future

    def _cancel_pending(self, row_id: str) -> None:
        pending = self._pending.pop(row_id, None)
        if pending is not None:
            pending.timer.cancel()
            pending.future.cancel()

    def _next_seq(self, row_id: str) -> int:
        seq = self._seq.get(row_id, 0) + 1
        self._seq[row_id] = seq
        return seq

    def _on_timer(self, row_id: str, seq: int) -> None:
        with self._lock:
            pending = self._pending.get(row_id)
            if pending is None or pending.seq != seq:
                # superseded or already flushed
                return
            del self._pending[row_id]
        self._run(row_id, pending)

    def _run(self, row_id: str, pending: _PendingWrite) -> None:
        future = pending.future
        if not future.set_running_or_notify_cancel():
            return
        try:
            written = self._write(row_id, pending.seq, pending.waiting, pending.token)
        except PersistenceError as e:
            self._report_row_failure(row_id, e)
            future.set_exception(e)
        except Exception as e:
            logger.exception("unexpected error saving row=%s", row_id)
            future.set_exception(e)
        else:
            future.set_result(written)

    def _write(self, row_id: str, seq: int, waiting: int, token: int) -> bool:
        with self._lock:
            row_lock = self._row_locks.setdefault(row_id, threading.Lock())
        with row_lock:
            if self._written_seq.get(row_id, 0) > seq:
                logger.debug("row=%s skip stale write seq=%d", row_id, seq)
                return False
            self._store.update_row_quantities(row_id, waiting, token)
            self._written_seq[row_id] = seq
            return True

    def _report_row_failure(self, row_id: str, error: Exception) -> None:
        logger.debug("row=%s save failed: %s", row_id, error)
        self._record("split_edit", row_id, "ROW_UPDATE_FAILED", str(error))
        self._warn(f"Failed to save one row. {REFRESH_HINT}")

    # -- bulk edits --------------------------------------------------------

    def bulk_apply(self, mode: str, row_ids: Iterable[str]) -> BulkUpdateResult:
        """Set W = Q ('full') or W = 0 ('zero') for the given rows and persist concurrently."""
        if mode not in BULK_MODES:
            raise ValueError(f"bulk mode must be one of {BULK_MODES}, got {mode!r}")

        targets: list[tuple[str, int, int, int]] = []
        with self._lock:
            self._ensure_open()
            # 未知の id は何も変更せずに KeyError
            resolved = [self.get(row_id) for row_id in dict.fromkeys(row_ids)]
            for row in resolved:
                row_id = row.id
                updated = row.with_waiting_hall(row.quantity if mode == "full" else 0)
                self._rows[row_id] = updated
                self._cancel_pending(row_id)
                seq = self._next_seq(row_id)
                targets.append((row_id, seq, updated.waiting_hall_quantity, updated.token_quantity))

        if not targets:
            self._warn("No filtered rows to update.")
            return BulkUpdateResult(mode=mode, requested=0)

        succeeded: list[str] = []
        failed: dict[str, str] = {}
        workers = max(1, min(self._max_workers, len(targets)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._write, row_id, seq, waiting, token): row_id
                for row_id, seq, waiting, token in targets
            }
            for fut in as_completed(futures):
                row_id = futures[fut]
                try:
                    fut.result()
                except Exception as e:
                    failed[row_id] = str(e)
                    self._record("bulk_" + mode, row_id, "BULK_UPDATE_FAILED", str(e))
                else:
                    succeeded.append(row_id)

        result = BulkUpdateResult(mode=mode, requested=len(targets), succeeded=succeeded, failed=failed)
        if failed:
            self._warn(f"Bulk update failed for {len(failed)} of {len(targets)} row(s). {REFRESH_HINT}")
        else:
            label = "full quantity" if mode == "full" else "0"
            logger.info("Updated %d filtered row(s): Waiting Hall = %s", len(targets), label)
        return result

    def bulk_apply_filtered(self, mode: str, view_filter: ViewFilter) -> BulkUpdateResult:
        """Bulk update every row visible under view_filter; other rows are untouched."""
        visible = filter_rows(self.rows, view_filter)
        return self.bulk_apply(mode, [r.id for r in visible])

    # -- session level -----------------------------------------------------

    def refresh(self) -> list[SeatAllocationRow]:
        """Write out pending edits, then reload the session from the store."""
        self.flush()
        rows = self._store.fetch_rows(self.session_name)
        self.replace_rows(rows)
        return self.rows

    def reset_split(self) -> list[SeatAllocationRow]:
        """Replace the session with every row set to W = 0, T = Q."""
        with self._lock:
            self._ensure_open()
            for row_id in list(self._pending):
                self._cancel_pending(row_id)
            current = self.rows
        if not current:
            self._warn("No data available to reset.")
            return []
        source = current[0].source_file_name or ""
        upload = [r.with_waiting_hall(0).to_upload_row() for r in current]
        saved = self._store.replace_session_rows(self.session_name, source, upload)
        self.replace_rows(saved)
        logger.info("All split values reset and saved (%d row(s))", len(saved))
        return self.rows

    def flush(self) -> int:
        """Run every pending debounced write now, in the calling thread."""
        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
            for _, item in pending:
                item.timer.cancel()
        for row_id, item in pending:
            self._run(row_id, item)
        return len(pending)

    def close(self, flush: bool = True) -> None:
        """Tear down: flush (or drop) pending writes and release timers."""
        if flush:
            self.flush()
        with self._lock:
            for row_id in list(self._pending):
                self._cancel_pending(row_id)
            self._closed = True

    def __enter__(self) -> SplitController:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # -- helpers -----------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("controller is closed")

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self._on_warning is not None:
            self._on_warning(message)

    def _record(self, source: str, row_id: str, error_type: str, message: str) -> None:
        if self._error_log is not None:
            self._error_log.append(
                ErrorRecord.create(self.session_name, source, row_id, error_type, message)
            )
