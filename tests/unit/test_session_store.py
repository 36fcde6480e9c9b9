from __future__ import annotations

from unittest.mock import MagicMock, patch

import psycopg2
import pytest
from psycopg2.extras import Json

from hall_split.db.batch_insert import BatchMetrics, PersistenceError
from hall_split.db.session_store import (
    INSERT_COLUMNS,
    PostgresSessionStore,
    collect_chunk_stats,
    upload_payload,
)
from hall_split.models.input_record import InputRecord
from hall_split.models.seat_allocation import SeatAllocationUploadRow


def _upload(app: str, qty: int = 2) -> SeatAllocationUploadRow:
    record = InputRecord(app, "Salem", "Chair", qty, "District", "Article", "")
    master = {"Application Number": app, "Quantity": str(qty)}
    return SeatAllocationUploadRow.from_record(record, master, list(master))


def _pool_with_cursor():
    pool = MagicMock()
    conn = MagicMock()
    cur = MagicMock()
    pool.getconn.return_value = conn
    conn.cursor.return_value.__enter__.return_value = cur
    return pool, conn, cur


class FakeProgress:
    def __init__(self, total, sink):
        self.total = total
        self.sink = sink

    def advance(self, rows=0):
        self.sink.append(rows)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture()
def captured_inserts(monkeypatch):
    import hall_split.db.batch_insert as bi
    calls: list[tuple[str, list]] = []

    def fake_execute_values(cursor, sql, rows, page_size=1000, template=None):
        calls.append((sql, rows))
    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return calls


def test_replace_session_rows_deletes_then_inserts_chunks(captured_inserts):
    pool, conn, cur = _pool_with_cursor()
    cur.fetchall.return_value = []
    ticks: list[int] = []
    store = PostgresSessionStore(
        pool, batch_size=2, progress_factory=lambda total, description: FakeProgress(total, ticks)
    )

    store.replace_session_rows(" s1 ", "master.csv", [_upload("A1"), _upload("A2"), _upload("A3")])

    first_sql, first_params = cur.execute.call_args_list[0].args
    assert first_sql.startswith("DELETE FROM seat_allocation")
    assert first_params == ("s1",)
    last_sql, last_params = cur.execute.call_args_list[-1].args
    assert "ORDER BY sort_order ASC NULLS LAST" in last_sql
    assert last_params == ("s1",)

    assert [len(rows) for _, rows in captured_inserts] == [2, 1]
    values = captured_inserts[0][1][0]
    assert values[INSERT_COLUMNS.index("session_name")] == "s1"
    assert values[INSERT_COLUMNS.index("sort_order")] == 1
    assert isinstance(values[INSERT_COLUMNS.index("master_row")], Json)
    assert ticks == [2, 3]
    # delete + 2 chunks + fetch = 4 transactions
    assert pool.getconn.call_count == 4
    assert pool.putconn.call_count == 4


def test_replace_failure_in_later_chunk_propagates(monkeypatch):
    import hall_split.db.batch_insert as bi
    attempts: list[int] = []

    def flaky(cursor, sql, rows, page_size=1000, template=None):
        attempts.append(len(rows))
        if len(attempts) == 2:
            raise RuntimeError("payload too large")
    monkeypatch.setattr(bi, "execute_values", flaky)

    pool, conn, cur = _pool_with_cursor()
    store = PostgresSessionStore(pool, batch_size=1, progress_factory=lambda total, description: FakeProgress(total, []))
    with pytest.raises(PersistenceError, match="payload too large"):
        store.replace_session_rows("s1", "m.csv", [_upload("A1"), _upload("A2"), _upload("A3")])
    assert attempts == [1, 1]
    assert pool.putconn.call_count == pool.getconn.call_count


def test_replace_with_no_rows_only_deletes(captured_inserts):
    pool, conn, cur = _pool_with_cursor()
    store = PostgresSessionStore(pool)
    assert store.replace_session_rows("s1", "m.csv", []) == []
    assert cur.execute.call_count == 1
    assert captured_inserts == []


def test_fetch_rows_maps_records():
    pool, conn, cur = _pool_with_cursor()
    cur.fetchall.return_value = [
        {
            "id": "6f1c",
            "session_name": "s1",
            "source_file_name": "m.csv",
            "application_number": "A1",
            "beneficiary_name": "Salem",
            "district": "Salem",
            "requested_item": "Chair",
            "quantity": 3,
            "waiting_hall_quantity": 1,
            "token_quantity": 2,
            "beneficiary_type": "District",
            "item_type": None,
            "comments": None,
            "master_row": {"Quantity": "3"},
            "master_headers": ["Quantity"],
            "sort_order": 1,
        }
    ]
    rows = PostgresSessionStore(pool).fetch_rows("s1")
    assert len(rows) == 1
    row = rows[0]
    assert (row.quantity, row.waiting_hall_quantity, row.token_quantity) == (3, 1, 2)
    assert row.item_type == "" and row.comments == ""
    assert row.master_row == {"Quantity": "3"}


def test_fetch_rows_blank_session_skips_database():
    pool, _, _ = _pool_with_cursor()
    assert PostgresSessionStore(pool).fetch_rows("  ") == []
    pool.getconn.assert_not_called()


def test_update_row_quantities():
    pool, conn, cur = _pool_with_cursor()
    cur.rowcount = 1
    PostgresSessionStore(pool).update_row_quantities("id-1", 2, 3)
    sql, params = cur.execute.call_args.args
    assert sql.startswith("UPDATE seat_allocation SET waiting_hall_quantity = %s, token_quantity = %s")
    assert "updated_at = now()" in sql
    assert params == (2, 3, "id-1")


def test_update_missing_row_raises():
    pool, conn, cur = _pool_with_cursor()
    cur.rowcount = 0
    with pytest.raises(PersistenceError, match="row not found: id-1"):
        PostgresSessionStore(pool).update_row_quantities("id-1", 0, 1)


def test_driver_errors_are_wrapped():
    pool, conn, cur = _pool_with_cursor()
    cur.execute.side_effect = psycopg2.OperationalError("server closed the connection")
    with pytest.raises(PersistenceError, match="server closed"):
        PostgresSessionStore(pool).update_row_quantities("id-1", 0, 1)
    pool.putconn.assert_called_once_with(conn)


def test_pool_exhaustion_is_wrapped():
    pool = MagicMock()
    pool.getconn.side_effect = psycopg2.pool.PoolError("connection pool exhausted")
    with pytest.raises(PersistenceError, match="no connection available"):
        PostgresSessionStore(pool).list_sessions()


def test_list_sessions():
    pool, conn, cur = _pool_with_cursor()
    cur.fetchall.return_value = [{"session_name": "b"}, {"session_name": "a"}, {"session_name": None}]
    assert PostgresSessionStore(pool).list_sessions() == ["b", "a"]
    assert "ORDER BY last_updated DESC" in cur.execute.call_args.args[0]


def test_ensure_schema_runs_ddl():
    pool, conn, cur = _pool_with_cursor()
    PostgresSessionStore(pool).ensure_schema()
    ddl = cur.execute.call_args.args[0]
    assert "CREATE TABLE IF NOT EXISTS seat_allocation" in ddl


def test_connect_passes_statement_timeout():
    with patch("hall_split.db.session_store.ThreadedConnectionPool") as mock_pool:
        store = PostgresSessionStore.connect("dbname=x", batch_size=50, maxconn=5, statement_timeout_ms=5000)
    mock_pool.assert_called_once_with(1, 5, "dbname=x", options="-c statement_timeout=5000")
    assert store.batch_size == 50


def test_connect_failure():
    with patch(
        "hall_split.db.session_store.ThreadedConnectionPool",
        side_effect=psycopg2.OperationalError("connection refused"),
    ):
        with pytest.raises(PersistenceError, match="connect failed"):
            PostgresSessionStore.connect("dbname=x")


def test_upload_payload_fills_sort_order_and_nulls():
    payload = upload_payload("s1", "m.csv", [_upload("A1"), _upload("A2")])
    assert [p["sort_order"] for p in payload] == [1, 2]
    assert payload[0]["comments"] is None
    assert payload[0]["master_headers"] == ["Application Number", "Quantity"]


def test_collect_chunk_stats():
    accumulator, callback = collect_chunk_stats()
    callback(BatchMetrics(batch_size=2, elapsed_seconds=0.5, start_time=0.0, end_time=0.5))
    assert accumulator.get_stats() == (1, 0.5, 0.5)
