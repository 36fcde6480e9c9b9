from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any

import pandas as pd
from dotenv import load_dotenv

from hall_split.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from hall_split.csvio.export import (
    audit_export_table,
    default_export_name,
    split_export_table,
    write_csv,
)
from hall_split.csvio.normalizer import ImportPipelineError
from hall_split.db.batch_insert import PersistenceError
from hall_split.db.memory_store import MemorySessionStore
from hall_split.db.session_store import PostgresSessionStore
from hall_split.logging.error_log import ErrorLogBuffer
from hall_split.logging.init import log_summary, setup_logging
from hall_split.models.config_models import DatabaseConfig, HallSplitConfig
from hall_split.services.controller import BULK_MODES, SplitController
from hall_split.services.importer import import_csv_file
from hall_split.services.summary import render_summary_line
from hall_split.services.view import (
    SORT_COLUMNS,
    ViewFilter,
    article_options,
    display_order,
    district_options,
    filter_rows,
    reconcile_filter,
    sort_rows,
    totals,
)

"""CLI entrypoint.

    hall-split [--config PATH] [--session NAME] [--debug] [--dry-run] COMMAND ...

Commands: import, export, sessions, show, set, step, bulk, reset, init-db.
--dry-run swaps PostgreSQL for an in-memory store (nothing survives the
process), which is useful to validate a master CSV before a real import.
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2

SPLIT_EXPORT_PREFIX = "seat-allocation"
AUDIT_EXPORT_PREFIX = "seat-allocation-merged-audit"

PG_ENV_VARS = ("PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、PostgreSQL 接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Build the connection string.

    接続情報の優先順位:
        1. DATABASE_URL / PGDSN (.env で上書き済み)
        2. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. config の database セクション (dsn, 個別値の順)
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN")
    if dsn:
        return dsn
    if db_cfg.dsn and not any(os.getenv(k) for k in PG_ENV_VARS):
        return db_cfg.dsn

    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _load_cfg(path_arg: str | None) -> HallSplitConfig:
    """Explicit --config must exist; a missing default config means built-in defaults."""
    if path_arg is not None:
        return load_config(Path(path_arg))
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return HallSplitConfig()


def _open_store(args: argparse.Namespace, cfg: HallSplitConfig) -> Any:
    if args.dry_run:
        return MemorySessionStore(batch_size=cfg.batch_size)
    return PostgresSessionStore.connect(
        resolve_dsn(cfg.database),
        batch_size=cfg.batch_size,
        maxconn=max(2, cfg.bulk_max_workers + 1),
        statement_timeout_ms=cfg.database.statement_timeout_ms,
    )


def _add_filter_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--search", default="", help="Substring match on application number / beneficiary / item / comments")
    p.add_argument("--type", dest="beneficiary_type", default="all", help="Beneficiary type (district, public, institutions, others, all)")
    p.add_argument("--district", default="all", help="District, or institution name for institutions/others")
    p.add_argument("--item", default="all", help="Requested item")


def _view_filter(args: argparse.Namespace) -> ViewFilter:
    return ViewFilter(
        search=args.search,
        beneficiary_type=args.beneficiary_type,
        district=args.district,
        item=args.item,
    )


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="hall-split", description="Seat allocation waiting hall / token split tool")
    p.add_argument("--config", default=None, help=f"Config YAML (default {DEFAULT_CONFIG_PATH})")
    p.add_argument("--session", default=None, help="Session name (default from config)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--dry-run", action="store_true", help="Use an in-memory store instead of PostgreSQL")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Import a master CSV, replacing the session")
    imp.add_argument("csv", type=Path)
    imp.add_argument("--audit-out", type=Path, default=None, help="Write the merged-rows audit CSV here")

    exp = sub.add_parser("export", help="Export the session as CSV with split columns")
    exp.add_argument("--out", type=Path, default=None)

    sub.add_parser("sessions", help="List session names, most recent first")

    show = sub.add_parser("show", help="Print the filtered / sorted rows and totals")
    _add_filter_args(show)
    show.add_argument("--sort", choices=SORT_COLUMNS, default=None)
    show.add_argument("--desc", action="store_true")
    show.add_argument("--options", action="store_true", help="Also print district / item filter options")

    set_p = sub.add_parser("set", help="Set the waiting hall quantity of one row")
    set_p.add_argument("row_id")
    set_p.add_argument("value")

    step = sub.add_parser("step", help="Add DELTA to the waiting hall quantity of one row")
    step.add_argument("row_id")
    step.add_argument("delta", type=int)

    bulk = sub.add_parser("bulk", help="Waiting hall = full quantity / 0 for every filtered row")
    bulk.add_argument("mode", choices=BULK_MODES)
    _add_filter_args(bulk)

    sub.add_parser("reset", help="Reset every row to waiting hall 0 / token = quantity")
    sub.add_parser("init-db", help="Create the seat_allocation table")
    return p.parse_args(argv)


def _cmd_import(args: argparse.Namespace, cfg: HallSplitConfig, store: Any, error_log: ErrorLogBuffer) -> int:
    logger = setup_logging()
    result = import_csv_file(
        args.csv,
        store=store,
        config=cfg,
        session_name=args.session,
        error_log=error_log,
    )
    if args.audit_out is not None:
        if result.merged_audit_rows:
            headers, values = audit_export_table(result.merged_audit_rows)
            write_csv(args.audit_out, headers, values)
            logger.info(f"merged audit written: {args.audit_out}")
        else:
            logger.info("No merged rows to export.")

    # log_summary が "SUMMARY " を付与するため接頭辞を除去
    log_summary(render_summary_line(result)[len("SUMMARY "):])
    return EXIT_SUCCESS


def _cmd_export(args: argparse.Namespace, session: str, store: Any) -> int:
    logger = setup_logging()
    rows = store.fetch_rows(session)
    if not rows:
        logger.warning("No data to export.")
        return EXIT_SUCCESS
    out = args.out or Path(default_export_name(SPLIT_EXPORT_PREFIX))
    headers, values = split_export_table(rows)
    write_csv(out, headers, values)
    logger.info(f"exported {len(rows)} row(s) to {out}")
    return EXIT_SUCCESS


def _cmd_sessions(store: Any) -> int:
    for name in store.list_sessions():
        print(name)
    return EXIT_SUCCESS


def _cmd_show(args: argparse.Namespace, session: str, store: Any) -> int:
    logger = setup_logging()
    rows = display_order(store.fetch_rows(session))
    requested = _view_filter(args)
    view_filter = reconcile_filter(rows, requested)
    if view_filter != requested:
        logger.info(f"filter reset to {view_filter}")

    visible = sort_rows(filter_rows(rows, view_filter), args.sort, "desc" if args.desc else "asc")
    frame = pd.DataFrame(
        [
            {
                "id": r.id,
                "district": r.district,
                "application_number": r.application_number,
                "beneficiary_name": r.beneficiary_name,
                "requested_item": r.requested_item,
                "quantity": r.quantity,
                "waiting_hall": r.waiting_hall_quantity,
                "token": r.token_quantity,
            }
            for r in visible
        ]
    )
    if not frame.empty:
        print(frame.to_string(index=False))

    shown, overall = totals(visible), totals(rows)
    print(
        f"rows={len(visible)}/{len(rows)} "
        f"quantity={shown.quantity}/{overall.quantity} "
        f"waiting_hall={shown.waiting_hall_quantity}/{overall.waiting_hall_quantity} "
        f"token={shown.token_quantity}/{overall.token_quantity}"
    )
    if args.options:
        print("districts: " + ", ".join(district_options(rows, view_filter)))
        print("items: " + ", ".join(article_options(rows, view_filter)))
    return EXIT_SUCCESS


def _controller(session: str, cfg: HallSplitConfig, store: Any, error_log: ErrorLogBuffer) -> SplitController:
    return SplitController(
        store,
        store.fetch_rows(session),
        session_name=session,
        debounce_seconds=cfg.debounce_seconds,
        max_workers=cfg.bulk_max_workers,
        error_log=error_log,
    )


def _cmd_edit(args: argparse.Namespace, session: str, cfg: HallSplitConfig, store: Any, error_log: ErrorLogBuffer) -> int:
    logger = setup_logging()
    with _controller(session, cfg, store, error_log) as controller:
        if args.command == "set":
            future = controller.set_waiting(args.row_id, args.value)
        else:
            future = controller.step(args.row_id, args.delta)
        row = controller.get(args.row_id)
    # close() で flush 済み
    if future.exception() is not None:
        return EXIT_FATAL
    logger.info(
        f"row={row.id} quantity={row.quantity} waiting_hall={row.waiting_hall_quantity} token={row.token_quantity}"
    )
    return EXIT_SUCCESS


def _cmd_bulk(args: argparse.Namespace, session: str, cfg: HallSplitConfig, store: Any, error_log: ErrorLogBuffer) -> int:
    with _controller(session, cfg, store, error_log) as controller:
        result = controller.bulk_apply_filtered(args.mode, _view_filter(args))
    return EXIT_SUCCESS if result.ok else EXIT_PARTIAL_FAILURE


def _cmd_reset(session: str, cfg: HallSplitConfig, store: Any, error_log: ErrorLogBuffer) -> int:
    with _controller(session, cfg, store, error_log) as controller:
        controller.reset_split()
    return EXIT_SUCCESS


def _dispatch(args: argparse.Namespace, cfg: HallSplitConfig, store: Any, error_log: ErrorLogBuffer) -> int:
    session = (args.session or cfg.session_name).strip()
    if args.command == "import":
        return _cmd_import(args, cfg, store, error_log)
    if args.command == "export":
        return _cmd_export(args, session, store)
    if args.command == "sessions":
        return _cmd_sessions(store)
    if args.command == "show":
        return _cmd_show(args, session, store)
    if args.command in ("set", "step"):
        return _cmd_edit(args, session, cfg, store, error_log)
    if args.command == "bulk":
        return _cmd_bulk(args, session, cfg, store, error_log)
    if args.command == "reset":
        return _cmd_reset(session, cfg, store, error_log)
    store.ensure_schema()
    setup_logging().info("schema applied")
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    # None のときのみシステム引数を読む (テストで main([]) を渡せるように)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)

    try:
        cfg = _load_cfg(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    error_log = ErrorLogBuffer()
    store = None
    try:
        store = _open_store(args, cfg)
        return _dispatch(args, cfg, store, error_log)
    except (ImportPipelineError, PersistenceError) as e:
        logger.error(str(e))
        return EXIT_FATAL
    except KeyError as e:
        logger.error(f"{e.args[0] if e.args else e}")
        return EXIT_FATAL
    except (OSError, ValueError) as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL
    finally:
        if store is not None:
            store.close()
        log_path = error_log.flush()
        if log_path is not None:
            logger.info(f"error log: {log_path}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
