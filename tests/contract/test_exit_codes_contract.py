from __future__ import annotations

from pathlib import Path

import hall_split.cli.__main__ as cli
from hall_split.db.batch_insert import PersistenceError
from hall_split.db.memory_store import MemorySessionStore
from hall_split.services.importer import import_csv_text

"""Exit code contract: 0 success, 1 fatal, 2 partial bulk failure."""


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    # 明示指定した config が無い → exit 1
    code = cli.main(["--config", "config/hall_split.yml", "sessions"])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_invalid_config(temp_workdir: Path, capsys):
    (temp_workdir / "config" / "hall_split.yml").write_text("batch_size: 0\n", encoding="utf-8")
    code = cli.main(["--dry-run", "sessions"])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_import_success(sample_csv_file: Path, write_config, capsys):
    code = cli.main(["--dry-run", "import", str(sample_csv_file)])
    assert code == 0
    assert "SUMMARY session=phase2" in capsys.readouterr().out


def test_exit_code_merge_violation(temp_workdir: Path, capsys):
    csv_path = temp_workdir / "data" / "conflict.csv"
    csv_path.write_text(
        "Application Number,Beneficiary Name,Requested Item,Quantity,Beneficiary Type,Item Type,Comments,Supplier Name\n"
        "A1,Salem,Chair,1,District,Article,,Acme\n"
        "A1,Salem,Chair,2,District,Article,,Globex\n",
        encoding="utf-8",
    )
    code = cli.main(["--dry-run", "import", str(csv_path)])
    out = capsys.readouterr().out
    assert code == 1
    assert "Merge audit failed. Unexpected master column change(s): Supplier Name" in out
    assert "SUMMARY" not in out


def test_exit_code_partial_bulk_failure(temp_workdir: Path, sample_csv_text: str, monkeypatch):
    store = MemorySessionStore()
    import_csv_text(sample_csv_text, source_file_name="master.csv", store=store, session_name="default")
    monkeypatch.setattr(cli, "_open_store", lambda args, cfg: store)

    def always_fail(row_id, waiting, token):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(store, "update_row_quantities", always_fail)
    assert cli.main(["bulk", "zero"]) == 2
