# Shared pytest fixtures
from __future__ import annotations
import tempfile
from pathlib import Path
from typing import Any

import pytest

from hall_split.db.memory_store import MemorySessionStore
from hall_split.logging.init import reset_logging

SAMPLE_HEADER = (
    "Application Number,Beneficiary Name,Requested Item,Quantity,Beneficiary Type,"
    "Item Type,Comments,Supplier Name,Total Value,Cost Per Unit"
)

SAMPLE_CSV = (
    SAMPLE_HEADER + "\n"
    "APP-001,Chennai,Sewing Machine,3,District,Article,first,Supplier A,3000,1000\n"
    "APP-002,St. Mary's Home,Laptop,1,Institutions,Article,,Supplier B,50000,50000\n"
    "APP-001,Chennai,Sewing Machine,5,District,Article,second,Supplier A,5000,1000\n"
    'APP-003,Ravi Kumar,"Wheel chair, folding",2,Public,Aid,"needs ""large"" size",Supplier C,8000,4000\n'
    ",,,,,,,,,\n"
)


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """session_name: phase2
batch_size: 2
debounce_ms: 50
comments_max_length: 100
bulk_max_workers: 4
merge:
  ignored_fields: [Remarks]
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "hall_split.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def sample_csv_text() -> str:
    return SAMPLE_CSV


@pytest.fixture()
def sample_csv_file(temp_workdir: Path, sample_csv_text: str) -> Path:
    f = temp_workdir / "data" / "master.csv"
    f.write_text(sample_csv_text, encoding="utf-8")
    return f


@pytest.fixture()
def memory_store() -> MemorySessionStore:
    return MemorySessionStore(batch_size=2)


class ManualTimer:
    """threading.Timer stand-in: nothing runs until fire() is called."""

    def __init__(self, interval: float, function: Any, args: Any = None, kwargs: Any = None) -> None:
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.started and not self.cancelled:
            self.function(*self.args, **self.kwargs)


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function: Any, args: Any = None, kwargs: Any = None) -> ManualTimer:
        timer = ManualTimer(interval, function, args=args, kwargs=kwargs)
        self.timers.append(timer)
        return timer

    def fire_all(self) -> None:
        for timer in list(self.timers):
            timer.fire()

    @property
    def live(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]


@pytest.fixture()
def manual_timers() -> ManualTimerFactory:
    return ManualTimerFactory()
