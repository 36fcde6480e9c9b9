from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest
import yaml
from jsonschema.exceptions import ValidationError

"""Config schema contract test: the shipped sample config must validate."""

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_PATH = PROJECT_ROOT / "hall_split" / "config" / "config_schema.json"
SAMPLE_CONFIG = PROJECT_ROOT / "config" / "hall_split.yml"


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_sample_config_is_valid(schema):
    jsonschema.validate(yaml.safe_load(SAMPLE_CONFIG.read_text(encoding="utf-8")), schema)


def test_empty_config_is_valid(schema):
    jsonschema.validate({}, schema)


@pytest.mark.parametrize(
    "config",
    [
        {"unknown_key": 1},
        {"batch_size": 0},
        {"debounce_ms": -1},
        {"merge": {"ignored_fields": "Remarks"}},
        {"database": {"port": "5432"}},
    ],
)
def test_invalid_configs_rejected(schema, config):
    with pytest.raises(ValidationError):
        jsonschema.validate(config, schema)
