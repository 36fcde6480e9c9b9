from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from hall_split.models.config_models import (
    DEFAULT_MERGE_FIELDS,
    DatabaseConfig,
    HallSplitConfig,
    MergeFieldConfig,
)

"""Config loader.

Responsibilities:
- Load YAML (default config/hall_split.yml)
- Validate against the packaged JSON schema (unknown keys are rejected)
- Apply defaults for every omitted key
"""

DEFAULT_CONFIG_PATH = Path("config/hall_split.yml")
SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: If the schema file is missing or unreadable, or the config
            data fails validation (unknown keys, wrong types, bad values).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _merge_config(raw: dict[str, Any]) -> MergeFieldConfig:
    fields = raw.get("fields", {})
    return MergeFieldConfig(
        quantity=tuple(fields.get("quantity", DEFAULT_MERGE_FIELDS["quantity"])),
        total_value=tuple(fields.get("total_value", DEFAULT_MERGE_FIELDS["total_value"])),
        cost_per_unit=tuple(fields.get("cost_per_unit", DEFAULT_MERGE_FIELDS["cost_per_unit"])),
        comments=tuple(fields.get("comments", DEFAULT_MERGE_FIELDS["comments"])),
        ignored_fields=tuple(raw.get("ignored_fields", ())),
    )


def config_from_dict(data: dict[str, Any]) -> HallSplitConfig:
    """Validate an already parsed mapping and build the config object."""
    _validate_config_schema(data)

    defaults = HallSplitConfig()
    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
        statement_timeout_ms=db_raw.get("statement_timeout_ms"),
    )
    return HallSplitConfig(
        session_name=data.get("session_name", defaults.session_name).strip(),
        batch_size=data.get("batch_size", defaults.batch_size),
        debounce_ms=data.get("debounce_ms", defaults.debounce_ms),
        comments_max_length=data.get("comments_max_length", defaults.comments_max_length),
        bulk_max_workers=data.get("bulk_max_workers", defaults.bulk_max_workers),
        merge=_merge_config(data.get("merge", {})),
        database=db,
    )


def load_config(path: Path) -> HallSplitConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config validation failed: top level must be a mapping, got {type(data).__name__}")
    return config_from_dict(data)
