from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from form_changelog.models.config_models import (
    DEFAULT_COLLECTION_PLACEHOLDER,
    CompilerConfig,
    DuplicateAttributePolicy,
)
from form_changelog.models.records import Operation

"""Config loader.

Responsibilities:
- Load YAML config/changelog.yml
- Validate against config_schema.json (unknown keys rejected)
- Apply defaults and build CompilerConfig
- Apply environment overrides for output / ledger paths
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/changelog.yml")

ENV_OUTPUT_DIR = "CHANGELOG_OUTPUT_DIR"
ENV_LEDGER_PATH = "CHANGELOG_LEDGER_PATH"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: schema file missing or not JSON, or the data fails validation
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


def _parse_operation(value: str | None) -> Operation | None:
    if value is None:
        return None
    op = Operation.parse(value)
    if op is None:  # schema 通過後なので通常到達しない
        raise ConfigError(f"unknown operation: {value}")
    return op


def build_config(data: dict[str, Any]) -> CompilerConfig:
    """Build CompilerConfig from an already validated mapping."""
    ledger_raw = data.get("ledger_path")
    sheets_raw = data.get("sheets")
    sheet_ops = {
        str(name): _parse_operation(op)
        for name, op in (data.get("sheet_operations") or {}).items()
    }
    default_op = _parse_operation(data["default_operation"]) if "default_operation" in data else Operation.INSERT
    sentinels = {s.strip().upper() for s in data.get("null_sentinels", []) if s.strip()}
    return CompilerConfig(
        output_directory=Path(data["output_directory"]),
        ledger_path=Path(ledger_raw) if ledger_raw else None,
        sheets=list(sheets_raw) if sheets_raw else None,
        sheet_operations=sheet_ops,  # type: ignore[arg-type]
        default_operation=default_op,
        header_row=data.get("header_row", 1),
        strict_dates=data.get("strict_dates", True),
        duplicate_attribute_policy=DuplicateAttributePolicy(
            data.get("duplicate_attribute_policy", DuplicateAttributePolicy.REJECT_ROW.value)
        ),
        null_sentinels=sentinels,
        collection_name=data.get("collection_name", DEFAULT_COLLECTION_PLACEHOLDER),
        changeset_author=data.get("changeset_author", DEFAULT_COLLECTION_PLACEHOLDER),
    )


def load_config(path: Path) -> CompilerConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")

    _validate_config_schema(data)
    return build_config(data)


def apply_env_overrides(cfg: CompilerConfig) -> CompilerConfig:
    """Environment variables take precedence over the YAML paths.

    Call after .env has been loaded so that .env values win as well.
    """
    changes: dict[str, Any] = {}
    output_dir = os.getenv(ENV_OUTPUT_DIR)
    if output_dir:
        changes["output_directory"] = Path(output_dir)
    ledger_path = os.getenv(ENV_LEDGER_PATH)
    if ledger_path:
        changes["ledger_path"] = Path(ledger_path)
    return replace(cfg, **changes) if changes else cfg
