from __future__ import annotations
import pytest
from pathlib import Path
from form_changelog.config.loader import (
    ConfigError,
    apply_env_overrides,
    build_config,
    load_config,
)
from form_changelog.models.config_models import DuplicateAttributePolicy
from form_changelog.models.records import Operation


def test_load_config_success(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.output_directory == Path("./output")
    assert cfg.resolved_ledger_path == Path("./processed-keys.log")
    assert cfg.operation_for_sheet("inserts") is Operation.INSERT
    assert cfg.operation_for_sheet("Updates") is Operation.UPDATE
    assert cfg.operation_for_sheet("Other") is None
    assert cfg.default_operation is Operation.INSERT
    assert cfg.null_sentinels == {"N/A"}
    assert cfg.strict_dates is True
    assert cfg.duplicate_attribute_policy is DuplicateAttributePolicy.REJECT_ROW


def test_build_config_defaults():
    cfg = build_config({"output_directory": "out/changelogs"})
    assert cfg.sheets is None
    assert cfg.header_row == 1
    assert cfg.default_operation is Operation.INSERT
    assert cfg.collection_name == "$(collection.name)"
    # 台帳は出力ディレクトリの隣
    assert cfg.resolved_ledger_path == Path("out/processed-keys.log")


def test_build_config_explicit_values():
    cfg = build_config(
        {
            "output_directory": "out",
            "sheets": ["Forms"],
            "default_operation": None,
            "header_row": 2,
            "strict_dates": False,
            "duplicate_attribute_policy": "drop_attribute",
            "null_sentinels": [" null ", ""],
            "collection_name": "forms",
            "changeset_author": "importer",
        }
    )
    assert cfg.sheets == ["Forms"]
    assert cfg.default_operation is None
    assert cfg.header_row == 2
    assert cfg.strict_dates is False
    assert cfg.duplicate_attribute_policy is DuplicateAttributePolicy.DROP_ATTRIBUTE
    assert cfg.null_sentinels == {"NULL"}
    assert (cfg.collection_name, cfg.changeset_author) == ("forms", "importer")


def test_load_config_missing_file(temp_workdir: Path):
    missing = temp_workdir / "config" / "not_exists.yml"
    with pytest.raises(ConfigError, match="not found"):
        load_config(missing)


def test_load_config_missing_required(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace("output_directory: ./output\n", "")
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(write_config)
    assert "config validation failed" in str(e.value) and "required property" in str(e.value)


def test_load_config_extra_field(write_config: Path):
    text = write_config.read_text(encoding="utf-8") + "\nextra_field: not_allowed\n"
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(write_config)


@pytest.mark.parametrize(
    "extra",
    [
        "header_row: 0\n",
        "duplicate_attribute_policy: ignore\n",
        "sheet_operations:\n  Forms: upsert\n",
    ],
)
def test_load_config_invalid_values(temp_workdir: Path, extra: str):
    cfg_path = temp_workdir / "config" / "changelog.yml"
    cfg_path.write_text("output_directory: ./output\n" + extra, encoding="utf-8")
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(cfg_path)


def test_load_config_invalid_yaml(temp_workdir: Path):
    cfg_path = temp_workdir / "config" / "changelog.yml"
    cfg_path.write_text("output_directory: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid yaml"):
        load_config(cfg_path)


def test_load_config_top_level_not_mapping(temp_workdir: Path):
    cfg_path = temp_workdir / "config" / "changelog.yml"
    cfg_path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(cfg_path)


def test_apply_env_overrides(write_config: Path, monkeypatch):
    monkeypatch.setenv("CHANGELOG_OUTPUT_DIR", "/tmp/elsewhere")
    monkeypatch.setenv("CHANGELOG_LEDGER_PATH", "/tmp/ledger.log")
    cfg = apply_env_overrides(load_config(write_config))
    assert cfg.output_directory == Path("/tmp/elsewhere")
    assert cfg.resolved_ledger_path == Path("/tmp/ledger.log")


def test_apply_env_overrides_noop(write_config: Path):
    cfg = load_config(write_config)
    assert apply_env_overrides(cfg) is cfg
