from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from form_changelog.config.loader import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    apply_env_overrides,
    load_config,
)
from form_changelog.excel.reader import StructuralError, describe_value, normalize_sheet, read_workbook
from form_changelog.ledger.processed_keys import LedgerError
from form_changelog.logging.init import log_summary, setup_logging
from form_changelog.services.changelog_writer import DocumentWriteError
from form_changelog.services.pipeline import compile_workbook
from form_changelog.services.summary import render_summary_line

"""CLI entrypoint.

Flow:
- load .env (overrides existing environment variables)
- load config/changelog.yml (or --config), apply env path overrides
- compile the given workbook, print per-row problems and the SUMMARY line

Exit codes: 0 every row accepted or skipped, 2 some rows failed, 1 fatal.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv; .env values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="form-changelog",
        description="Spreadsheet -> Liquibase MongoDB changelog compiler",
    )
    p.add_argument("workbook", type=Path, help="Spreadsheet (.xlsx) to compile")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config YAML path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print sheet headers & first rows then exit")
    return p.parse_args(argv)


def _inspect_data(workbook: Path, header_row: int) -> int:
    try:
        raw = read_workbook(workbook)
    except StructuralError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    print(f"FILE: {workbook.name}")
    for sname, df in raw.items():
        try:
            sd = normalize_sheet(df, sname, header_row=header_row)
        except StructuralError as e:
            print(f"  SHEET: {sname} error={e}")
            continue
        print(f"  SHEET: {sname} cols={sd.columns}")
        sample = [
            {k: describe_value(v) for k, v in r.as_dict().items()} for r in sd.rows[:3]
        ]
        print("    sample_rows=", json.dumps(sample, ensure_ascii=False, default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみシステム引数を読む ([] はテストからの明示的な空引数)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        setup_logging(logging.DEBUG)
        logger.debug("debug mode enabled")

    try:
        cfg = apply_env_overrides(load_config(args.config))
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(args.workbook, cfg.header_row)

    logger.info(f"Compiling {args.workbook} -> {cfg.output_directory}")
    try:
        result = compile_workbook(args.workbook, cfg)
    except StructuralError as e:
        logger.error(f"workbook: {e}")
        return EXIT_FATAL
    except DocumentWriteError as e:
        logger.error(f"write: {e}")
        return EXIT_FATAL
    except LedgerError as e:
        logger.error(f"ledger: {e}")
        return EXIT_FATAL

    for doc in result.documents:
        logger.info(f"document={doc.path} changeset={doc.changeset_id} records={doc.record_count}")
    if result.error_log_path is not None and result.errors:
        logger.info(f"error log: {result.error_log_path}")

    summary_line = render_summary_line(result)
    log_summary(summary_line.removeprefix("SUMMARY "))

    if result.errors:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL
