from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from ..excel.reader import normalize_sheet, read_workbook
from ..ledger.processed_keys import FileLedger, IdempotencyLedger
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import CompilerConfig
from ..models.records import ValidatedRecord
from ..models.processing_result import (
    BatchResult,
    GeneratedDocument,
    ParseResult,
    RowFailure,
    SkippedRow,
)
from .changelog_writer import (
    ERR_OUTPUT_COLLISION,
    ChangelogWriter,
    find_output_collisions,
    output_filename,
)
from .duplicate_guard import DuplicateGuard
from .grouping import ChangesetGroup, ChangesetGrouper
from .normalizer import RowNormalizer
from .progress import ProgressTracker

"""Compile orchestration: workbook -> validated records -> changelog files.

Flow per batch (strictly sequential, one row at a time):

    read workbook -> RowNormalizer (ledger lookup) -> DuplicateGuard
        -> ChangesetGrouper -> ChangelogWriter (ledger append)

Row problems are collected, never raised. StructuralError (unreadable
workbook), DocumentWriteError and LedgerError propagate to the caller;
documents written before a failure stay written and stay in the ledger.

Two groups that would write the same file name are never both written: the
first keeps the file, the rows of the other are reported as
OUTPUT_FILE_COLLISION failures.
"""

logger = logging.getLogger(__name__)


def default_ledger(config: CompilerConfig) -> IdempotencyLedger:
    return FileLedger(config.resolved_ledger_path)


def parse_workbook(
    path: Path,
    config: CompilerConfig,
    ledger: IdempotencyLedger,
    guard: DuplicateGuard | None = None,
) -> ParseResult:
    """Normalize and de-duplicate every row of a workbook.

    Raises:
        StructuralError: workbook or worksheet missing, unreadable, header missing
    """
    raw_sheets = read_workbook(path, target_sheets=config.sheets)
    # シート単位の構造チェックは行処理より前に全シート分実施
    sheets = [
        normalize_sheet(df, name, header_row=config.header_row, null_sentinels=config.null_sentinels)
        for name, df in raw_sheets.items()
    ]

    normalizer = RowNormalizer(config, ledger)
    if guard is None:
        guard = DuplicateGuard(config.duplicate_attribute_policy)
    result = ParseResult()

    for sheet in sheets:
        logger.debug("sheet=%s columns=%s rows=%d", sheet.sheet_name, sheet.columns, len(sheet.rows))
        for row in sheet.rows:
            outcome = normalizer.normalize(row)
            if isinstance(outcome, RowFailure):
                result.errors.append(outcome)
                continue
            if isinstance(outcome, SkippedRow):
                result.skipped.append(outcome)
                continue
            guarded = guard.inspect(row, outcome)
            result.errors.extend(guarded.failures)
            if guarded.record is not None:
                result.records.append(guarded.record)

    for failure in result.errors:
        logger.warning("row=%d sheet=%s %s", failure.row_number, failure.sheet_name, failure.reason)
    for skipped in result.skipped:
        logger.info("row=%d sheet=%s skipped: %s", skipped.row_number, skipped.sheet_name, skipped.reason)
    logger.info(
        "parsed %s accepted=%d failed=%d skipped=%d",
        path.name,
        len(result.records),
        len(result.errors),
        len(result.skipped),
    )
    return result


def compile_workbook(
    path: Path,
    config: CompilerConfig,
    ledger: IdempotencyLedger | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> BatchResult:
    """Compile one workbook into changelog documents.

    Args:
        path: spreadsheet to compile
        config: compiler configuration
        ledger: idempotency ledger (default: FileLedger at config.resolved_ledger_path)
        error_log: buffer receiving row failures (default: new ErrorLogBuffer)

    Returns:
        BatchResult with accepted / failed / skipped rows and written documents

    Raises:
        StructuralError, DocumentWriteError, LedgerError
    """
    start_time = datetime.now(UTC)
    if ledger is None:
        ledger = default_ledger(config)
    if error_log is None:
        error_log = ErrorLogBuffer()

    parsed = parse_workbook(path, config, ledger)

    grouper = ChangesetGrouper(config.duplicate_attribute_policy)
    grouper.add_records(parsed.records)
    for dropped in grouper.dropped:
        logger.info(
            "row=%d sheet=%s update for %s dropped (inserted in same batch, empty or already merged)",
            dropped.row_number,
            dropped.sheet_name,
            dropped.entity_key,
        )

    not_grouped = {_row_ref(r) for r in (*grouper.dropped, *grouper.rejected)}
    groups, collision_failures = _exclude_colliding_groups(
        grouper.groups(), [r for r in parsed.records if _row_ref(r) not in not_grouped]
    )
    failures = [*grouper.failures, *collision_failures]
    for failure in failures:
        logger.warning("row=%d sheet=%s %s", failure.row_number, failure.sheet_name, failure.reason)
    errors = [*parsed.errors, *failures]
    for failure in errors:
        error_log.append_failure(path.name, failure)

    # 書き出されない行は accepted に数えない
    refused = {_row_ref(r) for r in grouper.rejected}
    refused |= {(f.sheet_name, f.row_number) for f in collision_failures}
    accepted = [r for r in parsed.records if _row_ref(r) not in refused]

    writer = ChangelogWriter(
        config.output_directory,
        ledger,
        collection_name=config.collection_name,
        author=config.changeset_author,
    )
    documents: list[GeneratedDocument] = []
    try:
        with ProgressTracker(len(groups)) as progress:
            for group in groups:
                progress.start_group(output_filename(group))
                doc = writer.write(group)
                documents.append(doc)
                progress.set_postfix(records=doc.record_count)
                progress.finish_group()
    finally:
        error_log_path = _flush_error_log(error_log)

    end_time = datetime.now(UTC)
    return BatchResult(
        records=accepted,
        errors=errors,
        skipped=parsed.skipped,
        dropped=list(grouper.dropped),
        documents=documents,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=(end_time - start_time).total_seconds(),
        error_log_path=error_log_path,
    )


def _flush_error_log(error_log: ErrorLogBuffer) -> Path | None:
    # error log の書き込み失敗で処理全体は失敗させない
    try:
        return error_log.flush()
    except OSError as e:
        logger.warning("error log flush failed: %s", e)
        return None


def _row_ref(record: ValidatedRecord) -> tuple[str, int]:
    return record.sheet_name, record.row_number


def _exclude_colliding_groups(
    groups: list[ChangesetGroup], records: list[ValidatedRecord]
) -> tuple[list[ChangesetGroup], list[RowFailure]]:
    """Drop groups whose output file name is taken; fail every row they carry."""
    colliding = find_output_collisions(groups)
    if not colliding:
        return groups, []
    failures: list[RowFailure] = []
    for group in colliding:
        file_name = output_filename(group)
        for record in records:
            if record.operation is group.operation and record.meta.output_file_key == group.output_file_key:
                failures.append(
                    RowFailure(
                        row_number=record.row_number,
                        reason=(
                            f'Output file "{file_name}" for fileName "{group.output_file_key}" '
                            "is already used by another fileName"
                        ),
                        sheet_name=record.sheet_name,
                        error_type=ERR_OUTPUT_COLLISION,
                    )
                )
    colliding_ids = {id(g) for g in colliding}
    return [g for g in groups if id(g) not in colliding_ids], failures
