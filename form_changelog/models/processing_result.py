from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .records import Operation, ValidatedRecord

"""Processing result models for the changelog compiler.

Row outcomes (failed / skipped) are plain values collected during a batch;
nothing in here is raised. ParseResult is what the upload collaborator gets
back after normalization, BatchResult adds the generated documents.
"""


@dataclass(frozen=True)
class RowFailure:
    """A row rejected by validation or by the duplicate guard."""
    row_number: int
    reason: str
    sheet_name: str = ""
    error_type: str = "ROW_VALIDATION_ERROR"


@dataclass(frozen=True)
class SkippedRow:
    """A row whose record was already emitted by a previous run (not an error)."""
    row_number: int
    reason: str
    sheet_name: str = ""


@dataclass(frozen=True)
class GeneratedDocument:
    """One changelog file written to the output directory."""
    path: Path
    changeset_id: str  # "{changeSetId}_{operation}"
    operation: Operation
    record_count: int


@dataclass
class ParseResult:
    """Outcome of normalizing every row of a workbook."""
    records: list[ValidatedRecord] = field(default_factory=list)
    errors: list[RowFailure] = field(default_factory=list)
    skipped: list[SkippedRow] = field(default_factory=list)


@dataclass(frozen=True)
class BatchResult:
    """Aggregated results of one compile run.

    accepted / failed / skipped are always reported so that a partially bad
    workbook is never silently incomplete.
    """
    records: list[ValidatedRecord]
    errors: list[RowFailure]
    skipped: list[SkippedRow]
    dropped: list[ValidatedRecord]  # grouping 段階で除外された update
    documents: list[GeneratedDocument]
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    error_log_path: Path | None = None

    @property
    def accepted_count(self) -> int:
        return len(self.records)

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)
