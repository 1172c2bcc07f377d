from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from form_changelog.models.error_record import ErrorRecord
from form_changelog.models.processing_result import RowFailure

"""Error log generation & buffering.

- JSON Lines, fixed keys (see ErrorRecord)
- one file per run: ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC), created on first flush
- records are buffered and written once per batch
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush appends JSON Lines.

    - ファイルパスは初回アクセスで決定
    - スレッド安全性不要 (シリアル実行)
    """
    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def append_failure(self, source: str, failure: RowFailure) -> None:
        self.append(
            ErrorRecord.create(
                source=source,
                sheet=failure.sheet_name,
                row=failure.row_number,
                error_type=failure.error_type,
                message=failure.reason,
            )
        )

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records. Returns None when nothing was ever buffered."""
        if not self._records:
            return self._file_path
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
