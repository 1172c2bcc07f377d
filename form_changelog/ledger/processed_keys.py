from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

"""Idempotency ledger: which entity keys have already been emitted.

The file-backed ledger is a plain append-only text file, one key per line.
Lookups are "any line equals the key" over a full read; entries are never
rewritten or deduplicated, so marking the same key twice is harmless.

Only the changelog writer marks keys, and only after a document has been
written successfully.
"""

__all__ = [
    "IdempotencyLedger",
    "FileLedger",
    "MemoryLedger",
    "LedgerError",
]


class LedgerError(Exception):
    """Raised when the ledger cannot be read or appended to."""


class IdempotencyLedger(ABC):
    """Contract shared by every ledger backend."""

    @abstractmethod
    def has_been_processed(self, key: str) -> bool:
        ...

    @abstractmethod
    def mark_processed(self, key: str) -> None:
        ...


class FileLedger(IdempotencyLedger):
    """Ledger persisted as ``key\\n`` lines in a text file.

    The file (and its parent directories) is created on first use, so the
    ledger can be queried before anything was ever written.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _ensure_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

    def has_been_processed(self, key: str) -> bool:
        try:
            self._ensure_file()
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise LedgerError(f"ledger read failed ({self.path}): {e}") from e
        return key in content.split("\n")

    def mark_processed(self, key: str) -> None:
        try:
            self._ensure_file()
            with self.path.open("a", encoding="utf-8") as f:
                f.write(f"{key}\n")
        except OSError as e:
            raise LedgerError(f"ledger append failed ({self.path}): {e}") from e

    def __repr__(self) -> str:  # pragma: no cover (trivial)
        return f"FileLedger({self.path!s})"


class MemoryLedger(IdempotencyLedger):
    """Non-persistent ledger with the same append-only semantics."""

    def __init__(self, keys: list[str] | None = None) -> None:
        self.entries: list[str] = list(keys or [])

    def has_been_processed(self, key: str) -> bool:
        return key in self.entries

    def mark_processed(self, key: str) -> None:
        self.entries.append(key)
