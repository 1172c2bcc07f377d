from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .records import Operation

"""Config dataclasses for the changelog compiler.

These are the typed form of config/changelog.yml after schema validation;
the loader in form_changelog.config.loader builds them.
"""

DEFAULT_COLLECTION_PLACEHOLDER = "$(collection.name)"
DEFAULT_LEDGER_FILENAME = "processed-keys.log"


class DuplicateAttributePolicy(Enum):
    """What to do with a row that defines an attribute twice.

    - REJECT_ROW: report every conflict and exclude the row
    - DROP_ATTRIBUTE: report every conflict, keep the row without those attributes
    """
    REJECT_ROW = "reject_row"
    DROP_ATTRIBUTE = "drop_attribute"


@dataclass(frozen=True)
class CompilerConfig:
    """Root configuration object for a compile run."""
    output_directory: Path  # 生成 XML の出力先
    ledger_path: Path | None = None  # None -> output_directory の隣
    sheets: list[str] | None = None  # 処理対象シート (None なら全シート)
    sheet_operations: dict[str, Operation] = field(default_factory=dict)
    default_operation: Operation | None = Operation.INSERT  # None -> operation 不明行は拒否
    header_row: int = 1  # 1-based
    strict_dates: bool = True
    duplicate_attribute_policy: DuplicateAttributePolicy = DuplicateAttributePolicy.REJECT_ROW
    null_sentinels: set[str] = field(default_factory=set)  # 大文字化済
    collection_name: str = DEFAULT_COLLECTION_PLACEHOLDER
    changeset_author: str = DEFAULT_COLLECTION_PLACEHOLDER

    @property
    def resolved_ledger_path(self) -> Path:
        """Ledger file location; defaults to a file alongside the output directory."""
        if self.ledger_path is not None:
            return self.ledger_path
        return self.output_directory.parent / DEFAULT_LEDGER_FILENAME

    def operation_for_sheet(self, sheet_name: str) -> Operation | None:
        """Operation implied by the sheet a row lives on (case-insensitive name match)."""
        wanted = sheet_name.strip().lower()
        for name, op in self.sheet_operations.items():
            if name.strip().lower() == wanted:
                return op
        return None
