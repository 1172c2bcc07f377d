from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Validated record models for the changelog compiler.

A spreadsheet row that passes normalization becomes exactly one of two record
shapes, discriminated by ``meta.operation``:

- InsertRecord: full form definition (every required attribute present)
- UpdateRecord: form number + the attributes to ``$set``

Both are frozen; the grouping engine only ever moves them between groups.
"""

__all__ = [
    "Operation",
    "EntityKey",
    "SortKey",
    "RecordMeta",
    "InsertRecord",
    "UpdateRecord",
    "ValidatedRecord",
]


class Operation(Enum):
    """Changelog operation requested for a row."""
    INSERT = "insert"
    UPDATE = "update"

    @classmethod
    def parse(cls, value: str) -> Operation | None:
        """Case-insensitive lookup. Returns None for unrecognized values."""
        normalized = value.strip().lower()
        for op in cls:
            if op.value == normalized:
                return op
        return None


@dataclass(frozen=True)
class EntityKey:
    """Identity of one logical form record across runs.

    The string form is what the idempotency ledger stores, one per line.
    """
    output_file_key: str
    record_number: str

    def __str__(self) -> str:
        return f"{self.output_file_key}-{self.record_number}"


@dataclass(frozen=True)
class SortKey:
    """8-digit sort key split into its three hierarchy levels (2/3/3 digits)."""
    level1: str
    level2: str
    level3: str

    def as_dict(self) -> dict[str, str]:
        return {"LEVEL1": self.level1, "LEVEL2": self.level2, "LEVEL3": self.level3}


@dataclass(frozen=True)
class RecordMeta:
    operation: Operation
    output_file_key: str  # fileName 列
    changeset_id: str  # changeSetId 列


@dataclass(frozen=True)
class InsertRecord:
    """Complete form definition destined for an insert changeset."""
    meta: RecordMeta
    form_nbr: str
    form_name: str
    effective_date: str
    expiration_date: str
    rcp_type: list[str]
    srt_key: SortKey
    edition_dt: str | None = None
    lob: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)  # 動的列
    row_number: int = -1
    sheet_name: str = ""

    @property
    def operation(self) -> Operation:
        return self.meta.operation

    @property
    def entity_key(self) -> EntityKey:
        return EntityKey(self.meta.output_file_key, self.form_nbr)


@dataclass(frozen=True)
class UpdateRecord:
    """Partial update of an existing form, keyed by form number."""
    meta: RecordMeta
    form_nbr: str
    attributes_to_update: dict[str, Any]
    row_number: int = -1
    sheet_name: str = ""

    @property
    def operation(self) -> Operation:
        return self.meta.operation

    @property
    def entity_key(self) -> EntityKey:
        return EntityKey(self.meta.output_file_key, self.form_nbr)


ValidatedRecord = InsertRecord | UpdateRecord
