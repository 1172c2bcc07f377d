"""Domain models for the spreadsheet -> Liquibase changelog compiler.

This package contains all domain model classes used throughout the application.
"""

from .config_models import CompilerConfig, DuplicateAttributePolicy
from .processing_result import (
    BatchResult,
    GeneratedDocument,
    ParseResult,
    RowFailure,
    SkippedRow,
)
from .records import (
    EntityKey,
    InsertRecord,
    Operation,
    RecordMeta,
    SortKey,
    UpdateRecord,
    ValidatedRecord,
)
from .row_data import RowData

__all__ = [
    # Configuration models
    "CompilerConfig",
    "DuplicateAttributePolicy",
    # Record models
    "EntityKey",
    "InsertRecord",
    "Operation",
    "RecordMeta",
    "SortKey",
    "UpdateRecord",
    "ValidatedRecord",
    # Processing models
    "RowData",
    "BatchResult",
    "GeneratedDocument",
    "ParseResult",
    "RowFailure",
    "SkippedRow",
]
