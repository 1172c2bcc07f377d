from __future__ import annotations

import logging
from typing import Any

from form_changelog.ledger.processed_keys import IdempotencyLedger
from form_changelog.models.config_models import CompilerConfig
from form_changelog.models.processing_result import RowFailure, SkippedRow
from form_changelog.models.records import (
    EntityKey,
    InsertRecord,
    Operation,
    RecordMeta,
    UpdateRecord,
    ValidatedRecord,
)
from form_changelog.models.row_data import RowData
from .formatting import (
    SortKeyError,
    cell_to_text,
    format_date,
    is_canonical_date,
    parse_loose_pairs,
    parse_sort_key,
    split_multi_value,
)

"""Row normalizer: one RowData in, one typed outcome out.

Outcomes:
- InsertRecord / UpdateRecord: the row is valid and not yet emitted
- RowFailure: validation failed (row excluded, batch continues)
- SkippedRow: the entity key is already in the idempotency ledger

The ledger is only read here. Keys become "processed" when the changelog
writer has written the document that carries them.
"""

logger = logging.getLogger(__name__)

FILE_KEY_FIELD = "fileName"
CHANGESET_FIELD = "changeSetId"
RECORD_ID_FIELD = "formNbr"
OPERATION_FIELD = "operation"
ATTRIBUTES_TO_UPDATE_FIELD = "attributesToUpdate"

REQUIRED_FIELDS = ("formNbr", "formName", "effectiveDate", "expirationDate", "rcpType", "srtKey")
OPTIONAL_FIELDS = ("editionDt", "lob")
DATE_FIELDS = ("effectiveDate", "expirationDate", "editionDt")
STRICT_DATE_FIELDS = ("effectiveDate", "expirationDate")
MULTI_VALUE_FIELD = "rcpType"
SORT_KEY_FIELD = "srtKey"

# 動的属性ではない列 (Duplicate Guard の対象外)
RESERVED_FIELDS = frozenset(
    {FILE_KEY_FIELD, CHANGESET_FIELD, OPERATION_FIELD, ATTRIBUTES_TO_UPDATE_FIELD, *REQUIRED_FIELDS, *OPTIONAL_FIELDS}
)
# update の $set 対象にならない列
UPDATE_IDENTITY_FIELDS = frozenset({FILE_KEY_FIELD, CHANGESET_FIELD, RECORD_ID_FIELD, OPERATION_FIELD})

ERR_MISSING_FIELD = "MISSING_REQUIRED_FIELD"
ERR_SORT_KEY = "INVALID_SORT_KEY"
ERR_DATE = "INVALID_DATE"
ERR_OPERATION = "INVALID_OPERATION"
ERR_NO_ATTRIBUTES = "NO_ATTRIBUTES_TO_UPDATE"

NormalizeOutcome = InsertRecord | UpdateRecord | RowFailure | SkippedRow


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def attribute_value(value: Any) -> Any:
    """Dynamic attribute cells: booleans stay booleans, everything else is text."""
    if isinstance(value, bool):
        return value
    return cell_to_text(value)


def convert_field(name: str, value: Any) -> Any:
    """Apply the per-column format rules to one value.

    Raises:
        SortKeyError: srtKey value is not 8 digits
    """
    if name in DATE_FIELDS:
        return format_date(value)
    if name == MULTI_VALUE_FIELD:
        return split_multi_value(value)
    if name == SORT_KEY_FIELD:
        return parse_sort_key(value).as_dict()
    return attribute_value(value)


class RowNormalizer:
    """Validates rows of one batch against the configured rules."""

    def __init__(self, config: CompilerConfig, ledger: IdempotencyLedger) -> None:
        self.config = config
        self.ledger = ledger

    def _failure(self, row: RowData, reason: str, error_type: str) -> RowFailure:
        return RowFailure(
            row_number=row.row_number,
            reason=reason,
            sheet_name=row.sheet_name,
            error_type=error_type,
        )

    def resolve_operation(self, row: RowData) -> Operation | RowFailure:
        """Explicit operation column first, then the sheet mapping, then the default."""
        raw = cell_to_text(row.get(OPERATION_FIELD))
        if raw:
            op = Operation.parse(raw)
            if op is None:
                return self._failure(
                    row, f'Invalid operation "{raw}" (expected insert or update)', ERR_OPERATION
                )
            return op
        op = self.config.operation_for_sheet(row.sheet_name)
        if op is None:
            op = self.config.default_operation
        if op is None:
            return self._failure(row, "Missing operation and no default configured", ERR_OPERATION)
        return op

    def normalize(self, row: RowData) -> NormalizeOutcome:
        op = self.resolve_operation(row)
        if isinstance(op, RowFailure):
            return op
        if op is Operation.INSERT:
            outcome: NormalizeOutcome = self._normalize_insert(row)
        else:
            outcome = self._normalize_update(row)
        if isinstance(outcome, (RowFailure, SkippedRow)):
            return outcome
        return self._check_ledger(row, outcome)

    def _check_ledger(self, row: RowData, record: ValidatedRecord) -> ValidatedRecord | SkippedRow:
        key = str(record.entity_key)
        if self.ledger.has_been_processed(key):
            logger.debug("row=%d sheet=%s key=%s already processed", row.row_number, row.sheet_name, key)
            return SkippedRow(
                row_number=row.row_number,
                reason=f'Record "{key}" has already been processed.',
                sheet_name=row.sheet_name,
            )
        return record

    def _meta(self, row: RowData, op: Operation) -> RecordMeta:
        return RecordMeta(
            operation=op,
            output_file_key=cell_to_text(row.get(FILE_KEY_FIELD)),
            changeset_id=cell_to_text(row.get(CHANGESET_FIELD)),
        )

    def _check_strict_date(self, row: RowData, name: str, text: str) -> RowFailure | None:
        if self.config.strict_dates and text and not is_canonical_date(text):
            return self._failure(row, f"{name} must be in MM/DD/YYYY format (got {text!r})", ERR_DATE)
        return None

    def _normalize_insert(self, row: RowData) -> InsertRecord | RowFailure:
        data: dict[str, Any] = {
            FILE_KEY_FIELD: cell_to_text(row.get(FILE_KEY_FIELD)),
            CHANGESET_FIELD: cell_to_text(row.get(CHANGESET_FIELD)),
            RECORD_ID_FIELD: cell_to_text(row.get(RECORD_ID_FIELD)),
            "formName": cell_to_text(row.get("formName")),
            "effectiveDate": format_date(row.get("effectiveDate")),
            "expirationDate": format_date(row.get("expirationDate")),
            MULTI_VALUE_FIELD: split_multi_value(row.get(MULTI_VALUE_FIELD)),
            SORT_KEY_FIELD: cell_to_text(row.get(SORT_KEY_FIELD)),
        }
        missing = [k for k in (FILE_KEY_FIELD, CHANGESET_FIELD, *REQUIRED_FIELDS) if is_blank(data[k])]
        if missing:
            return self._failure(row, f"Missing required fields: {', '.join(missing)}", ERR_MISSING_FIELD)

        try:
            srt_key = parse_sort_key(data[SORT_KEY_FIELD])
        except SortKeyError as e:
            return self._failure(row, str(e), ERR_SORT_KEY)

        for name in STRICT_DATE_FIELDS:
            failure = self._check_strict_date(row, name, data[name])
            if failure is not None:
                return failure

        edition_dt = format_date(row.get("editionDt")) or None
        lob = cell_to_text(row.get("lob")) or None

        attributes: dict[str, Any] = {}
        for header, value in row.cells:
            if header in RESERVED_FIELDS or header in attributes or is_blank(value):
                continue
            attributes[header] = attribute_value(value)

        return InsertRecord(
            meta=self._meta(row, Operation.INSERT),
            form_nbr=data[RECORD_ID_FIELD],
            form_name=data["formName"],
            effective_date=data["effectiveDate"],
            expiration_date=data["expirationDate"],
            rcp_type=data[MULTI_VALUE_FIELD],
            srt_key=srt_key,
            edition_dt=edition_dt,
            lob=lob,
            attributes=attributes,
            row_number=row.row_number,
            sheet_name=row.sheet_name,
        )

    def _convert_update_value(self, row: RowData, name: str, value: Any) -> Any:
        try:
            converted = convert_field(name, value)
        except SortKeyError as e:
            return self._failure(row, str(e), ERR_SORT_KEY)
        if name in STRICT_DATE_FIELDS:
            failure = self._check_strict_date(row, name, converted)
            if failure is not None:
                return failure
        return converted

    def _normalize_update(self, row: RowData) -> UpdateRecord | RowFailure:
        identity = {k: cell_to_text(row.get(k)) for k in (FILE_KEY_FIELD, CHANGESET_FIELD, RECORD_ID_FIELD)}
        missing = [k for k in (FILE_KEY_FIELD, CHANGESET_FIELD, RECORD_ID_FIELD) if not identity[k]]
        if missing:
            return self._failure(row, f"Missing required fields: {', '.join(missing)}", ERR_MISSING_FIELD)

        attributes_to_update: dict[str, Any] = {}
        for header, value in row.cells:
            # 同一行の重複列は先勝ち (Duplicate Guard が報告)
            if header in UPDATE_IDENTITY_FIELDS or header == ATTRIBUTES_TO_UPDATE_FIELD:
                continue
            if header in attributes_to_update or is_blank(value):
                continue
            converted = self._convert_update_value(row, header, value)
            if isinstance(converted, RowFailure):
                return converted
            if not is_blank(converted):
                attributes_to_update[header] = converted

        # attributesToUpdate 列 ("formName: X, lob: Y") は列値を上書き
        for name, value in parse_loose_pairs(row.get(ATTRIBUTES_TO_UPDATE_FIELD)).items():
            if name in UPDATE_IDENTITY_FIELDS:
                continue
            converted = self._convert_update_value(row, name, value)
            if isinstance(converted, RowFailure):
                return converted
            if not is_blank(converted):
                attributes_to_update[name] = converted

        if not attributes_to_update:
            return self._failure(row, "No attributes to update", ERR_NO_ATTRIBUTES)

        return UpdateRecord(
            meta=self._meta(row, Operation.UPDATE),
            form_nbr=identity[RECORD_ID_FIELD],
            attributes_to_update=attributes_to_update,
            row_number=row.row_number,
            sheet_name=row.sheet_name,
        )
