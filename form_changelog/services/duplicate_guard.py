from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from form_changelog.models.config_models import DuplicateAttributePolicy
from form_changelog.models.processing_result import RowFailure
from form_changelog.models.records import InsertRecord, UpdateRecord, ValidatedRecord
from form_changelog.models.row_data import RowData
from .normalizer import RESERVED_FIELDS, is_blank

"""Duplicate attribute / duplicate record detection for one batch.

Checked for every row the normalizer accepted:
- the same dynamic attribute header twice in one row
- the same dynamic attribute for the same entity key (and operation) in an
  earlier accepted row
- a second insert row for an entity key already inserted in this batch

State lives on the DuplicateGuard instance; the pipeline creates one per
batch so concurrent batches never share it.
"""

logger = logging.getLogger(__name__)

ERR_DUPLICATE_ATTRIBUTE = "DUPLICATE_ATTRIBUTE"
ERR_DUPLICATE_RECORD = "DUPLICATE_RECORD"


@dataclass
class GuardOutcome:
    record: ValidatedRecord | None  # None -> row rejected
    failures: list[RowFailure] = field(default_factory=list)


class DuplicateGuard:
    def __init__(self, policy: DuplicateAttributePolicy = DuplicateAttributePolicy.REJECT_ROW) -> None:
        self.policy = policy
        self.seen_attributes: set[tuple[str, str, str]] = set()  # (operation, entity key, attribute)
        self.inserted_keys: set[str] = set()

    def _failure(self, row: RowData, reason: str, error_type: str) -> RowFailure:
        return RowFailure(
            row_number=row.row_number,
            reason=reason,
            sheet_name=row.sheet_name,
            error_type=error_type,
        )

    def inspect(self, row: RowData, record: ValidatedRecord) -> GuardOutcome:
        """Check one accepted row; commits its attributes only when the row survives."""
        key = str(record.entity_key)
        op = record.operation.value

        if isinstance(record, InsertRecord) and key in self.inserted_keys:
            return GuardOutcome(
                record=None,
                failures=[self._failure(row, f'Duplicate record "{key}" in batch', ERR_DUPLICATE_RECORD)],
            )

        in_row: set[str] = set()
        cross_row: set[str] = set()
        failures: list[RowFailure] = []
        for header, value in row.cells:
            if header in RESERVED_FIELDS or is_blank(value):
                continue
            if header in in_row:
                failures.append(
                    self._failure(row, f'Duplicate attribute "{header}" in row', ERR_DUPLICATE_ATTRIBUTE)
                )
                continue
            if (op, key, header) in self.seen_attributes:
                failures.append(
                    self._failure(
                        row,
                        f'Attribute "{header}" is duplicated across rows for form "{key}"',
                        ERR_DUPLICATE_ATTRIBUTE,
                    )
                )
                cross_row.add(header)
                continue
            in_row.add(header)

        if failures and self.policy is DuplicateAttributePolicy.REJECT_ROW:
            return GuardOutcome(record=None, failures=failures)

        if cross_row:
            record = _without_attributes(record, cross_row)
            logger.debug("row=%d dropped duplicate attributes %s", row.row_number, sorted(cross_row))

        for header in in_row:
            self.seen_attributes.add((op, key, header))
        if isinstance(record, InsertRecord):
            self.inserted_keys.add(key)
        return GuardOutcome(record=record, failures=failures)


def _without_attributes(record: ValidatedRecord, names: set[str]) -> ValidatedRecord:
    if isinstance(record, UpdateRecord):
        kept = {k: v for k, v in record.attributes_to_update.items() if k not in names}
        return replace(record, attributes_to_update=kept)
    kept = {k: v for k, v in record.attributes.items() if k not in names}
    return replace(record, attributes=kept)
