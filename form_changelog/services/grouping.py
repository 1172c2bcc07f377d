from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from form_changelog.models.config_models import DuplicateAttributePolicy
from form_changelog.models.processing_result import RowFailure
from form_changelog.models.records import (
    InsertRecord,
    Operation,
    UpdateRecord,
    ValidatedRecord,
)

"""Grouping & merge of validated records into changeset groups.

One group = one output document: all records sharing an output file key and
an operation. Insert wins over update within a batch: an update whose
entity key was inserted in the same batch is dropped, since the insert
already carries the authoritative state.

Two update rows with the same formNbr and changeSetId become one update
statement. Their attributes are merged; an attribute set to different
values by both rows is a DUPLICATE_ATTRIBUTE failure handled per the
configured duplicate attribute policy.
"""

logger = logging.getLogger(__name__)

ERR_DUPLICATE_ATTRIBUTE = "DUPLICATE_ATTRIBUTE"


def _is_empty(value: object) -> bool:
    return value is None or value == "" or value == [] or value == {}


@dataclass
class ChangesetGroup:
    output_file_key: str
    operation: Operation
    records: list[ValidatedRecord] = field(default_factory=list)

    @property
    def changeset_id(self) -> str:
        """Changeset id of the group (first record's changeSetId)."""
        return self.records[0].meta.changeset_id if self.records else ""

    @property
    def changeset_ids(self) -> list[str]:
        """Distinct changeSetIds of the records, first-seen order."""
        return list(dict.fromkeys(r.meta.changeset_id for r in self.records))

    def find(self, record: ValidatedRecord) -> int | None:
        """Index of the record with the same formNbr and changeSetId, if any."""
        for i, r in enumerate(self.records):
            if r.form_nbr == record.form_nbr and r.meta.changeset_id == record.meta.changeset_id:
                return i
        return None

    def contains(self, record: ValidatedRecord) -> bool:
        return self.find(record) is not None

    def append(self, record: ValidatedRecord) -> None:
        if self.records and record.meta.changeset_id != self.changeset_id:
            logger.warning(
                "row=%d sheet=%s changeSetId %s differs from %s; %s uses %s",
                record.row_number,
                record.sheet_name,
                record.meta.changeset_id,
                self.changeset_id,
                self.output_file_key,
                self.changeset_id,
            )
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


class ChangesetGrouper:
    """Batch-scoped grouping state.

    ``inserted_keys`` only lives for one batch; cross-run suppression is the
    idempotency ledger's job. ``failures`` and ``rejected`` hold rows refused
    while merging same-key updates.
    """

    def __init__(self, policy: DuplicateAttributePolicy = DuplicateAttributePolicy.REJECT_ROW) -> None:
        self.policy = policy
        self.inserted_keys: set[str] = set()
        self.insert_groups: dict[str, ChangesetGroup] = {}
        self.update_groups: dict[str, ChangesetGroup] = {}
        self.dropped: list[UpdateRecord] = []
        self.rejected: list[UpdateRecord] = []
        self.failures: list[RowFailure] = []

    def add_records(self, records: Iterable[ValidatedRecord]) -> None:
        """Merge a batch of records. Inserts are applied before updates."""
        records = list(records)
        for record in records:
            if isinstance(record, InsertRecord):
                self.add_insert(record)
        for record in records:
            if isinstance(record, UpdateRecord):
                self.add_update(record)

    def add_insert(self, record: InsertRecord) -> None:
        file_key = record.meta.output_file_key
        group = self.insert_groups.get(file_key)
        if group is None:
            group = ChangesetGroup(output_file_key=file_key, operation=Operation.INSERT)
            self.insert_groups[file_key] = group
        group.append(record)
        self.inserted_keys.add(str(record.entity_key))

    def add_update(self, record: UpdateRecord) -> bool:
        """Merge an update; returns False when it contributed nothing to the output."""
        key = str(record.entity_key)
        if key in self.inserted_keys:
            logger.debug("update for %s dropped: inserted in same batch", key)
            self.dropped.append(record)
            return False

        attributes = {k: v for k, v in record.attributes_to_update.items() if not _is_empty(v)}
        if not attributes:
            logger.debug("update for %s dropped: nothing to update", key)
            self.dropped.append(record)
            return False
        if attributes != record.attributes_to_update:
            record = replace(record, attributes_to_update=attributes)

        file_key = record.meta.output_file_key
        group = self.update_groups.get(file_key)
        if group is None:
            group = ChangesetGroup(output_file_key=file_key, operation=Operation.UPDATE)
            self.update_groups[file_key] = group

        index = group.find(record)
        if index is None:
            group.append(record)
            return True
        return self._merge_update(group, index, record)

    def _merge_update(self, group: ChangesetGroup, index: int, record: UpdateRecord) -> bool:
        existing: UpdateRecord = group.records[index]  # type: ignore[assignment]
        key = str(record.entity_key)
        conflicts = [
            name
            for name, value in record.attributes_to_update.items()
            if name in existing.attributes_to_update and existing.attributes_to_update[name] != value
        ]
        for name in conflicts:
            self.failures.append(
                RowFailure(
                    row_number=record.row_number,
                    reason=f'Attribute "{name}" is duplicated across rows for form "{key}"',
                    sheet_name=record.sheet_name,
                    error_type=ERR_DUPLICATE_ATTRIBUTE,
                )
            )
        if conflicts and self.policy is DuplicateAttributePolicy.REJECT_ROW:
            self.rejected.append(record)
            return False

        added = {
            k: v for k, v in record.attributes_to_update.items() if k not in existing.attributes_to_update
        }
        if not added:
            # 既存行と同じ値のみ
            logger.debug("row=%d update for %s dropped: already merged", record.row_number, key)
            self.dropped.append(record)
            return False
        group.records[index] = replace(
            existing, attributes_to_update={**existing.attributes_to_update, **added}
        )
        logger.debug("row=%d update for %s merged into row=%d", record.row_number, key, existing.row_number)
        return True

    def groups(self) -> list[ChangesetGroup]:
        """Insert groups, then update groups, each in first-seen file key order."""
        return [*self.insert_groups.values(), *self.update_groups.values()]


def group_records(
    records: Iterable[ValidatedRecord],
    policy: DuplicateAttributePolicy = DuplicateAttributePolicy.REJECT_ROW,
) -> ChangesetGrouper:
    grouper = ChangesetGrouper(policy)
    grouper.add_records(records)
    return grouper
