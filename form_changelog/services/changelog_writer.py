from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any

from form_changelog.ledger.processed_keys import IdempotencyLedger
from form_changelog.models.config_models import DEFAULT_COLLECTION_PLACEHOLDER
from form_changelog.models.processing_result import GeneratedDocument
from form_changelog.models.records import InsertRecord, Operation, UpdateRecord
from .grouping import ChangesetGroup

"""Liquibase (MongoDB extension) changelog rendering.

Each ChangesetGroup becomes one XML document containing exactly one
changeSet with exactly one operation element:

    insert, 1 record   -> mongodb:insertOne  / mongodb:document
    insert, N records  -> mongodb:insertMany / mongodb:documents
    update, 1 record   -> mongodb:updateOne  / mongodb:filter + mongodb:update
    update, N records  -> mongodb:runCommand / mongodb:command (update command, N statements)

Document bodies are JSON text. The changeSet id is "{changeSetId}_{operation}",
so regenerating from the same input gives the same document.
"""

logger = logging.getLogger(__name__)

CHANGELOG_NAMESPACES = {
    "xmlns": "http://www.liquibase.org/xml/ns/dbchangelog",
    "xmlns:xsi": "http://www.w3.org/2001/XMLSchema-instance",
    "xmlns:ext": "http://www.liquibase.org/xml/ns/dbchangelog-ext",
    "xmlns:mongodb": "http://www.liquibase.org/xml/ns/mongodb",
    "xmlns:mongodb-pro": "http://www.liquibase.org/xml/ns/pro-mongodb",
    "xsi:schemaLocation": " ".join(
        [
            "http://www.liquibase.org/xml/ns/dbchangelog",
            "http://www.liquibase.org/xml/ns/dbchangelog/dbchangelog-latest.xsd",
            "http://www.liquibase.org/xml/ns/dbchangelog-ext",
            "http://www.liquibase.org/xml/ns/dbchangelog/dbchangelog-ext.xsd",
            "http://www.liquibase.org/xml/ns/pro-mongodb",
            "http://www.liquibase.org/xml/ns/pro-mongodb/liquibase-pro-mongodb-latest.xsd",
            "http://www.liquibase.org/xml/ns/mongodb",
            "http://www.liquibase.org/xml/ns/mongodb/liquibase-mongodb-latest.xsd",
        ]
    ),
}

# シート列名 -> MongoDB ドキュメントのフィールド名
DOCUMENT_FIELD_NAMES = {
    "rcpType": "recipientTypes",
    "srtKey": "sortingKeys",
}
RECORD_FILTER_FIELD = "formNbr"
UPDATES_SUFFIX = "_updates"
ERR_OUTPUT_COLLISION = "OUTPUT_FILE_COLLISION"


class DocumentWriteError(Exception):
    """Raised when a changelog document cannot be persisted."""


def sanitize_file_name(name: str) -> str:
    """Make an output file key safe to use as a file name."""
    name = re.sub(r'[\\/:*?"<>|\s]+', "_", name)
    return re.sub(r"[^a-zA-Z0-9_.-]", "", name)


def output_filename(group: ChangesetGroup) -> str:
    suffix = UPDATES_SUFFIX if group.operation is Operation.UPDATE else ""
    return f"{sanitize_file_name(group.output_file_key)}{suffix}.xml"


def find_output_collisions(groups: list[ChangesetGroup]) -> list[ChangesetGroup]:
    """Groups whose file name is already taken by an earlier group.

    Names are compared case-insensitively so that results do not depend on
    the file system. The first group to claim a name keeps it.
    """
    claimed: set[str] = set()
    colliding: list[ChangesetGroup] = []
    for group in groups:
        name = output_filename(group).lower()
        if name in claimed:
            colliding.append(group)
        else:
            claimed.add(name)
    return colliding


def document_field(name: str) -> str:
    return DOCUMENT_FIELD_NAMES.get(name, name)


def insert_document(record: InsertRecord) -> dict[str, Any]:
    """MongoDB document for an insert (no meta / attributesToUpdate)."""
    doc: dict[str, Any] = {
        "formName": record.form_name,
        "formNbr": record.form_nbr,
    }
    if record.edition_dt:
        doc["editionDt"] = record.edition_dt
    doc["effectiveDate"] = record.effective_date
    doc["expirationDate"] = record.expiration_date
    if record.lob:
        doc["lob"] = record.lob
    doc["recipientTypes"] = list(record.rcp_type)
    doc["sortingKeys"] = record.srt_key.as_dict()
    for name, value in record.attributes.items():
        doc.setdefault(document_field(name), value)
    return doc


def update_filter(record: UpdateRecord) -> dict[str, Any]:
    return {RECORD_FILTER_FIELD: record.form_nbr}


def update_body(record: UpdateRecord) -> dict[str, Any]:
    return {"$set": {document_field(k): v for k, v in record.attributes_to_update.items()}}


def _json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


class ChangelogWriter:
    """Renders groups to XML files and records emitted keys in the ledger."""

    def __init__(
        self,
        output_dir: Path,
        ledger: IdempotencyLedger,
        collection_name: str = DEFAULT_COLLECTION_PLACEHOLDER,
        author: str = DEFAULT_COLLECTION_PLACEHOLDER,
    ) -> None:
        self.output_dir = output_dir
        self.ledger = ledger
        self.collection_name = collection_name
        self.author = author

    def changeset_id(self, group: ChangesetGroup) -> str:
        return f"{group.changeset_id}_{group.operation.value}"

    def render(self, group: ChangesetGroup) -> ET.Element:
        if not group.records:
            raise ValueError(f"empty group for {group.output_file_key!r}")
        root = ET.Element("databaseChangeLog", CHANGELOG_NAMESPACES)
        change_set = ET.SubElement(
            root, "changeSet", {"id": self.changeset_id(group), "author": self.author}
        )
        if group.operation is Operation.INSERT:
            self._render_insert(change_set, group)
        else:
            self._render_update(change_set, group)
        ET.indent(root, space="  ")
        return root

    def _render_insert(self, change_set: ET.Element, group: ChangesetGroup) -> None:
        docs = [insert_document(r) for r in group.records]  # type: ignore[arg-type]
        attrs = {"collectionName": self.collection_name}
        if len(docs) == 1:
            op = ET.SubElement(change_set, "mongodb:insertOne", attrs)
            ET.SubElement(op, "mongodb:document").text = _json(docs[0])
        else:
            op = ET.SubElement(change_set, "mongodb:insertMany", attrs)
            ET.SubElement(op, "mongodb:documents").text = _json(docs)

    def _render_update(self, change_set: ET.Element, group: ChangesetGroup) -> None:
        records: list[UpdateRecord] = group.records  # type: ignore[assignment]
        if len(records) == 1:
            op = ET.SubElement(change_set, "mongodb:updateOne", {"collectionName": self.collection_name})
            ET.SubElement(op, "mongodb:filter").text = _json(update_filter(records[0]))
            ET.SubElement(op, "mongodb:update").text = _json(update_body(records[0]))
            return
        command = {
            "update": self.collection_name,
            "updates": [{"q": update_filter(r), "u": update_body(r)} for r in records],
        }
        op = ET.SubElement(change_set, "mongodb:runCommand")
        ET.SubElement(op, "mongodb:command").text = _json(command)

    def write(self, group: ChangesetGroup) -> GeneratedDocument:
        """Write one group, then mark its keys processed.

        Raises:
            DocumentWriteError: the file could not be written (ledger untouched)
            LedgerError: the ledger could not be appended to
        """
        root = self.render(group)
        path = self.output_dir / output_filename(group)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            ET.ElementTree(root).write(path, encoding="UTF-8", xml_declaration=True)
        except OSError as e:
            raise DocumentWriteError(f"cannot write {path}: {e}") from e

        for record in group.records:
            self.ledger.mark_processed(str(record.entity_key))
        logger.info(
            "wrote %s changeset=%s records=%d", path.name, self.changeset_id(group), len(group.records)
        )
        return GeneratedDocument(
            path=path,
            changeset_id=self.changeset_id(group),
            operation=group.operation,
            record_count=len(group.records),
        )
