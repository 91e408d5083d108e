"""
Bundled merge collaborator for polled inbox records.

Admissions are matched to existing persons by natural key (normalized full
name + guardian phone digits) because submissions carry no stable id; an
existing person is only overwritten by a newer submission. Staff updates are
upserted table by table by key. Each merged item is appended to the history
ledger inside the same transaction as its rows.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from hubsync.exceptions import ParseError
from hubsync.store.history import SyncHistoryLedger, SyncHistoryRecord
from hubsync.store.local import LocalStore
from hubsync.sync.types import (
    AdmissionApplication,
    ParsedRecord,
    StaffUpdate,
    natural_key,
    parse_timestamp,
    utcnow,
)
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.sync.merge")

PERSONS_TABLE = "persons"


@dataclass(frozen=True)
class MergeResult:
    item_id: str
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    already_merged: bool = False

    @property
    def record_count(self) -> int:
        return self.inserted + self.updated


class InboxMerger:
    """
    Insert-new / update-if-newer merge into the local store.

    Args:
        store: Local store
        ledger: History ledger to append to
        merged_by: Identity written into the ledger
        id_factory: Produces ids for newly inserted persons
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        store: LocalStore,
        ledger: SyncHistoryLedger,
        merged_by: str = "Admin",
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ledger = ledger
        self.merged_by = merged_by
        self.id_factory = id_factory
        self.clock = clock

    def merge_all(self, records: Iterable[ParsedRecord]) -> list[MergeResult]:
        return [self.merge(record) for record in records]

    def merge(self, record: ParsedRecord) -> MergeResult:
        """
        Merge one record and append it to the ledger in a single transaction.

        Any failure rolls back the merged rows together with the ledger entry.
        """
        if self.ledger.is_merged(record.source_path) or self.ledger.is_merged(record.processed_path):
            logger.info(f"{record.file_name} is already merged; skipping")
            return MergeResult(item_id=record.source_path, already_merged=True)

        payload = record.payload
        with self.store.transaction():
            if isinstance(payload, AdmissionApplication):
                result = self._merge_admission(record.source_path, payload)
            elif isinstance(payload, StaffUpdate):
                result = self._merge_staff_update(record.source_path, payload)
            else:
                raise ParseError(f"Cannot merge payload of type {type(payload).__name__}", source=record.source_path)

            self.ledger.record(
                SyncHistoryRecord(
                    item_id=record.source_path,
                    file_name=record.file_name,
                    processed_path=record.processed_path,
                    merged_at=self.clock(),
                    merged_by=self.merged_by,
                    record_count=result.record_count,
                )
            )
        logger.info(
            f"Merged {record.file_name}: {result.inserted} inserted, "
            f"{result.updated} updated, {result.skipped} unchanged"
        )
        return result

    def _merge_admission(self, item_id: str, application: AdmissionApplication) -> MergeResult:
        key = application.natural_key
        existing = None
        for row in self.store.read_table(PERSONS_TABLE):
            if natural_key(row.get("full_name"), row.get("guardian_phone")) == key:
                existing = row
                break

        if existing is None:
            self.store.put_rows(PERSONS_TABLE, [_person_row(self.id_factory(), application)])
            return MergeResult(item_id=item_id, inserted=1)

        if not _is_newer(application.submitted_at, existing.get("submitted_at")):
            logger.debug(f"Person {existing.get('id')} is up to date; ignoring older submission")
            return MergeResult(item_id=item_id, skipped=1)

        updated = {**existing, **_person_row(existing["id"], application)}
        updated["additional_fields"] = {
            **(existing.get("additional_fields") or {}),
            **application.additional_fields,
        }
        self.store.put_rows(PERSONS_TABLE, [updated])
        return MergeResult(item_id=item_id, updated=1)

    def _merge_staff_update(self, item_id: str, update: StaffUpdate) -> MergeResult:
        inserted = updated = 0
        for table, rows in update.tables.items():
            if not rows:
                continue
            table_inserted, table_updated = self.store.put_rows(table, rows)
            inserted += table_inserted
            updated += table_updated
        return MergeResult(item_id=item_id, inserted=inserted, updated=updated)


def _person_row(person_id: str, application: AdmissionApplication) -> dict[str, Any]:
    return {
        "id": person_id,
        "full_name": application.full_name,
        "gender": application.gender,
        "birth_place": application.birth_place,
        "birth_date": application.birth_date,
        "address": application.address,
        "guardian_name": application.guardian_name,
        "guardian_phone": application.guardian_phone,
        "previous_school": application.previous_school,
        "submitted_at": application.submitted_at.isoformat(),
        "additional_fields": dict(application.additional_fields),
    }


def _is_newer(candidate: datetime, stored: Any) -> bool:
    if not stored:
        return True
    try:
        return candidate > parse_timestamp(stored)
    except ParseError:
        return True
