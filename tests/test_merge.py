"""
Tests for merging polled inbox records into the local store.
"""

import itertools
from datetime import datetime, timezone

import pytest

from hubsync.exceptions import StateStoreError
from hubsync.store import LocalStore, SyncHistoryLedger
from hubsync.sync import InboxMerger, ParsedRecord
from hubsync.sync.types import AdmissionApplication, StaffUpdate

MERGED_AT = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    s = LocalStore()
    yield s
    s.close()


@pytest.fixture
def merger(store):
    ids = (f"person-{n}" for n in itertools.count(1))
    return InboxMerger(
        store,
        SyncHistoryLedger(store),
        merged_by="Ustadzah Fatimah",
        id_factory=lambda: next(ids),
        clock=lambda: MERGED_AT,
    )


def admission_record(name, submitted_at, phone="0812 1111", file_name=None, **fields):
    file_name = file_name or f"{int(submitted_at.timestamp() * 1000)}_{name.split()[0]}.json"
    return ParsedRecord(
        source_path=f"/hubsync/inbox/{file_name}",
        processed_path=f"/hubsync/inbox/processed/{file_name}",
        submitted_at=submitted_at,
        payload=AdmissionApplication(full_name=name, submitted_at=submitted_at, guardian_phone=phone, **fields),
    )


def staff_record(tables, file_name="1717236000000_Bendahara.json"):
    timestamp = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
    return ParsedRecord(
        source_path=f"/hubsync/inbox/{file_name}",
        processed_path=f"/hubsync/inbox/processed/{file_name}",
        submitted_at=timestamp,
        payload=StaffUpdate(sender="Bendahara", timestamp=timestamp, tables=tables),
    )


class TestAdmissionMerge:
    def test_new_person_inserted(self, merger, store):
        result = merger.merge(admission_record("Budi Santoso", datetime(2024, 5, 1, tzinfo=timezone.utc)))
        assert (result.inserted, result.updated) == (1, 0)
        (person,) = store.read_table("persons")
        assert person["id"] == "person-1"
        assert person["full_name"] == "Budi Santoso"
        assert person["submitted_at"] == "2024-05-01T00:00:00+00:00"

    def test_newer_submission_updates_same_person(self, merger, store):
        merger.merge(
            admission_record(
                "Budi Santoso",
                datetime(2024, 5, 1, tzinfo=timezone.utc),
                address="Jl. Lama",
                additional_fields={"nisn": "1"},
            )
        )
        result = merger.merge(
            admission_record(
                "  budi   SANTOSO ",
                datetime(2024, 5, 2, tzinfo=timezone.utc),
                phone="0812-1111",
                address="Jl. Baru",
                additional_fields={"hobby": "silat"},
            )
        )
        assert (result.inserted, result.updated) == (0, 1)
        (person,) = store.read_table("persons")
        assert person["id"] == "person-1"
        assert person["address"] == "Jl. Baru"
        assert person["additional_fields"] == {"nisn": "1", "hobby": "silat"}

    def test_older_submission_ignored(self, merger, store):
        merger.merge(admission_record("Ani", datetime(2024, 5, 2, tzinfo=timezone.utc), address="new"))
        result = merger.merge(admission_record("Ani", datetime(2024, 5, 1, tzinfo=timezone.utc), address="old"))
        assert (result.inserted, result.updated, result.skipped) == (0, 0, 1)
        assert store.read_table("persons")[0]["address"] == "new"

    def test_different_phone_is_different_person(self, merger, store):
        merger.merge(admission_record("Ani", datetime(2024, 5, 1, tzinfo=timezone.utc), phone="111"))
        merger.merge(admission_record("Ani", datetime(2024, 5, 2, tzinfo=timezone.utc), phone="222"))
        assert store.count("persons") == 2


class TestStaffUpdateMerge:
    def test_upserts_by_key(self, merger, store):
        store.insert_rows("payments", [{"id": "pay-1", "amount": 10}])
        result = merger.merge(
            staff_record(
                {
                    "payments": [{"id": "pay-1", "amount": 20}, {"id": "pay-2", "amount": 5}],
                    "balances": [{"person_id": "p1", "amount": 15}],
                }
            )
        )
        assert (result.inserted, result.updated) == (2, 1)
        assert store.read_table("payments") == [{"id": "pay-1", "amount": 20}, {"id": "pay-2", "amount": 5}]
        assert store.get_row("balances", "p1") == {"person_id": "p1", "amount": 15}

    def test_failure_rolls_back_and_is_not_recorded(self, merger, store):
        record = staff_record(
            {
                "payments": [{"id": "pay-1", "amount": 20}],
                "cash_ledger": [{"memo": "missing id"}],
            }
        )
        with pytest.raises(StateStoreError):
            merger.merge(record)
        assert store.count("payments") == 0
        assert not merger.ledger.is_merged(record.source_path)


class TestLedger:
    def test_recorded_once(self, merger):
        record = admission_record("Budi", datetime(2024, 5, 1, tzinfo=timezone.utc))
        merger.merge(record)
        again = merger.merge(record)
        assert again.already_merged
        (entry,) = merger.ledger.entries()
        assert entry.item_id == record.source_path
        assert entry.processed_path == record.processed_path
        assert entry.merged_by == "Ustadzah Fatimah"
        assert entry.merged_at == MERGED_AT
        assert entry.record_count == 1

    def test_processed_path_counts_as_merged(self, merger, store):
        record = admission_record("Budi", datetime(2024, 5, 1, tzinfo=timezone.utc))
        merger.merge(record)
        refetched = ParsedRecord(
            source_path=record.processed_path,
            processed_path=record.processed_path,
            submitted_at=record.submitted_at,
            payload=record.payload,
        )
        assert merger.merge(refetched).already_merged
        assert store.count("persons") == 1
        assert len(merger.ledger.entries()) == 1

    def test_ledger_failure_rolls_back_merged_rows(self, merger, store, monkeypatch):
        def failing_record(entry):
            raise StateStoreError("Local store query failed: disk full")

        monkeypatch.setattr(merger.ledger, "record", failing_record)
        record = admission_record("Budi", datetime(2024, 5, 1, tzinfo=timezone.utc))
        with pytest.raises(StateStoreError):
            merger.merge(record)
        assert store.count("persons") == 0
        assert not merger.ledger.is_merged(record.source_path)

    def test_merge_all(self, merger, store):
        results = merger.merge_all(
            [
                admission_record("A", datetime(2024, 5, 1, tzinfo=timezone.utc)),
                admission_record("B", datetime(2024, 5, 1, tzinfo=timezone.utc)),
            ]
        )
        assert [r.inserted for r in results] == [1, 1]
        assert len(merger.ledger.merged_ids()) == 2
