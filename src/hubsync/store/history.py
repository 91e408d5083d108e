"""
Local ledger of merged inbox items.

Append-only: an item identity is recorded at most once and never rewritten.
Lives in the local store next to the synchronized tables but is not one of
them, so snapshots never carry it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from hubsync.store.local import SCHEMA, LocalStore, _sql_value
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.store.history")

HISTORY_TABLE = f"{SCHEMA}.sync_history"


@dataclass(frozen=True)
class SyncHistoryRecord:
    item_id: str
    file_name: str
    processed_path: str
    merged_at: datetime
    merged_by: str
    record_count: int = 1


class SyncHistoryLedger:
    """Ledger accessors."""

    def __init__(self, store: LocalStore):
        self.store = store
        self._ready = False

    def _ensure_table(self) -> None:
        if self._ready:
            return
        self.store.initialize()
        self.store.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {HISTORY_TABLE} (
                item_id VARCHAR PRIMARY KEY,
                file_name VARCHAR NOT NULL,
                processed_path VARCHAR,
                merged_at TIMESTAMP NOT NULL,
                merged_by VARCHAR,
                record_count INTEGER
            )
            """
        )
        self._ready = True

    def record(self, record: SyncHistoryRecord) -> bool:
        """
        Append ``record``.

        Returns:
            False when the item is already in the ledger (nothing is written)
        """
        self._ensure_table()
        if self.is_merged(record.item_id) or (record.processed_path and self.is_merged(record.processed_path)):
            logger.debug(f"{record.item_id} already in sync history")
            return False
        self.store.execute(
            f"""
            INSERT INTO {HISTORY_TABLE}
            (item_id, file_name, processed_path, merged_at, merged_by, record_count)
            VALUES (
                {_sql_value(record.item_id)},
                {_sql_value(record.file_name)},
                {_sql_value(record.processed_path)},
                {_sql_value(record.merged_at)},
                {_sql_value(record.merged_by)},
                {int(record.record_count)}
            )
            """
        )
        return True

    def is_merged(self, item_id: str) -> bool:
        """True when ``item_id`` was merged, whether given as its original id or as where it was moved to."""
        self._ensure_table()
        value = _sql_value(item_id)
        rows = self.store.execute(
            f"SELECT 1 FROM {HISTORY_TABLE} WHERE item_id = {value} OR processed_path = {value} LIMIT 1"
        )
        return bool(rows)

    def merged_ids(self) -> set[str]:
        self._ensure_table()
        return {item_id for (item_id,) in self.store.execute(f"SELECT item_id FROM {HISTORY_TABLE}")}

    def entries(self) -> list[SyncHistoryRecord]:
        """All records, newest first."""
        self._ensure_table()
        rows = self.store.execute(
            f"""
            SELECT item_id, file_name, processed_path, merged_at, merged_by, record_count
            FROM {HISTORY_TABLE}
            ORDER BY merged_at DESC, item_id
            """
        )
        return [
            SyncHistoryRecord(
                item_id=item_id,
                file_name=file_name,
                processed_path=processed_path or "",
                merged_at=merged_at.replace(tzinfo=timezone.utc) if merged_at.tzinfo is None else merged_at,
                merged_by=merged_by or "",
                record_count=int(record_count or 0),
            )
            for item_id, file_name, processed_path, merged_at, merged_by, record_count in rows
        ]
