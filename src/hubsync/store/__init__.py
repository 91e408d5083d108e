"""
Local persistence: the synchronized tables and the merge history ledger.
"""

from hubsync.store.history import SyncHistoryLedger, SyncHistoryRecord
from hubsync.store.local import COVERED_TABLE_NAMES, COVERED_TABLES, LocalStore, TableSpec

__all__ = [
    "COVERED_TABLES",
    "COVERED_TABLE_NAMES",
    "LocalStore",
    "TableSpec",
    "SyncHistoryLedger",
    "SyncHistoryRecord",
]
