"""
Sync subsystem: whole-state snapshots and the multi-writer inbox.
"""

from hubsync.sync.sources import FolderInboxSource, InboxSource, PendingItem, TableInboxSource
from hubsync.sync.types import (
    AdmissionApplication,
    InboxEntry,
    InboxEntryStatus,
    ParsedRecord,
    SnapshotEnvelope,
    StaffUpdate,
    parse_submission,
)
from hubsync.sync.snapshot import SnapshotSync
from hubsync.sync.inbox import InboxQueue
from hubsync.sync.merge import InboxMerger, MergeResult
from hubsync.sync.engine import PollOutcome, RemoteStatus, SyncEngine

__all__ = [
    "InboxSource",
    "FolderInboxSource",
    "TableInboxSource",
    "PendingItem",
    "AdmissionApplication",
    "StaffUpdate",
    "ParsedRecord",
    "SnapshotEnvelope",
    "InboxEntry",
    "InboxEntryStatus",
    "parse_submission",
    "SnapshotSync",
    "InboxQueue",
    "InboxMerger",
    "MergeResult",
    "SyncEngine",
    "PollOutcome",
    "RemoteStatus",
]
