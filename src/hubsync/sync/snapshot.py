"""
Whole-state snapshot push and pull.

Push writes every covered table into one versioned envelope at a well-known
remote path; pull replaces every covered table from it inside a single local
transaction, or changes nothing.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from hubsync.providers.base import ProviderAdapter, WriteMode, join_path
from hubsync.store.local import COVERED_TABLE_NAMES, LocalStore
from hubsync.sync.types import RemoteSnapshotInfo, SnapshotEnvelope, utcnow
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.sync.snapshot")

SNAPSHOT_FILENAME = "master_data.json"


class SnapshotSync:
    """
    Snapshot protocol over one provider.

    Args:
        provider: Remote backend
        remote_root: Remote folder holding the snapshot
        filename: Snapshot file name under ``remote_root``
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        remote_root: str = "/hubsync",
        filename: str = SNAPSHOT_FILENAME,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.path = join_path(remote_root, filename)
        self.clock = clock

    async def push(self, store: LocalStore) -> datetime:
        """Upload the full local state, overwriting the remote snapshot."""
        tables = {name: store.read_table(name) for name in COVERED_TABLE_NAMES}
        envelope = SnapshotEnvelope(created_at=self.clock(), tables=tables)
        data = envelope.to_json()
        await self.provider.upload_file(self.path, data, WriteMode.OVERWRITE)
        logger.info(
            f"Pushed snapshot to {self.path} "
            f"({sum(envelope.row_counts().values())} rows, {len(data)} bytes)"
        )
        return envelope.created_at

    async def pull(self, store: LocalStore) -> datetime:
        """
        Replace every covered local table with the remote snapshot.

        Raises:
            RemoteNotFoundError: Nothing was ever pushed
            ParseError, VersionMismatchError: Snapshot not understood (local state untouched)
            StateStoreError: Local write failed (rolled back)
        """
        data = await self.provider.download_file(self.path)
        envelope = SnapshotEnvelope.from_json(data, source=self.path)

        with store.transaction():
            for name in COVERED_TABLE_NAMES:
                store.clear_table(name)
                store.insert_rows(name, envelope.tables[name])

        logger.info(f"Pulled snapshot from {self.path} created at {envelope.created_at.isoformat()}")
        return envelope.created_at

    async def describe_remote(self) -> RemoteSnapshotInfo:
        """Version, timestamp and row counts of the remote snapshot. Local state is not read."""
        data = await self.provider.download_file(self.path)
        envelope = SnapshotEnvelope.from_json(data, source=self.path)
        return RemoteSnapshotInfo(
            path=self.path,
            version=envelope.version,
            created_at=envelope.created_at,
            row_counts=envelope.row_counts(),
        )
