"""
Sync engine: one object that wires configuration, tokens, the provider and
the local store together for the CLI and other callers.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from hubsync.auth.pkce import VerifierScratch, begin_authorization
from hubsync.auth.tokens import TokenManager
from hubsync.config.loader import Config
from hubsync.config.sync_config import CredentialStore, ProviderKind, SyncConfiguration
from hubsync.exceptions import PollInterruptedError, RemoteNotFoundError
from hubsync.providers.base import ProviderAdapter, Quota
from hubsync.providers.registry import create_provider
from hubsync.store.history import SyncHistoryLedger
from hubsync.store.local import LocalStore
from hubsync.sync.inbox import InboxQueue
from hubsync.sync.merge import InboxMerger, MergeResult
from hubsync.sync.snapshot import SNAPSHOT_FILENAME, SnapshotSync
from hubsync.sync.types import InboxEntry, ParsedRecord, RemoteSnapshotInfo, StaffUpdate, utcnow
from hubsync.utils.http import HttpClient
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.sync.engine")


@dataclass(frozen=True)
class RemoteStatus:
    provider: ProviderKind
    snapshot: RemoteSnapshotInfo | None = None
    quota: Quota | None = None


@dataclass(frozen=True)
class PollOutcome:
    records: list[ParsedRecord] = field(default_factory=list)
    merges: list[MergeResult] = field(default_factory=list)


class SyncEngine:
    """
    Facade over snapshot sync, the inbox and the authorization flow.

    Args:
        sync_config: Per-installation sync settings
        store: Local store
        state_dir: Directory for the PKCE scratch file
        remote_root: Remote folder for the snapshot
        inbox_root: Remote inbox folder (default ``<remote_root>/inbox``)
        snapshot_name: Snapshot file name
        admin_identity: Name written into the history ledger
        http: Shared HTTP client
        tokens: Token manager (built on ``http`` by default)
        provider: Pre-built provider; built from ``sync_config`` on first use otherwise
        on_config_change: Called with every new SyncConfiguration (refreshed token, completed authorization)
    """

    def __init__(
        self,
        sync_config: SyncConfiguration,
        store: LocalStore,
        *,
        state_dir: Path | None = None,
        remote_root: str = "/hubsync",
        inbox_root: str | None = None,
        snapshot_name: str = SNAPSHOT_FILENAME,
        admin_identity: str = "Admin",
        http: HttpClient | None = None,
        tokens: TokenManager | None = None,
        provider: ProviderAdapter | None = None,
        on_config_change: Callable[[SyncConfiguration], None] | None = None,
    ):
        self.sync_config = sync_config
        self.store = store
        self.state_dir = Path(state_dir) if state_dir is not None else Path(".hubsync")
        self.remote_root = remote_root
        self.inbox_root = inbox_root or f"{remote_root.rstrip('/')}/inbox"
        self.snapshot_name = snapshot_name
        self.admin_identity = sync_config.admin_identity or admin_identity
        self.http = http or HttpClient()
        self.tokens = tokens or TokenManager(http=self.http)
        self.on_config_change = on_config_change
        self.ledger = SyncHistoryLedger(store)
        self._provider = provider

    @classmethod
    def from_config(
        cls,
        config: Config,
        credentials: CredentialStore,
        store: LocalStore | None = None,
        **kwargs: Any,
    ) -> SyncEngine:
        """Build an engine from project configuration, persisting config changes to ``credentials``."""
        return cls(
            credentials.load(),
            store or LocalStore(config.store_path),
            state_dir=config.state_dir,
            remote_root=config.remote_root,
            inbox_root=config.inbox_path,
            snapshot_name=str(config.get("remote.snapshot", SNAPSHOT_FILENAME)),
            admin_identity=str(config.get("admin", "Admin")),
            http=kwargs.pop("http", None) or HttpClient(timeout=config.http_timeout),
            on_config_change=credentials.save,
            **kwargs,
        )

    # --- Configuration ----------------------------------------------------------

    def _set_config(self, config: SyncConfiguration) -> None:
        self.sync_config = config
        if self.on_config_change is not None:
            self.on_config_change(config)

    async def _access_token(self) -> str:
        token = await self.tokens.get_valid_access_token(self.sync_config)
        if token.token != self.sync_config.access_token:
            self._set_config(self.sync_config.with_access_token(token.token, token.expires_at))
        return token.token

    @property
    def provider(self) -> ProviderAdapter:
        if self._provider is None:
            self._provider = create_provider(self.sync_config, token_source=self._access_token, http=self.http)
        return self._provider

    # --- Authorization ----------------------------------------------------------

    def begin_authorization(self, app_key: str, redirect_uri: str | None = None) -> str:
        """Start the PKCE flow and return the URL the user has to open."""
        return begin_authorization(self.state_dir, app_key, redirect_uri)

    async def complete_authorization(self, code: str) -> SyncConfiguration:
        """Exchange the pasted authorization code and store the token pair."""
        pending = VerifierScratch(self.state_dir).consume()
        async with self.http:
            grant = await self.tokens.exchange_authorization_code(
                pending.app_key,
                code,
                pending.code_verifier,
                pending.redirect_uri,
            )
        updated = self.sync_config.update(app_key=pending.app_key, redirect_uri=pending.redirect_uri)
        updated = updated.with_token_grant(
            grant.access_token,
            grant.refresh_token,
            self.tokens.clock() + grant.expires_in,
        )
        self._set_config(updated)
        self._provider = None
        logger.info("Cloud account connected")
        return updated

    # --- Snapshot ---------------------------------------------------------------

    def _snapshot(self) -> SnapshotSync:
        return SnapshotSync(self.provider, self.remote_root, self.snapshot_name)

    async def push(self) -> datetime:
        async with self.provider:
            created_at = await self._snapshot().push(self.store)
        self._set_config(self.sync_config.with_last_sync(created_at.isoformat()))
        return created_at

    async def pull(self) -> datetime:
        async with self.provider:
            created_at = await self._snapshot().pull(self.store)
        self._set_config(self.sync_config.with_last_sync(created_at.isoformat()))
        return created_at

    async def pull_if_auto_sync(self) -> datetime | None:
        """Pull only when automatic sync is switched on for this installation. Returns None otherwise."""
        if not self.sync_config.auto_sync:
            logger.info("Automatic sync is off; nothing pulled")
            return None
        return await self.pull()

    async def status(self) -> RemoteStatus:
        """Remote snapshot description (None if never pushed) and quota."""
        async with self.provider:
            try:
                snapshot = await self._snapshot().describe_remote()
            except RemoteNotFoundError:
                snapshot = None
            quota = await self.provider.get_quota()
        return RemoteStatus(provider=self.sync_config.provider, snapshot=snapshot, quota=quota)

    # --- Inbox ------------------------------------------------------------------

    def _inbox(self) -> InboxQueue:
        return InboxQueue(self.provider, self.inbox_root)

    def _merger(self) -> InboxMerger:
        return InboxMerger(self.store, self.ledger, merged_by=self.admin_identity)

    async def poll_inbox(self, merge: bool = False) -> PollOutcome:
        """
        Consume new submissions, optionally merging them.

        When the poll is interrupted after claiming some submissions, those are
        still merged (if requested) before the error propagates.
        """
        try:
            async with self.provider:
                records = await self._inbox().poll()
        except PollInterruptedError as e:
            if merge:
                self._merger().merge_all(e.records)
            raise
        merges = self._merger().merge_all(records) if merge else []
        return PollOutcome(records=records, merges=merges)

    async def merge_item(self, item_id: str) -> MergeResult:
        """Merge one processed-but-unmerged entry."""
        async with self.provider:
            record = await self._inbox().fetch(item_id)
        return self._merger().merge(record)

    async def submit(self, payload: dict[str, Any], sender: str) -> str:
        async with self.provider:
            return await self._inbox().submit(payload, sender)

    async def upload_staff_changes(self, sender: str) -> str:
        """
        Deposit every covered table of the local store into the inbox as one staff update.

        Returns:
            Where the submission landed
        """
        payload = {
            "kind": StaffUpdate.kind,
            "sender": sender,
            "timestamp": utcnow().isoformat(),
            "data": {name: self.store.read_table(name) for name in self.store.tables},
        }
        return await self.submit(payload, sender)

    async def list_inbox(self) -> list[InboxEntry]:
        async with self.provider:
            return await self._inbox().list_entries(self.ledger)

    async def purge_inbox(self) -> int:
        async with self.provider:
            return await self._inbox().purge_merged(self.ledger)
