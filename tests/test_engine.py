"""
Tests for the SyncEngine facade.
"""

import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from aioresponses import aioresponses

from hubsync.auth.tokens import DROPBOX_TOKEN_URL, TokenManager
from hubsync.config.loader import load_config
from hubsync.config.sync_config import CredentialStore, ProviderKind, SyncConfiguration
from hubsync.exceptions import ConfigurationError, ParseError, PollInterruptedError, TransportError
from hubsync.providers import MemoryProvider, WriteMode
from hubsync.store import LocalStore
from hubsync.sync import InboxEntryStatus, SyncEngine

NOW = 1_700_000_000.0


@pytest.fixture
def store():
    s = LocalStore()
    yield s
    s.close()


def admission(name):
    return {"kind": "admission", "full_name": name, "submitted_at": "2024-05-01T08:00:00Z"}


class MovesFailFor(MemoryProvider):
    def __init__(self, paths):
        super().__init__()
        self.paths = set(paths)

    async def move_file(self, from_path, to_path, autorename=True):
        if from_path in self.paths:
            raise TransportError(f"Connection reset while moving {from_path}")
        return await super().move_file(from_path, to_path, autorename)


class TestSnapshotFlow:
    @pytest.mark.asyncio
    async def test_push_pull_between_installations(self, store):
        provider = MemoryProvider(capacity=10_000)
        saved = []
        admin = SyncEngine(SyncConfiguration(), store, provider=provider, on_config_change=saved.append)
        store.insert_rows("persons", [{"id": "p1", "full_name": "Budi"}])

        created_at = await admin.push()
        assert saved[-1].last_sync == created_at.isoformat()

        other_store = LocalStore()
        try:
            staff = SyncEngine(SyncConfiguration(), other_store, provider=provider)
            await staff.pull()
            assert other_store.read_table("persons") == [{"id": "p1", "full_name": "Budi"}]
        finally:
            other_store.close()

    @pytest.mark.asyncio
    async def test_status(self, store):
        provider = MemoryProvider(capacity=1000)
        engine = SyncEngine(SyncConfiguration(), store, provider=provider)

        status = await engine.status()
        assert status.snapshot is None
        assert status.quota.total == 1000

        await engine.push()
        status = await engine.status()
        assert status.snapshot.path == "/hubsync/master_data.json"
        assert status.snapshot.version == 1

    @pytest.mark.asyncio
    async def test_pull_if_auto_sync(self, store):
        provider = MemoryProvider()
        off = SyncEngine(SyncConfiguration(), store, provider=provider)
        assert await off.pull_if_auto_sync() is None

        await off.push()
        on = SyncEngine(SyncConfiguration(auto_sync=True), store, provider=provider)
        assert await on.pull_if_auto_sync() is not None

    def test_unconfigured_provider(self, store):
        engine = SyncEngine(SyncConfiguration(), store)
        with pytest.raises(ConfigurationError):
            engine.provider


class TestInboxFlow:
    @pytest.mark.asyncio
    async def test_submit_poll_merge_purge(self, store):
        provider = MemoryProvider()
        staff = SyncEngine(SyncConfiguration(), LocalStore(), provider=provider)
        admin = SyncEngine(SyncConfiguration(admin_identity="Kepala TU"), store, provider=provider)
        try:
            await staff.submit(admission("Budi"), sender="Guru A")
            await staff.submit(admission("Ani"), sender="Guru B")
        finally:
            staff.store.close()

        outcome = await admin.poll_inbox(merge=True)
        assert len(outcome.records) == 2
        assert [m.inserted for m in outcome.merges] == [1, 1]
        assert store.count("persons") == 2
        assert {e.merged_by for e in admin.ledger.entries()} == {"Kepala TU"}

        entries = await admin.list_inbox()
        assert [e.status for e in entries] == [InboxEntryStatus.MERGED] * 2

        assert await admin.purge_inbox() == 2
        assert provider.files() == {}

    @pytest.mark.asyncio
    async def test_merge_item_later(self, store):
        provider = MemoryProvider()
        engine = SyncEngine(SyncConfiguration(), store, provider=provider)
        await engine.submit(admission("Budi"), sender="Guru")

        outcome = await engine.poll_inbox()
        assert outcome.merges == []
        (entry,) = await engine.list_inbox()
        assert entry.status is InboxEntryStatus.UNMERGED

        result = await engine.merge_item(entry.item_id)
        assert result.inserted == 1
        (entry,) = await engine.list_inbox()
        assert entry.status is InboxEntryStatus.MERGED
        assert (await engine.merge_item(entry.item_id)).already_merged

        (merged,) = engine.ledger.entries()
        assert merged.item_id == f"/hubsync/inbox/{entry.name}"
        assert merged.processed_path == entry.item_id
        assert store.count("persons") == 1

    @pytest.mark.asyncio
    async def test_interrupted_poll_still_merges_claimed(self, store):
        provider = MovesFailFor({"/hubsync/inbox/2_b.json"})
        for name in ("1_a.json", "2_b.json"):
            await provider.upload_file(f"/hubsync/inbox/{name}", json.dumps(admission(name)).encode(), WriteMode.ADD)
        engine = SyncEngine(SyncConfiguration(), store, provider=provider)

        with pytest.raises(PollInterruptedError) as excinfo:
            await engine.poll_inbox(merge=True)

        assert len(excinfo.value.records) == 1
        assert store.count("persons") == 1
        assert engine.ledger.is_merged("/hubsync/inbox/1_a.json")


class TestStaffUpload:
    @pytest.mark.asyncio
    async def test_local_tables_reach_admin(self, store):
        provider = MemoryProvider()
        staff_store = LocalStore()
        try:
            staff_store.insert_rows("payments", [{"id": "pay-1", "amount": 50000}])
            staff_store.insert_rows("balances", [{"person_id": "p1", "amount": 25000}])
            staff = SyncEngine(SyncConfiguration(), staff_store, provider=provider)
            path = await staff.upload_staff_changes("Bendahara")
        finally:
            staff_store.close()

        assert path.startswith("/hubsync/inbox/")
        assert path.endswith("_Bendahara.json")
        uploaded = json.loads(provider.files()[path])
        assert uploaded["kind"] == "staff_update"
        assert set(uploaded["data"]) == set(store.tables)

        admin = SyncEngine(SyncConfiguration(), store, provider=provider)
        outcome = await admin.poll_inbox(merge=True)
        assert [m.inserted for m in outcome.merges] == [2]
        assert store.read_table("payments") == [{"id": "pay-1", "amount": 50000}]
        assert store.get_row("balances", "p1") == {"person_id": "p1", "amount": 25000}

    @pytest.mark.asyncio
    async def test_blank_sender_rejected(self, store):
        provider = MemoryProvider()
        engine = SyncEngine(SyncConfiguration(), store, provider=provider)
        with pytest.raises(ParseError):
            await engine.upload_staff_changes("  ")
        assert provider.files() == {}


class TestAuthorization:
    def test_begin_requires_app_key(self, store, tmp_path):
        with pytest.raises(ConfigurationError):
            SyncEngine(SyncConfiguration(), store, state_dir=tmp_path).begin_authorization("")

    @pytest.mark.asyncio
    async def test_begin_and_complete(self, store, tmp_path):
        saved = []
        engine = SyncEngine(
            SyncConfiguration(),
            store,
            state_dir=tmp_path,
            on_config_change=saved.append,
        )
        engine.tokens = TokenManager(engine.http, clock=lambda: NOW)

        url = engine.begin_authorization("app-key", "http://localhost:53682/")
        query = parse_qs(urlparse(url).query)
        assert query["client_id"] == ["app-key"]

        with aioresponses() as m:
            m.post(
                DROPBOX_TOKEN_URL,
                payload={"access_token": "access", "refresh_token": "refresh", "expires_in": 14400},
            )
            config = await engine.complete_authorization("pasted-code")
            (call,) = next(iter(m.requests.values()))

        assert call.kwargs["data"]["redirect_uri"] == "http://localhost:53682/"
        assert config.provider is ProviderKind.OBJECT_STORE
        assert config.is_connected
        assert config.access_token_expires_at == NOW + 14400
        assert saved == [config]

        with pytest.raises(ConfigurationError):
            await engine.complete_authorization("pasted-code")

    @pytest.mark.asyncio
    async def test_refreshed_token_is_persisted(self, store):
        saved = []
        config = SyncConfiguration(provider=ProviderKind.OBJECT_STORE, app_key="app", refresh_token="refresh")
        engine = SyncEngine(config, store, on_config_change=saved.append)
        engine.tokens = TokenManager(engine.http, clock=lambda: NOW)

        with aioresponses() as m:
            m.post(DROPBOX_TOKEN_URL, payload={"access_token": "fresh", "expires_in": 14400})
            m.post(
                "https://content.dropboxapi.com/2/files/upload",
                payload={"path_display": "/hubsync/master_data.json"},
            )
            await engine.push()
            upload = m.requests[next(k for k in m.requests if "files/upload" in str(k[1]))][0]

        assert upload.kwargs["headers"]["Authorization"] == "Bearer fresh"
        assert saved[0].access_token == "fresh"
        assert saved[0].access_token_expires_at == NOW + 14400
        assert engine.sync_config.last_sync is not None


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_uses_project_settings(self, tmp_path, store):
        (tmp_path / "hubsync.yaml").write_text("remote:\n  root: /esantri\nadmin: Operator\n")
        config = load_config(tmp_path)
        credentials = CredentialStore(config.state_dir)
        provider = MemoryProvider()

        engine = SyncEngine.from_config(config, credentials, store=store, provider=provider)
        assert engine.admin_identity == "Operator"
        assert engine.inbox_root == "/esantri/inbox"

        await engine.push()
        assert "/esantri/master_data.json" in provider.files()
        assert credentials.load().last_sync is not None

    @pytest.mark.asyncio
    async def test_remote_snapshot_visible_to_status(self, tmp_path, store):
        provider = MemoryProvider()
        await provider.upload_file(
            "/hubsync/master_data.json",
            json.dumps(
                {
                    "format": "hubsync-snapshot",
                    "version": 1,
                    "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc).isoformat(),
                    "tables": {name: [] for name in store.tables},
                }
            ).encode(),
            WriteMode.OVERWRITE,
        )
        engine = SyncEngine.from_config(load_config(tmp_path), CredentialStore(tmp_path), store=store, provider=provider)
        status = await engine.status()
        assert status.snapshot.created_at.year == 2024
