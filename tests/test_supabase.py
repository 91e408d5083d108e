"""
Tests for the Supabase provider and the table-backed inbox source.
"""

import json
import re

import pytest
from aioresponses import aioresponses

from hubsync.exceptions import AuthError, ParseError, RemoteNotFoundError
from hubsync.providers import SupabaseProvider, WriteMode
from hubsync.sync.sources import TableInboxSource

API = "https://xyz.supabase.co"
STORAGE = f"{API}/storage/v1/object"
TABLE = re.compile(rf"^{re.escape(API)}/rest/v1/inbox_submissions(\?.*)?$")


@pytest.fixture
def provider():
    return SupabaseProvider(API, "anon-key", bucket="school")


def only_call(m):
    ((_, calls),) = m.requests.items()
    return calls[-1]


class TestStorage:
    @pytest.mark.asyncio
    async def test_list_files(self, provider):
        async with provider:
            with aioresponses() as m:
                m.post(
                    f"{STORAGE}/list/school",
                    payload=[
                        {"name": ".emptyFolderPlaceholder", "id": "x"},
                        {"name": "processed", "id": None},
                        {
                            "name": "1_a.json",
                            "id": "uuid-1",
                            "updated_at": "2024-05-01T10:00:00Z",
                            "metadata": {"size": 12},
                        },
                    ],
                )
                entries = await provider.list_files("/hubsync/inbox")
                call = only_call(m)

        assert [(e.name, e.path, e.is_file) for e in entries] == [
            ("processed", "/hubsync/inbox/processed", False),
            ("1_a.json", "/hubsync/inbox/1_a.json", True),
        ]
        assert entries[1].size == 12
        assert call.kwargs["json"]["prefix"] == "hubsync/inbox"
        assert call.kwargs["headers"]["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_list_missing_folder(self, provider):
        async with provider:
            with aioresponses() as m:
                m.post(f"{STORAGE}/list/school", status=400, payload={"statusCode": "404", "error": "not_found"})
                assert await provider.list_files("/hubsync/inbox") == []

    @pytest.mark.asyncio
    async def test_download_not_found(self, provider):
        async with provider:
            with aioresponses() as m:
                m.get(
                    f"{STORAGE}/school/hubsync/master_data.json",
                    status=400,
                    payload={"statusCode": "404", "error": "not_found", "message": "Object not found"},
                )
                with pytest.raises(RemoteNotFoundError):
                    await provider.download_file("/hubsync/master_data.json")

    @pytest.mark.asyncio
    async def test_upload_add_autorenames(self, provider):
        async with provider:
            with aioresponses() as m:
                m.post(
                    f"{STORAGE}/school/inbox/1_a.json",
                    status=400,
                    payload={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"},
                )
                m.post(provider._object_url("/inbox/1_a (1).json"), payload={"Key": "school/inbox/1_a (1).json"})
                stored = await provider.upload_file("/inbox/1_a.json", b"{}", WriteMode.ADD)
                first = next(iter(m.requests.values()))[0]
        assert stored == "/inbox/1_a (1).json"
        assert first.kwargs["headers"]["x-upsert"] == "false"

    @pytest.mark.asyncio
    async def test_upload_overwrite_upserts(self, provider):
        async with provider:
            with aioresponses() as m:
                m.post(f"{STORAGE}/school/hubsync/master_data.json", payload={"Key": "school/hubsync/master_data.json"})
                await provider.upload_file("/hubsync/master_data.json", b"{}")
                call = only_call(m)
        assert call.kwargs["headers"]["x-upsert"] == "true"

    @pytest.mark.asyncio
    async def test_move(self, provider):
        async with provider:
            with aioresponses() as m:
                m.post(f"{STORAGE}/move", payload={"message": "Successfully moved"})
                final = await provider.move_file("/inbox/1_a.json", "/inbox/processed/1_a.json")
                call = only_call(m)
        assert final == "/inbox/processed/1_a.json"
        assert call.kwargs["json"] == {
            "bucketId": "school",
            "sourceKey": "inbox/1_a.json",
            "destinationKey": "inbox/processed/1_a.json",
        }

    @pytest.mark.asyncio
    async def test_move_source_gone(self, provider):
        async with provider:
            with aioresponses() as m:
                m.post(f"{STORAGE}/move", status=400, payload={"statusCode": "404", "error": "not_found"})
                with pytest.raises(RemoteNotFoundError):
                    await provider.move_file("/inbox/1_a.json", "/inbox/processed/1_a.json")

    @pytest.mark.asyncio
    async def test_delete_missing(self, provider):
        async with provider:
            with aioresponses() as m:
                m.delete(f"{STORAGE}/school", payload=[])
                with pytest.raises(RemoteNotFoundError):
                    await provider.delete_file("/inbox/processed/1_a.json")

    @pytest.mark.asyncio
    async def test_bad_key(self, provider):
        async with provider:
            with aioresponses() as m:
                m.get(f"{STORAGE}/school/x.json", status=401, payload={"message": "Invalid JWT"})
                with pytest.raises(AuthError):
                    await provider.download_file("/x.json")

    @pytest.mark.asyncio
    async def test_no_quota(self, provider):
        assert await provider.get_quota() is None


class TestTables:
    @pytest.mark.asyncio
    async def test_query_filters(self, provider):
        async with provider:
            with aioresponses() as m:
                m.get(TABLE, payload=[{"id": 1}])
                rows = await provider.query("inbox_submissions", {"status": "new"}, order="created_at.asc")
                call = only_call(m)
        assert rows == [{"id": 1}]
        assert call.kwargs["params"] == {"select": "*", "status": "eq.new", "order": "created_at.asc"}

    @pytest.mark.asyncio
    async def test_delete_rows_requires_filter(self, provider):
        with pytest.raises(ValueError):
            await provider.delete_rows("inbox_submissions", {})


class TestTableInboxSource:
    @pytest.mark.asyncio
    async def test_list_pending(self, provider):
        source = provider.open_inbox("/ignored")
        assert isinstance(source, TableInboxSource)
        async with provider:
            with aioresponses() as m:
                m.get(
                    TABLE,
                    payload=[
                        {
                            "id": 7,
                            "file_name": "1700000000000_Budi.json",
                            "payload": {"kind": "admission"},
                            "status": "new",
                            "created_at": "2024-01-01T00:00:00+00:00",
                        },
                        {"id": 8, "file_name": None, "payload": "{}", "created_at": "2024-01-02T00:00:00"},
                    ],
                )
                items = await source.list_pending()

        assert [i.item_id for i in items] == ["inbox_submissions/7", "inbox_submissions/8"]
        assert items[0].submitted_at.year == 2023
        assert items[1].name == "8.json"
        assert items[1].submitted_at.tzinfo is not None
        assert source.accepts(items[1].name)
        assert json.loads(await source.read(items[0])) == {"kind": "admission"}

    @pytest.mark.asyncio
    async def test_claim(self, provider):
        source = provider.open_inbox("/ignored")
        async with provider:
            with aioresponses() as m:
                m.get(TABLE, payload=[{"id": 7, "file_name": "1_a.json", "payload": {}}])
                m.patch(TABLE, payload=[{"id": 7, "status": "processed"}])
                m.patch(TABLE, payload=[])
                (item,) = await source.list_pending()
                assert await source.mark_processed(item) == "inbox_submissions/7"
                with pytest.raises(RemoteNotFoundError):
                    await source.mark_processed(item)
                patch = next(v for k, v in m.requests.items() if k[0] == "PATCH")[0]
        assert patch.kwargs["params"] == {"id": "eq.7", "status": "eq.new"}
        assert patch.kwargs["json"] == {"status": "processed"}
        assert patch.kwargs["headers"]["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_deposit(self, provider):
        source = provider.open_inbox("/ignored")
        async with provider:
            with aioresponses() as m:
                m.post(TABLE, payload=[{"id": 12}])
                item_id = await source.deposit("1_a.json", b'{"kind": "admission"}')
                call = only_call(m)
        assert item_id == "inbox_submissions/12"
        assert call.kwargs["json"] == [{"file_name": "1_a.json", "payload": {"kind": "admission"}, "status": "new"}]

    @pytest.mark.asyncio
    async def test_deposit_rejects_non_json(self, provider):
        with pytest.raises(ParseError):
            await provider.open_inbox("/ignored").deposit("1_a.json", b"not json")

    @pytest.mark.asyncio
    async def test_fetch_foreign_item(self, provider):
        with pytest.raises(RemoteNotFoundError):
            await provider.open_inbox("/ignored").fetch("other_table/1")
