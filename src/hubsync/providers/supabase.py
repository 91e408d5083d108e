"""
Hosted relational backend (Supabase).

File operations go through the Storage object API in one bucket; table
reads and writes go through the PostgREST endpoint. Both authenticate with
the static project key sent as ``apikey`` and as a bearer token.
"""

from __future__ import annotations

import json
import posixpath
from datetime import datetime
from typing import TYPE_CHECKING, Any

from hubsync.exceptions import AuthError, RemoteNotFoundError, TransportError
from hubsync.providers.base import (
    ProviderAdapter,
    RemoteEntry,
    WriteMode,
    autorename_candidates,
    normalize_path,
)
from hubsync.utils.http import HttpClient, HttpResponse
from hubsync.utils.logging import get_logger

if TYPE_CHECKING:
    from hubsync.sync.sources import InboxSource

logger = get_logger("hubsync.providers.supabase")

LIST_PAGE_SIZE = 1000


class SupabaseProvider(ProviderAdapter):
    """
    Supabase Storage + PostgREST adapter.

    Args:
        api_url: Project URL, e.g. https://xyz.supabase.co
        api_key: Project API key
        bucket: Storage bucket holding the snapshot and inbox folders
        inbox_table: Table used as the inbox
        http: Shared HTTP client
    """

    name = "supabase"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        bucket: str = "hubsync",
        inbox_table: str = "inbox_submissions",
        http: HttpClient | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket
        self.inbox_table = inbox_table
        self.http = http or HttpClient()

    async def open(self) -> None:
        await self.http.__aenter__()

    async def close(self) -> None:
        await self.http.__aexit__(None, None, None)

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"apikey": self.api_key, "Authorization": f"Bearer {self.api_key}"}
        if extra:
            headers.update(extra)
        return headers

    def _object_url(self, path: str) -> str:
        return f"{self.api_url}/storage/v1/object/{self.bucket}/{_key(path)}"

    # --- Storage ------------------------------------------------------------

    async def list_files(self, path: str) -> list[RemoteEntry]:
        folder = normalize_path(path)
        prefix = _key(folder)
        entries: list[RemoteEntry] = []
        offset = 0
        while True:
            response = await self.http.request(
                "POST",
                f"{self.api_url}/storage/v1/object/list/{self.bucket}",
                headers=self._headers(),
                json={
                    "prefix": prefix,
                    "limit": LIST_PAGE_SIZE,
                    "offset": offset,
                    "sortBy": {"column": "name", "order": "asc"},
                },
            )
            if _is_not_found(response):
                return []
            _raise_for_status(response, folder)
            page = response.json() or []
            for raw in page:
                name = str(raw.get("name", ""))
                if not name or name == ".emptyFolderPlaceholder":
                    continue
                metadata = raw.get("metadata") or {}
                entries.append(
                    RemoteEntry(
                        name=name,
                        path=posixpath.join(folder, name),
                        # Folders come back without an object id
                        is_file=raw.get("id") is not None,
                        size=metadata.get("size"),
                        modified=_parse_timestamp(raw.get("updated_at") or raw.get("created_at")),
                    )
                )
            if len(page) < LIST_PAGE_SIZE:
                return entries
            offset += LIST_PAGE_SIZE

    async def download_file(self, path: str) -> bytes:
        response = await self.http.request("GET", self._object_url(path), headers=self._headers())
        _raise_for_status(response, path)
        return response.body

    async def upload_file(self, path: str, data: bytes, mode: WriteMode = WriteMode.OVERWRITE) -> str:
        target = normalize_path(path)
        upsert = mode is WriteMode.OVERWRITE
        candidates = [target] if upsert else [target, *autorename_candidates(target)]
        for candidate in candidates:
            response = await self.http.request(
                "POST",
                self._object_url(candidate),
                headers=self._headers(
                    {
                        "Content-Type": "application/octet-stream",
                        "x-upsert": "true" if upsert else "false",
                    }
                ),
                data=data,
            )
            if not upsert and _is_duplicate(response):
                logger.debug(f"{candidate} exists; trying the next name")
                continue
            _raise_for_status(response, candidate)
            return candidate
        raise TransportError(f"No free name next to {target}", status=409)

    async def move_file(self, from_path: str, to_path: str, autorename: bool = True) -> str:
        target = normalize_path(to_path)
        candidates = [target, *autorename_candidates(target)] if autorename else [target]
        for candidate in candidates:
            response = await self.http.request(
                "POST",
                f"{self.api_url}/storage/v1/object/move",
                headers=self._headers(),
                json={"bucketId": self.bucket, "sourceKey": _key(from_path), "destinationKey": _key(candidate)},
            )
            if _is_not_found(response):
                raise RemoteNotFoundError(from_path)
            if _is_duplicate(response):
                if not autorename:
                    raise TransportError(f"Destination already exists: {candidate}", status=409, url=response.url)
                continue
            _raise_for_status(response, from_path)
            return candidate
        raise TransportError(f"No free name next to {target}", status=409)

    async def delete_file(self, path: str) -> None:
        response = await self.http.request(
            "DELETE",
            f"{self.api_url}/storage/v1/object/{self.bucket}",
            headers=self._headers(),
            json={"prefixes": [_key(path)]},
        )
        _raise_for_status(response, path)
        if not response.json():
            raise RemoteNotFoundError(path)

    # --- Tables -------------------------------------------------------------

    def _table_url(self, table: str) -> str:
        return f"{self.api_url}/rest/v1/{table}"

    async def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows whose columns equal every value in ``filters``."""
        params = {"select": "*", **_eq_filters(filters)}
        if order:
            params["order"] = order
        response = await self.http.request("GET", self._table_url(table), headers=self._headers(), params=params)
        return _rows(response, table)

    async def update_rows(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> list[dict[str, Any]]:
        """Update matching rows and return the rows actually changed."""
        response = await self.http.request(
            "PATCH",
            self._table_url(table),
            headers=self._headers({"Prefer": "return=representation"}),
            params=_eq_filters(filters),
            json=values,
        )
        return _rows(response, table)

    async def insert_rows(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        response = await self.http.request(
            "POST",
            self._table_url(table),
            headers=self._headers({"Prefer": "return=representation"}),
            json=rows,
        )
        return _rows(response, table)

    async def delete_rows(self, table: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to delete every row of a table")
        response = await self.http.request(
            "DELETE",
            self._table_url(table),
            headers=self._headers({"Prefer": "return=representation"}),
            params=_eq_filters(filters),
        )
        return _rows(response, table)

    def open_inbox(self, inbox_root: str) -> InboxSource:
        from hubsync.sync.sources import TableInboxSource

        return TableInboxSource(self, self.inbox_table)


def _key(path: str) -> str:
    return normalize_path(path).lstrip("/")


def _eq_filters(filters: dict[str, Any] | None) -> dict[str, str]:
    return {column: f"eq.{value}" for column, value in (filters or {}).items()}


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _error_body(response: HttpResponse) -> dict[str, Any]:
    body = response.json()
    return body if isinstance(body, dict) else {}


def _is_not_found(response: HttpResponse) -> bool:
    # Storage reports missing objects as 400 with statusCode "404"
    if response.status == 404:
        return True
    body = _error_body(response)
    return str(body.get("statusCode")) == "404" or str(body.get("error", "")).lower() == "not_found"


def _is_duplicate(response: HttpResponse) -> bool:
    if response.status == 409:
        return True
    body = _error_body(response)
    return str(body.get("statusCode")) == "409" or str(body.get("error", "")).lower() == "duplicate"


def _rows(response: HttpResponse, table: str) -> list[dict[str, Any]]:
    _raise_for_status(response, table)
    body = response.json()
    if body is None:
        return []
    if not isinstance(body, list):
        raise TransportError(f"Unexpected response for table {table}: {json.dumps(body)[:200]}", url=response.url)
    return body


def _raise_for_status(response: HttpResponse, path: str) -> None:
    if response.ok:
        return
    body = _error_body(response)
    message = body.get("message") or body.get("error") or response.text()[:200]
    if response.status in (401, 403) or str(body.get("statusCode")) in ("401", "403"):
        raise AuthError(f"Supabase rejected the API key: {message}", status=response.status)
    if _is_not_found(response):
        raise RemoteNotFoundError(path)
    raise TransportError(
        f"Supabase request for {path} failed with HTTP {response.status}: {message}",
        status=response.status,
        url=response.url,
    )
