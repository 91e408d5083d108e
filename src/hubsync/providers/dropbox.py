"""
Delegated-authorization object store backend (Dropbox HTTP API v2).

Every call carries ``Authorization: Bearer <token>`` where the token comes from
the token source handed in at construction; the provider never looks at token
expiry itself.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from hubsync.exceptions import AuthError, RemoteNotFoundError, TransportError
from hubsync.providers.base import ProviderAdapter, Quota, RemoteEntry, WriteMode, normalize_path
from hubsync.utils.http import HttpClient, HttpResponse
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.providers.dropbox")

DROPBOX_API_URL = "https://api.dropboxapi.com/2"
DROPBOX_CONTENT_URL = "https://content.dropboxapi.com/2"

TokenSource = Callable[[], Awaitable[str]]


class DropboxProvider(ProviderAdapter):
    """
    Dropbox files API adapter.

    Args:
        token_source: Coroutine function returning a currently-valid access token
        http: Shared HTTP client
        api_url: RPC endpoint base
        content_url: Content (upload/download) endpoint base
    """

    name = "dropbox"

    def __init__(
        self,
        token_source: TokenSource,
        http: HttpClient | None = None,
        api_url: str = DROPBOX_API_URL,
        content_url: str = DROPBOX_CONTENT_URL,
    ):
        self.token_source = token_source
        self.http = http or HttpClient()
        self.api_url = api_url.rstrip("/")
        self.content_url = content_url.rstrip("/")

    async def open(self) -> None:
        await self.http.__aenter__()

    async def close(self) -> None:
        await self.http.__aexit__(None, None, None)

    async def _auth_headers(self) -> dict[str, str]:
        token = await self.token_source()
        return {"Authorization": f"Bearer {token}"}

    async def _rpc(self, endpoint: str, payload: dict[str, Any] | None) -> HttpResponse:
        headers = await self._auth_headers()
        headers["Content-Type"] = "application/json"
        body = json.dumps(payload).encode("utf-8")
        return await self.http.request("POST", f"{self.api_url}/{endpoint}", headers=headers, data=body)

    async def _content(self, endpoint: str, arg: dict[str, Any], data: bytes | None = None) -> HttpResponse:
        headers = await self._auth_headers()
        # Header values must be ASCII; json.dumps escapes everything else
        headers["Dropbox-API-Arg"] = json.dumps(arg)
        if data is not None:
            headers["Content-Type"] = "application/octet-stream"
        return await self.http.request("POST", f"{self.content_url}/{endpoint}", headers=headers, data=data)

    async def list_files(self, path: str) -> list[RemoteEntry]:
        response = await self._rpc(
            "files/list_folder",
            {"path": _api_path(path), "recursive": False, "include_deleted": False},
        )
        if response.status == 409 and _is_not_found(response):
            logger.debug(f"Folder {path} does not exist yet; treating as empty")
            return []
        _raise_for_status(response, path)

        entries: list[RemoteEntry] = []
        payload = response.json() or {}
        while True:
            entries.extend(_to_entry(e) for e in payload.get("entries", []) if e.get(".tag") in ("file", "folder"))
            if not payload.get("has_more"):
                break
            response = await self._rpc("files/list_folder/continue", {"cursor": payload.get("cursor")})
            _raise_for_status(response, path)
            payload = response.json() or {}
        return entries

    async def download_file(self, path: str) -> bytes:
        response = await self._content("files/download", {"path": _api_path(path)})
        _raise_for_status(response, path)
        return response.body

    async def upload_file(self, path: str, data: bytes, mode: WriteMode = WriteMode.OVERWRITE) -> str:
        arg = {
            "path": _api_path(path),
            "mode": mode.value,
            "autorename": mode is WriteMode.ADD,
            "mute": True,
        }
        response = await self._content("files/upload", arg, data=data)
        _raise_for_status(response, path)
        metadata = response.json() or {}
        return str(metadata.get("path_display") or normalize_path(path))

    async def move_file(self, from_path: str, to_path: str, autorename: bool = True) -> str:
        response = await self._rpc(
            "files/move_v2",
            {
                "from_path": _api_path(from_path),
                "to_path": _api_path(to_path),
                "autorename": autorename,
                "allow_ownership_transfer": False,
            },
        )
        if response.status == 409 and _error_summary(response).startswith("from_lookup/not_found"):
            raise RemoteNotFoundError(from_path)
        _raise_for_status(response, from_path)
        metadata = (response.json() or {}).get("metadata") or {}
        return str(metadata.get("path_display") or normalize_path(to_path))

    async def delete_file(self, path: str) -> None:
        response = await self._rpc("files/delete_v2", {"path": _api_path(path)})
        _raise_for_status(response, path)

    async def get_quota(self) -> Quota | None:
        response = await self._rpc("users/get_space_usage", None)
        _raise_for_status(response, "/")
        payload = response.json() or {}
        allocation = payload.get("allocation") or {}
        return Quota(used=int(payload.get("used") or 0), total=int(allocation.get("allocated") or 0))


def _api_path(path: str) -> str:
    # The API spells the root folder as the empty string
    normalized = normalize_path(path)
    return "" if normalized == "/" else normalized


def _to_entry(raw: dict[str, Any]) -> RemoteEntry:
    modified = raw.get("server_modified") or raw.get("client_modified")
    return RemoteEntry(
        name=str(raw.get("name", "")),
        path=str(raw.get("path_display") or raw.get("path_lower") or ""),
        is_file=raw.get(".tag") == "file",
        size=raw.get("size"),
        modified=_parse_timestamp(modified),
    )


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _error_summary(response: HttpResponse) -> str:
    body = response.json()
    if isinstance(body, dict):
        return str(body.get("error_summary", ""))
    return response.text()


def _is_not_found(response: HttpResponse) -> bool:
    return "not_found" in _error_summary(response)


def _raise_for_status(response: HttpResponse, path: str) -> None:
    if response.ok:
        return
    summary = _error_summary(response)
    if response.status == 401:
        raise AuthError(f"Dropbox rejected the access token: {summary or 'unauthorized'}", status=401)
    if response.status == 409 and "not_found" in summary:
        raise RemoteNotFoundError(path)
    raise TransportError(
        f"Dropbox request for {path} failed with HTTP {response.status}: {summary[:200]}",
        status=response.status,
        url=response.url,
    )
