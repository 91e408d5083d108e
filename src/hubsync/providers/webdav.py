"""
Generic file protocol backend (WebDAV, e.g. Nextcloud or a self-hosted server).

Uses basic auth on every request. Listing is PROPFIND with ``Depth: 1``;
quota comes from the RFC 4331 ``quota-used-bytes`` / ``quota-available-bytes``
properties when the server reports them.
"""

from __future__ import annotations

import posixpath
import xml.etree.ElementTree as ET
from datetime import datetime
from email.utils import parsedate_to_datetime
from urllib.parse import quote, unquote, urlparse

import aiohttp

from hubsync.exceptions import AuthError, RemoteNotFoundError, TransportError
from hubsync.providers.base import (
    ProviderAdapter,
    Quota,
    RemoteEntry,
    WriteMode,
    autorename_candidates,
    normalize_path,
)
from hubsync.utils.http import HttpClient, HttpResponse
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.providers.webdav")

DAV_NS = "{DAV:}"

_LIST_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getcontentlength/><d:getlastmodified/>"
    "</d:prop></d:propfind>"
)

_QUOTA_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:quota-used-bytes/><d:quota-available-bytes/>"
    "</d:prop></d:propfind>"
)


class WebDAVProvider(ProviderAdapter):
    """
    WebDAV adapter.

    Args:
        base_url: Collection URL that maps to the remote root "/"
        username: Basic auth user
        password: Basic auth password (often an app password)
        http: Shared HTTP client
    """

    name = "webdav"

    def __init__(self, base_url: str, username: str, password: str, http: HttpClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.base_path = unquote(urlparse(self.base_url).path).rstrip("/")
        self.auth = aiohttp.BasicAuth(username, password)
        self.http = http or HttpClient()

    async def open(self) -> None:
        await self.http.__aenter__()

    async def close(self) -> None:
        await self.http.__aexit__(None, None, None)

    def _url(self, path: str) -> str:
        return self.base_url + quote(normalize_path(path))

    async def _send(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        data: bytes | str | None = None,
    ) -> HttpResponse:
        return await self.http.request(method, self._url(path), headers=headers, data=data, auth=self.auth)

    async def list_files(self, path: str) -> list[RemoteEntry]:
        folder = normalize_path(path)
        response = await self._send(
            "PROPFIND",
            folder,
            headers={"Depth": "1", "Content-Type": "application/xml; charset=utf-8"},
            data=_LIST_BODY,
        )
        if response.status == 404:
            logger.debug(f"Collection {folder} does not exist yet; treating as empty")
            return []
        _raise_for_status(response, folder)

        entries = []
        for entry in self._parse_multistatus(response):
            if entry.path.rstrip("/") == folder.rstrip("/"):
                continue
            entries.append(entry)
        return entries

    def _parse_multistatus(self, response: HttpResponse) -> list[RemoteEntry]:
        try:
            root = ET.fromstring(response.body)
        except ET.ParseError as e:
            raise TransportError(f"WebDAV server returned an unreadable listing: {e}", url=response.url) from e

        entries = []
        for node in root.iter(f"{DAV_NS}response"):
            href = node.findtext(f"{DAV_NS}href") or ""
            path = self._href_to_path(href)
            is_collection = node.find(f".//{DAV_NS}resourcetype/{DAV_NS}collection") is not None
            length = node.findtext(f".//{DAV_NS}getcontentlength")
            modified = node.findtext(f".//{DAV_NS}getlastmodified")
            entries.append(
                RemoteEntry(
                    name=posixpath.basename(path.rstrip("/")),
                    path=path,
                    is_file=not is_collection,
                    size=int(length) if length and length.isdigit() else None,
                    modified=_parse_http_date(modified),
                )
            )
        return entries

    def _href_to_path(self, href: str) -> str:
        path = unquote(urlparse(href).path)
        if self.base_path and path.startswith(self.base_path):
            path = path[len(self.base_path) :]
        return normalize_path(path)

    async def download_file(self, path: str) -> bytes:
        response = await self._send("GET", path)
        _raise_for_status(response, path)
        return response.body

    async def upload_file(self, path: str, data: bytes, mode: WriteMode = WriteMode.OVERWRITE) -> str:
        target = normalize_path(path)
        if mode is WriteMode.OVERWRITE:
            await self._put(target, data, headers={})
            return target

        for candidate in [target, *autorename_candidates(target)]:
            response = await self._put(candidate, data, headers={"If-None-Match": "*"}, allow_conflict=True)
            if response.status != 412:
                return candidate
            logger.debug(f"{candidate} exists; trying the next name")
        raise TransportError(f"No free name next to {target}", status=412)

    async def _put(
        self,
        path: str,
        data: bytes,
        headers: dict[str, str],
        allow_conflict: bool = False,
    ) -> HttpResponse:
        headers = {"Content-Type": "application/octet-stream", **headers}
        response = await self._send("PUT", path, headers=headers, data=data)
        if response.status == 409:
            # Parent collection missing
            await self._make_parents(path)
            response = await self._send("PUT", path, headers=headers, data=data)
        if allow_conflict and response.status == 412:
            return response
        _raise_for_status(response, path)
        return response

    async def _make_parents(self, path: str) -> None:
        parts = [p for p in posixpath.dirname(normalize_path(path)).split("/") if p]
        current = ""
        for part in parts:
            current = f"{current}/{part}"
            response = await self._send("MKCOL", current)
            # 405: collection already exists
            if response.status not in (201, 405):
                _raise_for_status(response, current)

    async def move_file(self, from_path: str, to_path: str, autorename: bool = True) -> str:
        source = normalize_path(from_path)
        target = normalize_path(to_path)
        candidates = [target, *autorename_candidates(target)] if autorename else [target]
        parents_made = False
        for candidate in candidates:
            response = await self._move(source, candidate)
            if response.status == 409 and not parents_made:
                await self._make_parents(candidate)
                parents_made = True
                response = await self._move(source, candidate)
            if response.status == 404:
                raise RemoteNotFoundError(from_path)
            if response.status == 412:
                if not autorename:
                    raise TransportError(f"Destination already exists: {candidate}", status=412, url=response.url)
                continue
            _raise_for_status(response, source)
            return candidate
        raise TransportError(f"No free name next to {target}", status=412)

    async def _move(self, source: str, target: str) -> HttpResponse:
        return await self._send("MOVE", source, headers={"Destination": self._url(target), "Overwrite": "F"})

    async def delete_file(self, path: str) -> None:
        response = await self._send("DELETE", path)
        _raise_for_status(response, path)

    async def get_quota(self) -> Quota | None:
        response = await self._send(
            "PROPFIND",
            "/",
            headers={"Depth": "0", "Content-Type": "application/xml; charset=utf-8"},
            data=_QUOTA_BODY,
        )
        _raise_for_status(response, "/")
        try:
            root = ET.fromstring(response.body)
        except ET.ParseError:
            return None
        used = root.findtext(f".//{DAV_NS}quota-used-bytes")
        available = root.findtext(f".//{DAV_NS}quota-available-bytes")
        if not used or not available:
            return None
        try:
            used_bytes = int(used)
            available_bytes = int(available)
        except ValueError:
            return None
        # Negative values mean "unknown" or "unlimited"
        if used_bytes < 0 or available_bytes < 0:
            return None
        return Quota(used=used_bytes, total=used_bytes + available_bytes)


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _raise_for_status(response: HttpResponse, path: str) -> None:
    if response.ok:
        return
    if response.status in (401, 403):
        raise AuthError(f"WebDAV server rejected the credentials (HTTP {response.status})", status=response.status)
    if response.status == 404:
        raise RemoteNotFoundError(path)
    raise TransportError(
        f"WebDAV request for {path} failed with HTTP {response.status}",
        status=response.status,
        url=response.url,
    )
