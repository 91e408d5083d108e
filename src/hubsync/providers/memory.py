"""
In-memory provider for testing.

Keeps blobs in a dict keyed by normalized path, with the same conflict and
not-found behaviour as the network backends.

Example:
    provider = MemoryProvider()

    async with provider:
        await provider.upload_file("/hubsync/inbox/1_a.json", b"{}", WriteMode.ADD)
        entries = await provider.list_files("/hubsync/inbox")
"""

from __future__ import annotations

import asyncio
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timezone

from hubsync.exceptions import RemoteNotFoundError, TransportError
from hubsync.providers.base import (
    ProviderAdapter,
    Quota,
    RemoteEntry,
    WriteMode,
    autorename_candidates,
    normalize_path,
)


@dataclass
class _Blob:
    data: bytes
    modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MemoryProvider(ProviderAdapter):
    """
    In-process storage backend.

    Every operation awaits ``asyncio.sleep(latency)`` first, so concurrent
    callers interleave the way they would against a real server.

    Args:
        capacity: Reported quota total in bytes; None disables quota support
        latency: Seconds to sleep at the start of each operation
    """

    name = "memory"

    def __init__(self, capacity: int | None = None, latency: float = 0.0):
        self.capacity = capacity
        self.latency = latency
        self._blobs: dict[str, _Blob] = {}

    def files(self) -> dict[str, bytes]:
        """Snapshot of all stored paths and contents."""
        return {path: blob.data for path, blob in sorted(self._blobs.items())}

    async def _tick(self) -> None:
        await asyncio.sleep(self.latency)

    async def list_files(self, path: str) -> list[RemoteEntry]:
        await self._tick()
        folder = normalize_path(path)
        prefix = folder.rstrip("/") + "/"
        files: list[RemoteEntry] = []
        subfolders: set[str] = set()
        for blob_path, blob in self._blobs.items():
            if not blob_path.startswith(prefix):
                continue
            rest = blob_path[len(prefix) :]
            if "/" in rest:
                subfolders.add(rest.split("/", 1)[0])
            else:
                files.append(
                    RemoteEntry(
                        name=rest,
                        path=blob_path,
                        is_file=True,
                        size=len(blob.data),
                        modified=blob.modified,
                    )
                )
        folders = [RemoteEntry(name=n, path=prefix + n, is_file=False) for n in sorted(subfolders)]
        return folders + sorted(files, key=lambda e: e.name)

    async def download_file(self, path: str) -> bytes:
        await self._tick()
        blob = self._blobs.get(normalize_path(path))
        if blob is None:
            raise RemoteNotFoundError(path)
        return blob.data

    async def upload_file(self, path: str, data: bytes, mode: WriteMode = WriteMode.OVERWRITE) -> str:
        await self._tick()
        target = normalize_path(path)
        if mode is WriteMode.ADD and target in self._blobs:
            target = self._free_name(target)
        self._blobs[target] = _Blob(bytes(data))
        return target

    async def move_file(self, from_path: str, to_path: str, autorename: bool = True) -> str:
        await self._tick()
        source = normalize_path(from_path)
        blob = self._blobs.get(source)
        if blob is None:
            raise RemoteNotFoundError(from_path)
        target = normalize_path(to_path)
        if target in self._blobs:
            if not autorename:
                raise TransportError(f"Destination already exists: {target}", status=409)
            target = self._free_name(target)
        del self._blobs[source]
        self._blobs[target] = blob
        return target

    async def delete_file(self, path: str) -> None:
        await self._tick()
        if self._blobs.pop(normalize_path(path), None) is None:
            raise RemoteNotFoundError(path)

    async def get_quota(self) -> Quota | None:
        await self._tick()
        if self.capacity is None:
            return None
        return Quota(used=sum(len(b.data) for b in self._blobs.values()), total=self.capacity)

    def _free_name(self, path: str) -> str:
        for candidate in autorename_candidates(path):
            if candidate not in self._blobs:
                return candidate
        raise TransportError(f"No free name next to {posixpath.basename(path)}", status=409)
