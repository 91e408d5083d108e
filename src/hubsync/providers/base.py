"""
Base provider adapter interface.

Every remote backend (Dropbox, WebDAV, Supabase, in-memory) implements this
interface so the snapshot and inbox components never branch on which backend
is in use.
"""

from __future__ import annotations

import posixpath
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hubsync.sync.sources import InboxSource

MAX_AUTORENAME_ATTEMPTS = 100


class WriteMode(str, Enum):
    """Upload conflict behaviour."""

    OVERWRITE = "overwrite"
    ADD = "add"  # never replace; autorename on conflict


@dataclass(frozen=True)
class RemoteEntry:
    """One item from a folder listing."""

    name: str
    path: str
    is_file: bool
    size: int | None = None
    modified: datetime | None = None


@dataclass(frozen=True)
class Quota:
    """Storage usage in bytes."""

    used: int
    total: int

    @property
    def percent(self) -> float:
        return (self.used / self.total) * 100 if self.total > 0 else 0.0


def normalize_path(path: str) -> str:
    """Absolute, slash-separated, no trailing slash ("/" for the root)."""
    return posixpath.normpath("/" + path.strip().lstrip("/"))


def join_path(*parts: str) -> str:
    return normalize_path("/".join(p.strip("/") for p in parts if p))


def autorename_candidates(path: str, limit: int = MAX_AUTORENAME_ATTEMPTS) -> Iterator[str]:
    """
    Yield "name (1).ext", "name (2).ext", ... next to ``path``.

    Mirrors the server-side autorename scheme of the delegated object store so
    every backend produces the same names.
    """
    directory, filename = posixpath.split(path)
    stem, ext = posixpath.splitext(filename)
    for n in range(1, limit + 1):
        yield posixpath.join(directory, f"{stem} ({n}){ext}")


class ProviderAdapter(ABC):
    """
    Abstract base class for remote storage backends.

    Implementations:
    - DropboxProvider: delegated-authorization object store (OAuth2 bearer token)
    - WebDAVProvider: generic file protocol server (basic auth)
    - SupabaseProvider: hosted relational backend (static API key)
    - MemoryProvider: in-process backend for tests and offline use

    Providers are usable as async context managers; entering opens the
    underlying HTTP session so a multi-call operation reuses one connection pool.
    """

    name: str = "provider"

    async def __aenter__(self) -> ProviderAdapter:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        await self.close()

    async def open(self) -> None:
        """Acquire transport resources. No-op by default."""

    async def close(self) -> None:
        """Release transport resources. No-op by default."""

    @abstractmethod
    async def list_files(self, path: str) -> list[RemoteEntry]:
        """
        List the direct children of ``path``.

        A folder that does not exist is reported as an empty listing, never as
        an error.
        """
        ...

    @abstractmethod
    async def download_file(self, path: str) -> bytes:
        """
        Download a file.

        Raises:
            RemoteNotFoundError, AuthError, TransportError
        """
        ...

    @abstractmethod
    async def upload_file(self, path: str, data: bytes, mode: WriteMode = WriteMode.OVERWRITE) -> str:
        """
        Upload a file and return the path it was stored at.

        In ADD mode an occupied path is autorenamed instead of replaced.
        """
        ...

    @abstractmethod
    async def move_file(self, from_path: str, to_path: str, autorename: bool = True) -> str:
        """
        Move a file and return its final path.

        Raises:
            RemoteNotFoundError: ``from_path`` no longer exists
        """
        ...

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        """Delete a file."""
        ...

    async def get_quota(self) -> Quota | None:
        """Storage usage, or None when the backend has no quota concept."""
        return None

    def open_inbox(self, inbox_root: str) -> InboxSource:
        """
        Return the inbox source for this backend.

        Folder-backed by default; backends without a filesystem concept
        override this.
        """
        from hubsync.sync.sources import FolderInboxSource

        return FolderInboxSource(self, inbox_root)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"
