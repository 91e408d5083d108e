"""
Inbox sources: where pending submissions are listed, read and claimed.

The queue talks only to this interface, so the same poll loop serves a
folder on an object store / file server and a table on the hosted
relational backend.
"""

from __future__ import annotations

import json
import posixpath
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from hubsync.exceptions import ParseError, RemoteNotFoundError
from hubsync.providers.base import ProviderAdapter, WriteMode, join_path, normalize_path

if TYPE_CHECKING:
    from hubsync.providers.supabase import SupabaseProvider

PROCESSED_FOLDER = "processed"

# Submission files are named <epoch millis>_<sender>.json
INBOX_NAME_PATTERN = re.compile(r"^\d+_.+\.json$")

_MILLIS_PREFIX = re.compile(r"^(\d+)_")


@dataclass(frozen=True)
class PendingItem:
    """
    One inbox item as seen by a listing.

    ``item_id`` is stable for the item's whole life (the source path for
    folders, ``<table>/<id>`` for tables) and is what the history ledger keys on.
    """

    item_id: str
    name: str
    submitted_at: datetime | None = None
    size: int | None = None
    row: dict[str, Any] | None = field(default=None, compare=False, repr=False)


def submitted_at_from_name(name: str) -> datetime | None:
    """Decode the ``<epoch millis>_`` prefix of an inbox file name."""
    match = _MILLIS_PREFIX.match(name)
    if not match:
        return None
    try:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class InboxSource(ABC):
    """Abstract inbox backend."""

    def accepts(self, name: str) -> bool:
        """Whether an item with this name is a submission at all."""
        return bool(INBOX_NAME_PATTERN.match(name))

    @abstractmethod
    async def list_pending(self) -> list[PendingItem]:
        """Items waiting to be processed, in listing order. Absent inbox → empty."""
        ...

    @abstractmethod
    async def read(self, item: PendingItem) -> bytes:
        ...

    @abstractmethod
    async def mark_processed(self, item: PendingItem) -> str:
        """
        Claim the item and return where it now lives.

        Raises:
            RemoteNotFoundError: Another pass already claimed it
        """
        ...

    @abstractmethod
    async def list_processed(self) -> list[PendingItem]:
        ...

    @abstractmethod
    async def deposit(self, name: str, data: bytes) -> str:
        """Store a new submission without ever replacing an existing one."""
        ...

    @abstractmethod
    async def delete(self, item: PendingItem) -> None:
        ...

    @abstractmethod
    async def fetch(self, item_id: str) -> bytes:
        """Read an item by identity, wherever it currently lives."""
        ...

    def origin_of(self, item_id: str) -> str:
        """The id the item had while pending. Table rows keep one id for life."""
        return item_id


class FolderInboxSource(InboxSource):
    """Inbox backed by a remote folder; processed items move to ``<inbox>/processed/``."""

    def __init__(self, provider: ProviderAdapter, inbox_root: str):
        self.provider = provider
        self.inbox_root = join_path(inbox_root)
        self.processed_root = join_path(inbox_root, PROCESSED_FOLDER)

    async def list_pending(self) -> list[PendingItem]:
        return await self._list(self.inbox_root)

    async def list_processed(self) -> list[PendingItem]:
        return await self._list(self.processed_root)

    async def _list(self, folder: str) -> list[PendingItem]:
        entries = await self.provider.list_files(folder)
        return [
            PendingItem(
                item_id=entry.path,
                name=entry.name,
                submitted_at=submitted_at_from_name(entry.name) or entry.modified,
                size=entry.size,
            )
            for entry in entries
            if entry.is_file
        ]

    async def read(self, item: PendingItem) -> bytes:
        return await self.provider.download_file(item.item_id)

    async def mark_processed(self, item: PendingItem) -> str:
        return await self.provider.move_file(item.item_id, join_path(self.processed_root, item.name), autorename=True)

    async def deposit(self, name: str, data: bytes) -> str:
        return await self.provider.upload_file(join_path(self.inbox_root, name), data, WriteMode.ADD)

    async def delete(self, item: PendingItem) -> None:
        await self.provider.delete_file(item.item_id)

    async def fetch(self, item_id: str) -> bytes:
        return await self.provider.download_file(item_id)

    def origin_of(self, item_id: str) -> str:
        # Relocation keeps the file name, except when autorename had to add a suffix
        if posixpath.dirname(normalize_path(item_id)) == self.processed_root:
            return join_path(self.inbox_root, posixpath.basename(item_id))
        return item_id


class TableInboxSource(InboxSource):
    """
    Inbox backed by a table on the hosted relational backend.

    Expected columns: ``id``, ``file_name``, ``payload`` (json), ``status``
    (``new`` | ``processed``), ``created_at``. Claiming is a conditional update
    on ``status = new``; zero updated rows means someone else got there first.
    """

    def __init__(self, provider: SupabaseProvider, table: str):
        self.provider = provider
        self.table = table

    def accepts(self, name: str) -> bool:
        # Rows are submissions by construction
        return True

    def _item(self, row: dict[str, Any]) -> PendingItem:
        name = str(row.get("file_name") or f"{row.get('id')}.json")
        return PendingItem(
            item_id=f"{self.table}/{row.get('id')}",
            name=name,
            submitted_at=submitted_at_from_name(name) or _parse_iso(row.get("created_at")),
            row=row,
        )

    def _row_id(self, item_id: str) -> str:
        prefix = f"{self.table}/"
        if not item_id.startswith(prefix):
            raise RemoteNotFoundError(item_id, f"{item_id} is not an item of table {self.table}")
        return item_id[len(prefix) :]

    async def list_pending(self) -> list[PendingItem]:
        rows = await self.provider.query(self.table, {"status": "new"}, order="created_at.asc")
        return [self._item(row) for row in rows]

    async def list_processed(self) -> list[PendingItem]:
        rows = await self.provider.query(self.table, {"status": "processed"}, order="created_at.asc")
        return [self._item(row) for row in rows]

    async def read(self, item: PendingItem) -> bytes:
        if item.row is not None:
            return _payload_bytes(item.row, item.item_id)
        return await self.fetch(item.item_id)

    async def mark_processed(self, item: PendingItem) -> str:
        rows = await self.provider.update_rows(
            self.table,
            {"id": self._row_id(item.item_id), "status": "new"},
            {"status": "processed"},
        )
        if not rows:
            raise RemoteNotFoundError(item.item_id, f"{item.item_id} was already claimed")
        return item.item_id

    async def deposit(self, name: str, data: bytes) -> str:
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ParseError(f"Submission {name} is not valid JSON: {e}", source=name) from e
        rows = await self.provider.insert_rows(self.table, [{"file_name": name, "payload": payload, "status": "new"}])
        return f"{self.table}/{rows[0].get('id')}" if rows else f"{self.table}/{name}"

    async def delete(self, item: PendingItem) -> None:
        rows = await self.provider.delete_rows(self.table, {"id": self._row_id(item.item_id)})
        if not rows:
            raise RemoteNotFoundError(item.item_id)

    async def fetch(self, item_id: str) -> bytes:
        rows = await self.provider.query(self.table, {"id": self._row_id(item_id)})
        if not rows:
            raise RemoteNotFoundError(item_id)
        return _payload_bytes(rows[0], item_id)


def _payload_bytes(row: dict[str, Any], item_id: str) -> bytes:
    payload = row.get("payload")
    if payload is None:
        raise ParseError(f"Inbox row {item_id} has no payload", source=item_id)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload).encode("utf-8")


def _parse_iso(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
