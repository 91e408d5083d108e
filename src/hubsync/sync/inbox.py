"""
Inbox ingestion queue.

Many installations deposit submissions into one shared inbox; any admin
installation polls it. A submission is yielded only after it was moved out
of the pending area, so each one is consumed by exactly one poll even when
several admins poll at once.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from hubsync.exceptions import HubSyncError, ParseError, PollInterruptedError, RemoteNotFoundError
from hubsync.providers.base import ProviderAdapter
from hubsync.store.history import SyncHistoryLedger
from hubsync.sync.sources import PendingItem
from hubsync.sync.types import (
    AdmissionApplication,
    InboxEntry,
    InboxEntryStatus,
    ParsedRecord,
    SubmissionPayload,
    parse_submission,
)
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.sync.inbox")

_UNSAFE_SENDER_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

_STATUS_ORDER = {
    InboxEntryStatus.PENDING: 0,
    InboxEntryStatus.UNMERGED: 1,
    InboxEntryStatus.MERGED: 2,
}


def _payload_time(payload: SubmissionPayload) -> datetime:
    if isinstance(payload, AdmissionApplication):
        return payload.submitted_at
    return payload.timestamp


class InboxQueue:
    """
    Poll, submit and housekeep one inbox.

    Args:
        provider: Remote backend; its ``open_inbox`` decides folder or table storage
        inbox_root: Remote inbox folder (ignored by table-backed inboxes)
        millis: Returns the current time in epoch milliseconds (submission names)
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        inbox_root: str = "/hubsync/inbox",
        millis: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.provider = provider
        self.source = provider.open_inbox(inbox_root)
        self.millis = millis

    async def poll(self) -> list[ParsedRecord]:
        """
        Consume every pending, well-formed submission exactly once.

        Every item is downloaded and parsed before anything is relocated, so a
        failed download leaves the whole inbox untouched. Unparseable items
        stay in place for the next poll. Items another poll claimed first are
        skipped.

        Raises:
            PollInterruptedError: Relocation failed after some items were
                already claimed; the error carries their records
        """
        pending = [item for item in await self.source.list_pending() if self.source.accepts(item.name)]
        parsed: list[tuple[PendingItem, SubmissionPayload]] = []
        malformed = 0
        claimed_elsewhere = 0

        for item in pending:
            try:
                data = await self.source.read(item)
            except RemoteNotFoundError:
                logger.info(f"{item.name} disappeared before download; claimed by another poll")
                claimed_elsewhere += 1
                continue
            try:
                parsed.append((item, parse_submission(data, source=item.item_id)))
            except ParseError as e:
                logger.warning(f"Skipping malformed submission {item.name}: {e.message}")
                malformed += 1

        records: list[ParsedRecord] = []
        for item, payload in parsed:
            try:
                processed_path = await self.source.mark_processed(item)
            except RemoteNotFoundError:
                logger.info(f"{item.name} was claimed by another poll; skipping")
                claimed_elsewhere += 1
                continue
            except HubSyncError as e:
                if not records:
                    raise
                logger.error(f"Poll stopped at {item.name} after claiming {len(records)} submissions: {e.message}")
                raise PollInterruptedError(records, e) from e

            records.append(
                ParsedRecord(
                    source_path=item.item_id,
                    processed_path=processed_path,
                    submitted_at=_payload_time(payload),
                    payload=payload,
                )
            )

        logger.info(
            f"Inbox poll: {len(records)} consumed, {malformed} malformed, "
            f"{claimed_elsewhere} claimed elsewhere, {len(pending)} pending at start"
        )
        return records

    async def submit(self, payload: dict[str, Any], sender: str) -> str:
        """
        Deposit a submission as ``<epoch millis>_<sender>.json`` and return where it landed.

        Raises:
            ParseError: ``payload`` is not a valid submission
        """
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        parse_submission(data, source="<submit>")
        safe_sender = _UNSAFE_SENDER_CHARS.sub("-", sender).strip("-") or "anonymous"
        name = f"{self.millis()}_{safe_sender}.json"
        path = await self.source.deposit(name, data)
        logger.info(f"Submitted {name} as {path}")
        return path

    async def list_entries(self, ledger: SyncHistoryLedger) -> list[InboxEntry]:
        """Pending and processed entries: pending, then unmerged, then merged; newest first within each."""
        merged = _merged_locations(ledger)
        entries = [
            _entry(item, InboxEntryStatus.PENDING)
            for item in await self.source.list_pending()
            if self.source.accepts(item.name)
        ]
        for item in await self.source.list_processed():
            status = InboxEntryStatus.MERGED if item.item_id in merged else InboxEntryStatus.UNMERGED
            entries.append(_entry(item, status))

        entries.sort(key=lambda e: e.submitted_at.timestamp() if e.submitted_at else float("-inf"), reverse=True)
        entries.sort(key=lambda e: _STATUS_ORDER[e.status])
        return entries

    async def fetch(self, item_id: str) -> ParsedRecord:
        """
        Download and parse one entry without moving it.

        A processed entry is reported under the id it had while pending, so the
        ledger keeps one identity per submission.
        """
        payload = parse_submission(await self.source.fetch(item_id), source=item_id)
        return ParsedRecord(
            source_path=self.source.origin_of(item_id),
            processed_path=item_id,
            submitted_at=_payload_time(payload),
            payload=payload,
        )

    async def purge_merged(self, ledger: SyncHistoryLedger) -> int:
        """Delete processed items that are already merged locally. Returns how many were deleted."""
        merged = _merged_locations(ledger)
        deleted = 0
        for item in await self.source.list_processed():
            if item.item_id not in merged:
                continue
            try:
                await self.source.delete(item)
            except RemoteNotFoundError:
                logger.debug(f"{item.item_id} already gone")
                continue
            deleted += 1
        logger.info(f"Purged {deleted} merged inbox items")
        return deleted


def _merged_locations(ledger: SyncHistoryLedger) -> set[str]:
    locations: set[str] = set()
    for record in ledger.entries():
        locations.add(record.item_id)
        if record.processed_path:
            locations.add(record.processed_path)
    return locations


def _entry(item: PendingItem, status: InboxEntryStatus) -> InboxEntry:
    return InboxEntry(
        item_id=item.item_id,
        name=item.name,
        status=status,
        submitted_at=item.submitted_at,
        size=item.size,
    )
