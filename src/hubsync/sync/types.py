"""
Type definitions for snapshots and inbox submissions.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from hubsync.exceptions import ParseError, VersionMismatchError
from hubsync.store.local import COVERED_TABLE_NAMES

SNAPSHOT_FORMAT = "hubsync-snapshot"
SNAPSHOT_VERSION = 1
SUPPORTED_SNAPSHOT_VERSIONS: tuple[int, ...] = (1,)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any, *, source: str | None = None, field_name: str = "timestamp") -> datetime:
    """ISO-8601 string → aware datetime (naive values are taken as UTC)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ParseError(f"Invalid {field_name} {value!r}", source=source) from None
    else:
        raise ParseError(f"Missing or invalid {field_name}", source=source)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _load_json(data: bytes, source: str | None) -> Any:
    try:
        return json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ParseError(f"Not valid JSON: {e}", source=source) from e


# --- Snapshot ------------------------------------------------------------------


@dataclass(frozen=True)
class SnapshotEnvelope:
    """The whole synchronized state: every covered table, in the fixed order."""

    created_at: datetime
    tables: dict[str, list[dict[str, Any]]]
    version: int = SNAPSHOT_VERSION

    def to_json(self) -> bytes:
        document = {
            "format": SNAPSHOT_FORMAT,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "tables": {name: self.tables.get(name, []) for name in COVERED_TABLE_NAMES},
        }
        return json.dumps(document, ensure_ascii=False, default=str).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes, source: str | None = None) -> SnapshotEnvelope:
        """
        Parse and validate an envelope.

        Raises:
            ParseError: Malformed JSON or structure, or a table set that differs from the covered set
            VersionMismatchError: Unknown format tag or unsupported version
        """
        document = _load_json(data, source)
        if not isinstance(document, dict):
            raise ParseError("Snapshot must be a JSON object", source=source)

        if document.get("format") != SNAPSHOT_FORMAT:
            raise VersionMismatchError(document.get("format"), SUPPORTED_SNAPSHOT_VERSIONS)
        version = document.get("version")
        if isinstance(version, bool) or version not in SUPPORTED_SNAPSHOT_VERSIONS:
            raise VersionMismatchError(version, SUPPORTED_SNAPSHOT_VERSIONS)

        created_at = parse_timestamp(document.get("created_at"), source=source, field_name="created_at")

        tables = document.get("tables")
        if not isinstance(tables, dict):
            raise ParseError("Snapshot has no 'tables' object", source=source)
        missing = [name for name in COVERED_TABLE_NAMES if name not in tables]
        unexpected = sorted(set(tables) - set(COVERED_TABLE_NAMES))
        if missing or unexpected:
            raise ParseError(
                f"Snapshot table set does not match (missing: {missing or 'none'}, unexpected: {unexpected or 'none'})",
                source=source,
            )
        for name in COVERED_TABLE_NAMES:
            rows = tables[name]
            if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
                raise ParseError(f"Table '{name}' must be a list of objects", source=source)

        return cls(
            created_at=created_at,
            tables={name: tables[name] for name in COVERED_TABLE_NAMES},
            version=version,
        )

    def row_counts(self) -> dict[str, int]:
        return {name: len(self.tables.get(name, [])) for name in COVERED_TABLE_NAMES}


@dataclass(frozen=True)
class RemoteSnapshotInfo:
    path: str
    version: int
    created_at: datetime
    row_counts: dict[str, int]


# --- Inbox payloads ------------------------------------------------------------

_ADMISSION_FIELDS = (
    "full_name",
    "gender",
    "birth_place",
    "birth_date",
    "address",
    "guardian_name",
    "guardian_phone",
    "previous_school",
)

_WHITESPACE = re.compile(r"\s+")
_NON_DIGITS = re.compile(r"\D+")


@dataclass(frozen=True)
class AdmissionApplication:
    """An admission form submission."""

    full_name: str
    submitted_at: datetime
    gender: str = ""
    birth_place: str = ""
    birth_date: str = ""
    address: str = ""
    guardian_name: str = ""
    guardian_phone: str = ""
    previous_school: str = ""
    additional_fields: dict[str, str] = field(default_factory=dict)

    kind = "admission"

    @property
    def natural_key(self) -> tuple[str, str]:
        """Normalized full name plus the digits of the guardian phone."""
        return natural_key(self.full_name, self.guardian_phone)

    @property
    def record_count(self) -> int:
        return 1

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str | None = None) -> AdmissionApplication:
        full_name = data.get("full_name")
        if not isinstance(full_name, str) or not full_name.strip():
            raise ParseError("Admission is missing 'full_name'", source=source)

        values = {name: _as_text(data.get(name)) for name in _ADMISSION_FIELDS}
        values["full_name"] = full_name.strip()

        extra = data.get("additional_fields") or {}
        if not isinstance(extra, dict):
            raise ParseError("'additional_fields' must be an object", source=source)
        additional = {str(k): _as_text(v) for k, v in extra.items()}

        known = set(_ADMISSION_FIELDS) | {"kind", "submitted_at", "additional_fields"}
        for key, value in data.items():
            if key not in known:
                additional.setdefault(str(key), _as_text(value))

        return cls(
            submitted_at=parse_timestamp(data.get("submitted_at"), source=source, field_name="submitted_at"),
            additional_fields=additional,
            **values,
        )


@dataclass(frozen=True)
class StaffUpdate:
    """A staff installation's upload of its local rows, table by table."""

    sender: str
    timestamp: datetime
    tables: dict[str, list[dict[str, Any]]]

    kind = "staff_update"

    @property
    def record_count(self) -> int:
        return sum(len(rows) for rows in self.tables.values())

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str | None = None) -> StaffUpdate:
        sender = data.get("sender")
        if not isinstance(sender, str) or not sender.strip():
            raise ParseError("Staff update is missing 'sender'", source=source)
        tables = data.get("data")
        if not isinstance(tables, dict):
            raise ParseError("Staff update is missing the 'data' object", source=source)
        unknown = sorted(set(tables) - set(COVERED_TABLE_NAMES))
        if unknown:
            raise ParseError(f"Staff update names unknown tables: {', '.join(unknown)}", source=source)
        for name, rows in tables.items():
            if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
                raise ParseError(f"Table '{name}' must be a list of objects", source=source)
        return cls(
            sender=sender.strip(),
            timestamp=parse_timestamp(data.get("timestamp"), source=source),
            tables={name: tables[name] for name in COVERED_TABLE_NAMES if name in tables},
        )


SubmissionPayload = Union[AdmissionApplication, StaffUpdate]

_PAYLOAD_KINDS: dict[str, type] = {
    AdmissionApplication.kind: AdmissionApplication,
    StaffUpdate.kind: StaffUpdate,
}


def parse_submission(data: bytes, source: str | None = None) -> SubmissionPayload:
    """
    Decode one inbox submission.

    Raises:
        ParseError: Invalid JSON, unknown ``kind`` or missing required fields
    """
    document = _load_json(data, source)
    if not isinstance(document, dict):
        raise ParseError("Submission must be a JSON object", source=source)
    kind = document.get("kind")
    payload_class = _PAYLOAD_KINDS.get(kind) if isinstance(kind, str) else None
    if payload_class is None:
        raise ParseError(f"Unknown submission kind {kind!r}", source=source)
    return payload_class.from_dict(document, source=source)


def natural_key(full_name: Any, phone: Any) -> tuple[str, str]:
    name = _WHITESPACE.sub(" ", _as_text(full_name)).strip().casefold()
    return name, _NON_DIGITS.sub("", _as_text(phone))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


# --- Inbox results -------------------------------------------------------------


@dataclass(frozen=True)
class ParsedRecord:
    """A submission that was parsed and claimed by exactly one poll."""

    source_path: str
    processed_path: str
    submitted_at: datetime | None
    payload: SubmissionPayload

    @property
    def file_name(self) -> str:
        return self.source_path.rsplit("/", 1)[-1]


class InboxEntryStatus(str, Enum):
    PENDING = "pending"  # still in the inbox root
    UNMERGED = "unmerged"  # processed but not in the local ledger
    MERGED = "merged"


@dataclass(frozen=True)
class InboxEntry:
    item_id: str
    name: str
    status: InboxEntryStatus
    submitted_at: datetime | None = None
    size: int | None = None
