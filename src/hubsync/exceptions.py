"""
hubsync exception hierarchy.

All domain-specific exceptions inherit from HubSyncError, so a caller can catch
any engine failure with a single base class while still handling the
individual kinds where the remediation differs.

Hierarchy::

    HubSyncError
    ├── ConfigurationError        - missing/invalid credentials or settings
    ├── AuthError                 - token endpoint or provider rejected credentials
    ├── RemoteNotFoundError       - remote object absent
    ├── TransportError            - network failure, timeout, unclassified non-2xx
    ├── DataFormatError           - payload not understood
    │   ├── VersionMismatchError  - snapshot format tag/version not supported
    │   └── ParseError            - malformed payload
    ├── StateStoreError           - local store read/write/transaction
    └── PollInterruptedError      - a poll failed after claiming some submissions
"""

from __future__ import annotations


class HubSyncError(Exception):
    """Base exception for all hubsync errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(HubSyncError):
    """Raised when sync is not configured or credentials are incomplete.

    Raised before any network call is attempted.
    """


# --- Remote ------------------------------------------------------------------


class AuthError(HubSyncError):
    """Raised when the token endpoint or a provider rejects the credentials."""

    def __init__(self, message: str, *, status: int | None = None, error_code: str | None = None) -> None:
        super().__init__(message, details={"status": status, "error": error_code})
        self.status = status
        self.error_code = error_code


class RemoteNotFoundError(HubSyncError):
    """Raised when a remote object does not exist."""

    def __init__(self, path: str, message: str | None = None) -> None:
        super().__init__(message or f"Remote path not found: {path}", details={"path": path})
        self.path = path


class TransportError(HubSyncError):
    """Raised on network failures, timeouts and non-2xx responses not otherwise classified."""

    def __init__(self, message: str, *, status: int | None = None, url: str | None = None) -> None:
        super().__init__(message, details={"status": status, "url": url})
        self.status = status
        self.url = url


# --- Data format -------------------------------------------------------------


class DataFormatError(HubSyncError):
    """Raised when a downloaded payload cannot be understood."""


class VersionMismatchError(DataFormatError):
    """Raised when a snapshot carries a format version this engine does not support."""

    def __init__(self, found: object, supported: tuple[int, ...]) -> None:
        super().__init__(
            f"Snapshot format version {found!r} is not supported (supported: {', '.join(map(str, supported))})",
            details={"found": found, "supported": list(supported)},
        )
        self.found = found
        self.supported = supported


class ParseError(DataFormatError):
    """Raised when a payload is malformed."""

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message, details={"source": source})
        self.source = source


# --- Local store -------------------------------------------------------------


class StateStoreError(HubSyncError):
    """Raised when the local store cannot be read or written."""


# --- Inbox -------------------------------------------------------------------


class PollInterruptedError(HubSyncError):
    """Raised when an inbox poll fails after it already moved some submissions to processed.

    ``records`` holds what was claimed before the failure; ``cause`` is the
    error that stopped the poll.
    """

    def __init__(self, records: list, cause: HubSyncError) -> None:
        super().__init__(
            f"{cause.message} ({len(records)} submissions were already moved to processed)",
            details={"claimed": len(records), **cause.details},
        )
        self.records = records
        self.cause = cause


_USER_MESSAGES: list[tuple[type[BaseException], str]] = [
    (ConfigurationError, "Sync is not configured: {message}. Check the cloud sync settings."),
    (AuthError, "Authentication failed: {message}. Reconnect the cloud account."),
    (TransportError, "Network failure: {message}. Check the internet connection and try again."),
    (DataFormatError, "Data format mismatch: {message}. Update the software on this or the sending installation."),
    (RemoteNotFoundError, "Remote data missing: {message}."),
    (StateStoreError, "Local storage failure: {message}."),
]


def user_message(exc: BaseException) -> str:
    """Return a human-readable message that names the remediation for ``exc``."""
    if isinstance(exc, PollInterruptedError):
        return (
            f"{user_message(exc.cause)} {len(exc.records)} submissions were already moved to processed; "
            "run 'hubsync inbox list' to see them."
        )
    detail = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    for exc_class, template in _USER_MESSAGES:
        if isinstance(exc, exc_class):
            return template.format(message=detail.rstrip("."))
    return f"Unexpected error: {detail}"
