"""
Per-installation sync settings and their private on-disk home.

The credentials file lives in the state directory, outside the synchronized
tables, so credentials never travel inside a snapshot.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from hubsync.exceptions import ConfigurationError
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.config.sync")

CREDENTIALS_FILENAME = "credentials.yaml"


class ProviderKind(str, Enum):
    """Remote backend selected for this installation."""

    NONE = "none"
    OBJECT_STORE = "delegated-object-store"
    FILE_PROTOCOL = "generic-file-protocol"
    HOSTED_RELATIONAL = "hosted-relational"

    @classmethod
    def parse(cls, value: str | ProviderKind | None) -> ProviderKind:
        if isinstance(value, ProviderKind):
            return value
        if not value:
            return cls.NONE
        normalized = str(value).strip().lower()
        alias = _PROVIDER_ALIASES.get(normalized, normalized)
        try:
            return cls(alias)
        except ValueError:
            raise ConfigurationError(
                f"Unknown sync provider '{value}'. "
                f"Expected one of: {', '.join(p.value for p in cls)} (or dropbox, webdav, supabase)"
            ) from None


_PROVIDER_ALIASES = {
    "dropbox": ProviderKind.OBJECT_STORE.value,
    "webdav": ProviderKind.FILE_PROTOCOL.value,
    "supabase": ProviderKind.HOSTED_RELATIONAL.value,
}


@dataclass(frozen=True)
class SyncConfiguration:
    """
    Per-installation sync settings.

    Immutable: the token-refresh flow and user configuration produce new
    instances via ``replace``-style helpers, which the owner persists.
    """

    provider: ProviderKind = ProviderKind.NONE

    # Delegated object store (Dropbox)
    app_key: str | None = None
    redirect_uri: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    access_token_expires_at: float | None = None

    # Generic file protocol (WebDAV)
    base_url: str | None = None
    username: str | None = None
    password: str | None = None

    # Hosted relational (Supabase)
    api_url: str | None = None
    api_key: str | None = None
    bucket: str = "hubsync"
    inbox_table: str = "inbox_submissions"

    # Honoured by `hubsync pull --if-auto-sync`
    auto_sync: bool = False
    admin_identity: str | None = None
    last_sync: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SyncConfiguration:
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown sync configuration keys: {', '.join(unknown)}")
        values = {k: v for k, v in data.items() if k in known}
        values["provider"] = ProviderKind.parse(values.get("provider"))
        if values.get("access_token_expires_at") is not None:
            try:
                values["access_token_expires_at"] = float(values["access_token_expires_at"])
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"access_token_expires_at must be epoch seconds, got {values['access_token_expires_at']!r}"
                ) from None
        if "auto_sync" in values:
            values["auto_sync"] = bool(values["auto_sync"])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["provider"] = self.provider.value
        return {k: v for k, v in data.items() if v is not None}

    def with_access_token(self, token: str, expires_at: float) -> SyncConfiguration:
        return replace(self, access_token=token, access_token_expires_at=expires_at)

    def with_token_grant(self, access_token: str, refresh_token: str | None, expires_at: float) -> SyncConfiguration:
        return replace(
            self,
            provider=ProviderKind.OBJECT_STORE,
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            access_token_expires_at=expires_at,
        )

    def with_last_sync(self, timestamp: str) -> SyncConfiguration:
        return replace(self, last_sync=timestamp)

    def update(self, **changes: Any) -> SyncConfiguration:
        """Return a copy with user-supplied changes applied."""
        if "provider" in changes:
            changes["provider"] = ProviderKind.parse(changes["provider"])
        return replace(self, **changes)

    def __repr__(self) -> str:
        # Never print secrets
        return f"SyncConfiguration(provider={self.provider.value!r}, connected={self.is_connected})"

    @property
    def is_connected(self) -> bool:
        if self.provider is ProviderKind.OBJECT_STORE:
            return bool(self.app_key and self.refresh_token)
        if self.provider is ProviderKind.FILE_PROTOCOL:
            return bool(self.base_url and self.username and self.password)
        if self.provider is ProviderKind.HOSTED_RELATIONAL:
            return bool(self.api_url and self.api_key)
        return False


class CredentialStore:
    """Reads and writes the SyncConfiguration YAML file in the state directory."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / CREDENTIALS_FILENAME

    def load(self) -> SyncConfiguration:
        if not self.path.exists():
            return SyncConfiguration()
        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Credentials file {self.path} is not valid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Credentials file {self.path} must contain a mapping")
        return SyncConfiguration.from_dict(data)

    def save(self, config: SyncConfiguration) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".yaml.part")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            yaml.safe_dump(config.to_dict(), f, sort_keys=True)
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved sync configuration to {self.path}")
