"""
Pairing codes: copy a connected installation's durable credentials to another one.

Format: ``HUBSYNC-CLOUD-<base64(json)>`` where the JSON uses short keys
(``p`` provider, ``k`` app key, ``r`` refresh token, ``u`` URL, ``n`` user,
``w`` password/key).
"""

from __future__ import annotations

import base64
import binascii
import json

from hubsync.config.sync_config import ProviderKind, SyncConfiguration
from hubsync.exceptions import ConfigurationError

PAIRING_PREFIX = "HUBSYNC-CLOUD-"


def export_pairing_code(config: SyncConfiguration) -> str:
    """Encode the durable credentials of a connected configuration."""
    if not config.is_connected:
        raise ConfigurationError("Cloud is not connected; connect before sharing access")

    if config.provider is ProviderKind.OBJECT_STORE:
        payload = {"p": "dropbox", "k": config.app_key, "r": config.refresh_token}
    elif config.provider is ProviderKind.FILE_PROTOCOL:
        payload = {"p": "webdav", "u": config.base_url, "n": config.username, "w": config.password}
    else:
        payload = {"p": "supabase", "u": config.api_url, "w": config.api_key, "b": config.bucket}

    encoded = base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")
    return f"{PAIRING_PREFIX}{encoded}"


def import_pairing_code(code: str, current: SyncConfiguration | None = None) -> SyncConfiguration:
    """
    Apply a pairing code on top of ``current``.

    Any cached access token is cleared so the next remote call refreshes with
    the imported refresh token.
    """
    current = current or SyncConfiguration()
    raw = code.strip()
    if raw.startswith(PAIRING_PREFIX):
        raw = raw[len(PAIRING_PREFIX) :]
    try:
        data = json.loads(base64.b64decode(raw, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Pairing code could not be decoded: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError("Pairing code has an unexpected structure")

    provider = data.get("p")
    if provider == "dropbox":
        updated = current.update(
            provider=ProviderKind.OBJECT_STORE,
            app_key=data.get("k"),
            refresh_token=data.get("r"),
            access_token=None,
            access_token_expires_at=None,
        )
    elif provider == "webdav":
        updated = current.update(
            provider=ProviderKind.FILE_PROTOCOL,
            base_url=data.get("u"),
            username=data.get("n"),
            password=data.get("w"),
        )
    elif provider == "supabase":
        updated = current.update(
            provider=ProviderKind.HOSTED_RELATIONAL,
            api_url=data.get("u"),
            api_key=data.get("w"),
            bucket=data.get("b") or current.bucket,
        )
    else:
        raise ConfigurationError(f"Pairing code names an unknown provider: {provider!r}")

    if not updated.is_connected:
        raise ConfigurationError("Pairing code is missing required credentials")
    return updated
