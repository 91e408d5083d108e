"""
PKCE helpers and the short-lived verifier scratch area.

The verifier only has to survive between sending the user to the provider's
authorization page and pasting back the returned code, so it lives in a
single-use file that expires after a few minutes.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlencode

from hubsync.exceptions import ConfigurationError
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.auth.pkce")

DROPBOX_AUTHORIZE_URL = "https://www.dropbox.com/oauth2/authorize"

SCRATCH_FILENAME = "pending_authorization.json"
SCRATCH_TTL_SECONDS = 600


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """32 random bytes, URL-safe base64 without padding (43 characters)."""
    return _b64url(secrets.token_bytes(32))


def code_challenge(verifier: str) -> str:
    """URL-safe base64 (no padding) SHA-256 digest of the verifier."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def build_authorization_url(
    app_key: str,
    challenge: str,
    redirect_uri: str | None = None,
    authorize_url: str = DROPBOX_AUTHORIZE_URL,
) -> str:
    params = {
        "client_id": app_key,
        "response_type": "code",
        "token_access_type": "offline",
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    }
    if redirect_uri:
        params["redirect_uri"] = redirect_uri
    return f"{authorize_url}?{urlencode(params)}"


@dataclass(frozen=True)
class PendingAuthorization:
    app_key: str
    code_verifier: str
    created_at: float
    redirect_uri: str | None = None


class VerifierScratch:
    """Single-use holder for the PKCE verifier between redirect-out and redirect-back."""

    def __init__(
        self,
        state_dir: Path,
        ttl_seconds: float = SCRATCH_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(state_dir) / SCRATCH_FILENAME
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def store(self, app_key: str, code_verifier: str, redirect_uri: str | None = None) -> PendingAuthorization:
        pending = PendingAuthorization(
            app_key=app_key,
            code_verifier=code_verifier,
            created_at=self.clock(),
            redirect_uri=redirect_uri,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(
                {
                    "app_key": pending.app_key,
                    "code_verifier": pending.code_verifier,
                    "created_at": pending.created_at,
                    "redirect_uri": pending.redirect_uri,
                },
                f,
            )
        return pending

    def consume(self) -> PendingAuthorization:
        """
        Read and delete the pending verifier.

        Raises:
            ConfigurationError: Nothing pending, or the pending verifier expired
        """
        if not self.path.exists():
            raise ConfigurationError("No authorization in progress; start the connection again")
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Pending authorization could not be read: {e}") from e
        finally:
            self.path.unlink(missing_ok=True)

        pending = PendingAuthorization(
            app_key=data.get("app_key", ""),
            code_verifier=data.get("code_verifier", ""),
            created_at=float(data.get("created_at", 0)),
            redirect_uri=data.get("redirect_uri"),
        )
        if self.clock() - pending.created_at > self.ttl_seconds:
            logger.info("Discarded expired pending authorization")
            raise ConfigurationError("The authorization attempt expired; start the connection again")
        return pending


def begin_authorization(state_dir: Path, app_key: str, redirect_uri: str | None = None) -> str:
    """Start the PKCE flow: remember a fresh verifier and return the URL the user has to open."""
    if not app_key:
        raise ConfigurationError("An app key is required to connect the cloud account")
    verifier = generate_code_verifier()
    VerifierScratch(state_dir).store(app_key, verifier, redirect_uri)
    return build_authorization_url(app_key, code_challenge(verifier), redirect_uri)
