"""
Delegated authorization: token refresh, code exchange and PKCE.
"""

from hubsync.auth.pkce import (
    PendingAuthorization,
    VerifierScratch,
    begin_authorization,
    build_authorization_url,
    code_challenge,
    generate_code_verifier,
)
from hubsync.auth.tokens import AccessToken, TokenGrant, TokenManager

__all__ = [
    "AccessToken",
    "TokenGrant",
    "TokenManager",
    "PendingAuthorization",
    "VerifierScratch",
    "begin_authorization",
    "build_authorization_url",
    "code_challenge",
    "generate_code_verifier",
]
