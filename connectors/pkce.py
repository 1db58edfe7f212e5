"""
PKCE (RFC 7636) verifier / challenge generation.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import NamedTuple

CHALLENGE_METHOD = "S256"
_VERIFIER_BYTES = 32


class PkcePair(NamedTuple):
    verifier: str
    challenge: str


def b64url(raw: bytes) -> str:
    """Unpadded URL-safe base64."""
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def challenge_for(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def generate_pkce_pair() -> PkcePair:
    """Fresh verifier (32 random bytes) and its S256 challenge."""
    verifier = b64url(secrets.token_bytes(_VERIFIER_BYTES))
    return PkcePair(verifier=verifier, challenge=challenge_for(verifier))
