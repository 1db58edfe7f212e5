"""
Secret envelope encryption — encrypt / decrypt structured secrets at rest.

Uses AES-256-GCM from the ``cryptography`` library.  The 256-bit key is the
SHA-256 digest of ``config.encryption_seed`` (env var: ``OAUTH_SECRET_KEY``,
falling back to ``AGENT_ENCRYPTION_KEY`` then ``AGENT_SECRET_KEY``).  It is
derived once per process and shared by every provider.

Envelope format::

    v1:<nonce>.<tag>.<ciphertext>

with every component unpadded URL-safe base64.  If no seed is configured the
fixed development seed ``dev-oauth-key`` is used, with a startup warning.
Never run production with it.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
import re
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config.settings import DEV_ENCRYPTION_SEED, Settings, config
from connectors.pkce import b64url

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = "v1"
_NONCE_BYTES = 12
_TAG_BYTES = 16
_B64URL = re.compile(r"[A-Za-z0-9_-]+")

_cipher: Optional["SecretCipher"] = None


def derive_key(seed: str) -> bytes:
    """SHA-256 of the seed, used directly as the 32-byte AES key."""
    return hashlib.sha256(seed.encode("utf-8")).digest()


def _b64url_decode(text: str) -> bytes:
    """Strict inverse of :func:`b64url`; rejects anything it would not emit."""
    if not _B64URL.fullmatch(text) or len(text) % 4 == 1:
        raise ValueError("not base64url")
    raw = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    if b64url(raw) != text:
        raise ValueError("non-canonical base64url")
    return raw


class SecretCipher:
    """Authenticated encryption of JSON objects under a single key."""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError("SecretCipher requires a 256-bit key")
        self._aead = AESGCM(key)

    @classmethod
    def from_seed(cls, seed: str) -> "SecretCipher":
        return cls(derive_key(seed))

    def encrypt(self, payload: Dict[str, Any]) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        plaintext = json.dumps(payload).encode("utf-8")
        sealed = self._aead.encrypt(nonce, plaintext, None)
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return f"{ENVELOPE_VERSION}:{b64url(nonce)}.{b64url(tag)}.{b64url(ciphertext)}"

    def decrypt(self, blob: Any) -> Optional[Dict[str, Any]]:
        """
        Open an envelope.

        Returns ``None`` for anything that is not an intact ``v1`` envelope
        holding a JSON object: callers treat that as "secret unreadable".
        """
        if not isinstance(blob, str):
            return None

        version, sep, body = blob.partition(":")
        if version != ENVELOPE_VERSION or not sep or not body:
            return None

        parts = body.split(".")
        if len(parts) != 3 or not all(parts):
            return None

        try:
            nonce, tag, ciphertext = (_b64url_decode(p) for p in parts)
            if len(nonce) != _NONCE_BYTES or len(tag) != _TAG_BYTES:
                return None
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
            parsed = json.loads(plaintext.decode("utf-8"))
        except (ValueError, InvalidTag):
            return None

        return parsed if isinstance(parsed, dict) else None


def get_cipher(settings: Optional[Settings] = None) -> SecretCipher:
    """Process-wide cipher, built from configuration on first use."""
    global _cipher
    if _cipher is None:
        settings = settings or config
        seed = settings.encryption_seed
        if settings.uses_dev_encryption_seed:
            seed = DEV_ENCRYPTION_SEED
            logger.warning(
                "OAUTH_SECRET_KEY not set — secret records are encrypted with the "
                "built-in development key. Do not use this in production."
            )
        _cipher = SecretCipher.from_seed(seed)
        logger.info("Secret envelope encryption enabled (AES-256-GCM, %s)", ENVELOPE_VERSION)
    return _cipher
