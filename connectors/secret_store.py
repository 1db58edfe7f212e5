"""
Secret store — append-only ledger of encrypted secrets.

Secrets are keyed by ``(provider, secret_name)``.  Every write inserts a new
row; reads return the most recently rotated one.  Old rows stay as history.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.encryption import SecretCipher
from database.models import SecretRecord
from utils.clock import utc_now_iso

logger = logging.getLogger(__name__)


def state_secret_name(provider: str, state: str) -> str:
    return f"oauth_state:{provider}:{state}"


def access_token_secret_name(provider: str, connection_id: str) -> str:
    return f"{provider}:access_token:{connection_id}"


def refresh_token_secret_name(provider: str, connection_id: str) -> str:
    return f"{provider}:refresh_token:{connection_id}"


class SecretStore:
    def __init__(self, session: AsyncSession, cipher: SecretCipher):
        self._session = session
        self._cipher = cipher

    async def _next_version(self, provider: str, secret_name: str) -> int:
        result = await self._session.execute(
            select(func.max(SecretRecord.version)).where(
                SecretRecord.provider == provider,
                SecretRecord.secret_name == secret_name,
            )
        )
        current = result.scalar_one_or_none()
        return (current or 0) + 1

    async def put(
        self,
        provider: str,
        secret_name: str,
        payload: Dict[str, Any],
    ) -> SecretRecord:
        """Encrypt *payload* and append it as the newest version."""
        record = SecretRecord(
            secret_name=secret_name,
            provider=provider,
            cipher_blob=self._cipher.encrypt(payload),
            version=await self._next_version(provider, secret_name),
            rotated_at=utc_now_iso(),
            last_validated_at=None,
        )
        self._session.add(record)
        await self._session.flush()
        logger.debug("Stored secret %s v%d", secret_name, record.version)
        return record

    async def latest(self, provider: str, secret_name: str) -> Optional[SecretRecord]:
        result = await self._session.execute(
            select(SecretRecord)
            .where(
                SecretRecord.provider == provider,
                SecretRecord.secret_name == secret_name,
            )
            .order_by(SecretRecord.rotated_at.desc(), SecretRecord.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def read(self, provider: str, secret_name: str) -> Optional[Dict[str, Any]]:
        """Decrypted payload of the latest record, or None if absent / unreadable."""
        record = await self.latest(provider, secret_name)
        if record is None:
            return None
        payload = self._cipher.decrypt(record.cipher_blob)
        if payload is None:
            logger.warning("Secret %s (%s) could not be decrypted", secret_name, record.id)
        return payload

    async def read_token(self, provider: str, secret_name: str) -> Optional[str]:
        payload = await self.read(provider, secret_name)
        token = payload.get("token") if payload else None
        return token if isinstance(token, str) and token else None
