"""
Connection ledger — one row per OAuth attempt, tracked through
pending → connected / failed.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    AUTH_TYPE_OAUTH2_PKCE,
    CONNECTION_CONNECTED,
    CONNECTION_FAILED,
    CONNECTION_PENDING,
    AuthConnection,
)
from utils.clock import iso_after, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL_SECONDS = 600


def decode_scopes(connection: AuthConnection) -> List[str]:
    try:
        scopes = json.loads(connection.scopes or "[]")
    except ValueError:
        return []
    return [s for s in scopes if isinstance(s, str)] if isinstance(scopes, list) else []


class ConnectionLedger:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_pending(
        self,
        provider: str,
        state: str,
        scopes: List[str],
        ttl_seconds: int = DEFAULT_PENDING_TTL_SECONDS,
    ) -> AuthConnection:
        """Open a pending attempt; ``account_ref`` holds the state token until completion."""
        conn = AuthConnection(
            provider=provider,
            account_ref=state,
            auth_type=AUTH_TYPE_OAUTH2_PKCE,
            scopes=json.dumps(list(scopes)),
            status=CONNECTION_PENDING,
            expires_at=iso_after(ttl_seconds),
            updated_at=utc_now_iso(),
        )
        self._session.add(conn)
        await self._session.flush()
        logger.info("Created pending %s connection %s", provider, conn.id)
        return conn

    async def find_pending_by_state(self, provider: str, state: str) -> Optional[AuthConnection]:
        result = await self._session.execute(
            select(AuthConnection)
            .where(
                AuthConnection.provider == provider,
                AuthConnection.account_ref == state,
                AuthConnection.status == CONNECTION_PENDING,
            )
            .order_by(AuthConnection.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get(self, connection_id: str) -> Optional[AuthConnection]:
        return await self._session.get(AuthConnection, connection_id)

    async def mark_failed(self, connection_id: str) -> None:
        conn = await self.get(connection_id)
        if conn is None:
            return
        conn.status = CONNECTION_FAILED
        conn.updated_at = utc_now_iso()
        await self._session.flush()
        logger.info("Connection %s (%s) marked failed", connection_id, conn.provider)

    async def apply_success(
        self,
        connection_id: str,
        account_ref: str,
        scopes: List[str],
        expires_at: Optional[str],
    ) -> Optional[AuthConnection]:
        conn = await self.get(connection_id)
        if conn is None:
            return None
        conn.account_ref = account_ref
        conn.status = CONNECTION_CONNECTED
        conn.scopes = json.dumps(list(scopes))
        conn.expires_at = expires_at
        conn.updated_at = utc_now_iso()
        await self._session.flush()
        return conn

    async def latest(self, provider: str) -> Optional[AuthConnection]:
        """Most recently updated connection, whatever its status."""
        result = await self._session.execute(
            select(AuthConnection)
            .where(AuthConnection.provider == provider)
            .order_by(AuthConnection.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
