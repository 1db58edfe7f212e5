"""
Credential broker — runs OAuth2 Authorization-Code + PKCE flows and keeps
the resulting tokens as encrypted, append-only secret records.

Per connection the state machine is::

    pending ──complete ok──▶ connected ──refresh ok──▶ connected
       └──────any error─────▶ failed   (terminal; a new start opens a new row)

A failed refresh never changes the connection's status.
"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Mapping, NoReturn, Optional, Tuple

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings, config
from connectors.base import BaseConnector, ProviderConfig, TokenExchangeError, TokenGrant
from connectors.encryption import SecretCipher, get_cipher
from connectors.ledger import ConnectionLedger
from connectors.pkce import generate_pkce_pair
from connectors.registry import ConnectorRegistry, connector_registry
from connectors.schemas import CompleteResult, ProviderStatus, RefreshResult, StartResult
from connectors.secret_store import (
    SecretStore,
    access_token_secret_name,
    refresh_token_secret_name,
    state_secret_name,
)
from database.models import CONNECTION_CONNECTED, CONNECTION_FAILED
from utils.clock import utc_now_iso

logger = logging.getLogger(__name__)


class OAuthFlowError(Exception):
    """
    A flow entry point refused or aborted the request.

    ``code`` is the machine-readable reason (``invalid_state``, the
    provider's own error code, …); ``status_code`` is the HTTP equivalent.
    """

    def __init__(
        self,
        code: str,
        *,
        status_code: int = 400,
        provider: Optional[str] = None,
        connection_status: Optional[str] = None,
    ):
        self.code = code
        self.status_code = status_code
        self.provider = provider
        self.connection_status = connection_status
        super().__init__(code)

    def to_api(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": False}
        if self.provider:
            body["provider"] = self.provider
        if self.connection_status:
            body["status"] = self.connection_status
        body["error"] = self.code
        return body


class CredentialBroker:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        cipher: Optional[SecretCipher] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        registry: Optional[ConnectorRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or config
        self._cipher = cipher or get_cipher(self._settings)
        if session_factory is None:
            from database.session import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory
        self._registry = registry or connector_registry
        self._http_client = http_client

    @property
    def settings(self) -> Settings:
        return self._settings

    # ── Helpers ─────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._settings.oauth_http_timeout_seconds) as client:
            yield client

    def _resolve(self, provider: str) -> Tuple[BaseConnector, ProviderConfig]:
        connector = self._registry.get(provider)
        if connector is None:
            raise OAuthFlowError("unsupported_provider", status_code=404)
        provider_config = connector.resolve_config(self._settings)
        if provider_config is None:
            raise OAuthFlowError("provider_not_configured", provider=provider)
        return connector, provider_config

    async def _fail(self, session: AsyncSession, connection_id: str, provider: str, code: str) -> NoReturn:
        """Mark the attempt failed, persist that, and abort with *code*."""
        await ConnectionLedger(session).mark_failed(connection_id)
        await session.commit()
        logger.warning("OAuth %s connection %s failed: %s", provider, connection_id, code)
        raise OAuthFlowError(code, provider=provider, connection_status=CONNECTION_FAILED)

    async def _apply_grant(
        self,
        session: AsyncSession,
        connector: BaseConnector,
        connection_id: str,
        current_account_ref: str,
        payload: Dict[str, Any],
    ) -> TokenGrant:
        """Record a successful token response: identity on the row, tokens as new secrets."""
        provider = connector.provider_name
        grant = connector.extract(payload, current_account_ref)
        await ConnectionLedger(session).apply_success(
            connection_id, grant.account_ref, grant.scopes, grant.expires_at
        )

        store = SecretStore(session, self._cipher)
        saved_at = utc_now_iso()
        if grant.access_token:
            await store.put(
                provider,
                access_token_secret_name(provider, connection_id),
                {"token": grant.access_token, "savedAt": saved_at},
            )
        if grant.refresh_token:
            await store.put(
                provider,
                refresh_token_secret_name(provider, connection_id),
                {"token": grant.refresh_token, "savedAt": saved_at},
            )
        return grant

    # ── Flow entry points ───────────────────────────────────────────────

    async def start(self, provider: str) -> StartResult:
        """Open a pending connection and return the provider's authorize URL."""
        connector, provider_config = self._resolve(provider)

        state = secrets.token_hex(16)
        pkce = generate_pkce_pair()

        async with self._session_factory() as session:
            conn = await ConnectionLedger(session).create_pending(
                provider,
                state,
                provider_config.scopes,
                ttl_seconds=self._settings.oauth_state_ttl_seconds,
            )
            await SecretStore(session, self._cipher).put(
                provider,
                state_secret_name(provider, state),
                {
                    "connectionId": conn.id,
                    "codeVerifier": pkce.verifier,
                    "redirectUri": provider_config.redirect_uri,
                    "createdAt": conn.updated_at,
                },
            )
            await session.commit()
            expires_at = conn.expires_at

        logger.info("OAuth start for %s: connection %s", provider, conn.id)
        return StartResult(
            ok=True,
            provider=provider,
            authorize_url=connector.get_auth_url(provider_config, state, pkce.challenge),
            state=state,
            expires_at=expires_at,
        )

    async def complete(self, provider: str, params: Mapping[str, Optional[str]]) -> CompleteResult:
        """Handle the provider redirect: verify state, exchange the code, store tokens."""
        connector, provider_config = self._resolve(provider)

        state = params.get("state") or ""
        code = params.get("code") or ""
        error = params.get("error") or ""

        if not state:
            raise OAuthFlowError("missing_state", provider=provider, connection_status=CONNECTION_FAILED)

        async with self._session_factory() as session:
            pending = await ConnectionLedger(session).find_pending_by_state(provider, state)
            if pending is None:
                logger.warning("OAuth %s callback with unknown state", provider)
                raise OAuthFlowError("invalid_state", provider=provider, connection_status=CONNECTION_FAILED)

            connection_id = pending.id
            if error:
                await self._fail(session, connection_id, provider, error)
            if not code:
                await self._fail(session, connection_id, provider, "missing_code")

            state_payload = await SecretStore(session, self._cipher).read(
                provider, state_secret_name(provider, state)
            )
            code_verifier = state_payload.get("codeVerifier") if state_payload else None
            if not isinstance(code_verifier, str) or not code_verifier:
                await self._fail(session, connection_id, provider, "missing_pkce_verifier")

            try:
                async with self._http() as client:
                    payload = await connector.exchange_code(client, provider_config, code, code_verifier)
            except TokenExchangeError as exc:
                await self._fail(session, connection_id, provider, exc.code or "oauth_exchange_failed")

            grant = await self._apply_grant(session, connector, connection_id, pending.account_ref, payload)
            await session.commit()

        logger.info("OAuth connected: provider=%s connection=%s account=%s", provider, connection_id, grant.account_ref)
        return CompleteResult(
            ok=True,
            provider=provider,
            status=CONNECTION_CONNECTED,
            account_ref=grant.account_ref,
            expires_at=grant.expires_at,
        )

    async def refresh(self, provider: str) -> RefreshResult:
        """
        Rotate the latest connected account's tokens.

        Never raises for flow problems: every failure is reported as
        ``refreshed=False`` with a reason, and leaves the connection as it was.
        """
        connector = self._registry.get(provider)
        if connector is None:
            return RefreshResult(ok=True, provider=provider, refreshed=False, reason="unsupported_provider")
        provider_config = connector.resolve_config(self._settings)
        if provider_config is None:
            return RefreshResult(ok=True, provider=provider, refreshed=False, reason="provider_not_configured")

        async with self._session_factory() as session:
            conn = await ConnectionLedger(session).latest(provider)
            if conn is None or conn.status != CONNECTION_CONNECTED:
                return RefreshResult(ok=True, provider=provider, refreshed=False, reason="no_connected_account")

            refresh_token = await SecretStore(session, self._cipher).read_token(
                provider, refresh_token_secret_name(provider, conn.id)
            )
            if not refresh_token:
                return RefreshResult(ok=True, provider=provider, refreshed=False, reason="refresh_token_missing")

            try:
                async with self._http() as client:
                    payload = await connector.refresh_access_token(client, provider_config, refresh_token)
            except TokenExchangeError as exc:
                logger.warning("Token refresh failed for %s/%s: %s", provider, conn.id, exc.code)
                return RefreshResult(
                    ok=True, provider=provider, refreshed=False, reason=exc.code or "refresh_failed"
                )

            grant = await self._apply_grant(session, connector, conn.id, conn.account_ref, payload)
            await session.commit()

        logger.info("Refreshed %s token for connection %s", provider, conn.id)
        return RefreshResult(
            ok=True,
            provider=provider,
            refreshed=True,
            account_ref=grant.account_ref,
            expires_at=grant.expires_at,
        )

    async def status(self, provider: str) -> ProviderStatus:
        """Stored-state health of a provider's latest connection."""
        connector = self._registry.get(provider)
        if connector is None:
            raise OAuthFlowError("unsupported_provider", status_code=404)
        configured = connector.is_configured(self._settings)

        async with self._session_factory() as session:
            conn = await ConnectionLedger(session).latest(provider)
            has_access_token = conn is not None and (
                await SecretStore(session, self._cipher).read_token(
                    provider, access_token_secret_name(provider, conn.id)
                )
                is not None
            )

        now = utc_now_iso()
        connected = bool(
            conn is not None
            and conn.status == CONNECTION_CONNECTED
            and has_access_token
            and (not conn.expires_at or conn.expires_at >= now)
        )

        fields: Dict[str, Any] = {
            "provider": provider,
            "configured": configured,
            "connected": connected,
            "status": conn.status if conn is not None else "not_connected",
            "checked_at": now,
            "expires_at": conn.expires_at if conn is not None else None,
            "refresh_supported": True,
        }
        if conn is not None and conn.status == CONNECTION_CONNECTED:
            fields["detail"] = conn.account_ref
        return ProviderStatus(**fields)
