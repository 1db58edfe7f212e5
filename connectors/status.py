"""
Integrations status — one health report across every integration.

Blends the credential broker's stored OAuth state with live checks:
  • Linear personal API key validated against the GraphQL API
  • OpenAI key presence
  • ``gh`` / ``codex`` CLI probes (output scrubbed of token lines)

Each integration is checked independently and concurrently; a slow or
broken check never hides the others.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from config.settings import Settings
from connectors.broker import CredentialBroker
from connectors.probes import CommandRunner, make_command_runner, sanitize_detail
from connectors.schemas import IntegrationsStatus, ProviderStatus
from utils.clock import utc_now_iso

logger = logging.getLogger(__name__)

_LINEAR_GRAPHQL_URL = "https://api.linear.app/graphql"
_LINEAR_HEALTH_QUERY = "query DashboardLinearHealth { viewer { id name } }"


class StatusAggregator:
    def __init__(
        self,
        broker: CredentialBroker,
        *,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        command_runner: Optional[CommandRunner] = None,
    ):
        self._broker = broker
        self._settings = settings or broker.settings
        self._http_client = http_client
        self._run = command_runner or make_command_runner(self._settings.probe_timeout_seconds)

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient() as client:
            yield client

    async def report(self) -> IntegrationsStatus:
        checks = {
            "slack": self._broker.status("slack"),
            "linear": self.linear_status(),
            "openai": self.openai_status(),
            "github": self.github_status(),
            "codex": self.codex_status(),
        }
        results = await asyncio.gather(*checks.values(), return_exceptions=True)

        providers: Dict[str, ProviderStatus] = {}
        for name, result in zip(checks.keys(), results):
            if isinstance(result, BaseException):
                logger.error("Status check for %s raised %r", name, result)
                result = ProviderStatus(
                    provider=name,
                    configured=False,
                    connected=False,
                    status="check_failed",
                    checked_at=utc_now_iso(),
                    detail=result.__class__.__name__,
                )
            providers[name] = result

        return IntegrationsStatus(ok=True, generated_at=utc_now_iso(), providers=providers)

    # ── Linear ──────────────────────────────────────────────────────────

    async def linear_status(self) -> ProviderStatus:
        """Prefer a live API-key check; fall back to the OAuth connection."""
        api_key = self._settings.linear_api_key.strip()
        if not api_key:
            return await self._broker.status("linear")

        authorization = api_key if api_key.startswith("Bearer ") else f"Bearer {api_key}"
        try:
            async with self._http() as client:
                resp = await client.post(
                    _LINEAR_GRAPHQL_URL,
                    json={"query": _LINEAR_HEALTH_QUERY},
                    headers={"Content-Type": "application/json", "Authorization": authorization},
                    timeout=self._settings.linear_api_key_timeout_seconds,
                )
        except httpx.HTTPError as exc:
            logger.warning("Linear API key check failed: %s", exc.__class__.__name__)
            return self._linear_key_status(False, "api_key_check_failed", str(exc) or exc.__class__.__name__)

        try:
            payload: Any = resp.json()
        except ValueError:
            logger.warning("Linear API key check got a non-JSON response (HTTP %d)", resp.status_code)
            return self._linear_key_status(False, "api_key_check_failed", f"invalid_response (http_{resp.status_code})")
        payload = payload if isinstance(payload, dict) else {}

        data = payload.get("data")
        viewer = data.get("viewer") if isinstance(data, dict) else None
        viewer_id = viewer.get("id") if isinstance(viewer, dict) else None

        if not resp.is_success or not viewer_id:
            errors = payload.get("errors")
            message = None
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                message = errors[0].get("message")
            return self._linear_key_status(False, "api_key_invalid", message or f"http_{resp.status_code}")

        name = viewer.get("name")
        detail = f"{name} ({viewer_id})" if name else str(viewer_id)
        return self._linear_key_status(True, "api_key_valid", detail)

    @staticmethod
    def _linear_key_status(connected: bool, status: str, detail: str) -> ProviderStatus:
        return ProviderStatus(
            provider="linear",
            configured=True,
            connected=connected,
            status=status,
            checked_at=utc_now_iso(),
            detail=detail,
            refresh_supported=False,
        )

    # ── Bearer-token presence ───────────────────────────────────────────

    async def openai_status(self) -> ProviderStatus:
        present = bool(self._settings.openai_api_key)
        return ProviderStatus(
            provider="openai",
            configured=present,
            connected=present,
            status="token_present" if present else "missing_token",
            checked_at=utc_now_iso(),
        )

    # ── CLI probes ──────────────────────────────────────────────────────

    async def github_status(self) -> ProviderStatus:
        result = await self._run("gh", ["auth", "status"])
        if result.ok:
            detail = sanitize_detail(result.stdout) or "gh auth ok"
        else:
            detail = sanitize_detail(result.stderr) or "gh auth failed"
        return ProviderStatus(
            provider="github",
            configured=result.binary_present,
            connected=result.ok,
            status="authenticated" if result.ok else "unauthenticated",
            checked_at=utc_now_iso(),
            detail=detail,
        )

    async def codex_status(self) -> ProviderStatus:
        result = await self._run("codex", ["--version"])
        if not result.ok:
            result = await self._run("codex", ["--help"])
        if result.ok:
            detail = sanitize_detail(result.stdout) or "codex available"
        else:
            detail = sanitize_detail(result.stderr) or "codex unavailable"
        return ProviderStatus(
            provider="codex",
            configured=result.binary_present,
            connected=result.ok,
            status="available" if result.ok else "unavailable",
            checked_at=utc_now_iso(),
            detail=detail,
        )
