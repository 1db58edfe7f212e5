"""
BaseConnector — abstract interface for OAuth2 + PKCE provider adapters.

Every provider (Slack, Linear, …) subclasses this and supplies:
  • its endpoints and default scopes
  • how token requests are encoded and judged successful
  • how identity / tokens are pulled out of the token response

The credential broker only ever talks to this interface, so a new provider
is a new subclass plus one registry entry.
"""

from __future__ import annotations

import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from config.settings import Settings
from connectors.pkce import CHALLENGE_METHOD
from utils.clock import iso_after

logger = logging.getLogger(__name__)

# Upper bound on a provider-reported token lifetime (ten years).
MAX_EXPIRES_IN_SECONDS = 10 * 365 * 24 * 3600


class TokenExchangeError(Exception):
    """Provider rejected (or never answered) a token request."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


@dataclass(frozen=True)
class ProviderConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: List[str] = field(default_factory=list)


@dataclass
class TokenGrant:
    """Identity and tokens extracted from a token-endpoint response."""

    account_ref: str
    scopes: List[str]
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None


def parse_scopes(value: Any) -> List[str]:
    """Split a scope string on whitespace / commas, dropping empties."""
    if not isinstance(value, str):
        return []
    return [s for s in re.split(r"[\s,]+", value) if s]


def valid_expires_in(value: Any) -> bool:
    """True for a finite, non-negative lifetime no longer than ten years."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value) and 0 <= value <= MAX_EXPIRES_IN_SECONDS


def _expires_in_acceptable(data: Dict[str, Any]) -> bool:
    """A numeric ``expires_in`` must be a sane lifetime; absent or non-numeric is ignored."""
    value = data.get("expires_in")
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return True
    return valid_expires_in(value)


def expires_at_from(payload: Dict[str, Any]) -> Optional[str]:
    expires_in = payload.get("expires_in")
    if valid_expires_in(expires_in):
        return iso_after(expires_in)
    return None


def first_str(*candidates: Any) -> Optional[str]:
    for value in candidates:
        if isinstance(value, str) and value:
            return value
    return None


class BaseConnector(ABC):
    """Abstract base for all OAuth2 + PKCE adapters."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'slack', 'linear'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    def default_scopes(self) -> List[str]:
        """Scopes requested when the scope setting is blank."""
        return []

    @property
    @abstractmethod
    def authorize_endpoint(self) -> str:
        ...

    @property
    @abstractmethod
    def token_endpoint(self) -> str:
        ...

    # ── Configuration ───────────────────────────────────────────────────

    def resolve_config(self, settings: Settings) -> Optional[ProviderConfig]:
        """
        Build this provider's client config from settings.

        Returns None when client id, client secret or redirect URI is
        missing; callers must then refuse to run the flow.
        """
        raw = settings.oauth_app_credentials(self.provider_name)
        redirect_uri = raw["redirect_uri"]
        if redirect_uri is None:
            base = settings.oauth_base_url.rstrip("/")
            redirect_uri = f"{base}/oauth/{self.provider_name}/callback" if base else ""

        if not raw["client_id"] or not raw["client_secret"] or not redirect_uri:
            return None

        return ProviderConfig(
            client_id=raw["client_id"],
            client_secret=raw["client_secret"],
            redirect_uri=redirect_uri,
            scopes=parse_scopes(raw["scopes"]) or list(self.default_scopes),
        )

    def is_configured(self, settings: Settings) -> bool:
        return self.resolve_config(settings) is not None

    # ── OAuth flow ──────────────────────────────────────────────────────

    def authorize_params(self, config: ProviderConfig, state: str, challenge: str) -> Dict[str, str]:
        return {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": CHALLENGE_METHOD,
            "scope": " ".join(config.scopes),
        }

    def get_auth_url(self, config: ProviderConfig, state: str, challenge: str) -> str:
        """Full URL to send the user's browser to."""
        params = self.authorize_params(config, state, challenge)
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    async def exchange_code(
        self,
        client: httpx.AsyncClient,
        config: ProviderConfig,
        code: str,
        code_verifier: str,
    ) -> Dict[str, Any]:
        """
        Exchange the authorization code for tokens.

        Returns the provider's raw token payload; raises TokenExchangeError
        carrying the provider's error code on failure.
        """
        return await self.token_request(
            client,
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": config.redirect_uri,
                "code_verifier": code_verifier,
            },
        )

    async def refresh_access_token(
        self,
        client: httpx.AsyncClient,
        config: ProviderConfig,
        refresh_token: str,
    ) -> Dict[str, Any]:
        return await self.token_request(
            client,
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
            },
        )

    @abstractmethod
    async def token_request(self, client: httpx.AsyncClient, body: Dict[str, str]) -> Dict[str, Any]:
        """POST *body* to the token endpoint and validate the answer."""
        ...

    @abstractmethod
    def extract(self, payload: Dict[str, Any], current_account_ref: str) -> TokenGrant:
        """Pull account identity, scopes and tokens out of a token payload."""
        ...

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _post(self, client: httpx.AsyncClient, **kwargs: Any) -> Tuple[httpx.Response, Dict[str, Any]]:
        try:
            resp = await client.post(self.token_endpoint, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s token request failed: %s", self.provider_name, exc.__class__.__name__)
            raise TokenExchangeError("request_failed") from exc

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            if resp.is_success:
                raise TokenExchangeError("invalid_response")
            data = {}
        elif resp.is_success and not _expires_in_acceptable(data):
            logger.warning("%s token response has an unusable expires_in", self.provider_name)
            raise TokenExchangeError("invalid_response")
        return resp, data

    @staticmethod
    def _error_code(resp: httpx.Response, data: Dict[str, Any]) -> str:
        error = data.get("error")
        return str(error) if error else f"http_{resp.status_code}"
