"""
LinearConnector — OAuth2 with PKCE for a Linear organization.

Linear's token endpoint takes a JSON body and answers with a flat payload:
tokens, ``expires_in`` and (when present) ``organization_id`` / ``team_id``
all live at the top level.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from connectors.base import (
    BaseConnector,
    ProviderConfig,
    TokenExchangeError,
    TokenGrant,
    expires_at_from,
    first_str,
    parse_scopes,
)

logger = logging.getLogger(__name__)

_LINEAR_AUTH_URL = "https://linear.app/oauth/authorize"
_LINEAR_TOKEN_URL = "https://api.linear.app/oauth/token"


class LinearConnector(BaseConnector):
    """OAuth2 connector for Linear."""

    @property
    def provider_name(self) -> str:
        return "linear"

    @property
    def display_name(self) -> str:
        return "Linear"

    @property
    def default_scopes(self) -> List[str]:
        return ["read"]

    @property
    def authorize_endpoint(self) -> str:
        return _LINEAR_AUTH_URL

    @property
    def token_endpoint(self) -> str:
        return _LINEAR_TOKEN_URL

    def authorize_params(self, config: ProviderConfig, state: str, challenge: str) -> Dict[str, str]:
        params = super().authorize_params(config, state, challenge)
        params["response_type"] = "code"
        return params

    async def token_request(self, client: httpx.AsyncClient, body: Dict[str, str]) -> Dict[str, Any]:
        resp, data = await self._post(client, json=body)
        if not resp.is_success or not isinstance(data.get("access_token"), str):
            raise TokenExchangeError(self._error_code(resp, data))
        return data

    def extract(self, payload: Dict[str, Any], current_account_ref: str) -> TokenGrant:
        return TokenGrant(
            account_ref=first_str(payload.get("organization_id"), payload.get("team_id")) or current_account_ref,
            scopes=parse_scopes(payload.get("scope")),
            access_token=first_str(payload.get("access_token")) or "",
            refresh_token=first_str(payload.get("refresh_token")),
            expires_at=expires_at_from(payload),
        )
