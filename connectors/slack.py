"""
SlackConnector — OAuth2 v2 with PKCE for a Slack workspace.

Slack nests identity in the token response: the installing workspace sits
under ``team`` and the user under ``authed_user`` (which may also carry a
user token when no bot token is issued).  Responses always come back as
HTTP 200 with an ``ok`` flag.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from connectors.base import (
    BaseConnector,
    TokenExchangeError,
    TokenGrant,
    expires_at_from,
    first_str,
    parse_scopes,
)

logger = logging.getLogger(__name__)

_SLACK_AUTH_URL = "https://slack.com/oauth/v2/authorize"
_SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"


class SlackConnector(BaseConnector):
    """OAuth2 connector for Slack."""

    @property
    def provider_name(self) -> str:
        return "slack"

    @property
    def display_name(self) -> str:
        return "Slack"

    @property
    def default_scopes(self) -> List[str]:
        return ["commands", "chat:write"]

    @property
    def authorize_endpoint(self) -> str:
        return _SLACK_AUTH_URL

    @property
    def token_endpoint(self) -> str:
        return _SLACK_TOKEN_URL

    async def token_request(self, client: httpx.AsyncClient, body: Dict[str, str]) -> Dict[str, Any]:
        resp, data = await self._post(client, data=body)
        if not resp.is_success or data.get("ok") is not True:
            raise TokenExchangeError(self._error_code(resp, data))
        return data

    def extract(self, payload: Dict[str, Any], current_account_ref: str) -> TokenGrant:
        team = payload.get("team")
        team = team if isinstance(team, dict) else {}
        authed_user = payload.get("authed_user")
        authed_user = authed_user if isinstance(authed_user, dict) else {}

        return TokenGrant(
            account_ref=first_str(team.get("id"), authed_user.get("id")) or current_account_ref,
            scopes=parse_scopes(payload.get("scope")),
            access_token=first_str(payload.get("access_token"), authed_user.get("access_token")) or "",
            refresh_token=first_str(payload.get("refresh_token")),
            expires_at=expires_at_from(payload),
        )
