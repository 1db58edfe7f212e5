"""
Tests for the Slack / Linear OAuth adapters and the connector registry.
"""

import json
from urllib.parse import parse_qs, urlsplit

import pytest

from connectors.base import (
    MAX_EXPIRES_IN_SECONDS,
    ProviderConfig,
    TokenExchangeError,
    expires_at_from,
    parse_scopes,
)
from connectors.linear import LinearConnector
from connectors.registry import ConnectorRegistry, connector_registry
from connectors.slack import SlackConnector
from tests.conftest import LINEAR_TOKEN_URL, SLACK_TOKEN_URL, configured_settings, make_settings
from utils.clock import utc_now_iso

CONFIG = ProviderConfig(
    client_id="cid",
    client_secret="csecret",
    redirect_uri="https://dash.example.com/oauth/slack/callback",
    scopes=["commands", "chat:write"],
)


def _query(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


class TestResolveConfig:
    def test_default_redirect_from_base_url(self):
        cfg = SlackConnector().resolve_config(configured_settings())
        assert cfg.redirect_uri == "https://dash.example.com/oauth/slack/callback"
        assert cfg.scopes == ["commands", "chat:write"]

    def test_explicit_redirect_wins(self):
        settings = configured_settings(linear_oauth_redirect_uri="https://cb.example.com/linear")
        cfg = LinearConnector().resolve_config(settings)
        assert cfg.redirect_uri == "https://cb.example.com/linear"
        assert cfg.scopes == ["read"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"slack_client_id": ""},
            {"slack_client_secret": ""},
            {"oauth_base_url": ""},
        ],
    )
    def test_missing_piece_means_unconfigured(self, overrides):
        connector = SlackConnector()
        assert connector.resolve_config(configured_settings(**overrides)) is None
        assert connector.is_configured(configured_settings(**overrides)) is False

    def test_blank_scope_setting_uses_defaults(self):
        assert SlackConnector().resolve_config(configured_settings(slack_oauth_scopes="")).scopes == [
            "commands",
            "chat:write",
        ]
        assert LinearConnector().resolve_config(configured_settings(linear_oauth_scopes=" ")).scopes == ["read"]

    def test_blank_settings(self):
        assert SlackConnector().is_configured(make_settings()) is False


class TestAuthorizeUrl:
    def test_slack(self):
        url = SlackConnector().get_auth_url(CONFIG, "st", "ch")
        assert url.startswith("https://slack.com/oauth/v2/authorize?")
        assert _query(url) == {
            "client_id": "cid",
            "redirect_uri": CONFIG.redirect_uri,
            "state": "st",
            "code_challenge": "ch",
            "code_challenge_method": "S256",
            "scope": "commands chat:write",
        }

    def test_linear_adds_response_type(self):
        url = LinearConnector().get_auth_url(CONFIG, "st", "ch")
        assert url.startswith("https://linear.app/oauth/authorize?")
        params = _query(url)
        assert params["response_type"] == "code"
        assert params["code_challenge_method"] == "S256"


class TestSlackExchange:
    @pytest.mark.asyncio
    async def test_success_posts_form_with_verifier(self, http_client, provider_stub):
        provider_stub.respond(SLACK_TOKEN_URL, json={"ok": True, "access_token": "xoxb-1"})
        payload = await SlackConnector().exchange_code(http_client, CONFIG, "the-code", "the-verifier")

        assert payload["access_token"] == "xoxb-1"
        (request,) = provider_stub.requests_to(SLACK_TOKEN_URL)
        body = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert body == {
            "grant_type": "authorization_code",
            "code": "the-code",
            "client_id": "cid",
            "client_secret": "csecret",
            "redirect_uri": CONFIG.redirect_uri,
            "code_verifier": "the-verifier",
        }

    @pytest.mark.asyncio
    async def test_ok_false_carries_slack_error(self, http_client, provider_stub):
        provider_stub.respond(SLACK_TOKEN_URL, json={"ok": False, "error": "invalid_code"})
        with pytest.raises(TokenExchangeError) as exc_info:
            await SlackConnector().exchange_code(http_client, CONFIG, "c", "v")
        assert exc_info.value.code == "invalid_code"

    @pytest.mark.asyncio
    async def test_http_error_without_error_field(self, http_client, provider_stub):
        provider_stub.respond(SLACK_TOKEN_URL, status=502, json="upstream down")
        with pytest.raises(TokenExchangeError) as exc_info:
            await SlackConnector().exchange_code(http_client, CONFIG, "c", "v")
        assert exc_info.value.code == "http_502"

    @pytest.mark.asyncio
    async def test_transport_failure(self, http_client, provider_stub):
        provider_stub.raise_timeout(SLACK_TOKEN_URL)
        with pytest.raises(TokenExchangeError) as exc_info:
            await SlackConnector().exchange_code(http_client, CONFIG, "c", "v")
        assert exc_info.value.code == "request_failed"

    @pytest.mark.asyncio
    async def test_refresh_body(self, http_client, provider_stub):
        provider_stub.respond(SLACK_TOKEN_URL, json={"ok": True, "access_token": "xoxe-2"})
        await SlackConnector().refresh_access_token(http_client, CONFIG, "rt-1")

        (request,) = provider_stub.requests_to(SLACK_TOKEN_URL)
        body = parse_qs(request.content.decode())
        assert body["grant_type"] == ["refresh_token"]
        assert body["refresh_token"] == ["rt-1"]
        assert "code_verifier" not in body


class TestLinearExchange:
    @pytest.mark.asyncio
    async def test_success_posts_json(self, http_client, provider_stub):
        provider_stub.respond(LINEAR_TOKEN_URL, json={"access_token": "lin_oauth_1", "expires_in": 3600})
        payload = await LinearConnector().exchange_code(http_client, CONFIG, "code", "verifier")

        assert payload["access_token"] == "lin_oauth_1"
        (request,) = provider_stub.requests_to(LINEAR_TOKEN_URL)
        assert request.headers["content-type"].startswith("application/json")
        body = json.loads(request.content)
        assert body["code_verifier"] == "verifier"
        assert body["grant_type"] == "authorization_code"

    @pytest.mark.asyncio
    async def test_missing_access_token(self, http_client, provider_stub):
        provider_stub.respond(LINEAR_TOKEN_URL, status=400, json={"error": "invalid_grant"})
        with pytest.raises(TokenExchangeError) as exc_info:
            await LinearConnector().exchange_code(http_client, CONFIG, "code", "verifier")
        assert exc_info.value.code == "invalid_grant"

    @pytest.mark.asyncio
    async def test_non_object_success_body(self, http_client, provider_stub):
        provider_stub.respond(LINEAR_TOKEN_URL, json=["unexpected"])
        with pytest.raises(TokenExchangeError) as exc_info:
            await LinearConnector().exchange_code(http_client, CONFIG, "code", "verifier")
        assert exc_info.value.code == "invalid_response"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            '{"access_token": "a", "expires_in": 1e20}',
            '{"access_token": "a", "expires_in": Infinity}',
            '{"access_token": "a", "expires_in": NaN}',
            '{"access_token": "a", "expires_in": -5}',
        ],
    )
    async def test_unusable_expires_in_is_rejected(self, http_client, provider_stub, body):
        provider_stub.respond(LINEAR_TOKEN_URL, json=body)
        with pytest.raises(TokenExchangeError) as exc_info:
            await LinearConnector().exchange_code(http_client, CONFIG, "code", "verifier")
        assert exc_info.value.code == "invalid_response"

    @pytest.mark.asyncio
    async def test_non_numeric_expires_in_is_ignored(self, http_client, provider_stub):
        provider_stub.respond(LINEAR_TOKEN_URL, json={"access_token": "a", "expires_in": "soon"})
        payload = await LinearConnector().exchange_code(http_client, CONFIG, "code", "verifier")
        assert LinearConnector().extract(payload, "s").expires_at is None


class TestExtraction:
    def test_slack_team_identity_and_bot_token(self):
        grant = SlackConnector().extract(
            {
                "ok": True,
                "access_token": "xoxb-1",
                "scope": "commands,chat:write",
                "team": {"id": "T1"},
                "authed_user": {"id": "U1"},
            },
            "state",
        )
        assert grant.account_ref == "T1"
        assert grant.access_token == "xoxb-1"
        assert grant.scopes == ["commands", "chat:write"]
        assert grant.refresh_token is None
        assert grant.expires_at is None

    def test_slack_user_fallbacks(self):
        grant = SlackConnector().extract({"authed_user": {"id": "U1", "access_token": "xoxp-1"}}, "state")
        assert grant.account_ref == "U1"
        assert grant.access_token == "xoxp-1"

    def test_slack_keeps_current_ref_without_identity(self):
        grant = SlackConnector().extract({"access_token": "x", "team": "not-a-dict"}, "prev")
        assert grant.account_ref == "prev"

    def test_linear_identity_order(self):
        connector = LinearConnector()
        both = connector.extract({"access_token": "a", "organization_id": "org", "team_id": "team"}, "s")
        team_only = connector.extract({"access_token": "a", "team_id": "team"}, "s")
        neither = connector.extract({"access_token": "a"}, "s")
        assert (both.account_ref, team_only.account_ref, neither.account_ref) == ("org", "team", "s")

    def test_linear_tokens_and_expiry(self):
        before = utc_now_iso()
        grant = LinearConnector().extract(
            {"access_token": "a", "refresh_token": "r", "expires_in": 3600, "scope": "read write"}, "s"
        )
        assert grant.refresh_token == "r"
        assert grant.scopes == ["read", "write"]
        assert grant.expires_at > before


def test_expires_at_requires_number():
    assert expires_at_from({}) is None
    assert expires_at_from({"expires_in": "3600"}) is None
    assert expires_at_from({"expires_in": True}) is None
    assert expires_at_from({"expires_in": 60}) is not None
    assert expires_at_from({"expires_in": 1e20}) is None
    assert expires_at_from({"expires_in": float("inf")}) is None
    assert expires_at_from({"expires_in": float("nan")}) is None
    assert expires_at_from({"expires_in": -1}) is None
    assert expires_at_from({"expires_in": MAX_EXPIRES_IN_SECONDS}) is not None


def test_parse_scopes():
    assert parse_scopes("a b,c  d") == ["a", "b", "c", "d"]
    assert parse_scopes(None) == []


class TestRegistry:
    def test_default_providers(self):
        assert connector_registry.names() == ["slack", "linear"]
        assert connector_registry.get("github") is None

    def test_list_providers_reports_configuration(self):
        settings = configured_settings(linear_client_id="")
        listing = {p["provider"]: p for p in connector_registry.list_providers(settings)}
        assert listing["slack"]["configured"] is True
        assert listing["linear"]["configured"] is False
        assert listing["slack"]["display_name"] == "Slack"

    def test_custom_registry(self):
        registry = ConnectorRegistry([LinearConnector()])
        assert registry.names() == ["linear"]
        registry.register(SlackConnector())
        assert isinstance(registry.get("slack"), SlackConnector)
