"""
Shared fixtures: isolated settings, a throwaway SQLite database per test,
and a scripted stand-in for provider HTTP endpoints.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import Settings
from connectors.broker import CredentialBroker
from connectors.encryption import SecretCipher
from database.models import Base

SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"
LINEAR_TOKEN_URL = "https://api.linear.app/oauth/token"
LINEAR_GRAPHQL_URL = "https://api.linear.app/graphql"


def make_settings(**overrides: Any) -> Settings:
    """Settings that ignore the host environment and any .env file."""
    values: Dict[str, Any] = dict(
        encryption_seed="test-seed",
        oauth_base_url="",
        slack_client_id="",
        slack_client_secret="",
        slack_oauth_redirect_uri=None,
        slack_oauth_scopes="commands chat:write",
        linear_client_id="",
        linear_client_secret="",
        linear_oauth_redirect_uri=None,
        linear_oauth_scopes="read",
        linear_api_key="",
        openai_api_key="",
        database_url="sqlite+aiosqlite://",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def configured_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        oauth_base_url="https://dash.example.com/",
        slack_client_id="slack-client",
        slack_client_secret="slack-secret",
        linear_client_id="linear-client",
        linear_client_secret="linear-secret",
    )
    values.update(overrides)
    return make_settings(**values)


Route = Union[Tuple[int, Any], Callable[[httpx.Request], httpx.Response]]


class ProviderStub:
    """httpx.MockTransport handler with per-URL scripted answers."""

    def __init__(self) -> None:
        self.routes: Dict[str, Route] = {}
        self.requests: List[httpx.Request] = []

    def respond(self, url: str, status: int = 200, json: Any = None) -> None:
        self.routes[url] = (status, json)

    def raise_timeout(self, url: str) -> None:
        def _boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        self.routes[url] = _boom

    def requests_to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route: Optional[Route] = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        if callable(route):
            return route(request)
        status, body = route
        if isinstance(body, (str, bytes)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)


@pytest.fixture
def settings() -> Settings:
    return configured_settings()


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher.from_seed("test-seed")


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'broker.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def http_client(provider_stub):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_stub)) as client:
        yield client


@pytest.fixture
def broker(settings, cipher, session_factory, http_client) -> CredentialBroker:
    return CredentialBroker(
        settings,
        cipher=cipher,
        session_factory=session_factory,
        http_client=http_client,
    )
