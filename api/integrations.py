"""
Integration routes — OAuth start/callback, token refresh, status report.

Every response is JSON.  Flow failures come back as
``{"ok": false, "provider"?, "status"?, "error"}`` with the matching HTTP code.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.dependencies import get_broker, get_status_aggregator
from connectors.broker import CredentialBroker, OAuthFlowError
from connectors.registry import connector_registry
from connectors.status import StatusAggregator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])

_NO_STORE = {"Cache-Control": "no-store"}


def _flow_error(exc: OAuthFlowError) -> JSONResponse:
    return JSONResponse(exc.to_api(), status_code=exc.status_code, headers=_NO_STORE)


@router.get("/oauth/{provider}/start")
async def start_oauth(
    provider: str,
    broker: CredentialBroker = Depends(get_broker),
) -> JSONResponse:
    """Begin an OAuth + PKCE flow; the dashboard redirects to ``authorizeUrl``."""
    try:
        result = await broker.start(provider)
    except OAuthFlowError as exc:
        return _flow_error(exc)
    return JSONResponse(result.to_api(), headers=_NO_STORE)


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    state: Optional[str] = Query(None),
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    broker: CredentialBroker = Depends(get_broker),
) -> JSONResponse:
    """Provider redirect target."""
    try:
        result = await broker.complete(provider, {"state": state, "code": code, "error": error})
    except OAuthFlowError as exc:
        return _flow_error(exc)
    return JSONResponse(result.to_api(), headers=_NO_STORE)


@router.post("/api/integrations/refresh/{provider}")
async def refresh_provider(
    provider: str,
    broker: CredentialBroker = Depends(get_broker),
) -> Dict[str, Any]:
    """Rotate tokens; always 200, with ``refreshed`` telling whether it worked."""
    result = await broker.refresh(provider)
    return result.to_api()


@router.get("/api/integrations/status")
async def integrations_status(
    aggregator: StatusAggregator = Depends(get_status_aggregator),
) -> Dict[str, Any]:
    report = await aggregator.report()
    return report.to_api()


@router.get("/api/integrations/providers")
async def list_providers(
    broker: CredentialBroker = Depends(get_broker),
) -> List[Dict[str, object]]:
    """OAuth providers this deployment knows about and whether each is configured."""
    return connector_registry.list_providers(broker.settings)
