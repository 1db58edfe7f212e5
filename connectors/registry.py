"""
ConnectorRegistry — maps provider slugs to their OAuth adapters.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from config.settings import Settings
from connectors.base import BaseConnector
from connectors.linear import LinearConnector
from connectors.slack import SlackConnector

logger = logging.getLogger(__name__)

# ── All known connectors; add new ones here ──────────────────────────────

_ALL_CONNECTORS: List[BaseConnector] = [
    SlackConnector(),
    LinearConnector(),
]


class ConnectorRegistry:
    """Lookup of OAuth adapters by provider slug."""

    def __init__(self, connectors: Optional[Iterable[BaseConnector]] = None):
        self._connectors: Dict[str, BaseConnector] = {}
        for conn in connectors if connectors is not None else _ALL_CONNECTORS:
            self.register(conn)

    def register(self, connector: BaseConnector) -> None:
        self._connectors[connector.provider_name] = connector
        logger.debug("Connector registered: %s (%s)", connector.display_name, connector.provider_name)

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Adapter for *provider*, or None if the slug is unknown."""
        return self._connectors.get(provider)

    def names(self) -> List[str]:
        return list(self._connectors.keys())

    def list_providers(self, settings: Settings) -> List[Dict[str, object]]:
        """Return info about every known connector and whether it is configured."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "configured": c.is_configured(settings),
            }
            for c in self._connectors.values()
        ]


connector_registry = ConnectorRegistry()
