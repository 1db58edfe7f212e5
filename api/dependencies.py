"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends

from connectors.broker import CredentialBroker
from connectors.status import StatusAggregator

_broker: Optional[CredentialBroker] = None


def get_broker() -> CredentialBroker:
    """Process-wide broker over the configured database."""
    global _broker
    if _broker is None:
        _broker = CredentialBroker()
    return _broker


def get_status_aggregator(broker: CredentialBroker = Depends(get_broker)) -> StatusAggregator:
    return StatusAggregator(broker)
