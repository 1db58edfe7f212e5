"""
UTC timestamp helpers.

Every timestamp persisted by the credential broker uses one fixed-width
ISO-8601 form (``2025-01-31T09:15:02.123Z``) so that comparing the stored
strings lexically gives the same answer as comparing the instants.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def format_iso(moment: datetime) -> str:
    """Render an aware datetime as fixed-width UTC with millisecond precision."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def utc_now_iso(now: Optional[datetime] = None) -> str:
    return format_iso(now or datetime.now(timezone.utc))


def iso_after(seconds: float, now: Optional[datetime] = None) -> str:
    """Timestamp *seconds* from now (or from *now* when given)."""
    base = now or datetime.now(timezone.utc)
    return format_iso(base + timedelta(seconds=seconds))
