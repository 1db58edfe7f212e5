"""
SQLAlchemy ORM models for the credential broker.

Column types stay portable (no JSONB / ARRAY) so the same models run on
PostgreSQL in production and SQLite in tests.  Timestamps are stored as
fixed-width ISO-8601 UTC strings (see ``utils.clock``).
"""

from __future__ import annotations

import secrets

from sqlalchemy import Column, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase

from utils.clock import utc_now_iso

CONNECTION_PENDING = "pending"
CONNECTION_CONNECTED = "connected"
CONNECTION_FAILED = "failed"

AUTH_TYPE_OAUTH2_PKCE = "oauth2_pkce"


def _new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(10)}"


def new_connection_id() -> str:
    return _new_id("conn")


def new_secret_id() -> str:
    return _new_id("sec")


class Base(DeclarativeBase):
    pass


class AuthConnection(Base):
    """
    One OAuth attempt / account per provider.

    ``account_ref`` is two-phase: while ``status == "pending"`` it holds the
    anti-CSRF state token; once connected it holds the remote account id
    (team, organization or user id).
    """

    __tablename__ = "auth_connections"

    id = Column(String(64), primary_key=True, default=new_connection_id)
    provider = Column(String(32), nullable=False)
    account_ref = Column(String(256), nullable=False)
    auth_type = Column(String(32), nullable=False, default=AUTH_TYPE_OAUTH2_PKCE)
    scopes = Column(Text, nullable=False, default="[]")
    status = Column(String(16), nullable=False)
    expires_at = Column(String(32), nullable=True)
    updated_at = Column(String(32), nullable=False, default=utc_now_iso)

    __table_args__ = (
        Index("ix_auth_connections_provider_account_ref", "provider", "account_ref"),
        Index("ix_auth_connections_provider_updated_at", "provider", "updated_at"),
    )


class SecretRecord(Base):
    """Append-only encrypted secret; the newest ``rotated_at`` wins on read."""

    __tablename__ = "secret_records"

    id = Column(String(64), primary_key=True, default=new_secret_id)
    secret_name = Column(String(512), nullable=False)
    provider = Column(String(32), nullable=False)
    cipher_blob = Column(Text, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    rotated_at = Column(String(32), nullable=False, default=utc_now_iso)
    last_validated_at = Column(String(32), nullable=True)

    __table_args__ = (
        Index("ix_secret_records_provider_name_rotated", "provider", "secret_name", "rotated_at"),
    )
