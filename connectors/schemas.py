"""
Pydantic models for credential-broker results.

Field names are snake_case in Python and camelCase on the wire.  Optional
fields that were never set are left out of the serialized form.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ProviderStatus(ApiModel):
    provider: str
    configured: bool
    connected: bool
    status: str
    checked_at: str
    detail: Optional[str] = None
    expires_at: Optional[str] = None
    refresh_supported: Optional[bool] = None


class StartResult(ApiModel):
    ok: bool
    provider: str
    authorize_url: str
    state: str
    expires_at: str


class CompleteResult(ApiModel):
    ok: bool
    provider: str
    status: str
    account_ref: Optional[str] = None
    expires_at: Optional[str] = None


class RefreshResult(ApiModel):
    ok: bool
    provider: str
    refreshed: bool
    account_ref: Optional[str] = None
    expires_at: Optional[str] = None
    reason: Optional[str] = None


class IntegrationsStatus(ApiModel):
    ok: bool
    generated_at: str
    providers: Dict[str, ProviderStatus]
