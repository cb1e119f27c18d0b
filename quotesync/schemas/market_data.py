# quotesync/schemas/market_data.py
"""
Pydantic schemas for market data settings and asset updates.

These schemas handle:
- Provider settings (read and update)
- Provider sync info
- Asset profile updates written by the sync engine
"""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# PROVIDER SETTINGS SCHEMAS
# =============================================================================

class ProviderSettingResponse(BaseModel):
    """Schema for a stored provider setting."""

    id: str
    name: str
    priority: int
    enabled: bool
    updated_at: dt.datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ProviderSettingUpdate(BaseModel):
    """Schema for changing a provider's priority or enabled flag."""

    provider_id: str = Field(..., min_length=1, description="Provider id (e.g., YAHOO)")
    priority: int = Field(..., ge=0, description="Lower is preferred")
    enabled: bool

    @field_validator("provider_id")
    @classmethod
    def normalize_provider_id(cls, value: str) -> str:
        return value.strip().upper()


class ProviderInfo(BaseModel):
    """Schema for a provider and the time its quotes were last written."""

    id: str
    name: str
    last_synced_date: dt.datetime | None = None


# =============================================================================
# ASSET SCHEMAS
# =============================================================================

class AssetProfileUpdate(BaseModel):
    """
    Descriptive fields written back to an asset.

    Used for provider name backfill and MPF unit price overlay. Every field
    is written, so callers start from the asset's current values.
    """

    name: str | None = None
    asset_class: str | None = None
    asset_sub_class: str | None = None
    sectors: str | None = None
    countries: str | None = None
    notes: str | None = None
    attributes: dict[str, Any] | None = None
