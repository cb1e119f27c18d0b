# quotesync/schemas/__init__.py
"""
Pydantic schemas for validated inputs and outputs of the sync engine.

- market_data: Provider settings, provider info, asset profile updates

Usage:
    from quotesync.schemas import ProviderSettingUpdate, AssetProfileUpdate
"""

from quotesync.schemas.market_data import (
    AssetProfileUpdate,
    ProviderInfo,
    ProviderSettingResponse,
    ProviderSettingUpdate,
)

__all__ = [
    "AssetProfileUpdate",
    "ProviderInfo",
    "ProviderSettingResponse",
    "ProviderSettingUpdate",
]
