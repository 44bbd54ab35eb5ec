"""Discovery Engine - finds the physical assets of a company.

This module provides:
- AssetDiscoveryTask: the per-company work run by the job engine
- AssetStore: company and asset persistence
- providers: LLM provider registry, credentials and calls
- web_search: optional Serper web research
"""

from app.engines.discovery.assets import AssetStore, merge_new_assets, normalize_asset_values
from app.engines.discovery.providers import (
    PROVIDERS,
    call_llm,
    list_providers,
    parallel_credentials,
)
from app.engines.discovery.schemas import AdditionalAssets, DiscoveredAsset, DiscoveredCompany
from app.engines.discovery.task import AssetDiscoveryTask

__all__ = [
    "AssetDiscoveryTask",
    "AssetStore",
    "merge_new_assets",
    "normalize_asset_values",
    "PROVIDERS",
    "call_llm",
    "list_providers",
    "parallel_credentials",
    "AdditionalAssets",
    "DiscoveredAsset",
    "DiscoveredCompany",
]
