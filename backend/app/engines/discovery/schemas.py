"""Structured LLM responses for asset discovery."""

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class DiscoveredAsset(BaseModel):
    """A physical asset reported by the LLM."""

    facility_name: Optional[str] = Field(None, description="Descriptive name for the facility")
    address: Optional[str] = Field(None, description="Street address or location description")
    city: Optional[str] = Field(None, description="City name")
    country: Optional[str] = Field(None, description="Country name")
    latitude: Optional[float] = Field(None, description="Approximate latitude")
    longitude: Optional[float] = Field(None, description="Approximate longitude")
    coordinate_certainty: Optional[int] = Field(None, description="1-100 confidence in coordinates")
    asset_type: Optional[str] = Field(None, description="Headquarters, Mine, Refinery, Data Center, ...")
    value_usd: Optional[float] = Field(None, description="Estimated total value in USD")
    size_factor: Optional[float] = Field(None, description="0.1-1.0 relative size")
    geo_factor: Optional[float] = Field(None, description="0.5-1.5 geographic value factor")
    type_weight: Optional[float] = Field(None, description="0.5-1.5 asset type weight")
    industry_factor: Optional[float] = Field(None, description="0.5-1.5 industry multiplier")
    valuation_confidence: Optional[int] = Field(None, description="1-100 confidence in valuation")
    ownership_share: Optional[float] = Field(None, description="Percent owned by the company (0-100)")


class DiscoveredCompany(BaseModel):
    """Result of a primary discovery pass."""

    name: str = Field(description="Full official company name")
    isin: Optional[str] = Field(None, description="12-character ISIN")
    sector: Optional[str] = Field(None, description="Sector, e.g. Energy or Technology")
    assets: list[DiscoveredAsset] = Field(default_factory=list)


class AdditionalAssets(BaseModel):
    """Assets missing from an earlier pass."""

    additional_assets: list[DiscoveredAsset] = Field(
        default_factory=list,
        validation_alias=AliasChoices("additional_assets", "assets"),
    )
