"""Prompt templates for asset discovery."""

from collections import Counter
from typing import Optional, Sequence

from app.engines.discovery.schemas import DiscoveredAsset

JSON_ONLY_SUFFIX = (
    "\n\nIMPORTANT: Respond with valid JSON only. No markdown, no code fences, just raw JSON."
)

ASSET_FIELDS = """For each asset, provide:
- facility_name: A descriptive name for the facility
- address: Street address or location description
- city: City name
- country: Country name
- latitude: Approximate latitude coordinate
- longitude: Approximate longitude coordinate
- coordinate_certainty: 1-100 confidence in coordinates (80+ for well-known locations)
- asset_type: One of: Headquarters, Office, Mine, Smelter, Refinery, Processing Plant, Manufacturing Plant, Data Center, Warehouse, Distribution Center, Port Terminal, Rail Yard, Pipeline, Power Plant, Solar Farm, Wind Farm, Research Facility, Laboratory, Campus, Retail Store, Hotel, Theme Park, Shipyard, Drilling Platform, LNG Terminal, or another descriptive type
- value_usd: Estimated value in USD (real estate, equipment, strategic importance)
- size_factor: 0.1-1.0 relative size factor
- geo_factor: 0.5-1.5 geographic value factor (higher for prime locations)
- type_weight: 0.5-1.5 asset type importance weight
- industry_factor: 0.5-1.5 industry-specific multiplier
- valuation_confidence: 1-100 confidence in the valuation estimate
- ownership_share: Percentage of the asset owned by the company (0-100). Use 100 for wholly-owned assets and the actual stake for joint ventures. value_usd is the TOTAL asset value; ownership_share carries the company's share."""

DISCOVERY_PROMPT = f"""You are an expert corporate analyst specialising in physical asset discovery for global corporations. Given a company name, identify ALL significant physical assets it owns or operates worldwide. Be thorough; do not stop at a handful of sites.

Provide:
1. The company's ISIN (12 characters). If you are unsure, give your best estimate in the standard format (country code + 9 alphanumeric + check digit).
2. The company's sector (Technology, Energy, Industrials, Healthcare, Consumer Staples, Financials, Materials, Utilities, ...).
3. A complete list of significant physical assets. Go through every category and list all known sites:
   - Corporate: headquarters, major regional and country offices
   - Extraction: mines, quarries, wells, drilling platforms
   - Processing: smelters, refineries, processing plants, concentrators
   - Manufacturing: factories, assembly plants, fabrication facilities
   - Infrastructure: port terminals, rail yards, pipelines, conveyor systems
   - Energy: power plants, solar and wind farms, hydroelectric dams, LNG terminals
   - Logistics: warehouses, distribution centers, storage facilities, tank farms
   - R&D: research facilities, laboratories, technology centers
   - Other: campuses, shipyards, retail stores, hotels, theme parks, hospitals

Consider every country of operation, joint ventures and partially-owned assets. Aim for 30+ assets for major global corporations.

{ASSET_FIELDS}

Respond with a JSON object:
{{
  "name": "Full Official Company Name",
  "isin": "XX0000000000",
  "sector": "Sector Name",
  "assets": [...]
}}"""

SUPPLEMENTARY_PROMPT = f"""You are an expert corporate analyst reviewing an asset discovery for completeness. Identify assets MISSING from the list you are given.

You will receive the company with its sector, the assets already identified, and possibly web research data.

Work through every category: mines and extraction sites, smelters, refineries and processing plants, ports and rail, power generation, regional offices, joint ventures, research centers, logistics facilities, recent acquisitions and facilities under construction.

Only return NEW assets that are not already in the list. If the list is already complete, return an empty array.

{ASSET_FIELDS}

Respond with a JSON object:
{{
  "additional_assets": [...]
}}"""

WEB_RESEARCH_BLOCK = """

--- WEB RESEARCH DATA ---
{intro}

{context}
--- END WEB RESEARCH DATA ---"""


def build_discovery_prompt(company_name: str, isin: Optional[str] = None, web_context: str = "") -> str:
    prompt = f"Discover and analyze the physical assets of: {company_name}"
    if isin:
        prompt += (
            f"\n\nIMPORTANT: This company has the ISIN code {isin}. Use it to make sure you are "
            "researching the correct company. The ISIN in your response must match exactly."
        )
    if web_context:
        prompt += WEB_RESEARCH_BLOCK.format(
            intro=(
                "The following was gathered from recent web searches about this company's "
                "facilities and financial filings. Use it to improve facility names, locations, "
                "coordinates and valuations, preferring these facts over recollection:"
            ),
            context=web_context,
        )
    return prompt


def build_review_prompt(
    company_name: str,
    sector: Optional[str],
    isin: Optional[str],
    assets: Sequence[DiscoveredAsset],
    web_context: str = "",
) -> str:
    """Ask for assets missing from ``assets``."""
    listing = "\n".join(
        f"{i}. {a.facility_name} ({a.asset_type}) - {a.city}, {a.country} "
        f"[{a.ownership_share if a.ownership_share is not None else 100}% owned]"
        for i, a in enumerate(assets, start=1)
    )
    types = Counter(a.asset_type or "Unknown" for a in assets)
    breakdown = ", ".join(f"{asset_type}: {count}" for asset_type, count in types.items())

    prompt = f"""Company: {company_name}
Sector: {sector or "Unknown"}
ISIN: {isin or "Unknown"}

ASSETS ALREADY IDENTIFIED ({len(assets)} total):
Types breakdown: {breakdown}

{listing}

Review this list and identify significant physical assets that are MISSING. Consider:
- All countries where {company_name} operates
- Joint ventures and partnerships (with correct ownership percentages)
- Recently acquired facilities
- Infrastructure assets (ports, railways, pipelines, conveyor systems)
- Energy generation assets
- Storage and logistics facilities
- R&D and technology centers in key markets
- Processing and refining facilities that may have been overlooked"""

    if web_context:
        prompt += WEB_RESEARCH_BLOCK.format(
            intro="Use this web research to find assets mentioned but not yet captured above:",
            context=web_context,
        )
    return prompt
