"""Web research via the Serper Google Search API.

Optional: discovery works without it, but facility names, coordinates and
valuations are noticeably better when the LLM sees recent search snippets.
"""

import re
from typing import Optional

import structlog

from app.config import get_settings
from app.engines.http_client import create_http_client

logger = structlog.get_logger()

SERPER_URL = "https://google.serper.dev/search"

SECTOR_QUERIES: dict[str, list[str]] = {
    "mining": [
        "mines operations mining sites locations worldwide",
        "smelters refineries processing plants ports",
        "joint ventures minority stakes mining partnerships",
    ],
    "energy": [
        "refineries oil gas operations platforms fields",
        "LNG terminals pipelines processing plants",
        "offshore drilling rigs production facilities",
    ],
    "utilities": [
        "power plants generating stations nuclear solar wind",
        "transmission substations grid infrastructure",
        "renewable energy farms solar wind hydro facilities",
    ],
    "technology": [
        "data centers campus offices worldwide locations",
        "research labs R&D facilities engineering centers",
        "cloud infrastructure server farms colocation",
    ],
    "industrials": [
        "manufacturing plants factories production facilities worldwide",
        "warehouses distribution centers logistics hubs",
        "shipyards rail yards assembly plants",
    ],
    "healthcare": [
        "manufacturing plants pharmaceutical production facilities",
        "research centers laboratories R&D campuses",
        "distribution centers warehouses global operations",
    ],
    "consumer": [
        "manufacturing plants factories production sites worldwide",
        "distribution centers warehouses logistics network",
        "research innovation centers R&D facilities",
    ],
    "financial": [
        "offices headquarters towers regional centers",
        "data centers technology infrastructure",
        "operations centers trading floors campuses",
    ],
}

# Checked in order; the first match wins
SECTOR_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("mining", re.compile(r"mining|bhp|rio tinto|vale|glencore|freeport|barrick|newmont|anglo american|fortescue")),
    ("energy", re.compile(r"energy|exxon|chevron|shell|bp\b|total|conoco|petro|oil|gas|aramco|eni\b")),
    ("utilities", re.compile(r"electric|power|utility|nextera|duke|southern|dominion|enel")),
    ("technology", re.compile(r"tech|apple|microsoft|google|alphabet|meta|amazon|nvidia|intel|ibm|oracle|cisco|samsung")),
    ("healthcare", re.compile(r"pharma|pfizer|johnson|merck|roche|novartis|abbvie|lilly|astrazeneca|sanofi|bayer")),
    ("industrials", re.compile(r"industrial|caterpillar|deere|honeywell|3m|siemens|ge\b|boeing|lockheed|raytheon")),
    ("financial", re.compile(r"bank|capital|financial|jpmorgan|goldman|morgan stanley|citi|wells fargo|hsbc|barclays")),
    ("consumer", re.compile(r"procter|unilever|nestle|coca|pepsi|colgate|kraft|mondelez|consumer")),
]


def is_serper_available() -> bool:
    return bool(get_settings().serper_api_key)


def guess_sector(company_name: str) -> Optional[str]:
    name = company_name.lower()
    for sector, pattern in SECTOR_PATTERNS:
        if pattern.search(name):
            return sector
    return None


def build_queries(company_name: str, isin: Optional[str] = None) -> list[str]:
    queries = [
        f'"{company_name}" major facilities headquarters offices locations worldwide',
        f'"{company_name}" manufacturing plants factories production sites global operations',
        f'"{company_name}" annual report property plant equipment PP&E total assets',
        f'"{company_name}" operations locations subsidiaries facilities list',
    ]
    if isin:
        queries.append(f"{isin} {company_name} SEC filing 10-K property assets facilities")

    sector = guess_sector(company_name)
    if sector:
        queries.extend(f'"{company_name}" {query}' for query in SECTOR_QUERIES[sector])
    return queries


def extract_snippets(data: dict) -> list[str]:
    snippets = []
    graph = data.get("knowledgeGraph") or {}
    if graph.get("description"):
        snippets.append(graph["description"])
    for key, value in (graph.get("attributes") or {}).items():
        snippets.append(f"{key}: {value}")
    for result in data.get("organic") or []:
        if result.get("snippet"):
            snippets.append(f"{result['snippet']} [Source: {result.get('title', '')}]")
    return snippets


async def search_company_assets(company_name: str, isin: Optional[str] = None) -> str:
    """Search the web for a company's facilities and return joined snippets.

    Individual query failures are skipped. Returns "" when nothing was found.
    """
    settings = get_settings()
    if not settings.serper_api_key:
        return ""

    snippets: list[str] = []
    headers = {"X-API-KEY": settings.serper_api_key}
    async with create_http_client(headers=headers, timeout=30.0) as client:
        for query in build_queries(company_name, isin):
            try:
                response = await client.post(
                    SERPER_URL,
                    json={"q": query, "num": settings.serper_results_per_query, "gl": "us", "hl": "en"},
                )
                response.raise_for_status()
                snippets.extend(extract_snippets(response.json()))
            except Exception as e:
                logger.debug("Serper query failed", query=query, error=str(e))
                continue

    unique = list(dict.fromkeys(snippets))[: settings.serper_max_snippets]
    logger.info("Web research complete", company=company_name, snippets=len(unique))
    return "\n\n".join(unique)
