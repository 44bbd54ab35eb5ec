"""Per-company discovery work scheduled by the job engine."""

from typing import Awaitable, Callable, Optional

import structlog

from app.engines.discovery import providers
from app.engines.discovery.assets import (
    AssetStore,
    asset_from_row,
    merge_new_assets,
    normalize_asset_values,
)
from app.engines.discovery.prompts import (
    DISCOVERY_PROMPT,
    SUPPLEMENTARY_PROMPT,
    build_discovery_prompt,
    build_review_prompt,
)
from app.engines.discovery.schemas import AdditionalAssets, DiscoveredCompany
from app.engines.discovery.web_search import search_company_assets
from app.engines.jobs.errors import PermanentTaskError
from app.engines.jobs.models import (
    CompanyEntry,
    PrimaryOutcome,
    SupplementaryOutcome,
    SupplementaryTarget,
)

logger = structlog.get_logger()

WebSearch = Callable[[str, Optional[str]], Awaitable[str]]


class AssetDiscoveryTask:
    """Discovers and stores a company's physical assets.

    Primary discovery runs optional web research, a discovery pass and a
    same-provider completeness pass, then replaces the company's stored
    assets. Supplementary discovery asks a second provider what is missing
    from the stored list and appends only genuinely new assets.
    """

    def __init__(
        self,
        store: AssetStore,
        web_search: Optional[WebSearch] = None,
        call_llm=None,
    ):
        self.store = store
        self.web_search = web_search or search_company_assets
        self.call_llm = call_llm or providers.call_llm

    async def _web_context(self, company_name: str, isin: Optional[str]) -> str:
        try:
            return await self.web_search(company_name, isin)
        except Exception as e:
            logger.warning("Web research failed", company=company_name, error=str(e))
            return ""

    async def run_primary(
        self,
        entry: CompanyEntry,
        provider_id: str,
        credential: Optional[str] = None,
    ) -> PrimaryOutcome:
        web_context = await self._web_context(entry.name, entry.isin)

        company, usage = await self.call_llm(
            provider_id,
            DISCOVERY_PROMPT,
            build_discovery_prompt(entry.name, entry.isin, web_context),
            DiscoveredCompany,
            api_key=credential,
        )
        company.isin = (entry.isin or company.isin or "").strip().upper() or None
        if not company.name or not company.isin:
            raise PermanentTaskError(f"Invalid response structure for company: {entry.name}")

        # Completeness pass with the same provider; failures keep the first pass
        try:
            extra, review_usage = await self.call_llm(
                provider_id,
                SUPPLEMENTARY_PROMPT,
                build_review_prompt(
                    company.name, company.sector, company.isin, company.assets, web_context
                ),
                AdditionalAssets,
                api_key=credential,
            )
            usage = usage + review_usage
            added = merge_new_assets(company.assets, extra.additional_assets)
            company.assets.extend(added)
            logger.debug("Completeness pass", company=company.name, added=len(added))
        except Exception as e:
            logger.warning(
                "Completeness pass failed, using first pass only",
                company=entry.name,
                error=str(e),
            )

        normalized = normalize_asset_values(company, entry.total_value)
        saved = await self.store.save_discovered_company(company, provider_id)

        return PrimaryOutcome(
            success=True,
            company_name=company.name,
            assets_found=saved,
            usage=usage,
            isin=company.isin,
            normalized=normalized,
            web_research_used=bool(web_context),
        )

    async def run_supplementary(
        self,
        target: SupplementaryTarget,
        provider_id: str,
        credential: Optional[str] = None,
    ) -> SupplementaryOutcome:
        isin = target.isin
        rows = await self.store.get_assets(isin=isin) if isin else []
        if not rows:
            rows = await self.store.get_assets(company_name=target.name)
        if not rows:
            logger.info("No stored assets, skipping supplementary review", company=target.name, isin=isin)
            return SupplementaryOutcome()

        isin = isin or rows[0].isin
        sector = rows[0].sector
        if not sector:
            company = await self.store.get_company_by_name(target.name)
            sector = company.sector if company else None

        existing = [asset_from_row(row) for row in rows]
        reply, usage = await self.call_llm(
            provider_id,
            SUPPLEMENTARY_PROMPT,
            build_review_prompt(target.name, sector, isin, existing),
            AdditionalAssets,
            api_key=credential,
        )
        new_assets = merge_new_assets(existing, reply.additional_assets, require_name=False)
        added = await self.store.add_supplementary_assets(
            target.name, isin, sector, existing, new_assets, provider_id
        )
        return SupplementaryOutcome(additional_assets=added, usage=usage)
