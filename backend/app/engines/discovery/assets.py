"""Asset persistence and merge helpers for discovery."""

from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import Asset, Company
from app.engines.discovery.providers import provider_label
from app.engines.discovery.schemas import DiscoveredAsset, DiscoveredCompany

logger = structlog.get_logger()

BATCH_SIZE = 100


def _clean(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def name_key(asset: DiscoveredAsset) -> str:
    return _clean(asset.facility_name)


def location_key(asset: DiscoveredAsset) -> str:
    return f"{_clean(asset.city)}-{_clean(asset.asset_type)}"


def merge_new_assets(
    existing: Sequence[DiscoveredAsset],
    candidates: Iterable[DiscoveredAsset],
    require_name: bool = True,
) -> list[DiscoveredAsset]:
    """Candidates that duplicate neither an existing facility name nor an
    existing city/asset-type pair. Candidates are also checked against each
    other.

    With ``require_name=False`` unnamed candidates are kept as long as they
    carry a city or an asset type.
    """
    names = {name_key(a) for a in existing}
    locations = {location_key(a) for a in existing}
    new = []
    for asset in candidates:
        key = name_key(asset)
        loc = location_key(asset)
        if not key and (require_name or loc == "-"):
            continue
        if (key and key in names) or (loc != "-" and loc in locations):
            continue
        if key:
            names.add(key)
        locations.add(loc)
        new.append(asset)
    return new


def normalize_asset_values(company: DiscoveredCompany, total_value: Optional[float]) -> bool:
    """Scale asset values so they sum to a known company total.

    Returns True if values were scaled.
    """
    if not total_value or total_value <= 0 or not company.assets:
        return False
    ai_total = sum(a.value_usd or 0 for a in company.assets)
    if ai_total <= 0:
        return False

    scale = total_value / ai_total
    for asset in company.assets:
        asset.value_usd = round((asset.value_usd or 0) * scale)
    return True


def asset_from_row(row: Asset) -> DiscoveredAsset:
    return DiscoveredAsset(
        facility_name=row.facility_name,
        address=row.address or "",
        city=row.city or "",
        country=row.country or "",
        latitude=row.latitude or 0,
        longitude=row.longitude or 0,
        coordinate_certainty=row.coordinate_certainty or 50,
        asset_type=row.asset_type or "Facility",
        value_usd=row.value_usd or 0,
        size_factor=row.size_factor or 0.5,
        geo_factor=row.geo_factor or 1.0,
        type_weight=row.type_weight or 1.0,
        industry_factor=row.industry_factor or 1.0,
        valuation_confidence=row.valuation_confidence or 50,
        ownership_share=row.ownership_share if row.ownership_share is not None else 100,
    )


def build_asset_row(
    asset: DiscoveredAsset,
    company_name: str,
    isin: Optional[str],
    sector: Optional[str],
    data_source: str,
    fallback_name: Optional[str] = None,
) -> Asset:
    return Asset(
        company_name=company_name,
        isin=isin,
        facility_name=asset.facility_name or fallback_name or f"{company_name} {asset.asset_type or 'Facility'}",
        address=asset.address,
        city=asset.city,
        country=asset.country,
        latitude=asset.latitude,
        longitude=asset.longitude,
        coordinate_certainty=asset.coordinate_certainty,
        asset_type=asset.asset_type,
        value_usd=asset.value_usd,
        size_factor=asset.size_factor,
        geo_factor=asset.geo_factor,
        type_weight=asset.type_weight,
        industry_factor=asset.industry_factor,
        valuation_confidence=asset.valuation_confidence,
        ownership_share=asset.ownership_share if asset.ownership_share is not None else 100,
        sector=sector,
        data_source=data_source,
    )


class AssetStore:
    """Reads and writes companies and their assets."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save_discovered_company(self, company: DiscoveredCompany, provider_id: str) -> int:
        """Upsert the company by ISIN and replace its asset list. Returns the asset count."""
        total_value = sum(a.value_usd or 0 for a in company.assets)
        data_source = f"AI Discovery ({provider_label(provider_id)})"
        rows = [
            build_asset_row(a, company.name, company.isin, company.sector, data_source)
            for a in company.assets
        ]

        async with self.session_factory() as session:
            await self._upsert_company(
                session, company.isin, company.name, company.sector, total_value, len(rows)
            )
            await session.execute(
                delete(Asset).where(
                    or_(Asset.company_name == company.name, Asset.isin == company.isin)
                )
            )
            for start in range(0, len(rows), BATCH_SIZE):
                session.add_all(rows[start:start + BATCH_SIZE])
                await session.flush()
            await session.commit()

        logger.info("Saved company assets", company=company.name, isin=company.isin, assets=len(rows))
        return len(rows)

    async def add_supplementary_assets(
        self,
        company_name: str,
        isin: Optional[str],
        sector: Optional[str],
        existing: Sequence[DiscoveredAsset],
        new_assets: Sequence[DiscoveredAsset],
        provider_id: str,
    ) -> int:
        """Append reviewed assets and refresh the company's totals."""
        if not new_assets:
            return 0
        data_source = f"AI Discovery ({provider_label(provider_id)} Supplementary)"
        rows = [
            build_asset_row(
                a,
                company_name,
                isin,
                sector,
                data_source,
                fallback_name=f"{company_name} {a.asset_type or 'Facility'} Supp-{i}",
            )
            for i, a in enumerate(new_assets, start=1)
        ]

        async with self.session_factory() as session:
            session.add_all(rows)
            if isin:
                total_value = sum(a.value_usd or 0 for a in [*existing, *new_assets])
                await self._upsert_company(
                    session, isin, company_name, sector, total_value, len(existing) + len(rows)
                )
            await session.commit()
        return len(rows)

    async def get_assets(self, isin: Optional[str] = None, company_name: Optional[str] = None) -> list[Asset]:
        if not isin and not company_name:
            return []
        condition = Asset.isin == isin if isin else Asset.company_name == company_name
        async with self.session_factory() as session:
            result = await session.execute(select(Asset).where(condition))
            return list(result.scalars().all())

    async def get_company_by_name(self, name: str) -> Optional[Company]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Company).where(func.lower(Company.name) == name.lower()).limit(1)
            )
            return result.scalar_one_or_none()

    @staticmethod
    async def _upsert_company(
        session: AsyncSession,
        isin: str,
        name: str,
        sector: Optional[str],
        total_assets: float,
        asset_count: int,
    ) -> None:
        values = {
            "name": name,
            "sector": sector,
            "total_assets": total_assets,
            "asset_count": asset_count,
        }
        stmt = insert(Company).values(isin=isin, **values)
        await session.execute(
            stmt.on_conflict_do_update(index_elements=[Company.isin], set_=values)
        )
