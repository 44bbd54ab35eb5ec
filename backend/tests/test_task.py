"""Tests for the per-company discovery task body."""

from unittest.mock import AsyncMock

import pytest

from app.db.models import Asset
from app.engines.discovery.schemas import AdditionalAssets, DiscoveredAsset, DiscoveredCompany
from app.engines.discovery.task import AssetDiscoveryTask
from app.engines.jobs.errors import PermanentTaskError, TransientTaskError
from app.engines.jobs.models import CompanyEntry, SupplementaryTarget, Usage


class FakeLlm:
    """Replies per response model, in call order."""

    def __init__(self, replies):
        self.replies = {model: list(items) for model, items in replies.items()}
        self.calls = []

    async def __call__(self, provider_id, system_prompt, user_prompt, response_model, api_key=None):
        self.calls.append((provider_id, response_model, user_prompt, api_key))
        item = self.replies[response_model].pop(0)
        if isinstance(item, Exception):
            raise item
        return item, Usage(input_tokens=100, output_tokens=20, cost_usd=0.5)


def make_store(rows=None, company=None):
    store = AsyncMock()
    store.save_discovered_company.side_effect = lambda company, provider_id: len(company.assets)
    store.get_assets.return_value = rows or []
    store.get_company_by_name.return_value = company
    store.add_supplementary_assets.side_effect = (
        lambda name, isin, sector, existing, new_assets, provider_id: len(new_assets)
    )
    return store


def discovered(isin="US0000000001", assets=None):
    return DiscoveredCompany(
        name="Acme Corporation",
        isin=isin,
        sector="Industrials",
        assets=assets
        if assets is not None
        else [
            DiscoveredAsset(facility_name="HQ", city="Austin", asset_type="Headquarters", value_usd=100),
            DiscoveredAsset(facility_name="Plant", city="Dallas", asset_type="Factory", value_usd=300),
        ],
    )


async def no_search(name, isin):
    return ""


class TestRunPrimary:
    @pytest.mark.asyncio
    async def test_discovers_reviews_and_saves(self):
        store = make_store()
        llm = FakeLlm(
            {
                DiscoveredCompany: [discovered()],
                AdditionalAssets: [
                    AdditionalAssets(
                        additional_assets=[
                            DiscoveredAsset(facility_name="hq", city="Paris", asset_type="Office"),
                            DiscoveredAsset(facility_name="Port", city="Houston", asset_type="Port Terminal"),
                        ]
                    )
                ],
            }
        )
        task = AssetDiscoveryTask(store, web_search=no_search, call_llm=llm)

        outcome = await task.run_primary(CompanyEntry(name="Acme"), "deepseek", credential="lane-key")

        assert outcome.success is True
        assert outcome.company_name == "Acme Corporation"
        assert outcome.isin == "US0000000001"
        assert outcome.assets_found == 3
        assert outcome.usage == Usage(input_tokens=200, output_tokens=40, cost_usd=1.0)
        assert outcome.normalized is False
        assert outcome.web_research_used is False
        assert [call[3] for call in llm.calls] == ["lane-key", "lane-key"]
        saved, provider_id = store.save_discovered_company.call_args.args
        assert provider_id == "deepseek"
        assert [a.facility_name for a in saved.assets] == ["HQ", "Plant", "Port"]

    @pytest.mark.asyncio
    async def test_submitted_isin_and_total_value_win(self):
        store = make_store()
        llm = FakeLlm({DiscoveredCompany: [discovered(isin="XX9999999999")], AdditionalAssets: [AdditionalAssets()]})
        task = AssetDiscoveryTask(store, web_search=no_search, call_llm=llm)

        outcome = await task.run_primary(
            CompanyEntry(name="Acme", isin="US0000000001", total_value=1000), "openai"
        )

        assert outcome.isin == "US0000000001"
        assert outcome.normalized is True
        saved = store.save_discovered_company.call_args.args[0]
        assert [a.value_usd for a in saved.assets] == [250, 750]
        assert "US0000000001" in llm.calls[0][2]

    @pytest.mark.asyncio
    async def test_missing_isin_is_permanent(self):
        store = make_store()
        llm = FakeLlm({DiscoveredCompany: [discovered(isin=None)]})
        task = AssetDiscoveryTask(store, web_search=no_search, call_llm=llm)

        with pytest.raises(PermanentTaskError, match="Invalid response structure for company: Acme"):
            await task.run_primary(CompanyEntry(name="Acme"), "openai")
        store.save_discovered_company.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_completeness_pass_keeps_first_pass(self):
        store = make_store()
        llm = FakeLlm(
            {DiscoveredCompany: [discovered()], AdditionalAssets: [PermanentTaskError("bad json")]}
        )
        task = AssetDiscoveryTask(store, web_search=no_search, call_llm=llm)

        outcome = await task.run_primary(CompanyEntry(name="Acme"), "openai")

        assert outcome.assets_found == 2
        assert outcome.usage.input_tokens == 100

    @pytest.mark.asyncio
    async def test_discovery_errors_propagate(self):
        llm = FakeLlm({DiscoveredCompany: [TransientTaskError("429")]})
        task = AssetDiscoveryTask(make_store(), web_search=no_search, call_llm=llm)

        with pytest.raises(TransientTaskError):
            await task.run_primary(CompanyEntry(name="Acme"), "openai")

    @pytest.mark.asyncio
    async def test_web_research_is_optional(self):
        async def failing_search(name, isin):
            raise RuntimeError("serper down")

        async def search(name, isin):
            return "Acme operates a refinery in Baytown"

        for web_search, expected in ((failing_search, False), (search, True)):
            llm = FakeLlm({DiscoveredCompany: [discovered()], AdditionalAssets: [AdditionalAssets()]})
            task = AssetDiscoveryTask(make_store(), web_search=web_search, call_llm=llm)

            outcome = await task.run_primary(CompanyEntry(name="Acme"), "openai")

            assert outcome.web_research_used is expected
            assert ("Baytown" in llm.calls[0][2]) is expected


def stored_rows():
    return [
        Asset(company_name="Acme", isin="US0000000001", facility_name="HQ", city="Austin",
              asset_type="Headquarters", value_usd=100, sector="Industrials"),
        Asset(company_name="Acme", isin="US0000000001", facility_name="Plant", city="Dallas",
              asset_type="Factory", value_usd=300, sector="Industrials"),
    ]


class TestRunSupplementary:
    @pytest.mark.asyncio
    async def test_appends_only_new_assets(self):
        store = make_store(rows=stored_rows())
        llm = FakeLlm(
            {
                AdditionalAssets: [
                    AdditionalAssets(
                        additional_assets=[
                            DiscoveredAsset(facility_name="Plant", city="Tulsa", asset_type="Factory"),
                            DiscoveredAsset(facility_name="Annex", city="Austin", asset_type="Headquarters"),
                            DiscoveredAsset(city="Lima", asset_type="Mine"),
                        ]
                    )
                ]
            }
        )
        task = AssetDiscoveryTask(store, call_llm=llm)
        target = SupplementaryTarget(result_index=0, name="Acme", isin="US0000000001")

        outcome = await task.run_supplementary(target, "claude", credential="c-key")

        assert outcome.additional_assets == 1
        assert outcome.error is None
        assert outcome.usage.cost_usd == 0.5
        store.get_assets.assert_awaited_once_with(isin="US0000000001")
        name, isin, sector, existing, new_assets, provider_id = store.add_supplementary_assets.call_args.args
        assert (name, isin, sector, provider_id) == ("Acme", "US0000000001", "Industrials", "claude")
        assert len(existing) == 2
        assert [a.city for a in new_assets] == ["Lima"]
        assert llm.calls[0][3] == "c-key"

    @pytest.mark.asyncio
    async def test_nothing_stored_skips_review(self):
        store = make_store(rows=[])
        llm = FakeLlm({})
        task = AssetDiscoveryTask(store, call_llm=llm)

        outcome = await task.run_supplementary(SupplementaryTarget(result_index=0, name="Acme"), "claude")

        assert outcome.additional_assets == 0
        assert outcome.usage == Usage()
        assert llm.calls == []
        store.get_assets.assert_awaited_once_with(company_name="Acme")

    @pytest.mark.asyncio
    async def test_falls_back_to_name_lookup(self):
        rows = stored_rows()
        store = make_store()
        store.get_assets.side_effect = [[], rows]
        llm = FakeLlm({AdditionalAssets: [AdditionalAssets()]})
        task = AssetDiscoveryTask(store, call_llm=llm)

        outcome = await task.run_supplementary(
            SupplementaryTarget(result_index=0, name="Acme", isin="XS0000000000"), "claude"
        )

        assert outcome.additional_assets == 0
        assert store.get_assets.await_count == 2

    @pytest.mark.asyncio
    async def test_review_errors_propagate(self):
        store = make_store(rows=stored_rows())
        llm = FakeLlm({AdditionalAssets: [PermanentTaskError("bad json")]})
        task = AssetDiscoveryTask(store, call_llm=llm)

        with pytest.raises(PermanentTaskError):
            await task.run_supplementary(SupplementaryTarget(result_index=0, name="Acme"), "claude")
        store.add_supplementary_assets.assert_not_called()
