import time

import pytest

from app.ingestion import pipeline
from app.ingestion.pipeline import AggregatedData
from app.schemas.cards import EnrichedEntity, EntityKind
from app.schemas.defillama import ChainRevenueRecord, OverviewRecord, StablecoinChainRecord
from app.services.categories import DatasetSource, NormalizedCategory
from tests.conftest import ETHOS, LLAMA, STABLES, ethos_score_handler


def by_name(cards):
    return {c.name: c for c in cards}


async def test_protocol_cards_have_exact_metrics(sources, seed_protocols):
    cards = by_name(await pipeline.build_all_protocol_cards(sources, 10e9))

    assert set(cards) == {"Aave V3", "Hyperliquid", "Uniswap V3", "EigenLayer", "Lido"}

    aave = cards["Aave V3"]
    assert aave.slug == "aave-v3"
    assert aave.category == "lending"
    assert (aave.stock_metric.label, aave.stock_metric.value_usd) == ("TVL", 30e9)
    assert (aave.flow_metric.label, aave.flow_metric.value_usd) == ("24h Revenue", 2.5e6)
    assert aave.ethos_score == 1850
    assert aave.ethos_rank == "Reputable"
    assert aave.avatar_url == "https://icons.llama.fi/aave-v3.png"

    hyperliquid = cards["Hyperliquid"]
    assert hyperliquid.category == "perps"
    assert (hyperliquid.stock_metric.label, hyperliquid.stock_metric.value_usd) == ("24h Open Interest", 8e9)
    assert (hyperliquid.flow_metric.label, hyperliquid.flow_metric.value_usd) == ("24h Volume", 5e9)

    uniswap = cards["Uniswap V3"]
    assert uniswap.category == "dex"
    assert uniswap.stock_metric.value_usd == 11e9
    assert uniswap.flow_metric.value_usd == 1.5e9
    assert uniswap.ethos_score == 0


async def test_unmatched_protocol_flow_still_produces_card(sources, seed_protocols):
    cards = by_name(await pipeline.build_all_protocol_cards(sources, 10e9))
    eigen = cards["EigenLayer"]
    assert eigen.flow_metric.value_usd == 0
    assert eigen.stock_metric.value_usd == 15e9


async def test_eigenlayer_scored_under_override_handle(sources, seed_protocols):
    cards = by_name(await pipeline.build_all_protocol_cards(sources, 10e9))
    assert cards["EigenLayer"].ethos_score == 2650
    handles = [b["accountIdsOrUsernames"][0] for b in seed_protocols.bodies(f"{ETHOS}/users/by/x")]
    assert "eigencloud" in handles
    assert "eigenlayer" not in handles


async def test_excluded_unknown_and_small_entities_cost_no_lookups(sources, seed_protocols):
    cards = await pipeline.build_all_protocol_cards(sources, 10e9)
    names = {c.name for c in cards}
    assert not names & {"Binance CEX", "Some Bridge", "Tiny Lender"}

    handles = [b["accountIdsOrUsernames"][0] for b in seed_protocols.bodies(f"{ETHOS}/users/by/x")]
    assert not set(handles) & {"binance", "somebridge", "tiny"}


async def test_only_needed_datasets_are_fetched(sources, seed_protocols):
    await pipeline.build_all_protocol_cards(sources, 10e9)
    assert seed_protocols.calls(f"{STABLES}/stablecoins") == 0
    assert seed_protocols.calls(f"{LLAMA}/overview/fees") == 1


async def test_min_tvl_threshold(sources, seed_protocols):
    cards = await pipeline.build_all_protocol_cards(sources, 20e9)
    assert {c.name for c in cards} == {"Aave V3", "Lido"}


async def test_reputation_lookups_run_concurrently(sources, seed_protocols):
    seed_protocols.add("GET", f"{ETHOS}/score/userId", handler=ethos_score_handler, delay=0.2)
    start = time.perf_counter()
    cards = await pipeline.build_all_protocol_cards(sources, 10e9)
    elapsed = time.perf_counter() - start

    assert sum(1 for c in cards if c.ethos_score > 0) == 4
    # four scored entities at 0.2s each; sequential lookups would take at least 0.8s
    assert elapsed < 0.6


async def test_registry_outage_yields_no_cards(sources, seed_ethos):
    assert await pipeline.build_all_protocol_cards(sources, 10e9) == []


def entity(name, category, size, kind=EntityKind.PROTOCOL):
    return EnrichedEntity(name=name, slug=name.lower(), kind=kind, category=category, size_metric=size)


async def test_stock_falls_back_to_registry_tvl(sources, seed_ethos):
    gmx = entity("GMX", NormalizedCategory.PERPS, 3e9)
    data = AggregatedData(records={
        DatasetSource.OPEN_INTEREST: [OverviewRecord(name="GMX", daily_open_interest=0)],
        DatasetSource.DERIVATIVES: [OverviewRecord(name="GMX V2", total_24h=2e8)],
    })
    card = await pipeline.build_protocol_card(gmx, data, sources.ethos)
    assert card.stock_metric.label == "24h Open Interest"
    assert card.stock_metric.value_usd == 3e9
    assert card.flow_metric.value_usd == 2e8
    assert card.ethos_score == 0


async def test_chain_card_dropped_on_zero_metric(sources, seed_ethos):
    data = AggregatedData(records={
        DatasetSource.STABLECOIN_CHAINS: [StablecoinChainRecord(name="Base", stablecoin_mcap=4e9),
                                          StablecoinChainRecord(name="Empty", stablecoin_mcap=0)],
        DatasetSource.CHAIN_REVENUE: [ChainRevenueRecord(name="Base", total_24h=0),
                                      ChainRevenueRecord(name="Empty", total_24h=1e6)],
    })
    base = entity("Base", NormalizedCategory.CHAIN, 4e9, EntityKind.CHAIN)
    empty = entity("Empty", NormalizedCategory.CHAIN, 0, EntityKind.CHAIN)
    assert await pipeline.build_chain_card(base, data, sources.ethos) is None
    assert await pipeline.build_chain_card(empty, data, sources.ethos) is None


async def test_chain_cards(sources, seed_chains):
    cards = await pipeline.build_all_chain_cards(sources, 5e9)
    assert [c.name for c in cards] == ["Ethereum", "Tron", "Gnosis"]
    chains = by_name(cards)

    eth = chains["Ethereum"]
    assert eth.category == "chain"
    assert (eth.stock_metric.label, eth.stock_metric.value_usd) == ("Stablecoin MCAP", 150e9)
    assert (eth.flow_metric.label, eth.flow_metric.value_usd) == ("24h App Revenue", 4e6)
    assert eth.ethos_score == 2100
    assert eth.avatar_url == "https://cg.test/eth.png"

    tron = chains["Tron"]
    assert tron.ethos_score == 1300
    assert tron.ethos_rank == "Neutral"

    gnosis = chains["Gnosis"]
    assert gnosis.flow_metric.value_usd == 50_000
    assert gnosis.avatar_url == "https://icons.llama.fi/gnosis.jpg"
    assert gnosis.ethos_score == 0


async def test_chain_exclusions_and_identity_backfill(sources, seed_chains, coingecko_client):
    entities = await pipeline.fetch_filtered_chains(sources, 5e9)
    assert [e.name for e in entities] == ["Ethereum", "Tron", "Gnosis", "Solana"]

    handles = {e.name: e.handle for e in entities}
    assert handles["Tron"] == "trondao"
    assert handles["Gnosis"] == "gnosischain"
    assert handles["Solana"] == "solana"

    requested = {call.args[0] for call in coingecko_client.get_coin_by_id.call_args_list}
    assert requested == {"ethereum", "tron", "xdai", "solana"}
    assert seed_chains.calls(f"{LLAMA}/overview/fees/OKX") == 0


async def test_chain_revenue_uses_display_names(sources, seed_chains):
    await pipeline.build_all_chain_cards(sources, 5e9)
    assert seed_chains.calls(f"{LLAMA}/overview/fees/xDai") == 1
    assert seed_chains.calls(f"{LLAMA}/overview/fees/Gnosis") == 0


def test_required_datasets():
    entities = [entity("A", NormalizedCategory.PERPS, 1), entity("B", NormalizedCategory.STABLECOIN_APPS, 1)]
    assert pipeline.required_datasets(entities) == [
        DatasetSource.OPEN_INTEREST, DatasetSource.DERIVATIVES,
        DatasetSource.STABLECOINS, DatasetSource.REVENUE,
    ]


@pytest.mark.parametrize("name,slug", [("Ethereum", "ethereum"), ("Arbitrum Nova", "arbitrum-nova")])
def test_chain_slug(name, slug):
    assert pipeline.chain_slug(name) == slug


async def test_malformed_stablecoin_row_does_not_sink_chain_cards(sources, seed_chains):
    seed_chains.add("GET", f"{STABLES}/stablecoinchains", [
        {"name": "Ethereum", "totalCirculatingUSD": {"peggedUSD": 150e9}},
        {"name": "Tron", "totalCirculatingUSD": 12345},
    ])
    cards = await pipeline.build_all_chain_cards(sources, 5e9)
    assert [c.name for c in cards] == ["Ethereum"]
