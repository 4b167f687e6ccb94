"""
Builds dashboard cards from live upstream data.

Protocols: registry -> TVL threshold -> exclusions -> category normalisation, then one
concurrent fetch of the datasets their categories need, then one concurrent card build
per entity (metrics + reputation).
Chains: registry + stablecoin mcap -> threshold -> exclusions -> CoinGecko identity
backfill -> per-chain revenue, then one concurrent card build per chain.

Nothing here raises on upstream failure: missing data degrades a card (or drops it,
for chains), never the whole batch.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from prometheus_client import Counter, Histogram

from app.core.clients import Sources
from app.core.logging_config import get_logger
from app.ingestion.sources.defillama import (
    DefiLlamaSource,
    filter_by_tvl,
    filter_chains_by_stablecoin_mcap,
    get_protocol_by_slug,
)
from app.ingestion.sources.ethos import EthosSource
from app.schemas.cards import Card, EnrichedEntity, EntityKind, MetricValue
from app.schemas.data import HistoryResponse
from app.schemas.defillama import ChainRevenueRecord, HistoryPoint, StablecoinChainRecord, UpstreamRecord
from app.services.categories import (
    DatasetSource,
    MetricSource,
    NormalizedCategory,
    get_metric_spec,
    normalize,
)
from app.services.matching import find_by_name, metric_value
from app.services.overrides import (
    default_chain_logo,
    is_excluded,
    resolve_display_name,
    resolve_handle,
    resolve_logo,
)
from app.services.reputation import rank_for_score, resolve_score
from app.services.timeseries import last_n_days, rolling_sum_points

logger = get_logger("aggregation")

CARDS_BUILT = Counter('cards_built_total', 'Cards produced per request', ['kind', 'outcome'])
CARD_BUILD_DURATION = Histogram('card_build_duration_seconds', 'Full card batch build time', ['kind'])

_PROTOCOL_DATASET_FETCHERS = {
    DatasetSource.OPEN_INTEREST: DefiLlamaSource.fetch_open_interest,
    DatasetSource.DERIVATIVES: DefiLlamaSource.fetch_derivatives,
    DatasetSource.DEXES: DefiLlamaSource.fetch_dexes,
    DatasetSource.REVENUE: DefiLlamaSource.fetch_revenue,
    DatasetSource.STABLECOINS: DefiLlamaSource.fetch_stablecoins,
}


@dataclass
class AggregatedData:
    """Typed records per dataset, as fetched for one request."""
    records: Dict[DatasetSource, List[UpstreamRecord]] = field(default_factory=dict)

    def get(self, dataset: DatasetSource) -> List[UpstreamRecord]:
        return self.records.get(dataset, [])


def chain_slug(name: str) -> str:
    return "-".join(name.lower().split())


def required_datasets(entities: Sequence[EnrichedEntity]) -> List[DatasetSource]:
    needed = []
    for entity in entities:
        spec = get_metric_spec(entity.category)
        for source in (spec.stock, spec.flow):
            if source.dataset in _PROTOCOL_DATASET_FETCHERS and source.dataset not in needed:
                needed.append(source.dataset)
    return needed


def resolve_metric(entity: EnrichedEntity, source: MetricSource, data: AggregatedData) -> Optional[float]:
    # Registry metrics are already on the entity.
    if source.dataset is DatasetSource.PROTOCOLS:
        return entity.size_metric
    record = find_by_name(data.get(source.dataset), entity.name)
    if record is None:
        logger.info("no_dataset_match", entity=entity.name, dataset=source.dataset.value)
        return None
    return metric_value(record, source.field)


# --- Protocols ---

async def fetch_filtered_protocols(sources: Sources, min_tvl: float) -> List[EnrichedEntity]:
    protocols = await sources.defillama.fetch_all_protocols()
    large = filter_by_tvl(protocols, min_tvl)

    entities = []
    for p in large:
        if is_excluded(p.name):
            logger.info("entity_excluded", name=p.name, kind="protocol")
            continue
        category = normalize(p.category)
        if category is None:
            continue
        entities.append(EnrichedEntity(
            name=p.name,
            slug=p.slug,
            kind=EntityKind.PROTOCOL,
            raw_category=p.category,
            category=category,
            size_metric=p.tvl or 0.0,
            logo=resolve_logo(p.name, p.logo),
            handle=resolve_handle(p.name, p.twitter),
            gecko_id=p.gecko_id,
        ))

    logger.info("protocols_filtered", registry=len(protocols), above_threshold=len(large),
                kept=len(entities), min_tvl=min_tvl)
    return entities


async def fetch_protocol_datasets(defillama: DefiLlamaSource,
                                  datasets: Sequence[DatasetSource]) -> AggregatedData:
    results = await asyncio.gather(
        *(_PROTOCOL_DATASET_FETCHERS[d](defillama) for d in datasets),
        return_exceptions=True,
    )
    data = AggregatedData()
    for dataset, result in zip(datasets, results):
        if isinstance(result, Exception):
            logger.error("dataset_fetch_failed", dataset=dataset.value, error=str(result))
            result = []
        data.records[dataset] = result
    return data


async def build_protocol_card(entity: EnrichedEntity, data: AggregatedData, ethos: EthosSource) -> Card:
    spec = get_metric_spec(entity.category)

    stock = resolve_metric(entity, spec.stock, data)
    if not stock:
        logger.warning("stock_metric_fallback", entity=entity.name, fallback="tvl")
        stock = entity.size_metric

    flow = resolve_metric(entity, spec.flow, data)
    if not flow:
        logger.warning("flow_metric_missing", entity=entity.name, dataset=spec.flow.dataset.value)
        flow = 0.0

    if not entity.handle:
        logger.warning("no_handle", entity=entity.name)
    score = await resolve_score(ethos, entity.handle)

    return Card(
        name=entity.name,
        slug=entity.slug,
        avatar_url=entity.logo,
        ethos_score=score,
        ethos_rank=rank_for_score(score),
        category=entity.category.value.lower(),
        stock_metric=MetricValue(label=spec.stock.label, value_usd=stock),
        flow_metric=MetricValue(label=spec.flow.label, value_usd=flow),
    )


async def build_all_protocol_cards(sources: Sources, min_tvl: float) -> List[Card]:
    start = time.perf_counter()
    entities = await fetch_filtered_protocols(sources, min_tvl)
    data = await fetch_protocol_datasets(sources.defillama, required_datasets(entities))

    results = await asyncio.gather(
        *(build_protocol_card(e, data, sources.ethos) for e in entities),
        return_exceptions=True,
    )
    cards = _collect("protocol", entities, results)

    CARD_BUILD_DURATION.labels(kind="protocol").observe(time.perf_counter() - start)
    logger.info("protocol_cards_built", built=len(cards), entities=len(entities))
    return cards


# --- Chains ---

async def fetch_filtered_chains(sources: Sources, min_mcap: float) -> List[EnrichedEntity]:
    chains, mcap_by_chain = await asyncio.gather(
        sources.defillama.fetch_all_chains(),
        sources.defillama.fetch_stablecoin_mcap_by_chain(),
    )
    pairs = filter_chains_by_stablecoin_mcap(chains, mcap_by_chain, min_mcap)

    kept = []
    for chain, mcap in pairs:
        if is_excluded(chain.name):
            logger.info("entity_excluded", name=chain.name, kind="chain")
            continue
        kept.append((chain, mcap))

    missing_identity = [c.gecko_id for c, _ in kept if c.gecko_id and not (c.twitter and c.logo)]
    metadata = await sources.coingecko.batch_metadata(missing_identity) if missing_identity else {}

    entities = []
    for chain, mcap in kept:
        meta = metadata.get(chain.gecko_id or "", {})
        logo = resolve_logo(chain.name, chain.logo or meta.get("logo")) or default_chain_logo(chain.name)
        entities.append(EnrichedEntity(
            name=chain.name,
            slug=chain_slug(chain.name),
            kind=EntityKind.CHAIN,
            raw_category="Chain",
            category=NormalizedCategory.CHAIN,
            size_metric=mcap,
            logo=logo,
            handle=resolve_handle(chain.name, chain.twitter or meta.get("handle")),
            gecko_id=chain.gecko_id,
        ))

    logger.info("chains_filtered", registry=len(chains), above_threshold=len(pairs),
                kept=len(entities), min_mcap=min_mcap)
    return entities


async def fetch_chain_datasets(defillama: DefiLlamaSource, entities: Sequence[EnrichedEntity]) -> AggregatedData:
    names = [e.name for e in entities]
    revenue = await defillama.fetch_chain_revenues([resolve_display_name(n) for n in names])
    data = AggregatedData()
    data.records[DatasetSource.STABLECOIN_CHAINS] = [
        StablecoinChainRecord(name=e.name, stablecoin_mcap=e.size_metric) for e in entities
    ]
    data.records[DatasetSource.CHAIN_REVENUE] = [
        ChainRevenueRecord(name=n, total_24h=revenue.get(resolve_display_name(n), 0.0)) for n in names
    ]
    return data


async def build_chain_card(entity: EnrichedEntity, data: AggregatedData, ethos: EthosSource) -> Optional[Card]:
    spec = get_metric_spec(NormalizedCategory.CHAIN)

    stock = resolve_metric(entity, spec.stock, data) or 0.0
    if stock == 0:
        logger.warning("chain_skipped", entity=entity.name, reason="zero_stablecoin_mcap")
        return None
    flow = resolve_metric(entity, spec.flow, data) or 0.0
    if flow == 0:
        logger.warning("chain_skipped", entity=entity.name, reason="zero_revenue")
        return None

    score = await resolve_score(ethos, entity.handle)
    return Card(
        name=entity.name,
        slug=entity.slug,
        avatar_url=entity.logo,
        ethos_score=score,
        ethos_rank=rank_for_score(score),
        category=NormalizedCategory.CHAIN.value.lower(),
        stock_metric=MetricValue(label=spec.stock.label, value_usd=stock),
        flow_metric=MetricValue(label=spec.flow.label, value_usd=flow),
    )


async def build_all_chain_cards(sources: Sources, min_mcap: float) -> List[Card]:
    start = time.perf_counter()
    entities = await fetch_filtered_chains(sources, min_mcap)
    data = await fetch_chain_datasets(sources.defillama, entities)

    results = await asyncio.gather(
        *(build_chain_card(e, data, sources.ethos) for e in entities),
        return_exceptions=True,
    )
    cards = _collect("chain", entities, results)

    CARD_BUILD_DURATION.labels(kind="chain").observe(time.perf_counter() - start)
    logger.info("chain_cards_built", built=len(cards), entities=len(entities))
    return cards


def _collect(kind: str, entities: Sequence[EnrichedEntity], results: Sequence) -> List[Card]:
    cards = []
    for entity, result in zip(entities, results):
        if isinstance(result, Exception):
            logger.error("card_build_failed", kind=kind, entity=entity.name, error=str(result))
            CARDS_BUILT.labels(kind=kind, outcome="error").inc()
        elif result is None:
            CARDS_BUILT.labels(kind=kind, outcome="skipped").inc()
        else:
            CARDS_BUILT.labels(kind=kind, outcome="built").inc()
            cards.append(result)
    return cards


# --- History ---

async def protocol_tvl_history(sources: Sources, slug: str, days: int = 30) -> Optional[List[HistoryPoint]]:
    """None when DefiLlama has no protocol under this slug."""
    if await sources.defillama.fetch_protocol(slug) is None:
        return None
    points = await sources.defillama.fetch_protocol_tvl_history(slug)
    return last_n_days(points, days)


async def protocol_history(sources: Sources, name: str, days: Optional[int] = None) -> Optional[HistoryResponse]:
    protocols = await sources.defillama.fetch_all_protocols()
    protocol = get_protocol_by_slug(protocols, name) or find_by_name(protocols, name)
    if protocol is None:
        return None

    stock, fees = await asyncio.gather(
        sources.defillama.fetch_protocol_tvl_history(protocol.slug),
        sources.defillama.fetch_protocol_fees_history(protocol.slug),
    )
    return HistoryResponse(
        name=protocol.name,
        kind=EntityKind.PROTOCOL.value,
        stock_label="TVL",
        flow_label="7d Fees",
        stock=last_n_days(stock, days),
        flow=last_n_days(rolling_sum_points(fees), days),
    )


async def chain_history(sources: Sources, name: str, days: Optional[int] = None) -> Optional[HistoryResponse]:
    chains = await sources.defillama.fetch_all_chains()
    chain = find_by_name(chains, name)
    if chain is None:
        return None

    display = resolve_display_name(chain.name)
    stock, fees = await asyncio.gather(
        sources.defillama.fetch_chain_stablecoin_history(chain.name),
        sources.defillama.fetch_chain_fees_history(display),
    )
    spec = get_metric_spec(NormalizedCategory.CHAIN)
    return HistoryResponse(
        name=chain.name,
        kind=EntityKind.CHAIN.value,
        stock_label=spec.stock.label,
        flow_label="7d App Revenue",
        stock=last_n_days(stock, days),
        flow=last_n_days(rolling_sum_points(fees), days),
    )
