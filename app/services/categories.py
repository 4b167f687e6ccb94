"""
Maps DefiLlama category names onto the dashboard's fixed taxonomy and declares, per
category, which dataset and field supply the stock and flow metrics.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from app.core.logging_config import get_logger

logger = get_logger("categories")


class NormalizedCategory(str, Enum):
    PERPS = "Perps"
    DEX = "DEX"
    LENDING = "Lending"
    LIQUID_STAKING = "Liquid Staking"
    STABLECOIN_APPS = "Stablecoin Apps"
    RESTAKING = "Restaking"
    CHAIN = "Chain"
    CDP = "CDP"
    YIELD = "Yield"
    LIQUID_RESTAKING = "Liquid Restaking"


class DatasetSource(str, Enum):
    PROTOCOLS = "protocols"
    OPEN_INTEREST = "open-interest"
    DERIVATIVES = "derivatives"
    DEXES = "dexes"
    REVENUE = "revenue"
    STABLECOINS = "stablecoins"
    STABLECOIN_CHAINS = "stablecoin-chains"
    CHAIN_REVENUE = "chain-revenue"


class MetricSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    dataset: DatasetSource
    field: str


class CategoryMetricSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    stock: MetricSource
    flow: MetricSource


# Keys are matched case-sensitively, exactly as DefiLlama spells them.
CATEGORY_NORMALIZATION_MAP: Dict[str, NormalizedCategory] = {
    "Derivatives": NormalizedCategory.PERPS,
    "Perps": NormalizedCategory.PERPS,
    "Dexes": NormalizedCategory.DEX,
    "Dexs": NormalizedCategory.DEX,
    "DEX": NormalizedCategory.DEX,
    "Lending": NormalizedCategory.LENDING,
    "Liquid Staking": NormalizedCategory.LIQUID_STAKING,
    "Liquid Restaking": NormalizedCategory.LIQUID_RESTAKING,
    "Stablecoin": NormalizedCategory.STABLECOIN_APPS,
    "Stablecoins": NormalizedCategory.STABLECOIN_APPS,
    "Stablecoin Apps": NormalizedCategory.STABLECOIN_APPS,
    "Restaking": NormalizedCategory.RESTAKING,
    "CDP": NormalizedCategory.CDP,
    "Yield": NormalizedCategory.YIELD,
    "Chain": NormalizedCategory.CHAIN,
}

_TVL = MetricSource(label="TVL", dataset=DatasetSource.PROTOCOLS, field="tvl")
_REVENUE_24H = MetricSource(label="24h Revenue", dataset=DatasetSource.REVENUE, field="total_24h")


def _tvl_and_revenue() -> CategoryMetricSpec:
    return CategoryMetricSpec(stock=_TVL, flow=_REVENUE_24H)


CATEGORY_METRICS_MAP: Dict[NormalizedCategory, CategoryMetricSpec] = {
    NormalizedCategory.PERPS: CategoryMetricSpec(
        stock=MetricSource(label="24h Open Interest", dataset=DatasetSource.OPEN_INTEREST,
                           field="daily_open_interest"),
        flow=MetricSource(label="24h Volume", dataset=DatasetSource.DERIVATIVES, field="total_24h"),
    ),
    NormalizedCategory.DEX: CategoryMetricSpec(
        stock=_TVL,
        flow=MetricSource(label="24h Trading Volume", dataset=DatasetSource.DEXES, field="total_24h"),
    ),
    NormalizedCategory.LENDING: _tvl_and_revenue(),
    NormalizedCategory.LIQUID_STAKING: _tvl_and_revenue(),
    NormalizedCategory.STABLECOIN_APPS: CategoryMetricSpec(
        stock=MetricSource(label="Stablecoin MCap", dataset=DatasetSource.STABLECOINS,
                           field="total_circulating_usd"),
        flow=_REVENUE_24H,
    ),
    NormalizedCategory.RESTAKING: _tvl_and_revenue(),
    NormalizedCategory.CHAIN: CategoryMetricSpec(
        stock=MetricSource(label="Stablecoin MCAP", dataset=DatasetSource.STABLECOIN_CHAINS,
                           field="stablecoin_mcap"),
        flow=MetricSource(label="24h App Revenue", dataset=DatasetSource.CHAIN_REVENUE, field="total_24h"),
    ),
    NormalizedCategory.CDP: _tvl_and_revenue(),
    NormalizedCategory.YIELD: _tvl_and_revenue(),
    NormalizedCategory.LIQUID_RESTAKING: _tvl_and_revenue(),
}


def normalize(raw_category: Optional[str]) -> Optional[NormalizedCategory]:
    """Normalize a DefiLlama category name; None means the entity is dropped."""
    normalized = CATEGORY_NORMALIZATION_MAP.get(raw_category) if raw_category else None
    if normalized is None:
        logger.warning("unknown_category", category=raw_category)
    return normalized


def is_supported_category(raw_category: str) -> bool:
    return raw_category in CATEGORY_NORMALIZATION_MAP


def get_metric_spec(category: NormalizedCategory) -> CategoryMetricSpec:
    return CATEGORY_METRICS_MAP[category]


def supported_categories() -> List[NormalizedCategory]:
    return list(CATEGORY_METRICS_MAP.keys())
