"""
Defines the Card contract served to the dashboard and the enriched entity it is built from.
Cards are immutable once built and serialise with camelCase keys.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.schemas.ethos import ReviewDistribution
from app.services.categories import NormalizedCategory


class EntityKind(str, Enum):
    PROTOCOL = "protocol"
    CHAIN = "chain"


class EnrichedEntity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Canonical upstream name")
    slug: str
    kind: EntityKind
    raw_category: Optional[str] = None
    category: NormalizedCategory
    size_metric: float = Field(0, description="TVL for protocols, stablecoin MCap for chains")
    logo: Optional[str] = None
    handle: Optional[str] = None
    gecko_id: Optional[str] = None


class MetricValue(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    label: str
    value_usd: float = Field(..., description="USD, no unit conversion applied")


class Card(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    name: str
    slug: str
    avatar_url: Optional[str] = None
    ethos_score: float = 0
    ethos_rank: Optional[str] = None
    category: str = Field(..., description="Lowercased normalized category")
    stock_metric: MetricValue
    flow_metric: MetricValue
    review_distribution: Optional[ReviewDistribution] = None
