"""
Typed shapes for the DefiLlama datasets the dashboard reads.
Each model declares a closed set of optional fields; anything else in the upstream
JSON is ignored. Metric lookups go through these declared names only.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class UpstreamRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    @property
    def match_name(self) -> str:
        return getattr(self, "display_name", None) or getattr(self, "name", None) or ""


class ProtocolRecord(UpstreamRecord):
    id: str = Field(..., description="DefiLlama protocol id")
    name: str
    slug: str
    category: Optional[str] = None
    tvl: Optional[float] = Field(None, description="Current TVL in USD")
    logo: Optional[str] = None
    twitter: Optional[str] = None
    gecko_id: Optional[str] = None
    chains: List[str] = Field(default_factory=list)
    mcap: Optional[float] = None

    @field_validator('id', mode='before')
    @classmethod
    def stringify_id(cls, v):
        return str(v)

    @field_validator('tvl', mode='before')
    @classmethod
    def tvl_number(cls, v):
        # /protocols occasionally carries non-numeric tvl for delisted entries
        return v if isinstance(v, (int, float)) else None


class ChainRecord(UpstreamRecord):
    name: str
    chain_id: Optional[int] = Field(None, alias="chainId")
    tvl: Optional[float] = None
    token_symbol: Optional[str] = Field(None, alias="tokenSymbol")
    gecko_id: Optional[str] = None
    cmc_id: Optional[str] = Field(None, alias="cmcId")
    logo: Optional[str] = None
    twitter: Optional[str] = None

    @field_validator('chain_id', mode='before')
    @classmethod
    def chain_id_number(cls, v):
        try:
            return int(v) if v is not None else None
        except (TypeError, ValueError):
            return None

    @field_validator('cmc_id', mode='before')
    @classmethod
    def stringify_cmc(cls, v):
        return None if v is None else str(v)


class OverviewRecord(UpstreamRecord):
    """Row of any /overview/* endpoint (derivatives, dexs, fees, options)."""
    name: str
    display_name: Optional[str] = Field(None, alias="displayName")
    slug: Optional[str] = None
    category: Optional[str] = None
    logo: Optional[str] = None
    disabled: Optional[bool] = None
    total_24h: Optional[float] = Field(None, alias="total24h")
    total_7d: Optional[float] = Field(None, alias="total7d")
    total_30d: Optional[float] = Field(None, alias="total30d")
    total_all_time: Optional[float] = Field(None, alias="totalAllTime")
    daily_open_interest: Optional[float] = Field(None, alias="dailyOpenInterest")
    total_open_interest: Optional[float] = Field(None, alias="totalOpenInterest")


class StablecoinAsset(UpstreamRecord):
    id: str
    name: str
    symbol: Optional[str] = None
    gecko_id: Optional[str] = None
    peg_type: Optional[str] = Field(None, alias="pegType")
    circulating: Dict[str, float] = Field(default_factory=dict)
    chains: List[str] = Field(default_factory=list)

    @field_validator('id', mode='before')
    @classmethod
    def stringify_id(cls, v):
        return str(v)

    @field_validator('circulating', mode='before')
    @classmethod
    def numeric_circulating(cls, v):
        if not isinstance(v, dict):
            return {}
        return {k: float(val) for k, val in v.items() if isinstance(val, (int, float))}

    @computed_field
    @property
    def total_circulating_usd(self) -> float:
        return sum(self.circulating.values())


class StablecoinChainRecord(UpstreamRecord):
    """A chain's stablecoin market cap, keyed by chain name."""
    name: str
    stablecoin_mcap: float = 0.0


class ChainRevenueRecord(UpstreamRecord):
    name: str
    total_24h: float = 0.0


class HistoryPoint(BaseModel):
    timestamp: int = Field(..., description="Unix seconds")
    value: float
