"""
DefiLlama client: protocol and chain registries, category overviews, stablecoins,
per-chain revenue and historical series.
List endpoints never raise; on failure they log and return [] / {} so aggregation
can carry on with whatever else came back.
"""
import asyncio
import math
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, TypeVar
from urllib.parse import quote

from pydantic import BaseModel, ValidationError

from app.core.cache import TTLCache
from app.core.config import Settings, get_settings
from app.core.http import UpstreamClient
from app.core.logging_config import get_logger
from app.schemas.defillama import (
    ChainRecord,
    HistoryPoint,
    OverviewRecord,
    ProtocolRecord,
    StablecoinAsset,
)
from app.services.drift_detection import detect_drift

logger = get_logger("source_defillama")

M = TypeVar("M", bound=BaseModel)

_NO_CHARTS = {"excludeTotalDataChart": "true", "excludeTotalDataChartBreakdown": "true"}


def parse_records(rows: Any, model: Type[M], source_name: str) -> List[M]:
    """Validate upstream rows one by one; bad rows are logged and skipped."""
    if not isinstance(rows, list):
        logger.warning("unexpected_payload", source=source_name, type=type(rows).__name__)
        return []
    records = []
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            continue
        if i == 0:
            detect_drift(row, model, source_name)
        try:
            records.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning("conversion_error", source=source_name,
                           name=row.get("name", "unknown"), error=str(e))
    return records


def _overview_rows(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return payload.get("protocols") or []
    return []


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _pegged_usd(circulating: Any) -> Optional[float]:
    """{"peggedUSD": x} -> x; anything else is None."""
    if not isinstance(circulating, dict):
        return None
    return _number(circulating.get("peggedUSD"))


class DefiLlamaSource:
    def __init__(self, upstream: UpstreamClient, cache: TTLCache, settings: Optional[Settings] = None):
        self.upstream = upstream
        self.cache = cache
        self.settings = settings or get_settings()
        self.api = self.settings.DEFILLAMA_API_URL
        self.stables_api = self.settings.DEFILLAMA_STABLECOINS_URL

    async def _cached(self, key: str, load: Callable, ttl: Optional[float] = None):
        return await self.cache.get_or_compute(
            key, load, ttl or self.settings.REGISTRY_TTL_SECONDS,
            should_cache=lambda v: v is not None,
        )

    async def _fetch_list(self, key: str, url: str, model: Type[M],
                          extract: Callable[[Any], Any] = lambda p: p,
                          params: Optional[Dict[str, str]] = None) -> List[M]:
        async def load():
            payload = await self.upstream.get_json(url, params=params)
            if payload is None:
                return None
            records = parse_records(extract(payload), model, key)
            logger.info("fetched_records", source=key, count=len(records))
            return records

        records = await self._cached(key, load)
        return records if records is not None else []

    # --- Registries ---

    async def fetch_all_protocols(self) -> List[ProtocolRecord]:
        return await self._fetch_list("defillama-protocols", f"{self.api}/protocols", ProtocolRecord)

    async def fetch_protocol(self, slug: str) -> Optional[Dict[str, Any]]:
        async def load():
            payload = await self.upstream.get_json(f"{self.api}/protocol/{quote(slug)}")
            return payload if isinstance(payload, dict) else None

        return await self._cached(f"defillama-protocol-{slug.lower()}", load,
                                  self.settings.HISTORY_TTL_SECONDS)

    async def fetch_all_chains(self) -> List[ChainRecord]:
        return await self._fetch_list("defillama-chains", f"{self.api}/v2/chains", ChainRecord)

    # --- Category overviews ---

    async def fetch_open_interest(self) -> List[OverviewRecord]:
        """
        Options overview first; on failure the derivatives overview, returned as-is.
        """
        async def load():
            payload = await self.upstream.get_json(f"{self.api}/overview/options", params=_NO_CHARTS)
            source_name = "defillama-open-interest"
            if payload is None:
                logger.warning("open_interest_fallback", fallback="derivatives")
                payload = await self.upstream.get_json(f"{self.api}/overview/derivatives", params=_NO_CHARTS)
                source_name = "defillama-open-interest-derivatives"
                if payload is None:
                    return None
            records = parse_records(_overview_rows(payload), OverviewRecord, source_name)
            logger.info("fetched_records", source=source_name, count=len(records))
            return records

        records = await self._cached("defillama-open-interest", load)
        return records if records is not None else []

    async def fetch_derivatives(self) -> List[OverviewRecord]:
        return await self._fetch_list("defillama-derivatives", f"{self.api}/overview/derivatives",
                                      OverviewRecord, _overview_rows, _NO_CHARTS)

    async def fetch_dexes(self) -> List[OverviewRecord]:
        return await self._fetch_list("defillama-dexes", f"{self.api}/overview/dexs",
                                      OverviewRecord, _overview_rows, _NO_CHARTS)

    async def fetch_revenue(self) -> List[OverviewRecord]:
        return await self._fetch_list("defillama-revenue", f"{self.api}/overview/fees",
                                      OverviewRecord, _overview_rows, _NO_CHARTS)

    async def fetch_stablecoins(self) -> List[StablecoinAsset]:
        return await self._fetch_list(
            "defillama-stablecoins", f"{self.stables_api}/stablecoins", StablecoinAsset,
            lambda p: p.get("peggedAssets", []) if isinstance(p, dict) else p,
            {"includePrices": "true"},
        )

    # --- Chain-keyed datasets ---

    async def fetch_stablecoin_mcap_by_chain(self) -> Dict[str, float]:
        async def load():
            payload = await self.upstream.get_json(f"{self.stables_api}/stablecoinchains")
            if not isinstance(payload, list):
                return None
            mcaps = {}
            for row in payload:
                if not isinstance(row, dict) or not row.get("name"):
                    continue
                pegged = _pegged_usd(row.get("totalCirculatingUSD"))
                if pegged is None:
                    logger.warning("conversion_error", source="defillama-stablecoin-chains",
                                   name=row["name"], error="totalCirculatingUSD.peggedUSD is not a number")
                    continue
                if pegged:
                    mcaps[row["name"]] = pegged
            logger.info("fetched_records", source="defillama-stablecoin-chains", count=len(mcaps))
            return mcaps

        mcaps = await self._cached("defillama-stablecoin-mcap-by-chain", load)
        return mcaps if mcaps is not None else {}

    async def fetch_chain_revenue(self, chain_name: str) -> float:
        async def load():
            payload = await self.upstream.get_json(
                f"{self.api}/overview/fees/{quote(chain_name)}", params=_NO_CHARTS)
            if not isinstance(payload, dict):
                return None
            return _number(payload.get("total24h")) or 0.0

        revenue = await self._cached(f"defillama-chain-revenue-{chain_name.lower()}", load)
        return revenue if revenue is not None else 0.0

    async def fetch_chain_revenues(self, chain_names: Sequence[str]) -> Dict[str, float]:
        results = await asyncio.gather(*(self.fetch_chain_revenue(n) for n in chain_names))
        revenue_by_chain = dict(zip(chain_names, results))
        logger.info("fetched_chain_revenue", chains=len(revenue_by_chain))
        return revenue_by_chain

    # --- Historical series ---

    async def fetch_protocol_tvl_history(self, slug: str) -> List[HistoryPoint]:
        detail = await self.fetch_protocol(slug)
        if not detail:
            return []
        rows = detail.get("tvl")
        if not isinstance(rows, list):
            chain_tvls = detail.get("chainTvls")
            rows = chain_tvls.get("tvl") if isinstance(chain_tvls, dict) else None
        if not isinstance(rows, list):
            return []
        points = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            ts = _number(row.get("date"))
            if ts is None:
                continue
            value = _number(row.get("totalLiquidityUSD", row.get("tvl")))
            points.append(HistoryPoint(timestamp=int(ts), value=value or 0.0))
        return points

    async def fetch_protocol_fees_history(self, slug: str) -> List[HistoryPoint]:
        async def load():
            payload = await self.upstream.get_json(
                f"{self.api}/summary/fees/{quote(slug)}", params={"dataType": "dailyFees"})
            if not isinstance(payload, dict):
                return None
            return _chart_points(payload.get("totalDataChart"))

        points = await self._cached(f"defillama-fees-history-{slug.lower()}", load,
                                    self.settings.HISTORY_TTL_SECONDS)
        return points if points is not None else []

    async def fetch_chain_stablecoin_history(self, chain_name: str) -> List[HistoryPoint]:
        async def load():
            payload = await self.upstream.get_json(
                f"{self.stables_api}/stablecoincharts/{quote(chain_name)}")
            if not isinstance(payload, list):
                return None
            points = []
            for row in payload:
                if not isinstance(row, dict):
                    continue
                ts = _number(row.get("date", row.get("timestamp")))
                if ts is None:
                    continue
                value = _pegged_usd(row.get("totalCirculatingUSD") or row.get("totalCirculating"))
                points.append(HistoryPoint(timestamp=int(ts), value=value or 0.0))
            return points

        points = await self._cached(f"defillama-stablecoin-history-{chain_name.lower()}", load,
                                    self.settings.HISTORY_TTL_SECONDS)
        return points if points is not None else []

    async def fetch_chain_fees_history(self, chain_name: str) -> List[HistoryPoint]:
        async def load():
            payload = await self.upstream.get_json(f"{self.api}/overview/fees/{quote(chain_name)}")
            if not isinstance(payload, dict):
                return None
            return _chart_points(payload.get("totalDataChart"))

        points = await self._cached(f"defillama-chain-fees-history-{chain_name.lower()}", load,
                                    self.settings.HISTORY_TTL_SECONDS)
        return points if points is not None else []


def _chart_points(chart: Any) -> List[HistoryPoint]:
    if not isinstance(chart, list):
        return []
    points = []
    for pair in chart:
        if not (isinstance(pair, (list, tuple)) and len(pair) == 2):
            continue
        ts, value = _number(pair[0]), pair[1]
        if ts is not None and isinstance(value, (int, float)) and not isinstance(value, bool):
            points.append(HistoryPoint(timestamp=int(ts), value=float(value)))
    return points


# --- Registry helpers ---

def filter_by_tvl(protocols: Sequence[ProtocolRecord], min_tvl: float) -> List[ProtocolRecord]:
    return [p for p in protocols if (p.tvl or 0) >= min_tvl]


def get_protocol_by_slug(protocols: Sequence[ProtocolRecord], slug: str) -> Optional[ProtocolRecord]:
    slug = slug.lower()
    return next((p for p in protocols if p.slug.lower() == slug), None)


def group_by_category(protocols: Sequence[ProtocolRecord]) -> Dict[str, List[ProtocolRecord]]:
    groups: Dict[str, List[ProtocolRecord]] = {}
    for p in protocols:
        groups.setdefault(p.category or "Unknown", []).append(p)
    return groups


def filter_chains_by_stablecoin_mcap(chains: Sequence[ChainRecord], mcap_by_chain: Dict[str, float],
                                     min_mcap: float) -> List[tuple]:
    """Returns (chain, stablecoin_mcap) pairs at or above the threshold."""
    pairs = [(c, mcap_by_chain.get(c.name, 0.0)) for c in chains]
    return [(c, mcap) for c, mcap in pairs if mcap >= min_mcap]
