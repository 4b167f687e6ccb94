"""
Handles API requests for protocol and chain cards, history series and reputation.
Serves as the gateway for the frontend dashboard; every route rebuilds its data from
live upstream calls behind the shared TTL cache.
"""
import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.core.clients import Sources, get_sources
from app.core.config import get_settings
from app.core.logging_config import get_logger
from app.ingestion import pipeline
from app.schemas.cards import Card, EntityKind
from app.schemas.data import (
    DiagnosticsReport,
    ErrorResponse,
    HistoryResponse,
    LazyReputationItem,
    LazyReputationRequestItem,
    ListResponse,
)
from app.schemas.defillama import HistoryPoint
from app.schemas.ethos import ReviewPage, WeeklyReviewSummary
from app.services.matching import find_by_name, metric_value
from app.services.reputation import resolve_reputation_sequentially, resolve_score
from app.services.timeseries import aggregate_reviews_by_week

router = APIRouter()
logger = get_logger("api")
settings = get_settings()


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code,
                        content=ErrorResponse(error=error, message=message).model_dump())


@router.get("/protocols", response_model=ListResponse[Card])
async def get_protocols(
    min_tvl: Optional[float] = Query(None, alias="minTVL", ge=0),
    sources: Sources = Depends(get_sources),
):
    threshold = settings.MIN_PROTOCOL_TVL if min_tvl is None else min_tvl
    try:
        cards = await pipeline.build_all_protocol_cards(sources, threshold)
    except Exception as e:
        logger.error("protocols_failed", error=str(e))
        return error_response(500, "Failed to fetch protocols", str(e))
    return ListResponse[Card](data=cards, count=len(cards))


@router.get("/chains", response_model=ListResponse[Card])
async def get_chains(
    min_mcap: Optional[float] = Query(None, alias="minMCap", ge=0),
    sources: Sources = Depends(get_sources),
):
    threshold = settings.MIN_CHAIN_STABLECOIN_MCAP if min_mcap is None else min_mcap
    try:
        cards = await pipeline.build_all_chain_cards(sources, threshold)
    except Exception as e:
        logger.error("chains_failed", error=str(e))
        return error_response(500, "Failed to fetch chains", str(e))
    return ListResponse[Card](data=cards, count=len(cards))


@router.get("/protocol/history", response_model=ListResponse[HistoryPoint])
async def get_protocol_history(
    slug: Optional[str] = None,
    metric: str = "tvl",
    days: int = Query(30, ge=1, le=3650),
    sources: Sources = Depends(get_sources),
):
    """Sparkline series for a protocol card. Only TVL is served."""
    if not slug:
        return error_response(400, "Missing slug", "Query parameter 'slug' is required")
    if metric != "tvl":
        return error_response(400, "Unsupported metric", f"Metric '{metric}' is not available")

    points = await pipeline.protocol_tvl_history(sources, slug, days)
    if points is None:
        return error_response(404, "Protocol not found", f"No protocol with slug '{slug}'")
    return ListResponse[HistoryPoint](data=points, count=len(points))


@router.get("/profile/{name}/history", response_model=HistoryResponse)
async def get_profile_history(
    name: str,
    kind: EntityKind = EntityKind.PROTOCOL,
    days: Optional[int] = Query(None, ge=1, le=3650),
    sources: Sources = Depends(get_sources),
):
    if kind is EntityKind.CHAIN:
        history = await pipeline.chain_history(sources, name, days)
    else:
        history = await pipeline.protocol_history(sources, name, days)
    if history is None:
        return error_response(404, f"{kind.value.capitalize()} not found", f"No {kind.value} named '{name}'")
    return history


@router.get("/profile/{handle}/reviews", response_model=ReviewPage)
async def get_reviews(
    handle: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    sources: Sources = Depends(get_sources),
):
    return await sources.ethos.reviews_for(handle, limit=limit, offset=offset)


@router.get("/profile/{handle}/reviews/weekly", response_model=ListResponse[WeeklyReviewSummary])
async def get_weekly_reviews(handle: str, sources: Sources = Depends(get_sources)):
    page = await sources.ethos.reviews_for(handle, limit=settings.REVIEW_PAGE_SIZE)
    weeks = aggregate_reviews_by_week(page.reviews)
    return ListResponse[WeeklyReviewSummary](data=weeks, count=len(weeks))


@router.post("/reputation/lazy", response_model=ListResponse[LazyReputationItem])
async def lazy_reputation(items: List[LazyReputationRequestItem], sources: Sources = Depends(get_sources)):
    """
    Scores and review distributions for entities the client has scrolled to.
    Resolved one entity at a time under the Ethos rate limit.
    """
    results = await resolve_reputation_sequentially(
        sources.ethos, items, sources.ethos_limiter, review_limit=settings.REVIEW_PAGE_SIZE)
    return ListResponse[LazyReputationItem](data=results, count=len(results))


@router.get("/debug/chains")
async def debug_chains(
    min_mcap: float = Query(5_000_000, alias="minMCap", ge=0),
    sources: Sources = Depends(get_sources),
):
    """Handle and Ethos score coverage for chains above the threshold."""
    chains = await pipeline.fetch_filtered_chains(sources, min_mcap)
    scores = await asyncio.gather(*(resolve_score(sources.ethos, c.handle) for c in chains))

    rows = sorted(
        ({"name": c.name, "handle": c.handle, "ethosScore": s, "stablecoinMCap": c.size_metric}
         for c, s in zip(chains, scores)),
        key=lambda r: r["stablecoinMCap"], reverse=True,
    )
    with_handle = [r for r in rows if r["handle"]]
    with_score = [r for r in rows if r["ethosScore"] > 0]
    total = len(rows) or 1

    return {
        "summary": {
            "totalChains": len(rows),
            "chainsWithHandle": len(with_handle),
            "chainsWithEthosScore": len(with_score),
            "handleCoverage": f"{len(with_handle) / total * 100:.1f}%",
            "ethosCoverage": f"{len(with_score) / total * 100:.1f}%",
        },
        "chainsWithoutHandle": [r["name"] for r in rows if not r["handle"]],
        "chainsWithHandleButNoScore": [
            {"name": r["name"], "handle": r["handle"]} for r in with_handle if r["ethosScore"] <= 0
        ],
        "allChains": rows,
    }


@router.get("/diagnostics/apis", response_model=DiagnosticsReport)
async def diagnostics(sources: Sources = Depends(get_sources)):
    """Upstream reachability, plus Hyperliquid's own numbers next to DefiLlama's."""
    derivatives, ethos_user, hl_oi, hl_volume = await asyncio.gather(
        sources.defillama.fetch_derivatives(),
        sources.ethos.user_id_for_handle("ethos_network"),
        sources.hyperliquid.total_open_interest_usd(),
        sources.hyperliquid.total_volume_24h_usd(),
    )

    errors = []
    if not derivatives:
        errors.append({"api": "defillama", "error": "derivatives overview unavailable"})
    if ethos_user is None:
        errors.append({"api": "ethos", "error": "user lookup failed"})
    if hl_oi is None:
        errors.append({"api": "hyperliquid", "error": "metaAndAssetCtxs unavailable"})

    hl_row = find_by_name(derivatives, "Hyperliquid")
    checks = {
        "defillama": {"reachable": bool(derivatives), "protocolCount": len(derivatives)},
        "ethos": {"reachable": ethos_user is not None},
        "hyperliquid": {
            "reachable": hl_oi is not None,
            "openInterestUsd": hl_oi,
            "volume24hUsd": hl_volume,
            "defillamaVolume24hUsd": metric_value(hl_row, "total_24h"),
            "defillamaOpenInterestUsd": metric_value(hl_row, "daily_open_interest"),
        },
    }
    return DiagnosticsReport(checks=checks, errors=errors)
