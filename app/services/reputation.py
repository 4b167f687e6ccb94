"""
Reputation resolution on top of the Ethos client.

The bulk path (card building) asks for scores concurrently and renders failures as 0.
The lazy path walks a list of entities strictly one at a time, each request gated by
a token bucket so the upstream's published rate is never exceeded.
"""
from typing import List, Optional, Sequence, Tuple

from app.core.logging_config import get_logger
from app.core.rate_limiter import TokenBucket
from app.ingestion.sources.ethos import EthosSource
from app.schemas.data import LazyReputationItem, LazyReputationRequestItem
from app.schemas.ethos import ReviewDistribution
from app.services.timeseries import review_distribution

logger = get_logger("reputation")

# (lower bound inclusive, rank); upper bound is the next row's lower bound.
ETHOS_RANKS: List[Tuple[int, str]] = [
    (0, "Untrusted"),
    (800, "Questionable"),
    (1200, "Neutral"),
    (1400, "Known"),
    (1600, "Established"),
    (1800, "Reputable"),
    (2000, "Exemplary"),
    (2200, "Distinguished"),
    (2400, "Revered"),
    (2600, "Renowned"),
]


def rank_for_score(score: Optional[float]) -> str:
    score = max(0.0, score or 0.0)
    rank = ETHOS_RANKS[0][1]
    for lower, name in ETHOS_RANKS:
        if score >= lower:
            rank = name
        else:
            break
    return rank


async def resolve_score(ethos: EthosSource, handle: Optional[str]) -> float:
    if not handle:
        return 0.0
    try:
        record = await ethos.score_for(handle)
    except Exception as e:
        logger.error("reputation_lookup_failed", handle=handle, error=str(e))
        return 0.0
    return record.score if record else 0.0


async def resolve_distribution(ethos: EthosSource, handle: Optional[str],
                               limit: int = 1000) -> ReviewDistribution:
    if not handle:
        return ReviewDistribution()
    page = await ethos.reviews_for(handle, limit=limit)
    return review_distribution(page.reviews)


async def resolve_reputation_sequentially(
    ethos: EthosSource,
    items: Sequence[LazyReputationRequestItem],
    limiter: TokenBucket,
    review_limit: int = 1000,
) -> List[LazyReputationItem]:
    """
    Score and review distribution for each item, in input order. The score lookup and
    the review lookup each take a token first; items without a handle cost nothing.
    """
    results = []
    for item in items:
        if not item.handle:
            results.append(LazyReputationItem(name=item.name))
            continue

        try:
            await limiter.acquire()
            record = await ethos.score_for(item.handle)
            await limiter.acquire()
            distribution = await resolve_distribution(ethos, item.handle, review_limit)
        except Exception as e:
            logger.error("lazy_reputation_failed", name=item.name, handle=item.handle, error=str(e))
            results.append(LazyReputationItem(name=item.name, handle=item.handle,
                                              ethos_rank=rank_for_score(0)))
            continue

        score = record.score if record else 0.0
        results.append(LazyReputationItem(
            name=item.name,
            handle=item.handle,
            ethos_score=score,
            ethos_rank=rank_for_score(score),
            review_distribution=distribution,
        ))

    logger.info("lazy_reputation_resolved", requested=len(items),
                scored=sum(1 for r in results if r.ethos_score > 0))
    return results
