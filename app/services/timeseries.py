"""
Series helpers for the profile charts: trailing rolling sums, window filtering and
weekly review aggregation.
"""
import math
import time
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from app.schemas.defillama import HistoryPoint
from app.schemas.ethos import Review, ReviewDistribution, ReviewSentiment, WeeklyReviewSummary

DAY_SECONDS = 24 * 60 * 60
WEEK_SECONDS = 7 * DAY_SECONDS


def rolling_sum(values: Sequence[float], window: int = 7) -> List[float]:
    """
    out[i] = sum(values[max(0, i - window + 1) .. i]). Same length as the input;
    the first window-1 points are partial sums.
    """
    if window < 1:
        raise ValueError("window must be >= 1")
    return [math.fsum(values[max(0, i - window + 1):i + 1]) for i in range(len(values))]


def rolling_sum_points(points: Sequence[HistoryPoint], window: int = 7) -> List[HistoryPoint]:
    ordered = sorted(points, key=lambda p: p.timestamp)
    sums = rolling_sum([p.value for p in ordered], window)
    return [HistoryPoint(timestamp=p.timestamp, value=s) for p, s in zip(ordered, sums)]


def last_n_days(points: Sequence[HistoryPoint], days: Optional[int],
                now: Optional[float] = None) -> List[HistoryPoint]:
    ordered = sorted(points, key=lambda p: p.timestamp)
    if not days:
        return ordered
    cutoff = (now if now is not None else time.time()) - days * DAY_SECONDS
    return [p for p in ordered if p.timestamp >= cutoff]


def review_distribution(reviews: Sequence[Review]) -> ReviewDistribution:
    counts = {s: 0 for s in ReviewSentiment}
    for review in reviews:
        counts[review.review_score] += 1
    return ReviewDistribution(
        negative=counts[ReviewSentiment.NEGATIVE],
        neutral=counts[ReviewSentiment.NEUTRAL],
        positive=counts[ReviewSentiment.POSITIVE],
    )


def dominant_sentiment(dist: ReviewDistribution) -> ReviewSentiment:
    if dist.positive >= dist.neutral and dist.positive >= dist.negative:
        return ReviewSentiment.POSITIVE
    if dist.negative > dist.neutral and dist.negative > dist.positive:
        return ReviewSentiment.NEGATIVE
    return ReviewSentiment.NEUTRAL


def aggregate_reviews_by_week(reviews: Sequence[Review]) -> List[WeeklyReviewSummary]:
    buckets: Dict[int, List[Review]] = {}
    for review in reviews:
        ts = datetime.fromisoformat(review.created_at.replace("Z", "+00:00")).timestamp()
        week_start = int(ts // WEEK_SECONDS) * WEEK_SECONDS
        buckets.setdefault(week_start, []).append(review)

    summaries = []
    for week_start in sorted(buckets):
        dist = review_distribution(buckets[week_start])
        summaries.append(WeeklyReviewSummary(
            week_start=week_start,
            week_end=week_start + WEEK_SECONDS,
            review_count=dist.total,
            sentiment=dist,
            dominant_sentiment=dominant_sentiment(dist),
        ))
    return summaries
