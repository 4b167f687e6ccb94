"""
Ethos reputation client.

Score:   handle -> user id (POST /users/by/x, batch of one) -> GET /score/userId
Reviews: handle -> userkey (GET /user/by/x/{handle}) -> POST /activities/profile/received
Every step returns None / an empty page on failure instead of raising.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

from pydantic import ValidationError

from app.core.config import Settings, get_settings
from app.core.http import UpstreamClient
from app.core.logging_config import get_logger
from app.schemas.ethos import (
    EthosActivity,
    EthosUser,
    ReputationRecord,
    Review,
    ReviewAuthor,
    ReviewPage,
    ReviewSentiment,
)

logger = get_logger("source_ethos")

_HEADERS = {"Accept": "*/*"}


def review_content(data: Dict[str, Any]) -> str:
    """metadata.description wins over the raw comment; unparseable metadata falls back to it."""
    content = data.get("comment") or ""
    metadata = data.get("metadata")
    if metadata:
        try:
            parsed = json.loads(metadata) if isinstance(metadata, str) else metadata
        except ValueError:
            return content
        if isinstance(parsed, dict) and parsed.get("description"):
            return str(parsed["description"])
    return content


def parse_review(raw: Dict[str, Any]) -> Optional[Review]:
    try:
        activity = EthosActivity.model_validate(raw)
    except ValidationError as e:
        logger.warning("conversion_error", source="ethos-activity", error=str(e))
        return None
    if activity.type != "review":
        return None
    data = activity.data
    if not (data.get("comment") or data.get("metadata")):
        return None

    author = activity.author
    timestamp = activity.timestamp
    review_id = data.get("id")
    return Review(
        id=str(review_id) if review_id is not None else f"{timestamp}-{author.get('profileId')}",
        created_at=datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
        content=review_content(data),
        review_score=ReviewSentiment.parse(data.get("score")),
        author=ReviewAuthor(
            id=author.get("profileId") or 0,
            display_name=author.get("name") or author.get("username"),
            username=author.get("username"),
            avatar_url=author.get("avatar"),
            score=author.get("score") or 0,
        ),
    )


class EthosSource:
    def __init__(self, upstream: UpstreamClient, settings: Optional[Settings] = None):
        self.upstream = upstream
        self.settings = settings or get_settings()
        self.api = self.settings.ETHOS_API_URL

    async def user_id_for_handle(self, handle: str) -> Optional[int]:
        data = await self.upstream.post_json(
            f"{self.api}/users/by/x", {"accountIdsOrUsernames": [handle]}, headers=_HEADERS)
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return data[0].get("id") or None
        return None

    async def score_by_user_id(self, user_id: int) -> Optional[ReputationRecord]:
        data = await self.upstream.get_json(
            f"{self.api}/score/userId", params={"userId": user_id}, headers=_HEADERS)
        if not isinstance(data, dict):
            return None
        try:
            return ReputationRecord(score=data.get("score") or 0, level=data.get("level") or "unknown")
        except ValidationError as e:
            logger.warning("conversion_error", source="ethos-score", user_id=user_id, error=str(e))
            return None

    async def score_for(self, handle: str) -> Optional[ReputationRecord]:
        user_id = await self.user_id_for_handle(handle)
        if not user_id:
            logger.warning("ethos_user_not_found", handle=handle)
            return None
        record = await self.score_by_user_id(user_id)
        if record:
            logger.info("ethos_score", handle=handle, user_id=user_id, score=record.score)
        return record

    async def user_by_handle(self, handle: str) -> Optional[EthosUser]:
        data = await self.upstream.get_json(f"{self.api}/user/by/x/{quote(handle)}", headers=_HEADERS)
        if not isinstance(data, dict):
            return None
        try:
            user = EthosUser.model_validate(data)
        except ValidationError as e:
            logger.warning("conversion_error", source="ethos-user", handle=handle, error=str(e))
            return None
        if not user.userkeys:
            logger.warning("ethos_no_userkeys", handle=handle)
            return None
        return user

    async def reviews_for(self, handle: str, limit: int = 100, offset: int = 0) -> ReviewPage:
        user = await self.user_by_handle(handle)
        if user is None:
            return ReviewPage()

        body = {
            "userkey": user.userkeys[0],
            "filter": ["review"],
            "limit": limit,
            "offset": offset,
            "excludeSpam": True,
        }
        data = await self.upstream.post_json(
            f"{self.api}/activities/profile/received", body, headers=_HEADERS)
        if not isinstance(data, dict):
            return ReviewPage()

        reviews = []
        for activity in data.get("values") or []:
            if not isinstance(activity, dict):
                continue
            review = parse_review(activity)
            if review is not None:
                reviews.append(review)

        logger.info("ethos_reviews", handle=handle, fetched=len(reviews), total=data.get("total"))
        return ReviewPage(reviews=reviews, total=data.get("total") or len(reviews))
