"""
Reputation shapes: Ethos users, score records, reviews and their sentiment counts.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReviewSentiment(str, Enum):
    POSITIVE = "POSITIVE"
    NEUTRAL = "NEUTRAL"
    NEGATIVE = "NEGATIVE"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ReviewSentiment":
        if not raw:
            return cls.NEUTRAL
        try:
            return cls(raw.upper())
        except ValueError:
            return cls.NEUTRAL


class ReputationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(0, ge=0)
    level: str = "unknown"

    @field_validator('score', mode='before')
    @classmethod
    def clamp_negative(cls, v):
        if isinstance(v, (int, float)) and v < 0:
            return 0
        return v


class EthosUser(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[int] = None
    profile_id: Optional[int] = Field(None, alias="profileId")
    userkeys: List[str] = Field(default_factory=list)
    username: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    avatar_url: Optional[str] = Field(None, alias="avatarUrl")
    score: float = 0


class EthosActivity(BaseModel):
    """One entry of /activities/profile/received; only reviews are read."""
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    timestamp: int = 0
    data: Dict[str, Any] = Field(default_factory=dict)
    author: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('data', 'author', mode='before')
    @classmethod
    def empty_when_null(cls, v):
        return v if isinstance(v, dict) else {}


class ReviewAuthor(BaseModel):
    id: int = 0
    display_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    score: float = 0


class Review(BaseModel):
    id: str
    created_at: str = Field(..., description="ISO-8601 UTC")
    content: str
    review_score: ReviewSentiment = ReviewSentiment.NEUTRAL
    author: ReviewAuthor = Field(default_factory=ReviewAuthor)


class ReviewPage(BaseModel):
    reviews: List[Review] = Field(default_factory=list)
    total: int = 0


class ReviewDistribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    negative: int = 0
    neutral: int = 0
    positive: int = 0

    @property
    def total(self) -> int:
        return self.negative + self.neutral + self.positive


class WeeklyReviewSummary(BaseModel):
    week_start: int
    week_end: int
    review_count: int
    sentiment: ReviewDistribution
    dominant_sentiment: ReviewSentiment
