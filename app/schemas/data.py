from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Any, List, Generic, TypeVar
from datetime import datetime, timezone

from app.schemas.defillama import HistoryPoint
from app.schemas.ethos import ReviewDistribution

T = TypeVar('T')

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class ListResponse(BaseModel, Generic[T]):
    success: bool = True
    data: List[T]
    count: int
    timestamp: datetime = Field(default_factory=utc_now)

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str

class HistoryResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    name: str
    kind: str
    stock_label: str
    flow_label: str
    stock: List[HistoryPoint]
    flow: List[HistoryPoint]
    timestamp: datetime = Field(default_factory=utc_now)

class LazyReputationRequestItem(BaseModel):
    name: str
    handle: Optional[str] = None

class LazyReputationItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    handle: Optional[str] = None
    ethos_score: float = 0
    ethos_rank: Optional[str] = None
    review_distribution: ReviewDistribution = Field(default_factory=ReviewDistribution)

class DiagnosticsReport(BaseModel):
    checks: dict[str, Any]
    errors: List[dict] = Field(default_factory=list)
