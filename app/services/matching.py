"""
Name matching across differently keyed DefiLlama datasets, and typed metric access.

find_by_name tries three tiers and stops at the first hit:
    1. exact, case-insensitive, trimmed
    2. exact after stripping a trailing version suffix (" V3", " 2")
    3. substring containment in either direction
"""
import re
from typing import Iterable, Optional, Sequence, TypeVar

from pydantic import BaseModel

from app.core.logging_config import get_logger

logger = get_logger("matching")

R = TypeVar("R", bound=BaseModel)

_VERSION_SUFFIX = re.compile(r"\s+v\d+$", re.IGNORECASE)
_TRAILING_NUMBER = re.compile(r"\s+\d+$")


def normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def strip_version(name: str) -> str:
    return _TRAILING_NUMBER.sub("", _VERSION_SUFFIX.sub("", name))


def _record_name(record) -> str:
    return normalize_name(getattr(record, "match_name", None) or getattr(record, "name", None))


def find_by_name(records: Sequence[R], name: str) -> Optional[R]:
    query = normalize_name(name)
    if not query:
        return None
    candidates = [(r, _record_name(r)) for r in records]
    candidates = [(r, n) for r, n in candidates if n]

    for record, record_name in candidates:
        if record_name == query:
            return record

    stripped_query = strip_version(query)
    for record, record_name in candidates:
        if strip_version(record_name) == stripped_query:
            return record

    for record, record_name in candidates:
        if query in record_name or record_name in query:
            return record

    return None


def declared_fields(record: BaseModel) -> Iterable[str]:
    cls = type(record)
    return list(cls.model_fields) + list(cls.model_computed_fields)


def metric_value(record: Optional[BaseModel], field: str) -> Optional[float]:
    """
    Read a numeric metric from a typed record. Fields the record's schema does not
    declare are logged and treated as missing rather than silently read as absent.
    """
    if record is None:
        return None
    if field not in declared_fields(record):
        logger.warning("unknown_metric_field", schema=type(record).__name__, field=field)
        return None
    value = getattr(record, field)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)
