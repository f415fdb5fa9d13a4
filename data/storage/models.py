"""
Storage-side models and the collaborator protocols for both cache tiers
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, field_validator

from analysis.models import SuperTokenScore
from utils.helpers import ensure_utc, utc_now


class CacheEntry(BaseModel):
    """One persisted analysis, keyed by token address"""
    model_config = ConfigDict(frozen=True)

    token_address: str
    analyzed_at: datetime
    payload: SuperTokenScore

    @field_validator('analyzed_at')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @classmethod
    def from_score(cls, score: SuperTokenScore) -> "CacheEntry":
        return cls(token_address=score.token_address, analyzed_at=score.analyzed_at, payload=score)

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utc_now()) - self.analyzed_at

    def is_stale(self, ttl_seconds: float, now: Optional[datetime] = None) -> bool:
        return self.age(now).total_seconds() >= ttl_seconds


@runtime_checkable
class FastCache(Protocol):
    """Short-lived key/value tier (Redis in production)"""

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def set_json(self, key: str, value: Dict[str, Any], ttl: int) -> None: ...


@runtime_checkable
class DurableStore(Protocol):
    """Long-lived analysis store (PostgreSQL in production)"""

    async def get_analysis(self, token_address: str) -> Optional[CacheEntry]: ...

    async def save_analysis(self, entry: CacheEntry) -> None: ...
