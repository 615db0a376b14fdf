"""
Shapes stored in and served from the cache store.

`SlotCacheEntry` and `StatusRecord` serialize with camelCase keys so the
JSON kept in Redis stays readable by every instance in the fleet.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

JobState = Literal["starting", "running", "completed", "failed"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlotCacheEntry(BaseModel):
    """Cached projection of an event's capacity: {available, total}."""

    available: int
    total: int

    @classmethod
    def from_counts(cls, max_slots: int, registered_slots: int) -> "SlotCacheEntry":
        return cls(available=max(max_slots - registered_slots, 0), total=max_slots)


class StatusRecord(BaseModel):
    """Progress/result of a population or reconciliation run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: JobState
    start_time: datetime = Field(default_factory=utcnow)
    completion_time: Optional[datetime] = None
    instance_id: Optional[str] = None
    total_events: int = 0
    completed_events: int = 0
    percent_complete: float = 0.0
    consistent: int = 0
    fixed: int = 0
    errors: int = 0
    unavailable: int = 0
    error: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


class ReinitializationAccepted(BaseModel):
    message: str
    instance_id: str


class CacheKeyValue(BaseModel):
    key: str
    value: Any
    ttl: Optional[int] = None


class CacheKeysResponse(BaseModel):
    count: int
    keys: list[CacheKeyValue]
