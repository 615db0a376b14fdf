"""
Pydantic schemas for event-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    venue: Optional[str] = Field(None, max_length=255)
    schedule: Optional[datetime] = None
    code: Optional[str] = Field(None, max_length=64)
    max_slots: int = Field(..., ge=0, le=100000)
    registered_slots: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_slots(self):
        if self.registered_slots > self.max_slots:
            raise ValueError("registered_slots cannot exceed max_slots")
        return self


class EventUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    venue: Optional[str] = Field(None, max_length=255)
    schedule: Optional[datetime] = None
    code: Optional[str] = Field(None, max_length=64)
    max_slots: Optional[int] = Field(None, ge=0, le=100000)
    registered_slots: Optional[int] = Field(None, ge=0)


class EventResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    venue: Optional[str]
    schedule: Optional[datetime]
    code: Optional[str]
    max_slots: int
    registered_slots: int
    created_at: datetime

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
