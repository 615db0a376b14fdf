"""
Pydantic schemas for registration request/response validation.
"""

from datetime import datetime
from pydantic import BaseModel, Field


class RegistrationCreate(BaseModel):
    user_id: int = Field(..., gt=0)
    event_id: int = Field(..., gt=0)


class RegistrationResponse(BaseModel):
    id: int
    user_id: int
    event_id: int
    registration_date: datetime

    model_config = {"from_attributes": True}


class UserRegistrationResponse(RegistrationResponse):
    event_title: str
