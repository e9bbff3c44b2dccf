"""
Pydantic schemas for users (API)
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRead(BaseModel):
    """User as returned to clients; never carries the password hash"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    is_verified: bool
    created_at: datetime
    updated_at: Optional[datetime] = None


class UpdateProfileRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
