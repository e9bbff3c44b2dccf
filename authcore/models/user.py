from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from authcore.core.clock import utcnow


class User(SQLModel, table=True):
    """Account record owned by the credential store"""
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True, max_length=255)
    name: str = Field(max_length=100)
    password_hash: str = Field(max_length=255)
    is_verified: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = Field(default=None)
