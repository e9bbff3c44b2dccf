from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field


class PasswordResetRateLimit(SQLModel, table=True):
    """Per-email reset request counter with its cooldown deadline"""
    __tablename__ = "password_reset_rate_limits"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True, max_length=255)
    attempt_count: int = Field(default=1, ge=1)
    last_attempt: datetime
    next_allowed_attempt: datetime
