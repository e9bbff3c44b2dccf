from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from authcore.core.clock import utcnow


class VerificationToken(SQLModel, table=True):
    __tablename__ = "verification_tokens"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    token_hash: str = Field(index=True, unique=True, max_length=64)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    expires_at: datetime = Field(index=True)
