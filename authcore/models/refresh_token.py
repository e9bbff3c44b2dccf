from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from authcore.core.clock import utcnow


class RefreshToken(SQLModel, table=True):
    """
    Persisted refresh token. Rows are revoked on rotation, never reactivated,
    and only deleted by the expiry purge.
    """
    __tablename__ = "refresh_tokens"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    token_hash: str = Field(index=True, unique=True, max_length=128)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    expires_at: datetime = Field(index=True)
    is_revoked: bool = Field(default=False, index=True)
    revoked_at: Optional[datetime] = Field(default=None)
    replaced_by_token_hash: Optional[str] = Field(default=None, max_length=128)
