import hashlib
import hmac
from datetime import datetime
import logging
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from authcore.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


def compute_refresh_token_hash(refresh_token: str, secret_key: str) -> str:
    secret = secret_key.encode("utf-8")
    message = refresh_token.encode("utf-8")
    return hmac.new(secret, message, hashlib.sha256).hexdigest()


def get_active_refresh_token(session: Session, token_hash: str) -> Optional[RefreshToken]:
    """Look up a refresh token that has not been revoked; expiry is the caller's check"""
    statement = select(RefreshToken).where(
        RefreshToken.token_hash == token_hash,
        RefreshToken.is_revoked == False,  # noqa: E712
    )
    return session.exec(statement).first()


def store_refresh_token(
    session: Session,
    *,
    user_id: int,
    token_hash: str,
    expires_at: datetime,
    now: datetime,
) -> RefreshToken:
    record = RefreshToken(
        user_id=user_id,
        token_hash=token_hash,
        created_at=now,
        expires_at=expires_at,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def rotate_refresh_token(
    session: Session,
    record: RefreshToken,
    *,
    new_token_hash: str,
    expires_at: datetime,
    now: datetime,
) -> Optional[RefreshToken]:
    """
    Revoke ``record`` and persist its successor in one transaction.

    The revoke is a conditional update on ``is_revoked = false`` so only one
    of several concurrent rotations of the same token can win. Returns None
    for the losers.
    """
    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.id == record.id,
            RefreshToken.is_revoked == False,  # noqa: E712
        )
        .values(
            is_revoked=True,
            revoked_at=now,
            replaced_by_token_hash=new_token_hash,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        logger.warning("Refresh token %s was already rotated", record.id)
        return None

    successor = RefreshToken(
        user_id=record.user_id,
        token_hash=new_token_hash,
        created_at=now,
        expires_at=expires_at,
    )
    session.add(successor)
    session.commit()
    session.refresh(successor)
    return successor
