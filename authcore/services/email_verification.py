from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlmodel import Session, select

from authcore.core.security import compute_token_hash, generate_token
from authcore.models.user import User
from authcore.models.verification_token import VerificationToken


class EmailVerificationService:
    @staticmethod
    def create_token(
        session: Session,
        user: User,
        *,
        now: datetime,
        expires_in: timedelta = timedelta(hours=24),
    ) -> Tuple[str, VerificationToken]:
        raw_token = generate_token()
        record = VerificationToken(
            user_id=user.id,
            token_hash=compute_token_hash(raw_token),
            created_at=now,
            expires_at=now + expires_in,
        )
        session.add(record)
        session.commit()
        session.refresh(record)
        return raw_token, record

    @staticmethod
    def find_token(session: Session, raw_token: str) -> Optional[VerificationToken]:
        token_hash = compute_token_hash(raw_token)
        return session.exec(
            select(VerificationToken).where(VerificationToken.token_hash == token_hash)
        ).first()

    @staticmethod
    def get_latest_token(session: Session, user_id: int) -> Optional[VerificationToken]:
        return session.exec(
            select(VerificationToken)
            .where(VerificationToken.user_id == user_id)
            .order_by(VerificationToken.created_at.desc(), VerificationToken.id.desc())
        ).first()

    @staticmethod
    def delete_token(session: Session, record: VerificationToken) -> None:
        session.delete(record)
        session.commit()

    @staticmethod
    def consume_token(session: Session, record: VerificationToken, user: User, *, now: datetime) -> User:
        """Mark the owner verified and drop the token in the same commit"""
        user.is_verified = True
        user.updated_at = now
        session.add(user)
        session.delete(record)
        session.commit()
        session.refresh(user)
        return user
