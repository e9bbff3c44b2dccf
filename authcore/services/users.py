"""
Credential store access
"""
from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from authcore.core.errors import ConflictError
from authcore.models.user import User

logger = logging.getLogger(__name__)


class UserService:
    """Reads and writes on the users table"""

    @staticmethod
    def get_user(session: Session, user_id: int) -> Optional[User]:
        return session.get(User, user_id)

    @staticmethod
    def get_user_by_email(session: Session, email: str) -> Optional[User]:
        # Emails are matched exactly as stored
        return session.exec(select(User).where(User.email == email)).first()

    @staticmethod
    def create_user(
        session: Session,
        *,
        email: str,
        name: str,
        password_hash: str,
        now: datetime,
    ) -> User:
        """
        Insert an unverified user.

        The unique index on email is the final arbiter when two signups
        race past the existence check; the loser gets a ConflictError.
        """
        db_user = User(
            email=email,
            name=name,
            password_hash=password_hash,
            is_verified=False,
            created_at=now,
        )
        session.add(db_user)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("Email already exists")
        session.refresh(db_user)
        logger.info("User %s created", db_user.id)
        return db_user

    @staticmethod
    def set_password_hash(session: Session, user: User, password_hash: str, *, now: datetime) -> User:
        user.password_hash = password_hash
        user.updated_at = now
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    @staticmethod
    def update_profile(session: Session, user: User, *, name: str, now: datetime) -> User:
        user.name = name
        user.updated_at = now
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
