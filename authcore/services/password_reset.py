from datetime import datetime, timedelta
import logging
import math
from typing import Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from authcore.core.errors import ConflictError
from authcore.core.security import compute_token_hash, generate_token
from authcore.models.password_reset_rate_limit import PasswordResetRateLimit
from authcore.models.password_reset_token import PasswordResetToken
from authcore.models.user import User

logger = logging.getLogger(__name__)


class PasswordResetService:
    @staticmethod
    def create_reset_token(
        session: Session,
        user: User,
        *,
        now: datetime,
        expires_in: timedelta = timedelta(hours=1),
    ) -> Tuple[str, PasswordResetToken]:
        raw_token = generate_token()
        record = PasswordResetToken(
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
    def find_valid_token(session: Session, raw_token: str, *, now: datetime) -> Optional[PasswordResetToken]:
        """Expired rows are reported exactly like missing ones and left in place"""
        token_hash = compute_token_hash(raw_token)
        record = session.exec(
            select(PasswordResetToken).where(PasswordResetToken.token_hash == token_hash)
        ).first()
        if not record:
            return None
        # expires_at itself already counts as expired
        if record.expires_at <= now:
            return None
        return record

    @staticmethod
    def complete_reset(
        session: Session,
        record: PasswordResetToken,
        user: User,
        *,
        password_hash: str,
        now: datetime,
    ) -> bool:
        """
        Store the new hash and consume the token atomically.

        The token delete is keyed on its id, so a second concurrent reset with
        the same token deletes nothing and is rolled back.
        """
        result = session.execute(
            delete(PasswordResetToken)
            .where(PasswordResetToken.id == record.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            return False

        user.password_hash = password_hash
        user.updated_at = now
        session.add(user)
        session.commit()
        return True


def wait_minutes(next_allowed_attempt: datetime, now: datetime) -> int:
    """Whole minutes until the cooldown ends, rounded up"""
    remaining_ms = (next_allowed_attempt - now) / timedelta(milliseconds=1)
    return max(1, math.ceil(remaining_ms / 60000))


class PasswordResetRateLimiter:
    """
    Exponential backoff on reset requests per email.

    The n-th accepted request opens a cooldown of ``base * 2 ** (n - 1)``.
    The counter is never reset, so cooldowns keep growing over the lifetime
    of the address.
    """

    def __init__(self, session: Session, *, base_cooldown: timedelta = timedelta(minutes=15)):
        self.session = session
        self.base_cooldown = base_cooldown

    def cooldown_for(self, attempt_count: int) -> timedelta:
        return self.base_cooldown * (2 ** (attempt_count - 1))

    def get(self, email: str) -> Optional[PasswordResetRateLimit]:
        return self.session.exec(
            select(PasswordResetRateLimit).where(PasswordResetRateLimit.email == email)
        ).first()

    def register_attempt(self, email: str, *, now: datetime) -> PasswordResetRateLimit:
        """
        Record a reset request or raise ConflictError while the cooldown runs.

        Both the first insert and every increment are guarded at the store
        level (unique email, compare-and-swap on attempt_count), so two racing
        requests cannot both pass the same window.
        """
        record = self.get(email)
        if record is None:
            return self._insert_first_attempt(email, now=now)

        if now < record.next_allowed_attempt:
            self._raise_cooldown(record, now=now)

        observed = record.attempt_count
        attempt_count = observed + 1
        next_allowed_attempt = now + self.cooldown_for(attempt_count)
        result = self.session.execute(
            update(PasswordResetRateLimit)
            .where(
                PasswordResetRateLimit.email == email,
                PasswordResetRateLimit.attempt_count == observed,
            )
            .values(
                attempt_count=attempt_count,
                last_attempt=now,
                next_allowed_attempt=next_allowed_attempt,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            self._raise_lost_race(email, now=now)

        self.session.commit()
        self.session.refresh(record)
        logger.info("Password reset attempt %s recorded", attempt_count)
        return record

    def _insert_first_attempt(self, email: str, *, now: datetime) -> PasswordResetRateLimit:
        record = PasswordResetRateLimit(
            email=email,
            attempt_count=1,
            last_attempt=now,
            next_allowed_attempt=now + self.cooldown_for(1),
        )
        self.session.add(record)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            self._raise_lost_race(email, now=now)
        self.session.refresh(record)
        return record

    def _raise_lost_race(self, email: str, *, now: datetime) -> None:
        # Another request updated the row first; its window applies to us
        winner = self.get(email)
        if winner is None:
            raise ConflictError("Password reset request is already being processed")
        self._raise_cooldown(winner, now=now)

    def _raise_cooldown(self, record: PasswordResetRateLimit, *, now: datetime) -> None:
        minutes = wait_minutes(record.next_allowed_attempt, now)
        logger.warning("Password reset rate limited for %s more minute(s)", minutes)
        raise ConflictError(
            f"Please wait {minutes} minute{'s' if minutes != 1 else ''} before requesting another password reset",
            details={
                "retry_after_minutes": minutes,
                "next_allowed_attempt": record.next_allowed_attempt,
            },
        )
