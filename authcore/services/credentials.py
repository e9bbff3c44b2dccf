"""
Credential and session lifecycle.

CredentialService orchestrates signup, login, token refresh, password
reset/change and email verification on top of the user store and the
three token ledgers. It keeps no state between calls; the signing key,
mailer and clock are injected by the caller.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Optional, Protocol

from sqlmodel import Session

from authcore.core.clock import Clock, SystemClock
from authcore.core.config import Settings
from authcore.core.errors import ConflictError, NotFoundError, UnauthorizedError
from authcore.core.security import (
    create_access_token,
    decode_access_token,
    dummy_password_hash,
    generate_token,
    get_password_hash,
    verify_password,
)
from authcore.models.user import User
from authcore.services import refresh_tokens
from authcore.services.email_service import Notification, NotificationError
from authcore.services.email_verification import EmailVerificationService
from authcore.services.password_reset import PasswordResetRateLimiter, PasswordResetService
from authcore.services.users import UserService

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"


class Mailer(Protocol):
    def send(self, notification: Notification) -> None: ...


@dataclass
class AuthResult:
    user: User
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


class CredentialService:
    def __init__(
        self,
        session: Session,
        *,
        settings: Settings,
        mailer: Mailer,
        clock: Optional[Clock] = None,
    ):
        self.session = session
        self.settings = settings
        self.mailer = mailer
        self.clock = clock or SystemClock()

    # Token issuance

    def _issue_access_token(self, user: User, now: datetime) -> str:
        return create_access_token(
            str(user.id),
            secret_key=self.settings.secret_key,
            expires_delta=timedelta(minutes=self.settings.access_token_expire_minutes),
            now=now,
            algorithm=self.settings.jwt_algorithm,
        )

    def _refresh_token_expiry(self, now: datetime) -> datetime:
        return now + timedelta(days=self.settings.refresh_token_expire_days)

    def _issue_tokens(self, user: User) -> AuthResult:
        now = self.clock.now()
        raw_refresh = generate_token()
        refresh_tokens.store_refresh_token(
            self.session,
            user_id=user.id,
            token_hash=refresh_tokens.compute_refresh_token_hash(raw_refresh, self.settings.secret_key),
            expires_at=self._refresh_token_expiry(now),
            now=now,
        )
        return AuthResult(
            user=user,
            access_token=self._issue_access_token(user, now),
            refresh_token=raw_refresh,
            expires_in=self.settings.access_token_expire_minutes * 60,
        )

    def _hash_password(self, password: str) -> str:
        return get_password_hash(password, rounds=self.settings.bcrypt_rounds)

    # Signup / login / refresh

    def signup(self, email: str, password: str, name: str) -> AuthResult:
        if UserService.get_user_by_email(self.session, email):
            logger.warning("Signup rejected, email already registered")
            raise ConflictError("Email already exists")

        user = UserService.create_user(
            self.session,
            email=email,
            name=name,
            password_hash=self._hash_password(password),
            now=self.clock.now(),
        )
        result = self._issue_tokens(user)

        # The account is usable right away; a lost verification mail can be resent
        try:
            self._send_verification_email(user)
        except NotificationError:
            logger.warning("Verification email for user %s could not be sent", user.id)

        return result

    def login(self, email: str, password: str) -> AuthResult:
        user = UserService.get_user_by_email(self.session, email)
        if user is None:
            # Same bcrypt cost as a real mismatch
            verify_password(password, dummy_password_hash(self.settings.bcrypt_rounds))
            logger.warning("Login failed")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not verify_password(password, user.password_hash):
            logger.warning("Login failed")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        logger.info("User %s logged in", user.id)
        return self._issue_tokens(user)

    def refresh(self, refresh_token: str) -> AuthResult:
        now = self.clock.now()
        token_hash = refresh_tokens.compute_refresh_token_hash(refresh_token, self.settings.secret_key)
        record = refresh_tokens.get_active_refresh_token(self.session, token_hash)
        # A token is dead from its expires_at instant onward
        if record is None or record.expires_at <= now:
            logger.warning("Refresh rejected, token unknown, revoked or expired")
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        user = UserService.get_user(self.session, record.user_id)
        if user is None:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        raw_refresh = generate_token()
        successor = refresh_tokens.rotate_refresh_token(
            self.session,
            record,
            new_token_hash=refresh_tokens.compute_refresh_token_hash(raw_refresh, self.settings.secret_key),
            expires_at=self._refresh_token_expiry(now),
            now=now,
        )
        if successor is None:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        self.session.refresh(user)
        logger.info("Refresh token rotated for user %s", user.id)
        return AuthResult(
            user=user,
            access_token=self._issue_access_token(user, now),
            refresh_token=raw_refresh,
            expires_in=self.settings.access_token_expire_minutes * 60,
        )

    def authenticate_access_token(self, access_token: str) -> User:
        """Resolve the user behind a signed access token"""
        payload = decode_access_token(
            access_token,
            secret_key=self.settings.secret_key,
            now=self.clock.now(),
            algorithm=self.settings.jwt_algorithm,
        )
        if payload is None:
            raise UnauthorizedError("Could not validate credentials")

        try:
            user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            raise UnauthorizedError("Could not validate credentials")

        user = UserService.get_user(self.session, user_id)
        if user is None:
            raise UnauthorizedError("Could not validate credentials")
        return user

    # Password reset

    def request_password_reset(self, email: str) -> dict:
        user = UserService.get_user_by_email(self.session, email)
        if user is None:
            raise NotFoundError("User not found")

        now = self.clock.now()
        limiter = PasswordResetRateLimiter(
            self.session,
            base_cooldown=timedelta(minutes=self.settings.password_reset_base_cooldown_minutes),
        )
        limiter.register_attempt(email, now=now)

        expires_in_minutes = self.settings.password_reset_token_expire_minutes
        raw_token, _ = PasswordResetService.create_reset_token(
            self.session,
            user,
            now=now,
            expires_in=timedelta(minutes=expires_in_minutes),
        )
        self.mailer.send(
            Notification(
                to=user.email,
                subject="Reset your password",
                template="password_reset",
                context={
                    "name": user.name,
                    "reset_url": f"{self.settings.frontend_url}/reset-password?token={raw_token}",
                    "expires_in_minutes": expires_in_minutes,
                },
            )
        )
        logger.info("Password reset requested for user %s", user.id)
        return {"message": "Password reset instructions have been sent to your email"}

    def reset_password(self, token: str, new_password: str) -> dict:
        now = self.clock.now()
        record = PasswordResetService.find_valid_token(self.session, token, now=now)
        if record is None:
            raise UnauthorizedError("Invalid or expired reset token")

        user = UserService.get_user(self.session, record.user_id)
        if user is None:
            raise NotFoundError("User not found")

        consumed = PasswordResetService.complete_reset(
            self.session,
            record,
            user,
            password_hash=self._hash_password(new_password),
            now=now,
        )
        if not consumed:
            raise UnauthorizedError("Invalid or expired reset token")

        logger.info("Password reset completed for user %s", user.id)
        return {"message": "Password has been reset successfully"}

    # Password change

    def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        origin_ip: Optional[str] = None,
    ) -> dict:
        user = UserService.get_user(self.session, user_id)
        if user is None:
            raise NotFoundError("User not found")

        if not verify_password(current_password, user.password_hash):
            logger.warning("Password change rejected for user %s", user.id)
            raise UnauthorizedError("Current password is incorrect")

        now = self.clock.now()
        UserService.set_password_hash(self.session, user, self._hash_password(new_password), now=now)
        logger.info("Password changed for user %s", user.id)

        try:
            self.mailer.send(
                Notification(
                    to=user.email,
                    subject="Your password was changed",
                    template="password_changed",
                    context={
                        "name": user.name,
                        "changed_at": now.strftime("%B %d, %Y at %H:%M UTC"),
                        "ip_address": origin_ip or "Unknown",
                    },
                )
            )
        except NotificationError:
            logger.warning("Password changed email for user %s could not be sent", user.id)

        return {"message": "Password changed successfully"}

    # Email verification

    def _send_verification_email(self, user: User):
        expires_in_hours = self.settings.verification_token_expire_hours
        raw_token, record = EmailVerificationService.create_token(
            self.session,
            user,
            now=self.clock.now(),
            expires_in=timedelta(hours=expires_in_hours),
        )
        self.mailer.send(
            Notification(
                to=user.email,
                subject="Confirm your email",
                template="verification",
                context={
                    "name": user.name,
                    "verification_url": f"{self.settings.frontend_url}/verify-email?token={raw_token}",
                    "expires_in_hours": expires_in_hours,
                },
            )
        )
        return record

    def verify_email(self, token: str) -> dict:
        record = EmailVerificationService.find_token(self.session, token)
        if record is None:
            raise NotFoundError("Invalid verification token")

        if record.expires_at <= self.clock.now():
            EmailVerificationService.delete_token(self.session, record)
            raise UnauthorizedError("Verification token has expired")

        user = UserService.get_user(self.session, record.user_id)
        if user is None:
            raise NotFoundError("User not found")

        EmailVerificationService.consume_token(self.session, record, user, now=self.clock.now())
        logger.info("Email verified for user %s", user.id)
        return {"message": "Email verified successfully"}

    def resend_verification_email(self, email: str) -> dict:
        user = UserService.get_user_by_email(self.session, email)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_verified:
            raise ConflictError("Email is already verified")

        cooldown = timedelta(minutes=self.settings.verification_resend_cooldown_minutes)
        latest = EmailVerificationService.get_latest_token(self.session, user.id)
        if latest is not None:
            next_resend_time = latest.created_at + cooldown
            if self.clock.now() < next_resend_time:
                raise ConflictError(
                    "Please wait before requesting another verification email",
                    details={"next_resend_time": next_resend_time},
                )
            EmailVerificationService.delete_token(self.session, latest)

        record = self._send_verification_email(user)
        return {
            "message": "Verification email sent",
            "next_resend_time": record.created_at + cooldown,
        }

    # Profile

    def get_profile(self, user_id: int) -> User:
        user = UserService.get_user(self.session, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def update_profile(self, user_id: int, name: str) -> User:
        user = self.get_profile(user_id)
        return UserService.update_profile(self.session, user, name=name, now=self.clock.now())
