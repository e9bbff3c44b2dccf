"""
SQLModel tables for the credential and session lifecycle
"""

from .user import User
from .verification_token import VerificationToken
from .password_reset_token import PasswordResetToken
from .refresh_token import RefreshToken
from .password_reset_rate_limit import PasswordResetRateLimit

__all__ = [
    "User",
    "VerificationToken",
    "PasswordResetToken",
    "RefreshToken",
    "PasswordResetRateLimit",
]
