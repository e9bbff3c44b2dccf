"""
Request and response schemas for the HTTP adapter
"""

from .auth import (
    SignupRequest,
    LoginRequest,
    RefreshTokenRequest,
    AuthResponse,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    ChangePasswordRequest,
    VerifyEmailRequest,
    ResendVerificationRequest,
    MessageResponse,
    ResendVerificationResponse,
)
from .users import UserRead, UpdateProfileRequest

__all__ = [
    "SignupRequest",
    "LoginRequest",
    "RefreshTokenRequest",
    "AuthResponse",
    "ForgotPasswordRequest",
    "ResetPasswordRequest",
    "ChangePasswordRequest",
    "VerifyEmailRequest",
    "ResendVerificationRequest",
    "MessageResponse",
    "ResendVerificationResponse",
    "UserRead",
    "UpdateProfileRequest",
]
