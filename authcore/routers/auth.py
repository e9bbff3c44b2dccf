"""
Authentication router. Parses requests and hands them to CredentialService.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from authcore.core.clock import Clock, SystemClock
from authcore.core.config import Settings, get_settings
from authcore.core.database import get_session
from authcore.core.rate_limit import (
    AUTH_RATE_LIMIT,
    PASSWORD_RATE_LIMIT,
    TOKEN_RATE_LIMIT,
    get_client_ip,
    limiter,
)
from authcore.models.user import User
from authcore.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshTokenRequest,
    ResendVerificationRequest,
    ResendVerificationResponse,
    ResetPasswordRequest,
    SignupRequest,
    VerifyEmailRequest,
)
from authcore.schemas.users import UpdateProfileRequest, UserRead
from authcore.services.credentials import AuthResult, CredentialService, Mailer
from authcore.services.email_service import EmailService

router = APIRouter(prefix="/auth", tags=["authentication"])

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def get_clock() -> Clock:
    return SystemClock()


def get_mailer(settings: Annotated[Settings, Depends(get_settings)]) -> Mailer:
    return EmailService(settings)


def get_credential_service(
    session: Annotated[Session, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    mailer: Annotated[Mailer, Depends(get_mailer)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> CredentialService:
    return CredentialService(session, settings=settings, mailer=mailer, clock=clock)


def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    service: Annotated[CredentialService, Depends(get_credential_service)],
) -> User:
    """Resolve the user from the bearer access token"""
    return service.authenticate_access_token(token)


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        user=UserRead.model_validate(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
    )


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_RATE_LIMIT)
def signup(
    request: Request,
    payload: SignupRequest,
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    """
    Register a new user

    Returns tokens immediately; a verification email is sent in the background
    of the same request.
    """
    result = service.signup(payload.email, payload.password, payload.name)
    return _auth_response(result)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT)
def login(
    request: Request,
    payload: LoginRequest,
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    result = service.login(payload.email, payload.password)
    return _auth_response(result)


@router.post("/refresh", response_model=AuthResponse)
@limiter.limit(TOKEN_RATE_LIMIT)
def refresh(
    request: Request,
    payload: RefreshTokenRequest,
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    """
    Exchange a refresh token for a new access/refresh pair

    The presented refresh token is revoked and cannot be used again.
    """
    result = service.refresh(payload.refresh_token)
    return _auth_response(result)


@router.get("/me", response_model=UserRead)
def read_current_user(current_user: Annotated[User, Depends(get_current_user)]):
    return UserRead.model_validate(current_user)


@router.patch("/profile", response_model=UserRead)
def update_profile(
    payload: UpdateProfileRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    user = service.update_profile(current_user.id, payload.name)
    return UserRead.model_validate(user)


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(PASSWORD_RATE_LIMIT)
def forgot_password(
    request: Request,
    payload: ForgotPasswordRequest,
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    return service.request_password_reset(payload.email)


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(PASSWORD_RATE_LIMIT)
def reset_password(
    request: Request,
    payload: ResetPasswordRequest,
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    return service.reset_password(payload.token, payload.new_password)


@router.post("/change-password", response_model=MessageResponse)
@limiter.limit(PASSWORD_RATE_LIMIT)
def change_password(
    request: Request,
    payload: ChangePasswordRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    """
    Change the password of the authenticated user

    **Rate Limited**: 3 attempts per minute
    """
    return service.change_password(
        current_user.id,
        payload.current_password,
        payload.new_password,
        origin_ip=get_client_ip(request),
    )


@router.post("/verify-email", response_model=MessageResponse)
@limiter.limit(TOKEN_RATE_LIMIT)
def verify_email(
    request: Request,
    payload: VerifyEmailRequest,
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    return service.verify_email(payload.token)


@router.post("/resend-verification", response_model=ResendVerificationResponse)
@limiter.limit(PASSWORD_RATE_LIMIT)
def resend_verification(
    request: Request,
    payload: ResendVerificationRequest,
    service: Annotated[CredentialService, Depends(get_credential_service)],
):
    return service.resend_verification_email(payload.email)


__all__ = ["router", "get_current_user", "get_credential_service", "get_mailer", "get_clock"]
