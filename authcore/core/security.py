import calendar
from datetime import datetime, timedelta
from functools import lru_cache
import hashlib
import logging
import secrets
from typing import Optional

import bcrypt
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"

# 32 bytes = 256 bits of entropy per token string
TOKEN_BYTES = 32


def _truncate_password_safely(password: str) -> bytes:
    """
    bcrypt only looks at the first 72 bytes; recent releases reject longer
    input outright, so cut it down before hashing or checking.
    """
    password_bytes = password.encode("utf-8")
    if len(password_bytes) <= 72:
        return password_bytes
    return password_bytes[:72]


def get_password_hash(password: str, rounds: int = 12) -> str:
    """Hash a plaintext password with a fresh salt"""
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(_truncate_password_safely(password), salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a plaintext password against a stored bcrypt hash"""
    try:
        return bcrypt.checkpw(
            _truncate_password_safely(plain_password),
            hashed_password.encode("utf-8"),
        )
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


@lru_cache
def dummy_password_hash(rounds: int = 12) -> str:
    """Hash checked when the email is unknown so failed logins always pay for one bcrypt check"""
    return get_password_hash(secrets.token_urlsafe(16), rounds=rounds)


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def compute_token_hash(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def create_access_token(
    subject: str,
    *,
    secret_key: str,
    expires_delta: timedelta,
    now: datetime,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """Sign a stateless access token for the given subject"""
    to_encode = {
        "sub": subject,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + expires_delta,
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret_key: str,
    now: datetime,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Optional[dict]:
    """
    Verify signature and expiry; None when the token is not usable.

    Expiry is checked against the caller's clock rather than jose's own.
    """
    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            options={"verify_exp": False},
        )
    except JWTError:
        return None
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        return None
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or exp <= calendar.timegm(now.utctimetuple()):
        return None
    return payload
