from datetime import datetime, timedelta
import logging
from typing import Dict

from sqlalchemy import delete
from sqlmodel import Session

from authcore.models.password_reset_token import PasswordResetToken
from authcore.models.refresh_token import RefreshToken
from authcore.models.verification_token import VerificationToken

logger = logging.getLogger(__name__)


def purge_expired_tokens(
    session: Session,
    *,
    now: datetime,
    refresh_token_retention: timedelta,
) -> Dict[str, int]:
    """
    Delete verification and reset tokens whose expiry has passed.

    Refresh tokens carry the rotation audit trail (revoked_at,
    replaced_by_token_hash), so they stay for ``refresh_token_retention``
    after expiring before they are removed.
    """
    cutoffs = (
        ("verification_tokens", VerificationToken, now),
        ("password_reset_tokens", PasswordResetToken, now),
        ("refresh_tokens", RefreshToken, now - refresh_token_retention),
    )
    counts = {}
    for label, model, cutoff in cutoffs:
        result = session.execute(
            delete(model)
            .where(model.expires_at <= cutoff)
            .execution_options(synchronize_session=False)
        )
        counts[label] = result.rowcount or 0
    session.commit()
    logger.info(
        "Purged expired tokens: %s",
        ", ".join(f"{label}={count}" for label, count in counts.items()),
    )
    return counts
