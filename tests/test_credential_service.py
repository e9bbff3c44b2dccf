from datetime import timedelta

import pytest
from jose import jwt
from sqlmodel import Session, select

from authcore.core.errors import ConflictError, NotFoundError, UnauthorizedError
from authcore.models.password_reset_rate_limit import PasswordResetRateLimit
from authcore.models.password_reset_token import PasswordResetToken
from authcore.models.refresh_token import RefreshToken
from authcore.models.user import User
from authcore.models.verification_token import VerificationToken
from authcore.services.email_service import NotificationError
from authcore.services.refresh_tokens import compute_refresh_token_hash


def _users(session: Session):
    return session.exec(select(User)).all()


def test_signup_returns_unverified_user_and_tokens(service, db_session, mailer, test_settings):
    result = service.signup("a@x.com", "secret1", "Ann")

    assert result.user.email == "a@x.com"
    assert result.user.name == "Ann"
    assert result.user.is_verified is False
    assert result.user.password_hash != "secret1"

    claims = jwt.get_unverified_claims(result.access_token)
    assert claims["sub"] == str(result.user.id)
    assert claims["exp"] - claims["iat"] == 15 * 60
    assert result.expires_in == 15 * 60

    token_hash = compute_refresh_token_hash(result.refresh_token, test_settings.secret_key)
    stored = db_session.exec(select(RefreshToken).where(RefreshToken.token_hash == token_hash)).one()
    assert stored.is_revoked is False
    assert stored.user_id == result.user.id

    assert len(mailer.by_template("verification")) == 1
    assert mailer.sent[0].to == "a@x.com"
    assert db_session.exec(select(VerificationToken)).all()


def test_signup_duplicate_email_conflicts_without_new_row(service, db_session):
    service.signup("a@x.com", "secret1", "Ann")

    with pytest.raises(ConflictError):
        service.signup("a@x.com", "other-pass", "Another Ann")

    assert len(_users(db_session)) == 1


def test_signup_survives_mail_failure(service, mailer):
    mailer.fail_with = NotificationError("smtp down")

    result = service.signup("a@x.com", "secret1", "Ann")

    assert result.refresh_token
    assert mailer.sent == []


def test_login_unknown_email_and_wrong_password_fail_identically(service):
    service.signup("a@x.com", "secret1", "Ann")

    with pytest.raises(UnauthorizedError) as unknown:
        service.login("nobody@x.com", "secret1")
    with pytest.raises(UnauthorizedError) as wrong:
        service.login("a@x.com", "wrong")

    assert unknown.value.message == wrong.value.message


def test_login_after_failed_attempt_issues_fresh_refresh_token(service):
    signup = service.signup("a@x.com", "secret1", "Ann")

    with pytest.raises(UnauthorizedError):
        service.login("a@x.com", "bad-password")
    login = service.login("a@x.com", "secret1")

    assert login.user.id == signup.user.id
    assert login.refresh_token != signup.refresh_token


def test_login_keeps_other_sessions_alive(service):
    first = service.signup("a@x.com", "secret1", "Ann")
    service.login("a@x.com", "secret1")

    rotated = service.refresh(first.refresh_token)

    assert rotated.user.email == "a@x.com"


def test_refresh_rotates_and_rejects_reuse(service, db_session, test_settings):
    signup = service.signup("a@x.com", "secret1", "Ann")

    rotated = service.refresh(signup.refresh_token)
    assert rotated.refresh_token != signup.refresh_token
    assert rotated.user.id == signup.user.id

    with pytest.raises(UnauthorizedError):
        service.refresh(signup.refresh_token)

    old = db_session.exec(
        select(RefreshToken).where(
            RefreshToken.token_hash == compute_refresh_token_hash(signup.refresh_token, test_settings.secret_key)
        )
    ).one()
    db_session.refresh(old)
    assert old.is_revoked is True
    assert old.revoked_at is not None
    assert old.replaced_by_token_hash == compute_refresh_token_hash(
        rotated.refresh_token, test_settings.secret_key
    )

    # The successor is still usable
    assert service.refresh(rotated.refresh_token).refresh_token


def test_refresh_rejects_expired_token(service, clock):
    signup = service.signup("a@x.com", "secret1", "Ann")

    clock.advance(days=7)

    with pytest.raises(UnauthorizedError):
        service.refresh(signup.refresh_token)


def test_refresh_accepts_token_until_its_expiry_instant(service, clock):
    signup = service.signup("a@x.com", "secret1", "Ann")

    clock.advance(days=7, seconds=-1)

    assert service.refresh(signup.refresh_token).refresh_token


def test_refresh_rejects_unknown_token(service):
    with pytest.raises(UnauthorizedError):
        service.refresh("not-a-real-token")


def test_authenticate_access_token(service, clock):
    signup = service.signup("a@x.com", "secret1", "Ann")

    assert service.authenticate_access_token(signup.access_token).id == signup.user.id

    clock.advance(minutes=15)
    with pytest.raises(UnauthorizedError):
        service.authenticate_access_token(signup.access_token)


def test_request_password_reset_unknown_email(service):
    with pytest.raises(NotFoundError):
        service.request_password_reset("ghost@x.com")


def test_request_password_reset_sends_link(service, mailer, db_session):
    service.signup("a@x.com", "secret1", "Ann")

    response = service.request_password_reset("a@x.com")

    assert response["message"]
    reset_mail = mailer.by_template("password_reset")[-1]
    assert reset_mail.context["reset_url"].startswith("https://app.example.com/reset-password?token=")
    record = db_session.exec(select(PasswordResetToken)).one()
    assert record.expires_at - record.created_at == timedelta(hours=1)


def test_second_reset_request_within_cooldown_conflicts(service, clock):
    service.signup("a@x.com", "secret1", "Ann")
    service.request_password_reset("a@x.com")

    clock.advance(minutes=3, seconds=30)
    with pytest.raises(ConflictError) as exc_info:
        service.request_password_reset("a@x.com")

    # 11m30s left, rounded up
    assert exc_info.value.details["retry_after_minutes"] == 12
    assert "12 minutes" in exc_info.value.message


def test_reset_backoff_doubles_on_each_attempt(service, db_session, clock):
    service.signup("a@x.com", "secret1", "Ann")

    windows = []
    for _ in range(4):
        service.request_password_reset("a@x.com")
        record = db_session.exec(
            select(PasswordResetRateLimit).where(PasswordResetRateLimit.email == "a@x.com")
        ).one()
        db_session.refresh(record)
        windows.append(record.next_allowed_attempt - clock.now())
        clock.current = record.next_allowed_attempt

    assert windows == [
        timedelta(minutes=15),
        timedelta(minutes=30),
        timedelta(minutes=60),
        timedelta(minutes=120),
    ]
    assert record.attempt_count == 4


def test_request_password_reset_propagates_mail_failure(service, mailer):
    service.signup("a@x.com", "secret1", "Ann")
    mailer.fail_with = NotificationError("smtp down")

    with pytest.raises(NotificationError):
        service.request_password_reset("a@x.com")


def test_reset_password_is_single_use(service, mailer):
    service.signup("a@x.com", "secret1", "Ann")
    service.request_password_reset("a@x.com")
    token = mailer.last_token("password_reset")

    service.reset_password(token, "brand-new-pass")

    with pytest.raises(UnauthorizedError):
        service.login("a@x.com", "secret1")
    assert service.login("a@x.com", "brand-new-pass").user.email == "a@x.com"

    with pytest.raises(UnauthorizedError):
        service.reset_password(token, "another-pass")


def test_reset_password_rejects_expired_token_and_keeps_row(service, mailer, clock, db_session):
    service.signup("a@x.com", "secret1", "Ann")
    service.request_password_reset("a@x.com")
    token = mailer.last_token("password_reset")

    clock.advance(hours=1)

    with pytest.raises(UnauthorizedError):
        service.reset_password(token, "brand-new-pass")
    assert db_session.exec(select(PasswordResetToken)).all()


def test_reset_password_does_not_revoke_sessions(service, mailer):
    signup = service.signup("a@x.com", "secret1", "Ann")
    service.request_password_reset("a@x.com")
    service.reset_password(mailer.last_token("password_reset"), "brand-new-pass")

    assert service.refresh(signup.refresh_token).refresh_token


def test_change_password(service, mailer):
    signup = service.signup("a@x.com", "secret1", "Ann")

    service.change_password(signup.user.id, "secret1", "secret2", origin_ip="203.0.113.7")

    assert service.login("a@x.com", "secret2")
    notice = mailer.by_template("password_changed")[-1]
    assert notice.context["ip_address"] == "203.0.113.7"
    assert notice.context["changed_at"] == "March 02, 2026 at 09:30 UTC"


def test_change_password_defaults_ip_to_unknown(service, mailer):
    signup = service.signup("a@x.com", "secret1", "Ann")

    service.change_password(signup.user.id, "secret1", "secret2")

    assert mailer.by_template("password_changed")[-1].context["ip_address"] == "Unknown"


def test_change_password_wrong_current_password(service):
    signup = service.signup("a@x.com", "secret1", "Ann")

    with pytest.raises(UnauthorizedError):
        service.change_password(signup.user.id, "nope", "secret2")


def test_change_password_unknown_user(service):
    with pytest.raises(NotFoundError):
        service.change_password(999, "secret1", "secret2")


def test_verify_email_marks_user_and_consumes_token(service, mailer, db_session):
    signup = service.signup("a@x.com", "secret1", "Ann")
    token = mailer.last_token("verification")

    service.verify_email(token)

    user = db_session.get(User, signup.user.id)
    db_session.refresh(user)
    assert user.is_verified is True
    with pytest.raises(NotFoundError):
        service.verify_email(token)


def test_verify_email_unknown_token(service):
    with pytest.raises(NotFoundError):
        service.verify_email("missing")


def test_verify_email_expired_token_is_deleted(service, mailer, clock, db_session):
    service.signup("a@x.com", "secret1", "Ann")
    token = mailer.last_token("verification")

    clock.advance(hours=24)

    with pytest.raises(UnauthorizedError):
        service.verify_email(token)
    assert db_session.exec(select(VerificationToken)).all() == []
    with pytest.raises(NotFoundError):
        service.verify_email(token)


def test_resend_verification_within_cooldown(service, clock, db_session):
    service.signup("a@x.com", "secret1", "Ann")
    first = db_session.exec(select(VerificationToken)).one()

    clock.advance(minutes=2)
    with pytest.raises(ConflictError) as exc_info:
        service.resend_verification_email("a@x.com")

    assert exc_info.value.details["next_resend_time"] == first.created_at + timedelta(minutes=5)


def test_resend_verification_after_cooldown_replaces_token(service, mailer, clock, db_session):
    service.signup("a@x.com", "secret1", "Ann")
    old_token = mailer.last_token("verification")

    clock.advance(minutes=5)
    response = service.resend_verification_email("a@x.com")

    assert response["next_resend_time"] == clock.now() + timedelta(minutes=5)
    assert len(db_session.exec(select(VerificationToken)).all()) == 1
    with pytest.raises(NotFoundError):
        service.verify_email(old_token)
    service.verify_email(mailer.last_token("verification"))


def test_resend_verification_unknown_and_verified(service, mailer):
    with pytest.raises(NotFoundError):
        service.resend_verification_email("ghost@x.com")

    service.signup("a@x.com", "secret1", "Ann")
    service.verify_email(mailer.last_token("verification"))

    with pytest.raises(ConflictError):
        service.resend_verification_email("a@x.com")


def test_update_profile(service):
    signup = service.signup("a@x.com", "secret1", "Ann")

    user = service.update_profile(signup.user.id, "Ann Smith")

    assert user.name == "Ann Smith"
    assert service.get_profile(signup.user.id).name == "Ann Smith"
    with pytest.raises(NotFoundError):
        service.get_profile(12345)
