"""Account flows gated by one-time passcodes.

Signup is deferred: credentials wait in PendingSignup until the register OTP is
verified, then the user is created (or an unverified row reactivated) as
verified and Active. Each function commits its own unit of work.
"""
import logging
from datetime import datetime, timezone
from typing import NamedTuple

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.config import Settings
from app.models.otp_code import OtpPurpose
from app.models.pending_signup import PendingSignup
from app.models.user import User, UserRole, UserStatus
from app.services.audit_log import (
    CATEGORY_FAILED_ATTEMPT,
    CATEGORY_STATUS_CHANGE,
    ClientInfo,
    create_log,
)
from app.services.auth import create_access_token, get_password_hash, verify_password
from app.services.exceptions import (
    AlreadyRegisteredError,
    AlreadyVerifiedError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidOtpError,
    SendFailedError,
    UserNotFoundError,
    ValidationError,
)
from app.services.notifications import EmailSender
from app.services.otp import OtpManager

log = logging.getLogger("uvicorn.error")

_UPSERT_INSERTS = {"postgresql": postgresql_insert, "sqlite": sqlite_insert}


class SessionGrant(NamedTuple):
    token: str
    user: User


def normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email).first()


def _require_user(db: Session, email: str) -> User:
    user = get_user_by_email(db, email)
    if not user:
        raise UserNotFoundError()
    return user


def _deliver(db: Session, otp: OtpManager, sender: EmailSender, email: str, purpose: OtpPurpose, code: str) -> None:
    """Send a freshly issued code. If delivery fails the code is retired so the cooldown does not block a retry."""
    ttl_minutes = int(otp.ttl.total_seconds() // 60)
    try:
        sender.send_otp_email(email, code, purpose, ttl_minutes=ttl_minutes)
    except SendFailedError:
        otp.invalidate(email, purpose)
        db.commit()
        log.warning("[Auth] OTP email not delivered: to=%s purpose=%s", email, purpose.value)
        raise


def _verify_otp(
    db: Session,
    otp: OtpManager,
    email: str,
    purpose: OtpPurpose,
    code: str,
    client: ClientInfo | None,
    user: User | None = None,
) -> None:
    try:
        otp.verify(email, purpose, code)
    except InvalidOtpError as e:
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "OTP verification failed",
            f"{e.message} for {purpose.value} code of {email}.",
            actor_user_id=user.id if user else None,
            actor_email=email,
            client=client,
            meta={"purpose": purpose, "reason": e.code},
        )
        db.commit()
        raise


def _create_or_activate_user(db: Session, full_name: str | None, email: str, hashed_password: str) -> User:
    existing = get_user_by_email(db, email)
    if existing and existing.is_verified:
        raise AlreadyRegisteredError()
    now = datetime.now(timezone.utc)
    if existing:
        existing.full_name = full_name
        existing.hashed_password = hashed_password
        existing.role = existing.role or UserRole.user
        existing.status = UserStatus.active
        existing.is_verified = True
        existing.updated_at = now
        db.flush()
        return existing
    user = User(
        email=email,
        full_name=full_name,
        hashed_password=hashed_password,
        role=UserRole.user,
        status=UserStatus.active,
        is_verified=True,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.flush()
    return user


def _upsert_pending_signup(db: Session, email: str, full_name: str, hashed_password: str) -> None:
    """Insert or overwrite the pending credentials for email in one statement; the last request wins."""
    insert = _UPSERT_INSERTS[db.get_bind().dialect.name]
    now = datetime.now(timezone.utc)
    stmt = insert(PendingSignup).values(
        email=email,
        full_name=full_name,
        hashed_password=hashed_password,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[PendingSignup.email],
        set_={
            "full_name": stmt.excluded.full_name,
            "hashed_password": stmt.excluded.hashed_password,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)


def request_signup_otp(
    db: Session,
    otp: OtpManager,
    sender: EmailSender,
    settings: Settings,
    full_name: str | None,
    email: str | None,
    password: str | None,
) -> str:
    full_name = (full_name or "").strip()
    email = normalize_email(email)
    if not full_name or not email or not password:
        raise ValidationError("fullName, email and password are required")

    existing = get_user_by_email(db, email)
    if existing and existing.is_verified:
        raise AlreadyRegisteredError()

    otp.ensure_not_throttled(email, OtpPurpose.register)

    hashed = get_password_hash(password, rounds=settings.bcrypt_rounds)
    _upsert_pending_signup(db, email, full_name, hashed)

    code = otp.issue(email, OtpPurpose.register)
    db.commit()
    _deliver(db, otp, sender, email, OtpPurpose.register, code)
    return "OTP sent to your email"


def verify_signup_otp(
    db: Session,
    otp: OtpManager,
    settings: Settings,
    email: str | None,
    code: str | None,
    client: ClientInfo | None = None,
) -> SessionGrant:
    email = normalize_email(email)
    if not email or not code:
        raise ValidationError("email and otp are required")

    _verify_otp(db, otp, email, OtpPurpose.register, code, client)

    pending = db.query(PendingSignup).filter(PendingSignup.email == email).first()
    if not pending:
        # The code was consumed above; the client has to start over either way
        db.commit()
        raise ValidationError("No signup request found. Please request OTP again.")

    try:
        user = _create_or_activate_user(db, pending.full_name, email, pending.hashed_password)
    except AlreadyRegisteredError:
        db.commit()
        raise
    db.delete(pending)
    create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        "Account created",
        f"Signup OTP verified; account {email} is verified and active.",
        actor_user_id=user.id,
        actor_email=email,
        client=client,
    )
    db.commit()
    db.refresh(user)
    log.info("[Auth] Account created via signup OTP: user_id=%s", user.id)
    return SessionGrant(create_access_token(user, settings), user)


def login(
    db: Session,
    settings: Settings,
    email: str | None,
    password: str | None,
    client: ClientInfo | None = None,
) -> SessionGrant:
    email = normalize_email(email)
    if not email or not password:
        raise ValidationError("email and password are required")
    user = get_user_by_email(db, email)
    if not user:
        _log_failed_login(db, email, "unknown_email", client)
        raise InvalidCredentialsError()
    if not user.is_verified:
        raise EmailNotVerifiedError()
    if not verify_password(password, user.hashed_password):
        _log_failed_login(db, email, "invalid_password", client, user_id=user.id)
        raise InvalidCredentialsError()
    return SessionGrant(create_access_token(user, settings), user)


def _log_failed_login(db: Session, email: str, reason: str, client: ClientInfo | None, user_id: int | None = None) -> None:
    create_log(
        db,
        CATEGORY_FAILED_ATTEMPT,
        "Login failed",
        f"Failed login attempt for email: {email}.",
        actor_user_id=user_id,
        actor_email=email,
        client=client,
        meta={"reason": reason},
    )
    db.commit()


def request_login_otp(db: Session, otp: OtpManager, sender: EmailSender, email: str | None) -> str:
    """Send a login code, or a verification code instead when the account is not verified yet."""
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")
    user = _require_user(db, email)
    if not user.is_verified:
        code = otp.issue(user.email, OtpPurpose.verify)
        db.commit()
        _deliver(db, otp, sender, user.email, OtpPurpose.verify, code)
        raise EmailNotVerifiedError("Email not verified. OTP sent for verification.")
    code = otp.issue(user.email, OtpPurpose.login)
    db.commit()
    _deliver(db, otp, sender, user.email, OtpPurpose.login, code)
    return "OTP sent to your email"


def verify_login_otp(
    db: Session,
    otp: OtpManager,
    settings: Settings,
    email: str | None,
    code: str | None,
    client: ClientInfo | None = None,
) -> SessionGrant:
    email = normalize_email(email)
    if not email or not code:
        raise ValidationError("email and otp are required")
    user = _require_user(db, email)
    if not user.is_verified:
        raise EmailNotVerifiedError()
    _verify_otp(db, otp, user.email, OtpPurpose.login, code, client, user=user)
    db.commit()
    return SessionGrant(create_access_token(user, settings), user)


def verify_email(
    db: Session,
    otp: OtpManager,
    settings: Settings,
    email: str | None,
    code: str | None,
    client: ClientInfo | None = None,
) -> SessionGrant:
    email = normalize_email(email)
    if not email or not code:
        raise ValidationError("email and otp are required")
    user = _require_user(db, email)
    if user.is_verified:
        raise AlreadyVerifiedError()
    _verify_otp(db, otp, user.email, OtpPurpose.verify, code, client, user=user)
    user.is_verified = True
    user.status = UserStatus.active
    user.updated_at = datetime.now(timezone.utc)
    create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        "Email verified",
        f"Email {email} verified; account is active.",
        actor_user_id=user.id,
        actor_email=email,
        client=client,
    )
    db.commit()
    db.refresh(user)
    return SessionGrant(create_access_token(user, settings), user)


def resend_verification(db: Session, otp: OtpManager, sender: EmailSender, email: str | None) -> str:
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")
    user = _require_user(db, email)
    if user.is_verified:
        raise AlreadyVerifiedError()
    otp.ensure_not_throttled(email, OtpPurpose.verify)
    code = otp.issue(email, OtpPurpose.verify)
    db.commit()
    _deliver(db, otp, sender, email, OtpPurpose.verify, code)
    return "Verification OTP sent to your email"


def request_password_reset(db: Session, otp: OtpManager, sender: EmailSender, email: str | None) -> str:
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")
    _require_user(db, email)
    otp.ensure_not_throttled(email, OtpPurpose.reset)
    code = otp.issue(email, OtpPurpose.reset)
    db.commit()
    _deliver(db, otp, sender, email, OtpPurpose.reset, code)
    return "Password reset OTP sent to your email"


def reset_password(
    db: Session,
    otp: OtpManager,
    settings: Settings,
    email: str | None,
    code: str | None,
    new_password: str | None,
    client: ClientInfo | None = None,
) -> str:
    email = normalize_email(email)
    if not email or not code or not new_password:
        raise ValidationError("email, otp and newPassword are required")
    if len(new_password) < settings.password_min_length:
        raise ValidationError(f"Password must be at least {settings.password_min_length} characters")
    user = _require_user(db, email)
    _verify_otp(db, otp, email, OtpPurpose.reset, code, client, user=user)
    user.hashed_password = get_password_hash(new_password, rounds=settings.bcrypt_rounds)
    user.updated_at = datetime.now(timezone.utc)
    create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        "Password reset",
        f"Password for {email} replaced after reset OTP.",
        actor_user_id=user.id,
        actor_email=email,
        client=client,
    )
    db.commit()
    return "Password updated successfully. Please log in."
