"""OTP lifecycle: issue, cooldown and verification of short-lived numeric codes.

For one (email, purpose) pair a code goes NONE -> ISSUED -> VERIFIED or
SUPERSEDED. Expiry is never stored; it is detected when the code is verified.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.orm import Session

from app.models.otp_code import OtpCode, OtpPurpose
from app.services.auth import DEFAULT_BCRYPT_ROUNDS, get_password_hash, verify_password
from app.services.exceptions import (
    OtpExpiredError,
    OtpMismatchError,
    OtpNotFoundError,
    ThrottledError,
)

log = logging.getLogger("uvicorn.error")

OTP_TTL = timedelta(minutes=5)
_ONE_SECOND_US = 1_000_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; every stored timestamp is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_code() -> str:
    """Six digits, uniform over 100000-999999."""
    return str(100000 + secrets.randbelow(900000))


def seconds_until(expires_at: datetime, now: datetime) -> int:
    """Whole seconds left before expires_at, rounded up; 0 once it has passed."""
    remaining_us = (_as_utc(expires_at) - now) // timedelta(microseconds=1)
    if remaining_us <= 0:
        return 0
    return -(-remaining_us // _ONE_SECOND_US)


class OtpManager:
    """Creates, supersedes and verifies OtpCode rows through the given session.

    Holds no state of its own between calls. The caller owns the transaction:
    changes are flushed here and committed by the account flow.
    """

    def __init__(
        self,
        db: Session,
        *,
        ttl: timedelta = OTP_TTL,
        hash_rounds: int = DEFAULT_BCRYPT_ROUNDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ttl = ttl
        self.hash_rounds = hash_rounds
        self.clock = clock

    def latest_unused(self, email: str, purpose: OtpPurpose) -> OtpCode | None:
        return (
            self.db.query(OtpCode)
            .filter(OtpCode.email == email, OtpCode.purpose == purpose, OtpCode.used_at.is_(None))
            .order_by(OtpCode.created_at.desc(), OtpCode.id.desc())
            .first()
        )

    def cooldown_seconds(self, email: str, purpose: OtpPurpose) -> int:
        record = self.latest_unused(email, purpose)
        if record is None:
            return 0
        return seconds_until(record.expires_at, self.clock())

    def ensure_not_throttled(self, email: str, purpose: OtpPurpose) -> None:
        """Refuse a new code while the previous one is still valid.

        Check-then-issue is not atomic: two concurrent requests can both pass
        and the later issue() supersedes the earlier code.
        """
        retry_after = self.cooldown_seconds(email, purpose)
        if retry_after > 0:
            log.info("[OTP] Throttled %s code for %s (retry in %ds)", purpose.value, email, retry_after)
            raise ThrottledError(retry_after, ttl_minutes=int(self.ttl.total_seconds() // 60))

    def invalidate(self, email: str, purpose: OtpPurpose) -> int:
        """Mark every unused code for the pair as used, expired or not."""
        count = (
            self.db.query(OtpCode)
            .filter(OtpCode.email == email, OtpCode.purpose == purpose, OtpCode.used_at.is_(None))
            .update({OtpCode.used_at: self.clock()})
        )
        self.db.flush()
        return count

    def issue(self, email: str, purpose: OtpPurpose) -> str:
        """Store a fresh code for (email, purpose) and return its plaintext for delivery."""
        superseded = self.invalidate(email, purpose)
        code = generate_code()
        now = self.clock()
        record = OtpCode(
            email=email,
            purpose=purpose,
            code_hash=get_password_hash(code, rounds=self.hash_rounds),
            expires_at=now + self.ttl,
            used_at=None,
            created_at=now,
        )
        self.db.add(record)
        self.db.flush()
        log.info("[OTP] Issued %s code for %s (superseded=%d)", purpose.value, email, superseded)
        return code

    def verify(self, email: str, purpose: OtpPurpose, code: str) -> OtpCode:
        record = self.latest_unused(email, purpose)
        if record is None:
            raise OtpNotFoundError()
        now = self.clock()
        # Expired codes stay unused; only a successful match consumes a code
        if _as_utc(record.expires_at) < now:
            raise OtpExpiredError()
        if not verify_password(str(code), record.code_hash):
            raise OtpMismatchError()
        record.used_at = now
        self.db.flush()
        return record
