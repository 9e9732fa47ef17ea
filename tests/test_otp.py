"""Tests for the OTP lifecycle manager."""

from datetime import timedelta

import pytest

from app.models.otp_code import OtpCode, OtpPurpose
from app.services import otp as otp_module
from app.services.auth import get_password_hash
from app.services.exceptions import (
    InvalidOtpError,
    OtpExpiredError,
    OtpMismatchError,
    OtpNotFoundError,
    ThrottledError,
)
from app.services.otp import OtpManager, generate_code, seconds_until

from conftest import T0, TEST_BCRYPT_ROUNDS

EMAIL = "a@b.com"


@pytest.fixture
def manager(db, clock) -> OtpManager:
    return OtpManager(db, hash_rounds=TEST_BCRYPT_ROUNDS, clock=clock)


@pytest.fixture
def fixed_codes(monkeypatch):
    """Make generate_code return a known sequence."""
    codes = iter(["111111", "222222", "333333", "444444"])
    monkeypatch.setattr(otp_module, "generate_code", lambda: next(codes))


def store_code(db, code, expires_at, purpose=OtpPurpose.register, email=EMAIL, created_at=T0) -> OtpCode:
    record = OtpCode(
        email=email,
        purpose=purpose,
        code_hash=get_password_hash(code, rounds=TEST_BCRYPT_ROUNDS),
        expires_at=expires_at,
        used_at=None,
        created_at=created_at,
    )
    db.add(record)
    db.commit()
    return record


class TestGenerateCode:
    def test_six_digit_numeric(self):
        for _ in range(500):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()
            assert 100000 <= int(code) <= 999999

    def test_uses_secure_random_source(self, monkeypatch):
        monkeypatch.setattr(otp_module.secrets, "randbelow", lambda n: n - 1)
        assert generate_code() == "999999"
        monkeypatch.setattr(otp_module.secrets, "randbelow", lambda n: 0)
        assert generate_code() == "100000"


class TestIssue:
    def test_stores_hash_not_plaintext(self, db, manager, fixed_codes):
        code = manager.issue(EMAIL, OtpPurpose.register)
        db.commit()

        record = db.query(OtpCode).one()
        assert code == "111111"
        assert record.code_hash != code
        assert code not in record.code_hash
        assert record.used_at is None
        assert seconds_until(record.expires_at, T0) == 300

    def test_second_issue_supersedes_first(self, db, manager, fixed_codes):
        first = manager.issue(EMAIL, OtpPurpose.register)
        second = manager.issue(EMAIL, OtpPurpose.register)
        db.commit()

        with pytest.raises(InvalidOtpError):
            manager.verify(EMAIL, OtpPurpose.register, first)
        assert manager.verify(EMAIL, OtpPurpose.register, second).used_at == T0
        with pytest.raises(OtpNotFoundError):
            manager.verify(EMAIL, OtpPurpose.register, second)

    def test_supersedes_expired_unused_codes_too(self, db, manager, clock):
        old = store_code(db, "123456", T0 - timedelta(minutes=10), created_at=T0 - timedelta(minutes=15))
        manager.issue(EMAIL, OtpPurpose.register)
        db.commit()
        db.refresh(old)
        assert old.used_at is not None

    def test_only_touches_same_email_and_purpose(self, db, manager, fixed_codes):
        manager.issue(EMAIL, OtpPurpose.login)
        manager.issue("other@b.com", OtpPurpose.register)
        manager.issue(EMAIL, OtpPurpose.register)
        db.commit()

        assert manager.latest_unused(EMAIL, OtpPurpose.login) is not None
        assert manager.latest_unused("other@b.com", OtpPurpose.register) is not None
        manager.verify(EMAIL, OtpPurpose.login, "111111")

    def test_at_most_one_active_code_per_pair(self, db, manager):
        for _ in range(3):
            manager.issue(EMAIL, OtpPurpose.reset)
        db.commit()
        active = db.query(OtpCode).filter(OtpCode.used_at.is_(None)).count()
        assert active == 1


class TestVerify:
    def test_no_code_is_not_found(self, manager):
        with pytest.raises(OtpNotFoundError) as exc_info:
            manager.verify(EMAIL, OtpPurpose.register, "123456")
        assert exc_info.value.message == "OTP not found"

    def test_wrong_code_twice_is_mismatch_and_keeps_code(self, db, manager):
        record = store_code(db, "123456", T0 + timedelta(minutes=5))

        for _ in range(2):
            with pytest.raises(OtpMismatchError) as exc_info:
                manager.verify(EMAIL, OtpPurpose.register, "654321")
            assert exc_info.value.message == "Invalid OTP"

        db.refresh(record)
        assert record.used_at is None
        manager.verify(EMAIL, OtpPurpose.register, "123456")

    def test_single_use(self, db, manager):
        store_code(db, "123456", T0 + timedelta(minutes=5))
        manager.verify(EMAIL, OtpPurpose.register, "123456")
        db.commit()
        with pytest.raises(OtpNotFoundError):
            manager.verify(EMAIL, OtpPurpose.register, "123456")

    def test_expired_one_millisecond_ago(self, db, manager):
        record = store_code(db, "123456", T0 - timedelta(milliseconds=1))
        with pytest.raises(OtpExpiredError) as exc_info:
            manager.verify(EMAIL, OtpPurpose.register, "123456")
        assert exc_info.value.message == "OTP expired"
        db.refresh(record)
        assert record.used_at is None

    def test_valid_for_one_more_millisecond(self, db, manager):
        store_code(db, "123456", T0 + timedelta(milliseconds=1))
        record = manager.verify(EMAIL, OtpPurpose.register, "123456")
        assert record.used_at == T0

    def test_expiry_checked_before_code(self, db, manager):
        store_code(db, "123456", T0 - timedelta(seconds=1))
        with pytest.raises(OtpExpiredError):
            manager.verify(EMAIL, OtpPurpose.register, "000000")

    def test_picks_newest_when_two_are_active(self, db, manager):
        store_code(db, "111111", T0 + timedelta(minutes=5), created_at=T0 - timedelta(seconds=30))
        store_code(db, "222222", T0 + timedelta(minutes=5), created_at=T0)
        with pytest.raises(OtpMismatchError):
            manager.verify(EMAIL, OtpPurpose.register, "111111")
        manager.verify(EMAIL, OtpPurpose.register, "222222")

    def test_malformed_hash_counts_as_mismatch(self, db, manager):
        db.add(OtpCode(
            email=EMAIL,
            purpose=OtpPurpose.register,
            code_hash="not-a-bcrypt-hash",
            expires_at=T0 + timedelta(minutes=5),
            created_at=T0,
        ))
        db.commit()
        with pytest.raises(OtpMismatchError):
            manager.verify(EMAIL, OtpPurpose.register, "123456")

    def test_purpose_is_part_of_the_lookup(self, db, manager, fixed_codes):
        code = manager.issue(EMAIL, OtpPurpose.verify)
        db.commit()
        with pytest.raises(OtpNotFoundError):
            manager.verify(EMAIL, OtpPurpose.login, code)
        manager.verify(EMAIL, OtpPurpose.verify, code)

    def test_code_expires_after_ttl(self, db, manager, clock, fixed_codes):
        code = manager.issue(EMAIL, OtpPurpose.login)
        db.commit()
        clock.advance(minutes=5, milliseconds=1)
        with pytest.raises(OtpExpiredError):
            manager.verify(EMAIL, OtpPurpose.login, code)


class TestCooldown:
    def test_no_code_means_no_cooldown(self, manager):
        assert manager.cooldown_seconds(EMAIL, OtpPurpose.register) == 0
        manager.ensure_not_throttled(EMAIL, OtpPurpose.register)

    def test_whole_seconds(self, db, manager):
        store_code(db, "123456", T0 + timedelta(milliseconds=125000))
        assert manager.cooldown_seconds(EMAIL, OtpPurpose.register) == 125

    def test_fractional_seconds_round_up(self, db, manager):
        store_code(db, "123456", T0 + timedelta(milliseconds=125400))
        assert manager.cooldown_seconds(EMAIL, OtpPurpose.register) == 126

    def test_throttled_error_reports_retry_after(self, db, manager):
        store_code(db, "123456", T0 + timedelta(milliseconds=125000))
        with pytest.raises(ThrottledError) as exc_info:
            manager.ensure_not_throttled(EMAIL, OtpPurpose.register)
        assert exc_info.value.retry_after_seconds == 125
        assert exc_info.value.to_dict()["retryAfterSeconds"] == 125

    def test_throttle_message_follows_configured_ttl(self, db, clock):
        manager = OtpManager(db, ttl=timedelta(minutes=2), hash_rounds=TEST_BCRYPT_ROUNDS, clock=clock)
        manager.issue(EMAIL, OtpPurpose.register)
        db.commit()
        with pytest.raises(ThrottledError) as exc_info:
            manager.ensure_not_throttled(EMAIL, OtpPurpose.register)
        assert exc_info.value.retry_after_seconds == 120
        assert exc_info.value.message == "OTP already sent. Request a new OTP after 2 minutes."

    def test_expired_code_does_not_throttle(self, db, manager):
        store_code(db, "123456", T0 - timedelta(milliseconds=1))
        assert manager.cooldown_seconds(EMAIL, OtpPurpose.register) == 0
        manager.ensure_not_throttled(EMAIL, OtpPurpose.register)

    def test_used_code_does_not_throttle(self, db, manager):
        store_code(db, "123456", T0 + timedelta(minutes=5))
        manager.verify(EMAIL, OtpPurpose.register, "123456")
        db.commit()
        assert manager.cooldown_seconds(EMAIL, OtpPurpose.register) == 0

    def test_seconds_until(self):
        assert seconds_until(T0 + timedelta(microseconds=1), T0) == 1
        assert seconds_until(T0 + timedelta(seconds=300), T0) == 300
        assert seconds_until(T0, T0) == 0
        assert seconds_until(T0 - timedelta(seconds=3), T0) == 0

    def test_check_then_issue_race_last_issue_wins(self, db, clock, fixed_codes):
        """Known race: the cooldown check is not atomic with issue().

        Two requests that both pass the check both issue; the later code
        supersedes the earlier one. This is accepted behavior, not a bug to lock away.
        """
        first_request = OtpManager(db, hash_rounds=TEST_BCRYPT_ROUNDS, clock=clock)
        second_request = OtpManager(db, hash_rounds=TEST_BCRYPT_ROUNDS, clock=clock)

        first_request.ensure_not_throttled(EMAIL, OtpPurpose.register)
        second_request.ensure_not_throttled(EMAIL, OtpPurpose.register)
        first_code = first_request.issue(EMAIL, OtpPurpose.register)
        second_code = second_request.issue(EMAIL, OtpPurpose.register)
        db.commit()

        with pytest.raises(OtpMismatchError):
            first_request.verify(EMAIL, OtpPurpose.register, first_code)
        second_request.verify(EMAIL, OtpPurpose.register, second_code)
