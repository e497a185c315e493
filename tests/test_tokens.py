"""Unit tests for auth/tokens.py -- credential utilities.

Covers:
- bcrypt hashing never stores plaintext and round-trips through verify_password()
- access and refresh tokens are signed with separate secrets and kinds
- expired and tampered tokens are rejected
- OTP and referral code formats
- password strength reports every failing rule
- sanitize_user() strips password and two-factor fields
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import User
from auth.tokens import (
    ACCESS,
    REFRESH,
    InvalidTokenError,
    create_token,
    decode_token,
    generate_otp,
    generate_referral_code,
    hash_password,
    sanitize_user,
    validate_password_strength,
    verify_password,
)
from core.config import get_settings

# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


class TestPasswordHashing:
    def test_hash_is_not_plaintext_and_verifies(self) -> None:
        hashed = hash_password("Str0ng!pw")
        assert hashed != "Str0ng!pw"
        assert verify_password("Str0ng!pw", hashed)

    def test_hash_is_salted(self) -> None:
        """Two hashes of the same password differ (random salt)."""
        assert hash_password("Str0ng!pw") != hash_password("Str0ng!pw")

    def test_wrong_password_rejected(self) -> None:
        assert not verify_password("wrong", hash_password("Str0ng!pw"))

    def test_malformed_hash_returns_false(self) -> None:
        assert verify_password("Str0ng!pw", "not-a-bcrypt-hash") is False


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------


class TestTokens:
    def test_access_token_round_trip(self) -> None:
        claims = decode_token(create_token("user-1", ACCESS), ACCESS)
        assert claims["userId"] == "user-1"
        assert claims["type"] == "access"

    def test_refresh_token_round_trip(self) -> None:
        claims = decode_token(create_token("user-1", REFRESH), REFRESH)
        assert claims["userId"] == "user-1"
        assert claims["type"] == "refresh"

    def test_access_token_rejected_as_refresh(self) -> None:
        """Different secrets: an access token never verifies as a refresh token."""
        with pytest.raises(InvalidTokenError):
            decode_token(create_token("user-1", ACCESS), REFRESH)

    def test_refresh_token_rejected_as_access(self) -> None:
        with pytest.raises(InvalidTokenError):
            decode_token(create_token("user-1", REFRESH), ACCESS)

    def test_tokens_issued_together_are_distinct(self) -> None:
        assert create_token("user-1", REFRESH) != create_token("user-1", REFRESH)

    def test_expired_token_rejected(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        token = jwt.encode(
            {"userId": "user-1", "type": "access", "exp": past},
            get_settings().jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError):
            decode_token(token, ACCESS)

    def test_token_with_wrong_type_claim_rejected(self) -> None:
        """Signed with the access secret but claiming to be a refresh token."""
        future = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode(
            {"userId": "user-1", "type": "refresh", "exp": future},
            get_settings().jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError):
            decode_token(token, ACCESS)

    def test_garbage_rejected(self) -> None:
        with pytest.raises(InvalidTokenError):
            decode_token("not.a.token", ACCESS)

    def test_unknown_kind_raises_value_error(self) -> None:
        with pytest.raises(ValueError):
            create_token("user-1", "session")


# ---------------------------------------------------------------------------
# OTP and referral codes
# ---------------------------------------------------------------------------


class TestCodes:
    def test_otp_is_six_digits_in_range(self) -> None:
        for _ in range(200):
            otp = generate_otp()
            assert re.fullmatch(r"\d{6}", otp)
            assert 100000 <= int(otp) <= 999999

    def test_referral_code_format(self) -> None:
        code = generate_referral_code("ada", "lovelace")
        assert code.startswith("AL")
        assert re.fullmatch(r"AL[A-Z0-9]{6}", code)

    def test_referral_codes_are_random(self) -> None:
        codes = {generate_referral_code("Ada", "Lovelace") for _ in range(20)}
        assert len(codes) > 1


# ---------------------------------------------------------------------------
# Password strength
# ---------------------------------------------------------------------------


class TestPasswordStrength:
    def test_short_lowercase_fails_four_rules(self) -> None:
        result = validate_password_strength("abc")
        assert result.is_valid is False
        assert len(result.errors) == 4
        joined = " ".join(result.errors)
        assert "at least 8 characters" in joined
        assert "uppercase" in joined
        assert "number" in joined
        assert "special character" in joined
        assert "lowercase" not in joined

    def test_strong_password_passes(self) -> None:
        result = validate_password_strength("Abcdef1!")
        assert result.is_valid is True
        assert result.errors == []

    def test_all_rules_reported(self) -> None:
        assert len(validate_password_strength("").errors) == 5

    def test_symbol_outside_allowed_set_does_not_count(self) -> None:
        result = validate_password_strength("Abcdefg1_")
        assert result.errors == ["Password must contain at least one special character"]

    def test_longer_than_bcrypt_limit_rejected(self) -> None:
        result = validate_password_strength("Aa1!" + "x" * 80)
        assert result.errors == ["Password must be at most 72 bytes long"]

    def test_limit_counts_utf8_bytes(self) -> None:
        assert validate_password_strength("Aa1!" + "x" * 68).is_valid is True
        assert validate_password_strength("Aa1!" + "\u00e9" * 35).is_valid is False


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------


class TestSanitizeUser:
    def test_dataclass_user_stripped(self) -> None:
        user = User(
            email="a@x.com",
            first_name="A",
            last_name="B",
            role="STUDENT",
            hashed_password=hash_password("Str0ng!pw"),
            referral_code="ABXXXXXX",
            two_factor_enabled=True,
        )
        data = sanitize_user(user)
        assert "hashed_password" not in data
        assert "two_factor_enabled" not in data
        assert data["email"] == "a@x.com"

    @pytest.mark.parametrize(
        "record",
        [
            {"email": "a@x.com", "password": "secret"},
            {"email": "a@x.com", "hashed_password": "h", "two_factor_secret": "s"},
            {"email": "a@x.com", "twoFactorEnabled": True, "twoFactorSecret": "s", "password_hash": "h"},
        ],
    )
    def test_mapping_user_stripped(self, record: dict) -> None:
        data = sanitize_user(record)
        assert not any("password" in key.lower() for key in data)
        assert not any("twofactor" in key.lower().replace("_", "") for key in data)
        assert data["email"] == "a@x.com"

    def test_input_not_mutated(self) -> None:
        record = {"email": "a@x.com", "password": "secret"}
        sanitize_user(record)
        assert record["password"] == "secret"
