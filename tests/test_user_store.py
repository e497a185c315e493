"""Unit tests for auth/store.py -- UserStore persistence.

Covers:
- create_account() writes user, role profile and refresh token together
- a failing create_account() leaves nothing behind (single transaction)
- ADMIN users get no profile
- email/phone lookups, last_login stamping, password update with revocation
- deleting a user cascades to profiles and refresh tokens
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from auth.models import RefreshToken, User
from auth.store import UserStore
from tests.conftest import refresh_tokens_of


def _user(email: str = "a@x.com", role: str = "STUDENT", phone: str | None = None, code: str = "AB123456") -> User:
    return User(
        email=email,
        phone=phone,
        first_name="Ada",
        last_name="Byron",
        role=role,
        hashed_password="$2b$12$placeholder",
        referral_code=code,
    )


def _token(user: User, token: str = "tok-1", days: int = 30) -> RefreshToken:
    expires = datetime.now(timezone.utc) + timedelta(days=days)
    return RefreshToken(token=token, user_id=user.id, expires_at=expires.isoformat())


class TestCreateAccount:
    @pytest.mark.parametrize("role", ["STUDENT", "TEACHER", "PARENT"])
    def test_creates_user_profile_and_token(self, store: UserStore, role: str) -> None:
        user = _user(role=role)
        store.create_account(user, _token(user))

        fetched = store.get_by_id(user.id)
        assert fetched is not None
        assert fetched.email == "a@x.com"
        assert fetched.role == role
        assert fetched.is_active is True
        assert fetched.is_email_verified is False
        assert fetched.created_at

        profile = store.get_profile(user.id, role)
        assert profile is not None
        assert profile.user_id == user.id
        assert profile.role == role

        assert store.get_refresh_token("tok-1").user_id == user.id

    def test_admin_has_no_profile(self, store: UserStore) -> None:
        user = _user(role="ADMIN")
        store.create_account(user, _token(user))
        assert store.get_profile(user.id, "ADMIN") is None

    def test_profile_only_for_own_role(self, store: UserStore) -> None:
        user = _user(role="TEACHER")
        store.create_account(user, _token(user))
        assert store.get_profile(user.id, "STUDENT") is None

    def test_duplicate_email_rolls_back_everything(self, store: UserStore) -> None:
        first = _user(code="AB000001")
        store.create_account(first, _token(first, "tok-first"))

        second = _user(code="AB000002")  # same email, new id
        with pytest.raises(IntegrityError):
            store.create_account(second, _token(second, "tok-second"))

        assert store.get_by_id(second.id) is None
        assert store.get_refresh_token("tok-second") is None

    def test_duplicate_referral_code_rejected(self, store: UserStore) -> None:
        first = _user(email="one@x.com", code="SAME0001")
        store.create_account(first, _token(first, "tok-a"))
        second = _user(email="two@x.com", code="SAME0001")
        with pytest.raises(IntegrityError):
            store.create_account(second, _token(second, "tok-b"))

    def test_multiple_users_without_phone_allowed(self, store: UserStore) -> None:
        a = _user(email="one@x.com", code="AB000001")
        b = _user(email="two@x.com", code="AB000002")
        store.create_account(a, _token(a, "tok-a"))
        store.create_account(b, _token(b, "tok-b"))
        assert store.get_by_email("two@x.com").id == b.id


class TestLookups:
    def test_find_by_email_or_phone(self, store: UserStore) -> None:
        user = _user(phone="+15550001")
        store.create_account(user, _token(user))
        assert store.find_by_email_or_phone("a@x.com").id == user.id
        assert store.find_by_email_or_phone("other@x.com", "+15550001").id == user.id
        assert store.find_by_email_or_phone("other@x.com", "+15559999") is None
        assert store.find_by_email_or_phone("other@x.com") is None

    def test_get_by_email_missing(self, store: UserStore) -> None:
        assert store.get_by_email("nobody@x.com") is None

    def test_ping(self, store: UserStore) -> None:
        assert store.ping() is True


class TestMutations:
    def test_record_login_stamps_last_login_and_adds_token(self, store: UserStore) -> None:
        user = _user()
        store.create_account(user, _token(user, "tok-1"))
        assert store.get_by_id(user.id).last_login is None

        store.record_login(user.id, _token(user, "tok-2"))

        assert store.get_by_id(user.id).last_login
        assert refresh_tokens_of(store, user.id) == ["tok-1", "tok-2"]

    def test_mark_email_verified(self, store: UserStore) -> None:
        user = _user()
        store.create_account(user, _token(user))
        assert store.mark_email_verified(user.id) is True
        assert store.get_by_id(user.id).is_email_verified is True

    def test_update_user_unknown_id(self, store: UserStore) -> None:
        assert store.update_user("no-such-id", is_active=False) is False

    def test_update_password_without_revocation(self, store: UserStore) -> None:
        user = _user()
        store.create_account(user, _token(user))
        assert store.update_password(user.id, "new-hash") == 0
        assert store.get_by_id(user.id).hashed_password == "new-hash"
        assert refresh_tokens_of(store, user.id) == ["tok-1"]

    def test_update_password_with_revocation(self, store: UserStore) -> None:
        user = _user()
        store.create_account(user, _token(user, "tok-1"))
        store.record_login(user.id, _token(user, "tok-2"))
        assert store.update_password(user.id, "new-hash", revoke_sessions=True) == 2
        assert refresh_tokens_of(store, user.id) == []

    def test_delete_refresh_tokens(self, store: UserStore) -> None:
        user = _user()
        store.create_account(user, _token(user, "tok-1"))
        store.record_login(user.id, _token(user, "tok-2"))
        assert store.delete_refresh_tokens(user.id) == 2
        assert store.get_refresh_token("tok-1") is None


class TestCascade:
    def test_deleting_user_removes_profile_and_tokens(self, store: UserStore) -> None:
        user = _user()
        store.create_account(user, _token(user, "tok-1"))

        with store.engine.begin() as conn:
            conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user.id})

        assert store.get_profile(user.id, "STUDENT") is None
        assert store.get_refresh_token("tok-1") is None
