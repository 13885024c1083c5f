"""
tests/test_credentials.py -- Unit tests for credential verification and password changes.

Coverage:
  - authenticate(): success, case-insensitive email
  - unknown email, wrong password and blocked account share BAD_CREDENTIALS
  - EMAIL_NOT_VERIFIED only after the password matched
  - register(): unverified USER on FREE, first history entry, duplicate -> ConflictError
  - change_password(): wrong current password, reuse of current or earlier password
  - password hashing: the 72-byte bcrypt bound counts UTF-8 bytes, whitespace is kept
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from auth.credentials import authenticate, change_password, register
from auth.errors import AuthFailure, AuthFailureReason, ConflictError, PasswordReuseError
from auth.models import Plan, Principal, Role
from auth.passwords import MAX_PASSWORD_BYTES, fits_bcrypt, hash_password, verify_password
from auth.store import UserStore


class TestAuthenticate:
    def test_success(self, user_store: UserStore, make_user: Callable[..., Principal], password: str) -> None:
        created = make_user()
        principal = authenticate(user_store, "alice@example.com", password)
        assert principal.id == created.id

    def test_email_is_case_insensitive(
        self, user_store: UserStore, make_user: Callable[..., Principal], password: str
    ) -> None:
        make_user()
        assert authenticate(user_store, "  Alice@Example.COM ", password).email == "alice@example.com"

    def test_unknown_email(self, user_store: UserStore, password: str) -> None:
        with pytest.raises(AuthFailure) as exc_info:
            authenticate(user_store, "ghost@example.com", password)
        assert exc_info.value.reason == AuthFailureReason.BAD_CREDENTIALS

    def test_wrong_password(self, user_store: UserStore, make_user: Callable[..., Principal]) -> None:
        make_user()
        with pytest.raises(AuthFailure) as exc_info:
            authenticate(user_store, "alice@example.com", "not-the-password")
        assert exc_info.value.reason == AuthFailureReason.BAD_CREDENTIALS

    def test_blocked_account_looks_like_bad_credentials(
        self, user_store: UserStore, make_user: Callable[..., Principal], password: str
    ) -> None:
        make_user(active=False)
        with pytest.raises(AuthFailure) as exc_info:
            authenticate(user_store, "alice@example.com", password)
        assert exc_info.value.reason == AuthFailureReason.BAD_CREDENTIALS
        assert exc_info.value.message == "Invalid email or password."

    def test_unverified_with_correct_password(
        self, user_store: UserStore, make_user: Callable[..., Principal], password: str
    ) -> None:
        make_user(verified=False)
        with pytest.raises(AuthFailure) as exc_info:
            authenticate(user_store, "alice@example.com", password)
        assert exc_info.value.reason == AuthFailureReason.EMAIL_NOT_VERIFIED
        assert "verif" in exc_info.value.message.lower()

    def test_unverified_with_wrong_password_reveals_nothing(
        self, user_store: UserStore, make_user: Callable[..., Principal]
    ) -> None:
        make_user(verified=False)
        with pytest.raises(AuthFailure) as exc_info:
            authenticate(user_store, "alice@example.com", "not-the-password")
        assert exc_info.value.reason == AuthFailureReason.BAD_CREDENTIALS


class TestRegister:
    def test_creates_unverified_free_user(self, user_store: UserStore) -> None:
        principal = register(user_store, " New Person ", "New@Example.com", "a-long-password")
        assert principal.email == "new@example.com"
        assert principal.full_name == "New Person"
        assert principal.role == Role.USER
        assert principal.plan == Plan.FREE
        assert principal.email_verified is False
        assert principal.resume_generation_limit == 5
        assert principal.resume_generation_used == 0
        history = user_store.get_password_history(principal.id)
        assert len(history) == 1
        assert history[0].password_hash == principal.password_hash

    def test_duplicate_email_conflicts(self, user_store: UserStore) -> None:
        register(user_store, "One", "dup@example.com", "a-long-password")
        with pytest.raises(ConflictError):
            register(user_store, "Two", "DUP@example.com", "another-password")


class TestChangePassword:
    def test_success(self, user_store: UserStore, make_user: Callable[..., Principal], password: str) -> None:
        principal = make_user()
        change_password(user_store, principal, password, "brand-new-password")
        updated = user_store.get_by_id(principal.id)
        assert verify_password("brand-new-password", updated.password_hash)
        assert len(user_store.get_password_history(principal.id)) == 2

    def test_wrong_current_password(self, user_store: UserStore, make_user: Callable[..., Principal]) -> None:
        principal = make_user()
        with pytest.raises(AuthFailure):
            change_password(user_store, principal, "not-the-password", "brand-new-password")

    def test_reusing_current_password_rejected(
        self, user_store: UserStore, make_user: Callable[..., Principal], password: str
    ) -> None:
        principal = make_user()
        with pytest.raises(PasswordReuseError):
            change_password(user_store, principal, password, password)

    def test_reusing_earlier_password_rejected(
        self, user_store: UserStore, make_user: Callable[..., Principal], password: str
    ) -> None:
        principal = make_user()
        change_password(user_store, principal, password, "second-password")
        principal = user_store.get_by_id(principal.id)
        with pytest.raises(PasswordReuseError):
            change_password(user_store, principal, "second-password", password)


class TestPasswordHashing:
    def test_bound_counts_bytes_not_characters(self) -> None:
        assert fits_bcrypt("a" * MAX_PASSWORD_BYTES)
        assert fits_bcrypt("é" * 36)
        assert not fits_bcrypt("é" * 37)

    def test_over_long_password_rejected_before_bcrypt(self) -> None:
        with pytest.raises(ValueError):
            hash_password("é" * 40)

    def test_over_long_password_never_verifies(self) -> None:
        assert verify_password("é" * 40, hash_password("é" * 36)) is False

    def test_surrounding_whitespace_is_significant(self) -> None:
        hashed = hash_password("  padded-password  ")
        assert verify_password("  padded-password  ", hashed)
        assert not verify_password("padded-password", hashed)

    def test_padded_password_round_trips_through_change(
        self, user_store: UserStore, make_user: Callable[..., Principal], password: str
    ) -> None:
        principal = make_user()
        change_password(user_store, principal, password, "  padded-new-password  ")
        assert authenticate(user_store, principal.email, "  padded-new-password  ").id == principal.id
