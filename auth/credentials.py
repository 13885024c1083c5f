"""
auth/credentials.py -- Email/password verification and account credential changes.

Security:
  [C1] authenticate() always runs bcrypt, whether or not the email exists:
       - Unknown email: bcrypt runs against DUMMY_HASH (same cost as a real check)
       - Wrong password: bcrypt runs against the real hash
       Returning early before bcrypt would let an attacker enumerate accounts
       by measuring response time.

  [C2] Unknown email, wrong password and blocked account raise the same
       AuthFailure(BAD_CREDENTIALS). EMAIL_NOT_VERIFIED is only reported
       after the password matched, so it leaks nothing to someone who does
       not already know the password.

  [C3] Password history is append-only. change_password() rejects any new
       password that matches an earlier hash of the same principal.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthFailure, AuthFailureReason, ConflictError, PasswordReuseError
from auth.models import Plan, Principal, Role
from auth.passwords import DUMMY_HASH, hash_password, matches_any, verify_password
from auth.store import UserStore, normalize_email

logger = logging.getLogger("resumeagent.auth")


def authenticate(store: UserStore, email: str, password: str) -> Principal:
    """Return the principal for a correct email/password pair.

    Raises AuthFailure(BAD_CREDENTIALS) or AuthFailure(EMAIL_NOT_VERIFIED).
    Never issues tokens; that is the caller's job.
    """
    principal = store.get_by_email(email)
    if principal is None:
        verify_password(password, DUMMY_HASH)  # [C1]
        logger.info("Login failed for %s: unknown email", normalize_email(email))
        raise AuthFailure(AuthFailureReason.BAD_CREDENTIALS)
    if not verify_password(password, principal.password_hash):
        logger.info("Login failed for %s: wrong password", principal.email)
        raise AuthFailure(AuthFailureReason.BAD_CREDENTIALS)
    if not principal.is_active:
        logger.warning("Login refused for %s: account blocked", principal.email)
        raise AuthFailure(AuthFailureReason.BAD_CREDENTIALS)  # [C2]
    if not principal.email_verified:
        logger.info("Login refused for %s: email not verified", principal.email)
        raise AuthFailure(AuthFailureReason.EMAIL_NOT_VERIFIED)
    return principal


def register(store: UserStore, full_name: str, email: str, password: str) -> Principal:
    """Create an unverified USER on the FREE plan and record its first password.

    Raises ConflictError if the normalized email is already registered.
    """
    password_hash = hash_password(password)
    principal = Principal(
        email=normalize_email(email),
        full_name=full_name.strip(),
        password_hash=password_hash,
        role=Role.USER,
        plan=Plan.FREE,
        email_verified=False,
    )
    try:
        user_id = store.create_user(principal)
    except IntegrityError as exc:
        raise ConflictError("A user with that email already exists.") from exc
    store.add_password_history(user_id, password_hash)
    logger.info("Registered user %d (%s)", user_id, principal.email)
    return store.get_by_id(user_id)


def change_password(store: UserStore, principal: Principal, current_password: str, new_password: str) -> None:
    """Replace the principal's password.

    Raises AuthFailure(BAD_CREDENTIALS) if current_password is wrong and
    PasswordReuseError if new_password matches the current or any earlier hash.
    Revoking the principal's sessions afterwards is the caller's job.
    """
    if not verify_password(current_password, principal.password_hash):
        logger.info("Password change refused for %s: wrong current password", principal.email)
        raise AuthFailure(AuthFailureReason.BAD_CREDENTIALS)

    previous = [entry.password_hash for entry in store.get_password_history(principal.id)]
    if matches_any(new_password, [principal.password_hash, *previous]):  # [C3]
        raise PasswordReuseError("New password must not match a previously used password.")

    new_hash = hash_password(new_password)
    store.update_user(principal.id, password_hash=new_hash)
    store.add_password_history(principal.id, new_hash)
    logger.info("Password changed for user %d", principal.id)
