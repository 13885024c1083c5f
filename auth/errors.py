"""
auth/errors.py -- Failure taxonomy for the auth subsystem.

Four families, each recovered at a different boundary:

  KeyMaterialError     configuration; fatal at startup, never recovered.
  AuthFailure          credential checks; two generic caller messages only.
  TokenError           signature/claim problems; always "unauthenticated" to
                       the caller, the specific reason goes to the audit log.
  SessionInvalidError  refresh record missing, revoked, expired or lost a
                       rotation race; "please log in again".

ConflictError and PasswordReuseError cover the account-management edges
(duplicate email at insert time, password history hits).

Layer rule: stdlib only.
"""

from __future__ import annotations

from enum import Enum


class KeyMaterialError(RuntimeError):
    """Signing keys are missing, unreadable, malformed or not a matching pair."""


class TokenFailure(str, Enum):
    BAD_SIGNATURE = "bad_signature"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    CLAIM_MISMATCH = "claim_mismatch"  # issuer or audience
    WRONG_TYPE = "wrong_type"


class TokenError(Exception):
    """A token failed verification. `reason` is for audit logs, never for clients."""

    def __init__(self, reason: TokenFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class AuthFailureReason(str, Enum):
    BAD_CREDENTIALS = "bad_credentials"
    EMAIL_NOT_VERIFIED = "email_not_verified"


_AUTH_FAILURE_MESSAGES = {
    AuthFailureReason.BAD_CREDENTIALS: "Invalid email or password.",
    AuthFailureReason.EMAIL_NOT_VERIFIED: "Email not verified. Please check your inbox.",
}


class AuthFailure(Exception):
    """Credential check failed.

    Unknown email, wrong password and blocked account all share
    BAD_CREDENTIALS so the response cannot be used to enumerate accounts.
    """

    def __init__(self, reason: AuthFailureReason) -> None:
        self.reason = reason
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.reason.value

    @property
    def message(self) -> str:
        return _AUTH_FAILURE_MESSAGES[self.reason]


class SessionInvalidError(Exception):
    """The presented refresh token does not map to an active session."""

    code = "session_invalid"
    message = "Session invalid, please log in again."


class ConflictError(Exception):
    """A unique constraint was hit (e.g. the email is already registered)."""


class PasswordReuseError(ValueError):
    """The new password matches one already in the principal's history."""
