"""
auth/lifecycle.py -- Start, refresh and end a cookie session.

These functions sit between the HTTP routes and the building blocks
(TokenCodec, SessionStore, UserStore). Routes deal with request/response
objects and cookies; everything here deals only in principals and tokens.

Refresh sequence [R1]:
  1. verify_as(token, REFRESH)         signature, issuer, audience, expiry, type
  2. sessions.validate(token)          record exists, not revoked, not expired
                                       (a replayed rotated token triggers reuse
                                       revocation inside validate)
  3. users.get_by_id(record.user_id)   fresh principal; must still be active and
                                       verified, and its email must be the sub
  4. codec.issue_pair(principal)       new access + refresh token
  5. sessions.rotate(record, ...)      conditional update; None if another
                                       request rotated the same record first

Any failure in 1-5 raises SessionInvalidError. The caller clears cookies and
answers 401 with one generic message.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from starlette.requests import Request

from auth.errors import SessionInvalidError, TokenError
from auth.models import ClientContext, Principal
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenCodec, TokenPair, TokenType

logger = logging.getLogger("resumeagent.auth")


def client_context(request: Request) -> ClientContext:
    """Capture the caller's address and user agent for the session record."""
    return ClientContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def start_session(
    codec: TokenCodec,
    sessions: SessionStore,
    principal: Principal,
    context: ClientContext | None = None,
    max_active: int = 0,
) -> TokenPair:
    """Issue a fresh token pair for an authenticated principal and persist its refresh record."""
    pair = codec.issue_pair(principal)
    sessions.create(principal.id, pair.refresh_token, pair.refresh_claims.expires_at_datetime, context)
    if max_active > 0:
        sessions.enforce_limit(principal.id, max_active)
    logger.info("Session started for %s", principal.email)
    return pair


def refresh_session(
    codec: TokenCodec,
    users: UserStore,
    sessions: SessionStore,
    refresh_token: str | None,
    context: ClientContext | None = None,
) -> tuple[Principal, TokenPair]:
    """Rotate a refresh token. Returns the principal and the new pair.

    Raises SessionInvalidError on every failure path.
    """
    if not refresh_token:
        raise SessionInvalidError()

    try:
        claims = codec.verify_as(refresh_token, TokenType.REFRESH)
    except TokenError as exc:
        logger.warning("Refresh rejected: token %s", exc.reason.value)
        raise SessionInvalidError() from exc

    record = sessions.validate(refresh_token)
    if record is None:
        raise SessionInvalidError()

    principal = users.get_by_id(record.user_id)
    if principal is None or principal.email != claims.subject:
        logger.warning("Refresh rejected: session %d does not match token subject", record.id)
        sessions.revoke(record.id)
        raise SessionInvalidError()
    if not principal.is_active or not principal.email_verified:
        logger.warning("Refresh rejected: %s is blocked or unverified", principal.email)
        sessions.revoke(record.id)
        raise SessionInvalidError()

    pair = codec.issue_pair(principal)
    rotated = sessions.rotate(record, pair.refresh_token, pair.refresh_claims.expires_at_datetime, context)
    if rotated is None:
        raise SessionInvalidError()
    return principal, pair


def end_session(sessions: SessionStore, refresh_token: str | None) -> bool:
    """Revoke the record behind refresh_token if it is active.

    Idempotent: a missing, unknown or already terminal token is not an error.
    Returns True if a record was revoked by this call.
    """
    if not refresh_token:
        return False
    record = sessions.validate(refresh_token)
    if record is None:
        return False
    revoked = sessions.revoke(record.id)
    if revoked:
        logger.info("Session %d ended for user %d", record.id, record.user_id)
    return revoked
