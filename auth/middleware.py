"""
auth/middleware.py -- AuthenticationGate: per-request identity from the access cookie.

Every request leaves this middleware with request.state.identity set to either
an Identity or None. The gate never rejects a request; public routes stay
reachable with a bad or expired cookie, and protected routes reject through
auth.dependencies.get_current_identity().

Per request:
  1. read the access cookie (absent -> unauthenticated)
  2. TokenCodec.verify_as(token, ACCESS)  -- a refresh token is refused here
  3. UserStore.get_by_email(sub)           -- fresh lookup, no caching, so a
                                              role change, block or unverify
                                              applies on the next request
  4. require is_active and email_verified
  5. attach Identity

Token failures are logged with their sub-reason at INFO; anything unexpected
is logged with a traceback and the request still proceeds unauthenticated.
"""

from __future__ import annotations

import logging

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from auth.cookies import CookieTransport
from auth.errors import TokenError
from auth.models import Identity
from auth.store import UserStore
from auth.tokens import TokenCodec, TokenType

logger = logging.getLogger("resumeagent.auth.gate")


def resolve_identity(codec: TokenCodec, users: UserStore, token: str | None) -> Identity | None:
    """Return the Identity for an access token, or None. Raises only on unexpected errors."""
    if not token:
        return None
    try:
        claims = codec.verify_as(token, TokenType.ACCESS)
    except TokenError as exc:
        logger.info("Access token rejected: %s", exc.reason.value)
        return None

    principal = users.get_by_email(claims.subject)
    if principal is None:
        logger.info("Access token rejected: no principal for %s", claims.subject)
        return None
    if not principal.is_active:
        logger.info("Access token rejected: %s is blocked", principal.email)
        return None
    if not principal.email_verified:
        logger.info("Access token rejected: %s is not verified", principal.email)
        return None
    return Identity(principal=principal)


class AuthenticationGate(BaseHTTPMiddleware):
    """Establishes request.state.identity from the access-token cookie.

    The codec, user store and cookie transport are read from app.state on
    each request because they are created in the lifespan, after middleware
    registration.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.identity = None
        state = request.app.state
        codec: TokenCodec | None = getattr(state, "token_codec", None)
        users: UserStore | None = getattr(state, "user_store", None)
        cookies: CookieTransport | None = getattr(state, "cookies", None)

        if codec is not None and users is not None and cookies is not None:
            token = cookies.get_access_token(request)
            if token:
                try:
                    request.state.identity = await run_in_threadpool(resolve_identity, codec, users, token)
                except Exception:
                    logger.exception("Identity lookup failed on %s %s", request.method, request.url.path)
                    request.state.identity = None

        return await call_next(request)
