"""
api/routes/v1/auth.py -- Login, refresh, logout and account session endpoints.

Routes:
  POST   /api/v1/auth/login      -- email/password login; sets both cookies
  POST   /api/v1/auth/refresh    -- rotate the refresh cookie; re-sets both cookies
  POST   /api/v1/auth/logout     -- revoke the current refresh session; clears cookies
  GET    /api/v1/auth/me         -- current principal (requires auth)
  POST   /api/v1/auth/register   -- self-registration; creates an unverified account
  POST   /api/v1/auth/password   -- change password; revokes every session (requires auth)
  GET    /api/v1/auth/sessions   -- list the caller's active sessions (requires auth)
  DELETE /api/v1/auth/sessions   -- revoke all of the caller's sessions (requires auth)

Security:
  [H2] POST /login and POST /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] credentials.authenticate() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that sets or clears cookies.
  [T1] Tokens only ever travel in cookies. Response bodies carry a message and
       the email, nothing else.
  [R3] A failed refresh clears both cookies so the browser stops replaying a
       dead session.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    LoginRequest,
    MeResponse,
    MessageResponse,
    PasswordChangeRequest,
    RegisterRequest,
    RevokedResponse,
    SessionResponse,
)
from auth.cookies import CookieTransport
from auth.credentials import authenticate, change_password, register
from auth.dependencies import get_current_identity
from auth.errors import AuthFailure, ConflictError, PasswordReuseError, SessionInvalidError
from auth.lifecycle import client_context, end_session, refresh_session, start_session
from auth.models import Identity
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

logger = logging.getLogger("resumeagent.api")

# Auth policy:
# - POST   /api/v1/auth/login:     public -- login endpoint must be unauthenticated
# - POST   /api/v1/auth/refresh:   refresh cookie only, no access token needed
# - POST   /api/v1/auth/logout:    public -- clearing cookies needs no prior auth
# - POST   /api/v1/auth/register:  public unless SELF_REGISTRATION_ENABLED=false
# - GET    /api/v1/auth/me:        requires auth (get_current_identity)
# - POST   /api/v1/auth/password:  requires auth (get_current_identity)
# - GET    /api/v1/auth/sessions:  requires auth (get_current_identity)
# - DELETE /api/v1/auth/sessions:  requires auth (get_current_identity)
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=MessageResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the access and refresh cookies.

    Unknown email, wrong password and blocked account share one error
    ("bad_credentials"). An unverified account gets "email_not_verified",
    but only after the password matched. Failures set no cookies and create
    no session record.
    """
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store
    codec: TokenCodec = request.app.state.token_codec
    cookies: CookieTransport = request.app.state.cookies

    try:
        principal = authenticate(user_store, body.email, body.password)  # [C1]
    except AuthFailure as exc:
        return _no_store(_error(401, exc.code, exc.message))

    pair = start_session(
        codec,
        sessions,
        principal,
        client_context(request),
        max_active=get_settings().max_active_sessions,
    )
    resp = JSONResponse(
        status_code=200,
        content=MessageResponse(message="Login successful", email=principal.email).model_dump(),
    )
    cookies.set_token_pair(resp, pair)  # [T1]
    return _no_store(resp)


@router.post("/auth/refresh", response_model=MessageResponse)
def refresh(request: Request) -> JSONResponse:
    """Rotate the refresh cookie and issue a new access cookie.

    Takes no body: the refresh cookie is the only input. The old refresh
    token is retired atomically; replaying it later revokes the whole chain.
    """
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store
    codec: TokenCodec = request.app.state.token_codec
    cookies: CookieTransport = request.app.state.cookies

    try:
        principal, pair = refresh_session(
            codec,
            user_store,
            sessions,
            cookies.get_refresh_token(request),
            client_context(request),
        )
    except SessionInvalidError as exc:
        resp = _error(401, exc.code, exc.message)
        cookies.clear(resp)  # [R3]
        return _no_store(resp)

    resp = JSONResponse(
        status_code=200,
        content=MessageResponse(message="Token refreshed", email=principal.email).model_dump(),
    )
    cookies.set_token_pair(resp, pair)
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
@router.post("/auth/refresh/logout", response_model=MessageResponse, include_in_schema=False)
def logout(request: Request) -> JSONResponse:
    """Revoke the current refresh session if there is one, and clear both cookies.

    Idempotent: a missing or unknown refresh cookie still returns 200.
    Browsers only attach the refresh cookie under REFRESH_COOKIE_PATH, so the
    same handler is also mounted below it; a browser client that wants its
    session revoked server-side posts to /auth/refresh/logout.
    """
    sessions: SessionStore = request.app.state.session_store
    cookies: CookieTransport = request.app.state.cookies

    end_session(sessions, cookies.get_refresh_token(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    cookies.clear(resp)
    return _no_store(resp)


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/register", response_model=MessageResponse, status_code=201)
def register_account(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an unverified account on the FREE plan.

    No cookies are set: the account cannot log in until its email is verified.
    """
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    user_store: UserStore = request.app.state.user_store
    try:
        principal = register(user_store, body.full_name, body.email, body.password)
    except ConflictError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that email already exists."},
        ) from exc
    return _no_store(
        JSONResponse(
            status_code=201,
            content=MessageResponse(
                message="Registration successful. Please verify your email.",
                email=principal.email,
            ).model_dump(),
        )
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return the currently authenticated principal."""
    principal = identity.principal
    return MeResponse(
        id=principal.id,
        email=principal.email,
        full_name=principal.full_name,
        role=principal.role.value,
        email_verified=principal.email_verified,
        plan=principal.plan.value,
        resume_generation_limit=principal.resume_generation_limit,
        resume_generation_used=principal.resume_generation_used,
    )


@router.post("/auth/password", response_model=MessageResponse)
def update_password(
    request: Request,
    body: PasswordChangeRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Change the caller's password, revoke every session and clear cookies.

    The caller must log in again with the new password.
    """
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store
    cookies: CookieTransport = request.app.state.cookies

    try:
        change_password(user_store, identity.principal, body.current_password, body.new_password)
    except AuthFailure as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_current_password", "message": "Current password is incorrect."},
        ) from exc
    except PasswordReuseError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "password_reused", "message": str(exc)},
        ) from exc

    sessions.revoke_all(identity.user_id)
    resp = JSONResponse(
        content=MessageResponse(
            message="Password changed. Please log in again.",
            email=identity.email,
        ).model_dump()
    )
    cookies.clear(resp)
    return _no_store(resp)


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> list[SessionResponse]:
    """List the caller's active refresh sessions, newest first. Token hashes are never returned."""
    sessions: SessionStore = request.app.state.session_store
    return [
        SessionResponse(
            id=r.id,
            created_at=r.created_at,
            expires_at=r.expires_at,
            last_used_at=r.last_used_at,
            ip_address=r.ip_address,
            user_agent=r.user_agent,
        )
        for r in sessions.list_active(identity.user_id)
    ]


@router.delete("/auth/sessions", response_model=RevokedResponse)
def revoke_sessions(
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Log out everywhere: revoke every session of the caller and clear cookies."""
    sessions: SessionStore = request.app.state.session_store
    cookies: CookieTransport = request.app.state.cookies

    revoked = sessions.revoke_all(identity.user_id)
    logger.info("User %d revoked all sessions (%d)", identity.user_id, revoked)
    resp = JSONResponse(content=RevokedResponse(revoked=revoked).model_dump())
    cookies.clear(resp)
    return _no_store(resp)
