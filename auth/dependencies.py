"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The AuthenticationGate (auth/middleware.py) has already done the work: it
verified the access cookie and loaded the principal into
request.state.identity. These helpers only read that result.

try_get_identity() is the soft variant (returns None when unauthenticated).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_identity() and raises HTTP 403 if not ADMIN.

auth/dependencies.py may import from fastapi (for HTTPException/Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Identity


def try_get_identity(request: Request) -> Identity | None:
    """Return the identity established by the gate, or None. Never raises."""
    return getattr(request.state, "identity", None)


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return identity


def require_admin(request: Request) -> Identity:
    """Require the ADMIN role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    identity = get_current_identity(request)
    if not identity.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return identity
