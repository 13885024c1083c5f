"""
api/routes/v1/admin.py -- Administrative incident-response endpoints.

Routes:
  POST /api/v1/admin/users/{user_id}/revoke-sessions -- revoke every refresh
       session of one principal (admin only)

Access tokens already issued to that principal stay valid until they expire
(ACCESS_TOKEN_TTL_SECONDS). To cut access immediately, block the account as
well: the AuthenticationGate re-reads is_active on every request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import RevokedResponse
from auth.dependencies import require_admin
from auth.models import Identity
from auth.sessions import SessionStore
from auth.store import UserStore

logger = logging.getLogger("resumeagent.api")

# Auth policy:
# - POST /api/v1/admin/users/{user_id}/revoke-sessions: requires admin (require_admin)
router = APIRouter()


@router.post("/admin/users/{user_id}/revoke-sessions", response_model=RevokedResponse)
def revoke_user_sessions(
    request: Request,
    user_id: int,
    admin: Identity = Depends(require_admin),
) -> RevokedResponse:
    """Force a principal to log in again on every device. Admin only."""
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store

    if user_store.get_by_id(user_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    revoked = sessions.revoke_all(user_id)
    logger.warning("Admin %s revoked %d session(s) of user %d", admin.email, revoked, user_id)
    return RevokedResponse(revoked=revoked)
