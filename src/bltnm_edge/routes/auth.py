"""Session endpoints: CSRF token lookup and sign-out."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from bltnm_edge.errors import ApiError
from bltnm_edge.ratelimit import rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/csrf-token")
async def csrf_token(request: Request):
    """Current session's CSRF token."""
    return {"csrfToken": request.state.csrf_token}


@router.post("/auth/signout", dependencies=[Depends(rate_limit)])
async def signout(request: Request):
    """Invalidate the session's CSRF token and drop the session."""
    session = request.state.session
    try:
        request.app.state.csrf.invalidate(session)
        await request.app.state.sessions.delete(session.id)
    except Exception as exc:
        logger.exception("Sign-out failed")
        raise ApiError(500, "SIGNOUT_FAILED") from exc

    request.state.csrf_token = None
    response = JSONResponse({"message": "Logout successful"})
    response.delete_cookie(request.app.state.settings.SESSION_COOKIE)
    return response
