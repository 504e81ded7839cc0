"""Session-bound CSRF protection.

Safe requests (GET, HEAD, OPTIONS) get a token issued into the server-side
session and exposed on ``request.state.csrf_token`` and the ``x-csrf-token``
response header. State-changing requests must echo it back in the
``x-csrf-token`` header or in a ``_csrf`` / ``csrf_token`` body field.
Paths under /api/webhooks/ are signed server-to-server calls and are exempt.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from typing import Callable

from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from bltnm_edge.errors import error_details, error_message, request_language
from bltnm_edge.logging_config import request_context
from bltnm_edge.sessions import Session, SessionStore, new_session_id

logger = logging.getLogger(__name__)

CSRF_HEADER = "x-csrf-token"
CSRF_FIELDS = ("_csrf", "csrf_token")
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
EXEMPT_PREFIXES = ("/api/webhooks/",)
ASSET_PREFIXES = ("/static/", "/_next/")
FAVICON = "/favicon.ico"

TOKEN_MISSING = "TOKEN_MISSING"
TOKEN_INVALID = "TOKEN_INVALID"


def is_asset_path(path: str) -> bool:
    """Static files and other dotted paths carry no session state."""
    if path.startswith(ASSET_PREFIXES) or path == FAVICON:
        return True
    return "." in path.rsplit("/", 1)[-1]


def generate_token() -> str:
    """256 random bits, hex encoded."""
    return secrets.token_hex(32)


class CsrfError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


class CsrfProtect:
    """Issues and checks the per-session token.

    ``ttl`` of 0 keeps a token until the session is invalidated; a positive
    value makes older tokens count as expired.
    """

    def __init__(self, ttl: float = 0, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock

    def _expired(self, session: Session) -> bool:
        if self.ttl <= 0 or session.csrf_issued_at is None:
            return False
        return self._clock() - session.csrf_issued_at > self.ttl

    def ensure_token(self, session: Session) -> str:
        if not session.csrf_token or self._expired(session):
            session.csrf_token = generate_token()
            session.csrf_issued_at = self._clock()
            logger.debug("Issued CSRF token", extra={"session_id": session.id[:8]})
        return session.csrf_token

    def validate(self, session: Session, provided: str | None) -> None:
        if not provided:
            raise CsrfError(TOKEN_MISSING)
        stored = session.csrf_token
        if not stored or self._expired(session):
            raise CsrfError(TOKEN_INVALID)
        if not secrets.compare_digest(stored.encode(), provided.encode()):
            raise CsrfError(TOKEN_INVALID)

    def invalidate(self, session: Session) -> None:
        session.csrf_token = None
        session.csrf_issued_at = None


async def submitted_token(request: Request) -> str | None:
    """Token from the header, falling back to a JSON or form body field."""
    token = request.headers.get(CSRF_HEADER)
    if token:
        return token

    content_type = request.headers.get("content-type", "")
    fields: dict = {}
    if "application/json" in content_type:
        try:
            payload = json.loads(await request.body() or b"null")
        except (ValueError, UnicodeDecodeError):
            payload = None
        if isinstance(payload, dict):
            fields = payload
    elif "form" in content_type:
        try:
            fields = dict(await request.form())
        except (HTTPException, MultiPartException):
            fields = {}

    for name in CSRF_FIELDS:
        value = fields.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def csrf_failure(request: Request, code: str) -> JSONResponse:
    language = request_language(request)
    return JSONResponse(
        status_code=403,
        content={
            "message": error_message(code, language),
            "error": error_details(code, language),
            "code": code,
        },
    )


class CSRFMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, cookie_name: str = "sid") -> None:
        super().__init__(app)
        self.cookie_name = cookie_name

    async def _load_session(self, request: Request, store: SessionStore) -> tuple[Session, bool]:
        session_id = request.cookies.get(self.cookie_name)
        if session_id:
            session = await store.get(session_id)
            if session is not None:
                return session, False
        return Session(id=new_session_id()), True

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        method = request.method
        path = request.url.path
        if method in SAFE_METHODS and is_asset_path(path):
            request.state.session = None
            request.state.csrf_token = None
            return await call_next(request)

        store: SessionStore = request.app.state.sessions
        protect: CsrfProtect = request.app.state.csrf

        session, created = await self._load_session(request, store)
        request.state.session = session

        if method in SAFE_METHODS:
            previous = session.csrf_token
            token = protect.ensure_token(session)
            if created or token != previous:
                await store.save(session)
            request.state.csrf_token = token
        else:
            request.state.csrf_token = session.csrf_token
            if not any(path.startswith(p) for p in EXEMPT_PREFIXES):
                provided = await submitted_token(request)
                try:
                    protect.validate(session, provided)
                except CsrfError as exc:
                    logger.warning(
                        "CSRF check failed: %s", exc.code,
                        extra=request_context(request),
                    )
                    return csrf_failure(request, exc.code)

        response = await call_next(request)

        if request.state.csrf_token and CSRF_HEADER not in response.headers:
            response.headers[CSRF_HEADER] = request.state.csrf_token
        if created and method in SAFE_METHODS:
            response.set_cookie(
                self.cookie_name,
                session.id,
                httponly=True,
                samesite="lax",
                secure=request.url.scheme == "https",
            )
        return response
