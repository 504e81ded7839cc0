"""FastAPI application serving the bltnm landing, shop and dashboard hosts."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException

from bltnm_edge.config import Settings
from bltnm_edge.csrf import CSRFMiddleware, CsrfProtect
from bltnm_edge.errors import ApiError, error_envelope, request_language
from bltnm_edge.logging_config import configure_logging
from bltnm_edge.ratelimit import RateLimiter
from bltnm_edge.routes import auth, pages, webhooks
from bltnm_edge.routing import HostRouter, HostRoutingMiddleware
from bltnm_edge.sessions import build_session_store

logger = logging.getLogger(__name__)

__version__ = "0.1.0"

TEMPLATE_DIR = Path(__file__).parent / "templates"
STATIC_DIR = Path(__file__).parent / "static"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(debug=Settings.DEBUG, json_logs=Settings.LOG_JSON)
    logger.info("bltnm edge starting", extra={"host": Settings.ROOT_DOMAIN})
    store = build_session_store(
        Settings.database_url(),
        max_sessions=Settings.SESSION_MAX,
        idle_timeout=Settings.SESSION_IDLE_TIMEOUT,
    )
    await store.init()
    app.state.sessions = store
    yield
    await store.close()
    logger.info("Session store closed")


def _wants_html(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "text/html" in accept and not request.url.path.startswith("/api")


def create_app() -> FastAPI:
    app = FastAPI(
        title="bltnm edge",
        description="Host routing, CSRF protection and webhooks for the bltnm store",
        version=__version__,
        lifespan=lifespan,
    )

    router = HostRouter.from_settings(Settings)
    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    app.state.settings = Settings
    app.state.router = router
    app.state.templates = templates
    app.state.csrf = CsrfProtect(ttl=Settings.CSRF_TOKEN_TTL)
    app.state.limiter = RateLimiter(
        max_requests=Settings.RATE_LIMIT_MAX,
        window_seconds=Settings.RATE_LIMIT_WINDOW,
        storage_uri=Settings.RATE_LIMIT_STORAGE,
    )

    # Added last runs first: CORS, then host routing, then CSRF
    app.add_middleware(
        CSRFMiddleware,
        cookie_name=Settings.SESSION_COOKIE,
    )
    app.add_middleware(HostRoutingMiddleware, router=router)
    if Settings.ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=Settings.ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
            allow_headers=["*"],
            expose_headers=["x-csrf-token"],
        )

    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc.code, request_language(request)),
            headers=exc.headers,
        )

    # HTML for browsers, JSON for API clients
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if _wants_html(request):
            return templates.TemplateResponse(
                request,
                "error.html",
                {"status_code": exc.status_code, "detail": exc.detail},
                status_code=exc.status_code,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        if _wants_html(request):
            return templates.TemplateResponse(
                request,
                "error.html",
                {"status_code": 500, "detail": "Internal Server Error"},
                status_code=500,
            )
        return JSONResponse(
            status_code=500,
            content=error_envelope("SERVER_ERROR", request_language(request)),
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(auth.router, prefix="/api", tags=["auth"])
    app.include_router(webhooks.router, tags=["webhooks"])
    app.include_router(pages.router, tags=["pages"])

    return app


app = create_app()


def run():
    """Entry point for the bltnm-edge CLI."""
    uvicorn.run(
        "bltnm_edge.app:app",
        host=Settings.HOST,
        port=Settings.PORT,
        reload=Settings.DEBUG,
    )


if __name__ == "__main__":
    run()
