"""Logging setup: JSON lines in production, plain text for local runs.

Edge components attach the request's host, method and path to their log
records through :func:`request_context` so a single line shows which
sub-application a rejection or redirect belongs to.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from starlette.requests import HTTPConnection

SERVICE = "bltnm-edge"
CONTEXT_FIELDS = ("host", "method", "path", "session_id", "event_type")
PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def request_context(request: HTTPConnection) -> dict[str, str]:
    """Log ``extra`` describing where *request* was sent."""
    context = {
        "host": request.headers.get("host", ""),
        "path": request.url.path,
    }
    method = request.scope.get("method")
    if method:
        context["method"] = method
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per record, carrying any request context fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": SERVICE,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({
            field: getattr(record, field)
            for field in CONTEXT_FIELDS
            if hasattr(record, field)
        })
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(*, debug: bool = False, json_logs: bool = True) -> None:
    """Route every logger to stdout through a single handler."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_logs else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
