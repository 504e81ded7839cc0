"""Polar webhook receiver."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from bltnm_edge.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "polar-signature"


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Compare *signature* with the hex HMAC-SHA256 of *body*."""
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    # Bytes, since str compare_digest rejects non-ASCII input
    provided = signature.encode("utf-8", "surrogatepass")
    return hmac.compare_digest(expected.encode("ascii"), provided)


def handle_event(event: dict[str, Any]) -> str:
    """Log the event and return which branch handled it."""
    event_type = event.get("type")
    data = event.get("data") or {}
    data_id = data.get("id") if isinstance(data, dict) else None

    if event_type == "checkout.completed":
        logger.info("Checkout completed: %s", data_id, extra={"event_type": event_type})
        return "completed"
    if event_type == "checkout.canceled":
        logger.info("Checkout canceled: %s", data_id, extra={"event_type": event_type})
        return "canceled"
    logger.info("Unhandled event type: %s", event_type, extra={"event_type": event_type})
    return "ignored"


@router.post("/api/webhooks/polar")
async def polar_webhook(request: Request):
    """Verify and dispatch a Polar webhook event."""
    try:
        body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            return JSONResponse(status_code=400, content={"error": "No signature"})

        secret = Settings.require_webhook_secret()
        if not verify_signature(secret, body, signature):
            logger.warning("Webhook signature mismatch")
            return JSONResponse(status_code=400, content={"error": "Invalid signature"})

        event = json.loads(body)
        if not isinstance(event, dict):
            raise ValueError("Webhook payload is not an object")
        handle_event(event)
        return {"received": True}
    except Exception:
        logger.exception("Webhook error")
        return JSONResponse(status_code=500, content={"error": "Webhook error"})
