import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.core.config import settings
from persona_chat.db.session import get_db
from persona_chat.services.subscriptions import process_event
from persona_chat.utils.errors import InternalError

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["webhooks"])


def _verify_signature(raw_body: bytes, signature_header: str | None) -> None:
    """Check the Stripe-Signature header ('t=<ts>,v1=<hex>') against the endpoint secret."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        log.error("webhook.stripe.missing_secret")
        raise InternalError("Webhook secret not configured")
    if not signature_header:
        log.warning("webhook.stripe.missing_signature_header")
        raise HTTPException(400, {"error": "INVALID_SIGNATURE", "message": "Missing Stripe-Signature"})

    try:
        stripe.WebhookSignature.verify_header(
            raw_body.decode("utf-8"),
            signature_header,
            settings.STRIPE_WEBHOOK_SECRET,
            settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        log.warning("webhook.stripe.invalid_signature err=%s", e)
        raise HTTPException(400, {"error": "INVALID_SIGNATURE", "message": "Invalid signature"})


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    raw = await request.body()
    log.debug("webhook.stripe.receive bytes=%d", len(raw))
    _verify_signature(raw, request.headers.get("stripe-signature"))

    try:
        event = json.loads(raw.decode("utf-8"))
    except ValueError:
        log.warning("webhook.stripe.json_invalid")
        raise HTTPException(400, {"error": "INVALID_PAYLOAD", "message": "Invalid JSON payload"})
    if not isinstance(event, dict):
        raise HTTPException(400, {"error": "INVALID_PAYLOAD", "message": "Invalid event"})

    log.info("webhook.stripe.verified type=%s", event.get("type"))
    try:
        return await process_event(db, event)
    except Exception:
        raise InternalError("Webhook handler failed")
