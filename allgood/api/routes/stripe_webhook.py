import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from allgood.api.deps import get_app_context
from allgood.core.config import settings
from allgood.core.context import AppContext
from allgood.db.session import get_async_db
from allgood.services.webhook_service import process_event, record_event, save_outcome

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    ctx: AppContext = Depends(get_app_context),
):
    body = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Webhook Error: missing Stripe-Signature header")

    try:
        payload = body.decode("utf-8")
        stripe.WebhookSignature.verify_header(payload, sig_header, settings.stripe_webhook_secret)
        event = json.loads(payload)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.error("[WEBHOOK] Signature verification failed: %s", e)
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")

    logger.info("[WEBHOOK] Verified %s (%s)", event.get("type"), event.get("id"))

    # Insert the idempotency record first; a duplicate delivery stops here
    if not await record_event(db, event):
        return {"received": True, "duplicate": True}

    outcome = await run_in_threadpool(process_event, event, ctx, settings)
    await save_outcome(db, outcome)
    logger.info("[WEBHOOK] %s done: actions=%s errors=%d", outcome.event_id, outcome.actions, len(outcome.errors))

    return {"received": True}
