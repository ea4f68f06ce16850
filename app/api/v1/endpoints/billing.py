"""Billing endpoints: hosted checkout and the Stripe webhook."""

import json
import logging
import stripe
from fastapi import APIRouter, Request, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.deps import require_client
from app.core.errors import ValidationFailed
from app.models.user import User
from app.schemas.booking import utc_start
from app.schemas.payment import CheckoutCreate, CheckoutOut
from app.services.billing import create_booking_checkout, create_subscription_checkout
from app.services.reconciliation import handle_gateway_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/create-checkout", response_model=CheckoutOut)
async def create_checkout(
    payload: CheckoutCreate,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Create a Stripe checkout session for a membership or a single paid cut.

    Returns a checkout URL to redirect the user to.
    """
    if not settings.STRIPE_API_KEY:
        raise HTTPException(
            status_code=503,
            detail="Billing is not configured, please contact the shop",
        )

    if payload.plan_id:
        return await create_subscription_checkout(
            db, current_user, payload.plan_id, payload.success_url, payload.cancel_url,
        )

    if not (payload.barber_id and payload.booking_date and payload.start_time):
        raise ValidationFailed("Provide plan_id, or barber_id with booking_date and start_time")

    return await create_booking_checkout(
        db,
        current_user,
        payload.barber_id,
        utc_start(payload.booking_date, payload.start_time),
        payload.channel,
        payload.success_url,
        payload.cancel_url,
    )


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Handle Stripe webhook events.

    The signature is checked here; reconciliation only ever sees the verified payload.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("Stripe webhook secret not configured, skipping verification")
    else:
        if not sig_header:
            logger.error("Missing Stripe signature header")
            raise HTTPException(status_code=400, detail="Missing signature")
        try:
            stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
        except ValueError:
            logger.error("Invalid webhook payload")
            raise HTTPException(status_code=400, detail="Invalid payload")
        except stripe.SignatureVerificationError:
            logger.error("Invalid webhook signature")
            raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        logger.error("Invalid webhook payload")
        raise HTTPException(status_code=400, detail="Invalid payload")

    outcome = await handle_gateway_event(db, event)
    return {"status": "ok", "outcome": outcome}
