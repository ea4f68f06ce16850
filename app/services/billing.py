"""Stripe billing service: hosted checkout sessions and gateway lookups."""

import logging
import stripe
from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import Internal, NotFound, SlotConflict, TierMismatch, ValidationFailed
from app.models.appointment import AppointmentKind, ServiceChannel
from app.models.plan import Plan
from app.models.user import User
from app.services.entitlement import SecondDiscount, OneOff, resolve_entitlement
from app.services.payment_intents import price_for
from app.services.slots import appointment_window, is_slot_free, is_within_working_hours

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_API_KEY


def retrieve_subscription(subscription_id: str) -> Optional[dict]:
    """Fetch a gateway subscription and flatten the fields reconciliation reads.

    Returns None when Stripe is not configured. Gateway errors propagate so
    a webhook that needs the lookup fails and gets redelivered.
    """
    if not settings.STRIPE_API_KEY:
        logger.warning("Stripe not configured, cannot retrieve subscription %s", subscription_id)
        return None

    try:
        sub = stripe.Subscription.retrieve(subscription_id)
    except stripe.StripeError as e:
        logger.error("Stripe error retrieving subscription %s: %s", subscription_id, e)
        raise

    items = sub["items"]["data"]
    # Newer API versions report the billing period on the item
    period = items[0] if items and "current_period_end" in items[0] else sub
    return {
        "id": sub["id"],
        "status": sub["status"],
        "price_id": items[0]["price"]["id"] if items else None,
        "current_period_start": period["current_period_start"] if "current_period_start" in period else None,
        "current_period_end": period["current_period_end"] if "current_period_end" in period else None,
    }


async def create_subscription_checkout(
    db: AsyncSession,
    client: User,
    plan_id: UUID,
    success_url: str,
    cancel_url: str,
) -> dict:
    """Hosted checkout for a membership plan."""
    result = await db.execute(select(Plan).where(Plan.id == plan_id, Plan.is_active.is_(True)))
    plan = result.scalar_one_or_none()
    if not plan:
        raise NotFound("Plan not found")
    if not plan.gateway_price_id:
        raise ValidationFailed(f"Plan {plan.name} is not available for online checkout")

    metadata = {"user_id": str(client.id), "plan_id": str(plan.id)}
    try:
        session = stripe.checkout.Session.create(
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": plan.gateway_price_id, "quantity": 1}],
            customer_email=client.email,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
    except stripe.StripeError as e:
        logger.error("Stripe error creating subscription checkout for user %s: %s", client.id, e)
        raise Internal("Failed to create checkout session") from e

    logger.info("Created subscription checkout %s for user %s plan %s", session.id, client.id, plan.name)
    return {"checkout_url": session.url, "session_id": session.id}


async def create_booking_checkout(
    db: AsyncSession,
    client: User,
    barber_id: UUID,
    start_at: datetime,
    channel: ServiceChannel,
    success_url: str,
    cancel_url: str,
    now: Optional[datetime] = None,
) -> dict:
    """Hosted checkout for a single paid cut.

    The price is derived here from the client's current tier and is derived
    again when the completed checkout is reconciled.
    """
    now = now or datetime.utcnow()
    if start_at <= now:
        raise ValidationFailed("Appointments must start in the future")

    tier = await resolve_entitlement(db, client.id, now)
    if not isinstance(tier, (SecondDiscount, OneOff)):
        raise TierMismatch(f"Your account qualifies for {tier.kind.value}; no payment is needed")
    kind = tier.kind
    amount = price_for(kind, channel)

    slot_start, slot_end = appointment_window(start_at)
    if not await is_within_working_hours(db, barber_id, slot_start, slot_end):
        raise ValidationFailed("The barber is not working at that time")
    if not await is_slot_free(db, barber_id, slot_start, slot_end, now=now):
        raise SlotConflict()

    metadata = {
        "user_id": str(client.id),
        "customer_email": client.email,
        "customer_name": client.name or "",
        "barber_id": str(barber_id),
        "start_at": slot_start.isoformat(),
        "channel": channel.value,
        "kind": kind.value,
    }
    label = "Second cut" if kind == AppointmentKind.DISCOUNT_SECOND else f"{channel.value.title()} cut"
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": "usd",
                    "unit_amount": amount,
                    "product_data": {"name": f"LaFade {label}"},
                },
                "quantity": 1,
            }],
            customer_email=client.email,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
    except stripe.StripeError as e:
        logger.error("Stripe error creating booking checkout for user %s: %s", client.id, e)
        raise Internal("Failed to create checkout session") from e

    logger.info("Created booking checkout %s for user %s (%s, %d cents)", session.id, client.id, kind.value, amount)
    return {"checkout_url": session.url, "session_id": session.id}
