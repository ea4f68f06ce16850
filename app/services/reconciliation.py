"""Payment gateway reconciliation.

Turns Stripe webhook events into local subscription, appointment, payment and
points state. Delivery is at-least-once, so every handler checks for its own
prior effect before writing:

- subscriptions are upserted by gateway subscription id
- payments are keyed by the gateway payment/invoice id
- bonus credits go through the idempotent ledger credit
- one-time bookings carry an idempotency key derived from the checkout session

Events that reference data we can never resolve (unknown plan, unknown
subscription, malformed metadata) are logged and acknowledged. Anything else
propagates so the gateway redelivers.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import transaction
from app.models.appointment import (
    Appointment,
    AppointmentKind,
    AppointmentStatus,
    PaymentChannel,
    PaymentStatus,
    ServiceChannel,
)
from app.models.event_log import EventLog
from app.models.payment import Payment, PaymentKind
from app.models.plan import Plan
from app.models.points_ledger import PointsReason, PointsRefType
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.user import User, Role
from app.services import billing, points
from app.services.booking import insert_appointment
from app.services.entitlement import SecondDiscount, resolve_entitlement
from app.services.idempotency import checkout_key, find_existing, normalize_identity
from app.services.payment_intents import price_for
from app.services.slots import appointment_window, has_client_duplicate, is_slot_free

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"

DEFAULT_PERIOD = timedelta(days=30)

GATEWAY_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIAL,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def map_gateway_status(status: Optional[str]) -> SubscriptionStatus:
    return GATEWAY_STATUS_MAP.get(status or "", SubscriptionStatus.ACTIVE)


def from_timestamp(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.utcfromtimestamp(int(value))


def _parse_uuid(value) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _customer_email(obj: dict) -> Optional[str]:
    details = obj.get("customer_details") or {}
    metadata = obj.get("metadata") or {}
    email = details.get("email") or obj.get("customer_email") or metadata.get("customer_email")
    return normalize_identity(email) if email else None


async def _log_event(db: AsyncSession, event_type: str, payload: dict) -> None:
    db.add(EventLog(type=event_type, payload=payload))
    await db.flush()


async def resolve_user(
    db: AsyncSession,
    user_id: Optional[UUID],
    email: Optional[str],
    name: Optional[str] = None,
) -> Optional[User]:
    """Account for a paying customer: by id, then by email, else created."""
    if user_id:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user:
            return user

    if not email:
        return None

    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(email=email, name=name or None, role=Role.CLIENT, is_active=True)
    db.add(user)
    await db.flush()
    logger.info("Created client account %s for %s from checkout", user.id, email)
    return user


async def _resolve_plan(db: AsyncSession, plan_id: Optional[UUID], price_id: Optional[str]) -> Optional[Plan]:
    if plan_id:
        result = await db.execute(select(Plan).where(Plan.id == plan_id))
        plan = result.scalar_one_or_none()
        if plan:
            return plan
    if price_id:
        result = await db.execute(select(Plan).where(Plan.gateway_price_id == price_id))
        return result.scalar_one_or_none()
    return None


async def _lock_barber(db: AsyncSession, barber_id: UUID) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == barber_id).with_for_update())
    return result.scalar_one_or_none()


async def _get_subscription(db: AsyncSession, gateway_subscription_id: str) -> Optional[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.gateway_subscription_id == gateway_subscription_id)
        .with_for_update(of=Subscription)
    )
    return result.scalars().first()


async def _record_payment(
    db: AsyncSession,
    user_id: UUID,
    gateway_payment_id: str,
    amount_cents: int,
    kind: PaymentKind,
) -> bool:
    """Insert the payment once; returns False if it was already recorded."""
    result = await db.execute(select(Payment).where(Payment.gateway_payment_id == gateway_payment_id))
    if result.scalar_one_or_none():
        return False
    db.add(Payment(
        user_id=user_id,
        gateway_payment_id=gateway_payment_id,
        amount_cents=amount_cents,
        kind=kind,
    ))
    await db.flush()
    return True


async def handle_subscription_checkout(db: AsyncSession, session: dict, now: datetime) -> str:
    gateway_sub_id = session.get("subscription")
    metadata = session.get("metadata") or {}
    if not gateway_sub_id:
        logger.warning("Subscription checkout %s has no subscription reference", session.get("id"))
        return IGNORED

    user = await resolve_user(
        db,
        _parse_uuid(metadata.get("user_id")),
        _customer_email(session),
        (session.get("customer_details") or {}).get("name"),
    )
    if not user:
        logger.warning("Subscription checkout %s has no resolvable customer", session.get("id"))
        return IGNORED

    gateway_sub = None
    plan = await _resolve_plan(db, _parse_uuid(metadata.get("plan_id")), None)
    if not plan:
        gateway_sub = billing.retrieve_subscription(gateway_sub_id)
        plan = await _resolve_plan(db, None, gateway_sub["price_id"] if gateway_sub else None)
    if not plan:
        logger.error("No plan matches subscription checkout %s (subscription %s)", session.get("id"), gateway_sub_id)
        return IGNORED

    status = SubscriptionStatus.ACTIVE
    period_start, renews_at = now, now + DEFAULT_PERIOD
    if gateway_sub:
        status = map_gateway_status(gateway_sub["status"])
        period_start = from_timestamp(gateway_sub["current_period_start"]) or period_start
        renews_at = from_timestamp(gateway_sub["current_period_end"]) or renews_at

    subscription = await _get_subscription(db, gateway_sub_id)
    if subscription:
        subscription.user_id = user.id
        subscription.plan_id = plan.id
        if subscription.status != SubscriptionStatus.CANCELED:
            subscription.status = status
        logger.info("Updated subscription %s for user %s (plan %s)", gateway_sub_id, user.id, plan.name)
    else:
        subscription = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            gateway_subscription_id=gateway_sub_id,
            status=status,
            current_period_start=period_start,
            renews_at=renews_at,
        )
        db.add(subscription)
        logger.info("Created subscription %s for user %s (plan %s)", gateway_sub_id, user.id, plan.name)
    await db.flush()

    await _record_payment(
        db, user.id, session.get("id"), session.get("amount_total") or plan.price_monthly_cents,
        PaymentKind.SUBSCRIPTION,
    )
    await points.credit(
        db,
        user.id,
        settings.SUBSCRIBE_BONUS_POINTS,
        reason=PointsReason.SUBSCRIBE_INIT.value,
        ref_type=PointsRefType.SUBSCRIPTION.value,
        ref_id=gateway_sub_id,
        idempotent=True,
    )
    await _log_event(db, "subscription.created", {
        "user_id": str(user.id),
        "plan_id": str(plan.id),
        "gateway_subscription_id": gateway_sub_id,
    })
    return PROCESSED


def _booking_kind(requested: Optional[str], tier) -> AppointmentKind:
    """Only a client still inside the second-cut window gets the discounted kind."""
    if requested == AppointmentKind.DISCOUNT_SECOND.value and isinstance(tier, SecondDiscount):
        return AppointmentKind.DISCOUNT_SECOND
    return AppointmentKind.ONE_OFF


async def handle_booking_checkout(db: AsyncSession, session: dict, now: datetime) -> str:
    session_id = session.get("id")
    metadata = session.get("metadata") or {}
    key = checkout_key(session_id)

    # A canceled appointment still means this checkout was already fulfilled
    existing = await find_existing(db, key, include_canceled=True)
    if existing:
        logger.info("Checkout %s already produced appointment %s", session_id, existing.id)
        return DUPLICATE

    barber_id = _parse_uuid(metadata.get("barber_id"))
    try:
        start_at = datetime.fromisoformat(metadata.get("start_at") or "")
        channel = ServiceChannel(metadata.get("channel") or ServiceChannel.SHOP.value)
    except ValueError:
        logger.error("Checkout %s carries malformed booking metadata: %s", session_id, dict(metadata))
        return IGNORED
    if start_at.tzinfo is not None:
        start_at = start_at.replace(tzinfo=None) - (start_at.utcoffset() or timedelta(0))

    barber = await _lock_barber(db, barber_id) if barber_id else None
    if not barber or not barber.is_provider:
        logger.error("Checkout %s references unknown barber %s", session_id, metadata.get("barber_id"))
        return IGNORED

    user = await resolve_user(
        db,
        _parse_uuid(metadata.get("user_id")),
        _customer_email(session),
        metadata.get("customer_name") or (session.get("customer_details") or {}).get("name"),
    )
    if not user:
        logger.error("Checkout %s has no resolvable customer", session_id)
        return IGNORED
    await points.lock_user(db, user.id)

    tier = await resolve_entitlement(db, user.id, now)
    kind = _booking_kind(metadata.get("kind"), tier)
    price = price_for(kind, channel)
    amount_paid = session.get("amount_total")
    if amount_paid is not None and amount_paid != price:
        logger.warning("Checkout %s paid %s but the derived price is %s", session_id, amount_paid, price)

    gateway_payment_id = session.get("payment_intent") or session_id
    if not await _record_payment(db, user.id, gateway_payment_id, amount_paid or price, PaymentKind.ONEOFF):
        logger.info("Payment %s of checkout %s was already reconciled", gateway_payment_id, session_id)
        return DUPLICATE

    start_at, end_at = appointment_window(start_at)
    if not await is_slot_free(db, barber.id, start_at, end_at, now=now):
        logger.error(
            "Paid checkout %s lost its slot (barber %s at %s); payment %s needs a manual refund",
            session_id, barber.id, start_at, gateway_payment_id,
        )
        await _log_event(db, "booking.slot_lost", {"session_id": session_id, "user_id": str(user.id)})
        return IGNORED
    if await has_client_duplicate(db, user.id, start_at):
        logger.error(
            "Paid checkout %s duplicates an existing booking of user %s at %s; payment %s needs a manual refund",
            session_id, user.id, start_at, gateway_payment_id,
        )
        return IGNORED

    # A racing insert raises here and rolls the whole event back; the
    # redelivery then sees the taken slot and takes the slot-lost path above
    appointment = await insert_appointment(db, Appointment(
        client_id=user.id,
        barber_id=barber.id,
        start_at=start_at,
        end_at=end_at,
        status=AppointmentStatus.BOOKED,
        channel=channel,
        kind=kind,
        price_cents=price,
        payment_status=PaymentStatus.PAID,
        payment_channel=PaymentChannel.GATEWAY,
        idempotency_key=key,
    ))

    await _log_event(db, "booking.paid", {
        "appointment_id": str(appointment.id),
        "session_id": session_id,
        "user_id": str(user.id),
    })
    logger.info("Created paid appointment %s from checkout %s", appointment.id, session_id)
    return PROCESSED


async def handle_invoice_paid(db: AsyncSession, invoice: dict, now: datetime) -> str:
    gateway_sub_id = invoice.get("subscription")
    invoice_id = invoice.get("id")
    if not gateway_sub_id:
        logger.info("Invoice %s is not tied to a subscription, ignoring", invoice_id)
        return IGNORED

    subscription = await _get_subscription(db, gateway_sub_id)
    if not subscription:
        logger.warning("Invoice %s paid for unknown subscription %s", invoice_id, gateway_sub_id)
        return IGNORED
    if subscription.status == SubscriptionStatus.CANCELED:
        logger.warning("Invoice %s paid for canceled subscription %s, ignoring", invoice_id, gateway_sub_id)
        return IGNORED

    first_payment = await _record_payment(
        db, subscription.user_id, invoice_id, invoice.get("amount_paid") or 0, PaymentKind.SUBSCRIPTION,
    )

    subscription.status = SubscriptionStatus.ACTIVE
    lines = (invoice.get("lines") or {}).get("data") or []
    period = (lines[0].get("period") or {}) if lines else {}
    period_end = from_timestamp(period.get("end"))
    if period_end:
        subscription.current_period_start = from_timestamp(period.get("start")) or subscription.current_period_start
        subscription.renews_at = period_end
    elif first_payment:
        subscription.current_period_start = subscription.renews_at
        subscription.renews_at = subscription.renews_at + DEFAULT_PERIOD
    await db.flush()

    # The signup bonus already covers the first invoice
    if invoice.get("billing_reason") != "subscription_create":
        await points.credit(
            db,
            subscription.user_id,
            settings.RENEWAL_BONUS_POINTS,
            reason=PointsReason.RENEWAL.value,
            ref_type=PointsRefType.INVOICE.value,
            ref_id=invoice_id,
            idempotent=True,
        )

    if not first_payment:
        return DUPLICATE

    await _log_event(db, "subscription.renewed", {
        "gateway_subscription_id": gateway_sub_id,
        "invoice_id": invoice_id,
    })
    logger.info("Subscription %s renewed until %s", gateway_sub_id, subscription.renews_at)
    return PROCESSED


async def handle_invoice_failed(db: AsyncSession, invoice: dict, now: datetime) -> str:
    gateway_sub_id = invoice.get("subscription")
    subscription = await _get_subscription(db, gateway_sub_id) if gateway_sub_id else None
    if not subscription:
        logger.warning("Invoice %s failed for unknown subscription %s", invoice.get("id"), gateway_sub_id)
        return IGNORED

    if subscription.status != SubscriptionStatus.CANCELED:
        subscription.status = SubscriptionStatus.PAST_DUE
    await db.flush()
    logger.info("Subscription %s is past due", gateway_sub_id)
    return PROCESSED


async def handle_subscription_changed(db: AsyncSession, gateway_sub: dict, now: datetime, deleted: bool = False) -> str:
    gateway_sub_id = gateway_sub.get("id")
    subscription = await _get_subscription(db, gateway_sub_id) if gateway_sub_id else None
    if not subscription:
        logger.warning("Lifecycle event for unknown subscription %s", gateway_sub_id)
        return IGNORED

    new_status = SubscriptionStatus.CANCELED if deleted else map_gateway_status(gateway_sub.get("status"))
    if subscription.status == SubscriptionStatus.CANCELED and new_status != SubscriptionStatus.CANCELED:
        # Canceled is terminal; a late update must not bring the membership back
        logger.warning("Ignoring %s for canceled subscription %s", new_status.value, gateway_sub_id)
        return IGNORED
    subscription.status = new_status

    items = (gateway_sub.get("items") or {}).get("data") or []
    period = items[0] if items and items[0].get("current_period_end") else gateway_sub
    period_end = from_timestamp(period.get("current_period_end"))
    if period_end:
        subscription.current_period_start = (
            from_timestamp(period.get("current_period_start")) or subscription.current_period_start
        )
        subscription.renews_at = period_end
    await db.flush()

    logger.info("Subscription %s is now %s", gateway_sub_id, new_status.value)
    return PROCESSED


async def handle_gateway_event(db: AsyncSession, event: dict, now: Optional[datetime] = None) -> str:
    """Apply one verified gateway event. Returns processed, duplicate or ignored."""
    now = now or datetime.utcnow()
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    logger.info("Stripe webhook received: %s", event_type)

    async with transaction(db):
        if event_type == "checkout.session.completed":
            mode = obj.get("mode")
            if mode == "subscription":
                outcome = await handle_subscription_checkout(db, obj, now)
            elif mode == "payment":
                outcome = await handle_booking_checkout(db, obj, now)
            else:
                logger.info("Ignoring checkout %s in mode %s", obj.get("id"), mode)
                outcome = IGNORED

        elif event_type in ("invoice.paid", "invoice.payment_succeeded"):
            outcome = await handle_invoice_paid(db, obj, now)

        elif event_type == "invoice.payment_failed":
            outcome = await handle_invoice_failed(db, obj, now)

        elif event_type == "customer.subscription.updated":
            outcome = await handle_subscription_changed(db, obj, now)

        elif event_type == "customer.subscription.deleted":
            outcome = await handle_subscription_changed(db, obj, now, deleted=True)

        else:
            logger.info("Unhandled Stripe event type: %s", event_type)
            outcome = IGNORED

    logger.info("Stripe event %s (%s): %s", event.get("id"), event_type, outcome)
    return outcome
