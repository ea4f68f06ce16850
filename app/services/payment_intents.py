"""One-time out-of-band payment intents (pay by app, quote a note code)."""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import transaction
from app.core.errors import (
    Forbidden,
    NotFound,
    PaymentNotConfirmed,
    StateConflict,
    ValidationFailed,
)
from app.models.appointment import AppointmentKind, ServiceChannel
from app.models.payment_intent import PaymentIntent, PaymentIntentStatus
from app.models.user import User

logger = logging.getLogger(__name__)

# Only these kinds are ever paid through an intent
PAYABLE_KINDS = (AppointmentKind.DISCOUNT_SECOND, AppointmentKind.ONE_OFF)


def price_for(kind: AppointmentKind, channel: ServiceChannel) -> int:
    """Server-side price of a paid booking, in cents."""
    if kind == AppointmentKind.DISCOUNT_SECOND:
        return settings.SECOND_CUT_PRICE_CENTS
    if kind == AppointmentKind.ONE_OFF:
        if channel == ServiceChannel.HOME:
            return settings.DELUXE_CUT_PRICE_CENTS
        return settings.STANDARD_CUT_PRICE_CENTS
    return 0


def generate_note_code() -> str:
    return f"LF-{secrets.token_hex(3).upper()}"


def payment_url(intent: PaymentIntent) -> str:
    """Deep link that pre-fills the payee and amount."""
    return f"https://cash.app/${settings.CASH_APP_TAG}/{intent.amount_cents / 100:.2f}"


def is_expired(intent: PaymentIntent, now: datetime) -> bool:
    return intent.expires_at is not None and intent.expires_at <= now


async def create_intent(
    db: AsyncSession,
    client: User,
    kind: AppointmentKind,
    channel: ServiceChannel = ServiceChannel.SHOP,
    now: Optional[datetime] = None,
) -> PaymentIntent:
    now = now or datetime.utcnow()
    if kind not in PAYABLE_KINDS:
        raise ValidationFailed(f"{kind.value} bookings are not paid through a payment intent")

    async with transaction(db):
        intent = PaymentIntent(
            user_id=client.id,
            amount_cents=price_for(kind, channel),
            kind=kind.value,
            note_code=generate_note_code(),
            status=PaymentIntentStatus.PENDING,
            expires_at=now + timedelta(minutes=settings.PAYMENT_INTENT_TTL_MINUTES),
        )
        db.add(intent)
        await db.flush()

    logger.info(
        "Created payment intent %s for user %s: %d cents (%s)",
        intent.id, client.id, intent.amount_cents, intent.kind,
    )
    return intent


async def _load_for_update(db: AsyncSession, intent_id: UUID) -> Optional[PaymentIntent]:
    result = await db.execute(
        select(PaymentIntent).where(PaymentIntent.id == intent_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def confirm_intent(
    db: AsyncSession,
    client: User,
    intent_id: UUID,
    note_code: str,
    now: Optional[datetime] = None,
) -> PaymentIntent:
    """Move a PENDING intent to CONFIRMED once the payer quotes the note code.

    An intent found past its expiry is marked EXPIRED (and that is committed)
    before PaymentNotConfirmed is raised.
    """
    now = now or datetime.utcnow()

    async with transaction(db):
        intent = await _load_for_update(db, intent_id)
        if not intent:
            raise NotFound("Payment intent not found")
        if intent.user_id != client.id:
            raise Forbidden("This payment intent belongs to another account")
        if intent.status == PaymentIntentStatus.CONFIRMED:
            return intent
        if intent.status != PaymentIntentStatus.PENDING:
            raise StateConflict(f"Payment intent is {intent.status.value}")

        if is_expired(intent, now):
            intent.status = PaymentIntentStatus.EXPIRED
            logger.info("Payment intent %s expired at %s", intent.id, intent.expires_at)
            expired = True
        else:
            expired = False
            if (note_code or "").strip().upper() != intent.note_code:
                raise ValidationFailed("Note code does not match")
            intent.status = PaymentIntentStatus.CONFIRMED
            intent.confirmed_at = now

    if expired:
        raise PaymentNotConfirmed("Payment intent has expired. Please start a new payment.")

    logger.info("Payment intent %s confirmed for user %s", intent.id, client.id)
    return intent


async def validate_intent_for_booking(
    db: AsyncSession,
    client_id: UUID,
    intent_id: Optional[UUID],
    expected_amount: int,
    now: datetime,
) -> PaymentIntent:
    """Re-check an intent inside the booking transaction.

    Raises PaymentNotConfirmed unless the intent belongs to the client, is
    CONFIRMED, covers exactly ``expected_amount`` and has not expired.
    Reuse across bookings is rejected by the store's unique index.
    """
    if not intent_id:
        raise PaymentNotConfirmed("A confirmed payment is required for this booking")

    intent = await _load_for_update(db, intent_id)
    if not intent or intent.user_id != client_id:
        raise PaymentNotConfirmed("Payment intent not found for this account")
    if intent.status != PaymentIntentStatus.CONFIRMED:
        raise PaymentNotConfirmed("Payment has not been confirmed yet")
    if intent.amount_cents != expected_amount:
        raise PaymentNotConfirmed(
            f"Payment amount {intent.amount_cents} does not match the price {expected_amount}"
        )
    if is_expired(intent, now):
        raise PaymentNotConfirmed("Payment intent has expired")
    return intent
