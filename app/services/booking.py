"""Appointment transaction manager.

Creation, reschedule, cancellation and operator status changes. Each public
operation runs inside one ``transaction(db)`` block, so every check and every
write for it either commits together or not at all.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import transaction
from app.core.errors import (
    BookingError,
    DuplicateBooking,
    EntitlementExhausted,
    Forbidden,
    InsufficientBalance,
    NotFound,
    PaymentNotConfirmed,
    SlotConflict,
    StateConflict,
    TierMismatch,
    ValidationFailed,
)
from app.models.appointment import (
    Appointment,
    AppointmentKind,
    AppointmentStatus,
    PaymentChannel,
    PaymentStatus,
    ServiceChannel,
    ACTIVE_STATUSES,
)
from app.models.points_ledger import PointsReason, PointsRefType
from app.models.user import User, Role
from app.services import points
from app.services.entitlement import (
    FirstFree,
    MembershipIncluded,
    OneOff,
    SecondDiscount,
    Tier,
    count_membership_usage_in_db,
    get_entitled_subscription,
    in_billing_period,
    resolve_entitlement,
)
from app.services.idempotency import derive_key, find_existing
from app.services.payment_intents import price_for, validate_intent_for_booking
from app.services.slots import appointment_window, has_client_duplicate, is_slot_free, is_within_working_hours

logger = logging.getLogger(__name__)

RESCHEDULED = "rescheduled"


@dataclass
class BookingRequest:
    barber_id: UUID
    start_at: datetime
    channel: ServiceChannel = ServiceChannel.SHOP
    claimed_tier: Optional[AppointmentKind] = None
    payment_intent_id: Optional[UUID] = None
    reschedule_of: Optional[UUID] = None
    address: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class BookingResult:
    appointment: Appointment
    duplicate: bool = False
    tier: Optional[Tier] = None


@dataclass
class Pricing:
    kind: AppointmentKind
    price_cents: int
    payment_status: PaymentStatus
    payment_channel: PaymentChannel
    payment_intent_id: Optional[UUID] = None


def translate_integrity_error(exc: IntegrityError) -> BookingError:
    """Map a unique-index violation on appointments to the rejection it means.

    PostgreSQL reports the index name, SQLite the column list.
    """
    message = str(exc.orig)
    if "idempotency_key" in message:
        return DuplicateBooking("This booking was already submitted.")
    if "barber_slot" in message or "appointments.barber_id" in message:
        return SlotConflict()
    if "client_promo" in message or "appointments.kind" in message:
        return EntitlementExhausted()
    if "payment_intent" in message:
        return PaymentNotConfirmed("This payment has already been used for another booking.")
    if "client_slot" in message or "appointments.client_id" in message:
        return DuplicateBooking()
    raise exc


async def insert_appointment(db: AsyncSession, appointment: Appointment) -> Appointment:
    """Flush a new appointment, turning unique-index races into rejections."""
    db.add(appointment)
    try:
        await db.flush()
    except IntegrityError as e:
        logger.info("Appointment insert lost a race: %s", e.orig)
        raise translate_integrity_error(e) from e
    return appointment


async def _load_barber(db: AsyncSession, barber_id: UUID) -> User:
    """Locks the barber row so bookings for one barber serialize."""
    result = await db.execute(select(User).where(User.id == barber_id).with_for_update())
    barber = result.scalar_one_or_none()
    if not barber or not barber.is_active or not barber.is_provider:
        raise NotFound("Barber not found")
    return barber


async def _load_appointment(db: AsyncSession, appointment_id: UUID) -> Appointment:
    result = await db.execute(
        select(Appointment).where(Appointment.id == appointment_id).with_for_update()
    )
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise NotFound("Appointment not found")
    return appointment


def _validate_request(client: User, request: BookingRequest, now: datetime) -> None:
    if client.role != Role.CLIENT:
        raise Forbidden("Only client accounts can book appointments")
    if request.start_at <= now:
        raise ValidationFailed("Appointments must start in the future")
    if request.channel == ServiceChannel.HOME and not (request.address or "").strip():
        raise ValidationFailed("An address is required for home visits")


async def _guard_slot(
    db: AsyncSession,
    client_id: UUID,
    barber_id: UUID,
    start_at: datetime,
    end_at: datetime,
    now: datetime,
    excluding: Optional[UUID] = None,
) -> None:
    if not await is_within_working_hours(db, barber_id, start_at, end_at):
        raise ValidationFailed("The barber is not working at that time")
    if not await is_slot_free(db, barber_id, start_at, end_at, excluding_appointment_id=excluding, now=now):
        raise SlotConflict()
    if await has_client_duplicate(db, client_id, start_at, excluding_appointment_id=excluding):
        raise DuplicateBooking()


async def _price(
    db: AsyncSession,
    client: User,
    tier: Tier,
    request: BookingRequest,
    now: datetime,
) -> Pricing:
    """Tier-specific guard plus kind, price and payment state for the new row."""
    if isinstance(tier, FirstFree):
        if request.channel != ServiceChannel.SHOP:
            raise ValidationFailed("The free first cut is available in the shop only")
        return Pricing(tier.kind, 0, PaymentStatus.WAIVED, PaymentChannel.NONE)

    if isinstance(tier, SecondDiscount):
        intent = await validate_intent_for_booking(
            db, client.id, request.payment_intent_id, tier.amount_cents, now
        )
        return Pricing(
            tier.kind, tier.amount_cents, PaymentStatus.PAID, PaymentChannel.CASH_INTENT,
            payment_intent_id=intent.id,
        )

    if isinstance(tier, MembershipIncluded):
        if not tier.covers(request.start_at):
            raise EntitlementExhausted(_outside_period_message(tier.plan_name, tier.renews_at))
        if tier.exhausted:
            raise EntitlementExhausted(
                f"Your {tier.plan_name} cuts for this period are used up."
            )
        return Pricing(tier.kind, 0, PaymentStatus.WAIVED, PaymentChannel.NONE)

    if isinstance(tier, OneOff):
        price = price_for(tier.kind, request.channel)
        if request.payment_intent_id:
            intent = await validate_intent_for_booking(db, client.id, request.payment_intent_id, price, now)
            return Pricing(
                tier.kind, price, PaymentStatus.PAID, PaymentChannel.CASH_INTENT,
                payment_intent_id=intent.id,
            )
        return Pricing(tier.kind, price, PaymentStatus.PENDING, PaymentChannel.NONE)

    raise TypeError(f"Unknown tier {tier!r}")


def _outside_period_message(plan_name: str, renews_at: Optional[datetime]) -> str:
    until = f" (until {renews_at:%b %d})" if renews_at else ""
    return (
        f"Your {plan_name} cuts can only be booked inside the current period{until}. "
        "Book that date after your membership renews."
    )


async def _recheck_membership_allowance(db: AsyncSession, client_id: UUID, start_at: datetime) -> None:
    """Second allowance check, after the insert and before commit."""
    subscription = await get_entitled_subscription(db, client_id)
    if subscription is None:
        raise EntitlementExhausted("Your membership is no longer active.")
    if not in_billing_period(start_at, subscription):
        raise EntitlementExhausted(_outside_period_message(subscription.plan.name, subscription.renews_at))
    allowance = subscription.plan.cuts_per_month
    if not allowance:
        return
    used = await count_membership_usage_in_db(db, client_id, subscription)
    if used > allowance:
        logger.info("Membership allowance exceeded at commit for client %s: %d/%d", client_id, used, allowance)
        raise EntitlementExhausted(f"Your {subscription.plan.name} cuts for this period are used up.")


async def _debit_or_compensate(db: AsyncSession, client: User, appointment: Appointment) -> None:
    try:
        await points.debit(
            db,
            client.id,
            settings.POINTS_PER_BOOKING,
            reason=PointsReason.BOOKING_DEBIT.value,
            ref_type=PointsRefType.BOOKING.value,
            ref_id=str(appointment.id),
        )
    except InsufficientBalance as e:
        # Balance is only authoritative now, after the insert; undo it explicitly
        await db.delete(appointment)
        await db.flush()
        logger.info(
            "Rolled back appointment %s for client %s: insufficient points (%d/%d)",
            appointment.id, client.id, e.available, e.required,
        )
        raise InsufficientBalance(
            required=e.required,
            available=e.available,
            message=(
                f"Not enough points to book (need {e.required}, have {e.available}). "
                "Subscribe or renew to continue."
            ),
        ) from e


async def _create_locked(
    db: AsyncSession,
    client: User,
    request: BookingRequest,
    now: datetime,
) -> BookingResult:
    barber = await _load_barber(db, request.barber_id)
    await points.lock_user(db, client.id)

    start_at, end_at = appointment_window(request.start_at)
    key = derive_key(client.email, barber.id, start_at)

    existing = await find_existing(db, key)
    if existing:
        logger.info("Replay of booking %s for client %s", existing.id, client.id)
        return BookingResult(appointment=existing, duplicate=True)

    tier = await resolve_entitlement(db, client.id, now)
    if request.claimed_tier and request.claimed_tier != tier.kind:
        raise TierMismatch(
            f"You asked for {request.claimed_tier.value} but your account qualifies for {tier.kind.value}."
        )

    await _guard_slot(db, client.id, barber.id, start_at, end_at, now)
    pricing = await _price(db, client, tier, request, now)

    appointment = await insert_appointment(db, Appointment(
        client_id=client.id,
        barber_id=barber.id,
        start_at=start_at,
        end_at=end_at,
        status=AppointmentStatus.BOOKED,
        channel=request.channel,
        kind=pricing.kind,
        price_cents=pricing.price_cents,
        payment_status=pricing.payment_status,
        payment_channel=pricing.payment_channel,
        payment_intent_id=pricing.payment_intent_id,
        idempotency_key=key,
        address=request.address,
        notes=request.notes,
    ))

    if isinstance(tier, MembershipIncluded):
        await _recheck_membership_allowance(db, client.id, start_at)

    # Every booking but the free first cut costs points
    if pricing.kind != AppointmentKind.TRIAL_FREE:
        await _debit_or_compensate(db, client, appointment)

    logger.info(
        "Booked appointment %s: client=%s barber=%s start=%s kind=%s price=%d",
        appointment.id, client.id, barber.id, start_at, pricing.kind.value, pricing.price_cents,
    )
    return BookingResult(appointment=appointment, tier=tier)


async def create_appointment(
    db: AsyncSession,
    client: User,
    request: BookingRequest,
    now: Optional[datetime] = None,
) -> BookingResult:
    """Book a slot for ``client``. Returns the prior appointment on replay."""
    now = now or datetime.utcnow()
    if request.reschedule_of:
        return await reschedule(db, client, request.reschedule_of, request, now)

    _validate_request(client, request, now)
    client_id = client.id
    try:
        async with transaction(db):
            return await _create_locked(db, client, request, now)
    except BookingError as e:
        logger.info("Booking rejected for client %s: %s", client_id, e.code.value)
        raise


async def _reschedule_locked(
    db: AsyncSession,
    client: User,
    old_id: UUID,
    request: BookingRequest,
    now: datetime,
) -> BookingResult:
    old = await _load_appointment(db, old_id)
    if old.client_id != client.id:
        raise Forbidden("You can only reschedule your own appointments")

    barber = await _load_barber(db, request.barber_id)
    await points.lock_user(db, client.id)
    start_at, end_at = appointment_window(request.start_at)
    key = derive_key(client.email, barber.id, start_at)

    if old.status == AppointmentStatus.CANCELED and old.cancel_reason == RESCHEDULED:
        existing = await find_existing(db, key)
        if existing:
            return BookingResult(appointment=existing, duplicate=True)

    if old.status not in ACTIVE_STATUSES:
        raise StateConflict(f"Cannot reschedule a {old.status.value} appointment")

    old.status = AppointmentStatus.CANCELED
    old.cancel_reason = RESCHEDULED
    await db.flush()

    await _guard_slot(db, client.id, barber.id, start_at, end_at, now, excluding=old.id)

    # The replacement keeps what the client already paid for; no second debit
    appointment = await insert_appointment(db, Appointment(
        client_id=client.id,
        barber_id=barber.id,
        start_at=start_at,
        end_at=end_at,
        status=AppointmentStatus.BOOKED,
        channel=request.channel,
        kind=old.kind,
        price_cents=old.price_cents,
        payment_status=old.payment_status,
        payment_channel=old.payment_channel,
        payment_intent_id=old.payment_intent_id,
        idempotency_key=key,
        address=request.address if request.address is not None else old.address,
        notes=request.notes if request.notes is not None else old.notes,
    ))

    # A moved membership cut still has to fit a live membership and its period
    if appointment.kind == AppointmentKind.MEMBERSHIP_INCLUDED:
        await _recheck_membership_allowance(db, client.id, start_at)

    logger.info("Rescheduled appointment %s to %s (start=%s)", old.id, appointment.id, start_at)
    return BookingResult(appointment=appointment)


async def reschedule(
    db: AsyncSession,
    client: User,
    old_appointment_id: UUID,
    request: BookingRequest,
    now: Optional[datetime] = None,
) -> BookingResult:
    """Cancel ``old_appointment_id`` and book ``request`` atomically.

    If the new slot cannot be booked the old appointment stays as it was.
    """
    now = now or datetime.utcnow()
    _validate_request(client, request, now)
    client_id = client.id
    try:
        async with transaction(db):
            return await _reschedule_locked(db, client, old_appointment_id, request, now)
    except BookingError as e:
        logger.info("Reschedule of %s rejected for client %s: %s", old_appointment_id, client_id, e.code.value)
        raise


def _is_operator_for(actor: User, appointment: Appointment) -> bool:
    return actor.role == Role.OWNER or (actor.role == Role.BARBER and actor.id == appointment.barber_id)


async def cancel(
    db: AsyncSession,
    actor: User,
    appointment_id: UUID,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Appointment:
    """Cancel a BOOKED or CONFIRMED appointment. Debited points are not refunded."""
    now = now or datetime.utcnow()
    async with transaction(db):
        appointment = await _load_appointment(db, appointment_id)

        if actor.id == appointment.client_id:
            if appointment.start_at <= now:
                raise ValidationFailed("This appointment has already started")
        elif not _is_operator_for(actor, appointment):
            raise Forbidden("You can't cancel this appointment")

        if appointment.status not in ACTIVE_STATUSES:
            raise StateConflict(f"Cannot cancel a {appointment.status.value} appointment")

        appointment.status = AppointmentStatus.CANCELED
        appointment.cancel_reason = reason
        await db.flush()

    logger.info("Appointment %s canceled by %s (%s)", appointment.id, actor.id, reason)
    return appointment


# Operator transitions: target -> allowed current statuses
ALLOWED_TRANSITIONS = {
    AppointmentStatus.CONFIRMED: (AppointmentStatus.BOOKED,),
    AppointmentStatus.COMPLETED: ACTIVE_STATUSES,
    AppointmentStatus.NO_SHOW: ACTIVE_STATUSES,
}


async def update_status(
    db: AsyncSession,
    actor: User,
    appointment_id: UUID,
    new_status: AppointmentStatus,
    now: Optional[datetime] = None,
) -> Appointment:
    now = now or datetime.utcnow()
    if new_status not in ALLOWED_TRANSITIONS:
        raise ValidationFailed(f"Status {new_status.value} cannot be set directly")

    async with transaction(db):
        appointment = await _load_appointment(db, appointment_id)
        if not _is_operator_for(actor, appointment):
            raise Forbidden("Only the appointment's barber or the owner can update it")

        if appointment.status not in ALLOWED_TRANSITIONS[new_status]:
            raise StateConflict(
                f"Cannot move a {appointment.status.value} appointment to {new_status.value}"
            )
        if new_status in (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW) and appointment.start_at > now:
            raise ValidationFailed("The appointment hasn't started yet")

        appointment.status = new_status
        if new_status == AppointmentStatus.COMPLETED:
            appointment.completed_at = now
        await db.flush()

    logger.info("Appointment %s marked %s by %s", appointment.id, new_status.value, actor.id)
    return appointment


async def list_client_appointments(db: AsyncSession, client_id: UUID) -> list[Appointment]:
    result = await db.execute(
        select(Appointment)
        .where(Appointment.client_id == client_id)
        .order_by(Appointment.start_at.desc())
    )
    return list(result.scalars().all())


async def get_barber(db: AsyncSession, barber_id: UUID) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == barber_id))
    return result.scalar_one_or_none()
