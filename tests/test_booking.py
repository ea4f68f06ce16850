"""Tests for the appointment transaction manager."""

from datetime import datetime, timedelta
from unittest.mock import patch, AsyncMock

import pytest
from sqlalchemy import select, func

from app.core.errors import (
    DuplicateBooking,
    EntitlementExhausted,
    Forbidden,
    InsufficientBalance,
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
)
from app.models.barber_availability import BarberAvailability
from app.models.points_ledger import PointsLedgerEntry, PointsReason
from app.models.subscription import SubscriptionStatus
from app.models.user import Role
from app.services import booking, points
from app.services.payment_intents import confirm_intent, create_intent

NOW = datetime(2030, 1, 7, 8, 0)
TEN = datetime(2030, 1, 7, 10, 0)


async def book(db, client, barber_id, start=TEN, now=NOW, **kwargs):
    request = booking.BookingRequest(barber_id=barber_id, start_at=start, **kwargs)
    return await booking.create_appointment(db, client, request, now=now)


async def count_appointments(db, **filters):
    query = select(func.count(Appointment.id))
    for column, value in filters.items():
        query = query.where(getattr(Appointment, column) == value)
    result = await db.execute(query)
    return result.scalar_one()


async def give_points(db, user_id, amount=10):
    await points.credit(db, user_id, amount, PointsReason.ADJUSTMENT.value)
    await db.commit()


async def complete(db, barber, appointment_id, at):
    return await booking.update_status(db, barber, appointment_id, AppointmentStatus.COMPLETED, now=at)


@pytest.mark.asyncio
async def test_first_booking_is_free(db, client_user, barber):
    result = await book(db, client_user, barber.id)

    appointment = result.appointment
    assert not result.duplicate
    assert appointment.status == AppointmentStatus.BOOKED
    assert appointment.kind == AppointmentKind.TRIAL_FREE
    assert appointment.price_cents == 0
    assert appointment.payment_status == PaymentStatus.WAIVED
    assert appointment.end_at - appointment.start_at == timedelta(minutes=30)
    assert await points.get_balance(db, client_user.id) == 0


@pytest.mark.asyncio
async def test_replay_returns_the_first_appointment(db, client_user, barber):
    first = await book(db, client_user, barber.id)
    second = await book(db, client_user, barber.id)

    assert second.duplicate
    assert second.appointment.id == first.appointment.id
    assert await count_appointments(db) == 1


@pytest.mark.asyncio
async def test_claimed_tier_must_match(db, client_user, barber):
    barber_id = barber.id
    with pytest.raises(TierMismatch):
        await book(db, client_user, barber_id, claimed_tier=AppointmentKind.MEMBERSHIP_INCLUDED)

    await db.refresh(client_user)
    result = await book(db, client_user, barber_id, claimed_tier=AppointmentKind.TRIAL_FREE)
    assert result.appointment.kind == AppointmentKind.TRIAL_FREE


@pytest.mark.asyncio
async def test_taken_slot_is_rejected(db, make_user, barber):
    barber_id = barber.id
    ana = await make_user(Role.CLIENT)
    bo = await make_user(Role.CLIENT)

    await book(db, ana, barber_id)
    with pytest.raises(SlotConflict):
        await book(db, bo, barber_id, start=TEN + timedelta(minutes=15))

    assert await count_appointments(db, barber_id=barber_id) == 1


@pytest.mark.asyncio
async def test_same_client_same_start_other_barber_is_duplicate(db, client_user, barber, owner):
    await book(db, client_user, barber.id)
    owner_id = owner.id
    await db.refresh(client_user)

    with pytest.raises(DuplicateBooking):
        await book(db, client_user, owner_id)


@pytest.mark.asyncio
async def test_concurrent_loser_gets_slot_conflict(db, make_user, barber):
    """The store's unique index decides a race the guard did not see."""
    barber_id = barber.id
    ana = await make_user(Role.CLIENT)
    bo = await make_user(Role.CLIENT)

    await book(db, ana, barber_id)
    with patch("app.services.booking.is_slot_free", new_callable=AsyncMock, return_value=True):
        with pytest.raises(SlotConflict):
            await book(db, bo, barber_id)

    assert await count_appointments(db, barber_id=barber_id, status=AppointmentStatus.BOOKED) == 1


@pytest.mark.asyncio
async def test_past_start_is_rejected(db, client_user, barber):
    with pytest.raises(ValidationFailed):
        await book(db, client_user, barber.id, start=NOW - timedelta(hours=1))


@pytest.mark.asyncio
async def test_only_clients_book(db, owner, barber):
    with pytest.raises(Forbidden):
        await book(db, owner, barber.id)


@pytest.mark.asyncio
async def test_free_cut_is_shop_only(db, client_user, barber):
    with pytest.raises(ValidationFailed):
        await book(db, client_user, barber.id, channel=ServiceChannel.HOME, address="1 Main St")


@pytest.mark.asyncio
async def test_membership_booking_debits_points(db, client_user, barber, standard_plan, subscribe):
    await subscribe(client_user, standard_plan)
    await give_points(db, client_user.id, 10)

    result = await book(db, client_user, barber.id)

    assert result.appointment.kind == AppointmentKind.MEMBERSHIP_INCLUDED
    assert result.appointment.payment_status == PaymentStatus.WAIVED
    assert await points.get_balance(db, client_user.id) == 5


@pytest.mark.asyncio
async def test_membership_allowance_exhausted(db, client_user, barber, standard_plan, subscribe):
    barber_id = barber.id
    await subscribe(client_user, standard_plan)
    await give_points(db, client_user.id, 30)

    await book(db, client_user, barber_id, start=TEN)
    await book(db, client_user, barber_id, start=TEN + timedelta(hours=1))

    with pytest.raises(EntitlementExhausted):
        await book(db, client_user, barber_id, start=TEN + timedelta(hours=2))

    await db.refresh(client_user)
    assert await count_appointments(db, client_id=client_user.id) == 2
    assert await points.get_balance(db, client_user.id) == 20


@pytest.mark.asyncio
async def test_insufficient_points_rolls_back_the_appointment(db, client_user, barber, standard_plan, subscribe):
    client_id = client_user.id
    await subscribe(client_user, standard_plan)
    await give_points(db, client_id, 3)

    with pytest.raises(InsufficientBalance) as exc_info:
        await book(db, client_user, barber.id)

    assert "Subscribe or renew" in exc_info.value.message
    assert await count_appointments(db, client_id=client_id) == 0
    debits = await db.execute(
        select(func.count(PointsLedgerEntry.id)).where(PointsLedgerEntry.reason == PointsReason.BOOKING_DEBIT.value)
    )
    assert debits.scalar_one() == 0
    assert await points.get_balance(db, client_id) == 3


@pytest.mark.asyncio
async def test_funnel_walkthrough(db, client_user, barber):
    """Free cut, then the discounted second cut, then one-off pricing."""
    barber_id = barber.id

    first = await book(db, client_user, barber_id)
    await complete(db, barber, first.appointment.id, at=TEN + timedelta(hours=1))

    later = TEN + timedelta(hours=2)
    tomorrow = TEN + timedelta(days=1)

    with pytest.raises(PaymentNotConfirmed):
        await book(db, client_user, barber_id, start=tomorrow, now=later)
    await db.refresh(client_user)

    intent = await create_intent(db, client_user, AppointmentKind.DISCOUNT_SECOND, now=later)
    await confirm_intent(db, client_user, intent.id, intent.note_code, now=later)
    await give_points(db, client_user.id, 10)

    second = await book(db, client_user, barber_id, start=tomorrow, now=later, payment_intent_id=intent.id)
    assert second.appointment.kind == AppointmentKind.DISCOUNT_SECOND
    assert second.appointment.price_cents == 1000
    assert second.appointment.payment_status == PaymentStatus.PAID
    assert second.appointment.payment_channel == PaymentChannel.CASH_INTENT
    assert await points.get_balance(db, client_user.id) == 5

    third = await book(db, client_user, barber_id, start=tomorrow + timedelta(hours=1), now=later)
    assert third.appointment.kind == AppointmentKind.ONE_OFF
    assert third.appointment.price_cents == 4500
    assert third.appointment.payment_status == PaymentStatus.PENDING
    assert await points.get_balance(db, client_user.id) == 0


@pytest.mark.asyncio
async def test_one_off_without_points_asks_to_subscribe(db, client_user, barber):
    barber_id = barber.id
    first = await book(db, client_user, barber_id)
    await complete(db, barber, first.appointment.id, at=TEN + timedelta(hours=1))

    # Eleven days later the second-cut window has closed
    with pytest.raises(InsufficientBalance):
        await book(db, client_user, barber_id, start=TEN + timedelta(days=12), now=TEN + timedelta(days=11))


@pytest.mark.asyncio
async def test_intent_cannot_back_two_bookings(db, client_user, barber):
    barber_id = barber.id
    first = await book(db, client_user, barber_id)
    await complete(db, barber, first.appointment.id, at=TEN + timedelta(hours=1))
    later = TEN + timedelta(days=12)

    intent = await create_intent(db, client_user, AppointmentKind.ONE_OFF, now=later)
    await confirm_intent(db, client_user, intent.id, intent.note_code, now=later)
    await give_points(db, client_user.id, 10)

    paid = await book(db, client_user, barber_id, start=later + timedelta(hours=1), now=later, payment_intent_id=intent.id)
    assert paid.appointment.payment_status == PaymentStatus.PAID
    assert await points.get_balance(db, client_user.id) == 5

    with pytest.raises(PaymentNotConfirmed):
        await book(db, client_user, barber_id, start=later + timedelta(hours=2), now=later, payment_intent_id=intent.id)


@pytest.mark.asyncio
async def test_reschedule_moves_the_booking(db, client_user, barber):
    barber_id = barber.id
    original = await book(db, client_user, barber_id)
    new_start = TEN + timedelta(hours=2)

    result = await booking.reschedule(
        db, client_user, original.appointment.id,
        booking.BookingRequest(barber_id=barber_id, start_at=new_start), now=NOW,
    )

    old = await db.get(Appointment, original.appointment.id)
    assert old.status == AppointmentStatus.CANCELED
    assert old.cancel_reason == "rescheduled"
    assert result.appointment.start_at == new_start
    assert result.appointment.kind == AppointmentKind.TRIAL_FREE
    assert await count_appointments(db, status=AppointmentStatus.BOOKED) == 1


@pytest.mark.asyncio
async def test_failed_reschedule_keeps_the_original(db, make_user, barber):
    barber_id = barber.id
    ana = await make_user(Role.CLIENT)
    bo = await make_user(Role.CLIENT)
    original = await book(db, ana, barber_id)
    original_id = original.appointment.id
    await book(db, bo, barber_id, start=TEN + timedelta(hours=1))

    with pytest.raises(SlotConflict):
        await booking.create_appointment(
            db, ana,
            booking.BookingRequest(
                barber_id=barber_id, start_at=TEN + timedelta(hours=1), reschedule_of=original_id,
            ),
            now=NOW,
        )

    kept = await db.get(Appointment, original_id)
    await db.refresh(kept)
    assert kept.status == AppointmentStatus.BOOKED
    assert kept.cancel_reason is None


@pytest.mark.asyncio
async def test_reschedule_into_own_window_is_allowed(db, client_user, barber):
    """The appointment being replaced never conflicts with its replacement."""
    barber_id = barber.id
    original = await book(db, client_user, barber_id)

    result = await booking.reschedule(
        db, client_user, original.appointment.id,
        booking.BookingRequest(barber_id=barber_id, start_at=TEN + timedelta(minutes=15)), now=NOW,
    )
    assert result.appointment.start_at == TEN + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_cannot_reschedule_someone_elses_booking(db, make_user, barber):
    barber_id = barber.id
    ana = await make_user(Role.CLIENT)
    bo = await make_user(Role.CLIENT)
    original = await book(db, ana, barber_id)

    with pytest.raises(Forbidden):
        await booking.reschedule(
            db, bo, original.appointment.id,
            booking.BookingRequest(barber_id=barber_id, start_at=TEN + timedelta(hours=3)), now=NOW,
        )


@pytest.mark.asyncio
async def test_cancel_rules(db, make_user, barber):
    ana = await make_user(Role.CLIENT)
    bo = await make_user(Role.CLIENT)
    result = await book(db, ana, barber.id)
    appointment_id = result.appointment.id

    with pytest.raises(Forbidden):
        await booking.cancel(db, bo, appointment_id, now=NOW)

    await db.refresh(ana)
    canceled = await booking.cancel(db, ana, appointment_id, reason="sick", now=NOW)
    assert canceled.status == AppointmentStatus.CANCELED
    assert canceled.cancel_reason == "sick"

    with pytest.raises(StateConflict):
        await booking.cancel(db, ana, appointment_id, now=NOW)


@pytest.mark.asyncio
async def test_client_cannot_cancel_after_start(db, client_user, barber):
    result = await book(db, client_user, barber.id)
    with pytest.raises(ValidationFailed):
        await booking.cancel(db, client_user, result.appointment.id, now=TEN + timedelta(minutes=5))


@pytest.mark.asyncio
async def test_cancel_does_not_refund_points(db, client_user, barber, standard_plan, subscribe):
    await subscribe(client_user, standard_plan)
    await give_points(db, client_user.id, 10)
    result = await book(db, client_user, barber.id)

    await booking.cancel(db, client_user, result.appointment.id, now=NOW)

    assert await points.get_balance(db, client_user.id) == 5


@pytest.mark.asyncio
async def test_canceled_free_cut_can_be_booked_again(db, client_user, barber):
    result = await book(db, client_user, barber.id)
    await booking.cancel(db, client_user, result.appointment.id, now=NOW)

    again = await book(db, client_user, barber.id, start=TEN + timedelta(hours=1))
    assert again.appointment.kind == AppointmentKind.TRIAL_FREE


@pytest.mark.asyncio
async def test_operator_status_transitions(db, client_user, barber, make_user):
    other_barber = await make_user(Role.BARBER)
    result = await book(db, client_user, barber.id)
    appointment_id = result.appointment.id

    with pytest.raises(Forbidden):
        await booking.update_status(db, other_barber, appointment_id, AppointmentStatus.CONFIRMED, now=NOW)

    await db.refresh(barber)
    confirmed = await booking.update_status(db, barber, appointment_id, AppointmentStatus.CONFIRMED, now=NOW)
    assert confirmed.status == AppointmentStatus.CONFIRMED

    with pytest.raises(ValidationFailed):
        await booking.update_status(db, barber, appointment_id, AppointmentStatus.COMPLETED, now=NOW)

    await db.refresh(barber)
    done_at = TEN + timedelta(minutes=40)
    completed = await booking.update_status(db, barber, appointment_id, AppointmentStatus.COMPLETED, now=done_at)
    assert completed.status == AppointmentStatus.COMPLETED
    assert completed.completed_at == done_at

    with pytest.raises(StateConflict):
        await booking.update_status(db, barber, appointment_id, AppointmentStatus.NO_SHOW, now=done_at)


@pytest.mark.asyncio
async def test_owner_can_mark_no_show(db, client_user, barber, owner):
    result = await book(db, client_user, barber.id)
    no_show = await booking.update_status(
        db, owner, result.appointment.id, AppointmentStatus.NO_SHOW, now=TEN + timedelta(minutes=20)
    )
    assert no_show.status == AppointmentStatus.NO_SHOW


@pytest.mark.asyncio
async def test_paid_second_cut_still_costs_points(db, client_user, barber):
    barber_id = barber.id
    first = await book(db, client_user, barber_id)
    await complete(db, barber, first.appointment.id, at=TEN + timedelta(hours=1))
    later = TEN + timedelta(hours=2)

    intent = await create_intent(db, client_user, AppointmentKind.DISCOUNT_SECOND, now=later)
    await confirm_intent(db, client_user, intent.id, intent.note_code, now=later)
    intent_id = intent.id
    client_id = client_user.id

    with pytest.raises(InsufficientBalance):
        await book(db, client_user, barber_id, start=TEN + timedelta(days=1), now=later, payment_intent_id=intent_id)

    assert await count_appointments(db, client_id=client_id, kind=AppointmentKind.DISCOUNT_SECOND) == 0
    # The confirmed intent was not used up by the rolled-back booking
    await db.refresh(client_user)
    await give_points(db, client_id, 5)
    second = await book(
        db, client_user, barber_id, start=TEN + timedelta(days=1), now=later, payment_intent_id=intent_id
    )
    assert second.appointment.kind == AppointmentKind.DISCOUNT_SECOND
    assert await points.get_balance(db, client_id) == 0


@pytest.mark.asyncio
async def test_membership_cut_after_renewal_date_is_rejected(db, client_user, barber, standard_plan, subscribe):
    barber_id = barber.id
    client_id = client_user.id
    subscription = await subscribe(client_user, standard_plan)
    next_period = subscription.renews_at.replace(hour=10, minute=0) + timedelta(days=1)
    await give_points(db, client_id, 100)

    for hour in range(5):
        with pytest.raises(EntitlementExhausted):
            await book(db, client_user, barber_id, start=next_period + timedelta(hours=hour))
        await db.refresh(client_user)

    assert await count_appointments(db, client_id=client_id) == 0
    assert await points.get_balance(db, client_id) == 100

    # Inside the period the allowance still applies as usual
    result = await book(db, client_user, barber_id)
    assert result.appointment.kind == AppointmentKind.MEMBERSHIP_INCLUDED


@pytest.mark.asyncio
async def test_membership_cut_cannot_move_past_renewal(db, client_user, barber, standard_plan, subscribe):
    barber_id = barber.id
    subscription = await subscribe(client_user, standard_plan)
    await give_points(db, client_user.id, 10)
    original = await book(db, client_user, barber_id)
    original_id = original.appointment.id
    next_period = subscription.renews_at.replace(hour=10, minute=0) + timedelta(days=1)

    with pytest.raises(EntitlementExhausted):
        await booking.reschedule(
            db, client_user, original_id,
            booking.BookingRequest(barber_id=barber_id, start_at=next_period), now=NOW,
        )

    kept = await db.get(Appointment, original_id)
    await db.refresh(kept)
    assert kept.status == AppointmentStatus.BOOKED


@pytest.mark.asyncio
async def test_reschedule_after_membership_lapsed_keeps_the_original(
    db, client_user, barber, standard_plan, subscribe
):
    barber_id = barber.id
    subscription = await subscribe(client_user, standard_plan)
    await give_points(db, client_user.id, 10)
    original = await book(db, client_user, barber_id)
    original_id = original.appointment.id

    subscription.status = SubscriptionStatus.CANCELED
    await db.commit()

    with pytest.raises(EntitlementExhausted):
        await booking.reschedule(
            db, client_user, original_id,
            booking.BookingRequest(barber_id=barber_id, start_at=TEN + timedelta(hours=2)), now=NOW,
        )

    kept = await db.get(Appointment, original_id)
    await db.refresh(kept)
    assert kept.status == AppointmentStatus.BOOKED
    assert kept.cancel_reason is None
    assert await count_appointments(db, client_id=kept.client_id) == 1


@pytest.mark.asyncio
async def test_bookings_follow_the_barbers_weekly_hours(db, client_user, barber):
    barber_id = barber.id
    # TEN is a Monday; the barber only works Tuesday mornings
    db.add(BarberAvailability(barber_id=barber_id, weekday=1, starts_at="09:00", ends_at="12:00"))
    await db.commit()

    with pytest.raises(ValidationFailed):
        await book(db, client_user, barber_id, start=TEN)
    await db.refresh(client_user)

    tuesday = TEN + timedelta(days=1)
    with pytest.raises(ValidationFailed):
        await book(db, client_user, barber_id, start=tuesday.replace(hour=11, minute=45))
    await db.refresh(client_user)

    result = await book(db, client_user, barber_id, start=tuesday.replace(hour=11, minute=30))
    assert result.appointment.end_at == tuesday.replace(hour=12, minute=0)
