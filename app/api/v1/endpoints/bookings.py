"""Booking endpoints: create, reschedule, cancel, operator status, availability."""

import logging
from datetime import date
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_current_user, require_client, require_operator
from app.core.errors import NotFound
from app.models.user import User
from app.schemas.booking import (
    AppointmentOut,
    AvailabilityRange,
    AvailableSlotsResponse,
    BookingCreate,
    BookingOut,
    CancelRequest,
    StatusUpdate,
    WeeklyAvailability,
    utc_start,
)
from app.services import booking
from app.services.email_service import email_service
from app.services.slots import get_weekly_schedule, list_open_slots, replace_weekly_schedule

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    response: Response,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Book a cut, or move an existing one when ``reschedule_of`` is set."""
    request = booking.BookingRequest(
        barber_id=payload.barber_id,
        start_at=utc_start(payload.date, payload.start_time),
        channel=payload.channel,
        claimed_tier=payload.claimed_tier,
        payment_intent_id=payload.payment_intent_id,
        reschedule_of=payload.reschedule_of,
        address=payload.address,
        notes=payload.notes,
    )
    result = await booking.create_appointment(db, current_user, request)

    if result.duplicate:
        response.status_code = status.HTTP_200_OK
    else:
        barber = await booking.get_barber(db, result.appointment.barber_id)
        try:
            await email_service.send_booking_confirmation(
                result.appointment,
                customer_email=current_user.email,
                customer_name=current_user.name,
                barber_name=barber.name if barber else None,
            )
        except Exception as e:
            logger.error("Failed to send booking confirmation for %s: %s", result.appointment.id, e)

    return BookingOut(
        duplicate=result.duplicate,
        appointment=AppointmentOut.model_validate(result.appointment),
    )


@router.get("/me", response_model=list[AppointmentOut])
async def my_bookings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The signed-in client's appointments, newest first."""
    return await booking.list_client_appointments(db, current_user.id)


@router.get("/available-slots", response_model=AvailableSlotsResponse)
async def available_slots(
    barber_id: UUID = Query(...),
    date: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    barber = await booking.get_barber(db, barber_id)
    if not barber or not barber.is_provider:
        raise NotFound("Barber not found")

    slots = await list_open_slots(db, barber_id, date)
    return AvailableSlotsResponse(barber_id=barber_id, date=date, slots=slots)


@router.get("/availability", response_model=WeeklyAvailability)
async def my_weekly_availability(
    current_user: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """The signed-in barber's weekly working ranges."""
    schedule = await get_weekly_schedule(db, current_user.id)
    return WeeklyAvailability(ranges=[AvailabilityRange.model_validate(row) for row in schedule])


@router.put("/availability", response_model=WeeklyAvailability)
async def set_weekly_availability(
    payload: WeeklyAvailability,
    current_user: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Replace the signed-in barber's weekly working ranges. Existing bookings stay."""
    ranges = [(r.weekday, r.starts_at, r.ends_at) for r in payload.ranges]
    schedule = await replace_weekly_schedule(db, current_user.id, ranges)
    return WeeklyAvailability(ranges=[AvailabilityRange.model_validate(row) for row in schedule])


@router.post("/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_booking(
    appointment_id: UUID,
    payload: Optional[CancelRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a BOOKED or CONFIRMED appointment. Points are not refunded."""
    reason = payload.reason if payload else None
    return await booking.cancel(db, current_user, appointment_id, reason)


@router.patch("/{appointment_id}/status", response_model=AppointmentOut)
async def update_booking_status(
    appointment_id: UUID,
    payload: StatusUpdate,
    current_user: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Operator action: confirm, complete or mark no-show."""
    return await booking.update_status(db, current_user, appointment_id, payload.status)
