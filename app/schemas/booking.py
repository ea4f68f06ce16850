"""Pydantic schemas for bookings."""

from datetime import datetime, date, time, timezone
from uuid import UUID
from pydantic import BaseModel, Field
from typing import Optional
from app.models.appointment import (
    AppointmentKind,
    AppointmentStatus,
    PaymentChannel,
    PaymentStatus,
    ServiceChannel,
)


def utc_start(day: date, start_time: time) -> datetime:
    """Naive UTC start for a wall-clock time, honoring an explicit offset."""
    start = datetime.combine(day, start_time)
    if start.tzinfo is not None:
        start = start.astimezone(timezone.utc).replace(tzinfo=None)
    return start

class BookingCreate(BaseModel):
    """Schema for a booking or reschedule request. Identity comes from the token."""
    barber_id: UUID
    date: date
    start_time: time  # "14:30" is UTC; "16:30+02:00" is converted
    channel: ServiceChannel = ServiceChannel.SHOP
    claimed_tier: Optional[AppointmentKind] = None
    reschedule_of: Optional[UUID] = None
    payment_intent_id: Optional[UUID] = None
    address: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class AppointmentOut(BaseModel):
    """Schema for returning appointment details."""
    id: UUID
    client_id: UUID
    barber_id: UUID
    start_at: datetime
    end_at: datetime
    status: AppointmentStatus
    channel: ServiceChannel
    kind: AppointmentKind
    price_cents: int
    payment_status: PaymentStatus
    payment_channel: PaymentChannel
    cancel_reason: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookingOut(BaseModel):
    """Booking response envelope."""
    ok: bool = True
    duplicate: bool = False
    appointment: AppointmentOut


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class StatusUpdate(BaseModel):
    status: AppointmentStatus


class AvailableSlotsResponse(BaseModel):
    """Schema for available slots response."""
    barber_id: UUID
    date: date
    slots: list[str]  # ["09:00", "09:30", ...]


class AvailabilityRange(BaseModel):
    weekday: int = Field(..., ge=0, le=6)  # 0 = Monday
    starts_at: str = Field(..., pattern=r"^\d{1,2}:\d{2}$")
    ends_at: str = Field(..., pattern=r"^\d{1,2}:\d{2}$")

    class Config:
        from_attributes = True


class WeeklyAvailability(BaseModel):
    """A barber's whole weekly schedule; an empty list means shop hours."""
    ranges: list[AvailabilityRange] = []
