"""Pydantic schemas for payment intents and gateway checkout."""

from datetime import datetime, date, time
from uuid import UUID
from pydantic import BaseModel, Field
from typing import Optional
from app.models.appointment import AppointmentKind, ServiceChannel
from app.models.payment_intent import PaymentIntentStatus


class IntentCreate(BaseModel):
    kind: AppointmentKind
    channel: ServiceChannel = ServiceChannel.SHOP


class IntentConfirm(BaseModel):
    note_code: str = Field(..., min_length=1, max_length=32)


class IntentOut(BaseModel):
    id: UUID
    amount_cents: int
    kind: str
    note_code: str
    status: PaymentIntentStatus
    expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    payment_url: Optional[str] = None

    class Config:
        from_attributes = True


class CheckoutCreate(BaseModel):
    """Either ``plan_id`` (membership) or barber_id/booking_date/start_time (one paid cut)."""
    success_url: str
    cancel_url: str
    plan_id: Optional[UUID] = None
    barber_id: Optional[UUID] = None
    booking_date: Optional[date] = None
    start_time: Optional[time] = None
    channel: ServiceChannel = ServiceChannel.SHOP


class CheckoutOut(BaseModel):
    checkout_url: str
    session_id: str
