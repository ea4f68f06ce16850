"""Appointment model: the central booking entity.

Partial unique indexes carry the booking invariants into the store so that
concurrent inserts resolve to exactly one winner.
"""

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Index, Enum as SQLEnum, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
from app.core.database import Base
from app.models.user import User  # noqa: F401
from app.models.payment_intent import PaymentIntent  # noqa: F401


class AppointmentStatus(str, enum.Enum):
    BOOKED = "BOOKED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    NO_SHOW = "NO_SHOW"


ACTIVE_STATUSES = (AppointmentStatus.BOOKED, AppointmentStatus.CONFIRMED)
TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELED,
    AppointmentStatus.NO_SHOW,
)


class ServiceChannel(str, enum.Enum):
    SHOP = "SHOP"
    HOME = "HOME"


class AppointmentKind(str, enum.Enum):
    TRIAL_FREE = "TRIAL_FREE"
    DISCOUNT_SECOND = "DISCOUNT_SECOND"
    MEMBERSHIP_INCLUDED = "MEMBERSHIP_INCLUDED"
    ONE_OFF = "ONE_OFF"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    WAIVED = "WAIVED"


class PaymentChannel(str, enum.Enum):
    GATEWAY = "GATEWAY"
    CASH_INTENT = "CASH_INTENT"
    NONE = "NONE"


_ACTIVE = "status IN ('BOOKED', 'CONFIRMED')"
_NOT_CANCELED = "status != 'CANCELED'"
_PROMO = "kind IN ('TRIAL_FREE', 'DISCOUNT_SECOND') AND status != 'CANCELED'"


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_barber_slot", "barber_id", "start_at", unique=True,
            postgresql_where=text(_ACTIVE), sqlite_where=text(_ACTIVE),
        ),
        Index(
            "uq_appointments_client_slot", "client_id", "start_at", unique=True,
            postgresql_where=text(_ACTIVE), sqlite_where=text(_ACTIVE),
        ),
        Index(
            "uq_appointments_idempotency_key", "idempotency_key", unique=True,
            postgresql_where=text(_NOT_CANCELED), sqlite_where=text(_NOT_CANCELED),
        ),
        # One free cut and one second-cut promo per client, ever
        Index(
            "uq_appointments_client_promo", "client_id", "kind", unique=True,
            postgresql_where=text(_PROMO), sqlite_where=text(_PROMO),
        ),
        Index(
            "uq_appointments_payment_intent", "payment_intent_id", unique=True,
            postgresql_where=text(_NOT_CANCELED), sqlite_where=text(_NOT_CANCELED),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    barber_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    start_at = Column(DateTime, nullable=False, index=True)
    end_at = Column(DateTime, nullable=False)
    status = Column(SQLEnum(AppointmentStatus), default=AppointmentStatus.BOOKED, nullable=False, index=True)
    channel = Column(SQLEnum(ServiceChannel), default=ServiceChannel.SHOP, nullable=False)

    # Pricing
    kind = Column(SQLEnum(AppointmentKind), nullable=False)
    price_cents = Column(Integer, nullable=False, default=0)
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_channel = Column(SQLEnum(PaymentChannel), nullable=False, default=PaymentChannel.NONE)
    payment_intent_id = Column(UUID(as_uuid=True), ForeignKey("payment_intents.id"), nullable=True)

    idempotency_key = Column(String, nullable=False)
    cancel_reason = Column(String, nullable=True)
    address = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    client = relationship("User", foreign_keys=[client_id])
    barber = relationship("User", foreign_keys=[barber_id])

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
