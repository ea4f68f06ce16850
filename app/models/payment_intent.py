"""One-time out-of-band payment intent (pay-by-app with a note code)."""

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from datetime import datetime
from app.core.database import Base
from app.models.user import User  # noqa: F401


class PaymentIntentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class PaymentIntent(Base):
    __tablename__ = "payment_intents"
    __table_args__ = (
        Index("ix_payment_intents_user_status", "user_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    kind = Column(String, nullable=False)  # appointment kind the intent pays for
    note_code = Column(String, nullable=False)
    status = Column(SQLEnum(PaymentIntentStatus), nullable=False, default=PaymentIntentStatus.PENDING)
    expires_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
