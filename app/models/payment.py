"""Record of money received through the payment gateway."""

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from datetime import datetime
from app.core.database import Base
from app.models.user import User  # noqa: F401


class PaymentKind(str, enum.Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    ONEOFF = "ONEOFF"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    gateway_payment_id = Column(String, unique=True, nullable=False)  # replay guard
    amount_cents = Column(Integer, nullable=False)
    kind = Column(SQLEnum(PaymentKind), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
