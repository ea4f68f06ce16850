from sqlalchemy import Column, String, Integer, Boolean, DateTime, func, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
import uuid

from app.core.database import Base
from app.models.appointment import ServiceChannel


class Plan(Base):
    """Membership tier. Read-mostly reference data."""

    __tablename__ = "plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String, nullable=False)
    price_monthly_cents = Column(Integer, nullable=False)
    cuts_per_month = Column(Integer, nullable=False, default=0)  # 0 = unlimited
    channel = Column(SQLEnum(ServiceChannel), nullable=False, default=ServiceChannel.SHOP)
    gateway_price_id = Column(String, unique=True, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
