"""Weekly working hours of a barber."""

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from app.core.database import Base
from app.models.user import User  # noqa: F401


class BarberAvailability(Base):
    """One working range on one weekday; a day may hold several ranges."""

    __tablename__ = "barber_availability"
    __table_args__ = (
        UniqueConstraint("barber_id", "weekday", "starts_at", "ends_at", name="uq_barber_availability_range"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    barber_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # 0 = Monday, as date.weekday()
    starts_at = Column(String(5), nullable=False)  # HH:MM
    ends_at = Column(String(5), nullable=False)  # HH:MM
    created_at = Column(DateTime, default=datetime.utcnow)
