"""Append-only points ledger."""

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from datetime import datetime
from app.core.database import Base
from app.models.user import User  # noqa: F401


class PointsReason(str, enum.Enum):
    SUBSCRIBE_INIT = "SUBSCRIBE_INIT"
    RENEWAL = "RENEWAL"
    BOOKING_DEBIT = "BOOKING_DEBIT"
    ADJUSTMENT = "ADJUSTMENT"


class PointsRefType(str, enum.Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    INVOICE = "INVOICE"
    BOOKING = "BOOKING"
    MANUAL = "MANUAL"


class PointsLedgerEntry(Base):
    """Rows are never updated or deleted; corrections are offsetting entries."""

    __tablename__ = "points_ledger"
    __table_args__ = (
        # One entry per (reason, reference) per client
        Index("uq_points_ledger_reference", "user_id", "reason", "ref_type", "ref_id", unique=True),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    ref_type = Column(String, nullable=True)
    ref_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
