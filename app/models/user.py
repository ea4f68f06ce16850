"""Account model shared by clients, barbers and the shop owner."""

from sqlalchemy import Column, String, DateTime, Boolean, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from datetime import datetime
from app.core.database import Base


class Role(str, enum.Enum):
    CLIENT = "CLIENT"
    BARBER = "BARBER"
    OWNER = "OWNER"


# Roles allowed to hold an appointment as the service provider
PROVIDER_ROLES = (Role.BARBER, Role.OWNER)


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(SQLEnum(Role), nullable=False, default=Role.CLIENT)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_provider(self) -> bool:
        return self.role in PROVIDER_ROLES
