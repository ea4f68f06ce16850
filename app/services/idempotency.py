"""Replay detection for booking submissions.

Keys are always derived server-side; anything a client sends as a key is ignored.
"""

import hashlib
from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointment import Appointment, AppointmentStatus


def normalize_identity(identity: str) -> str:
    """Trim and lowercase so ``" Ana@X.com"`` and ``"ana@x.com"`` hash alike."""
    return (identity or "").strip().lower()


def derive_key(client_identity: str, barber_id: UUID, start_at: datetime) -> str:
    """SHA-256 over (client identity, barber, start time)."""
    raw = f"{normalize_identity(client_identity)}|{barber_id}|{start_at.replace(microsecond=0).isoformat()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def checkout_key(session_id: str) -> str:
    """Key for appointments created from a completed gateway checkout."""
    return f"stripe_{session_id}"


async def find_existing(db: AsyncSession, key: str, include_canceled: bool = False) -> Optional[Appointment]:
    """Appointment already created under ``key``.

    Canceled rows free their key for a new booking unless ``include_canceled``.
    """
    query = select(Appointment).where(Appointment.idempotency_key == key)
    if not include_canceled:
        query = query.where(Appointment.status != AppointmentStatus.CANCELED)
    result = await db.execute(query.order_by(Appointment.created_at.desc()))
    return result.scalars().first()
