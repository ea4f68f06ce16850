"""Slot conflict guard and open-slot listing."""

import logging
from datetime import datetime, date, timedelta
from typing import Optional
from uuid import UUID
from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import transaction
from app.core.errors import ValidationFailed
from app.models.appointment import Appointment, ACTIVE_STATUSES
from app.models.barber_availability import BarberAvailability

logger = logging.getLogger(__name__)


def time_to_minutes(t: str) -> int:
    """Convert HH:MM string to minutes since midnight."""
    h, m = map(int, t.split(":"))
    return h * 60 + m


def minutes_to_time(minutes: int) -> str:
    """Convert minutes since midnight to HH:MM string."""
    h = minutes // 60
    m = minutes % 60
    return f"{h:02d}:{m:02d}"


def appointment_window(start_at: datetime) -> tuple[datetime, datetime]:
    return start_at, start_at + timedelta(minutes=settings.APPOINTMENT_DURATION_MINUTES)


async def is_slot_free(
    db: AsyncSession,
    barber_id: UUID,
    start_at: datetime,
    end_at: datetime,
    excluding_appointment_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> bool:
    """True when no BOOKED/CONFIRMED appointment of the barber overlaps [start_at, end_at).

    Appointments that already ended relative to ``now`` never conflict.
    """
    now = now or datetime.utcnow()
    query = select(Appointment.id).where(
        and_(
            Appointment.barber_id == barber_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_at < end_at,
            Appointment.end_at > start_at,
            Appointment.end_at > now,
        )
    )
    if excluding_appointment_id:
        query = query.where(Appointment.id != excluding_appointment_id)

    result = await db.execute(query.limit(1))
    conflict = result.scalar_one_or_none()
    if conflict:
        logger.info("Slot %s-%s for barber %s overlaps appointment %s", start_at, end_at, barber_id, conflict)
        return False
    return True


async def has_client_duplicate(
    db: AsyncSession,
    client_id: UUID,
    start_at: datetime,
    excluding_appointment_id: Optional[UUID] = None,
) -> bool:
    """Same client, same exact start time, still BOOKED/CONFIRMED."""
    query = select(Appointment.id).where(
        Appointment.client_id == client_id,
        Appointment.start_at == start_at,
        Appointment.status.in_(ACTIVE_STATUSES),
    )
    if excluding_appointment_id:
        query = query.where(Appointment.id != excluding_appointment_id)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none() is not None


async def get_weekly_schedule(db: AsyncSession, barber_id: UUID) -> list[BarberAvailability]:
    result = await db.execute(
        select(BarberAvailability)
        .where(BarberAvailability.barber_id == barber_id)
        .order_by(BarberAvailability.weekday, BarberAvailability.starts_at)
    )
    return list(result.scalars().all())


async def working_ranges(db: AsyncSession, barber_id: UUID, weekday: int) -> list[tuple[int, int]]:
    """Working ranges of a barber on a weekday, in minutes since midnight.

    A barber with no weekly schedule at all works shop hours every day. Once
    any range is set, weekdays without one are days off.
    """
    schedule = await get_weekly_schedule(db, barber_id)
    if not schedule:
        return [(time_to_minutes(settings.SHOP_OPENS_AT), time_to_minutes(settings.SHOP_CLOSES_AT))]
    return [
        (time_to_minutes(row.starts_at), time_to_minutes(row.ends_at))
        for row in schedule
        if row.weekday == weekday
    ]


async def is_within_working_hours(db: AsyncSession, barber_id: UUID, start_at: datetime, end_at: datetime) -> bool:
    """True when [start_at, end_at) fits inside one of the barber's ranges that day."""
    start_minutes = start_at.hour * 60 + start_at.minute
    end_minutes = start_minutes + int((end_at - start_at).total_seconds() // 60)
    ranges = await working_ranges(db, barber_id, start_at.weekday())
    return any(opens <= start_minutes and end_minutes <= closes for opens, closes in ranges)


async def replace_weekly_schedule(
    db: AsyncSession,
    barber_id: UUID,
    ranges: list[tuple[int, str, str]],
) -> list[BarberAvailability]:
    """Swap the barber's whole weekly schedule for ``(weekday, starts_at, ends_at)`` ranges.

    An empty list clears the schedule, which puts the barber back on shop hours.
    """
    cleaned = set()
    for weekday, starts_at, ends_at in ranges:
        if not 0 <= weekday <= 6:
            raise ValidationFailed("weekday must be between 0 (Monday) and 6 (Sunday)")
        try:
            opens, closes = time_to_minutes(starts_at), time_to_minutes(ends_at)
        except ValueError:
            raise ValidationFailed("Times must be given as HH:MM")
        if not 0 <= opens < closes <= 24 * 60:
            raise ValidationFailed(f"{starts_at}-{ends_at} is not a valid working range")
        cleaned.add((weekday, minutes_to_time(opens), minutes_to_time(closes)))

    async with transaction(db):
        await db.execute(delete(BarberAvailability).where(BarberAvailability.barber_id == barber_id))
        for weekday, starts_at, ends_at in sorted(cleaned):
            db.add(BarberAvailability(barber_id=barber_id, weekday=weekday, starts_at=starts_at, ends_at=ends_at))
        await db.flush()

    logger.info("Barber %s weekly schedule set to %d ranges", barber_id, len(cleaned))
    return await get_weekly_schedule(db, barber_id)


async def list_open_slots(
    db: AsyncSession,
    barber_id: UUID,
    target_date: date,
    now: Optional[datetime] = None,
) -> list[str]:
    """Free HH:MM start times for a barber on a day, future only."""
    now = now or datetime.utcnow()
    duration = settings.APPOINTMENT_DURATION_MINUTES
    ranges = await working_ranges(db, barber_id, target_date.weekday())
    if not ranges:
        return []

    day_start = datetime.combine(target_date, datetime.min.time())
    day_end = day_start + timedelta(days=1)

    # Fetch the barber's live appointments for this date once
    result = await db.execute(
        select(Appointment).where(
            and_(
                Appointment.barber_id == barber_id,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_at < day_end,
                Appointment.end_at > day_start,
            )
        )
    )
    existing_appointments = result.scalars().all()

    available_slots = set()
    for start_minutes, end_minutes in ranges:
        current = start_minutes
        while current + duration <= end_minutes:
            slot_start = day_start + timedelta(minutes=current)
            slot_end = slot_start + timedelta(minutes=duration)

            if slot_start > now:
                overlaps = any(
                    appt.start_at < slot_end and appt.end_at > slot_start
                    for appt in existing_appointments
                )
                if not overlaps:
                    available_slots.add(current)

            current += duration

    return [minutes_to_time(m) for m in sorted(available_slots)]
