"""Entitlement (pricing funnel) resolver.

Exactly one tier applies to a client's next booking, first match wins:

1. an ACTIVE or TRIAL subscription gives ``MembershipIncluded``
2. no non-canceled TRIAL_FREE appointment ever gives ``FirstFree``
3. no non-canceled DISCOUNT_SECOND appointment and the most recent completed
   free cut finished less than the window ago gives ``SecondDiscount``
4. anything else is ``OneOff``

The tier is recomputed from stored history on every booking attempt.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import ClassVar, Iterable, Optional, Union
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.appointment import (
    Appointment,
    AppointmentKind,
    AppointmentStatus,
)
from app.models.subscription import Subscription, ENTITLED_STATUSES

logger = logging.getLogger(__name__)

# Statuses that consume a membership cut
ALLOWANCE_STATUSES = (
    AppointmentStatus.BOOKED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.COMPLETED,
)


@dataclass(frozen=True)
class FirstFree:
    kind: ClassVar[AppointmentKind] = AppointmentKind.TRIAL_FREE


@dataclass(frozen=True)
class SecondDiscount:
    amount_cents: int
    deadline: datetime
    kind: ClassVar[AppointmentKind] = AppointmentKind.DISCOUNT_SECOND


@dataclass(frozen=True)
class MembershipIncluded:
    remaining_this_period: Optional[int]  # None = unlimited
    plan_name: str
    subscription_id: Optional[UUID] = None
    period_start: Optional[datetime] = None
    renews_at: Optional[datetime] = None
    kind: ClassVar[AppointmentKind] = AppointmentKind.MEMBERSHIP_INCLUDED

    @property
    def exhausted(self) -> bool:
        return self.remaining_this_period is not None and self.remaining_this_period <= 0

    def covers(self, start_at: datetime) -> bool:
        """Allowance is only counted for cuts inside the paid period."""
        if self.period_start is None or self.renews_at is None:
            return True
        return self.period_start <= start_at < self.renews_at


@dataclass(frozen=True)
class OneOff:
    kind: ClassVar[AppointmentKind] = AppointmentKind.ONE_OFF


Tier = Union[FirstFree, SecondDiscount, MembershipIncluded, OneOff]


def in_billing_period(start_at: datetime, subscription: Subscription) -> bool:
    return subscription.current_period_start <= start_at < subscription.renews_at


def count_membership_usage(appointments: Iterable[Appointment], subscription: Subscription) -> int:
    return sum(
        1
        for appt in appointments
        if appt.kind == AppointmentKind.MEMBERSHIP_INCLUDED
        and appt.status in ALLOWANCE_STATUSES
        and in_billing_period(appt.start_at, subscription)
    )


def remaining_allowance(cuts_per_month: int, used: int) -> Optional[int]:
    if not cuts_per_month:
        return None
    return max(cuts_per_month - used, 0)


def resolve_tier(
    appointments: Iterable[Appointment],
    subscription: Optional[Subscription],
    now: datetime,
) -> Tier:
    """Pure resolution over a client's history.

    ``subscription`` must already be filtered to an entitled one (or None).
    """
    history = list(appointments)

    if subscription is not None:
        used = count_membership_usage(history, subscription)
        return MembershipIncluded(
            remaining_this_period=remaining_allowance(subscription.plan.cuts_per_month, used),
            plan_name=subscription.plan.name,
            subscription_id=subscription.id,
            period_start=subscription.current_period_start,
            renews_at=subscription.renews_at,
        )

    live = [a for a in history if a.status != AppointmentStatus.CANCELED]

    if not any(a.kind == AppointmentKind.TRIAL_FREE for a in live):
        return FirstFree()

    if not any(a.kind == AppointmentKind.DISCOUNT_SECOND for a in live):
        completed_trials = [
            a for a in live
            if a.kind == AppointmentKind.TRIAL_FREE and a.status == AppointmentStatus.COMPLETED
        ]
        if completed_trials:
            anchor = max(a.completed_at or a.end_at for a in completed_trials)
            deadline = anchor + timedelta(days=settings.SECOND_CUT_WINDOW_DAYS)
            if now < deadline:
                return SecondDiscount(amount_cents=settings.SECOND_CUT_PRICE_CENTS, deadline=deadline)

    return OneOff()


async def get_entitled_subscription(db: AsyncSession, client_id: UUID) -> Optional[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == client_id,
            Subscription.status.in_(ENTITLED_STATUSES),
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def count_membership_usage_in_db(db: AsyncSession, client_id: UUID, subscription: Subscription) -> int:
    """Aggregate form of :func:`count_membership_usage`, read from the store."""
    result = await db.execute(
        select(func.count(Appointment.id)).where(
            Appointment.client_id == client_id,
            Appointment.kind == AppointmentKind.MEMBERSHIP_INCLUDED,
            Appointment.status.in_(ALLOWANCE_STATUSES),
            Appointment.start_at >= subscription.current_period_start,
            Appointment.start_at < subscription.renews_at,
        )
    )
    return int(result.scalar_one())


async def resolve_entitlement(db: AsyncSession, client_id: UUID, now: Optional[datetime] = None) -> Tier:
    now = now or datetime.utcnow()
    subscription = await get_entitled_subscription(db, client_id)

    result = await db.execute(select(Appointment).where(Appointment.client_id == client_id))
    appointments = result.scalars().all()

    tier = resolve_tier(appointments, subscription, now)
    logger.debug("Resolved tier for client %s: %s", client_id, tier)
    return tier


def tier_to_dict(tier: Tier) -> dict:
    """Flat projection for the presentation layer."""
    data = {"tier": tier.kind.value}
    if isinstance(tier, SecondDiscount):
        data["amount_cents"] = tier.amount_cents
        data["deadline"] = tier.deadline
    elif isinstance(tier, MembershipIncluded):
        data["remaining_this_period"] = tier.remaining_this_period
        data["plan_name"] = tier.plan_name
        data["renews_at"] = tier.renews_at
    return data
