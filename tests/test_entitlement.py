"""Tests for the pricing funnel resolver."""

from datetime import datetime, timedelta

import pytest

from app.models.appointment import Appointment, AppointmentKind, AppointmentStatus
from app.models.plan import Plan
from app.models.subscription import Subscription, SubscriptionStatus
from app.services.entitlement import (
    FirstFree,
    MembershipIncluded,
    OneOff,
    SecondDiscount,
    resolve_entitlement,
    resolve_tier,
    tier_to_dict,
)

NOW = datetime(2030, 1, 7, 8, 0)


def appt(kind, status, start, completed_at=None):
    return Appointment(
        kind=kind,
        status=status,
        start_at=start,
        end_at=start + timedelta(minutes=30),
        completed_at=completed_at,
    )


def subscription(cuts=2, status=SubscriptionStatus.ACTIVE):
    return Subscription(
        status=status,
        current_period_start=NOW - timedelta(days=5),
        renews_at=NOW + timedelta(days=25),
        plan=Plan(name="Standard", price_monthly_cents=4500, cuts_per_month=cuts),
    )


def test_no_history_is_first_free():
    assert resolve_tier([], None, NOW) == FirstFree()


def test_booked_free_cut_not_completed_falls_to_one_off():
    history = [appt(AppointmentKind.TRIAL_FREE, AppointmentStatus.BOOKED, NOW + timedelta(days=1))]
    assert isinstance(resolve_tier(history, None, NOW), OneOff)


def test_canceled_free_cut_keeps_first_free():
    history = [appt(AppointmentKind.TRIAL_FREE, AppointmentStatus.CANCELED, NOW + timedelta(days=1))]
    assert isinstance(resolve_tier(history, None, NOW), FirstFree)


def test_completed_free_cut_opens_second_discount_window():
    done = NOW - timedelta(days=3)
    history = [appt(AppointmentKind.TRIAL_FREE, AppointmentStatus.COMPLETED, done - timedelta(minutes=30), done)]

    tier = resolve_tier(history, None, NOW)

    assert tier == SecondDiscount(amount_cents=1000, deadline=done + timedelta(days=10))


def test_second_discount_window_closes_after_ten_days():
    done = NOW - timedelta(days=10, minutes=1)
    history = [appt(AppointmentKind.TRIAL_FREE, AppointmentStatus.COMPLETED, done - timedelta(minutes=30), done)]
    assert isinstance(resolve_tier(history, None, NOW), OneOff)


def test_window_anchors_on_end_when_completion_missing():
    start = NOW - timedelta(days=2)
    history = [appt(AppointmentKind.TRIAL_FREE, AppointmentStatus.COMPLETED, start)]

    tier = resolve_tier(history, None, NOW)

    assert isinstance(tier, SecondDiscount)
    assert tier.deadline == start + timedelta(minutes=30) + timedelta(days=10)


def test_used_second_discount_gives_one_off():
    done = NOW - timedelta(days=3)
    history = [
        appt(AppointmentKind.TRIAL_FREE, AppointmentStatus.COMPLETED, done - timedelta(minutes=30), done),
        appt(AppointmentKind.DISCOUNT_SECOND, AppointmentStatus.COMPLETED, NOW - timedelta(days=1)),
    ]
    assert isinstance(resolve_tier(history, None, NOW), OneOff)


def test_membership_dominates_every_other_tier():
    assert isinstance(resolve_tier([], subscription(), NOW), MembershipIncluded)

    done = NOW - timedelta(days=1)
    history = [appt(AppointmentKind.TRIAL_FREE, AppointmentStatus.COMPLETED, done - timedelta(minutes=30), done)]
    assert isinstance(resolve_tier(history, subscription(status=SubscriptionStatus.TRIAL), NOW), MembershipIncluded)


def test_membership_counts_only_this_period():
    sub = subscription(cuts=2)
    history = [
        appt(AppointmentKind.MEMBERSHIP_INCLUDED, AppointmentStatus.COMPLETED, NOW - timedelta(days=2)),
        appt(AppointmentKind.MEMBERSHIP_INCLUDED, AppointmentStatus.CANCELED, NOW + timedelta(days=2)),
        # previous period
        appt(AppointmentKind.MEMBERSHIP_INCLUDED, AppointmentStatus.COMPLETED, NOW - timedelta(days=20)),
    ]

    tier = resolve_tier(history, sub, NOW)

    assert tier.remaining_this_period == 1
    assert tier.plan_name == "Standard"
    assert not tier.exhausted


def test_membership_exhausted_at_allowance():
    history = [
        appt(AppointmentKind.MEMBERSHIP_INCLUDED, AppointmentStatus.BOOKED, NOW + timedelta(days=1)),
        appt(AppointmentKind.MEMBERSHIP_INCLUDED, AppointmentStatus.CONFIRMED, NOW + timedelta(days=2)),
    ]

    tier = resolve_tier(history, subscription(cuts=2), NOW)

    assert tier.remaining_this_period == 0
    assert tier.exhausted


def test_unlimited_plan_has_no_remaining_count():
    tier = resolve_tier([], subscription(cuts=0), NOW)
    assert tier.remaining_this_period is None
    assert not tier.exhausted


def test_tier_projection():
    data = tier_to_dict(SecondDiscount(amount_cents=1000, deadline=NOW))
    assert data == {"tier": "DISCOUNT_SECOND", "amount_cents": 1000, "deadline": NOW}
    assert tier_to_dict(OneOff()) == {"tier": "ONE_OFF"}


@pytest.mark.asyncio
async def test_resolve_entitlement_reads_store(db, client_user, standard_plan, subscribe):
    assert isinstance(await resolve_entitlement(db, client_user.id, NOW), FirstFree)

    await subscribe(client_user, standard_plan)

    tier = await resolve_entitlement(db, client_user.id, NOW)
    assert isinstance(tier, MembershipIncluded)
    assert tier.remaining_this_period == 2


@pytest.mark.asyncio
async def test_past_due_subscription_is_not_entitled(db, client_user, standard_plan, subscribe):
    await subscribe(client_user, standard_plan, status=SubscriptionStatus.PAST_DUE)
    assert isinstance(await resolve_entitlement(db, client_user.id, NOW), FirstFree)
