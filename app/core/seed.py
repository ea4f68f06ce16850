"""Seed membership plans on app startup."""

import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import settings
from app.core.database import async_session
from app.models.appointment import ServiceChannel
from app.models.plan import Plan

logger = logging.getLogger(__name__)


def default_plans() -> list[dict]:
    return [
        {
            "name": "Standard",
            "price_monthly_cents": settings.STANDARD_CUT_PRICE_CENTS,
            "cuts_per_month": 2,
            "channel": ServiceChannel.SHOP,
            "gateway_price_id": settings.STRIPE_STANDARD_PRICE_ID or None,
        },
        {
            "name": "Deluxe",
            "price_monthly_cents": settings.DELUXE_CUT_PRICE_CENTS,
            "cuts_per_month": 2,
            "channel": ServiceChannel.HOME,
            "gateway_price_id": settings.STRIPE_DELUXE_PRICE_ID or None,
        },
    ]


async def ensure_plans(db: AsyncSession) -> int:
    """Insert any missing default plan (matched by name). Returns how many were added."""
    added = 0
    for defaults in default_plans():
        result = await db.execute(select(Plan).where(Plan.name == defaults["name"]))
        plan = result.scalars().first()
        if plan:
            if defaults["gateway_price_id"] and not plan.gateway_price_id:
                plan.gateway_price_id = defaults["gateway_price_id"]
            continue
        db.add(Plan(**defaults))
        added += 1
    await db.commit()
    return added


async def seed_plans():
    """Create the default membership plans if they don't exist."""
    async with async_session() as db:
        try:
            added = await ensure_plans(db)
            if added:
                logger.info("Seeded %d membership plan(s)", added)
            else:
                logger.info("Membership plans already present")
        except Exception as e:
            logger.error("Failed to seed membership plans: %s", e)
            await db.rollback()
