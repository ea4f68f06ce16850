"""Points ledger service.

The ledger is append-only: balance is always the sum of deltas, and a debit
recomputes that sum under the client's row lock immediately before appending.
"""

import logging
from typing import Optional
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import transaction
from app.core.errors import InsufficientBalance, NotFound, ValidationFailed
from app.models.points_ledger import PointsLedgerEntry, PointsReason, PointsRefType
from app.models.user import User

logger = logging.getLogger(__name__)


async def lock_user(db: AsyncSession, user_id: UUID) -> Optional[User]:
    """SELECT ... FOR UPDATE on the account row.

    Serializes balance and allowance checks per client for the rest of the
    current transaction.
    """
    result = await db.execute(select(User).where(User.id == user_id).with_for_update())
    return result.scalar_one_or_none()


async def get_balance(db: AsyncSession, user_id: UUID) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(PointsLedgerEntry.delta), 0)).where(
            PointsLedgerEntry.user_id == user_id
        )
    )
    return int(result.scalar_one())


async def list_entries(db: AsyncSession, user_id: UUID, limit: int = 20) -> list[PointsLedgerEntry]:
    result = await db.execute(
        select(PointsLedgerEntry)
        .where(PointsLedgerEntry.user_id == user_id)
        .order_by(PointsLedgerEntry.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def find_entry(
    db: AsyncSession,
    user_id: UUID,
    reason: str,
    ref_type: Optional[str],
    ref_id: Optional[str],
) -> Optional[PointsLedgerEntry]:
    result = await db.execute(
        select(PointsLedgerEntry).where(
            PointsLedgerEntry.user_id == user_id,
            PointsLedgerEntry.reason == reason,
            PointsLedgerEntry.ref_type == ref_type,
            PointsLedgerEntry.ref_id == ref_id,
        )
    )
    return result.scalars().first()


async def credit(
    db: AsyncSession,
    user_id: UUID,
    amount: int,
    reason: str,
    ref_type: Optional[str] = None,
    ref_id: Optional[str] = None,
    idempotent: bool = False,
) -> Optional[PointsLedgerEntry]:
    """Append a positive entry.

    With ``idempotent=True`` an existing entry for the same
    (reason, ref_type, ref_id) makes this a no-op and ``None`` is returned.
    Gateway redeliveries rely on this. The check and the insert run in the
    caller's transaction; the unique ledger index rejects a concurrent twin.
    """
    if amount <= 0:
        raise ValidationFailed("Credit amount must be positive")

    if idempotent:
        existing = await find_entry(db, user_id, reason, ref_type, ref_id)
        if existing:
            logger.info(
                "Points already credited, skipping: user=%s reason=%s ref=%s:%s",
                user_id, reason, ref_type, ref_id,
            )
            return None

    entry = PointsLedgerEntry(
        user_id=user_id,
        delta=amount,
        reason=reason,
        ref_type=ref_type,
        ref_id=ref_id,
    )
    db.add(entry)
    await db.flush()

    logger.info("Credited %d points to user %s (%s %s:%s)", amount, user_id, reason, ref_type, ref_id)
    return entry


async def debit(
    db: AsyncSession,
    user_id: UUID,
    amount: int,
    reason: str,
    ref_type: Optional[str] = None,
    ref_id: Optional[str] = None,
) -> PointsLedgerEntry:
    """Append a negative entry, or raise InsufficientBalance appending nothing."""
    if amount <= 0:
        raise ValidationFailed("Debit amount must be positive")

    await lock_user(db, user_id)
    balance = await get_balance(db, user_id)

    if balance < amount:
        logger.info(
            "Debit rejected for user %s: required=%d available=%d", user_id, amount, balance
        )
        raise InsufficientBalance(required=amount, available=balance)

    entry = PointsLedgerEntry(
        user_id=user_id,
        delta=-amount,
        reason=reason,
        ref_type=ref_type,
        ref_id=ref_id,
    )
    db.add(entry)
    await db.flush()

    logger.info("Debited %d points from user %s (%s %s:%s)", amount, user_id, reason, ref_type, ref_id)
    return entry


async def adjust(
    db: AsyncSession,
    actor: User,
    user_id: UUID,
    delta: int,
    reference: str,
) -> Optional[PointsLedgerEntry]:
    """Owner correction: an offsetting ADJUSTMENT entry of ``delta`` points.

    ``reference`` names the correction (a ticket, a receipt number). Repeating
    a reference for the same client is a no-op and returns None. A negative
    delta larger than the balance raises InsufficientBalance.
    """
    reference = (reference or "").strip()
    if not delta:
        raise ValidationFailed("An adjustment must change the balance")
    if not reference:
        raise ValidationFailed("An adjustment needs a reference")

    async with transaction(db):
        if await lock_user(db, user_id) is None:
            raise NotFound("User not found")

        reason, ref_type = PointsReason.ADJUSTMENT.value, PointsRefType.MANUAL.value
        if await find_entry(db, user_id, reason, ref_type, reference):
            logger.info("Adjustment %s for user %s already applied", reference, user_id)
            return None

        if delta > 0:
            entry = await credit(db, user_id, delta, reason, ref_type, reference)
        else:
            entry = await debit(db, user_id, -delta, reason, ref_type, reference)

    logger.info("User %s adjusted points of %s by %+d (%s)", actor.id, user_id, delta, reference)
    return entry
