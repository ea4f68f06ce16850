"""Read-only views of the signed-in client's points and pricing tier."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_current_user
from app.models.user import User
from app.schemas.me import EntitlementOut, LedgerEntryOut, PointsOut
from app.services import points
from app.services.entitlement import resolve_entitlement, tier_to_dict

router = APIRouter()


@router.get("/points", response_model=PointsOut)
async def my_points(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    balance = await points.get_balance(db, current_user.id)
    entries = await points.list_entries(db, current_user.id, limit=limit)
    return PointsOut(
        balance=balance,
        entries=[LedgerEntryOut.model_validate(e) for e in entries],
    )


@router.get("/entitlement", response_model=EntitlementOut)
async def my_entitlement(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Which pricing tier applies to the next booking."""
    tier = await resolve_entitlement(db, current_user.id)
    return EntitlementOut(**tier_to_dict(tier))
