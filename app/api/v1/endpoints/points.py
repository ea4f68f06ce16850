"""Owner-only corrections to a client's points balance."""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import require_owner
from app.models.user import User
from app.schemas.me import AdjustmentOut, LedgerEntryOut, PointsAdjustment
from app.services import points

router = APIRouter()


@router.post("/adjustments", response_model=AdjustmentOut, status_code=status.HTTP_201_CREATED)
async def adjust_points(
    payload: PointsAdjustment,
    response: Response,
    current_user: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    """Credit or debit a client by hand. Replaying a reference changes nothing."""
    entry = await points.adjust(db, current_user, payload.user_id, payload.delta, payload.reference)
    if entry is None:
        response.status_code = status.HTTP_200_OK

    return AdjustmentOut(
        duplicate=entry is None,
        balance=await points.get_balance(db, payload.user_id),
        entry=LedgerEntryOut.model_validate(entry) if entry else None,
    )
