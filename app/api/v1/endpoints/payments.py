"""One-time payment intent endpoints."""

from uuid import UUID
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import require_client
from app.models.user import User
from app.schemas.payment import IntentConfirm, IntentCreate, IntentOut
from app.services.payment_intents import confirm_intent, create_intent, payment_url

router = APIRouter()


def _intent_out(intent) -> IntentOut:
    out = IntentOut.model_validate(intent)
    out.payment_url = payment_url(intent)
    return out


@router.post("/intents", response_model=IntentOut, status_code=status.HTTP_201_CREATED)
async def start_intent(
    payload: IntentCreate,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Open a payment intent; the client pays out of band quoting ``note_code``."""
    intent = await create_intent(db, current_user, payload.kind, payload.channel)
    return _intent_out(intent)


@router.post("/intents/{intent_id}/confirm", response_model=IntentOut)
async def confirm(
    intent_id: UUID,
    payload: IntentConfirm,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    intent = await confirm_intent(db, current_user, intent_id, payload.note_code)
    return _intent_out(intent)
