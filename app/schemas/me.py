"""Points and pricing tier projections, plus the owner's points corrections."""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field
from typing import Optional


class LedgerEntryOut(BaseModel):
    delta: int
    reason: str
    ref_type: Optional[str] = None
    ref_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PointsOut(BaseModel):
    balance: int
    entries: list[LedgerEntryOut] = []


class EntitlementOut(BaseModel):
    tier: str  # TRIAL_FREE | DISCOUNT_SECOND | MEMBERSHIP_INCLUDED | ONE_OFF
    amount_cents: Optional[int] = None
    deadline: Optional[datetime] = None
    remaining_this_period: Optional[int] = None
    plan_name: Optional[str] = None
    renews_at: Optional[datetime] = None


class PointsAdjustment(BaseModel):
    user_id: UUID
    delta: int  # positive credits, negative debits
    reference: str = Field(..., min_length=1, max_length=100)


class AdjustmentOut(BaseModel):
    duplicate: bool = False
    balance: int
    entry: Optional[LedgerEntryOut] = None
