"""
Credits Router: balance, ledger history, and admin grants.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db, require_admin
from credits import ledger
from db.models import User

router = APIRouter(prefix="/api/v1/credits", tags=["credits"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CreditTransactionResponse(BaseModel):
    transaction_id: UUID
    amount: int
    balance_after: int
    reason: str
    analysis_id: UUID | None
    note: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditsResponse(BaseModel):
    balance: int
    transactions: list[CreditTransactionResponse]


class CreditGrantRequest(BaseModel):
    user_id: UUID
    amount: int = Field(gt=0)
    note: str | None = Field(default=None, max_length=500)


class CreditGrantResponse(BaseModel):
    user_id: UUID
    balance: int


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=CreditsResponse)
async def get_credits(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Current balance and the latest ledger entries."""
    balance = await ledger.get_balance(db, account.user_id)
    transactions = await ledger.list_transactions(db, account.user_id, limit=limit)
    return CreditsResponse(
        balance=balance,
        transactions=[CreditTransactionResponse.model_validate(t) for t in transactions],
    )


@router.post("/grant", response_model=CreditGrantResponse)
async def grant_credits(
    body: CreditGrantRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Add credits to a user's balance (admin only)."""
    balance = await ledger.credit(
        db,
        body.user_id,
        body.amount,
        reason="admin_grant",
        created_by=admin.user_id,
        note=body.note,
    )
    await db.commit()
    return CreditGrantResponse(user_id=body.user_id, balance=balance)
