"""
Credit Ledger

Per-user integer balance with atomic debit/credit. The debit is a single
conditional UPDATE (``credits >= amount`` in the WHERE clause), so two
concurrent debits against the last credit serialize on the row and only
one matches. The ``ck_user_credits_non_negative`` check constraint is the
backstop.

Every balance change appends a CreditTransaction in the caller's
transaction; nothing here commits.
"""

import uuid

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InsufficientCredits, NotFound, ValidationFailed
from db.models import CreditTransaction, User

logger = structlog.get_logger()


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(select(User.credits).where(User.user_id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFound("User not found")
    return balance


async def debit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    *,
    reason: str,
    analysis_id: uuid.UUID | None = None,
    created_by: uuid.UUID | None = None,
) -> int:
    """Atomically decrement a balance. Returns the new balance.

    Raises InsufficientCredits (and writes nothing) when balance < amount.
    """
    if amount <= 0:
        raise ValidationFailed("Debit amount must be positive", amount=amount)

    result = await db.execute(
        update(User)
        .where(User.user_id == user_id, User.credits >= amount)
        .values(credits=User.credits - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        balance = await get_balance(db, user_id)
        logger.info("credits.debit_rejected", user_id=str(user_id), amount=amount, balance=balance)
        raise InsufficientCredits(balance=balance, required=amount)

    balance = await _refresh_balance(db, user_id)
    db.add(
        CreditTransaction(
            user_id=user_id,
            amount=-amount,
            balance_after=balance,
            reason=reason,
            analysis_id=analysis_id,
            created_by=created_by,
        )
    )
    logger.info("credits.debited", user_id=str(user_id), amount=amount, balance=balance, reason=reason)
    return balance


async def credit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    *,
    reason: str,
    analysis_id: uuid.UUID | None = None,
    created_by: uuid.UUID | None = None,
    note: str | None = None,
) -> int:
    """Atomically increment a balance (refunds, admin grants). Returns the new balance."""
    if amount <= 0:
        raise ValidationFailed("Credit amount must be positive", amount=amount)

    result = await db.execute(
        update(User)
        .where(User.user_id == user_id)
        .values(credits=User.credits + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("User not found")

    balance = await _refresh_balance(db, user_id)
    db.add(
        CreditTransaction(
            user_id=user_id,
            amount=amount,
            balance_after=balance,
            reason=reason,
            analysis_id=analysis_id,
            created_by=created_by,
            note=note,
        )
    )
    logger.info("credits.credited", user_id=str(user_id), amount=amount, balance=balance, reason=reason)
    return balance


async def list_transactions(db: AsyncSession, user_id: uuid.UUID, limit: int = 50) -> list[CreditTransaction]:
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def _refresh_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    # Reload so any User already in the identity map sees the new balance.
    result = await db.execute(
        select(User).where(User.user_id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one().credits
