"""
Admission Controller

Gate on starting a new analysis, checked in this order inside one
transaction:

  1. an analysis already pending/processing  -> AlreadyInFlight
  2. last request inside the cool-down window -> RateLimited(next_available_at)
  3. balance below the per-analysis cost       -> InsufficientCredits
  4. debit + insert the pending analysis, commit, dispatch to the queue

The user row is locked (SELECT ... FOR UPDATE) for the duration, and the
partial unique index ``uq_analyses_user_in_flight`` rejects a second
in-flight row even if two requests slip past the application check.
"""

import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.lifecycle import fail_analysis
from core.access import resolve_store_id
from core.config import get_settings
from core.errors import AlreadyInFlight, DispatchFailed, InsufficientCredits, NotFound, RateLimited
from core.states import IN_FLIGHT_STATUSES, AnalysisStatus
from credits import ledger
from db.models import Analysis, User

logger = structlog.get_logger()

PROCESS_ANALYSIS_TASK = "workers.analysis.process_analysis"
DISPATCH_FAILED = "dispatch_failed"


async def find_in_flight(db: AsyncSession, user_id: uuid.UUID) -> Analysis | None:
    result = await db.execute(
        select(Analysis)
        .where(
            Analysis.user_id == user_id,
            Analysis.status.in_([s.value for s in IN_FLIGHT_STATUSES]),
        )
        .order_by(Analysis.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def next_available_at(db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None) -> datetime | None:
    """When the user may request again, or None if they may request now."""
    settings = get_settings()
    if not settings.analysis_rate_limit_enabled:
        return None

    # Requests that never reached the queue do not start a cool-down.
    result = await db.execute(
        select(Analysis.created_at)
        .where(
            Analysis.user_id == user_id,
            or_(Analysis.error_message.is_(None), Analysis.error_message != DISPATCH_FAILED),
        )
        .order_by(Analysis.created_at.desc())
        .limit(1)
    )
    last_requested_at = result.scalar_one_or_none()
    if last_requested_at is None:
        return None

    available_at = last_requested_at + timedelta(minutes=settings.analysis_rate_limit_minutes)
    if available_at <= (now or datetime.utcnow()):
        return None
    return available_at


async def request_analysis(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    store_id: uuid.UUID | None = None,
    analysis_type: str = "general",
    now: datetime | None = None,
    dispatch=None,
) -> Analysis:
    """Admit a new analysis for the user, or raise the rejection reason.

    ``dispatch`` is called with the committed analysis id; defaults to
    sending ``workers.analysis.process_analysis`` to the Celery broker.
    """
    settings = get_settings()
    now = now or datetime.utcnow()

    user = (
        await db.execute(
            select(User)
            .where(User.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    store_id = await resolve_store_id(db, user, store_id)

    in_flight = await find_in_flight(db, user_id)
    if in_flight is not None:
        logger.info("analysis.rejected", user_id=str(user_id), reason="already_in_flight")
        raise AlreadyInFlight(analysis_id=str(in_flight.analysis_id))

    available_at = await next_available_at(db, user_id, now)
    if available_at is not None:
        logger.info("analysis.rejected", user_id=str(user_id), reason="rate_limited")
        raise RateLimited(available_at)

    cost = settings.analysis_credit_cost
    if user.credits < cost:
        logger.info("analysis.rejected", user_id=str(user_id), reason="insufficient_credits", balance=user.credits)
        raise InsufficientCredits(balance=user.credits, required=cost)

    analysis = Analysis(
        user_id=user_id,
        store_id=store_id,
        analysis_type=analysis_type,
        status=AnalysisStatus.PENDING.value,
        period_start=(now - timedelta(days=settings.analysis_period_days)).date(),
        period_end=now.date(),
        credits_used=cost,
        total_stages=settings.analysis_total_stages,
        created_at=now,
    )
    try:
        db.add(analysis)
        await db.flush()
        await ledger.debit(db, user_id, cost, reason="analysis_request", analysis_id=analysis.analysis_id)
    except IntegrityError:
        await db.rollback()
        logger.info("analysis.rejected", user_id=str(user_id), reason="already_in_flight")
        raise AlreadyInFlight()
    except InsufficientCredits:
        await db.rollback()
        raise

    await db.commit()
    logger.info("analysis.admitted", user_id=str(user_id), analysis_id=str(analysis.analysis_id), cost=cost)

    try:
        (dispatch or dispatch_analysis)(analysis.analysis_id)
    except Exception as exc:
        logger.error("analysis.dispatch_failed", analysis_id=str(analysis.analysis_id), exc_info=True)
        # Never queued, so the credit always goes back.
        await fail_analysis(db, analysis.analysis_id, DISPATCH_FAILED, refund=True)
        await db.commit()
        raise DispatchFailed(analysis_id=str(analysis.analysis_id)) from exc

    return analysis


def dispatch_analysis(analysis_id: uuid.UUID) -> None:
    from workers.celery_app import celery_app

    celery_app.send_task(PROCESS_ANALYSIS_TASK, kwargs={"analysis_id": str(analysis_id)}, queue="analysis")
    logger.info("analysis.dispatched", analysis_id=str(analysis_id))


async def get_current_state(db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None) -> dict:
    """Latest completed analysis, the in-flight (or just failed) one, and admission hints."""
    settings = get_settings()
    now = now or datetime.utcnow()

    latest = (
        await db.execute(
            select(Analysis)
            .where(Analysis.user_id == user_id, Analysis.status == AnalysisStatus.COMPLETED.value)
            .order_by(Analysis.completed_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()

    pending = await find_in_flight(db, user_id)
    if pending is None:
        visible_since = now - timedelta(minutes=settings.analysis_failed_visible_minutes)
        pending = (
            await db.execute(
                select(Analysis)
                .where(
                    Analysis.user_id == user_id,
                    Analysis.status == AnalysisStatus.FAILED.value,
                    Analysis.completed_at >= visible_since,
                )
                .order_by(Analysis.completed_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

    return {
        "analysis": latest,
        "pending_analysis": pending,
        "next_available_at": await next_available_at(db, user_id, now),
        "credits": await ledger.get_balance(db, user_id),
    }
