"""
Analysis Record lifecycle (job-processor side).

    pending -> processing -> completed
    pending | processing -> failed

Only the job processor (worker or result callback) moves an analysis
through these states. None of these functions commit; the caller owns
the transaction so the status write, the refund and the suggestion rows
land together.
"""

import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import InvalidTransition, NotFound, ValidationFailed
from core.states import ANALYSIS_TRANSITIONS, IN_FLIGHT_STATUSES, AnalysisStatus, ensure_transition
from credits import ledger
from db.models import Analysis, Suggestion

logger = structlog.get_logger()

STAGE_NAMES = {
    0: "Waiting",
    1: "Identifying niche",
    2: "Loading history",
    3: "Fetching benchmarks",
    4: "Collecting external data",
    5: "Running collector",
    6: "Running analyst",
    7: "Running strategist",
    8: "Running critic",
    9: "Filtering suggestions",
}


def progress_percentage(analysis: Analysis) -> int:
    if analysis.status == AnalysisStatus.COMPLETED.value:
        return 100
    total = analysis.total_stages or 0
    if total == 0:
        return 0
    return int(round((analysis.current_stage or 0) / total * 100))


def current_stage_name(analysis: Analysis) -> str:
    return STAGE_NAMES.get(analysis.current_stage or 0, "Processing")


async def get_analysis(db: AsyncSession, analysis_id: uuid.UUID, *, for_update: bool = False) -> Analysis:
    query = select(Analysis).where(Analysis.analysis_id == analysis_id)
    if for_update:
        query = query.with_for_update()
    analysis = (await db.execute(query)).scalar_one_or_none()
    if analysis is None:
        raise NotFound("Analysis not found", analysis_id=str(analysis_id))
    return analysis


async def mark_processing(db: AsyncSession, analysis_id: uuid.UUID, now: datetime | None = None) -> Analysis:
    now = now or datetime.utcnow()
    analysis = await get_analysis(db, analysis_id, for_update=True)
    ensure_transition(ANALYSIS_TRANSITIONS, analysis.status, AnalysisStatus.PROCESSING, entity="analysis")

    analysis.status = AnalysisStatus.PROCESSING.value
    analysis.started_at = now
    analysis.last_progress_at = now
    await db.flush()
    logger.info("analysis.processing", analysis_id=str(analysis_id))
    return analysis


async def record_stage_progress(
    db: AsyncSession, analysis_id: uuid.UUID, stage: int, now: datetime | None = None
) -> Analysis:
    """Store the last finished stage of a processing run."""
    analysis = await get_analysis(db, analysis_id, for_update=True)
    if analysis.status != AnalysisStatus.PROCESSING.value:
        raise InvalidTransition(f"Cannot record progress on a {analysis.status} analysis", status=analysis.status)
    if not 0 <= stage <= analysis.total_stages:
        raise ValidationFailed(
            f"stage must be between 0 and {analysis.total_stages}", stage=stage, total_stages=analysis.total_stages
        )

    analysis.current_stage = stage
    analysis.last_progress_at = now or datetime.utcnow()
    await db.flush()
    logger.debug("analysis.stage_progress", analysis_id=str(analysis_id), stage=stage)
    return analysis


async def complete_analysis(
    db: AsyncSession, analysis_id: uuid.UUID, payload: dict, now: datetime | None = None
) -> tuple[Analysis, list[Suggestion]]:
    """Attach the AI output, mark completed and persist one Suggestion per item."""
    from suggestions.lifecycle import persist_suggestions

    now = now or datetime.utcnow()
    analysis = await get_analysis(db, analysis_id, for_update=True)
    ensure_transition(ANALYSIS_TRANSITIONS, analysis.status, AnalysisStatus.COMPLETED, entity="analysis")

    analysis.summary = payload.get("summary")
    analysis.suggestions = list(payload.get("suggestions") or [])
    analysis.alerts = list(payload.get("alerts") or [])
    analysis.opportunities = list(payload.get("opportunities") or [])
    if payload.get("credits_used") is not None:
        analysis.credits_used = int(payload["credits_used"])
    analysis.status = AnalysisStatus.COMPLETED.value
    analysis.current_stage = analysis.total_stages
    analysis.last_progress_at = now
    analysis.completed_at = now
    analysis.error_message = None

    suggestions = await persist_suggestions(db, analysis)
    await db.flush()
    logger.info(
        "analysis.completed",
        analysis_id=str(analysis_id),
        suggestions=len(suggestions),
        alerts=len(analysis.alerts),
    )
    return analysis, suggestions


async def fail_analysis(
    db: AsyncSession,
    analysis_id: uuid.UUID,
    error_message: str,
    now: datetime | None = None,
    *,
    refund: bool | None = None,
) -> Analysis:
    """Mark failed and refund the debited credits.

    ``refund`` overrides the refund_credits_on_failure setting.
    """
    settings = get_settings()
    now = now or datetime.utcnow()
    analysis = await get_analysis(db, analysis_id, for_update=True)
    ensure_transition(ANALYSIS_TRANSITIONS, analysis.status, AnalysisStatus.FAILED, entity="analysis")

    analysis.status = AnalysisStatus.FAILED.value
    analysis.error_message = error_message
    analysis.completed_at = now
    analysis.last_progress_at = now

    if refund is None:
        refund = settings.refund_credits_on_failure
    if refund and analysis.credits_used > 0:
        await ledger.credit(
            db,
            analysis.user_id,
            analysis.credits_used,
            reason="analysis_refund",
            analysis_id=analysis.analysis_id,
        )
    await db.flush()
    logger.warning("analysis.failed", analysis_id=str(analysis_id), error=error_message)
    return analysis


async def find_stale_analyses(db: AsyncSession, now: datetime | None = None) -> list[uuid.UUID]:
    """In-flight analyses with no progress within the stale window."""
    settings = get_settings()
    cutoff = (now or datetime.utcnow()) - timedelta(minutes=settings.analysis_stale_after_minutes)
    result = await db.execute(
        select(Analysis.analysis_id).where(
            Analysis.status.in_([s.value for s in IN_FLIGHT_STATUSES]),
            or_(
                Analysis.last_progress_at < cutoff,
                (Analysis.last_progress_at.is_(None)) & (Analysis.created_at < cutoff),
            ),
        )
    )
    return list(result.scalars().all())
