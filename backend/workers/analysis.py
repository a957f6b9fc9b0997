"""
Analysis Workers: run queued analyses and fail the ones that stall.

  1. process_analysis: one AI run per admitted analysis (analysis queue)
  2. fail_stale_analyses: sweeper so a stuck run cannot block its user

Schedule: See celery_app.py beat_schedule
"""

import asyncio
import uuid

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from analysis import provider
from analysis.lifecycle import complete_analysis, fail_analysis, find_stale_analyses, mark_processing
from core.states import AnalysisStatus
from workers.celery_app import celery_app

logger = structlog.get_logger()

TERMINAL_STATUSES = (AnalysisStatus.COMPLETED.value, AnalysisStatus.FAILED.value)


@celery_app.task(
    name="workers.analysis.process_analysis",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def process_analysis(self, analysis_id: str):
    """
    Run one admitted analysis through the AI provider.

    Re-delivery of a completed/failed analysis is a no-op; a processing
    one (worker died mid-run) is picked up again.
    """
    run_id = self.request.id or "manual"
    logger.info("analysis_worker.started", analysis_id=analysis_id, run_id=run_id)

    async def _process():
        from core.config import get_settings
        from db.models import Analysis, Store

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

            async with async_session() as db:
                aid = uuid.UUID(analysis_id)
                analysis = await db.get(Analysis, aid)
                if analysis is None:
                    logger.warning("analysis_worker.not_found", analysis_id=analysis_id)
                    return {"status": "skipped", "reason": "not_found"}
                if analysis.status in TERMINAL_STATUSES:
                    logger.info("analysis_worker.already_finished", analysis_id=analysis_id, status=analysis.status)
                    return {"status": "skipped", "reason": f"already_{analysis.status}"}

                if analysis.status == AnalysisStatus.PENDING.value:
                    analysis = await mark_processing(db, aid)
                    await db.commit()

                store = await db.get(Store, analysis.store_id)
                try:
                    output = await provider.generate_analysis(provider.build_context(analysis, store))
                except (httpx.HTTPError, provider.ProviderError) as exc:
                    await fail_analysis(db, aid, f"provider_error: {exc}")
                    await db.commit()
                    return {"status": "failed", "analysis_id": analysis_id, "error": str(exc)}

                _, suggestions = await complete_analysis(db, aid, output)
                await db.commit()

                summary = {
                    "status": "success",
                    "analysis_id": analysis_id,
                    "suggestions": len(suggestions),
                    "run_id": run_id,
                }
                logger.info("analysis_worker.completed", **summary)
                return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_process())
    except Exception as exc:
        logger.error("analysis_worker.failed", analysis_id=analysis_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.analysis.fail_stale_analyses",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def fail_stale_analyses(self):
    """Every 5 minutes: fail (and refund) in-flight analyses with no recent progress."""

    async def _sweep():
        from core.config import get_settings

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

            async with async_session() as db:
                stale_ids = await find_stale_analyses(db)
                for aid in stale_ids:
                    await fail_analysis(db, aid, "timed_out")
                await db.commit()

            summary = {"status": "success", "failed_count": len(stale_ids)}
            logger.info("analysis_worker.stale_swept", **summary)
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_sweep())
    except Exception as exc:
        logger.error("analysis_worker.sweep_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
