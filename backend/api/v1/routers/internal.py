"""
Internal Router: job processor callbacks (X-Job-Token authenticated).
"""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from analysis import lifecycle
from api.deps import get_db, require_job_token
from api.v1.routers.analyses import AnalysisResponse, to_response
from core.states import AnalysisStatus

router = APIRouter(
    prefix="/api/v1/internal",
    tags=["internal"],
    dependencies=[Depends(require_job_token)],
)


class AnalysisResultRequest(BaseModel):
    status: Literal["processing", "completed", "failed"]
    stage: int | None = Field(default=None, ge=0)
    summary: dict | None = None
    suggestions: list[dict] | None = None
    alerts: list | None = None
    opportunities: list | None = None
    credits_used: int | None = Field(default=None, ge=0)
    error_message: str | None = None


@router.post("/analyses/{analysis_id}/result", response_model=AnalysisResponse)
async def report_analysis_result(
    analysis_id: UUID,
    body: AnalysisResultRequest,
    db: AsyncSession = Depends(get_db),
):
    """Progress, completion or failure reported by the job processor."""
    analysis = await lifecycle.get_analysis(db, analysis_id)

    if body.status == "failed":
        analysis = await lifecycle.fail_analysis(db, analysis_id, body.error_message or "processor_failed")
    elif body.status == "processing":
        if analysis.status != AnalysisStatus.PROCESSING.value:
            analysis = await lifecycle.mark_processing(db, analysis_id)
        if body.stage is not None:
            analysis = await lifecycle.record_stage_progress(db, analysis_id, body.stage)
    else:
        # A processor may report completion without a separate "processing" call.
        if analysis.status == AnalysisStatus.PENDING.value:
            analysis = await lifecycle.mark_processing(db, analysis_id)
        analysis, _ = await lifecycle.complete_analysis(
            db, analysis_id, body.model_dump(exclude={"status", "stage", "error_message"})
        )

    await db.commit()
    await db.refresh(analysis)
    return to_response(analysis)
