"""
Analyses Router: request a new analysis and read results.
"""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.admission import get_current_state, request_analysis
from analysis.lifecycle import current_stage_name, progress_percentage
from api.deps import get_current_account, get_db
from core.errors import NotFound
from core.states import AnalysisStatus
from db.models import Analysis, User

router = APIRouter(prefix="/api/v1/analyses", tags=["analyses"])

AnalysisType = Literal["general", "financial", "conversion", "competitors", "campaigns", "tracking"]


# ─── Schemas ────────────────────────────────────────────────────────────────


class AnalysisRequest(BaseModel):
    store_id: UUID | None = None
    analysis_type: AnalysisType = "general"


class AnalysisResponse(BaseModel):
    analysis_id: UUID
    user_id: UUID
    store_id: UUID
    analysis_type: str
    status: str
    period_start: date
    period_end: date
    summary: dict | None = None
    suggestions: list = []
    alerts: list = []
    opportunities: list = []
    credits_used: int
    error_message: str | None = None
    current_stage: int
    total_stages: int
    progress_percentage: int = 0
    current_stage_name: str = ""
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class CurrentAnalysisResponse(BaseModel):
    analysis: AnalysisResponse | None
    pending_analysis: AnalysisResponse | None
    next_available_at: datetime | None
    credits: int


def to_response(analysis: Analysis | None) -> AnalysisResponse | None:
    if analysis is None:
        return None
    return AnalysisResponse.model_validate(analysis).model_copy(
        update={
            "progress_percentage": progress_percentage(analysis),
            "current_stage_name": current_stage_name(analysis),
        }
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("", response_model=AnalysisResponse, status_code=status.HTTP_201_CREATED)
async def create_analysis(
    body: AnalysisRequest | None = None,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Admit a new analysis (rate limit + credits + one in flight per user)."""
    body = body or AnalysisRequest()
    analysis = await request_analysis(
        db,
        account.user_id,
        store_id=body.store_id,
        analysis_type=body.analysis_type,
    )
    return to_response(analysis)


@router.get("/current", response_model=CurrentAnalysisResponse)
async def get_current(
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Latest completed analysis plus the in-flight one, if any."""
    state = await get_current_state(db, account.user_id)
    return CurrentAnalysisResponse(
        analysis=to_response(state["analysis"]),
        pending_analysis=to_response(state["pending_analysis"]),
        next_available_at=state["next_available_at"],
        credits=state["credits"],
    )


@router.get("/history", response_model=list[AnalysisResponse])
async def get_history(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Most recent completed analyses."""
    result = await db.execute(
        select(Analysis)
        .where(Analysis.user_id == account.user_id, Analysis.status == AnalysisStatus.COMPLETED.value)
        .order_by(Analysis.completed_at.desc())
        .limit(limit)
    )
    return [to_response(a) for a in result.scalars().all()]


@router.get("/{analysis_id}", response_model=AnalysisResponse)
async def get_analysis(
    analysis_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    analysis = await db.get(Analysis, analysis_id)
    if analysis is None or analysis.user_id != account.user_id:
        raise NotFound("Analysis not found", analysis_id=str(analysis_id))
    return to_response(analysis)
