"""
Suggestions Router: tracked recommendations and their status lifecycle.
"""

import math
from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db
from api.v1.routers.steps import ProgressResponse, StepResponse
from core.access import resolve_store_id
from core.states import SuggestionStatus
from db.models import User
from suggestions import lifecycle
from suggestions import steps as step_service

router = APIRouter(prefix="/api/v1/suggestions", tags=["suggestions"])

Impact = Literal["high", "medium", "low"]


# ─── Schemas ────────────────────────────────────────────────────────────────


class SuggestionResponse(BaseModel):
    suggestion_id: UUID
    analysis_id: UUID | None
    store_id: UUID
    category: str
    title: str
    description: str
    priority: int
    expected_impact: str
    recommended_action: list[str]
    target_metrics: dict | list | str | None = None
    specific_data: dict | list | None = None
    data_justification: str | None = None
    status: str
    was_successful: bool | None
    feedback: str | None = None
    metrics_impact: dict | None = None
    accepted_at: datetime | None = None
    in_progress_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SuggestionDetailResponse(SuggestionResponse):
    steps: list[StepResponse] = []
    progress: ProgressResponse | None = None


class SuggestionPage(BaseModel):
    items: list[SuggestionResponse]
    total: int
    page: int
    per_page: int
    pages: int


class SuggestionCreate(BaseModel):
    store_id: UUID | None = None
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    category: str = "general"
    priority: int = Field(default=0, ge=0)
    expected_impact: Impact = "medium"
    recommended_action: list[str] | str | None = None
    target_metrics: dict | list | str | None = None


class StatusUpdate(BaseModel):
    status: SuggestionStatus
    notes: str | None = Field(default=None, max_length=1000)


class FeedbackUpdate(BaseModel):
    was_successful: bool | None
    feedback: str | None = Field(default=None, max_length=2000)
    metrics_impact: dict | None = None


class TrackingGroup(BaseModel):
    analysis_id: UUID | None
    analysis_created_at: datetime | None
    suggestions: list[SuggestionResponse]
    stats: dict[str, int]


class TrackingResponse(BaseModel):
    groups: list[TrackingGroup]
    stats: dict[str, int]


class ActivityResponse(BaseModel):
    activity_id: UUID
    action_type: str
    from_status: str | None
    to_status: str | None
    notes: str | None
    taken_by: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("", response_model=SuggestionResponse, status_code=status.HTTP_201_CREATED)
async def create_suggestion(
    body: SuggestionCreate,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Create a suggestion by hand (starts pending)."""
    store_id = await resolve_store_id(db, account, body.store_id)
    suggestion = await lifecycle.create_suggestion(
        db,
        account,
        store_id,
        title=body.title,
        description=body.description,
        category=body.category,
        priority=body.priority,
        expected_impact=body.expected_impact,
        recommended_action=body.recommended_action,
        target_metrics=body.target_metrics,
    )
    await db.commit()
    await db.refresh(suggestion)
    return suggestion


@router.get("", response_model=SuggestionPage)
async def list_suggestions(
    store_id: UUID | None = None,
    status: SuggestionStatus | None = None,
    category: str | None = None,
    expected_impact: Impact | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """List a store's suggestions, highest priority first."""
    store_id = await resolve_store_id(db, account, store_id)
    items, total = await lifecycle.list_suggestions(
        db,
        store_id,
        status=status.value if status else None,
        category=category,
        expected_impact=expected_impact,
        page=page,
        per_page=per_page,
    )
    return SuggestionPage(
        items=[SuggestionResponse.model_validate(s) for s in items],
        total=total,
        page=page,
        per_page=per_page,
        pages=math.ceil(total / per_page) if total else 0,
    )


@router.get("/tracking", response_model=TrackingResponse)
async def get_tracking(
    store_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Accepted suggestions grouped by originating analysis."""
    store_id = await resolve_store_id(db, account, store_id)
    return await lifecycle.tracking(db, store_id)


@router.get("/stats", response_model=dict[str, int])
async def get_stats(
    store_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    store_id = await resolve_store_id(db, account, store_id)
    return await lifecycle.status_counts(db, store_id)


@router.get("/{suggestion_id}", response_model=SuggestionDetailResponse)
async def get_suggestion(
    suggestion_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await lifecycle.get_suggestion(db, account, suggestion_id)
    steps = await step_service.list_steps(db, suggestion_id)
    return SuggestionDetailResponse.model_validate(suggestion).model_copy(
        update={
            "steps": [StepResponse.model_validate(s) for s in steps],
            "progress": ProgressResponse(**await step_service.progress(db, suggestion_id)),
        }
    )


@router.patch("/{suggestion_id}/status", response_model=SuggestionResponse)
async def update_status(
    suggestion_id: UUID,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await lifecycle.get_suggestion(db, account, suggestion_id)
    await lifecycle.update_status(
        db, suggestion, body.status.value, acting_user_id=account.user_id, notes=body.notes
    )
    await db.commit()
    await db.refresh(suggestion)
    return suggestion


@router.post("/{suggestion_id}/accept", response_model=SuggestionResponse)
async def accept_suggestion(
    suggestion_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Start tracking the suggestion (moves it to in_progress)."""
    suggestion = await lifecycle.get_suggestion(db, account, suggestion_id)
    await lifecycle.accept(db, suggestion, acting_user_id=account.user_id)
    await db.commit()
    await db.refresh(suggestion)
    return suggestion


@router.post("/{suggestion_id}/reject", response_model=SuggestionResponse)
async def reject_suggestion(
    suggestion_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Dismiss the suggestion (moves it to ignored)."""
    suggestion = await lifecycle.get_suggestion(db, account, suggestion_id)
    await lifecycle.reject(db, suggestion, acting_user_id=account.user_id)
    await db.commit()
    await db.refresh(suggestion)
    return suggestion


@router.patch("/{suggestion_id}/feedback", response_model=SuggestionResponse)
async def update_feedback(
    suggestion_id: UUID,
    body: FeedbackUpdate,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await lifecycle.get_suggestion(db, account, suggestion_id)
    await lifecycle.set_feedback(
        db,
        suggestion,
        body.was_successful,
        feedback=body.feedback,
        metrics_impact=body.metrics_impact,
        acting_user_id=account.user_id,
    )
    await db.commit()
    await db.refresh(suggestion)
    return suggestion


@router.get("/{suggestion_id}/activities", response_model=list[ActivityResponse])
async def list_activities(
    suggestion_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await lifecycle.get_suggestion(db, account, suggestion_id)
    return await lifecycle.list_activities(db, suggestion.suggestion_id)
