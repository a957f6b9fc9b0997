"""
Steps Router: a suggestion's checklist.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db
from db.models import User
from suggestions import steps as step_service
from suggestions.lifecycle import get_suggestion

router = APIRouter(prefix="/api/v1/suggestions/{suggestion_id}/steps", tags=["steps"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class StepResponse(BaseModel):
    step_id: UUID
    suggestion_id: UUID
    title: str
    description: str | None
    position: int
    is_custom: bool
    status: str
    completed_at: datetime | None
    completed_by: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ProgressResponse(BaseModel):
    total: int
    completed: int
    percentage: int


class StepListResponse(BaseModel):
    steps: list[StepResponse]
    progress: ProgressResponse


class StepMutationResponse(BaseModel):
    step: StepResponse
    progress: ProgressResponse


class StepCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
    position: int | None = Field(default=None, ge=0)


class StepUpdate(BaseModel):
    status: Literal["pending", "completed"] | None = None
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
    position: int | None = Field(default=None, ge=0)


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=StepListResponse)
async def list_steps(
    suggestion_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await get_suggestion(db, account, suggestion_id)
    steps = await step_service.list_steps(db, suggestion.suggestion_id)
    return StepListResponse(
        steps=[StepResponse.model_validate(s) for s in steps],
        progress=await step_service.progress(db, suggestion.suggestion_id),
    )


@router.post("", response_model=StepMutationResponse, status_code=status.HTTP_201_CREATED)
async def add_step(
    suggestion_id: UUID,
    body: StepCreate,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Add a custom step (appended unless a position is given)."""
    suggestion = await get_suggestion(db, account, suggestion_id)
    step = await step_service.add_step(db, suggestion, body.title, body.description, body.position)
    await db.commit()
    await db.refresh(step)
    return StepMutationResponse(
        step=StepResponse.model_validate(step),
        progress=await step_service.progress(db, suggestion_id),
    )


@router.patch("/{step_id}", response_model=StepMutationResponse)
async def update_step(
    suggestion_id: UUID,
    step_id: UUID,
    body: StepUpdate,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Toggle completion, or edit a custom step."""
    suggestion = await get_suggestion(db, account, suggestion_id)
    step = await step_service.get_step(db, suggestion, step_id)
    step = await step_service.update_step(
        db,
        step,
        account.user_id,
        status=body.status,
        title=body.title,
        description=body.description,
        position=body.position,
    )
    await db.commit()
    await db.refresh(step)
    return StepMutationResponse(
        step=StepResponse.model_validate(step),
        progress=await step_service.progress(db, suggestion_id),
    )


@router.post("/{step_id}/toggle", response_model=StepMutationResponse)
async def toggle_step(
    suggestion_id: UUID,
    step_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await get_suggestion(db, account, suggestion_id)
    step = await step_service.get_step(db, suggestion, step_id)
    step = await step_service.toggle_step(db, step, account.user_id)
    await db.commit()
    await db.refresh(step)
    return StepMutationResponse(
        step=StepResponse.model_validate(step),
        progress=await step_service.progress(db, suggestion_id),
    )


@router.delete("/{step_id}", response_model=ProgressResponse)
async def delete_step(
    suggestion_id: UUID,
    step_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Delete a custom step; system steps are kept."""
    suggestion = await get_suggestion(db, account, suggestion_id)
    step = await step_service.get_step(db, suggestion, step_id)
    await step_service.delete_step(db, step)
    await db.commit()
    return await step_service.progress(db, suggestion_id)
