"""
Tasks Router: due-dated action items of a suggestion.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db
from core.states import TaskStatus
from db.models import SuggestionTask, User
from suggestions import tasks as task_service
from suggestions.lifecycle import get_suggestion

router = APIRouter(prefix="/api/v1/suggestions/{suggestion_id}/tasks", tags=["tasks"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class TaskResponse(BaseModel):
    task_id: UUID
    suggestion_id: UUID
    step_index: int | None
    title: str
    description: str | None
    status: str
    due_date: date | None
    completed_at: datetime | None
    completed_by: UUID | None
    created_by: UUID | None
    created_at: datetime
    is_general: bool = False

    model_config = {"from_attributes": True}


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    total: int
    completed: int


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
    step_index: int | None = Field(default=None, ge=0)
    due_date: date | None = None
    status: TaskStatus | None = None


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
    due_date: date | None = None
    status: TaskStatus | None = None


def to_response(task: SuggestionTask) -> TaskResponse:
    return TaskResponse.model_validate(task)


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    suggestion_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await get_suggestion(db, account, suggestion_id)
    tasks = await task_service.list_tasks(db, suggestion.suggestion_id)
    return TaskListResponse(
        tasks=[to_response(t) for t in tasks],
        total=len(tasks),
        completed=sum(1 for t in tasks if t.status == TaskStatus.COMPLETED.value),
    )


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    suggestion_id: UUID,
    body: TaskCreate,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Create a general task, or one linked to a recommended action by index."""
    suggestion = await get_suggestion(db, account, suggestion_id)
    task = await task_service.create_task(
        db,
        suggestion,
        account.user_id,
        title=body.title,
        description=body.description,
        step_index=body.step_index,
        due_date=body.due_date,
        status=body.status.value if body.status else None,
    )
    await db.commit()
    await db.refresh(task)
    return to_response(task)


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    suggestion_id: UUID,
    task_id: UUID,
    body: TaskUpdate,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await get_suggestion(db, account, suggestion_id)
    task = await task_service.get_task(db, suggestion, task_id)
    task = await task_service.update_task(
        db,
        task,
        account.user_id,
        title=body.title,
        description=body.description,
        due_date=body.due_date,
        status=body.status.value if body.status else None,
    )
    await db.commit()
    await db.refresh(task)
    return to_response(task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    suggestion_id: UUID,
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await get_suggestion(db, account, suggestion_id)
    task = await task_service.get_task(db, suggestion, task_id)
    await task_service.delete_task(db, task)
    await db.commit()
