"""
Task workflow for a suggestion.

A task is general (step_index is None) or linked to one entry of the
suggestion's recommended_action list by ordinal. Status only moves
through start() / complete() / uncomplete() so completed_at and
completed_by always agree with the status.
"""

import uuid
from datetime import date, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidStepIndex, NotFound, ValidationFailed
from core.states import TASK_TRANSITIONS, TaskStatus, ensure_transition
from db.models import Suggestion, SuggestionTask

logger = structlog.get_logger()


def validate_step_index(suggestion: Suggestion, step_index: int | None) -> None:
    if step_index is None:
        return
    actions = suggestion.recommended_action or []
    if not 0 <= step_index < len(actions):
        raise InvalidStepIndex(step_index=step_index, available_steps=len(actions))


async def list_tasks(db: AsyncSession, suggestion_id: uuid.UUID) -> list[SuggestionTask]:
    """General tasks first, then by step_index, then creation."""
    result = await db.execute(
        select(SuggestionTask)
        .where(SuggestionTask.suggestion_id == suggestion_id)
        .order_by(
            SuggestionTask.step_index.is_not(None),
            SuggestionTask.step_index,
            SuggestionTask.created_at,
        )
    )
    return list(result.scalars().all())


async def get_task(db: AsyncSession, suggestion: Suggestion, task_id: uuid.UUID) -> SuggestionTask:
    task = await db.get(SuggestionTask, task_id)
    if task is None or task.suggestion_id != suggestion.suggestion_id:
        raise NotFound("Task not found", task_id=str(task_id))
    return task


async def create_task(
    db: AsyncSession,
    suggestion: Suggestion,
    acting_user_id: uuid.UUID,
    *,
    title: str,
    description: str | None = None,
    step_index: int | None = None,
    due_date: date | None = None,
    status: str | None = None,
    today: date | None = None,
) -> SuggestionTask:
    title = (title or "").strip()
    if not title:
        raise ValidationFailed("Task title is required")
    validate_step_index(suggestion, step_index)
    if due_date is not None and due_date < (today or date.today()):
        raise ValidationFailed("due_date cannot be in the past", due_date=due_date.isoformat())
    status = TaskStatus(status or TaskStatus.PENDING).value

    task = SuggestionTask(
        suggestion_id=suggestion.suggestion_id,
        step_index=step_index,
        title=title[:500],
        description=description,
        due_date=due_date,
        status=status,
        created_by=acting_user_id,
    )
    if status == TaskStatus.COMPLETED.value:
        task.completed_at = datetime.utcnow()
        task.completed_by = acting_user_id
    db.add(task)
    await db.flush()
    logger.info(
        "suggestion.task_created",
        suggestion_id=str(suggestion.suggestion_id),
        task_id=str(task.task_id),
        step_index=step_index,
    )
    return task


async def start(db: AsyncSession, task: SuggestionTask) -> SuggestionTask:
    ensure_transition(TASK_TRANSITIONS, task.status, TaskStatus.IN_PROGRESS, entity="task")
    task.status = TaskStatus.IN_PROGRESS.value
    await db.flush()
    return task


async def complete(
    db: AsyncSession, task: SuggestionTask, acting_user_id: uuid.UUID, now: datetime | None = None
) -> SuggestionTask:
    ensure_transition(TASK_TRANSITIONS, task.status, TaskStatus.COMPLETED, entity="task")
    task.status = TaskStatus.COMPLETED.value
    task.completed_at = now or datetime.utcnow()
    task.completed_by = acting_user_id
    await db.flush()
    return task


async def uncomplete(db: AsyncSession, task: SuggestionTask) -> SuggestionTask:
    ensure_transition(TASK_TRANSITIONS, task.status, TaskStatus.PENDING, entity="task")
    task.status = TaskStatus.PENDING.value
    task.completed_at = None
    task.completed_by = None
    await db.flush()
    return task


async def transition(db: AsyncSession, task: SuggestionTask, new_status: str, acting_user_id: uuid.UUID):
    """Route a requested status through the named operations."""
    new_status = TaskStatus(new_status)
    if new_status.value == task.status:
        return task
    if new_status is TaskStatus.IN_PROGRESS:
        task = await start(db, task)
    elif new_status is TaskStatus.COMPLETED:
        task = await complete(db, task, acting_user_id)
    else:
        task = await uncomplete(db, task)
    logger.info("suggestion.task_status_changed", task_id=str(task.task_id), status=task.status)
    return task


async def update_task(
    db: AsyncSession,
    task: SuggestionTask,
    acting_user_id: uuid.UUID,
    *,
    title: str | None = None,
    description: str | None = None,
    due_date: date | None = None,
    status: str | None = None,
) -> SuggestionTask:
    if title is not None:
        title = title.strip()
        if not title:
            raise ValidationFailed("Task title is required")
    if status is not None:
        new_status = TaskStatus(status)
        if new_status.value != task.status:
            # Check the edge before touching any field.
            ensure_transition(TASK_TRANSITIONS, task.status, new_status, entity="task")

    if title is not None:
        task.title = title[:500]
    if description is not None:
        task.description = description
    if due_date is not None:
        task.due_date = due_date
    if status is not None:
        await transition(db, task, status, acting_user_id)
    await db.flush()
    return task


async def delete_task(db: AsyncSession, task: SuggestionTask) -> None:
    await db.delete(task)
    await db.flush()
    logger.info("suggestion.task_deleted", task_id=str(task.task_id))
