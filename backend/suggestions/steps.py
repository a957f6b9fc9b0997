"""
Step checklist for a suggestion.

System steps come from the suggestion's recommended_action list
(is_custom=False, positions 0..n-1); users may append custom steps. Only
custom steps can be edited or deleted. Ordering is position, then
insertion.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import CannotDeleteSystemStep, NotFound, SystemStepImmutable, ValidationFailed
from core.states import STEP_TRANSITIONS, StepStatus, ensure_transition
from db.models import Suggestion, SuggestionComment, SuggestionStep

logger = structlog.get_logger()


async def list_steps(db: AsyncSession, suggestion_id: uuid.UUID) -> list[SuggestionStep]:
    result = await db.execute(
        select(SuggestionStep)
        .where(SuggestionStep.suggestion_id == suggestion_id)
        .order_by(SuggestionStep.position, SuggestionStep.created_at)
    )
    return list(result.scalars().all())


async def get_step(db: AsyncSession, suggestion: Suggestion, step_id: uuid.UUID) -> SuggestionStep:
    step = await db.get(SuggestionStep, step_id)
    if step is None or step.suggestion_id != suggestion.suggestion_id:
        raise NotFound("Step not found", step_id=str(step_id))
    return step


async def progress(db: AsyncSession, suggestion_id: uuid.UUID) -> dict:
    """completed / total * 100, rounded; 0 with no steps."""
    result = await db.execute(
        select(SuggestionStep.status, func.count())
        .where(SuggestionStep.suggestion_id == suggestion_id)
        .group_by(SuggestionStep.status)
    )
    counts = dict(result.all())
    total = sum(counts.values())
    completed = counts.get(StepStatus.COMPLETED.value, 0)
    return {
        "total": total,
        "completed": completed,
        "percentage": round(completed / total * 100) if total else 0,
    }


async def add_step(
    db: AsyncSession,
    suggestion: Suggestion,
    title: str,
    description: str | None = None,
    position: int | None = None,
) -> SuggestionStep:
    """Add a custom step; without a position it goes after the current last one."""
    title = (title or "").strip()
    if not title:
        raise ValidationFailed("Step title is required")
    if position is None:
        current_max = (
            await db.execute(
                select(func.max(SuggestionStep.position)).where(
                    SuggestionStep.suggestion_id == suggestion.suggestion_id
                )
            )
        ).scalar_one_or_none()
        position = 0 if current_max is None else current_max + 1
    elif position < 0:
        raise ValidationFailed("position must be >= 0", position=position)

    step = SuggestionStep(
        suggestion_id=suggestion.suggestion_id,
        title=title[:500],
        description=description,
        position=position,
        is_custom=True,
        status=StepStatus.PENDING.value,
    )
    db.add(step)
    await db.flush()
    logger.info("suggestion.step_added", suggestion_id=str(suggestion.suggestion_id), step_id=str(step.step_id))
    return step


async def toggle_step(
    db: AsyncSession, step: SuggestionStep, acting_user_id: uuid.UUID, now: datetime | None = None
) -> SuggestionStep:
    """Flip pending <-> completed, stamping or clearing the completer."""
    if step.status == StepStatus.COMPLETED.value:
        new_status = StepStatus.PENDING
    else:
        new_status = StepStatus.COMPLETED
    ensure_transition(STEP_TRANSITIONS, step.status, new_status, entity="step")

    step.status = new_status.value
    if new_status is StepStatus.COMPLETED:
        step.completed_at = now or datetime.utcnow()
        step.completed_by = acting_user_id
    else:
        step.completed_at = None
        step.completed_by = None
    await db.flush()
    logger.info("suggestion.step_toggled", step_id=str(step.step_id), status=step.status)
    return step


async def update_step(
    db: AsyncSession,
    step: SuggestionStep,
    acting_user_id: uuid.UUID,
    *,
    status: str | None = None,
    title: str | None = None,
    description: str | None = None,
    position: int | None = None,
) -> SuggestionStep:
    if (title, description, position) != (None, None, None):
        if not step.is_custom:
            raise SystemStepImmutable(step_id=str(step.step_id))
        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationFailed("Step title is required")
        if position is not None and position < 0:
            raise ValidationFailed("position must be >= 0", position=position)
    if status is not None:
        status = StepStatus(status).value

    if title is not None:
        step.title = title[:500]
    if description is not None:
        step.description = description
    if position is not None:
        step.position = position
    if status is not None and status != step.status:
        await toggle_step(db, step, acting_user_id)
    await db.flush()
    return step


async def delete_step(db: AsyncSession, step: SuggestionStep) -> None:
    if not step.is_custom:
        raise CannotDeleteSystemStep(step_id=str(step.step_id))
    # Step comments go with the step (ON DELETE CASCADE where FKs are enforced).
    await db.execute(delete(SuggestionComment).where(SuggestionComment.step_id == step.step_id))
    await db.delete(step)
    await db.flush()
    logger.info("suggestion.step_deleted", step_id=str(step.step_id))
