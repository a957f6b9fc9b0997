"""
Comment thread for a suggestion. Append-only: create and delete, no edit.
"""

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Forbidden, InvalidStepReference, NotFound, ValidationFailed
from core.states import GeneralScope, StepScope, scope_of
from db.models import Suggestion, SuggestionComment, SuggestionStep, User

logger = structlog.get_logger()

MAX_COMMENT_LENGTH = 2000


async def list_comments(db: AsyncSession, suggestion_id: uuid.UUID) -> list[tuple[SuggestionComment, str | None]]:
    """Newest first, each with the title of the step it is attached to."""
    result = await db.execute(
        select(SuggestionComment, SuggestionStep.title)
        .outerjoin(SuggestionStep, SuggestionStep.step_id == SuggestionComment.step_id)
        .where(SuggestionComment.suggestion_id == suggestion_id)
        .order_by(SuggestionComment.created_at.desc())
    )
    return [(comment, step_title) for comment, step_title in result.all()]


async def add_comment(
    db: AsyncSession,
    suggestion: Suggestion,
    user: User,
    content: str,
    step_id: uuid.UUID | None = None,
) -> SuggestionComment:
    content = (content or "").strip()
    if not content:
        raise ValidationFailed("Comment content is required")
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationFailed(f"Comment content must be at most {MAX_COMMENT_LENGTH} characters")

    scope = scope_of(step_id)
    if isinstance(scope, StepScope):
        step = await db.get(SuggestionStep, scope.ref)
        if step is None or step.suggestion_id != suggestion.suggestion_id:
            raise InvalidStepReference(step_id=str(scope.ref))

    comment = SuggestionComment(
        suggestion_id=suggestion.suggestion_id,
        step_id=None if isinstance(scope, GeneralScope) else scope.ref,
        user_id=user.user_id,
        content=content,
    )
    db.add(comment)
    await db.flush()
    logger.info(
        "suggestion.comment_added",
        suggestion_id=str(suggestion.suggestion_id),
        comment_id=str(comment.comment_id),
        general=comment.is_general,
    )
    return comment


async def get_comment(db: AsyncSession, suggestion: Suggestion, comment_id: uuid.UUID) -> SuggestionComment:
    comment = await db.get(SuggestionComment, comment_id)
    if comment is None or comment.suggestion_id != suggestion.suggestion_id:
        raise NotFound("Comment not found", comment_id=str(comment_id))
    return comment


async def delete_comment(db: AsyncSession, comment: SuggestionComment, acting_user: User) -> None:
    """Only the author or an admin may delete."""
    if comment.user_id != acting_user.user_id and not acting_user.is_admin:
        raise Forbidden("Only the author can delete this comment")
    await db.delete(comment)
    await db.flush()
    logger.info("suggestion.comment_deleted", comment_id=str(comment.comment_id), by=str(acting_user.user_id))
