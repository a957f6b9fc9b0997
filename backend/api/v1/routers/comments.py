"""
Comments Router: discussion on a suggestion or one of its steps.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db
from db.models import SuggestionComment, User
from suggestions import comments as comment_service
from suggestions.comments import MAX_COMMENT_LENGTH
from suggestions.lifecycle import get_suggestion

router = APIRouter(prefix="/api/v1/suggestions/{suggestion_id}/comments", tags=["comments"])


class CommentResponse(BaseModel):
    comment_id: UUID
    suggestion_id: UUID
    step_id: UUID | None
    step_title: str | None = None
    user_id: UUID
    content: str
    is_general: bool = True
    created_at: datetime

    model_config = {"from_attributes": True}


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=MAX_COMMENT_LENGTH)
    step_id: UUID | None = None


def to_response(comment: SuggestionComment, step_title: str | None = None) -> CommentResponse:
    return CommentResponse.model_validate(comment).model_copy(update={"step_title": step_title})


@router.get("", response_model=list[CommentResponse])
async def list_comments(
    suggestion_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Newest first."""
    suggestion = await get_suggestion(db, account, suggestion_id)
    rows = await comment_service.list_comments(db, suggestion.suggestion_id)
    return [to_response(comment, step_title) for comment, step_title in rows]


@router.post("", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    suggestion_id: UUID,
    body: CommentCreate,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    suggestion = await get_suggestion(db, account, suggestion_id)
    comment = await comment_service.add_comment(db, suggestion, account, body.content, body.step_id)
    await db.commit()
    await db.refresh(comment)
    return to_response(comment)


@router.delete("/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    suggestion_id: UUID,
    comment_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Authors and admins only."""
    suggestion = await get_suggestion(db, account, suggestion_id)
    comment = await comment_service.get_comment(db, suggestion, comment_id)
    await comment_service.delete_comment(db, comment, account)
    await db.commit()
