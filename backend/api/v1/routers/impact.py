"""
Impact Router: suggestion outcome dashboard for a store.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db
from core.access import resolve_store_id
from db.models import User
from suggestions.impact import dashboard

router = APIRouter(prefix="/api/v1/impact", tags=["impact"])


class CategoryImpact(BaseModel):
    category: str
    count: int
    in_progress: int
    completed: int
    successful: int
    unsuccessful: int


class TimelineEntry(BaseModel):
    id: UUID
    title: str
    category: str
    status: str
    in_progress_at: datetime | None
    completed_at: datetime | None


class ImpactDashboard(BaseModel):
    total: int
    pending: int
    in_progress: int
    completed: int
    ignored: int
    successful: int
    unsuccessful: int
    pending_feedback: int
    success_rate: float | None
    by_category: list[CategoryImpact]
    timeline: list[TimelineEntry]


@router.get("/dashboard", response_model=ImpactDashboard)
async def get_dashboard(
    store_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
    account: User = Depends(get_current_account),
):
    """Outcome rollup for the given (or active) store."""
    store_id = await resolve_store_id(db, account, store_id)
    return await dashboard(db, store_id)
