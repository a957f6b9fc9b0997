"""
Impact Aggregator: read-side rollup of a store's suggestions.

No state of its own; joins nothing on analyses, so suggestions whose
analysis was deleted are counted like any other.
"""

import uuid
from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.states import SuggestionStatus
from db.models import Suggestion


def _success_rate(successful: int, unsuccessful: int) -> float | None:
    rated = successful + unsuccessful
    if rated == 0:
        return None
    return round(successful / rated * 100, 1)


async def dashboard(db: AsyncSession, store_id: uuid.UUID) -> dict:
    suggestions = (
        (await db.execute(select(Suggestion).where(Suggestion.store_id == store_id))).scalars().all()
    )

    totals = {
        "total": 0,
        "pending": 0,
        "in_progress": 0,
        "completed": 0,
        "ignored": 0,
        "successful": 0,
        "unsuccessful": 0,
        "pending_feedback": 0,
    }
    by_category: dict[str, dict] = defaultdict(
        lambda: {"count": 0, "in_progress": 0, "completed": 0, "successful": 0, "unsuccessful": 0}
    )

    for s in suggestions:
        bucket = by_category[s.category]
        totals["total"] += 1
        bucket["count"] += 1
        totals[s.status] += 1
        if s.status in (SuggestionStatus.IN_PROGRESS.value, SuggestionStatus.COMPLETED.value):
            bucket[s.status] += 1

        if s.was_successful is True:
            totals["successful"] += 1
            bucket["successful"] += 1
        elif s.was_successful is False:
            totals["unsuccessful"] += 1
            bucket["unsuccessful"] += 1
        elif s.status == SuggestionStatus.COMPLETED.value:
            totals["pending_feedback"] += 1

    timeline = sorted(
        (
            s
            for s in suggestions
            if s.status in (SuggestionStatus.IN_PROGRESS.value, SuggestionStatus.COMPLETED.value)
        ),
        key=lambda s: (s.in_progress_at is None, s.in_progress_at or s.created_at),
    )

    return {
        **totals,
        "success_rate": _success_rate(totals["successful"], totals["unsuccessful"]),
        "by_category": [
            {"category": category, **counts}
            for category, counts in sorted(by_category.items(), key=lambda item: -item[1]["count"])
        ],
        "timeline": [
            {
                "id": s.suggestion_id,
                "title": s.title,
                "category": s.category,
                "status": s.status,
                "in_progress_at": s.in_progress_at,
                "completed_at": s.completed_at,
            }
            for s in timeline
        ],
    }
