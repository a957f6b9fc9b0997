"""
Suggestion lifecycle.

    pending     -> in_progress | completed | ignored
    in_progress -> completed | ignored
    completed   -> in_progress   (reopen)
    ignored     -> pending       (un-ignore)

accept() is the move into in_progress (the suggestion leaves the analysis
page and becomes tracked); reject() is the move into ignored. Feedback
(was_successful) is independent of status. Every change appends a
SuggestionActivity row in the same transaction.
"""

import re
import uuid
from collections import Counter, defaultdict
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.access import ensure_store_access
from core.errors import NotFound, ValidationFailed
from core.states import SUGGESTION_TRANSITIONS, StepStatus, SuggestionStatus, ensure_transition
from db.models import EXPECTED_IMPACTS, Analysis, Suggestion, SuggestionActivity, SuggestionStep, User

logger = structlog.get_logger()

CATEGORIES = (
    "inventory",
    "coupon",
    "product",
    "marketing",
    "operational",
    "customer",
    "conversion",
    "pricing",
    "general",
)
TRACKED_STATUSES = (SuggestionStatus.IN_PROGRESS.value, SuggestionStatus.COMPLETED.value)

_NUMBERING = re.compile(r"^\s*(?:\d+\s*[.)-]|[-*•])\s*")


def normalize_actions(recommended_action) -> list[str]:
    """Recommended actions as a clean list; a string is split into lines."""
    if not recommended_action:
        return []
    if isinstance(recommended_action, str):
        items = recommended_action.splitlines()
    else:
        items = [str(item) for item in recommended_action]
    actions = [_NUMBERING.sub("", item).strip() for item in items]
    return [action for action in actions if action]


# ─── Loading ───────────────────────────────────────────────────────────────


async def get_suggestion(db: AsyncSession, user: User, suggestion_id: uuid.UUID) -> Suggestion:
    """Load a suggestion the user may act on (NotFound / Forbidden otherwise)."""
    suggestion = await db.get(Suggestion, suggestion_id)
    if suggestion is None:
        raise NotFound("Suggestion not found", suggestion_id=str(suggestion_id))
    await ensure_store_access(db, user, suggestion.store_id)
    return suggestion


# ─── Creation ──────────────────────────────────────────────────────────────


async def create_suggestion(
    db: AsyncSession,
    user: User,
    store_id: uuid.UUID,
    *,
    title: str,
    description: str = "",
    category: str = "general",
    priority: int = 0,
    expected_impact: str = "medium",
    recommended_action=None,
    target_metrics=None,
) -> Suggestion:
    await ensure_store_access(db, user, store_id)
    if expected_impact not in EXPECTED_IMPACTS:
        raise ValidationFailed(f"expected_impact must be one of {', '.join(EXPECTED_IMPACTS)}")

    suggestion = Suggestion(
        store_id=store_id,
        title=title,
        description=description,
        category=category,
        priority=priority,
        expected_impact=expected_impact,
        recommended_action=normalize_actions(recommended_action),
        target_metrics=target_metrics,
        status=SuggestionStatus.PENDING.value,
    )
    db.add(suggestion)
    await db.flush()
    _create_system_steps(db, suggestion)
    _record(db, suggestion, "created", None, suggestion.status, user.user_id)
    await db.flush()
    logger.info("suggestion.created", suggestion_id=str(suggestion.suggestion_id), store_id=str(store_id))
    return suggestion


async def persist_suggestions(db: AsyncSession, analysis: Analysis) -> list[Suggestion]:
    """One Suggestion row (with its system steps) per AI suggestion of the analysis."""
    created = []
    for index, item in enumerate(analysis.suggestions or []):
        if not isinstance(item, dict):
            continue
        expected_impact = item.get("expected_impact") or "medium"
        if expected_impact not in EXPECTED_IMPACTS:
            expected_impact = "medium"
        category = item.get("category")
        if category not in CATEGORIES:
            category = "general"
        suggestion = Suggestion(
            analysis_id=analysis.analysis_id,
            store_id=analysis.store_id,
            category=category,
            title=(item.get("title") or "Untitled suggestion")[:500],
            description=item.get("description") or "",
            recommended_action=normalize_actions(item.get("recommended_action")),
            expected_impact=expected_impact,
            priority=_priority(item, index),
            target_metrics=item.get("target_metrics"),
            specific_data=item.get("specific_data"),
            data_justification=item.get("data_justification"),
            status=SuggestionStatus.PENDING.value,
        )
        db.add(suggestion)
        created.append(suggestion)

    await db.flush()
    for suggestion in created:
        _create_system_steps(db, suggestion)
    return created


def _priority(item: dict, index: int) -> int:
    # "priority" in the AI output is a high/medium/low label; the rank is "final_priority".
    rank = item.get("final_priority")
    if isinstance(rank, int) and not isinstance(rank, bool) and rank > 0:
        return rank
    return index + 1


def _create_system_steps(db: AsyncSession, suggestion: Suggestion) -> None:
    for position, action in enumerate(suggestion.recommended_action or []):
        db.add(
            SuggestionStep(
                suggestion_id=suggestion.suggestion_id,
                title=action[:500],
                position=position,
                is_custom=False,
                status=StepStatus.PENDING.value,
            )
        )


# ─── Status ────────────────────────────────────────────────────────────────


async def update_status(
    db: AsyncSession,
    suggestion: Suggestion,
    new_status: str,
    *,
    acting_user_id: uuid.UUID | None = None,
    action_type: str = "status_changed",
    notes: str | None = None,
    now: datetime | None = None,
) -> Suggestion:
    """Move along an allowed edge; anything else raises InvalidTransition."""
    ensure_transition(SUGGESTION_TRANSITIONS, suggestion.status, new_status, entity="suggestion")
    now = now or datetime.utcnow()
    old_status = suggestion.status
    new_status = SuggestionStatus(new_status).value

    suggestion.status = new_status
    if new_status == SuggestionStatus.IN_PROGRESS.value:
        suggestion.in_progress_at = now
    if new_status == SuggestionStatus.COMPLETED.value:
        suggestion.completed_at = now
    elif old_status == SuggestionStatus.COMPLETED.value:
        suggestion.completed_at = None

    _record(db, suggestion, action_type, old_status, new_status, acting_user_id, notes)
    await db.flush()
    logger.info(
        "suggestion.status_changed",
        suggestion_id=str(suggestion.suggestion_id),
        from_status=old_status,
        to_status=new_status,
    )
    return suggestion


async def accept(db: AsyncSession, suggestion: Suggestion, *, acting_user_id=None, now=None) -> Suggestion:
    now = now or datetime.utcnow()
    await update_status(
        db,
        suggestion,
        SuggestionStatus.IN_PROGRESS.value,
        acting_user_id=acting_user_id,
        action_type="accepted",
        now=now,
    )
    suggestion.accepted_at = now
    await db.flush()
    return suggestion


async def reject(db: AsyncSession, suggestion: Suggestion, *, acting_user_id=None, now=None) -> Suggestion:
    await update_status(
        db,
        suggestion,
        SuggestionStatus.IGNORED.value,
        acting_user_id=acting_user_id,
        action_type="rejected",
        now=now,
    )
    suggestion.accepted_at = None
    await db.flush()
    return suggestion


async def set_feedback(
    db: AsyncSession,
    suggestion: Suggestion,
    was_successful: bool | None,
    *,
    feedback: str | None = None,
    metrics_impact: dict | None = None,
    acting_user_id: uuid.UUID | None = None,
) -> Suggestion:
    suggestion.was_successful = was_successful
    if feedback is not None:
        suggestion.feedback = feedback
    if metrics_impact is not None:
        suggestion.metrics_impact = metrics_impact

    outcome = {True: "successful", False: "unsuccessful", None: "cleared"}[was_successful]
    _record(db, suggestion, "feedback", suggestion.status, suggestion.status, acting_user_id, outcome)
    await db.flush()
    logger.info("suggestion.feedback", suggestion_id=str(suggestion.suggestion_id), was_successful=was_successful)
    return suggestion


def _record(db, suggestion, action_type, from_status, to_status, taken_by, notes=None) -> None:
    db.add(
        SuggestionActivity(
            suggestion_id=suggestion.suggestion_id,
            action_type=action_type,
            from_status=from_status,
            to_status=to_status,
            notes=notes,
            taken_by=taken_by,
        )
    )


async def list_activities(db: AsyncSession, suggestion_id: uuid.UUID) -> list[SuggestionActivity]:
    result = await db.execute(
        select(SuggestionActivity)
        .where(SuggestionActivity.suggestion_id == suggestion_id)
        .order_by(SuggestionActivity.created_at)
    )
    return list(result.scalars().all())


# ─── Queries ───────────────────────────────────────────────────────────────


async def list_suggestions(
    db: AsyncSession,
    store_id: uuid.UUID,
    *,
    status: str | None = None,
    category: str | None = None,
    expected_impact: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Suggestion], int]:
    query = select(Suggestion).where(Suggestion.store_id == store_id)
    if status:
        query = query.where(Suggestion.status == SuggestionStatus(status).value)
    if category:
        query = query.where(Suggestion.category == category)
    if expected_impact:
        query = query.where(Suggestion.expected_impact == expected_impact)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(Suggestion.priority.asc(), Suggestion.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def status_counts(db: AsyncSession, store_id: uuid.UUID) -> dict[str, int]:
    result = await db.execute(
        select(Suggestion.status, func.count())
        .where(Suggestion.store_id == store_id)
        .group_by(Suggestion.status)
    )
    counts = {status.value: 0 for status in SuggestionStatus}
    for status, count in result.all():
        counts[status] = count
    counts["total"] = sum(counts.values())
    return counts


async def tracking(db: AsyncSession, store_id: uuid.UUID) -> dict:
    """Accepted suggestions grouped by the analysis they came from.

    Suggestions whose analysis no longer exists land in the
    ``analysis_id = None`` group.
    """
    suggestions = (
        (
            await db.execute(
                select(Suggestion)
                .where(Suggestion.store_id == store_id, Suggestion.status.in_(TRACKED_STATUSES))
                .order_by(Suggestion.priority.asc(), Suggestion.created_at.desc())
            )
        )
        .scalars()
        .all()
    )

    analysis_ids = {s.analysis_id for s in suggestions if s.analysis_id is not None}
    analyses = {}
    if analysis_ids:
        rows = await db.execute(select(Analysis).where(Analysis.analysis_id.in_(analysis_ids)))
        analyses = {a.analysis_id: a for a in rows.scalars().all()}

    grouped: dict[uuid.UUID | None, list[Suggestion]] = defaultdict(list)
    for suggestion in suggestions:
        key = suggestion.analysis_id if suggestion.analysis_id in analyses else None
        grouped[key].append(suggestion)

    groups = []
    for analysis_id, items in grouped.items():
        analysis = analyses.get(analysis_id)
        groups.append(
            {
                "analysis_id": analysis_id,
                "analysis_created_at": analysis.created_at if analysis else None,
                "suggestions": items,
                "stats": _bucket(items),
            }
        )
    # Newest analysis first, orphans last.
    groups.sort(key=lambda g: g["analysis_created_at"] or datetime.min, reverse=True)
    return {"groups": groups, "stats": _bucket(suggestions)}


def _bucket(items: list[Suggestion]) -> dict[str, int]:
    counts = Counter(s.status for s in items)
    return {
        "total": len(items),
        "in_progress": counts[SuggestionStatus.IN_PROGRESS.value],
        "completed": counts[SuggestionStatus.COMPLETED.value],
        "successful": sum(1 for s in items if s.was_successful is True),
    }
