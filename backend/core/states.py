"""
Closed status enums and their transition tables.

Every status column in db.models is one of these enums, and every status
write in the services goes through ensure_transition() so the allowed
edges live in exactly one place.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass

from core.errors import InvalidTransition


class AnalysisStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SuggestionStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    IGNORED = "ignored"


class StepStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


IN_FLIGHT_STATUSES = (AnalysisStatus.PENDING, AnalysisStatus.PROCESSING)

# pending -> failed covers dispatch failures and the stale sweeper.
ANALYSIS_TRANSITIONS: dict[AnalysisStatus, frozenset[AnalysisStatus]] = {
    AnalysisStatus.PENDING: frozenset({AnalysisStatus.PROCESSING, AnalysisStatus.FAILED}),
    AnalysisStatus.PROCESSING: frozenset({AnalysisStatus.COMPLETED, AnalysisStatus.FAILED}),
    AnalysisStatus.COMPLETED: frozenset(),
    AnalysisStatus.FAILED: frozenset(),
}

SUGGESTION_TRANSITIONS: dict[SuggestionStatus, frozenset[SuggestionStatus]] = {
    SuggestionStatus.PENDING: frozenset(
        {SuggestionStatus.IN_PROGRESS, SuggestionStatus.COMPLETED, SuggestionStatus.IGNORED}
    ),
    SuggestionStatus.IN_PROGRESS: frozenset({SuggestionStatus.COMPLETED, SuggestionStatus.IGNORED}),
    SuggestionStatus.COMPLETED: frozenset({SuggestionStatus.IN_PROGRESS}),
    SuggestionStatus.IGNORED: frozenset({SuggestionStatus.PENDING}),
}

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.COMPLETED}),
    StepStatus.COMPLETED: frozenset({StepStatus.PENDING}),
}

TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.PENDING}),
}


def can_transition(table: dict, current: enum.Enum, new: enum.Enum) -> bool:
    return new in table.get(current, frozenset())


def ensure_transition(table: dict, current, new, *, entity: str) -> None:
    """Raise InvalidTransition unless (current, new) is an allowed edge."""
    enum_type = type(next(iter(table)))
    try:
        current_status = enum_type(current)
        new_status = enum_type(new)
    except ValueError as exc:
        raise InvalidTransition(f"Unknown {entity} status: {exc}") from exc
    if not can_transition(table, current_status, new_status):
        raise InvalidTransition(
            f"Cannot move {entity} from '{current_status.value}' to '{new_status.value}'",
            from_status=current_status.value,
            to_status=new_status.value,
        )


def enum_values(enum_type: type[enum.Enum]) -> str:
    """Comma-separated quoted values for CheckConstraint SQL."""
    return ", ".join(f"'{member.value}'" for member in enum_type)


# ─── Scope of tasks and comments ───────────────────────────────────────────
# Both persist as a nullable column (step_index / step_id); in code the two
# cases are kept explicit.


@dataclass(frozen=True)
class GeneralScope:
    pass


@dataclass(frozen=True)
class StepScope:
    ref: int | uuid.UUID


Scope = GeneralScope | StepScope


def scope_of(ref: int | uuid.UUID | None) -> Scope:
    return GeneralScope() if ref is None else StepScope(ref)
