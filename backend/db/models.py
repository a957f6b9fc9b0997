"""
ShopLens Database Models

10 tables for analysis admission and suggestion tracking.
Every suggestion-side table is scoped to a store through its suggestion.

Tables:
  Accounts (1-4):
  1. users                 - Accounts with their credit balance
  2. stores                - Connected e-commerce stores
  3. store_members         - Explicit store assignments (employees)
  4. credit_transactions   - Signed ledger of every balance change

  Analyses (5):
  5. analyses              - One AI analysis run (in-flight guarded)

  Suggestion lifecycle (6-10):
  6. suggestions           - Tracked recommendations (outlive analyses)
  7. suggestion_steps      - Ordered checklist (system + custom)
  8. suggestion_tasks      - Due-dated action items (general or linked)
  9. suggestion_comments   - Append-only discussion
  10. suggestion_activities - Audit trail of status/feedback changes
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from core.states import (
    AnalysisStatus,
    GeneralScope,
    Scope,
    StepScope,
    StepStatus,
    SuggestionStatus,
    TaskStatus,
    enum_values,
    scope_of,
)
from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


USER_ROLES = ("admin", "client")
EXPECTED_IMPACTS = ("high", "medium", "low")
CREDIT_REASONS = ("analysis_request", "analysis_refund", "admin_grant", "signup")
IN_FLIGHT_SQL = f"status IN ('{AnalysisStatus.PENDING.value}', '{AnalysisStatus.PROCESSING.value}')"

# ─── 1. Users ──────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    user_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="client")
    parent_user_id = Column(GUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    credits = Column(Integer, nullable=False, default=0)
    # Plain column: stores.user_id already points back at users.
    active_store_id = Column(GUID())
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_user_credits_non_negative"),
        CheckConstraint(f"role IN ({', '.join(repr(r) for r in USER_ROLES)})", name="ck_user_role"),
        Index("ix_users_parent", "parent_user_id"),
    )

    stores = relationship("Store", back_populates="owner", passive_deletes=True)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_employee(self) -> bool:
        return self.parent_user_id is not None


# ─── 2. Stores ──────────────────────────────────────────────────────────────


class Store(Base):
    __tablename__ = "stores"

    store_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    platform = Column(String(50), nullable=False, default="nuvemshop")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_stores_user", "user_id"),)

    owner = relationship("User", back_populates="stores")


# ─── 3. Store Members ───────────────────────────────────────────────────────


class StoreMember(Base):
    __tablename__ = "store_members"

    member_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    store_id = Column(GUID(), ForeignKey("stores.store_id", ondelete="CASCADE"), nullable=False)
    user_id = Column(GUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("store_id", "user_id", name="uq_store_member"),
        Index("ix_store_members_user", "user_id"),
    )


# ─── 4. Credit Transactions ─────────────────────────────────────────────────


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    transaction_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(String(30), nullable=False)
    analysis_id = Column(GUID(), ForeignKey("analyses.analysis_id", ondelete="SET NULL"))
    created_by = Column(GUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    note = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_credit_transactions_user_time", "user_id", "created_at"),
        CheckConstraint("amount <> 0", name="ck_credit_tx_amount_nonzero"),
        CheckConstraint(
            f"reason IN ({', '.join(repr(r) for r in CREDIT_REASONS)})",
            name="ck_credit_tx_reason",
        ),
    )


# ─── 5. Analyses ────────────────────────────────────────────────────────────


class Analysis(Base):
    __tablename__ = "analyses"

    analysis_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    store_id = Column(GUID(), ForeignKey("stores.store_id", ondelete="CASCADE"), nullable=False)
    analysis_type = Column(String(30), nullable=False, default="general")
    status = Column(String(20), nullable=False, default=AnalysisStatus.PENDING.value)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    summary = Column(JSON)
    suggestions = Column(JSON, default=list)
    alerts = Column(JSON, default=list)
    opportunities = Column(JSON, default=list)
    credits_used = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    current_stage = Column(Integer, nullable=False, default=0)
    total_stages = Column(Integer, nullable=False, default=9)
    started_at = Column(DateTime)
    last_progress_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_analyses_user_time", "user_id", "created_at"),
        Index("ix_analyses_store_status", "store_id", "status"),
        # At most one pending/processing analysis per user.
        Index(
            "uq_analyses_user_in_flight",
            "user_id",
            unique=True,
            postgresql_where=text(IN_FLIGHT_SQL),
            sqlite_where=text(IN_FLIGHT_SQL),
        ),
        CheckConstraint(f"status IN ({enum_values(AnalysisStatus)})", name="ck_analysis_status"),
        CheckConstraint(
            "analysis_type IN ('general', 'financial', 'conversion', 'competitors', 'campaigns', 'tracking')",
            name="ck_analysis_type",
        ),
    )


# ─── 6. Suggestions ─────────────────────────────────────────────────────────


class Suggestion(Base):
    __tablename__ = "suggestions"

    suggestion_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    analysis_id = Column(GUID(), ForeignKey("analyses.analysis_id", ondelete="SET NULL"))
    store_id = Column(GUID(), ForeignKey("stores.store_id", ondelete="CASCADE"), nullable=False)
    category = Column(String(50), nullable=False, default="general")
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    priority = Column(Integer, nullable=False, default=0)
    expected_impact = Column(String(20), nullable=False, default="medium")
    recommended_action = Column(JSON, nullable=False, default=list)
    target_metrics = Column(JSON)
    specific_data = Column(JSON)
    data_justification = Column(Text)
    status = Column(String(20), nullable=False, default=SuggestionStatus.PENDING.value)
    was_successful = Column(Boolean)
    feedback = Column(Text)
    metrics_impact = Column(JSON)
    accepted_at = Column(DateTime)
    in_progress_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_suggestions_store_status", "store_id", "status"),
        Index("ix_suggestions_analysis", "analysis_id"),
        Index("ix_suggestions_store_category", "store_id", "category"),
        CheckConstraint(f"status IN ({enum_values(SuggestionStatus)})", name="ck_suggestion_status"),
        CheckConstraint(
            f"expected_impact IN ({', '.join(repr(i) for i in EXPECTED_IMPACTS)})",
            name="ck_suggestion_expected_impact",
        ),
    )


# ─── 7. Suggestion Steps ────────────────────────────────────────────────────


class SuggestionStep(Base):
    __tablename__ = "suggestion_steps"

    step_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    suggestion_id = Column(GUID(), ForeignKey("suggestions.suggestion_id", ondelete="CASCADE"), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    position = Column(Integer, nullable=False, default=0)
    is_custom = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=StepStatus.PENDING.value)
    completed_at = Column(DateTime)
    completed_by = Column(GUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_steps_suggestion_position", "suggestion_id", "position"),
        CheckConstraint(f"status IN ({enum_values(StepStatus)})", name="ck_step_status"),
        CheckConstraint("position >= 0", name="ck_step_position"),
    )


# ─── 8. Suggestion Tasks ────────────────────────────────────────────────────


class SuggestionTask(Base):
    __tablename__ = "suggestion_tasks"

    task_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    suggestion_id = Column(GUID(), ForeignKey("suggestions.suggestion_id", ondelete="CASCADE"), nullable=False)
    # Ordinal into suggestions.recommended_action, not a step row.
    step_index = Column(Integer)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default=TaskStatus.PENDING.value)
    due_date = Column(Date)
    completed_at = Column(DateTime)
    completed_by = Column(GUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    created_by = Column(GUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_tasks_suggestion_step", "suggestion_id", "step_index"),
        CheckConstraint(f"status IN ({enum_values(TaskStatus)})", name="ck_task_status"),
        CheckConstraint("step_index IS NULL OR step_index >= 0", name="ck_task_step_index"),
    )

    @property
    def scope(self) -> Scope:
        return scope_of(self.step_index)

    @property
    def is_general(self) -> bool:
        return isinstance(self.scope, GeneralScope)

    @property
    def is_linked_to_step(self) -> bool:
        return isinstance(self.scope, StepScope)


# ─── 9. Suggestion Comments ─────────────────────────────────────────────────


class SuggestionComment(Base):
    __tablename__ = "suggestion_comments"

    comment_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    suggestion_id = Column(GUID(), ForeignKey("suggestions.suggestion_id", ondelete="CASCADE"), nullable=False)
    step_id = Column(GUID(), ForeignKey("suggestion_steps.step_id", ondelete="CASCADE"))
    user_id = Column(GUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_comments_suggestion_time", "suggestion_id", "created_at"),
        Index("ix_comments_step", "step_id"),
    )

    @property
    def scope(self) -> Scope:
        return scope_of(self.step_id)

    @property
    def is_general(self) -> bool:
        return isinstance(self.scope, GeneralScope)


# ─── 10. Suggestion Activities ──────────────────────────────────────────────


class SuggestionActivity(Base):
    __tablename__ = "suggestion_activities"

    activity_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    suggestion_id = Column(GUID(), ForeignKey("suggestions.suggestion_id", ondelete="CASCADE"), nullable=False)
    action_type = Column(String(30), nullable=False)
    from_status = Column(String(20))
    to_status = Column(String(20))
    notes = Column(Text)
    taken_by = Column(GUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_activities_suggestion_time", "suggestion_id", "created_at"),
        CheckConstraint(
            "action_type IN ('status_changed', 'accepted', 'rejected', 'feedback', 'created')",
            name="ck_activity_type",
        ),
    )
