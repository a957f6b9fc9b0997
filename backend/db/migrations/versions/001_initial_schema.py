"""
Initial schema - accounts, credit ledger, analyses, suggestion lifecycle

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def upgrade() -> None:
    # 1. Users
    op.create_table(
        "users",
        _pk("user_id"),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="client"),
        sa.Column("parent_user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="SET NULL")),
        sa.Column("credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active_store_id", UUID(as_uuid=True)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("credits >= 0", name="ck_user_credits_non_negative"),
        sa.CheckConstraint("role IN ('admin', 'client')", name="ck_user_role"),
    )
    op.create_index("ix_users_parent", "users", ["parent_user_id"])

    # 2. Stores
    op.create_table(
        "stores",
        _pk("store_id"),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False, server_default="nuvemshop"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_stores_user", "stores", ["user_id"])

    # 3. Store members
    op.create_table(
        "store_members",
        _pk("member_id"),
        sa.Column("store_id", UUID(as_uuid=True), sa.ForeignKey("stores.store_id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("store_id", "user_id", name="uq_store_member"),
    )
    op.create_index("ix_store_members_user", "store_members", ["user_id"])

    # 4. Analyses
    op.create_table(
        "analyses",
        _pk("analysis_id"),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("store_id", UUID(as_uuid=True), sa.ForeignKey("stores.store_id", ondelete="CASCADE"), nullable=False),
        sa.Column("analysis_type", sa.String(30), nullable=False, server_default="general"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
        sa.Column("summary", sa.JSON),
        sa.Column("suggestions", sa.JSON),
        sa.Column("alerts", sa.JSON),
        sa.Column("opportunities", sa.JSON),
        sa.Column("credits_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text),
        sa.Column("current_stage", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_stages", sa.Integer, nullable=False, server_default="9"),
        sa.Column("started_at", sa.DateTime),
        sa.Column("last_progress_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_analysis_status",
        ),
        sa.CheckConstraint(
            "analysis_type IN ('general', 'financial', 'conversion', 'competitors', 'campaigns', 'tracking')",
            name="ck_analysis_type",
        ),
    )
    op.create_index("ix_analyses_user_time", "analyses", ["user_id", "created_at"])
    op.create_index("ix_analyses_store_status", "analyses", ["store_id", "status"])
    # At most one in-flight analysis per user.
    op.create_index(
        "uq_analyses_user_in_flight",
        "analyses",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )

    # 5. Credit transactions
    op.create_table(
        "credit_transactions",
        _pk("transaction_id"),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(30), nullable=False),
        sa.Column("analysis_id", UUID(as_uuid=True), sa.ForeignKey("analyses.analysis_id", ondelete="SET NULL")),
        sa.Column("created_by", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="SET NULL")),
        sa.Column("note", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount <> 0", name="ck_credit_tx_amount_nonzero"),
        sa.CheckConstraint(
            "reason IN ('analysis_request', 'analysis_refund', 'admin_grant', 'signup')",
            name="ck_credit_tx_reason",
        ),
    )
    op.create_index("ix_credit_transactions_user_time", "credit_transactions", ["user_id", "created_at"])

    # 6. Suggestions
    op.create_table(
        "suggestions",
        _pk("suggestion_id"),
        sa.Column("analysis_id", UUID(as_uuid=True), sa.ForeignKey("analyses.analysis_id", ondelete="SET NULL")),
        sa.Column("store_id", UUID(as_uuid=True), sa.ForeignKey("stores.store_id", ondelete="CASCADE"), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("expected_impact", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("recommended_action", sa.JSON, nullable=False),
        sa.Column("target_metrics", sa.JSON),
        sa.Column("specific_data", sa.JSON),
        sa.Column("data_justification", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("was_successful", sa.Boolean),
        sa.Column("feedback", sa.Text),
        sa.Column("metrics_impact", sa.JSON),
        sa.Column("accepted_at", sa.DateTime),
        sa.Column("in_progress_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'ignored')",
            name="ck_suggestion_status",
        ),
        sa.CheckConstraint("expected_impact IN ('high', 'medium', 'low')", name="ck_suggestion_expected_impact"),
    )
    op.create_index("ix_suggestions_store_status", "suggestions", ["store_id", "status"])
    op.create_index("ix_suggestions_analysis", "suggestions", ["analysis_id"])
    op.create_index("ix_suggestions_store_category", "suggestions", ["store_id", "category"])

    # 7. Suggestion steps
    op.create_table(
        "suggestion_steps",
        _pk("step_id"),
        sa.Column(
            "suggestion_id",
            UUID(as_uuid=True),
            sa.ForeignKey("suggestions.suggestion_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_custom", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("completed_by", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="SET NULL")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('pending', 'completed')", name="ck_step_status"),
        sa.CheckConstraint("position >= 0", name="ck_step_position"),
    )
    op.create_index("ix_steps_suggestion_position", "suggestion_steps", ["suggestion_id", "position"])

    # 8. Suggestion tasks
    op.create_table(
        "suggestion_tasks",
        _pk("task_id"),
        sa.Column(
            "suggestion_id",
            UUID(as_uuid=True),
            sa.ForeignKey("suggestions.suggestion_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step_index", sa.Integer),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.Date),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("completed_by", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="SET NULL")),
        sa.Column("created_by", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="SET NULL")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('pending', 'in_progress', 'completed')", name="ck_task_status"),
        sa.CheckConstraint("step_index IS NULL OR step_index >= 0", name="ck_task_step_index"),
    )
    op.create_index("ix_tasks_suggestion_step", "suggestion_tasks", ["suggestion_id", "step_index"])

    # 9. Suggestion comments
    op.create_table(
        "suggestion_comments",
        _pk("comment_id"),
        sa.Column(
            "suggestion_id",
            UUID(as_uuid=True),
            sa.ForeignKey("suggestions.suggestion_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step_id", UUID(as_uuid=True), sa.ForeignKey("suggestion_steps.step_id", ondelete="CASCADE")),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_comments_suggestion_time", "suggestion_comments", ["suggestion_id", "created_at"])
    op.create_index("ix_comments_step", "suggestion_comments", ["step_id"])

    # 10. Suggestion activities
    op.create_table(
        "suggestion_activities",
        _pk("activity_id"),
        sa.Column(
            "suggestion_id",
            UUID(as_uuid=True),
            sa.ForeignKey("suggestions.suggestion_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("from_status", sa.String(20)),
        sa.Column("to_status", sa.String(20)),
        sa.Column("notes", sa.Text),
        sa.Column("taken_by", UUID(as_uuid=True), sa.ForeignKey("users.user_id", ondelete="SET NULL")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "action_type IN ('status_changed', 'accepted', 'rejected', 'feedback', 'created')",
            name="ck_activity_type",
        ),
    )
    op.create_index("ix_activities_suggestion_time", "suggestion_activities", ["suggestion_id", "created_at"])


def downgrade() -> None:
    tables = [
        "suggestion_activities",
        "suggestion_comments",
        "suggestion_tasks",
        "suggestion_steps",
        "suggestions",
        "credit_transactions",
        "analyses",
        "store_members",
        "stores",
        "users",
    ]
    for table in tables:
        op.drop_table(table)
