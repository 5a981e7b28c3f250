"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    # --- ENUM types ---
    task_status_enum = sa.Enum(
        "pending", "in_progress", "done", "cancelled", name="task_status_enum"
    )
    task_status_enum.create(op.get_bind(), checkfirst=True)

    task_priority_enum = sa.Enum(
        "low", "medium", "high", "urgent", name="task_priority_enum"
    )
    task_priority_enum.create(op.get_bind(), checkfirst=True)

    proposal_status_enum = sa.Enum(
        "pending", "accepted", "rejected", "expired", name="proposal_status_enum"
    )
    proposal_status_enum.create(op.get_bind(), checkfirst=True)

    agent_action_status_enum = sa.Enum(
        "applied", "undone", name="agent_action_status_enum"
    )
    agent_action_status_enum.create(op.get_bind(), checkfirst=True)

    # --- sage_experiences ---
    op.create_table(
        "sage_experiences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("run_id", sa.String(64), nullable=True),
        sa.Column("context_vector", sa.JSON(), nullable=False),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("feedback_type", sa.String(16), nullable=True),
        sa.Column("metrics_before", sa.JSON(), nullable=False),
        sa.Column("metrics_after", sa.JSON(), nullable=True),
        sa.Column("reward", sa.Float(), nullable=True),
        sa.Column("learning_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sage_experiences_id", "sage_experiences", ["id"])
    op.create_index("ix_sage_experiences_user_id", "sage_experiences", ["user_id"])
    op.create_index("ix_sage_experiences_run_id", "sage_experiences", ["run_id"])
    op.create_index("ix_sage_experiences_action_type", "sage_experiences", ["action_type"])
    op.create_index("ix_sage_experiences_pending", "sage_experiences", ["learning_enabled", "created_at"])

    # --- sage_policy_weights ---
    op.create_table(
        "sage_policy_weights",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("weights", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _created_at("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "action_type", name="uq_policy_weights_user_action"),
    )
    op.create_index("ix_sage_policy_weights_id", "sage_policy_weights", ["id"])
    op.create_index("ix_sage_policy_weights_user_id", "sage_policy_weights", ["user_id"])

    # --- sage_feedback ---
    op.create_table(
        "sage_feedback",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("run_id", sa.String(64), nullable=True),
        sa.Column("proposal_id", sa.Integer(), nullable=True),
        sa.Column("action_id", sa.Integer(), nullable=True),
        sa.Column("signal", sa.String(16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sage_feedback_id", "sage_feedback", ["id"])
    op.create_index("ix_sage_feedback_user_id", "sage_feedback", ["user_id"])
    op.create_index("ix_sage_feedback_run_id", "sage_feedback", ["run_id"])

    # --- ai_proposals ---
    op.create_table(
        "ai_proposals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("run_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("action_type", sa.String(32), nullable=True),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("proposed_actions", sa.JSON(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("status", sa.Enum(
            "pending", "accepted", "rejected", "expired",
            name="proposal_status_enum", create_type=False,
        ), nullable=False, server_default="pending"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_proposals_id", "ai_proposals", ["id"])
    op.create_index("ix_ai_proposals_user_id", "ai_proposals", ["user_id"])
    op.create_index("ix_ai_proposals_run_id", "ai_proposals", ["run_id"])
    op.create_index("ix_ai_proposals_status", "ai_proposals", ["status"])
    op.create_index("ix_ai_proposals_expires_at", "ai_proposals", ["expires_at"])

    # --- agent_actions ---
    op.create_table(
        "agent_actions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("proposal_id", sa.Integer(), sa.ForeignKey("ai_proposals.id"), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("run_id", sa.String(64), nullable=False),
        sa.Column("previous_state", sa.JSON(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("status", sa.Enum(
            "applied", "undone", name="agent_action_status_enum", create_type=False,
        ), nullable=False, server_default="applied"),
        _created_at("executed_at"),
        sa.Column("undone_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("proposal_id"),
    )
    op.create_index("ix_agent_actions_id", "agent_actions", ["id"])
    op.create_index("ix_agent_actions_user_id", "agent_actions", ["user_id"])
    op.create_index("ix_agent_actions_run_id", "agent_actions", ["run_id"])

    # --- user_consents ---
    op.create_table(
        "user_consents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("consent_version", sa.String(16), nullable=False, server_default="1.0"),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "purpose", name="uq_user_consent_purpose"),
    )
    op.create_index("ix_user_consents_id", "user_consents", ["id"])
    op.create_index("ix_user_consents_user_id", "user_consents", ["user_id"])

    # --- audit_log ---
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(128), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_id", "audit_log", ["id"])
    op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])

    # --- learning_job_runs ---
    op.create_table(
        "learning_job_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("run_id", sa.String(64), nullable=False),
        sa.Column("trigger", sa.String(16), nullable=False, server_default="scheduled"),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deferred", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stale", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_reward", sa.Float(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("timed_out", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error", sa.Text(), nullable=True),
        _created_at("started_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("run_id"),
    )
    op.create_index("ix_learning_job_runs_id", "learning_job_runs", ["id"])

    # --- job_locks ---
    op.create_table(
        "job_locks",
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("owner", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )

    # --- behavioral_profiles ---
    op.create_table(
        "behavioral_profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("profile", sa.JSON(), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("ix_behavioral_profiles_id", "behavioral_profiles", ["id"])

    # --- tasks ---
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.Enum(
            "pending", "in_progress", "done", "cancelled",
            name="task_status_enum", create_type=False,
        ), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Enum(
            "low", "medium", "high", "urgent",
            name="task_priority_enum", create_type=False,
        ), nullable=False, server_default="medium"),
        sa.Column("source", sa.String(16), nullable=False, server_default="user"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _created_at("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_id", "tasks", ["id"])
    op.create_index("ix_tasks_user_id", "tasks", ["user_id"])

    # --- habit_logs ---
    op.create_table(
        "habit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("habit_id", sa.String(64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at("logged_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_habit_logs_id", "habit_logs", ["id"])
    op.create_index("ix_habit_logs_user_id", "habit_logs", ["user_id"])
    op.create_index("ix_habit_logs_day", "habit_logs", ["day"])

    # --- journal_entries ---
    op.create_table(
        "journal_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("mood", sa.Integer(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_journal_entries_id", "journal_entries", ["id"])
    op.create_index("ix_journal_entries_user_id", "journal_entries", ["user_id"])
    op.create_index("ix_journal_entries_day", "journal_entries", ["day"])


def downgrade() -> None:
    op.drop_table("journal_entries")
    op.drop_table("habit_logs")
    op.drop_table("tasks")
    op.drop_table("behavioral_profiles")
    op.drop_table("job_locks")
    op.drop_table("learning_job_runs")
    op.drop_table("audit_log")
    op.drop_table("user_consents")
    op.drop_table("agent_actions")
    op.drop_table("ai_proposals")
    op.drop_table("sage_feedback")
    op.drop_table("sage_policy_weights")
    op.drop_table("sage_experiences")

    op.execute("DROP TYPE IF EXISTS agent_action_status_enum")
    op.execute("DROP TYPE IF EXISTS proposal_status_enum")
    op.execute("DROP TYPE IF EXISTS task_priority_enum")
    op.execute("DROP TYPE IF EXISTS task_status_enum")
