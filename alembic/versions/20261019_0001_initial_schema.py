"""Initial task platform schema: tasks, task logs, credit ledger and API layer."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("inputs_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("outputs_json", sa.Text(), nullable=True),
        sa.Column("credits_cost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("dependencies_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_user_id", "tasks", ["user_id"])
    op.create_index("ix_tasks_task_type", "tasks", ["task_type"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_priority", "tasks", ["priority"])
    op.create_index("idx_tasks_dispatch", "tasks", ["status", "priority", "id"])

    op.create_table(
        "task_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("log_level", sa.String(), nullable=False, server_default="info"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_logs_task_id", "task_logs", ["task_id"])
    op.create_index("ix_task_logs_log_level", "task_logs", ["log_level"])
    op.create_index("idx_task_logs_task_order", "task_logs", ["task_id", "id"])

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("credits_amount", sa.Integer(), nullable=False),
        sa.Column("credits_type", sa.String(), nullable=False, server_default="regular"),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"])
    op.create_index(
        "ix_credit_transactions_transaction_type",
        "credit_transactions",
        ["transaction_type"],
    )
    op.create_index(
        "ix_credit_transactions_reference_id",
        "credit_transactions",
        ["reference_id"],
    )
    op.create_index(
        "idx_credit_transactions_user_time",
        "credit_transactions",
        ["user_id", "created_at"],
    )

    op.create_table(
        "api_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("service", sa.String(), nullable=False),
        sa.Column("endpoint", sa.String(), nullable=False),
        sa.Column("request_json", sa.Text(), nullable=True),
        sa.Column("response_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_api_logs_user_id", "api_logs", ["user_id"])
    op.create_index("ix_api_logs_service", "api_logs", ["service"])
    op.create_index("ix_api_logs_status", "api_logs", ["status"])
    op.create_index("idx_api_logs_scope_time", "api_logs", ["user_id", "service", "created_at"])

    op.create_table(
        "api_cache_entries",
        sa.Column("cache_key", sa.String(), nullable=False),
        sa.Column("service", sa.String(), nullable=False),
        sa.Column("endpoint", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("cache_key"),
    )
    op.create_index("ix_api_cache_entries_service", "api_cache_entries", ["service"])
    op.create_index("ix_api_cache_entries_endpoint", "api_cache_entries", ["endpoint"])

    op.create_table(
        "api_cache_groups",
        sa.Column("group_name", sa.String(), nullable=False),
        sa.Column("cache_key", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("group_name", "cache_key", name="pk_api_cache_groups"),
    )
    op.create_index("ix_api_cache_groups_cache_key", "api_cache_groups", ["cache_key"])


def downgrade() -> None:
    op.drop_index("ix_api_cache_groups_cache_key", table_name="api_cache_groups")
    op.drop_table("api_cache_groups")
    op.drop_index("ix_api_cache_entries_endpoint", table_name="api_cache_entries")
    op.drop_index("ix_api_cache_entries_service", table_name="api_cache_entries")
    op.drop_table("api_cache_entries")
    op.drop_index("idx_api_logs_scope_time", table_name="api_logs")
    op.drop_index("ix_api_logs_status", table_name="api_logs")
    op.drop_index("ix_api_logs_service", table_name="api_logs")
    op.drop_index("ix_api_logs_user_id", table_name="api_logs")
    op.drop_table("api_logs")
    op.drop_index("idx_credit_transactions_user_time", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_reference_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_transaction_type", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_user_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_index("idx_task_logs_task_order", table_name="task_logs")
    op.drop_index("ix_task_logs_log_level", table_name="task_logs")
    op.drop_index("ix_task_logs_task_id", table_name="task_logs")
    op.drop_table("task_logs")
    op.drop_index("idx_tasks_dispatch", table_name="tasks")
    op.drop_index("ix_tasks_priority", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_task_type", table_name="tasks")
    op.drop_index("ix_tasks_user_id", table_name="tasks")
    op.drop_table("tasks")
