"""SQLModel ORM tables for tasks, credits and the API layer."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, PrimaryKeyConstraint, Text
from sqlmodel import Field, SQLModel


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_dispatch", "status", "priority", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    task_type: str = Field(index=True)
    status: str = Field(index=True)
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    inputs_json: str = Field(default="{}", sa_column=Column(Text, nullable=False, default="{}"))
    outputs_json: str | None = Field(default=None, sa_column=Column(Text))
    credits_cost: int = Field(default=0)
    priority: int = Field(default=50, index=True)
    dependencies_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, default="[]"),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class TaskLog(SQLModel, table=True):
    __tablename__ = "task_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_logs_task_order", "task_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(
        sa_column=Column(
            ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    message: str = Field(sa_column=Column(Text, nullable=False))
    log_level: str = Field(default="info", index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CreditTransaction(SQLModel, table=True):
    __tablename__ = "credit_transactions"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_credit_transactions_user_time", "user_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    credits_amount: int
    credits_type: str = Field(default="regular")
    transaction_type: str = Field(index=True)
    reference_id: int | None = Field(default=None, index=True)
    notes: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ApiLog(SQLModel, table=True):
    __tablename__ = "api_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_api_logs_scope_time", "user_id", "service", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    service: str = Field(index=True)
    endpoint: str
    request_json: str | None = Field(default=None, sa_column=Column(Text))
    response_json: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(index=True)
    duration: float = Field(default=0.0)
    credits_used: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ApiCacheEntry(SQLModel, table=True):
    __tablename__ = "api_cache_entries"  # type: ignore[bad-override]

    cache_key: str = Field(primary_key=True)
    service: str = Field(index=True)
    endpoint: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ApiCacheGroup(SQLModel, table=True):
    __tablename__ = "api_cache_groups"  # type: ignore[bad-override]
    __table_args__ = (PrimaryKeyConstraint("group_name", "cache_key", name="pk_api_cache_groups"),)

    group_name: str
    cache_key: str = Field(index=True)
