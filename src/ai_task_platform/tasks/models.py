"""Domain models for tasks, task types and task logs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    WAITING_DEPENDENCY = "waiting_dependency"
    APPROVAL_REQUIRED = "approval_required"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


_STATUS_LABELS = {
    TaskStatus.WAITING_DEPENDENCY: "Waiting Dependency",
    TaskStatus.APPROVAL_REQUIRED: "Approval Required",
    TaskStatus.PENDING: "Pending",
    TaskStatus.PROCESSING: "Processing",
    TaskStatus.COMPLETED: "Completed",
    TaskStatus.FAILED: "Failed",
    TaskStatus.CANCELED: "Canceled",
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELED})
NOT_STARTED_STATUSES = frozenset(
    {TaskStatus.WAITING_DEPENDENCY, TaskStatus.APPROVAL_REQUIRED, TaskStatus.PENDING},
)
CANCELABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.APPROVAL_REQUIRED})


class TaskLogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class BuiltinTaskType(str, Enum):
    """Task types registered by default."""

    KEYWORD_RESEARCH = "keyword_research"
    CONTENT_GENERATION = "content_generation"
    SEO_AUDIT = "seo_audit"
    BACKLINK_ANALYSIS = "backlink_analysis"
    AD_COPY = "ad_copy"


MIN_PRIORITY = 0
MAX_PRIORITY = 100
DEFAULT_PRIORITY = 50


def clamp_priority(value: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, int(value)))


@dataclass(frozen=True, slots=True)
class TaskTypeDefinition:
    """Immutable registry entry for one task type."""

    key: str
    name: str
    description: str
    credits_cost: int = 1
    requires_approval: bool = False
    category: str = "general"
    icon: str = "admin-generic"


BUILTIN_TASK_TYPES: tuple[TaskTypeDefinition, ...] = (
    TaskTypeDefinition(
        key=BuiltinTaskType.KEYWORD_RESEARCH.value,
        name="Keyword Research",
        description="Research keywords for SEO and content planning.",
        credits_cost=5,
        category="seo",
        icon="search",
    ),
    TaskTypeDefinition(
        key=BuiltinTaskType.CONTENT_GENERATION.value,
        name="Content Generation",
        description="Generate content for blogs, websites, or social media.",
        credits_cost=10,
        requires_approval=True,
        category="content",
        icon="edit",
    ),
    TaskTypeDefinition(
        key=BuiltinTaskType.SEO_AUDIT.value,
        name="SEO Audit",
        description="Perform an SEO audit on a website.",
        credits_cost=15,
        category="seo",
        icon="chart-bar",
    ),
    TaskTypeDefinition(
        key=BuiltinTaskType.BACKLINK_ANALYSIS.value,
        name="Backlink Analysis",
        description="Analyze backlinks for a domain.",
        credits_cost=8,
        category="seo",
        icon="admin-links",
    ),
    TaskTypeDefinition(
        key=BuiltinTaskType.AD_COPY.value,
        name="Ad Copy Generation",
        description="Generate ad copy for PPC campaigns.",
        credits_cost=5,
        requires_approval=True,
        category="ppc",
        icon="megaphone",
    ),
)


@dataclass(slots=True)
class TaskCreate:
    """Validated payload for inserting a task row."""

    user_id: int
    task_type: str
    title: str
    status: TaskStatus
    credits_cost: int
    description: str = ""
    inputs: dict[str, Any] = field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    dependencies: list[int] = field(default_factory=list)


@dataclass(slots=True)
class TaskView:
    """Readable task view for the engine, processors and CLI."""

    task_id: int
    user_id: int
    task_type: str
    status: TaskStatus
    title: str
    description: str
    inputs: dict[str, Any]
    outputs: dict[str, Any] | None
    credits_cost: int
    priority: int
    dependencies: list[int]
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    completed_at: datetime | None

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    @property
    def has_dependencies(self) -> bool:
        return bool(self.dependencies)

    @property
    def status_label(self) -> str:
        return self.status.label

    @property
    def duration_seconds(self) -> float | None:
        """Processing time, or None while the task has not both started and finished."""

        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def get_input(self, key: str, default: Any = None) -> Any:
        return self.inputs.get(key, default)

    def get_output(self, key: str, default: Any = None) -> Any:
        if not self.outputs:
            return default
        return self.outputs.get(key, default)


@dataclass(slots=True)
class TaskLogView:
    """Append-only task log entry."""

    log_id: int
    task_id: int
    message: str
    level: TaskLogLevel
    created_at: datetime
