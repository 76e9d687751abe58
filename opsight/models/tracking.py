"""
Project-tracking records read and written by the insight engine.

Pydantic models, frozen (immutable). Stores return fresh copies; updates go
through model_copy(update=...).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TaskStatus(str, Enum):
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"

    @property
    def is_terminal(self) -> bool:
        return self is TaskStatus.DONE


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class PullRequestStatus(str, Enum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class CIStatus(str, Enum):
    PASSING = "passing"
    FAILING = "failing"
    PENDING = "pending"
    UNKNOWN = "unknown"


class BottleneckType(str, Enum):
    STUCK_REVIEW = "stuck_review"
    STALE_TASK = "stale_task"
    DEPENDENCY_BLOCK = "dependency_block"
    REVIEW_DELAY = "review_delay"
    CI_FAILURE = "ci_failure"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BottleneckStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class PredictionType(str, Enum):
    DEADLINE_RISK = "deadline_risk"
    BURNOUT_INDICATOR = "burnout_indicator"
    VELOCITY_FORECAST = "velocity_forecast"
    SCOPE_CREEP = "scope_creep"


class ReasoningSource(str, Enum):
    """Where a prediction's prose came from."""
    MODEL = "model"
    TEMPLATE = "template"
    ANALYZER = "analyzer"


_ENUM_ALIASES = {
    "stuck_pr": "stuck_review",
}


def normalize_enum_value(raw: Any) -> Any:
    """Accept STUCK_PR / stale-task / Review Delay spellings for enum fields."""
    if not isinstance(raw, str):
        return raw
    value = raw.strip().lower().replace("-", "_").replace(" ", "_")
    return _ENUM_ALIASES.get(value, value)


def _lenient(enum_cls):
    return Annotated[enum_cls, BeforeValidator(normalize_enum_value)]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=False)


class User(_Record):
    id: str = Field(default_factory=new_id)
    organization_id: str
    name: str
    email: Optional[str] = None


class Project(_Record):
    id: str = Field(default_factory=new_id)
    organization_id: str
    name: str
    key: str
    description: Optional[str] = None
    status: _lenient(ProjectStatus) = ProjectStatus.ACTIVE
    start_date: Optional[UtcDatetime] = None
    target_date: Optional[UtcDatetime] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


class Task(_Record):
    id: str = Field(default_factory=new_id)
    organization_id: str
    project_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: _lenient(TaskStatus) = TaskStatus.BACKLOG
    priority: _lenient(TaskPriority) = TaskPriority.MEDIUM
    assignee_id: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    blocked_by_ids: List[str] = Field(default_factory=list)
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)
    completed_at: Optional[UtcDatetime] = None

    @property
    def completion_time(self) -> datetime:
        """When the task reached done; updated_at stands in when completed_at is unset."""
        return self.completed_at or self.updated_at


class PullRequest(_Record):
    id: str = Field(default_factory=new_id)
    organization_id: str
    project_id: Optional[str] = None
    number: int
    title: str = ""
    status: _lenient(PullRequestStatus) = PullRequestStatus.OPEN
    ci_status: _lenient(CIStatus) = CIStatus.UNKNOWN
    unresolved_comments: int = 0
    author_id: Optional[str] = None
    last_activity_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


class Bottleneck(_Record):
    id: str = Field(default_factory=new_id)
    organization_id: str
    project_id: Optional[str] = None
    type: _lenient(BottleneckType)
    severity: _lenient(Severity)
    status: _lenient(BottleneckStatus) = BottleneckStatus.ACTIVE
    title: str
    description: Optional[str] = None
    impact: Optional[str] = None
    task_id: Optional[str] = None
    pull_request_id: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    resolved_at: Optional[UtcDatetime] = None


class Prediction(_Record):
    """
    A confidence-scored insight.

    At most one active row exists per (type, scope_key) when scope_key is set.
    """
    id: str = Field(default_factory=new_id)
    organization_id: str
    project_id: Optional[str] = None
    type: _lenient(PredictionType)
    confidence: float = Field(..., ge=0.0, le=1.0)
    value: Dict[str, Any] = Field(default_factory=dict)
    reasoning: Optional[str] = None
    reasoning_source: _lenient(ReasoningSource) = ReasoningSource.TEMPLATE
    is_active: bool = True
    scope_key: Optional[str] = None
    valid_until: Optional[UtcDatetime] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


class BehavioralMetric(_Record):
    """One user's activity sample for one day."""
    id: str = Field(default_factory=new_id)
    organization_id: str
    user_id: str
    date: UtcDatetime
    message_count: int = 0
    active_hours_start: Optional[int] = Field(None, ge=0, le=24)
    active_hours_end: Optional[int] = Field(None, ge=0, le=24)
    weekend_activity: bool = False
    collaboration_score: Optional[float] = None


class TaskFilter(BaseModel):
    """Criteria for InsightStore.list_tasks; unset fields do not filter."""
    project_id: Optional[str] = None
    statuses: Optional[List[TaskStatus]] = None
    exclude_statuses: Optional[List[TaskStatus]] = None
    assignee_id: Optional[str] = None
    completed_since: Optional[UtcDatetime] = None
    created_on_or_before: Optional[UtcDatetime] = None

    def matches(self, task: Task) -> bool:
        if self.project_id is not None and task.project_id != self.project_id:
            return False
        if self.statuses is not None and task.status not in self.statuses:
            return False
        if self.exclude_statuses is not None and task.status in self.exclude_statuses:
            return False
        if self.assignee_id is not None and task.assignee_id != self.assignee_id:
            return False
        if self.completed_since is not None:
            if task.status is not TaskStatus.DONE or task.completion_time < self.completed_since:
                return False
        if self.created_on_or_before is not None and task.created_at > self.created_on_or_before:
            return False
        return True
