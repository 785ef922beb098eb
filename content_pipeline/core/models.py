"""
Domain models for the content pipeline orchestrator.

All models use Pydantic for validation and serialization.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from content_pipeline.core.stages import AgentType, WorkflowStage


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class WorkflowType(str, Enum):
    """Kinds of pipeline runs."""

    SITE_BUILD = "site_build"
    BLOG_BATCH = "blog_batch"
    SINGLE_PAGE = "single_page"


class WorkflowStatus(str, Enum):
    """
    Possible states for a workflow run.

    State transitions:
    - pending -> running -> completed
    - running -> paused -> running (resume)
    - pending | running | paused -> failed
    """

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """
    Possible states for a workflow task.

    State transitions:
    - queued -> running -> done
    - queued -> running -> queued (retry) | failed (attempts exhausted)
    - queued | running -> blocked_user -> queued (unblocked)
    """

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    BLOCKED_USER = "blocked_user"


class StageStatus(str, Enum):
    """Aggregate status of one stage inside a run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class HealthStatus(str, Enum):
    """Overall health classification of a run."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class StageProgress(BaseModel):
    """Task counters for one stage of a run."""

    completed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    status: StageStatus = Field(default=StageStatus.RUNNING)

    @classmethod
    def from_counts(cls, completed: int, failed: int, total: int) -> "StageProgress":
        """Derive the stage status from its task counts."""
        if completed == total and total > 0:
            status = StageStatus.COMPLETED
        elif failed > total / 2:
            status = StageStatus.FAILED
        else:
            status = StageStatus.RUNNING
        return cls(completed=completed, total=total, status=status)


class ErrorLogEntry(BaseModel):
    """A permanently failed task (or a run-level event) recorded on the run."""

    stage: str
    task: str
    error: str
    timestamp: datetime = Field(default_factory=utcnow)


class TaskInput(BaseModel):
    """
    Versioned input envelope for a task.

    A few fields are shared by most stages; anything stage-specific travels
    as extra keys and round-trips untouched.
    """

    model_config = ConfigDict(extra="allow")

    schema_version: int = Field(default=1, ge=1)
    page_slug: Optional[str] = None
    image_id: Optional[str] = None
    prompt: Optional[str] = None


class TaskOutput(BaseModel):
    """Versioned output envelope for a task."""

    model_config = ConfigDict(extra="allow")

    schema_version: int = Field(default=1, ge=1)
    content: Optional[str] = None
    image_url: Optional[str] = None
    html: Optional[str] = None


class WorkflowRun(BaseModel):
    """One end-to-end execution of the content pipeline."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    proposal_id: Optional[str] = None
    workflow_type: WorkflowType

    status: WorkflowStatus = Field(default=WorkflowStatus.PENDING)
    current_stage: Optional[WorkflowStage] = None

    # Keyed by stage value
    stage_progress: dict[str, StageProgress] = Field(default_factory=dict)
    error_log: list[ErrorLogEntry] = Field(default_factory=list)

    # Optimistic concurrency counter, bumped on every write
    version: int = Field(default=0, ge=0)

    # Scheduler pass lease
    locked_by: Optional[str] = None
    locked_until: Optional[datetime] = None

    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_current_stage(self) -> "WorkflowRun":
        """A run has a current stage exactly when it has left pending."""
        if self.status == WorkflowStatus.PENDING and self.current_stage is not None:
            raise ValueError("pending runs must not have a current stage")
        if self.status != WorkflowStatus.PENDING and self.current_stage is None:
            raise ValueError(f"{self.status.value} runs must have a current stage")
        return self


class WorkflowTask(BaseModel):
    """A schedulable unit of work inside one stage of a run."""

    id: UUID = Field(default_factory=uuid4)
    workflow_run_id: UUID
    user_id: str = Field(..., min_length=1)

    task_type: WorkflowStage
    target_entity: Optional[str] = None
    priority: int = Field(default=0, description="Higher runs first")
    depends_on: list[UUID] = Field(default_factory=list)

    input: TaskInput = Field(default_factory=TaskInput)
    output: Optional[TaskOutput] = None
    agent_assigned: Optional[AgentType] = None

    status: TaskStatus = Field(default=TaskStatus.QUEUED)
    attempt: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    error_message: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("depends_on")
    @classmethod
    def validate_depends_on(cls, v: list[UUID]) -> list[UUID]:
        """Dependencies are an ordered set."""
        if len(v) != len(set(v)):
            raise ValueError("Duplicate dependencies not allowed")
        return v

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.DONE, TaskStatus.FAILED)


class CreateTaskParams(BaseModel):
    """Parameters for creating a task, also used for handler fan-out."""

    workflow_run_id: UUID
    user_id: str = Field(..., min_length=1)
    task_type: WorkflowStage
    target_entity: Optional[str] = None
    priority: int = 0
    depends_on: list[UUID] = Field(default_factory=list)
    input: TaskInput = Field(default_factory=TaskInput)
    agent_assigned: Optional[AgentType] = None
    max_attempts: Optional[int] = Field(default=None, ge=1)


class StageEntity(BaseModel):
    """One artifact a stage should produce a task for."""

    id: str = Field(..., min_length=1, description="Becomes the task's target entity")
    input: TaskInput = Field(default_factory=TaskInput)
    depends_on: list[UUID] = Field(default_factory=list)


class CreateWorkflowParams(BaseModel):
    """Parameters for creating a workflow run."""

    user_id: str = Field(..., min_length=1)
    workflow_type: WorkflowType
    proposal_id: Optional[str] = None


class TaskExecutionResult(BaseModel):
    """Outcome reported by a task handler."""

    success: bool
    output: Optional[TaskOutput] = None
    error: Optional[str] = None
    next_tasks: list[CreateTaskParams] = Field(default_factory=list)


class DependencyCheck(BaseModel):
    """Result of resolving a task's dependencies."""

    all_met: bool
    unmet_dependencies: list[UUID] = Field(default_factory=list)
    missing_tasks: list[UUID] = Field(default_factory=list)


class StageAdvanceCheck(BaseModel):
    """Whether a run may leave its current stage."""

    can_advance: bool
    reason: Optional[str] = None
    # All tasks terminal but too many of them failed
    degraded: bool = False


class StageCompletion(BaseModel):
    """Task counts for one stage."""

    stage: WorkflowStage
    is_complete: bool
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    pending_tasks: int


class WorkflowSnapshot(BaseModel):
    """A run together with its tasks grouped by scheduling state."""

    run: WorkflowRun
    tasks: list[WorkflowTask]
    ready_tasks: list[WorkflowTask]
    blocked_tasks: list[WorkflowTask]
    completed_tasks: list[WorkflowTask]
    failed_tasks: list[WorkflowTask]


class WorkflowProgress(BaseModel):
    """Coarse progress figures for a run."""

    current_stage: WorkflowStage
    current_stage_label: str
    stages_complete: int
    total_stages: int
    overall_percent: int


class WorkflowHealth(BaseModel):
    """Operator-facing health report for a run."""

    status: HealthStatus
    issues: list[str] = Field(default_factory=list)
    stale_tasks: int = 0
    failed_tasks: int = 0
    blocked_tasks: int = 0
    missing_dependency_tasks: int = 0
    cyclic_tasks: int = 0


class WorkflowProcessResult(BaseModel):
    """Counters for one scheduler pass over a run."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    stage_advanced: bool = False
    skipped: bool = False


class RecoveryResult(BaseModel):
    """Summary of one recovery sweep."""

    workflows_recovered: int = 0
    tasks_reset: int = 0
    runs_failed: int = 0
    errors: list[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    """Per-run entry of a processing cycle."""

    id: UUID
    tasks_processed: int = 0
    succeeded: int = 0
    failed: int = 0
    stage_advanced: bool = False
    skipped: bool = False
    error: Optional[str] = None


class CycleSummary(BaseModel):
    """Result of one trigger invocation: recovery then one pass per run."""

    processed: int = 0
    workflows: list[RunSummary] = Field(default_factory=list)
    recovery: RecoveryResult = Field(default_factory=RecoveryResult)
