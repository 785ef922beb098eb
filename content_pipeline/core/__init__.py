"""Core domain models and business logic."""

from content_pipeline.core.models import (
    TaskStatus,
    WorkflowRun,
    WorkflowStatus,
    WorkflowTask,
    WorkflowType,
)
from content_pipeline.core.stages import (
    STAGE_ORDER,
    AgentType,
    WorkflowStage,
    get_next_stage,
    get_previous_stage,
)
from content_pipeline.core.state_machine import RunStateMachine, TaskStateMachine

__all__ = [
    "TaskStatus",
    "WorkflowRun",
    "WorkflowStatus",
    "WorkflowTask",
    "WorkflowType",
    "STAGE_ORDER",
    "AgentType",
    "WorkflowStage",
    "get_next_stage",
    "get_previous_stage",
    "RunStateMachine",
    "TaskStateMachine",
]
