"""Workflow orchestrator: state transitions, execution, scheduling, recovery."""

from content_pipeline.orchestrator.components import Components, build_components
from content_pipeline.orchestrator.executor import TaskExecutor
from content_pipeline.orchestrator.lease import RedisRunLease, RunLease, StoreRunLease, build_lease
from content_pipeline.orchestrator.processor import WorkflowProcessor
from content_pipeline.orchestrator.recovery import RecoverySweep
from content_pipeline.orchestrator.scheduler import WorkflowScheduler
from content_pipeline.orchestrator.transitions import WorkflowStateManager

__all__ = [
    "Components",
    "build_components",
    "TaskExecutor",
    "RedisRunLease",
    "RunLease",
    "StoreRunLease",
    "build_lease",
    "WorkflowProcessor",
    "RecoverySweep",
    "WorkflowScheduler",
    "WorkflowStateManager",
]
