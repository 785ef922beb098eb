"""Domain exceptions for the orchestration core."""

from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for orchestration errors."""


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow run does not exist."""

    def __init__(self, run_id: Any):
        self.run_id = run_id
        super().__init__(f"Workflow run not found: {run_id}")


class TaskNotFoundError(WorkflowError):
    """Raised when a workflow task does not exist."""

    def __init__(self, task_id: Any):
        self.task_id = task_id
        super().__init__(f"Workflow task not found: {task_id}")


class InvalidStateTransitionError(WorkflowError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: str, to_state: str, message: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition from {from_state} to {to_state}"
            + (f": {message}" if message else "")
        )


class ConcurrentUpdateError(WorkflowError):
    """Raised when an optimistic version check on a run row fails."""

    def __init__(self, run_id: Any, expected_version: int, actual_version: Optional[int] = None):
        self.run_id = run_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Run {run_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class HandlerNotRegisteredError(WorkflowError):
    """Raised when no task handler is registered for a stage."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"No handler registered for task type: {stage}")
