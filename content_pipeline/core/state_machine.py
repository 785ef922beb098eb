"""
State machine definitions for run and task states.

Every status write in the orchestrator goes through one of these machines so
that an illegal transition fails loudly instead of corrupting a run.
"""

from typing import ClassVar, Generic, TypeVar

from content_pipeline.core.exceptions import InvalidStateTransitionError
from content_pipeline.core.models import TaskStatus, WorkflowStatus

S = TypeVar("S", TaskStatus, WorkflowStatus)


class _StateMachine(Generic[S]):
    """Transition table lookups shared by the concrete machines below."""

    VALID_TRANSITIONS: ClassVar[dict] = {}

    @classmethod
    def valid_transitions(cls, from_state: S) -> set[S]:
        """Get all states reachable from ``from_state``."""
        return set(cls.VALID_TRANSITIONS.get(from_state, set()))

    @classmethod
    def validate(cls, from_state: S, to_state: S) -> None:
        """
        Check a single transition.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        valid = cls.valid_transitions(from_state)
        if to_state not in valid:
            raise InvalidStateTransitionError(
                from_state.value,
                to_state.value,
                f"Valid transitions: {sorted(s.value for s in valid)}",
            )


class TaskStateMachine(_StateMachine[TaskStatus]):
    """
    State machine for task statuses.

    ``failed`` is terminal for scheduling purposes; the only way out is an
    explicit operator retry back to ``queued``.
    """

    VALID_TRANSITIONS: ClassVar[dict[TaskStatus, set[TaskStatus]]] = {
        TaskStatus.QUEUED: {
            TaskStatus.RUNNING,
            TaskStatus.BLOCKED_USER,
            TaskStatus.FAILED,
        },
        TaskStatus.RUNNING: {
            TaskStatus.DONE,
            TaskStatus.QUEUED,
            TaskStatus.FAILED,
            TaskStatus.BLOCKED_USER,
        },
        TaskStatus.BLOCKED_USER: {TaskStatus.QUEUED, TaskStatus.FAILED},
        TaskStatus.FAILED: {TaskStatus.QUEUED},
        TaskStatus.DONE: set(),
    }

    TERMINAL_STATES: ClassVar[frozenset[TaskStatus]] = frozenset(
        {TaskStatus.DONE, TaskStatus.FAILED}
    )


class RunStateMachine(_StateMachine[WorkflowStatus]):
    """State machine for workflow run statuses."""

    VALID_TRANSITIONS: ClassVar[dict[WorkflowStatus, set[WorkflowStatus]]] = {
        WorkflowStatus.PENDING: {WorkflowStatus.RUNNING, WorkflowStatus.FAILED},
        WorkflowStatus.RUNNING: {
            WorkflowStatus.PAUSED,
            WorkflowStatus.COMPLETED,
            WorkflowStatus.FAILED,
        },
        WorkflowStatus.PAUSED: {WorkflowStatus.RUNNING, WorkflowStatus.FAILED},
        WorkflowStatus.COMPLETED: set(),
        WorkflowStatus.FAILED: set(),
    }


TERMINAL_TASK_STATES = TaskStateMachine.TERMINAL_STATES
