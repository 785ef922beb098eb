"""
Unit tests for state machine transitions.
"""

import pytest

from content_pipeline.core.exceptions import InvalidStateTransitionError
from content_pipeline.core.models import TaskStatus, WorkflowStatus
from content_pipeline.core.state_machine import (
    TERMINAL_TASK_STATES,
    RunStateMachine,
    TaskStateMachine,
)


class TestTaskStateMachine:
    """Tests for task state machine."""

    def test_happy_path(self):
        TaskStateMachine.validate(TaskStatus.QUEUED, TaskStatus.RUNNING)
        TaskStateMachine.validate(TaskStatus.RUNNING, TaskStatus.DONE)

    def test_retry_returns_to_queued(self):
        TaskStateMachine.validate(TaskStatus.RUNNING, TaskStatus.QUEUED)

    def test_done_is_final(self):
        assert TaskStateMachine.valid_transitions(TaskStatus.DONE) == set()
        with pytest.raises(InvalidStateTransitionError):
            TaskStateMachine.validate(TaskStatus.DONE, TaskStatus.QUEUED)

    def test_failed_can_only_be_requeued(self):
        assert TaskStateMachine.valid_transitions(TaskStatus.FAILED) == {TaskStatus.QUEUED}

    def test_blocked_cannot_run_directly(self):
        # Must be requeued first
        with pytest.raises(InvalidStateTransitionError):
            TaskStateMachine.validate(TaskStatus.BLOCKED_USER, TaskStatus.RUNNING)

    def test_queued_cannot_complete_directly(self):
        with pytest.raises(InvalidStateTransitionError, match="queued to done"):
            TaskStateMachine.validate(TaskStatus.QUEUED, TaskStatus.DONE)

    def test_running_cannot_start_again(self):
        with pytest.raises(InvalidStateTransitionError, match="running to running"):
            TaskStateMachine.validate(TaskStatus.RUNNING, TaskStatus.RUNNING)

    def test_validate_allows_legal_move(self):
        TaskStateMachine.validate(TaskStatus.RUNNING, TaskStatus.BLOCKED_USER)

    def test_error_lists_valid_targets(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            TaskStateMachine.validate(TaskStatus.FAILED, TaskStatus.DONE)

        assert exc_info.value.from_state == "failed"
        assert exc_info.value.to_state == "done"
        assert "Valid transitions: ['queued']" in str(exc_info.value)

    def test_terminal_states(self):
        assert TERMINAL_TASK_STATES == {TaskStatus.DONE, TaskStatus.FAILED}


class TestRunStateMachine:
    """Tests for run state machine."""

    def test_start(self):
        RunStateMachine.validate(WorkflowStatus.PENDING, WorkflowStatus.RUNNING)

    def test_pause_and_resume(self):
        RunStateMachine.validate(WorkflowStatus.RUNNING, WorkflowStatus.PAUSED)
        RunStateMachine.validate(WorkflowStatus.PAUSED, WorkflowStatus.RUNNING)

    def test_pending_cannot_complete(self):
        with pytest.raises(InvalidStateTransitionError):
            RunStateMachine.validate(WorkflowStatus.PENDING, WorkflowStatus.COMPLETED)

    def test_paused_cannot_complete(self):
        with pytest.raises(InvalidStateTransitionError):
            RunStateMachine.validate(WorkflowStatus.PAUSED, WorkflowStatus.COMPLETED)

    @pytest.mark.parametrize(
        "state", [WorkflowStatus.PENDING, WorkflowStatus.RUNNING, WorkflowStatus.PAUSED]
    )
    def test_any_open_run_can_fail(self, state):
        RunStateMachine.validate(state, WorkflowStatus.FAILED)

    @pytest.mark.parametrize("state", [WorkflowStatus.COMPLETED, WorkflowStatus.FAILED])
    def test_terminal_runs_are_final(self, state):
        assert RunStateMachine.valid_transitions(state) == set()
        with pytest.raises(InvalidStateTransitionError):
            RunStateMachine.validate(state, WorkflowStatus.RUNNING)
