"""
Unit tests for domain models.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from content_pipeline.core.models import (
    StageProgress,
    StageStatus,
    TaskInput,
    TaskStatus,
    WorkflowRun,
    WorkflowStatus,
    WorkflowTask,
    WorkflowType,
)
from content_pipeline.core.stages import WorkflowStage


class TestWorkflowRun:
    """Tests for the run model."""

    def test_new_run_is_pending_without_stage(self):
        run = WorkflowRun(user_id="user-1", workflow_type=WorkflowType.SITE_BUILD)

        assert run.status == WorkflowStatus.PENDING
        assert run.current_stage is None
        assert run.version == 0
        assert run.stage_progress == {}
        assert run.error_log == []

    def test_pending_run_rejects_current_stage(self):
        with pytest.raises(ValidationError):
            WorkflowRun(
                user_id="user-1",
                workflow_type=WorkflowType.SITE_BUILD,
                current_stage=WorkflowStage.INTAKE,
            )

    def test_running_run_requires_current_stage(self):
        with pytest.raises(ValidationError):
            WorkflowRun(
                user_id="user-1",
                workflow_type=WorkflowType.BLOG_BATCH,
                status=WorkflowStatus.RUNNING,
            )

    def test_empty_user_id_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowRun(user_id="", workflow_type=WorkflowType.SINGLE_PAGE)


class TestWorkflowTask:
    """Tests for the task model."""

    def test_defaults(self):
        task = WorkflowTask(
            workflow_run_id=uuid4(),
            user_id="user-1",
            task_type=WorkflowStage.RESEARCH,
        )

        assert task.status == TaskStatus.QUEUED
        assert task.attempt == 1
        assert task.max_attempts == 3
        assert task.priority == 0
        assert task.depends_on == []
        assert not task.is_terminal

    def test_duplicate_dependencies_rejected(self):
        dep = uuid4()
        with pytest.raises(ValidationError, match="Duplicate dependencies"):
            WorkflowTask(
                workflow_run_id=uuid4(),
                user_id="user-1",
                task_type=WorkflowStage.SITEMAP,
                depends_on=[dep, dep],
            )

    def test_terminal_statuses(self):
        task = WorkflowTask(
            workflow_run_id=uuid4(),
            user_id="user-1",
            task_type=WorkflowStage.SITEMAP,
            status=TaskStatus.FAILED,
        )
        assert task.is_terminal

    def test_input_keeps_stage_specific_fields(self):
        task_input = TaskInput(page_slug="about", sections=["hero", "faq"])

        restored = TaskInput.model_validate(task_input.model_dump())

        assert restored.page_slug == "about"
        assert restored.sections == ["hero", "faq"]
        assert restored.schema_version == 1


class TestStageProgress:
    """Tests for stage status derivation."""

    def test_all_done_is_completed(self):
        progress = StageProgress.from_counts(completed=3, failed=0, total=3)
        assert progress.status == StageStatus.COMPLETED
        assert progress.completed == 3
        assert progress.total == 3

    def test_majority_failed_is_failed(self):
        progress = StageProgress.from_counts(completed=1, failed=2, total=3)
        assert progress.status == StageStatus.FAILED

    def test_half_failed_is_still_running(self):
        progress = StageProgress.from_counts(completed=1, failed=1, total=2)
        assert progress.status == StageStatus.RUNNING

    def test_empty_stage_is_running(self):
        progress = StageProgress.from_counts(completed=0, failed=0, total=0)
        assert progress.status == StageStatus.RUNNING
