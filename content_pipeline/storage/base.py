"""
Persistence contract for workflow runs and tasks.

The orchestrator only talks to storage through this interface. Backends are
responsible for row-level atomicity of the operations marked as atomic; the
orchestrator never performs an unguarded read-modify-write of a run row.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from content_pipeline.core.models import (
    ErrorLogEntry,
    StageProgress,
    TaskStatus,
    WorkflowRun,
    WorkflowStatus,
    WorkflowTask,
)
from content_pipeline.core.stages import WorkflowStage


class WorkflowStore(ABC):
    """Storage backend for ``WorkflowRun`` and ``WorkflowTask`` rows."""

    # ==================== Run Operations ====================

    @abstractmethod
    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        """Persist a new run."""

    @abstractmethod
    async def get_run(self, run_id: UUID) -> Optional[WorkflowRun]:
        """Get a run by id."""

    @abstractmethod
    async def list_runs(
        self,
        status: Optional[WorkflowStatus] = None,
        user_id: Optional[str] = None,
    ) -> list[WorkflowRun]:
        """List runs, oldest first."""

    @abstractmethod
    async def update_run(
        self,
        run_id: UUID,
        expected_version: Optional[int] = None,
        **values: Any,
    ) -> Optional[WorkflowRun]:
        """
        Update fields of a run.

        Bumps ``version`` and ``updated_at``. When ``expected_version`` is
        given the write only happens if the stored version still matches.

        Returns:
            The updated run, or None if it does not exist

        Raises:
            ConcurrentUpdateError: If ``expected_version`` is stale
        """

    @abstractmethod
    async def upsert_stage_progress(
        self,
        run_id: UUID,
        stage: WorkflowStage,
    ) -> Optional[StageProgress]:
        """
        Atomically recount a stage's tasks and store the aggregate.

        The recount and the write of ``stage_progress[stage]`` happen under
        the run row's lock, so concurrent callers cannot lose updates.
        """

    @abstractmethod
    async def append_error_log(self, run_id: UUID, entry: ErrorLogEntry) -> None:
        """Atomically append an entry to a run's error log."""

    @abstractmethod
    async def acquire_run_lease(self, run_id: UUID, owner: str, ttl: float) -> bool:
        """
        Take the run's pass lease for ``ttl`` seconds.

        Succeeds if the lease is free, expired, or already held by ``owner``.
        """

    @abstractmethod
    async def release_run_lease(self, run_id: UUID, owner: str) -> None:
        """Release the run's pass lease if ``owner`` holds it."""

    # ==================== Task Operations ====================

    @abstractmethod
    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        """Persist a new task."""

    @abstractmethod
    async def get_task(self, task_id: UUID) -> Optional[WorkflowTask]:
        """Get a task by id."""

    @abstractmethod
    async def get_tasks(self, task_ids: Iterable[UUID]) -> dict[UUID, WorkflowTask]:
        """Get several tasks by id. Missing ids are absent from the result."""

    @abstractmethod
    async def list_tasks(
        self,
        run_id: UUID,
        task_type: Optional[WorkflowStage] = None,
        status: Optional[TaskStatus] = None,
    ) -> list[WorkflowTask]:
        """List a run's tasks by descending priority, then creation time."""

    @abstractmethod
    async def update_task(self, task_id: UUID, **values: Any) -> Optional[WorkflowTask]:
        """Update fields of a task and bump ``updated_at``."""

    @abstractmethod
    async def list_stale_tasks(
        self,
        run_id: UUID,
        started_before: datetime,
    ) -> list[WorkflowTask]:
        """List a run's ``running`` tasks that started before the cutoff."""
