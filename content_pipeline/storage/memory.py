"""In-memory implementation of the workflow store."""

import asyncio
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from content_pipeline.core.exceptions import ConcurrentUpdateError
from content_pipeline.core.models import (
    ErrorLogEntry,
    StageProgress,
    TaskStatus,
    WorkflowRun,
    WorkflowStatus,
    WorkflowTask,
    utcnow,
)
from content_pipeline.core.stages import WorkflowStage
from content_pipeline.storage.base import WorkflowStore


class InMemoryWorkflowStore(WorkflowStore):
    """
    Store runs and tasks in local memory.

    Useful for tests or local runs without a database. Data is not persisted
    across process restarts. Writes to a run row are serialized with a
    per-run ``asyncio.Lock``; callers always receive copies.
    """

    def __init__(self) -> None:
        self._runs: dict[UUID, WorkflowRun] = {}
        self._tasks: dict[UUID, WorkflowTask] = {}
        self._locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ==================== Run Operations ====================

    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        self._runs[run.id] = run.model_copy(deep=True)
        return run.model_copy(deep=True)

    async def get_run(self, run_id: UUID) -> Optional[WorkflowRun]:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(
        self,
        status: Optional[WorkflowStatus] = None,
        user_id: Optional[str] = None,
    ) -> list[WorkflowRun]:
        runs = [
            run for run in self._runs.values()
            if (status is None or run.status == status)
            and (user_id is None or run.user_id == user_id)
        ]
        runs.sort(key=lambda r: r.created_at)
        return [run.model_copy(deep=True) for run in runs]

    async def update_run(
        self,
        run_id: UUID,
        expected_version: Optional[int] = None,
        **values: Any,
    ) -> Optional[WorkflowRun]:
        async with self._locks[run_id]:
            run = self._runs.get(run_id)
            if run is None:
                return None
            if expected_version is not None and run.version != expected_version:
                raise ConcurrentUpdateError(run_id, expected_version, run.version)
            updated = self._merge_run(run, values)
            self._runs[run_id] = updated
            return updated.model_copy(deep=True)

    async def upsert_stage_progress(
        self,
        run_id: UUID,
        stage: WorkflowStage,
    ) -> Optional[StageProgress]:
        async with self._locks[run_id]:
            run = self._runs.get(run_id)
            if run is None:
                return None

            stage_tasks = [
                t for t in self._tasks.values()
                if t.workflow_run_id == run_id and t.task_type == stage
            ]
            progress = StageProgress.from_counts(
                completed=sum(1 for t in stage_tasks if t.status == TaskStatus.DONE),
                failed=sum(1 for t in stage_tasks if t.status == TaskStatus.FAILED),
                total=len(stage_tasks),
            )

            stage_progress = dict(run.stage_progress)
            stage_progress[stage.value] = progress
            self._runs[run_id] = self._merge_run(run, {"stage_progress": stage_progress})
            return progress.model_copy()

    async def append_error_log(self, run_id: UUID, entry: ErrorLogEntry) -> None:
        async with self._locks[run_id]:
            run = self._runs.get(run_id)
            if run is None:
                return
            error_log = [*run.error_log, entry]
            self._runs[run_id] = self._merge_run(run, {"error_log": error_log})

    async def acquire_run_lease(self, run_id: UUID, owner: str, ttl: float) -> bool:
        async with self._locks[run_id]:
            run = self._runs.get(run_id)
            if run is None:
                return False
            now = utcnow()
            held = (
                run.locked_by is not None
                and run.locked_by != owner
                and run.locked_until is not None
                and run.locked_until > now
            )
            if held:
                return False
            run.locked_by = owner
            run.locked_until = now + timedelta(seconds=ttl)
            return True

    async def release_run_lease(self, run_id: UUID, owner: str) -> None:
        async with self._locks[run_id]:
            run = self._runs.get(run_id)
            if run is not None and run.locked_by == owner:
                run.locked_by = None
                run.locked_until = None

    # ==================== Task Operations ====================

    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        self._tasks[task.id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    async def get_task(self, task_id: UUID) -> Optional[WorkflowTask]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def get_tasks(self, task_ids: Iterable[UUID]) -> dict[UUID, WorkflowTask]:
        return {
            task_id: self._tasks[task_id].model_copy(deep=True)
            for task_id in task_ids
            if task_id in self._tasks
        }

    async def list_tasks(
        self,
        run_id: UUID,
        task_type: Optional[WorkflowStage] = None,
        status: Optional[TaskStatus] = None,
    ) -> list[WorkflowTask]:
        tasks = [
            t for t in self._tasks.values()
            if t.workflow_run_id == run_id
            and (task_type is None or t.task_type == task_type)
            and (status is None or t.status == status)
        ]
        tasks.sort(key=lambda t: (-t.priority, t.created_at))
        return [t.model_copy(deep=True) for t in tasks]

    async def update_task(self, task_id: UUID, **values: Any) -> Optional[WorkflowTask]:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        updated = WorkflowTask.model_validate(
            {**task.model_dump(), **values, "updated_at": utcnow()}
        )
        self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    async def list_stale_tasks(
        self,
        run_id: UUID,
        started_before: datetime,
    ) -> list[WorkflowTask]:
        return [
            t.model_copy(deep=True)
            for t in self._tasks.values()
            if t.workflow_run_id == run_id
            and t.status == TaskStatus.RUNNING
            and t.started_at is not None
            and t.started_at < started_before
        ]

    # ==================== Helper Methods ====================

    @staticmethod
    def _merge_run(run: WorkflowRun, values: dict[str, Any]) -> WorkflowRun:
        """Apply field updates, re-validating the run invariants."""
        return WorkflowRun.model_validate(
            {
                **run.model_dump(),
                **values,
                "version": run.version + 1,
                "updated_at": utcnow(),
            }
        )
