"""
PostgreSQL implementation of the workflow store.

Every method runs in its own session (one transaction). Aggregate writes on a
run row take ``SELECT ... FOR UPDATE`` so concurrent passes serialize on the
row instead of losing updates.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

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
from content_pipeline.storage.postgres.database import Database
from content_pipeline.storage.postgres.models import WorkflowRunModel, WorkflowTaskModel

_RUN_COLUMNS = (
    "user_id",
    "proposal_id",
    "workflow_type",
    "status",
    "current_stage",
    "stage_progress",
    "error_log",
    "version",
    "locked_by",
    "locked_until",
    "started_at",
    "paused_at",
    "completed_at",
    "created_at",
    "updated_at",
)

_TASK_COLUMNS = (
    "workflow_run_id",
    "user_id",
    "task_type",
    "target_entity",
    "priority",
    "depends_on",
    "input",
    "output",
    "agent_assigned",
    "status",
    "attempt",
    "max_attempts",
    "error_message",
    "started_at",
    "completed_at",
    "created_at",
    "updated_at",
)


# ==================== Row Conversion ====================

def _run_row(run: WorkflowRun) -> dict[str, Any]:
    data = run.model_dump(mode="json", include=set(_RUN_COLUMNS))
    # Keep native datetimes for timestamptz columns
    for column in ("locked_until", "started_at", "paused_at", "completed_at", "created_at", "updated_at"):
        data[column] = getattr(run, column)
    return data


def _run_from_row(model: WorkflowRunModel) -> WorkflowRun:
    data = {column: getattr(model, column) for column in _RUN_COLUMNS}
    data["id"] = model.id
    return WorkflowRun.model_validate(data)


def _task_row(task: WorkflowTask) -> dict[str, Any]:
    data = task.model_dump(mode="json", include=set(_TASK_COLUMNS))
    data["workflow_run_id"] = task.workflow_run_id
    data["depends_on"] = list(task.depends_on)
    for column in ("started_at", "completed_at", "created_at", "updated_at"):
        data[column] = getattr(task, column)
    return data


def _task_from_row(model: WorkflowTaskModel) -> WorkflowTask:
    data = {column: getattr(model, column) for column in _TASK_COLUMNS}
    data["id"] = model.id
    data["depends_on"] = list(model.depends_on or [])
    return WorkflowTask.model_validate(data)


class PostgresWorkflowStore(WorkflowStore):
    """Workflow store backed by the ``workflow_runs`` and ``workflow_tasks`` tables."""

    def __init__(self, database: Database):
        self._db = database

    # ==================== Run Operations ====================

    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        async with self._db.session() as session:
            session.add(WorkflowRunModel(id=run.id, **_run_row(run)))
            await session.flush()
        return run

    async def get_run(self, run_id: UUID) -> Optional[WorkflowRun]:
        async with self._db.session() as session:
            model = await session.get(WorkflowRunModel, run_id)
            return _run_from_row(model) if model else None

    async def list_runs(
        self,
        status: Optional[WorkflowStatus] = None,
        user_id: Optional[str] = None,
    ) -> list[WorkflowRun]:
        query = select(WorkflowRunModel)
        if status is not None:
            query = query.where(WorkflowRunModel.status == status.value)
        if user_id is not None:
            query = query.where(WorkflowRunModel.user_id == user_id)
        query = query.order_by(WorkflowRunModel.created_at)

        async with self._db.session() as session:
            result = await session.execute(query)
            return [_run_from_row(m) for m in result.scalars().all()]

    async def update_run(
        self,
        run_id: UUID,
        expected_version: Optional[int] = None,
        **values: Any,
    ) -> Optional[WorkflowRun]:
        async with self._db.session() as session:
            model = await self._lock_run(session, run_id)
            if model is None:
                return None
            if expected_version is not None and model.version != expected_version:
                raise ConcurrentUpdateError(run_id, expected_version, model.version)
            return await self._write_run(session, model, values)

    async def upsert_stage_progress(
        self,
        run_id: UUID,
        stage: WorkflowStage,
    ) -> Optional[StageProgress]:
        async with self._db.session() as session:
            model = await self._lock_run(session, run_id)
            if model is None:
                return None

            result = await session.execute(
                select(WorkflowTaskModel.status, func.count())
                .where(
                    and_(
                        WorkflowTaskModel.workflow_run_id == run_id,
                        WorkflowTaskModel.task_type == stage.value,
                    )
                )
                .group_by(WorkflowTaskModel.status)
            )
            counts = {status: count for status, count in result.all()}
            progress = StageProgress.from_counts(
                completed=counts.get(TaskStatus.DONE.value, 0),
                failed=counts.get(TaskStatus.FAILED.value, 0),
                total=sum(counts.values()),
            )

            run = _run_from_row(model)
            stage_progress = dict(run.stage_progress)
            stage_progress[stage.value] = progress
            await self._write_run(session, model, {"stage_progress": stage_progress})
            return progress

    async def append_error_log(self, run_id: UUID, entry: ErrorLogEntry) -> None:
        async with self._db.session() as session:
            model = await self._lock_run(session, run_id)
            if model is None:
                return
            run = _run_from_row(model)
            await self._write_run(session, model, {"error_log": [*run.error_log, entry]})

    async def acquire_run_lease(self, run_id: UUID, owner: str, ttl: float) -> bool:
        now = utcnow()
        async with self._db.session() as session:
            result = await session.execute(
                update(WorkflowRunModel)
                .where(
                    and_(
                        WorkflowRunModel.id == run_id,
                        or_(
                            WorkflowRunModel.locked_by.is_(None),
                            WorkflowRunModel.locked_by == owner,
                            WorkflowRunModel.locked_until.is_(None),
                            WorkflowRunModel.locked_until <= now,
                        ),
                    )
                )
                .values(locked_by=owner, locked_until=now + timedelta(seconds=ttl))
            )
            return result.rowcount == 1

    async def release_run_lease(self, run_id: UUID, owner: str) -> None:
        async with self._db.session() as session:
            await session.execute(
                update(WorkflowRunModel)
                .where(
                    and_(
                        WorkflowRunModel.id == run_id,
                        WorkflowRunModel.locked_by == owner,
                    )
                )
                .values(locked_by=None, locked_until=None)
            )

    # ==================== Task Operations ====================

    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        async with self._db.session() as session:
            session.add(WorkflowTaskModel(id=task.id, **_task_row(task)))
            await session.flush()
        return task

    async def get_task(self, task_id: UUID) -> Optional[WorkflowTask]:
        async with self._db.session() as session:
            model = await session.get(WorkflowTaskModel, task_id)
            return _task_from_row(model) if model else None

    async def get_tasks(self, task_ids: Iterable[UUID]) -> dict[UUID, WorkflowTask]:
        ids = list(task_ids)
        if not ids:
            return {}
        async with self._db.session() as session:
            result = await session.execute(
                select(WorkflowTaskModel).where(WorkflowTaskModel.id.in_(ids))
            )
            return {m.id: _task_from_row(m) for m in result.scalars().all()}

    async def list_tasks(
        self,
        run_id: UUID,
        task_type: Optional[WorkflowStage] = None,
        status: Optional[TaskStatus] = None,
    ) -> list[WorkflowTask]:
        query = select(WorkflowTaskModel).where(WorkflowTaskModel.workflow_run_id == run_id)
        if task_type is not None:
            query = query.where(WorkflowTaskModel.task_type == task_type.value)
        if status is not None:
            query = query.where(WorkflowTaskModel.status == status.value)
        query = query.order_by(
            WorkflowTaskModel.priority.desc(),
            WorkflowTaskModel.created_at.asc(),
        )

        async with self._db.session() as session:
            result = await session.execute(query)
            return [_task_from_row(m) for m in result.scalars().all()]

    async def update_task(self, task_id: UUID, **values: Any) -> Optional[WorkflowTask]:
        async with self._db.session() as session:
            result = await session.execute(
                select(WorkflowTaskModel)
                .where(WorkflowTaskModel.id == task_id)
                .with_for_update()
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None

            task = WorkflowTask.model_validate(
                {**_task_from_row(model).model_dump(), **values, "updated_at": utcnow()}
            )
            for column, value in _task_row(task).items():
                setattr(model, column, value)
            await session.flush()
            return task

    async def list_stale_tasks(
        self,
        run_id: UUID,
        started_before: datetime,
    ) -> list[WorkflowTask]:
        async with self._db.session() as session:
            result = await session.execute(
                select(WorkflowTaskModel).where(
                    and_(
                        WorkflowTaskModel.workflow_run_id == run_id,
                        WorkflowTaskModel.status == TaskStatus.RUNNING.value,
                        WorkflowTaskModel.started_at < started_before,
                    )
                )
            )
            return [_task_from_row(m) for m in result.scalars().all()]

    # ==================== Helper Methods ====================

    @staticmethod
    async def _lock_run(session: AsyncSession, run_id: UUID) -> Optional[WorkflowRunModel]:
        result = await session.execute(
            select(WorkflowRunModel)
            .where(WorkflowRunModel.id == run_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _write_run(
        session: AsyncSession,
        model: WorkflowRunModel,
        values: dict[str, Any],
    ) -> WorkflowRun:
        """Merge ``values`` into a locked row, re-validating the run invariants."""
        current = _run_from_row(model)
        run = WorkflowRun.model_validate(
            {
                **current.model_dump(),
                **values,
                "version": current.version + 1,
                "updated_at": utcnow(),
            }
        )
        for column, value in _run_row(run).items():
            setattr(model, column, value)
        await session.flush()
        return run
