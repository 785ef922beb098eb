"""
Run and task state-transition helpers.

All status writes go through this module. Each helper validates the move
against the task or run state machine before touching the store, and keeps
the run's stage progress aggregate in step with its tasks.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional
from uuid import UUID

from content_pipeline.config.settings import Settings
from content_pipeline.core.dependencies import DependencyResolver
from content_pipeline.core.exceptions import (
    InvalidStateTransitionError,
    TaskNotFoundError,
    WorkflowNotFoundError,
)
from content_pipeline.core.models import (
    CreateTaskParams,
    CreateWorkflowParams,
    ErrorLogEntry,
    StageCompletion,
    StageEntity,
    TaskInput,
    TaskOutput,
    TaskStatus,
    WorkflowProgress,
    WorkflowRun,
    WorkflowSnapshot,
    WorkflowStatus,
    WorkflowTask,
    WorkflowType,
    utcnow,
)
from content_pipeline.core.stages import (
    FIRST_STAGE,
    STAGE_AGENTS,
    STAGE_METADATA,
    STAGE_ORDER,
    WorkflowStage,
    stage_index,
)
from content_pipeline.core.state_machine import RunStateMachine, TaskStateMachine
from content_pipeline.storage.base import WorkflowStore

logger = logging.getLogger(__name__)

INTAKE_TARGET = "intake_questionnaire"
INTAKE_PRIORITY = 100


class WorkflowStateManager:
    """
    Reads and writes run/task state on behalf of the orchestrator.

    Missing rows raise ``WorkflowNotFoundError`` / ``TaskNotFoundError``;
    illegal moves raise ``InvalidStateTransitionError``.
    """

    def __init__(
        self,
        store: WorkflowStore,
        settings: Settings,
        resolver: Optional[DependencyResolver] = None,
    ):
        self.store = store
        self.settings = settings
        self.resolver = resolver or DependencyResolver(store)

    # ==================== Run Lifecycle ====================

    async def get_run(self, run_id: UUID) -> WorkflowRun:
        run = await self.store.get_run(run_id)
        if run is None:
            raise WorkflowNotFoundError(run_id)
        return run

    async def create_workflow(self, params: CreateWorkflowParams) -> WorkflowRun:
        """Create a run in ``pending`` with no current stage."""
        run = WorkflowRun(
            user_id=params.user_id,
            workflow_type=params.workflow_type,
            proposal_id=params.proposal_id,
        )
        run = await self.store.create_run(run)
        logger.info(f"Created workflow {run.id} ({run.workflow_type.value})")
        return run

    async def start_workflow(self, run_id: UUID) -> WorkflowRun:
        """Move a pending run to ``running`` on the first stage."""
        run = await self.get_run(run_id)
        RunStateMachine.validate(run.status, WorkflowStatus.RUNNING)

        await self.store.update_run(
            run_id,
            expected_version=run.version,
            status=WorkflowStatus.RUNNING,
            current_stage=FIRST_STAGE,
            started_at=utcnow(),
        )
        await self.store.upsert_stage_progress(run_id, FIRST_STAGE)

        logger.info(f"Started workflow {run_id} at stage {FIRST_STAGE.value}")
        return await self.get_run(run_id)

    async def start_site_workflow(
        self,
        user_id: str,
        workflow_type: WorkflowType = WorkflowType.SITE_BUILD,
        proposal_id: Optional[str] = None,
        questionnaire: Optional[dict[str, Any]] = None,
    ) -> WorkflowRun:
        """
        Create a run, seed its intake task, and start it.

        The intake task carries the questionnaire as input and runs ahead of
        anything else queued on the run.
        """
        run = await self.create_workflow(
            CreateWorkflowParams(
                user_id=user_id,
                workflow_type=workflow_type,
                proposal_id=proposal_id,
            )
        )

        await self.create_task(
            CreateTaskParams(
                workflow_run_id=run.id,
                user_id=user_id,
                task_type=WorkflowStage.INTAKE,
                target_entity=INTAKE_TARGET,
                input=TaskInput(questionnaire=questionnaire or {}),
                priority=INTAKE_PRIORITY,
            )
        )

        return await self.start_workflow(run.id)

    # ==================== Task Lifecycle ====================

    async def get_task(self, task_id: UUID) -> WorkflowTask:
        task = await self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def create_task(self, params: CreateTaskParams) -> WorkflowTask:
        """
        Create a queued task and refresh its stage's progress entry.

        Defaults: priority 0, the stage's default agent, attempt 1, and
        ``RETRY_MAX_ATTEMPTS`` attempts.
        """
        await self.get_run(params.workflow_run_id)

        task = WorkflowTask(
            workflow_run_id=params.workflow_run_id,
            user_id=params.user_id,
            task_type=params.task_type,
            target_entity=params.target_entity,
            priority=params.priority,
            depends_on=params.depends_on,
            input=params.input,
            agent_assigned=params.agent_assigned or STAGE_AGENTS[params.task_type],
            max_attempts=params.max_attempts or self.settings.retry.max_attempts,
        )
        task = await self.store.create_task(task)
        await self.store.upsert_stage_progress(task.workflow_run_id, task.task_type)
        return task

    async def start_task(self, task_id: UUID) -> WorkflowTask:
        task = await self.get_task(task_id)
        TaskStateMachine.validate(task.status, TaskStatus.RUNNING)
        return await self.store.update_task(
            task_id,
            status=TaskStatus.RUNNING,
            started_at=utcnow(),
        )

    async def complete_task(
        self,
        task_id: UUID,
        output: Optional[TaskOutput] = None,
    ) -> WorkflowTask:
        task = await self.get_task(task_id)
        TaskStateMachine.validate(task.status, TaskStatus.DONE)

        task = await self.store.update_task(
            task_id,
            status=TaskStatus.DONE,
            output=output or TaskOutput(),
            completed_at=utcnow(),
        )
        await self.store.upsert_stage_progress(task.workflow_run_id, task.task_type)
        return task

    async def fail_task(self, task_id: UUID, error: str) -> tuple[WorkflowTask, bool]:
        """
        Record a failed attempt.

        The attempt counter is incremented. While it stays within
        ``max_attempts`` the task is requeued; past that it fails
        permanently and an entry is appended to the run's error log.

        Returns:
            The updated task and whether it will be retried
        """
        task = await self.get_task(task_id)
        if task.status != TaskStatus.RUNNING:
            raise InvalidStateTransitionError(
                task.status.value,
                TaskStatus.FAILED.value,
                "Only running tasks can record a failed attempt",
            )
        attempt = task.attempt + 1
        can_retry = attempt <= task.max_attempts
        new_status = TaskStatus.QUEUED if can_retry else TaskStatus.FAILED
        TaskStateMachine.validate(task.status, new_status)

        task = await self.store.update_task(
            task_id,
            status=new_status,
            attempt=attempt,
            error_message=error,
        )

        if not can_retry:
            await self._record_permanent_failure(task, error)

        return task, can_retry

    async def block_task(self, task_id: UUID, reason: str) -> WorkflowTask:
        """Park a task until a user supplies more input."""
        task = await self.get_task(task_id)
        TaskStateMachine.validate(task.status, TaskStatus.BLOCKED_USER)
        return await self.store.update_task(
            task_id,
            status=TaskStatus.BLOCKED_USER,
            error_message=reason,
        )

    async def unblock_task(
        self,
        task_id: UUID,
        extra_input: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowTask:
        """Requeue a blocked task, merging ``extra_input`` into its input."""
        task = await self.get_task(task_id)
        if task.status != TaskStatus.BLOCKED_USER:
            raise InvalidStateTransitionError(
                task.status.value,
                TaskStatus.QUEUED.value,
                "Only blocked tasks can be unblocked",
            )

        merged = TaskInput.model_validate({**task.input.model_dump(), **(extra_input or {})})
        return await self.store.update_task(
            task_id,
            status=TaskStatus.QUEUED,
            input=merged,
            error_message=None,
        )

    async def retry_task(self, task_id: UUID) -> WorkflowTask:
        """
        Operator retry of a failed or blocked task.

        Resets the attempt counter so the task gets a full retry budget.
        """
        task = await self.get_task(task_id)
        TaskStateMachine.validate(task.status, TaskStatus.QUEUED)

        task = await self.store.update_task(
            task_id,
            status=TaskStatus.QUEUED,
            attempt=1,
            error_message=None,
            started_at=None,
            completed_at=None,
        )
        await self.store.upsert_stage_progress(task.workflow_run_id, task.task_type)
        logger.info(f"Task {task_id} requeued by operator retry")
        return task

    async def reset_stale_task(self, task: WorkflowTask) -> tuple[WorkflowTask, bool]:
        """
        Reclaim a task abandoned in ``running``.

        Counts as a failed attempt: requeued while attempts remain, otherwise
        failed permanently.
        """
        attempt = task.attempt + 1
        can_retry = attempt <= task.max_attempts
        new_status = TaskStatus.QUEUED if can_retry else TaskStatus.FAILED
        TaskStateMachine.validate(task.status, new_status)

        error = (
            "Task was stale and has been reset for retry"
            if can_retry
            else "Task exceeded max retry attempts after stale recovery"
        )
        updated = await self.store.update_task(
            task.id,
            status=new_status,
            attempt=attempt,
            error_message=error,
            started_at=None,
        )

        if not can_retry:
            await self._record_permanent_failure(updated, error)

        logger.warning(f"Reset stale task {task.id} (attempt {attempt}/{task.max_attempts})")
        return updated, can_retry

    async def _record_permanent_failure(self, task: WorkflowTask, error: str) -> None:
        await self.store.append_error_log(
            task.workflow_run_id,
            ErrorLogEntry(
                stage=task.task_type.value,
                task=task.target_entity or str(task.id),
                error=error,
            ),
        )
        await self.store.upsert_stage_progress(task.workflow_run_id, task.task_type)

    # ==================== Stage Helpers ====================

    async def create_stage_tasks(
        self,
        run_id: UUID,
        user_id: str,
        stage: WorkflowStage,
        entities: Iterable[StageEntity],
    ) -> list[WorkflowTask]:
        """Create one task per entity for ``stage``."""
        tasks = []
        for entity in entities:
            task = await self.create_task(
                CreateTaskParams(
                    workflow_run_id=run_id,
                    user_id=user_id,
                    task_type=stage,
                    target_entity=entity.id,
                    input=entity.input,
                    depends_on=entity.depends_on,
                    agent_assigned=STAGE_AGENTS[stage],
                )
            )
            tasks.append(task)
        return tasks

    @staticmethod
    def build_page_dependencies(
        pages: Iterable[Mapping[str, Any]],
        previous_stage_tasks: Iterable[WorkflowTask],
    ) -> list[StageEntity]:
        """
        Correlate per-page tasks with the previous stage's tasks.

        Each page (keyed by ``slug``) depends on the previous-stage task with
        the same target entity, if there is one.
        """
        previous = {
            task.target_entity: task.id
            for task in previous_stage_tasks
            if task.target_entity
        }

        return [
            StageEntity(
                id=page["slug"],
                input=TaskInput(page_slug=page["slug"]),
                depends_on=[previous[page["slug"]]] if page["slug"] in previous else [],
            )
            for page in pages
        ]

    # ==================== Read Models ====================

    async def get_workflow_state(self, run_id: UUID) -> WorkflowSnapshot:
        """Get a run with its tasks grouped by scheduling state."""
        run = await self.get_run(run_id)
        tasks = await self.store.list_tasks(run_id)
        ready = await self.resolver.get_ready_tasks(run_id)
        ready_ids = {task.id for task in ready}

        return WorkflowSnapshot(
            run=run,
            tasks=tasks,
            ready_tasks=ready,
            blocked_tasks=[
                t for t in tasks
                if t.status == TaskStatus.QUEUED and t.id not in ready_ids
            ],
            completed_tasks=[t for t in tasks if t.status == TaskStatus.DONE],
            failed_tasks=[t for t in tasks if t.status == TaskStatus.FAILED],
        )

    async def get_stage_completion(self, run_id: UUID, stage: WorkflowStage) -> StageCompletion:
        tasks = await self.store.list_tasks(run_id, task_type=stage)
        completed = sum(1 for t in tasks if t.status == TaskStatus.DONE)

        return StageCompletion(
            stage=stage,
            is_complete=bool(tasks) and completed == len(tasks),
            total_tasks=len(tasks),
            completed_tasks=completed,
            failed_tasks=sum(1 for t in tasks if t.status == TaskStatus.FAILED),
            pending_tasks=sum(
                1 for t in tasks
                if t.status in (TaskStatus.QUEUED, TaskStatus.RUNNING)
            ),
        )

    @staticmethod
    def get_progress(run: WorkflowRun) -> WorkflowProgress:
        """Coarse progress: stages before the current one count as complete."""
        stage = run.current_stage or FIRST_STAGE
        stages_complete = stage_index(stage)
        if run.status == WorkflowStatus.COMPLETED:
            stages_complete = len(STAGE_ORDER)

        return WorkflowProgress(
            current_stage=stage,
            current_stage_label=STAGE_METADATA[stage].label,
            stages_complete=stages_complete,
            total_stages=len(STAGE_ORDER),
            overall_percent=round(stages_complete / len(STAGE_ORDER) * 100),
        )
