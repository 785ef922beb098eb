"""
Scheduler: one processing pass over a run.

A pass executes the run's ready tasks in fixed-size batches, then decides
whether the current stage may advance. Batches run one after another; tasks
inside a batch run concurrently. The whole pass holds the run's lease,
renewed before every batch; a pass that loses it stops early.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID, uuid4

from content_pipeline.config.settings import Settings
from content_pipeline.core.dependencies import DependencyResolver
from content_pipeline.core.exceptions import ConcurrentUpdateError, WorkflowNotFoundError
from content_pipeline.core.models import (
    StageAdvanceCheck,
    StageProgress,
    StageStatus,
    TaskExecutionResult,
    TaskStatus,
    WorkflowProcessResult,
    WorkflowStatus,
    WorkflowTask,
    utcnow,
)
from content_pipeline.core.stages import WorkflowStage, get_next_stage
from content_pipeline.core.state_machine import TERMINAL_TASK_STATES, RunStateMachine
from content_pipeline.orchestrator.executor import TaskExecutor
from content_pipeline.orchestrator.lease import RunLease
from content_pipeline.storage.base import WorkflowStore

logger = logging.getLogger(__name__)


class WorkflowScheduler:
    """Drives runs through their stages, one pass at a time."""

    def __init__(
        self,
        store: WorkflowStore,
        resolver: DependencyResolver,
        executor: TaskExecutor,
        lease: RunLease,
        settings: Settings,
    ):
        self.store = store
        self.resolver = resolver
        self.executor = executor
        self.lease = lease

        self.batch_size = settings.scheduler.batch_size
        self.concurrency = settings.scheduler.concurrency
        self.failure_threshold = settings.scheduler.failure_threshold
        self.max_conflicts = settings.scheduler.advance_max_conflicts

        self.instance_id = f"scheduler-{uuid4().hex[:8]}"

    # ==================== Processing Pass ====================

    async def process_workflow(self, run_id: UUID) -> WorkflowProcessResult:
        """
        Run one pass over a run.

        Runs that are not ``running`` are left alone. If another pass holds
        the run's lease the call returns immediately with ``skipped=True``.

        Raises:
            WorkflowNotFoundError: If the run does not exist
        """
        run = await self.store.get_run(run_id)
        if run is None:
            raise WorkflowNotFoundError(run_id)
        if run.status != WorkflowStatus.RUNNING:
            return WorkflowProcessResult()

        owner = f"{self.instance_id}:{uuid4().hex[:8]}"
        if not await self.lease.acquire(run_id, owner):
            logger.warning(f"Workflow {run_id} is locked by another pass, skipping")
            return WorkflowProcessResult(skipped=True)

        try:
            return await self._process(run_id, owner)
        finally:
            await self.lease.release(run_id, owner)

    async def _process(self, run_id: UUID, owner: str) -> WorkflowProcessResult:
        result = WorkflowProcessResult()
        ready = await self.resolver.get_ready_tasks(run_id)

        for start in range(0, len(ready), self.batch_size):
            if start and not await self._renew_lease(run_id, owner, result):
                return result

            batch = ready[start:start + self.batch_size]
            for outcome in await self._run_batch(batch):
                result.processed += 1
                if outcome.success:
                    result.succeeded += 1
                else:
                    result.failed += 1

        if ready:
            logger.info(
                f"Workflow {run_id}: processed {result.processed} tasks "
                f"({result.succeeded} succeeded, {result.failed} failed)"
            )
            if not await self._renew_lease(run_id, owner, result):
                return result

        result.stage_advanced = await self._try_advance(run_id)
        return result

    async def _renew_lease(self, run_id: UUID, owner: str, result: WorkflowProcessResult) -> bool:
        if await self.lease.acquire(run_id, owner):
            return True
        logger.warning(
            f"Workflow {run_id}: lease lost after {result.processed} tasks, stopping pass"
        )
        return False

    async def _run_batch(self, batch: list[WorkflowTask]) -> list[TaskExecutionResult]:
        """Execute a batch concurrently; re-raise the first store error once all finish."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(task: WorkflowTask) -> TaskExecutionResult:
            async with semaphore:
                return await self.executor.process_task(task)

        outcomes = await asyncio.gather(
            *(run_one(task) for task in batch),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return outcomes

    async def _try_advance(self, run_id: UUID) -> bool:
        run = await self.store.get_run(run_id)
        if run is None or run.status != WorkflowStatus.RUNNING or run.current_stage is None:
            return False

        check = await self.can_advance_stage(run_id, run.current_stage)
        if not check.can_advance:
            logger.debug(f"Workflow {run_id} stays on {run.current_stage.value}: {check.reason}")
            return False

        next_stage = await self.advance_stage(run_id)
        return next_stage is not None

    # ==================== Stage Advancement ====================

    async def can_advance_stage(self, run_id: UUID, stage: WorkflowStage) -> StageAdvanceCheck:
        """
        Check whether every task of ``stage`` is terminal with a tolerable
        failure rate.
        """
        tasks = await self.store.list_tasks(run_id, task_type=stage)

        if not tasks:
            return StageAdvanceCheck(can_advance=False, reason="No tasks created for this stage")

        incomplete = [t for t in tasks if t.status not in TERMINAL_TASK_STATES]
        if incomplete:
            return StageAdvanceCheck(
                can_advance=False,
                reason=f"{len(incomplete)} tasks still pending",
            )

        failed = sum(1 for t in tasks if t.status == TaskStatus.FAILED)
        if failed / len(tasks) > self.failure_threshold:
            return StageAdvanceCheck(
                can_advance=False,
                reason=f"High failure rate: {failed}/{len(tasks)} tasks failed",
                degraded=True,
            )

        return StageAdvanceCheck(can_advance=True)

    async def advance_stage(self, run_id: UUID) -> Optional[WorkflowStage]:
        """
        Move a running run to its next stage, or complete it on the last one.

        The write is guarded by the run's version; on a conflict the run is
        re-read and the move retried up to ``advance_max_conflicts`` times.

        Returns:
            The new current stage, or None if the run completed (or was not
            running)

        Raises:
            WorkflowNotFoundError: If the run does not exist
            ConcurrentUpdateError: If every attempt lost a version race
        """
        last_error: Optional[ConcurrentUpdateError] = None

        for _ in range(self.max_conflicts):
            run = await self.store.get_run(run_id)
            if run is None:
                raise WorkflowNotFoundError(run_id)
            if run.status != WorkflowStatus.RUNNING or run.current_stage is None:
                logger.warning(f"Workflow {run_id} is {run.status.value}, not advancing")
                return None

            current_stage = run.current_stage
            next_stage = get_next_stage(current_stage)

            try:
                if next_stage is None:
                    RunStateMachine.validate(run.status, WorkflowStatus.COMPLETED)
                    await self.store.update_run(
                        run_id,
                        expected_version=run.version,
                        status=WorkflowStatus.COMPLETED,
                        completed_at=utcnow(),
                    )
                    logger.info(f"Workflow {run_id} completed")
                    return None

                stage_progress = dict(run.stage_progress)
                current = stage_progress.get(current_stage.value, StageProgress())
                stage_progress[current_stage.value] = current.model_copy(
                    update={"status": StageStatus.COMPLETED}
                )
                # Tasks fanned out earlier may already have an entry
                stage_progress.setdefault(next_stage.value, StageProgress())

                await self.store.update_run(
                    run_id,
                    expected_version=run.version,
                    current_stage=next_stage,
                    stage_progress=stage_progress,
                )
                logger.info(f"Workflow {run_id} advanced to stage: {next_stage.value}")
                return next_stage

            except ConcurrentUpdateError as e:
                logger.warning(f"Version conflict advancing workflow {run_id}, retrying")
                last_error = e

        raise last_error
