"""
Recovery sweep and operator controls for runs.

The sweep runs ahead of every processing cycle. It reclaims tasks abandoned
in ``running`` (the watchdog), warns about long pauses, and optionally fails
runs that have sat on a degraded stage for too long.
"""

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from content_pipeline.config.settings import Settings
from content_pipeline.core.dependencies import find_dependency_cycles
from content_pipeline.core.models import (
    ErrorLogEntry,
    HealthStatus,
    RecoveryResult,
    TaskStatus,
    WorkflowHealth,
    WorkflowRun,
    WorkflowStatus,
    utcnow,
)
from content_pipeline.core.stages import FIRST_STAGE
from content_pipeline.core.state_machine import RunStateMachine, TaskStateMachine
from content_pipeline.orchestrator.scheduler import WorkflowScheduler
from content_pipeline.orchestrator.transitions import WorkflowStateManager
from content_pipeline.storage.base import WorkflowStore

logger = logging.getLogger(__name__)

# Health thresholds
CRITICAL_STALE_TASKS = 3
CRITICAL_FAILED_TASKS = 5


class RecoverySweep:
    """Reconciles stuck runs and exposes pause/resume/cancel."""

    def __init__(
        self,
        store: WorkflowStore,
        state_manager: WorkflowStateManager,
        scheduler: WorkflowScheduler,
        settings: Settings,
    ):
        self.store = store
        self.state = state_manager
        self.scheduler = scheduler

        self.stale_task_timeout = timedelta(seconds=settings.recovery.stale_task_timeout)
        self.paused_warning_after = timedelta(seconds=settings.recovery.paused_warning_after)
        self.degraded_run_fail_after: Optional[timedelta] = (
            timedelta(seconds=settings.recovery.degraded_run_fail_after)
            if settings.recovery.degraded_run_fail_after is not None
            else None
        )

    # ==================== Sweep ====================

    async def recover_incomplete_workflows(self) -> RecoveryResult:
        """
        Sweep all running runs.

        Failures on one run are recorded in ``errors`` and do not stop the
        sweep; only a failure to list runs propagates.
        """
        result = RecoveryResult()
        cutoff = utcnow() - self.stale_task_timeout

        logger.info("Starting workflow recovery check")

        for run in await self.store.list_runs(status=WorkflowStatus.RUNNING):
            try:
                stale = await self.store.list_stale_tasks(run.id, cutoff)
                if stale:
                    logger.warning(f"Found {len(stale)} stale tasks in workflow {run.id}")
                    for task in stale:
                        await self.state.reset_stale_task(task)
                        result.tasks_reset += 1
                    result.workflows_recovered += 1

                if await self._fail_if_degraded(run.id):
                    result.runs_failed += 1

            except Exception as e:
                msg = f"Failed to recover workflow {run.id}: {e}"
                logger.error(msg, exc_info=True)
                result.errors.append(msg)

        now = utcnow()
        for run in await self.store.list_runs(status=WorkflowStatus.PAUSED):
            if run.paused_at and now - run.paused_at > self.paused_warning_after:
                logger.warning(
                    f"Workflow {run.id} has been paused since {run.paused_at.isoformat()}"
                )

        logger.info(
            f"Recovery complete. Recovered {result.workflows_recovered} workflows, "
            f"reset {result.tasks_reset} tasks"
        )
        return result

    async def _fail_if_degraded(self, run_id: UUID) -> bool:
        """Fail a run whose current stage has been degraded for too long."""
        if self.degraded_run_fail_after is None:
            return False

        # Re-read: stale resets above may have bumped the version
        run = await self.state.get_run(run_id)
        if run.status != WorkflowStatus.RUNNING or run.current_stage is None:
            return False

        check = await self.scheduler.can_advance_stage(run.id, run.current_stage)
        if not check.degraded:
            return False

        tasks = await self.store.list_tasks(run.id, task_type=run.current_stage)
        degraded_since = max(task.updated_at for task in tasks)
        if utcnow() - degraded_since < self.degraded_run_fail_after:
            return False

        RunStateMachine.validate(run.status, WorkflowStatus.FAILED)
        await self.store.update_run(
            run.id,
            expected_version=run.version,
            status=WorkflowStatus.FAILED,
            completed_at=utcnow(),
        )
        await self.store.append_error_log(
            run.id,
            ErrorLogEntry(
                stage=run.current_stage.value,
                task="workflow",
                error=f"Workflow failed: {check.reason}",
            ),
        )
        logger.error(f"Workflow {run.id} failed on degraded stage {run.current_stage.value}")
        return True

    # ==================== Operator Controls ====================

    async def pause_workflow(self, run_id: UUID, reason: str) -> WorkflowRun:
        run = await self.state.get_run(run_id)
        RunStateMachine.validate(run.status, WorkflowStatus.PAUSED)

        await self.store.update_run(
            run_id,
            expected_version=run.version,
            status=WorkflowStatus.PAUSED,
            paused_at=utcnow(),
        )
        await self.store.append_error_log(
            run_id,
            ErrorLogEntry(
                stage=run.current_stage.value if run.current_stage else "unknown",
                task="workflow",
                error=f"Workflow paused: {reason}",
            ),
        )

        logger.info(f"Paused workflow {run_id}: {reason}")
        return await self.state.get_run(run_id)

    async def resume_workflow(self, run_id: UUID) -> WorkflowRun:
        run = await self.state.get_run(run_id)
        RunStateMachine.validate(run.status, WorkflowStatus.RUNNING)

        run = await self.store.update_run(
            run_id,
            expected_version=run.version,
            status=WorkflowStatus.RUNNING,
            paused_at=None,
        )

        logger.info(f"Resumed workflow {run_id}")
        return run

    async def cancel_workflow(self, run_id: UUID, reason: str) -> WorkflowRun:
        """Fail every open task of a run, then the run itself."""
        run = await self.state.get_run(run_id)
        RunStateMachine.validate(run.status, WorkflowStatus.FAILED)

        error = f"Workflow cancelled: {reason}"
        touched_stages = set()
        for task in await self.store.list_tasks(run_id):
            if task.status not in (TaskStatus.QUEUED, TaskStatus.RUNNING):
                continue
            TaskStateMachine.validate(task.status, TaskStatus.FAILED)
            await self.store.update_task(task.id, status=TaskStatus.FAILED, error_message=error)
            touched_stages.add(task.task_type)

        for stage in touched_stages:
            await self.store.upsert_stage_progress(run_id, stage)

        # Re-read: the progress upserts above bumped the version
        run = await self.state.get_run(run_id)
        RunStateMachine.validate(run.status, WorkflowStatus.FAILED)
        run = await self.store.update_run(
            run_id,
            expected_version=run.version,
            status=WorkflowStatus.FAILED,
            current_stage=run.current_stage or FIRST_STAGE,
            completed_at=utcnow(),
        )

        logger.info(f"Cancelled workflow {run_id}: {reason}")
        return run

    # ==================== Health ====================

    async def get_workflow_health(self, run_id: UUID) -> WorkflowHealth:
        """
        Classify a run as healthy, warning, or critical.

        Critical: more than 3 stale tasks, more than 5 failed tasks, or any
        dependency cycle. Warning: any stale, failed, blocked, or orphaned
        task.
        """
        await self.state.get_run(run_id)

        stale = await self.store.list_stale_tasks(run_id, utcnow() - self.stale_task_timeout)
        tasks = await self.store.list_tasks(run_id)
        queued = [t for t in tasks if t.status == TaskStatus.QUEUED]

        failed = sum(1 for t in tasks if t.status == TaskStatus.FAILED)
        blocked = sum(1 for t in tasks if t.status == TaskStatus.BLOCKED_USER)

        known = {t.id for t in tasks}
        unknown_ids = {dep for t in queued for dep in t.depends_on if dep not in known}
        found = await self.store.get_tasks(unknown_ids) if unknown_ids else {}
        missing = sum(
            1 for t in queued
            if any(dep not in known and dep not in found for dep in t.depends_on)
        )
        cyclic = len(find_dependency_cycles(queued))

        issues = []
        if stale:
            issues.append(f"{len(stale)} tasks are stale and may be stuck")
        if failed:
            issues.append(f"{failed} tasks have failed")
        if blocked:
            issues.append(f"{blocked} tasks are waiting for user input")
        if missing:
            issues.append(f"{missing} tasks depend on tasks that do not exist")
        if cyclic:
            issues.append(f"{cyclic} tasks are stuck in a dependency cycle")

        if len(stale) > CRITICAL_STALE_TASKS or failed > CRITICAL_FAILED_TASKS or cyclic:
            status = HealthStatus.CRITICAL
        elif issues:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY

        return WorkflowHealth(
            status=status,
            issues=issues,
            stale_tasks=len(stale),
            failed_tasks=failed,
            blocked_tasks=blocked,
            missing_dependency_tasks=missing,
            cyclic_tasks=cyclic,
        )
