"""
Unit tests for scheduler passes and stage advancement.
"""

import asyncio
from uuid import uuid4

import pytest

from content_pipeline.config.settings import SchedulerSettings
from content_pipeline.core.exceptions import ConcurrentUpdateError, WorkflowNotFoundError
from content_pipeline.core.models import (
    CreateWorkflowParams,
    StageStatus,
    TaskExecutionResult,
    TaskStatus,
    WorkflowStatus,
    WorkflowTask,
    WorkflowType,
)
from content_pipeline.core.stages import WorkflowStage
from content_pipeline.handlers.base import TaskHandler
from content_pipeline.orchestrator.components import build_components
from content_pipeline.storage.memory import InMemoryWorkflowStore


async def fail_bad_targets(task: WorkflowTask) -> TaskExecutionResult:
    if task.target_entity.startswith("bad"):
        raise RuntimeError(f"cannot process {task.target_entity}")
    return TaskExecutionResult(success=True)


class ConflictingStore(InMemoryWorkflowStore):
    """Rejects the next ``conflicts`` version-guarded run writes."""

    def __init__(self):
        super().__init__()
        self.conflicts = 0

    async def update_run(self, run_id, expected_version=None, **values):
        if expected_version is not None and self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrentUpdateError(run_id, expected_version, expected_version + 1)
        return await super().update_run(run_id, expected_version, **values)


class OneShotLease:
    """Grants the first acquire only, as if the lease expired mid-pass."""

    def __init__(self):
        self.grants = 1

    async def acquire(self, run_id, owner) -> bool:
        if self.grants:
            self.grants -= 1
            return True
        return False

    async def release(self, run_id, owner) -> None:
        pass


class TestFailureThreshold:
    """Stage advancement against the stage failure rate."""

    @pytest.mark.asyncio
    async def test_one_of_three_failed_advances(self, components, registry, running_run, add_task):
        registry.register_function(WorkflowStage.INTAKE, fail_bad_targets)
        for name in ("good-1", "good-2", "bad-1"):
            await add_task(running_run, target_entity=name)

        first = await components.scheduler.process_workflow(running_run.id)
        assert (first.processed, first.succeeded, first.failed) == (3, 2, 1)
        assert not first.stage_advanced

        await components.scheduler.process_workflow(running_run.id)
        last = await components.scheduler.process_workflow(running_run.id)

        assert last.processed == 1
        assert last.stage_advanced
        run = await components.state.get_run(running_run.id)
        assert run.current_stage == WorkflowStage.RESEARCH
        assert run.stage_progress["intake"].status == StageStatus.COMPLETED
        assert run.stage_progress["research"].total == 0
        assert len(run.error_log) == 1

    @pytest.mark.asyncio
    async def test_two_of_three_failed_refuses(self, components, registry, running_run, add_task):
        registry.register_function(WorkflowStage.INTAKE, fail_bad_targets)
        for name in ("good-1", "bad-1", "bad-2"):
            await add_task(running_run, target_entity=name)

        for _ in range(3):
            result = await components.scheduler.process_workflow(running_run.id)
            assert not result.stage_advanced

        check = await components.scheduler.can_advance_stage(
            running_run.id, WorkflowStage.INTAKE
        )
        assert not check.can_advance
        assert check.degraded
        assert check.reason == "High failure rate: 2/3 tasks failed"

        run = await components.state.get_run(running_run.id)
        assert run.status == WorkflowStatus.RUNNING
        assert run.current_stage == WorkflowStage.INTAKE

    @pytest.mark.asyncio
    async def test_pending_tasks_block_advance(self, components, running_run, add_task):
        await add_task(running_run)

        check = await components.scheduler.can_advance_stage(
            running_run.id, WorkflowStage.INTAKE
        )

        assert not check.can_advance
        assert not check.degraded
        assert check.reason == "1 tasks still pending"

    @pytest.mark.asyncio
    async def test_empty_stage_blocks_advance(self, components, running_run):
        check = await components.scheduler.can_advance_stage(
            running_run.id, WorkflowStage.INTAKE
        )

        assert not check.can_advance
        assert check.reason == "No tasks created for this stage"


class TestProcessingPass:
    """Tests for a single pass over a run."""

    @pytest.mark.asyncio
    async def test_full_batch_runs_concurrently(self, components, registry, running_run, add_task):
        """Five ready tasks at width five all start before any finishes."""
        started = 0
        all_started = asyncio.Event()

        async def wait_for_peers(task: WorkflowTask) -> TaskExecutionResult:
            nonlocal started
            started += 1
            if started == 5:
                all_started.set()
            await asyncio.wait_for(all_started.wait(), timeout=1.0)
            return TaskExecutionResult(success=True)

        registry.register_function(WorkflowStage.INTAKE, wait_for_peers)
        for i in range(5):
            await add_task(running_run, target_entity=f"page-{i}")

        result = await components.scheduler.process_workflow(running_run.id)

        assert result.processed == 5
        assert result.succeeded == 5
        assert result.stage_advanced

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, store, registry, test_settings, running_run, add_task):
        in_flight = 0
        peak = 0

        async def track(task: WorkflowTask) -> TaskExecutionResult:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return TaskExecutionResult(success=True)

        registry.register_function(WorkflowStage.INTAKE, track)
        settings = test_settings.model_copy(
            update={"scheduler": SchedulerSettings(batch_size=3, concurrency=2)}
        )
        components = build_components(store, registry, settings)
        for i in range(7):
            await add_task(running_run, target_entity=f"page-{i}")

        result = await components.scheduler.process_workflow(running_run.id)

        assert result.processed == 7
        assert peak == 2

    @pytest.mark.asyncio
    async def test_dependents_wait_for_next_pass(self, components, running_run, add_task):
        first = await add_task(running_run, target_entity="first")
        await add_task(running_run, target_entity="second", depends_on=[first.id])

        result = await components.scheduler.process_workflow(running_run.id)
        assert result.processed == 1
        assert not result.stage_advanced

        result = await components.scheduler.process_workflow(running_run.id)
        assert result.processed == 1
        assert result.stage_advanced

    @pytest.mark.asyncio
    async def test_pass_without_work_is_a_no_op(self, components, running_run):
        first = await components.scheduler.process_workflow(running_run.id)
        second = await components.scheduler.process_workflow(running_run.id)

        assert first == second
        assert first.processed == 0
        assert not first.stage_advanced

    @pytest.mark.asyncio
    async def test_fanned_out_tasks_keep_their_progress(
        self, components, registry, running_run, add_task
    ):
        async def plan_research(task: WorkflowTask) -> TaskExecutionResult:
            return TaskExecutionResult(
                success=True,
                next_tasks=[TaskHandler.follow_up(task, WorkflowStage.RESEARCH, "market")],
            )

        registry.register_function(WorkflowStage.INTAKE, plan_research)
        await add_task(running_run, target_entity="intake_questionnaire")

        result = await components.scheduler.process_workflow(running_run.id)

        assert result.processed == 1
        assert result.stage_advanced
        run = await components.state.get_run(running_run.id)
        assert run.current_stage == WorkflowStage.RESEARCH
        assert run.stage_progress["research"].total == 1

    @pytest.mark.asyncio
    async def test_last_stage_completes_run(self, components, running_run, add_task):
        await components.store.update_run(running_run.id, current_stage=WorkflowStage.PUBLISH)
        await add_task(running_run, WorkflowStage.PUBLISH, "site")

        result = await components.scheduler.process_workflow(running_run.id)

        assert result.processed == 1
        assert not result.stage_advanced
        run = await components.state.get_run(running_run.id)
        assert run.status == WorkflowStatus.COMPLETED
        assert run.current_stage == WorkflowStage.PUBLISH
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_run_cancelled_during_pass(self, components, registry, running_run, add_task):
        async def cancel_then_succeed(task: WorkflowTask) -> TaskExecutionResult:
            await components.recovery.cancel_workflow(task.workflow_run_id, "client withdrew")
            return TaskExecutionResult(success=True)

        registry.register_function(WorkflowStage.INTAKE, cancel_then_succeed)
        await add_task(running_run, target_entity="intake_questionnaire")

        result = await components.scheduler.process_workflow(running_run.id)

        assert (result.processed, result.succeeded, result.failed) == (1, 0, 1)
        assert not result.stage_advanced
        run = await components.state.get_run(running_run.id)
        assert run.status == WorkflowStatus.FAILED
        assert run.locked_by is None

    @pytest.mark.asyncio
    async def test_inactive_run_is_left_alone(self, components, running_run, add_task):
        task = await add_task(running_run)
        await components.recovery.pause_workflow(running_run.id, "maintenance")

        result = await components.scheduler.process_workflow(running_run.id)

        assert result.processed == 0
        assert not result.skipped
        assert (await components.state.get_task(task.id)).status == TaskStatus.QUEUED

    @pytest.mark.asyncio
    async def test_unknown_run(self, components):
        with pytest.raises(WorkflowNotFoundError):
            await components.scheduler.process_workflow(uuid4())


class TestPassLease:
    """Tests for mutual exclusion between passes."""

    @pytest.mark.asyncio
    async def test_held_lease_skips_pass(self, components, running_run, add_task):
        task = await add_task(running_run)
        await components.store.acquire_run_lease(running_run.id, "other-pass", ttl=30)

        result = await components.scheduler.process_workflow(running_run.id)

        assert result.skipped
        assert result.processed == 0
        assert (await components.state.get_task(task.id)).status == TaskStatus.QUEUED

    @pytest.mark.asyncio
    async def test_lease_released_after_pass(self, components, running_run, add_task):
        await add_task(running_run)

        await components.scheduler.process_workflow(running_run.id)

        run = await components.state.get_run(running_run.id)
        assert run.locked_by is None
        assert await components.store.acquire_run_lease(running_run.id, "next", ttl=30)

    @pytest.mark.asyncio
    async def test_store_error_propagates_and_releases_lease(
        self, components, running_run, add_task, monkeypatch
    ):
        tasks = [await add_task(running_run, target_entity=f"page-{i}") for i in range(3)]
        finished = []
        original = components.executor.process_task

        async def flaky_process(task: WorkflowTask) -> TaskExecutionResult:
            if task.id == tasks[0].id:
                raise RuntimeError("connection reset")
            result = await original(task)
            finished.append(task.id)
            return result

        monkeypatch.setattr(components.executor, "process_task", flaky_process)

        with pytest.raises(RuntimeError, match="connection reset"):
            await components.scheduler.process_workflow(running_run.id)

        assert sorted(finished) == sorted(t.id for t in tasks[1:])
        assert await components.store.acquire_run_lease(running_run.id, "next", ttl=30)

    @pytest.mark.asyncio
    async def test_lease_renewed_between_batches(
        self, store, registry, test_settings, running_run, add_task
    ):
        """A pass longer than the lease TTL keeps its lease; an overlapping trigger skips."""

        async def slow(task: WorkflowTask) -> TaskExecutionResult:
            await asyncio.sleep(0.2)
            return TaskExecutionResult(success=True)

        registry.register_function(WorkflowStage.INTAKE, slow)
        settings = test_settings.model_copy(
            update={
                "scheduler": SchedulerSettings(batch_size=1, handler_timeout=0.4, lease_ttl=0.5)
            }
        )
        components = build_components(store, registry, settings)
        for i in range(4):
            await add_task(running_run, target_entity=f"page-{i}")

        first = asyncio.create_task(components.scheduler.process_workflow(running_run.id))
        await asyncio.sleep(0.55)
        second = await components.scheduler.process_workflow(running_run.id)
        first_result = await first

        assert second.skipped
        assert (first_result.processed, first_result.succeeded) == (4, 4)
        assert first_result.stage_advanced

    @pytest.mark.asyncio
    async def test_lost_lease_stops_pass(
        self, store, registry, test_settings, running_run, add_task
    ):
        settings = test_settings.model_copy(update={"scheduler": SchedulerSettings(batch_size=1)})
        components = build_components(store, registry, settings, lease=OneShotLease())
        for i in range(3):
            await add_task(running_run, target_entity=f"page-{i}")

        result = await components.scheduler.process_workflow(running_run.id)

        assert result.processed == 1
        assert not result.stage_advanced
        queued = await store.list_tasks(running_run.id, status=TaskStatus.QUEUED)
        assert len(queued) == 2
        run = await store.get_run(running_run.id)
        assert run.current_stage == WorkflowStage.INTAKE


class TestAdvanceStage:
    """Tests for version-guarded stage advancement."""

    @pytest.mark.asyncio
    async def test_advance_retries_on_conflict(self, registry, test_settings):
        store = ConflictingStore()
        components = build_components(store, registry, test_settings)
        run = await components.state.create_workflow(
            CreateWorkflowParams(user_id="user-1", workflow_type=WorkflowType.SITE_BUILD)
        )
        await components.state.start_workflow(run.id)

        store.conflicts = test_settings.scheduler.advance_max_conflicts - 1
        next_stage = await components.scheduler.advance_stage(run.id)

        assert next_stage == WorkflowStage.RESEARCH
        assert (await store.get_run(run.id)).current_stage == WorkflowStage.RESEARCH

    @pytest.mark.asyncio
    async def test_advance_gives_up_after_max_conflicts(self, registry, test_settings):
        store = ConflictingStore()
        components = build_components(store, registry, test_settings)
        run = await components.state.create_workflow(
            CreateWorkflowParams(user_id="user-1", workflow_type=WorkflowType.SITE_BUILD)
        )
        await components.state.start_workflow(run.id)

        store.conflicts = test_settings.scheduler.advance_max_conflicts
        with pytest.raises(ConcurrentUpdateError):
            await components.scheduler.advance_stage(run.id)

        assert (await store.get_run(run.id)).current_stage == WorkflowStage.INTAKE

    @pytest.mark.asyncio
    async def test_advance_keeps_existing_next_stage_entry(self, components, running_run, add_task):
        await add_task(running_run, WorkflowStage.RESEARCH, "market")

        await components.scheduler.advance_stage(running_run.id)

        run = await components.state.get_run(running_run.id)
        assert run.stage_progress["research"].total == 1
        assert run.stage_progress["intake"].status == StageStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_advance_paused_run_is_a_no_op(self, components, running_run):
        await components.recovery.pause_workflow(running_run.id, "maintenance")

        assert await components.scheduler.advance_stage(running_run.id) is None
        run = await components.state.get_run(running_run.id)
        assert run.current_stage == WorkflowStage.INTAKE
