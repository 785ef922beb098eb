"""
Unit tests for dependency resolution and cycle detection.
"""

from uuid import uuid4

import pytest

from content_pipeline.core.dependencies import (
    DependencyResolver,
    check_dependencies,
    find_dependency_cycles,
)
from content_pipeline.core.models import TaskStatus, WorkflowTask
from content_pipeline.core.stages import WorkflowStage


def make_task(status=TaskStatus.QUEUED, depends_on=None, run_id=None, **kwargs) -> WorkflowTask:
    return WorkflowTask(
        workflow_run_id=run_id or uuid4(),
        user_id="user-1",
        task_type=WorkflowStage.BLUEPRINT,
        status=status,
        depends_on=depends_on or [],
        **kwargs,
    )


class TestCheckDependencies:
    """Tests for resolving against already-fetched tasks."""

    def test_no_dependencies(self):
        check = check_dependencies(make_task(), {})
        assert check.all_met

    def test_done_dependency_is_met(self):
        dep = make_task(status=TaskStatus.DONE)
        check = check_dependencies(make_task(depends_on=[dep.id]), {dep.id: dep})

        assert check.all_met
        assert check.unmet_dependencies == []

    def test_missing_and_unmet_reported_apart(self):
        running = make_task(status=TaskStatus.RUNNING)
        failed = make_task(status=TaskStatus.FAILED)
        ghost = uuid4()
        task = make_task(depends_on=[ghost, running.id, failed.id])

        check = check_dependencies(task, {running.id: running, failed.id: failed})

        assert not check.all_met
        assert check.missing_tasks == [ghost]
        assert check.unmet_dependencies == [running.id, failed.id]

    def test_missing_only_is_not_met(self):
        check = check_dependencies(make_task(depends_on=[uuid4()]), {})

        assert not check.all_met
        assert check.unmet_dependencies == []
        assert len(check.missing_tasks) == 1


class TestFindDependencyCycles:
    """Tests for cycle detection over queued tasks."""

    def test_acyclic_graph(self):
        a = make_task()
        b = make_task(depends_on=[a.id])
        c = make_task(depends_on=[a.id, b.id])

        assert find_dependency_cycles([a, b, c]) == set()

    def test_two_task_cycle(self):
        a_id, b_id = uuid4(), uuid4()
        a = make_task(id=a_id, depends_on=[b_id])
        b = make_task(id=b_id, depends_on=[a_id])
        free = make_task()

        assert find_dependency_cycles([a, b, free]) == {a_id, b_id}

    def test_downstream_of_cycle_is_reported(self):
        a_id, b_id = uuid4(), uuid4()
        a = make_task(id=a_id, depends_on=[b_id])
        b = make_task(id=b_id, depends_on=[a_id])
        downstream = make_task(depends_on=[a_id])

        assert find_dependency_cycles([a, b, downstream]) == {a_id, b_id, downstream.id}

    def test_self_dependency(self):
        a_id = uuid4()
        a = make_task(id=a_id, depends_on=[a_id])

        assert find_dependency_cycles([a]) == {a_id}

    def test_edges_outside_set_ignored(self):
        task = make_task(depends_on=[uuid4()])
        assert find_dependency_cycles([task]) == set()


class TestDependencyResolver:
    """Tests for ready-task selection against a store."""

    @pytest.mark.asyncio
    async def test_are_dependencies_met(self, components, running_run, add_task):
        first = await add_task(running_run, target_entity="first")
        second = await add_task(running_run, target_entity="second", depends_on=[first.id])

        check = await components.resolver.are_dependencies_met(second)
        assert not check.all_met
        assert check.unmet_dependencies == [first.id]

        await components.state.start_task(first.id)
        await components.state.complete_task(first.id)

        check = await components.resolver.are_dependencies_met(second)
        assert check.all_met

    @pytest.mark.asyncio
    async def test_ready_tasks_follow_dependency_completion(
        self, components, running_run, add_task
    ):
        """T2 depends on T1: excluded while T1 is queued, included once it is done."""
        t1 = await add_task(running_run, target_entity="t1")
        t2 = await add_task(running_run, target_entity="t2", depends_on=[t1.id])

        ready = await components.resolver.get_ready_tasks(running_run.id)
        assert [t.id for t in ready] == [t1.id]

        await components.state.start_task(t1.id)
        await components.state.complete_task(t1.id)

        ready = await components.resolver.get_ready_tasks(running_run.id)
        assert [t.id for t in ready] == [t2.id]

    @pytest.mark.asyncio
    async def test_ready_tasks_ordered_by_priority(self, components, running_run, add_task):
        low = await add_task(running_run, target_entity="low", priority=1)
        high = await add_task(running_run, target_entity="high", priority=10)
        middle = await add_task(running_run, target_entity="middle", priority=5)

        ready = await components.resolver.get_ready_tasks(running_run.id)

        assert [t.id for t in ready] == [high.id, middle.id, low.id]

    @pytest.mark.asyncio
    async def test_missing_dependency_never_ready(self, components, running_run, add_task):
        await add_task(running_run, target_entity="orphan", depends_on=[uuid4()])

        assert await components.resolver.get_ready_tasks(running_run.id) == []

    @pytest.mark.asyncio
    async def test_empty_run(self, store, running_run):
        resolver = DependencyResolver(store)
        assert await resolver.get_ready_tasks(running_run.id) == []
