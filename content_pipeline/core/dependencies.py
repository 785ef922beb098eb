"""
Task dependency resolution.

A queued task is ready once every task it depends on exists and is ``done``.
Missing dependencies are reported apart from unmet ones so operators can tell
an orphaned task from one that is simply waiting.
"""

import logging
from collections import defaultdict, deque
from collections.abc import Iterable, Mapping
from uuid import UUID

from content_pipeline.core.models import DependencyCheck, TaskStatus, WorkflowTask
from content_pipeline.storage.base import WorkflowStore

logger = logging.getLogger(__name__)


def check_dependencies(
    task: WorkflowTask,
    known_tasks: Mapping[UUID, WorkflowTask],
) -> DependencyCheck:
    """
    Resolve a task's dependencies against already-fetched tasks.

    Args:
        task: Task whose ``depends_on`` is checked
        known_tasks: Dependency tasks keyed by id; absent ids count as missing

    Returns:
        DependencyCheck with unmet and missing ids in ``depends_on`` order
    """
    unmet: list[UUID] = []
    missing: list[UUID] = []

    for dep_id in task.depends_on:
        dep = known_tasks.get(dep_id)
        if dep is None:
            missing.append(dep_id)
        elif dep.status != TaskStatus.DONE:
            unmet.append(dep_id)

    return DependencyCheck(
        all_met=not unmet and not missing,
        unmet_dependencies=unmet,
        missing_tasks=missing,
    )


def find_dependency_cycles(tasks: Iterable[WorkflowTask]) -> set[UUID]:
    """
    Find tasks that can never become ready because of a dependency cycle.

    Runs Kahn's algorithm over the edges between the given tasks. Nodes that
    are never released are either on a cycle or downstream of one. Edges to
    tasks outside the given set are ignored (those are missing dependencies,
    not cycles).

    Returns:
        Ids of the tasks left over after the topological sort
    """
    task_map = {task.id: task for task in tasks}
    adjacency: dict[UUID, list[UUID]] = defaultdict(list)
    in_degree: dict[UUID, int] = {task_id: 0 for task_id in task_map}

    for task in task_map.values():
        for dep_id in task.depends_on:
            if dep_id in task_map:
                adjacency[dep_id].append(task.id)
                in_degree[task.id] += 1

    queue = deque(task_id for task_id, degree in in_degree.items() if degree == 0)
    released: set[UUID] = set()

    while queue:
        task_id = queue.popleft()
        released.add(task_id)
        for dependent in adjacency[task_id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    return set(task_map) - released


class DependencyResolver:
    """Selects the executable tasks of a run."""

    def __init__(self, store: WorkflowStore):
        self._store = store

    async def are_dependencies_met(self, task: WorkflowTask) -> DependencyCheck:
        """
        Check whether every dependency of ``task`` exists and is done.

        A task without dependencies is trivially met.
        """
        if not task.depends_on:
            return DependencyCheck(all_met=True)

        deps = await self._store.get_tasks(task.depends_on)
        return check_dependencies(task, deps)

    async def get_ready_tasks(self, run_id: UUID) -> list[WorkflowTask]:
        """
        Get the queued tasks of a run whose dependencies are all done.

        Tasks keep the store's ordering: descending priority, oldest first.
        All dependencies are fetched with a single store call.
        """
        queued = await self._store.list_tasks(run_id, status=TaskStatus.QUEUED)
        if not queued:
            return []

        dep_ids = {dep_id for task in queued for dep_id in task.depends_on}
        deps = await self._store.get_tasks(dep_ids) if dep_ids else {}

        ready: list[WorkflowTask] = []
        for task in queued:
            check = check_dependencies(task, deps)
            if check.all_met:
                ready.append(task)
                continue

            if check.missing_tasks:
                logger.debug(
                    f"Task {task.id} has missing dependencies: {check.missing_tasks}"
                )
            if check.unmet_dependencies:
                logger.debug(
                    f"Task {task.id} waiting on {len(check.unmet_dependencies)} dependencies"
                )

        return ready
