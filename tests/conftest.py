"""
Pytest fixtures and configuration for tests.
"""

from typing import Optional

import pytest
import pytest_asyncio

from content_pipeline.config import Settings
from content_pipeline.config.settings import (
    Environment,
    RecoverySettings,
    SchedulerSettings,
)
from content_pipeline.core.models import (
    CreateTaskParams,
    CreateWorkflowParams,
    TaskExecutionResult,
    TaskOutput,
    WorkflowRun,
    WorkflowTask,
    WorkflowType,
)
from content_pipeline.core.stages import STAGE_ORDER, WorkflowStage
from content_pipeline.handlers.base import HandlerRegistry
from content_pipeline.orchestrator.components import Components, build_components
from content_pipeline.storage.memory import InMemoryWorkflowStore


async def succeed(task: WorkflowTask) -> TaskExecutionResult:
    """Handler that completes every task with a short text output."""
    return TaskExecutionResult(
        success=True,
        output=TaskOutput(content=f"{task.task_type.value}:{task.target_entity}"),
    )


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment=Environment.TEST,
        debug=True,
        log_level="DEBUG",
        scheduler=SchedulerSettings(handler_timeout=2.0, lease_ttl=30.0),
        recovery=RecoverySettings(stale_task_timeout=300.0),
    )


@pytest.fixture
def store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture
def registry() -> HandlerRegistry:
    """Registry with a succeeding handler on every stage."""
    registry = HandlerRegistry()
    for stage in STAGE_ORDER:
        registry.register_function(stage, succeed)
    return registry


@pytest.fixture
def components(store, registry, test_settings) -> Components:
    return build_components(store, registry, test_settings)


@pytest_asyncio.fixture
async def running_run(components) -> WorkflowRun:
    """A started run sitting on the intake stage with no tasks yet."""
    run = await components.state.create_workflow(
        CreateWorkflowParams(user_id="user-1", workflow_type=WorkflowType.SITE_BUILD)
    )
    return await components.state.start_workflow(run.id)


@pytest.fixture
def add_task(components):
    """Create a task on a run through the state manager."""

    async def _add_task(
        run: WorkflowRun,
        stage: WorkflowStage = WorkflowStage.INTAKE,
        target_entity: Optional[str] = None,
        **kwargs,
    ) -> WorkflowTask:
        return await components.state.create_task(
            CreateTaskParams(
                workflow_run_id=run.id,
                user_id=run.user_id,
                task_type=stage,
                target_entity=target_entity,
                **kwargs,
            )
        )

    return _add_task
