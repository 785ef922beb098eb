"""
Task handler contract and registry.

A handler does the actual work of one stage. The orchestrator only knows the
contract: take a task, report success or failure, optionally request
follow-up tasks. Handlers are registered per stage at startup.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import Optional

from content_pipeline.core.exceptions import HandlerNotRegisteredError
from content_pipeline.core.models import (
    CreateTaskParams,
    TaskExecutionResult,
    TaskInput,
    WorkflowTask,
)
from content_pipeline.core.stages import STAGE_ORDER, WorkflowStage

logger = logging.getLogger(__name__)

HandlerFunc = Callable[[WorkflowTask], Awaitable[TaskExecutionResult]]


class TaskHandler(ABC):
    """Base class for stage handlers."""

    stage: WorkflowStage

    @abstractmethod
    async def handle(self, task: WorkflowTask) -> TaskExecutionResult:
        """
        Process a task.

        Exceptions are allowed to escape; the executor treats them as a
        failed attempt.

        Args:
            task: The task, already marked running

        Returns:
            TaskExecutionResult with output or error, plus any follow-up tasks
        """

    @staticmethod
    def follow_up(
        task: WorkflowTask,
        stage: WorkflowStage,
        target_entity: Optional[str] = None,
        input: Optional[TaskInput] = None,
        priority: int = 0,
    ) -> CreateTaskParams:
        """Build a follow-up task on ``stage`` that depends on ``task``."""
        return CreateTaskParams(
            workflow_run_id=task.workflow_run_id,
            user_id=task.user_id,
            task_type=stage,
            target_entity=target_entity if target_entity is not None else task.target_entity,
            input=input or TaskInput(),
            priority=priority,
            depends_on=[task.id],
        )


class FunctionHandler(TaskHandler):
    """Adapts a plain async function to the handler contract."""

    def __init__(self, stage: WorkflowStage, func: HandlerFunc):
        self.stage = stage
        self._func = func

    async def handle(self, task: WorkflowTask) -> TaskExecutionResult:
        return await self._func(task)


class HandlerRegistry:
    """Maps each stage to the handler that processes its tasks."""

    def __init__(self, handlers: Optional[Iterable[TaskHandler]] = None):
        self._handlers: dict[WorkflowStage, TaskHandler] = {}
        for handler in handlers or ():
            self.register(handler)

    def register(self, handler: TaskHandler) -> None:
        """Register a handler for its stage, replacing any previous one."""
        if handler.stage in self._handlers:
            logger.warning(f"Replacing handler for stage {handler.stage.value}")
        self._handlers[handler.stage] = handler

    def register_function(self, stage: WorkflowStage, func: HandlerFunc) -> None:
        self.register(FunctionHandler(stage, func))

    def find(self, stage: WorkflowStage) -> Optional[TaskHandler]:
        return self._handlers.get(stage)

    def get(self, stage: WorkflowStage) -> TaskHandler:
        """
        Get the handler for a stage.

        Raises:
            HandlerNotRegisteredError: If no handler is registered
        """
        handler = self._handlers.get(stage)
        if handler is None:
            raise HandlerNotRegisteredError(WorkflowStage(stage).value)
        return handler

    @property
    def registered_stages(self) -> list[WorkflowStage]:
        return [stage for stage in STAGE_ORDER if stage in self._handlers]

    @property
    def missing_stages(self) -> list[WorkflowStage]:
        return [stage for stage in STAGE_ORDER if stage not in self._handlers]

    def __contains__(self, stage: object) -> bool:
        return stage in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
