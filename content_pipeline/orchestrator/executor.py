"""
Task executor.

Runs one task through its stage handler and writes the outcome back. Handler
errors and timeouts become failed attempts. A task whose state was changed
elsewhere mid-pass (operator action, cancel, stale reset) is reported as a
failure and left alone. Store errors propagate.
"""

import asyncio
import logging

from content_pipeline.config.settings import Settings
from content_pipeline.core.exceptions import (
    HandlerNotRegisteredError,
    InvalidStateTransitionError,
)
from content_pipeline.core.models import TaskExecutionResult, WorkflowTask
from content_pipeline.handlers.base import HandlerRegistry
from content_pipeline.orchestrator.transitions import WorkflowStateManager

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Executes single tasks against the handler registry."""

    def __init__(
        self,
        state_manager: WorkflowStateManager,
        registry: HandlerRegistry,
        settings: Settings,
    ):
        self.state = state_manager
        self.registry = registry
        self.handler_timeout = settings.scheduler.handler_timeout

    async def process_task(self, task: WorkflowTask) -> TaskExecutionResult:
        """
        Execute a task.

        1. No handler registered: report a configuration error and leave the
           task untouched (no attempt is consumed).
        2. Mark the task running.
        3. Invoke the handler under ``handler_timeout``.
        4. Success: complete the task and create any requested follow-ups.
        5. Failure: record the attempt (requeue or fail permanently).

        If the task left the expected state in the meantime, it is skipped
        (before the handler) or the handler's result is dropped (after it).

        Returns:
            The handler's result, or a failure result describing the error
        """
        try:
            handler = self.registry.get(task.task_type)
        except HandlerNotRegisteredError as e:
            logger.error(f"Task {task.id} skipped: {e}")
            return TaskExecutionResult(success=False, error=str(e))

        try:
            await self.state.start_task(task.id)
        except InvalidStateTransitionError as e:
            logger.warning(f"Task {task.id} is no longer runnable, skipping: {e}")
            return TaskExecutionResult(success=False, error=str(e))

        logger.info(f"Task {task.id} started ({task.task_type.value}, attempt {task.attempt})")

        result = await self._invoke(handler.handle, task)

        try:
            return await self._record(task, result)
        except InvalidStateTransitionError as e:
            logger.warning(f"Task {task.id} changed state while running, result dropped: {e}")
            return TaskExecutionResult(success=False, error=str(e))

    async def _record(self, task: WorkflowTask, result: TaskExecutionResult) -> TaskExecutionResult:
        if result.success:
            await self.state.complete_task(task.id, result.output)
            for params in result.next_tasks:
                await self.state.create_task(params)
            logger.info(
                f"Task {task.id} completed"
                + (f", created {len(result.next_tasks)} follow-up tasks" if result.next_tasks else "")
            )
            return result

        error = result.error or "Unknown error"
        updated, can_retry = await self.state.fail_task(task.id, error)
        if can_retry:
            logger.warning(
                f"Task {task.id} failed, will retry "
                f"(attempt {updated.attempt}/{updated.max_attempts}). Error: {error}"
            )
        else:
            logger.error(f"Task {task.id} failed permanently. Error: {error}")

        return result.model_copy(update={"error": error})

    async def _invoke(self, handle, task: WorkflowTask) -> TaskExecutionResult:
        try:
            async with asyncio.timeout(self.handler_timeout):
                return await handle(task)
        except asyncio.TimeoutError:
            return TaskExecutionResult(
                success=False,
                error=f"Task timed out after {self.handler_timeout} seconds",
            )
        except Exception as e:
            logger.warning(f"Handler for task {task.id} raised {type(e).__name__}", exc_info=True)
            return TaskExecutionResult(success=False, error=str(e) or type(e).__name__)
