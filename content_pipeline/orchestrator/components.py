"""Wiring of the orchestrator components around one store."""

import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from content_pipeline.config.settings import Settings
from content_pipeline.core.dependencies import DependencyResolver
from content_pipeline.handlers.base import HandlerRegistry
from content_pipeline.orchestrator.executor import TaskExecutor
from content_pipeline.orchestrator.lease import RunLease, build_lease
from content_pipeline.orchestrator.processor import WorkflowProcessor
from content_pipeline.orchestrator.recovery import RecoverySweep
from content_pipeline.orchestrator.scheduler import WorkflowScheduler
from content_pipeline.orchestrator.transitions import WorkflowStateManager
from content_pipeline.storage.base import WorkflowStore

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Everything a trigger or API call needs to drive runs."""

    store: WorkflowStore
    registry: HandlerRegistry
    resolver: DependencyResolver
    state: WorkflowStateManager
    executor: TaskExecutor
    lease: RunLease
    scheduler: WorkflowScheduler
    recovery: RecoverySweep
    processor: WorkflowProcessor


def build_components(
    store: WorkflowStore,
    registry: HandlerRegistry,
    settings: Settings,
    redis_client: Optional[redis.Redis] = None,
    lease: Optional[RunLease] = None,
) -> Components:
    """Build the orchestrator around ``store`` and ``registry``."""
    if registry.missing_stages:
        logger.warning(
            "No handler registered for stages: "
            + ", ".join(stage.value for stage in registry.missing_stages)
        )

    resolver = DependencyResolver(store)
    state = WorkflowStateManager(store, settings, resolver)
    executor = TaskExecutor(state, registry, settings)
    lease = lease or build_lease(settings, store, redis_client)
    scheduler = WorkflowScheduler(store, resolver, executor, lease, settings)
    recovery = RecoverySweep(store, state, scheduler, settings)
    processor = WorkflowProcessor(store, recovery, scheduler)

    return Components(
        store=store,
        registry=registry,
        resolver=resolver,
        state=state,
        executor=executor,
        lease=lease,
        scheduler=scheduler,
        recovery=recovery,
        processor=processor,
    )
