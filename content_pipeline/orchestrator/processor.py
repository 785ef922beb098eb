"""
Processing cycle invoked by the trigger endpoint.

One cycle runs the recovery sweep, then one scheduler pass per running run.
A failed pass is logged and reported for that run only.
"""

import logging

from content_pipeline.core.models import CycleSummary, RunSummary, WorkflowStatus
from content_pipeline.orchestrator.recovery import RecoverySweep
from content_pipeline.orchestrator.scheduler import WorkflowScheduler
from content_pipeline.storage.base import WorkflowStore

logger = logging.getLogger(__name__)


class WorkflowProcessor:
    """Runs recovery plus one pass over every active run."""

    def __init__(
        self,
        store: WorkflowStore,
        recovery: RecoverySweep,
        scheduler: WorkflowScheduler,
    ):
        self.store = store
        self.recovery = recovery
        self.scheduler = scheduler

    async def run_cycle(self) -> CycleSummary:
        logger.info("Starting workflow processor cycle")

        recovery = await self.recovery.recover_incomplete_workflows()
        if recovery.tasks_reset:
            logger.info(
                f"Recovered {recovery.workflows_recovered} workflows, "
                f"reset {recovery.tasks_reset} tasks"
            )

        summary = CycleSummary(recovery=recovery)
        runs = await self.store.list_runs(status=WorkflowStatus.RUNNING)
        if not runs:
            logger.info("No running workflows to process")
            return summary

        logger.info(f"Processing {len(runs)} active workflows")

        for run in runs:
            try:
                result = await self.scheduler.process_workflow(run.id)
            except Exception as e:
                logger.error(f"Error processing workflow {run.id}: {e}", exc_info=True)
                summary.workflows.append(RunSummary(id=run.id, error=str(e) or type(e).__name__))
                continue

            summary.workflows.append(
                RunSummary(
                    id=run.id,
                    tasks_processed=result.processed,
                    succeeded=result.succeeded,
                    failed=result.failed,
                    stage_advanced=result.stage_advanced,
                    skipped=result.skipped,
                )
            )
            summary.processed += result.processed

        logger.info(f"Cycle completed. Total tasks processed: {summary.processed}")
        return summary
