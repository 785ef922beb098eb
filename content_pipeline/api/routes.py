"""
FastAPI routes for the content pipeline orchestrator.

Endpoints:
- GET|POST /cron/workflow-processor - Run one processing cycle
- POST /workflows - Start a workflow
- GET /workflows/:id - Run status, tasks, health, and progress
- POST /workflows/:id/actions - Pause, resume, or cancel a run
- GET /workflows/:id/tasks - List tasks (filter by stage/status)
- GET /workflows/:id/tasks/:task_id - Get one task
- POST /workflows/:id/tasks - Unblock, retry, or create a task
- GET /health - Health check
"""

import logging
from typing import Any, Literal, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from content_pipeline import __version__
from content_pipeline.config.settings import Settings
from content_pipeline.core.exceptions import (
    InvalidStateTransitionError,
    TaskNotFoundError,
    WorkflowError,
    WorkflowNotFoundError,
)
from content_pipeline.core.models import (
    CreateTaskParams,
    CycleSummary,
    TaskInput,
    TaskStatus,
    WorkflowHealth,
    WorkflowProgress,
    WorkflowRun,
    WorkflowTask,
    WorkflowType,
)
from content_pipeline.core.stages import STAGE_ORDER, WorkflowStage
from content_pipeline.orchestrator.components import Components

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["workflows"])


# ==================== Request/Response Models ====================

class StartWorkflowRequest(BaseModel):
    """Request body for starting a workflow."""

    user_id: str = Field(..., min_length=1)
    workflow_type: WorkflowType = WorkflowType.SITE_BUILD
    proposal_id: Optional[str] = None
    intake_data: Optional[dict[str, Any]] = Field(
        default=None,
        description="Questionnaire answers handed to the intake task",
    )


class StartWorkflowResponse(BaseModel):
    workflow_id: UUID
    proposal_id: Optional[str] = None
    status: str
    current_stage: Optional[WorkflowStage] = None


class WorkflowStatusResponse(BaseModel):
    workflow: WorkflowRun
    tasks: list[WorkflowTask]
    health: WorkflowHealth
    progress: WorkflowProgress


class WorkflowActionRequest(BaseModel):
    action: Literal["pause", "resume", "cancel"]
    reason: Optional[str] = None


class WorkflowResponse(BaseModel):
    workflow: WorkflowRun


class TaskActionRequest(BaseModel):
    """Request body for task actions."""

    action: Literal["unblock", "retry", "create"]
    task_id: Optional[UUID] = None
    input: Optional[dict[str, Any]] = None

    # create only
    task_type: Optional[WorkflowStage] = None
    target_entity: Optional[str] = None
    depends_on: list[UUID] = Field(default_factory=list)
    priority: int = 0


class TaskResponse(BaseModel):
    task: WorkflowTask


class TaskListResponse(BaseModel):
    tasks: list[WorkflowTask]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]


# ==================== Dependency Injection ====================

async def get_components(request: Request) -> Components:
    """Get orchestrator components from app state."""
    return request.app.state.components


async def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _http_error(e: Exception) -> HTTPException:
    """Map domain errors to HTTP errors."""
    if isinstance(e, (WorkflowNotFoundError, TaskNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (InvalidStateTransitionError, ValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error(f"Unhandled API error: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Request failed: {e}",
    )


async def _get_run_task(components: Components, run_id: UUID, task_id: UUID) -> WorkflowTask:
    task = await components.state.get_task(task_id)
    if task.workflow_run_id != run_id:
        raise TaskNotFoundError(task_id)
    return task


# ==================== Trigger ====================

def verify_cron_secret(request: Request, settings: Settings) -> None:
    """
    Check the trigger's bearer secret.

    Without a configured secret the trigger is only open in development.

    Raises:
        HTTPException: 401 if the caller is not authorized
    """
    secret = settings.cron.secret
    if not secret:
        authorized = settings.is_development
    else:
        authorized = request.headers.get("authorization") == f"Bearer {secret}"

    if not authorized:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.api_route(
    "/cron/workflow-processor",
    methods=["GET", "POST"],
    response_model=CycleSummary,
    tags=["cron"],
    summary="Run one processing cycle",
    description="Recovery sweep, then one scheduler pass per running workflow.",
)
async def run_workflow_processor(
    request: Request,
    components: Components = Depends(get_components),
    settings: Settings = Depends(get_app_settings),
) -> CycleSummary:
    verify_cron_secret(request, settings)

    try:
        return await components.processor.run_cycle()
    except Exception as e:
        raise _http_error(e)


# ==================== Workflows ====================

@router.post(
    "/workflows",
    response_model=StartWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a workflow",
    description="Create a run, seed its intake task, and start it.",
)
async def start_workflow(
    body: StartWorkflowRequest,
    components: Components = Depends(get_components),
) -> StartWorkflowResponse:
    try:
        run = await components.state.start_site_workflow(
            user_id=body.user_id,
            workflow_type=body.workflow_type,
            proposal_id=body.proposal_id,
            questionnaire=body.intake_data,
        )
    except (WorkflowError, ValueError) as e:
        raise _http_error(e)

    logger.info(f"Started workflow {run.id} ({run.workflow_type.value})")
    return StartWorkflowResponse(
        workflow_id=run.id,
        proposal_id=run.proposal_id,
        status=run.status.value,
        current_stage=run.current_stage,
    )


@router.get(
    "/workflows/{run_id}",
    response_model=WorkflowStatusResponse,
    summary="Get workflow status",
)
async def get_workflow_status(
    run_id: UUID,
    components: Components = Depends(get_components),
) -> WorkflowStatusResponse:
    try:
        run = await components.state.get_run(run_id)
        tasks = await components.store.list_tasks(run_id)
        health = await components.recovery.get_workflow_health(run_id)
    except (WorkflowError, ValueError) as e:
        raise _http_error(e)

    return WorkflowStatusResponse(
        workflow=run,
        tasks=tasks,
        health=health,
        progress=components.state.get_progress(run),
    )


@router.post(
    "/workflows/{run_id}/actions",
    response_model=WorkflowResponse,
    summary="Pause, resume, or cancel a workflow",
)
async def workflow_action(
    run_id: UUID,
    body: WorkflowActionRequest,
    components: Components = Depends(get_components),
) -> WorkflowResponse:
    recovery = components.recovery
    try:
        if body.action == "pause":
            run = await recovery.pause_workflow(run_id, body.reason or "User requested pause")
        elif body.action == "resume":
            run = await recovery.resume_workflow(run_id)
        else:
            run = await recovery.cancel_workflow(run_id, body.reason or "User cancelled")
    except (WorkflowError, ValueError) as e:
        raise _http_error(e)

    return WorkflowResponse(workflow=run)


# ==================== Tasks ====================

@router.get(
    "/workflows/{run_id}/tasks",
    response_model=TaskListResponse,
    summary="List workflow tasks",
)
async def list_workflow_tasks(
    run_id: UUID,
    stage: Optional[WorkflowStage] = None,
    task_status: Optional[TaskStatus] = Query(default=None, alias="status"),
    components: Components = Depends(get_components),
) -> TaskListResponse:
    try:
        await components.state.get_run(run_id)
        tasks = await components.store.list_tasks(run_id, task_type=stage, status=task_status)
    except (WorkflowError, ValueError) as e:
        raise _http_error(e)

    return TaskListResponse(tasks=tasks)


@router.get(
    "/workflows/{run_id}/tasks/{task_id}",
    response_model=TaskResponse,
    summary="Get a workflow task",
)
async def get_workflow_task(
    run_id: UUID,
    task_id: UUID,
    components: Components = Depends(get_components),
) -> TaskResponse:
    try:
        task = await _get_run_task(components, run_id, task_id)
    except (WorkflowError, ValueError) as e:
        raise _http_error(e)

    return TaskResponse(task=task)


@router.post(
    "/workflows/{run_id}/tasks",
    response_model=TaskResponse,
    summary="Unblock, retry, or create a task",
)
async def task_action(
    run_id: UUID,
    body: TaskActionRequest,
    components: Components = Depends(get_components),
) -> TaskResponse:
    state = components.state

    if body.action in ("unblock", "retry") and body.task_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"task_id required for {body.action}",
        )
    if body.action == "create" and body.task_type is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="task_type required for create",
        )

    try:
        if body.action == "unblock":
            await _get_run_task(components, run_id, body.task_id)
            task = await state.unblock_task(body.task_id, body.input)
        elif body.action == "retry":
            await _get_run_task(components, run_id, body.task_id)
            task = await state.retry_task(body.task_id)
        else:
            run = await state.get_run(run_id)
            task = await state.create_task(
                CreateTaskParams(
                    workflow_run_id=run_id,
                    user_id=run.user_id,
                    task_type=body.task_type,
                    target_entity=body.target_entity,
                    priority=body.priority,
                    depends_on=body.depends_on,
                    input=TaskInput.model_validate(body.input or {}),
                )
            )
    except (WorkflowError, ValueError) as e:
        raise _http_error(e)

    return TaskResponse(task=task)


# ==================== Health Check Routes ====================

@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Check health of the store, Redis (if used), and handler coverage."""
    components: Components = request.app.state.components
    services = {}

    try:
        await components.store.get_run(uuid4())
        services["store"] = "healthy"
    except Exception as e:
        logger.warning(f"Store health check failed: {e}")
        services["store"] = "unhealthy"

    redis_connection = getattr(request.app.state, "redis", None)
    if redis_connection is not None:
        healthy = await redis_connection.health_check()
        services["redis"] = "healthy" if healthy else "unhealthy"

    registered = len(components.registry.registered_stages)
    services["handlers"] = f"{registered}/{len(STAGE_ORDER)} stages registered"

    unhealthy_count = sum(1 for s in services.values() if s == "unhealthy")
    if unhealthy_count == 0:
        overall_status = "healthy"
    elif unhealthy_count == len(services):
        overall_status = "unhealthy"
    else:
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=__version__,
        services=services,
    )
