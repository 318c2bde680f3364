"""HTTP API routes for the Harbinger engine.

This module defines the endpoints for submitting requests, inspecting runs,
checking the worker fleet and the service health.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, Query, status

from events import EngineEvent
from models.schemas import (
    HealthResponse,
    PlanReport,
    RunDetailResponse,
    RunSummaryResponse,
    SubmitPlanRequest,
    WorkerHealth,
)

if TYPE_CHECKING:
    from engine_service import EngineService, RunInfo

logger = structlog.get_logger(__name__)

router = APIRouter()

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _to_summary(run: RunInfo) -> RunSummaryResponse:
    report = run.report
    return RunSummaryResponse(
        run_id=run.run_id,
        goal=run.goal,
        status=run.status,
        plan_label=report.plan_label if report else "",
        task_count=len(report.task_order) if report else 0,
        started_at=run.started_at,
        completed_at=run.completed_at,
    )


# Engine service dependency (set during application startup)
_engine_service: EngineService | None = None


def set_engine_service(service: EngineService) -> None:
    """Set the engine service instance for the routes.

    This should be called during application startup to inject the engine
    service dependency.

    Args:
        service: The EngineService instance to use for all routes.
    """
    global _engine_service
    _engine_service = service
    logger.info("engine_service_configured")


def get_engine_service() -> EngineService:
    """Get the engine service instance.

    Returns:
        The configured EngineService instance.

    Raises:
        RuntimeError: If the engine service has not been configured.
    """
    if _engine_service is None:
        logger.error("engine_service_not_configured")
        raise RuntimeError(
            "EngineService not configured. Call set_engine_service() during startup."
        )
    return _engine_service


# -----------------------------------------------------------------------------
# Plans and runs
# -----------------------------------------------------------------------------


@router.post(
    "/api/plans",
    response_model=PlanReport,
    status_code=status.HTTP_200_OK,
    summary="Submit a request",
    description=(
        "Plan a natural-language request and execute it against the worker "
        "fleet. Blocks until the plan finishes or halts."
    ),
)
async def submit_plan(request: SubmitPlanRequest) -> PlanReport:
    """Submit a request and wait for its report.

    A halted plan is still a 200 response; the report carries the halt.

    Args:
        request: The request containing the natural-language goal.

    Returns:
        PlanReport with the plan label and per-task results.
    """
    service = get_engine_service()
    report = await service.submit_plan(request.goal)

    logger.info(
        "plan_submitted",
        run_id=report.run_id,
        status=report.status,
        goal_length=len(request.goal),
    )
    return report


@router.get(
    "/api/runs",
    response_model=list[RunSummaryResponse],
    summary="List runs",
    description="List runs handled by this process, newest first.",
)
async def list_runs(
    limit: Annotated[int, Query(description="Maximum runs to return", ge=1, le=200)] = 25,
) -> list[RunSummaryResponse]:
    """List recent runs."""
    service = get_engine_service()
    return [_to_summary(run) for run in service.list_runs()[:limit]]


@router.get(
    "/api/runs/{run_id}",
    response_model=RunDetailResponse,
    summary="Get run details",
    description="Get the report and metrics of a run.",
)
async def get_run(
    run_id: Annotated[str, Path(description="The run ID")],
) -> RunDetailResponse:
    """Get one run.

    Raises:
        HTTPException: 404 if the run does not exist.
    """
    service = get_engine_service()
    run = service.get_run(run_id)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id} not found",
        )

    summary = _to_summary(run)
    return RunDetailResponse(
        **summary.model_dump(),
        report=run.report,
        metrics=run.metrics,
    )


@router.get(
    "/api/runs/{run_id}/events",
    response_model=list[EngineEvent],
    summary="Get run events",
    description="Get the recorded events of a run in chronological order.",
)
async def get_run_events(
    run_id: Annotated[str, Path(description="The run ID")],
) -> list[EngineEvent]:
    """Get the event history of one run.

    Raises:
        HTTPException: 404 if the run does not exist.
    """
    service = get_engine_service()
    if service.get_run(run_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id} not found",
        )
    return service.event_bus.get_event_history(run_id)


# -----------------------------------------------------------------------------
# Workers and health
# -----------------------------------------------------------------------------


@router.get(
    "/api/workers",
    response_model=list[WorkerHealth],
    summary="Check workers",
    description="Call HealthCheck on every registered worker.",
)
async def list_workers() -> list[WorkerHealth]:
    """Report status and capabilities of every registered worker."""
    service = get_engine_service()
    return await service.check_workers()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with worker registry and run counts.",
)
async def health_check() -> HealthResponse:
    """Health check endpoint.

    Returns:
        HealthResponse with status, registered worker count and active runs.
    """
    registered_workers = 0
    active_runs = 0

    try:
        service = get_engine_service()
        registered_workers = len(service.registry)
        active_runs = service.get_active_run_count()
    except RuntimeError:
        # EngineService not configured yet (e.g., during startup)
        pass

    overall_status = "healthy" if registered_workers > 0 else "unhealthy"

    return HealthResponse(
        status=overall_status,
        timestamp=time.time(),
        registered_workers=registered_workers,
        active_runs=active_runs,
    )
