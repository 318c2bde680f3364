"""Models module for Pydantic schemas.

This module exposes the plan/task/result data model and the API models.
"""

from models.schemas import (
    RECOVERABLE_FAILURES,
    ExecutionResult,
    FailureKind,
    HealthResponse,
    Plan,
    PlanReport,
    RunDetailResponse,
    RunStatus,
    RunSummaryResponse,
    SubmitPlanRequest,
    Task,
    TaskStatus,
    WorkerHealth,
    WorkerTaskRequest,
    WorkerTaskResponse,
)

__all__ = [
    "RECOVERABLE_FAILURES",
    "ExecutionResult",
    "FailureKind",
    "HealthResponse",
    "Plan",
    "PlanReport",
    "RunDetailResponse",
    "RunStatus",
    "RunSummaryResponse",
    "SubmitPlanRequest",
    "Task",
    "TaskStatus",
    "WorkerHealth",
    "WorkerTaskRequest",
    "WorkerTaskResponse",
]
