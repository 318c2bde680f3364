"""Pydantic schemas for plans, tasks, results and API models.

This module defines the data model shared by the engine, the worker wire
contract and the HTTP API. All models use Pydantic v2.
"""

import time
from enum import StrEnum
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    field_validator,
)


class TaskStatus(StrEnum):
    """Outcome of one dispatched task attempt."""

    SUCCESS = "success"
    FAIL = "fail"


class FailureKind(StrEnum):
    """Why a task attempt failed.

    ROUTING and PLANNING failures are terminal for the task. TRANSPORT and
    BUSINESS failures are handed to recovery once.
    """

    ROUTING = "routing"
    TRANSPORT = "transport"
    BUSINESS = "business"
    PLANNING = "planning"


class RunStatus(StrEnum):
    """Lifecycle status of a submitted plan run."""

    PLANNING = "planning"
    RUNNING = "running"
    COMPLETE = "complete"
    HALTED = "halted"
    FAILED = "failed"


RECOVERABLE_FAILURES = frozenset({FailureKind.TRANSPORT, FailureKind.BUSINESS})


def _coerce_id(value: Any) -> Any:
    """Planners sometimes emit numeric ids; task ids are always strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return str(int(value)) if float(value).is_integer() else str(value)
    return value


class Task(BaseModel):
    """A single step of a plan, addressed to one worker.

    Accepts the planner's JSON spelling (``agent``, ``depends_on``) as well
    as the Python field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1, description="Unique within a plan")
    agent_name: str = Field(
        validation_alias=AliasChoices("agent_name", "agent"),
        serialization_alias="agent",
        min_length=1,
    )
    action: str = Field(min_length=1, examples=["browser.search", "gmail.send_email"])
    params: dict[str, JsonValue] = Field(default_factory=dict)
    depends_on: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("depends_on", "dependsOn"),
    )
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("depends_on", mode="before")
    @classmethod
    def coerce_depends_on(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [_coerce_id(item) for item in v]
        return v

    @field_validator("params", "metadata", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("metadata", mode="before")
    @classmethod
    def stringify_metadata(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): val if isinstance(val, str) else str(val) for k, val in v.items()}
        return v


class Plan(BaseModel):
    """An ordered task list produced by the planning collaborator.

    ``label`` is the human-readable grouping name; the planner emits it as
    ``folder_name``.
    """

    model_config = ConfigDict(populate_by_name=True)

    tasks: list[Task] = Field(default_factory=list)
    label: str = Field(
        default="",
        validation_alias=AliasChoices("label", "folder_name"),
        serialization_alias="folder_name",
    )

    @field_validator("label", mode="before")
    @classmethod
    def none_label(cls, v: Any) -> Any:
        return "" if v is None else v


class ExecutionResult(BaseModel):
    """Result of exactly one dispatched task attempt."""

    task_id: str
    status: TaskStatus
    output_uri: str | None = None
    output_data: str | None = None
    error_message: str | None = None
    failure_kind: FailureKind | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCESS

    @classmethod
    def failure(
        cls, task_id: str, message: str, kind: FailureKind
    ) -> "ExecutionResult":
        """Build a failed result."""
        return cls(
            task_id=task_id,
            status=TaskStatus.FAIL,
            error_message=message,
            failure_kind=kind,
        )


# -----------------------------------------------------------------------------
# Worker wire contract
# -----------------------------------------------------------------------------


class WorkerTaskRequest(BaseModel):
    """Body of ``ExecuteTask``: payload is the serialized params."""

    id: str
    type: str
    payload: bytes
    metadata: dict[str, str] = Field(default_factory=dict)


class WorkerTaskResponse(BaseModel):
    """Reply of ``ExecuteTask``."""

    id: str = ""
    status: Literal["success", "fail"]
    result_uri: str | None = None
    result_data: str | None = None
    error_message: str | None = None


class WorkerHealth(BaseModel):
    """Reply of ``HealthCheck`` plus the agent it came from."""

    agent_name: str = ""
    status: str = Field(examples=["ok", "unreachable"])
    capabilities: list[str] = Field(default_factory=list)
    error_message: str | None = None


# -----------------------------------------------------------------------------
# Engine output and API models
# -----------------------------------------------------------------------------


class PlanReport(BaseModel):
    """What the caller of ``submit_plan`` receives.

    ``not_attempted`` lists the tasks after an unrecoverable failure that were
    never tried; ``skipped`` lists tasks whose dependencies were not met.
    """

    run_id: str = Field(examples=["run_3fa85f64"])
    plan_label: str = ""
    status: RunStatus
    results: dict[str, ExecutionResult] = Field(default_factory=dict)
    task_order: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    not_attempted: list[str] = Field(default_factory=list)
    halted_at: str | None = None
    error_message: str | None = None
    started_at: float = Field(default_factory=time.time)
    completed_at: float | None = None

    @property
    def halted(self) -> bool:
        return self.status == RunStatus.HALTED


class SubmitPlanRequest(BaseModel):
    """Request body for submitting a natural-language goal."""

    goal: str = Field(
        min_length=3,
        max_length=10000,
        description="Natural-language description of what should be done",
        examples=["Find the latest news on AI and email it to Shaurya."],
    )


class RunSummaryResponse(BaseModel):
    """Summary information for listing runs."""

    run_id: str
    goal: str
    status: RunStatus
    plan_label: str = ""
    task_count: int = 0
    started_at: float
    completed_at: float | None = None


class RunDetailResponse(RunSummaryResponse):
    """Full information about one run, including its report."""

    report: PlanReport | None = None
    metrics: dict[str, int] | None = None


class HealthResponse(BaseModel):
    """Health check response with worker fleet status."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    registered_workers: int = Field(
        default=0,
        description="Number of agents in the worker registry",
    )
    active_runs: int = Field(
        default=0,
        description="Number of plan runs currently executing",
    )
