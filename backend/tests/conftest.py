"""Shared test fixtures for backend tests.

Provides fake worker clients with call-count spies, scripted LLM responses,
an isolated EventBus, and plan/task factories so tests never touch real
workers or LLM APIs.
"""

import json
import sys
from collections.abc import Callable
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from engine.executor import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from engine.utils import PlannerReply  # noqa: E402
from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import EngineEvent, LLMMetrics  # noqa: E402
from metrics import MetricsCollector  # noqa: E402
from models.schemas import (  # noqa: E402
    Plan,
    Task,
    WorkerHealth,
    WorkerTaskRequest,
    WorkerTaskResponse,
)

# ---------------------------------------------------------------------------
# Event Bus / Metrics
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    bus = EventBus()
    return bus


@pytest.fixture()
def metrics_collector() -> MetricsCollector:
    return MetricsCollector()


# ---------------------------------------------------------------------------
# Response Factories
# ---------------------------------------------------------------------------


def make_llm_response(content: str = "") -> PlannerReply:
    """Create a PlannerReply with fixed token metrics."""
    return PlannerReply(
        content=content,
        metrics=LLMMetrics(model="mock", input_tokens=10, output_tokens=20, latency_ms=100),
    )


def plan_json(tasks: list[dict[str, Any]], folder_name: str = "test_plan") -> str:
    """Serialize a plan the way the planner returns it."""
    return json.dumps({"folder_name": folder_name, "tasks": tasks})


def plan_response(tasks: list[dict[str, Any]], folder_name: str = "test_plan") -> PlannerReply:
    return make_llm_response(plan_json(tasks, folder_name))


def make_task(
    task_id: str = "1",
    agent: str = "search",
    action: str = "web.search",
    params: dict[str, Any] | None = None,
    depends_on: list[str] | None = None,
    metadata: dict[str, str] | None = None,
) -> Task:
    """Create a Task with sensible defaults."""
    return Task(
        id=task_id,
        agent_name=agent,
        action=action,
        params=params or {},
        depends_on=depends_on or [],
        metadata=metadata or {},
    )


def make_plan(*tasks: Task, label: str = "test_plan") -> Plan:
    return Plan(tasks=list(tasks), label=label)


def ok(result_data: str | None = None, result_uri: str | None = None) -> WorkerTaskResponse:
    """A successful worker reply."""
    return WorkerTaskResponse(status="success", result_data=result_data, result_uri=result_uri)


def fail(error_message: str = "worker failed") -> WorkerTaskResponse:
    """A business-failure worker reply."""
    return WorkerTaskResponse(status="fail", error_message=error_message)


# ---------------------------------------------------------------------------
# Fake Workers
# ---------------------------------------------------------------------------


class FakeWorkerClient:
    """WorkerClient double that records every request.

    Replies are taken from ``replies`` in order (an Exception instance is
    raised instead of returned); once exhausted, ``default`` is used. A
    ``handler`` callable overrides both.
    """

    def __init__(
        self,
        name: str = "fake",
        replies: list[WorkerTaskResponse | Exception] | None = None,
        default: WorkerTaskResponse | None = None,
        handler: Callable[[WorkerTaskRequest], WorkerTaskResponse] | None = None,
        capabilities: list[str] | None = None,
        health_error: Exception | None = None,
    ) -> None:
        self.name = name
        self.replies = list(replies or [])
        self.default = default or ok('{"result": "done"}')
        self.handler = handler
        self.capabilities = capabilities or []
        self.health_error = health_error
        self.requests: list[WorkerTaskRequest] = []
        self.health_calls = 0

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def params(self, index: int = -1) -> dict[str, Any]:
        """Decode the params of a recorded request."""
        return json.loads(self.requests[index].payload)

    def task_ids(self) -> list[str]:
        return [r.id for r in self.requests]

    async def execute_task(self, request: WorkerTaskRequest) -> WorkerTaskResponse:
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply.model_copy(update={"id": request.id})

    async def health_check(self) -> WorkerHealth:
        self.health_calls += 1
        if self.health_error is not None:
            raise self.health_error
        return WorkerHealth(status="ok", capabilities=self.capabilities)


# ---------------------------------------------------------------------------
# Event Collection Helper
# ---------------------------------------------------------------------------


def event_types(event_bus: EventBus, run_id: str) -> list[str]:
    """Types of all events recorded for a run, in order."""
    return [e.type.value for e in event_bus.get_event_history(run_id)]


def events_of(event_bus: EventBus, run_id: str, event_type: str) -> list[EngineEvent]:
    return [e for e in event_bus.get_event_history(run_id) if e.type == event_type]
