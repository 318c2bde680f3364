"""Dispatch of tasks to worker agents.

This module provides:
- WorkerClient: the uniform contract every worker implements
  (ExecuteTask + HealthCheck)
- HttpWorkerClient: WorkerClient over HTTP/JSON using httpx
- build_worker_registry: read-only agent name -> client mapping built once
  at startup
- DispatchClient: sends one task to its worker and always returns an
  ExecutionResult, translating transport errors into failed results
"""

import asyncio
import base64
import json
from collections.abc import Mapping
from types import MappingProxyType
from typing import Protocol, runtime_checkable

import httpx
import structlog
from pydantic import ValidationError

from config import settings
from models.schemas import (
    ExecutionResult,
    FailureKind,
    Task,
    TaskStatus,
    WorkerHealth,
    WorkerTaskRequest,
    WorkerTaskResponse,
)

logger = structlog.get_logger()

WorkerRegistry = Mapping[str, "WorkerClient"]


class WorkerProtocolError(Exception):
    """A worker answered with a body that does not match the contract."""


@runtime_checkable
class WorkerClient(Protocol):
    """Remote task-execution contract shared by all agents."""

    async def execute_task(self, request: WorkerTaskRequest) -> WorkerTaskResponse: ...

    async def health_check(self) -> WorkerHealth: ...


class HttpWorkerClient:
    """WorkerClient speaking JSON over HTTP.

    ``POST /tasks/execute`` carries ``{id, type, payload, metadata}`` with the
    payload base64-encoded; ``GET /health`` returns ``{status, capabilities}``.

    Attributes:
        name: Agent name this client serves
        base_url: Worker base URL
    """

    EXECUTE_PATH = "/tasks/execute"
    HEALTH_PATH = "/health"

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout if timeout is not None else settings.dispatch_timeout_seconds,
            transport=transport,
        )

    async def execute_task(self, request: WorkerTaskRequest) -> WorkerTaskResponse:
        body = {
            "id": request.id,
            "type": request.type,
            "payload": base64.b64encode(request.payload).decode("ascii"),
            "metadata": request.metadata,
        }
        response = await self._client.post(self.EXECUTE_PATH, json=body)
        response.raise_for_status()
        try:
            return WorkerTaskResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise WorkerProtocolError(
                f"Invalid ExecuteTask reply from {self.name}: {e}"
            ) from e

    async def health_check(self) -> WorkerHealth:
        response = await self._client.get(self.HEALTH_PATH)
        response.raise_for_status()
        try:
            health = WorkerHealth.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise WorkerProtocolError(
                f"Invalid HealthCheck reply from {self.name}: {e}"
            ) from e
        return health.model_copy(update={"agent_name": self.name})

    async def aclose(self) -> None:
        await self._client.aclose()


def build_worker_registry(
    endpoints: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> WorkerRegistry:
    """Build the read-only agent registry, one client per worker.

    Args:
        endpoints: Agent name -> base URL (defaults to settings.worker_endpoints)
        timeout: Per-request timeout for every client

    Returns:
        An immutable mapping of agent name to HttpWorkerClient
    """
    endpoints = endpoints if endpoints is not None else settings.worker_endpoints
    clients = {
        name: HttpWorkerClient(name, url, timeout=timeout)
        for name, url in endpoints.items()
    }
    logger.info("worker_registry_built", agents=sorted(clients))
    return MappingProxyType(clients)


async def close_worker_registry(registry: WorkerRegistry) -> None:
    """Close every client in the registry that holds a connection pool."""
    for client in registry.values():
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()


def serialize_params(task: Task) -> bytes:
    """Serialize task params for the worker payload."""
    return json.dumps(task.params).encode("utf-8")


class DispatchClient:
    """Sends a task to its worker and reports exactly one ExecutionResult.

    Attributes:
        registry: Read-only agent name -> WorkerClient mapping
        timeout_seconds: Upper bound on one remote call
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        timeout_seconds: float | None = None,
    ) -> None:
        self.registry = registry
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else settings.dispatch_timeout_seconds
        )

    async def dispatch(self, task: Task) -> ExecutionResult:
        """Dispatch one task.

        An unknown agent fails locally without any remote call. Otherwise one
        remote call is made; any error it raises becomes a TRANSPORT failure
        and a worker-reported failure becomes a BUSINESS failure.

        Args:
            task: The task to send, params already resolved

        Returns:
            The ExecutionResult for this attempt
        """
        client = self.registry.get(task.agent_name)
        if client is None:
            logger.error(
                "dispatch_unknown_agent",
                task_id=task.id,
                agent=task.agent_name,
            )
            return ExecutionResult.failure(
                task.id, f"Unknown agent: {task.agent_name}", FailureKind.ROUTING
            )

        request = WorkerTaskRequest(
            id=task.id,
            type=task.action,
            payload=serialize_params(task),
            metadata=task.metadata,
        )

        logger.info(
            "dispatch_start",
            task_id=task.id,
            agent=task.agent_name,
            action=task.action,
        )

        try:
            response = await asyncio.wait_for(
                client.execute_task(request), timeout=self.timeout_seconds
            )
        except TimeoutError:
            message = f"Dispatch to {task.agent_name} timed out after {self.timeout_seconds}s"
            logger.error("dispatch_timeout", task_id=task.id, agent=task.agent_name)
            return ExecutionResult.failure(task.id, message, FailureKind.TRANSPORT)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(
                "dispatch_transport_error",
                task_id=task.id,
                agent=task.agent_name,
                error_type=type(e).__name__,
                error=message,
            )
            return ExecutionResult.failure(task.id, message, FailureKind.TRANSPORT)

        if response.status == TaskStatus.SUCCESS:
            logger.info(
                "dispatch_complete",
                task_id=task.id,
                agent=task.agent_name,
                result_uri=response.result_uri,
            )
            return ExecutionResult(
                task_id=task.id,
                status=TaskStatus.SUCCESS,
                output_uri=response.result_uri,
                output_data=response.result_data,
            )

        message = response.error_message or f"{task.agent_name} reported failure"
        logger.error(
            "dispatch_worker_failure",
            task_id=task.id,
            agent=task.agent_name,
            error=message,
        )
        return ExecutionResult(
            task_id=task.id,
            status=TaskStatus.FAIL,
            output_uri=response.result_uri,
            output_data=response.result_data,
            error_message=message,
            failure_kind=FailureKind.BUSINESS,
        )
