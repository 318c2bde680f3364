"""Engine service: the engine's own contract to its callers.

This module provides the EngineService class that the API layer and the CLI
use to submit natural-language requests. Each submission gets a run id,
executes the plan -> execute -> report pipeline to completion and returns a
PlanReport.

The EngineService coordinates between:
- Worker registry: read-only agent name -> WorkerClient mapping
- PlanningClient: LLM planning collaborator
- GraphExecutor + RecoverySubsystem: sequential execution with repair
- EventBus / MetricsCollector: observability

Usage:
    >>> registry = build_worker_registry()
    >>> service = EngineService(registry, planning_client, get_event_bus())
    >>> report = await service.submit_plan("Find AI news and email it to Shaurya")
    >>> print(report.status, list(report.results))
    >>> await service.aclose()
"""

import asyncio
import time
import uuid
from dataclasses import dataclass

import structlog

from config import settings
from engine.dispatch import DispatchClient, WorkerRegistry, close_worker_registry
from engine.executor import GraphExecutor
from engine.graph import SubmitGraph
from engine.planner import PlanningClient
from engine.recovery import RecoverySubsystem
from events import EngineEvent, EventBus, EventType
from metrics import MetricsCollector
from models.schemas import PlanReport, RunStatus, WorkerHealth

logger = structlog.get_logger()


@dataclass
class RunInfo:
    """Bookkeeping for one submitted request.

    Attributes:
        run_id: Unique identifier (e.g., "run_3fa85f64c0de")
        goal: The user's request
        status: Current run status
        started_at: Unix timestamp when the run started
        completed_at: Unix timestamp when it finished (None while running)
        report: Final report (None while running)
        metrics: Final run metrics (None while running or without a collector)
    """

    run_id: str
    goal: str
    status: RunStatus
    started_at: float
    completed_at: float | None = None
    report: PlanReport | None = None
    metrics: dict[str, int] | None = None


class EngineService:
    """Submits plans and keeps track of their runs.

    Concurrent submissions are independent: each run gets its own results
    mapping, and the only shared state is the read-only worker registry.

    Attributes:
        registry: Read-only worker registry
        planning_client: Planner used for plans and fix plans
        event_bus: Event bus for run events
        metrics_collector: Optional per-run metrics
        max_retained_runs: Finished runs kept in the registry
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        planning_client: PlanningClient,
        event_bus: EventBus,
        metrics_collector: MetricsCollector | None = None,
        dispatch_timeout_seconds: float | None = None,
        max_retained_runs: int | None = None,
    ) -> None:
        self.registry = registry
        self.planning_client = planning_client
        self.event_bus = event_bus
        self.metrics_collector = metrics_collector
        self.max_retained_runs = (
            max_retained_runs if max_retained_runs is not None
            else settings.max_retained_runs
        )

        dispatcher = DispatchClient(registry, timeout_seconds=dispatch_timeout_seconds)
        recovery = RecoverySubsystem(
            planning_client,
            event_bus=event_bus,
            metrics_collector=metrics_collector,
        )
        self.executor = GraphExecutor(
            dispatcher,
            recovery=recovery,
            event_bus=event_bus,
            metrics_collector=metrics_collector,
        )
        self.graph = SubmitGraph(planning_client, self.executor, event_bus=event_bus)

        self._runs: dict[str, RunInfo] = {}
        self._lock = asyncio.Lock()
        logger.info("engine_service_initialized", agents=sorted(registry))

    def new_run_id(self) -> str:
        return f"run_{uuid.uuid4().hex[:12]}"

    async def submit_plan(self, goal: str, run_id: str | None = None) -> PlanReport:
        """Plan and execute a natural-language request.

        Blocks until the whole plan, including any recovery, finishes or halts.

        Args:
            goal: The user's request
            run_id: Pre-allocated run id, so a caller can subscribe to the
                run's events before submitting

        Returns:
            PlanReport with the plan label and per-task results
        """
        run_id = run_id or self.new_run_id()
        info = RunInfo(
            run_id=run_id,
            goal=goal,
            status=RunStatus.RUNNING,
            started_at=time.time(),
        )
        async with self._lock:
            self._runs[run_id] = info

        if self.metrics_collector is not None:
            self.metrics_collector.start(run_id)

        logger.info("run_started", run_id=run_id, goal=goal[:100])
        await self.event_bus.publish(
            EngineEvent(type=EventType.RUN_STARTED, run_id=run_id, data={"goal": goal})
        )

        try:
            report = await self.graph.run(goal, run_id)
        except Exception as e:
            logger.exception("run_error", run_id=run_id)
            report = PlanReport(
                run_id=run_id,
                status=RunStatus.FAILED,
                error_message=str(e) or type(e).__name__,
                started_at=info.started_at,
                completed_at=time.time(),
            )
        finally:
            if self.metrics_collector is not None:
                final_metrics = self.metrics_collector.finish(run_id)
                if final_metrics is not None:
                    info.metrics = final_metrics.to_dict()

        info.status = report.status
        info.completed_at = report.completed_at
        info.report = report

        logger.info(
            "run_complete",
            run_id=run_id,
            status=report.status,
            label=report.plan_label,
            results=len(report.results),
            halted_at=report.halted_at,
        )
        await self.event_bus.publish(
            EngineEvent(
                type=EventType.RUN_COMPLETE,
                run_id=run_id,
                data={
                    "status": report.status.value,
                    "label": report.plan_label,
                    "halted_at": report.halted_at,
                },
            )
        )
        await self.event_bus.close_run(run_id)
        await self._forget_old_runs()
        return report

    async def _forget_old_runs(self) -> None:
        """Drop the oldest finished runs beyond the retention limit."""
        async with self._lock:
            finished = sorted(
                (r for r in self._runs.values() if r.status != RunStatus.RUNNING),
                key=lambda r: r.completed_at or r.started_at,
            )
            stale = finished[: max(0, len(finished) - self.max_retained_runs)]
            for info in stale:
                del self._runs[info.run_id]

        for info in stale:
            self.event_bus.clear_event_history(info.run_id)
        if stale:
            logger.info(
                "runs_forgotten",
                run_ids=[r.run_id for r in stale],
                retained=len(finished) - len(stale),
            )

    def get_run(self, run_id: str) -> RunInfo | None:
        return self._runs.get(run_id)

    def list_runs(self) -> list[RunInfo]:
        """All runs, newest first."""
        return sorted(self._runs.values(), key=lambda r: r.started_at, reverse=True)

    def get_active_run_count(self) -> int:
        return sum(1 for r in self._runs.values() if r.status == RunStatus.RUNNING)

    async def _check_worker(self, name: str) -> WorkerHealth:
        client = self.registry[name]
        try:
            health = await asyncio.wait_for(
                client.health_check(), timeout=settings.health_check_timeout_seconds
            )
        except Exception as e:
            logger.warning("worker_unreachable", agent=name, error=str(e) or type(e).__name__)
            return WorkerHealth(
                agent_name=name,
                status="unreachable",
                error_message=str(e) or type(e).__name__,
            )
        return health.model_copy(update={"agent_name": name})

    async def check_workers(self) -> list[WorkerHealth]:
        """Call HealthCheck on every registered worker concurrently.

        Returns:
            One WorkerHealth per agent, in registry order
        """
        return list(await asyncio.gather(*(self._check_worker(n) for n in self.registry)))

    async def aclose(self) -> None:
        """Close worker connections."""
        await close_worker_registry(self.registry)
        logger.info("engine_service_closed")
