"""Sequential plan executor.

Runs the tasks of a plan one at a time in authored order. Each task is gated
on its dependencies, has its placeholders resolved, is dispatched, and on
failure is handed to recovery before being retried once. Results are written
into a results mapping shared between a plan and the fix plans spawned to
repair it.

Plans are never reordered: a dependency on a later task is logged as a
forward reference and the dependent task is skipped by the gate.
"""

from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from config import settings
from engine.dispatch import DispatchClient
from engine.planner import find_forward_references
from engine.resolver import resolve_task
from events import EngineEvent, EventBus, EventType
from metrics import MetricsCollector
from models.schemas import RECOVERABLE_FAILURES, ExecutionResult, Plan, Task

logger = structlog.get_logger()

ResultsMap = MutableMapping[str, ExecutionResult]


class Recovery(Protocol):
    """What the executor needs from the recovery subsystem."""

    async def recover(
        self,
        failed_task: Task,
        error: str,
        context_results: ResultsMap,
        executor: "GraphExecutor",
        run_id: str = "",
    ) -> bool: ...


@dataclass
class ExecutionOutcome:
    """What happened to each task of one plan execution.

    ``shared_results`` carries the results themselves; this records the
    tasks that produced none and whether the plan stopped early.
    """

    halted: bool = False
    halted_at: str | None = None
    skipped: list[str] = field(default_factory=list)
    not_attempted: list[str] = field(default_factory=list)


class GraphExecutor:
    """Executes plans against the worker fleet.

    Attributes:
        dispatcher: Sends one task to its worker
        recovery: Repairs failed top-level tasks (None disables recovery)
        event_bus: Optional bus for run events
        metrics_collector: Optional per-run metrics
        max_retries: Re-dispatches allowed per task after a successful recovery
    """

    def __init__(
        self,
        dispatcher: DispatchClient,
        recovery: Recovery | None = None,
        event_bus: EventBus | None = None,
        metrics_collector: MetricsCollector | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.recovery = recovery
        self.event_bus = event_bus
        self.metrics_collector = metrics_collector
        self.max_retries = (
            max_retries if max_retries is not None else settings.max_task_retries
        )

    async def _emit(
        self,
        event_type: EventType,
        run_id: str,
        task_id: str | None = None,
        is_fix_plan: bool = False,
        **data: Any,
    ) -> None:
        if self.event_bus is None or not run_id:
            return
        await self.event_bus.publish(
            EngineEvent(
                type=event_type,
                run_id=run_id,
                task_id=task_id,
                fix_plan=is_fix_plan,
                data=data,
            )
        )

    @staticmethod
    def unmet_dependencies(task: Task, results: ResultsMap) -> list[str]:
        """Dependencies that are absent from results or did not succeed."""
        return [
            dep for dep in task.depends_on
            if dep not in results or not results[dep].succeeded
        ]

    async def run(
        self,
        plan: Plan,
        shared_results: ResultsMap,
        is_fix_plan: bool = False,
        *,
        run_id: str = "",
    ) -> ExecutionOutcome:
        """Execute a plan, writing every attempt's result into shared_results.

        A top-level plan skips tasks with unmet dependencies and halts at the
        first task that stays failed. A fix plan runs every step regardless
        of dependencies and keeps going past failed steps; its failures are
        never sent to recovery.

        Args:
            plan: Tasks to run in authored order
            shared_results: Results mapping shared with any enclosing plan
            is_fix_plan: True when running a fix plan
            run_id: Run the events and metrics belong to

        Returns:
            Which tasks were skipped or never attempted, and where the plan halted
        """
        outcome = ExecutionOutcome()

        known_ids = list(shared_results) if is_fix_plan else []
        forward_refs = find_forward_references(plan, known_ids)
        if forward_refs:
            logger.warning(
                "plan_forward_references",
                run_id=run_id,
                fix_plan=is_fix_plan,
                references=[f"{task_id}->{dep}" for task_id, dep in forward_refs],
            )

        for index, task in enumerate(plan.tasks):
            if not is_fix_plan:
                missing = self.unmet_dependencies(task, shared_results)
                if missing:
                    logger.info(
                        "task_skipped",
                        run_id=run_id,
                        task_id=task.id,
                        missing_dependencies=missing,
                    )
                    outcome.skipped.append(task.id)
                    await self._emit(
                        EventType.TASK_SKIPPED,
                        run_id,
                        task.id,
                        missing_dependencies=missing,
                    )
                    continue

            result = await self._execute_task(task, shared_results, is_fix_plan, run_id)

            if result.succeeded or is_fix_plan:
                continue

            outcome.halted = True
            outcome.halted_at = task.id
            outcome.not_attempted = [t.id for t in plan.tasks[index + 1:]]
            logger.error(
                "plan_halted",
                run_id=run_id,
                task_id=task.id,
                error=result.error_message,
                not_attempted=outcome.not_attempted,
            )
            await self._emit(
                EventType.PLAN_HALTED,
                run_id,
                task.id,
                not_attempted=outcome.not_attempted,
                error_message=result.error_message,
            )
            break

        return outcome

    async def _execute_task(
        self,
        task: Task,
        shared_results: ResultsMap,
        is_fix_plan: bool,
        run_id: str,
    ) -> ExecutionResult:
        """Resolve, dispatch and (for top-level tasks) recover one task."""
        resolution = resolve_task(task, shared_results)
        if resolution.unresolved:
            logger.warning(
                "placeholder_unresolved",
                run_id=run_id,
                task_id=task.id,
                references=resolution.unresolved,
            )
            await self._emit(
                EventType.PLACEHOLDER_UNRESOLVED,
                run_id,
                task.id,
                is_fix_plan,
                references=resolution.unresolved,
            )
        resolved = resolution.task

        retries = 0
        while True:
            result = await self._dispatch(resolved, retries + 1, is_fix_plan, run_id)
            shared_results[task.id] = result

            if result.succeeded:
                return result
            if is_fix_plan or self.recovery is None:
                return result
            if result.failure_kind not in RECOVERABLE_FAILURES:
                return result
            if retries >= self.max_retries:
                return result

            recovered = await self.recovery.recover(
                resolved,
                result.error_message or "",
                shared_results,
                self,
                run_id=run_id,
            )
            if not recovered:
                return result
            retries += 1

    async def _dispatch(
        self, task: Task, attempt: int, is_fix_plan: bool, run_id: str
    ) -> ExecutionResult:
        logger.info(
            "task_dispatched",
            run_id=run_id,
            task_id=task.id,
            agent=task.agent_name,
            action=task.action,
            attempt=attempt,
            fix_plan=is_fix_plan,
        )
        await self._emit(
            EventType.TASK_DISPATCHED,
            run_id,
            task.id,
            is_fix_plan,
            agent=task.agent_name,
            action=task.action,
            attempt=attempt,
        )

        result = await self.dispatcher.dispatch(task)

        if self.metrics_collector is not None and run_id:
            self.metrics_collector.record_dispatch(run_id, succeeded=result.succeeded)

        event_type = EventType.TASK_COMPLETE if result.succeeded else EventType.TASK_FAILED
        if result.succeeded:
            logger.info("task_complete", run_id=run_id, task_id=task.id)
        else:
            logger.warning(
                "task_failed",
                run_id=run_id,
                task_id=task.id,
                failure_kind=result.failure_kind,
                error=result.error_message,
            )
        await self._emit(
            event_type,
            run_id,
            task.id,
            is_fix_plan,
            status=result.status.value,
            error_message=result.error_message,
            failure_kind=result.failure_kind.value if result.failure_kind else None,
        )
        return result


def create_executor(
    dispatcher: DispatchClient,
    recovery: Recovery | None = None,
    event_bus: EventBus | None = None,
    metrics_collector: MetricsCollector | None = None,
) -> GraphExecutor:
    """Factory function to create a GraphExecutor with configured retry budget."""
    return GraphExecutor(
        dispatcher=dispatcher,
        recovery=recovery,
        event_bus=event_bus,
        metrics_collector=metrics_collector,
    )
