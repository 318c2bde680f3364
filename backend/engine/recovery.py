"""Recovery subsystem.

Asks the planning collaborator for a fix plan that repairs a failed task and
runs it through the executor as a fix plan. Fix plans never trigger further
recovery, so repair depth is at most one.
"""

from typing import TYPE_CHECKING, Any

import structlog

from engine.planner import OUTPUT_DIR_KEY, PlanningClient
from events import EngineEvent, EventBus, EventType
from metrics import MetricsCollector
from models.schemas import Plan, Task

if TYPE_CHECKING:
    from engine.executor import GraphExecutor, ResultsMap

logger = structlog.get_logger()


def propagate_output_dir(fix_plan: Plan, failed_task: Task) -> None:
    """Copy the failed task's output_dir hint onto every fix-plan step."""
    output_dir = failed_task.metadata.get(OUTPUT_DIR_KEY)
    if not output_dir:
        return
    for task in fix_plan.tasks:
        task.metadata[OUTPUT_DIR_KEY] = output_dir


class RecoverySubsystem:
    """Generates and runs fix plans for failed tasks.

    Attributes:
        planner: Planning client that produces fix plans
        event_bus: Optional bus for recovery events
        metrics_collector: Optional per-run metrics
    """

    def __init__(
        self,
        planner: PlanningClient,
        event_bus: EventBus | None = None,
        metrics_collector: MetricsCollector | None = None,
    ) -> None:
        self.planner = planner
        self.event_bus = event_bus
        self.metrics_collector = metrics_collector

    async def _emit(
        self, event_type: EventType, run_id: str, task_id: str, **data: Any
    ) -> None:
        if self.event_bus is None or not run_id:
            return
        await self.event_bus.publish(
            EngineEvent(type=event_type, run_id=run_id, task_id=task_id, data=data)
        )

    def _record(self, run_id: str, succeeded: bool) -> None:
        if self.metrics_collector is not None and run_id:
            self.metrics_collector.record_recovery(run_id, succeeded=succeeded)

    async def _fail(self, run_id: str, task_id: str, reason: str) -> bool:
        self._record(run_id, succeeded=False)
        await self._emit(EventType.RECOVERY_FAILED, run_id, task_id, error=reason)
        return False

    async def recover(
        self,
        failed_task: Task,
        error: str,
        context_results: "ResultsMap",
        executor: "GraphExecutor",
        run_id: str = "",
    ) -> bool:
        """Try to repair a failed task.

        Args:
            failed_task: The task whose attempt failed
            error: Error text from that attempt
            context_results: Shared results mapping of the plan being repaired
            executor: Executor that runs the fix plan
            run_id: Run the events and metrics belong to

        Returns:
            True if a fix plan was generated and ran to completion, whatever
            its individual steps reported. False if no usable fix plan came
            back or running it raised.
        """
        logger.info("recovery_started", run_id=run_id, task_id=failed_task.id, error=error)
        await self._emit(EventType.RECOVERY_STARTED, run_id, failed_task.id, error=error)

        try:
            fix_plan = await self.planner.generate_fix_plan(
                failed_task, error, context_results, run_id=run_id or None
            )
        except Exception as e:
            logger.error(
                "fix_plan_generation_failed",
                run_id=run_id,
                task_id=failed_task.id,
                error=str(e),
            )
            return await self._fail(run_id, failed_task.id, str(e))

        propagate_output_dir(fix_plan, failed_task)

        logger.info(
            "fix_plan_generated",
            run_id=run_id,
            task_id=failed_task.id,
            task_count=len(fix_plan.tasks),
        )
        await self._emit(
            EventType.FIX_PLAN_GENERATED,
            run_id,
            failed_task.id,
            task_count=len(fix_plan.tasks),
            tasks=[t.model_dump(mode="json", by_alias=True) for t in fix_plan.tasks],
        )

        try:
            await executor.run(fix_plan, context_results, is_fix_plan=True, run_id=run_id)
        except Exception as e:
            logger.error(
                "fix_plan_execution_failed",
                run_id=run_id,
                task_id=failed_task.id,
                error=str(e),
            )
            return await self._fail(run_id, failed_task.id, str(e))

        logger.info("recovery_complete", run_id=run_id, task_id=failed_task.id)
        self._record(run_id, succeeded=True)
        await self._emit(EventType.RECOVERY_COMPLETE, run_id, failed_task.id)
        return True
