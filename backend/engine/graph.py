"""LangGraph pipeline behind ``submit_plan``.

    START -> plan -> [ok -> execute | failed -> report] ; execute -> report -> END

1. PLAN: Ask the planning collaborator for a plan, label it and route file
   output into the plan's folder
2. EXECUTE: Run the plan through the GraphExecutor
3. REPORT: Fold results and the execution outcome into a PlanReport

A planning error skips execution and is reported as a failed run.

Events emitted:
- PLAN_GENERATED: After a plan has been parsed and labelled
- RUN_ERROR: When planning or execution raises
"""

import time
from typing import Any, Literal, TypedDict

import structlog
from langgraph.graph import END, START, StateGraph

from config import settings
from engine.executor import ExecutionOutcome, GraphExecutor
from engine.planner import (
    PlanningClient,
    PlanningError,
    assign_output_dir,
    derive_plan_label,
    find_forward_references,
)
from events import EngineEvent, EventBus, EventType
from models.schemas import ExecutionResult, Plan, PlanReport, RunStatus

logger = structlog.get_logger()


class SubmitState(TypedDict):
    """State for the submit pipeline.

    Attributes:
        goal: The user's natural-language request
        run_id: Run identifier for events and metrics
        plan: Generated plan (None until planning succeeds)
        results: Shared results mapping, keyed by task id
        outcome: Skips and halt information from the executor
        error: Planning or execution error text
        report: Final PlanReport
        started_at: Unix timestamp the run started
    """

    goal: str
    run_id: str
    plan: Plan | None
    results: dict[str, ExecutionResult]
    outcome: ExecutionOutcome | None
    error: str | None
    report: PlanReport | None
    started_at: float


def create_initial_state(goal: str, run_id: str) -> SubmitState:
    """Create the initial state for one submit run."""
    return SubmitState(
        goal=goal,
        run_id=run_id,
        plan=None,
        results={},
        outcome=None,
        error=None,
        report=None,
        started_at=time.time(),
    )


class SubmitGraph:
    """Plan, execute and report one natural-language request.

    Attributes:
        planning_client: Produces the top-level plan
        executor: Runs the plan
        event_bus: Optional bus for run events
        output_root: Root folder for artifacts
        exempt_agents: Agents that get no output_dir hint
    """

    def __init__(
        self,
        planning_client: PlanningClient,
        executor: GraphExecutor,
        event_bus: EventBus | None = None,
        output_root: str | None = None,
        exempt_agents: list[str] | None = None,
    ) -> None:
        self.planning_client = planning_client
        self.executor = executor
        self.event_bus = event_bus
        self.output_root = output_root if output_root is not None else settings.output_root
        self.exempt_agents = (
            exempt_agents if exempt_agents is not None
            else list(settings.output_dir_exempt_agents)
        )
        self._compiled_graph = self._build_graph()

    def _build_graph(self) -> Any:
        """Build and compile the LangGraph StateGraph.

        Returns:
            Compiled StateGraph ready for execution
        """
        graph = StateGraph(SubmitState)

        graph.add_node("plan", self._plan)
        graph.add_node("execute", self._execute)
        graph.add_node("report", self._report)

        graph.add_edge(START, "plan")
        graph.add_conditional_edges(
            "plan",
            self._route_after_plan,
            {
                "execute": "execute",
                "failed": "report",
            },
        )
        graph.add_edge("execute", "report")
        graph.add_edge("report", END)

        return graph.compile()

    async def _emit(self, event_type: EventType, run_id: str, **data: Any) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(EngineEvent(type=event_type, run_id=run_id, data=data))

    # =========================================================================
    # Nodes
    # =========================================================================

    async def _plan(self, state: SubmitState) -> dict[str, Any]:
        run_id = state["run_id"]
        try:
            plan = await self.planning_client.generate_plan(state["goal"], run_id=run_id)
        except PlanningError as e:
            logger.error("planning_failed", run_id=run_id, error=str(e))
            await self._emit(EventType.RUN_ERROR, run_id, error=str(e), stage="planning")
            return {"error": str(e)}

        plan.label = derive_plan_label(plan, state["goal"])
        output_dir = assign_output_dir(plan, self.output_root, self.exempt_agents)

        forward_refs = find_forward_references(plan)
        await self._emit(
            EventType.PLAN_GENERATED,
            run_id,
            label=plan.label,
            output_dir=output_dir,
            tasks=[t.model_dump(mode="json", by_alias=True) for t in plan.tasks],
            forward_references=[list(ref) for ref in forward_refs],
        )
        return {"plan": plan}

    def _route_after_plan(self, state: SubmitState) -> Literal["execute", "failed"]:
        return "failed" if state["plan"] is None else "execute"

    async def _execute(self, state: SubmitState) -> dict[str, Any]:
        plan = state["plan"]
        results = state["results"]
        try:
            outcome = await self.executor.run(plan, results, run_id=state["run_id"])
        except Exception as e:
            logger.exception("plan_execution_error", run_id=state["run_id"])
            await self._emit(
                EventType.RUN_ERROR, state["run_id"], error=str(e), stage="execution"
            )
            return {"results": results, "error": str(e) or type(e).__name__}
        return {"results": results, "outcome": outcome}

    async def _report(self, state: SubmitState) -> dict[str, Any]:
        plan = state["plan"]
        outcome = state["outcome"]

        if state["error"] is not None:
            status = RunStatus.FAILED
        elif outcome is not None and outcome.halted:
            status = RunStatus.HALTED
        else:
            status = RunStatus.COMPLETE

        report = PlanReport(
            run_id=state["run_id"],
            plan_label=plan.label if plan is not None else "",
            status=status,
            results=dict(state["results"]),
            task_order=[t.id for t in plan.tasks] if plan is not None else [],
            skipped=list(outcome.skipped) if outcome else [],
            not_attempted=list(outcome.not_attempted) if outcome else [],
            halted_at=outcome.halted_at if outcome else None,
            error_message=state["error"],
            started_at=state["started_at"],
            completed_at=time.time(),
        )
        return {"report": report}

    async def run(self, goal: str, run_id: str) -> PlanReport:
        """Run the pipeline to completion.

        Args:
            goal: The user's request
            run_id: Run identifier

        Returns:
            The PlanReport for the run
        """
        final_state = await self._compiled_graph.ainvoke(create_initial_state(goal, run_id))
        return final_state["report"]


def create_submit_graph(
    planning_client: PlanningClient,
    executor: GraphExecutor,
    event_bus: EventBus | None = None,
) -> SubmitGraph:
    """Factory function to create the submit pipeline.

    Args:
        planning_client: Planner for the top-level plan
        executor: Executor wired with dispatch and recovery
        event_bus: Optional event bus

    Returns:
        Configured SubmitGraph instance
    """
    return SubmitGraph(
        planning_client=planning_client,
        executor=executor,
        event_bus=event_bus,
    )
