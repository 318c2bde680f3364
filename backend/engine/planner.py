"""Planning collaborator client.

Turns free text into a Plan, and a failed task into a fix Plan, by calling
the LLM and validating its JSON against the Plan schema. Anything that does
not parse into a plan with at least one task raises PlanningError.
"""

import re
from collections.abc import Iterable, Mapping

import structlog
from pydantic import ValidationError

from config import settings
from engine.capabilities import render_capability_catalogue
from engine.prompts import build_planner_messages, build_recovery_messages
from engine.utils import LLMClient, extract_json_from_response
from models.schemas import ExecutionResult, Plan, Task

logger = structlog.get_logger()

OUTPUT_DIR_KEY = "output_dir"
_LABEL_MAX_LENGTH = 50


class PlanningError(Exception):
    """The planning collaborator failed or produced an unusable plan."""


def parse_plan(content: str) -> Plan:
    """Parse planner output into a Plan.

    Args:
        content: Raw LLM response text

    Returns:
        The validated Plan

    Raises:
        PlanningError: If no JSON object is found, the task list is missing
            or empty, a task is malformed, or task ids repeat.
    """
    parsed = extract_json_from_response(content)
    if parsed is None:
        raise PlanningError("Planner response is not a JSON object")

    tasks_raw = parsed.get("tasks")
    if not isinstance(tasks_raw, list) or not tasks_raw:
        raise PlanningError("Planner response has no tasks")

    try:
        plan = Plan.model_validate(parsed)
    except ValidationError as e:
        raise PlanningError(f"Planner response is not a valid plan: {e}") from e

    seen: set[str] = set()
    for task in plan.tasks:
        if task.id in seen:
            raise PlanningError(f"Duplicate task id in plan: {task.id}")
        seen.add(task.id)

    return plan


def find_forward_references(
    plan: Plan, known_ids: Iterable[str] = ()
) -> list[tuple[str, str]]:
    """Find dependencies that do not point at an earlier task.

    Plans run in authored order and are never reordered, so a dependency on a
    later (or unknown) task means the dependent task will be skipped.

    Args:
        plan: The plan to inspect
        known_ids: Ids that already have results (e.g. the plan a fix plan repairs)

    Returns:
        (task_id, dependency_id) pairs in plan order
    """
    earlier = set(known_ids)
    problems: list[tuple[str, str]] = []
    for task in plan.tasks:
        problems.extend((task.id, dep) for dep in task.depends_on if dep not in earlier)
        earlier.add(task.id)
    return problems


def derive_plan_label(plan: Plan, user_input: str) -> str:
    """Pick the plan's folder label, falling back to a slug of the request."""
    if plan.label.strip():
        return plan.label.strip()
    slug = re.sub(r"[^a-z0-9]", "_", user_input, flags=re.IGNORECASE)[:_LABEL_MAX_LENGTH]
    return slug or "default_task"


def assign_output_dir(
    plan: Plan,
    output_root: str | None = None,
    exempt_agents: Iterable[str] | None = None,
) -> str:
    """Route every non-exempt task's artifacts to ``<output_root>/<label>``.

    Args:
        plan: Plan to update in place; its label must already be set
        output_root: Base directory (defaults to settings.output_root)
        exempt_agents: Agents that get no hint (defaults to settings)

    Returns:
        The output directory that was assigned
    """
    root = output_root if output_root is not None else settings.output_root
    exempt = set(
        exempt_agents if exempt_agents is not None else settings.output_dir_exempt_agents
    )
    output_dir = f"{root.rstrip('/')}/{plan.label}"

    for task in plan.tasks:
        if task.agent_name in exempt:
            continue
        task.metadata[OUTPUT_DIR_KEY] = output_dir

    return output_dir


class PlanningClient:
    """Client for the LLM planning collaborator.

    Attributes:
        llm_client: LLM client used for all planning calls
        agent_names: Agents the catalogue is limited to (registry keys)
        model: Planner model override
        temperature: Sampling temperature for planning calls
    """

    def __init__(
        self,
        llm_client: LLMClient,
        agent_names: Iterable[str] | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> None:
        self.llm_client = llm_client
        self.agent_names = list(agent_names) if agent_names is not None else None
        self.model = model or settings.planner_model
        self.temperature = (
            temperature if temperature is not None else settings.planner_temperature
        )

    @property
    def catalogue(self) -> str:
        return render_capability_catalogue(self.agent_names)

    async def _complete(self, messages: list[dict[str, str]], run_id: str | None) -> str:
        try:
            response = await self.llm_client.complete_json(
                messages=messages,
                model=self.model,
                temperature=self.temperature,
                run_id=run_id,
            )
        except Exception as e:
            raise PlanningError(f"Planner call failed: {e}") from e
        return response.content

    async def generate_plan(self, user_input: str, run_id: str | None = None) -> Plan:
        """Generate the top-level plan for a user request.

        Raises:
            PlanningError: If the call fails or the output is not a usable plan.
        """
        content = await self._complete(
            build_planner_messages(user_input, self.catalogue), run_id
        )
        plan = parse_plan(content)

        logger.info(
            "plan_generated",
            run_id=run_id,
            label=plan.label,
            task_count=len(plan.tasks),
        )
        return plan

    async def generate_fix_plan(
        self,
        failed_task: Task,
        error: str,
        context: Mapping[str, ExecutionResult],
        run_id: str | None = None,
    ) -> Plan:
        """Generate a fix plan for a failed task.

        Args:
            failed_task: The task whose attempt failed
            error: Error text from that attempt
            context: Results accumulated so far
            run_id: Optional run ID for metrics and events

        Raises:
            PlanningError: If the call fails or the output is not a usable plan.
        """
        messages = build_recovery_messages(
            failed_task=failed_task.model_dump(mode="json", by_alias=True),
            error=error,
            context={
                task_id: result.model_dump(mode="json", exclude_none=True)
                for task_id, result in context.items()
            },
            catalogue=self.catalogue,
        )
        content = await self._complete(messages, run_id)
        return parse_plan(content)
