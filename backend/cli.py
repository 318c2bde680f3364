"""CLI entrypoint for Harbinger."""

import asyncio
import json

import rich_click as click

from config import settings
from engine_service import EngineService
from events import EngineEvent, EventType
from main import create_engine_service
from models.schemas import PlanReport, RunStatus, WorkerHealth

click.rich_click.USE_MARKDOWN = True

_TABLE_COLUMNS = (("ID", 6), ("AGENT", 12), ("ACTION", 28), ("DEPENDS ON", 12))


@click.group()
@click.version_option(version="0.1.0", prog_name="harbinger")
def harbinger() -> None:
    """Harbinger: plan a request and run it on the worker fleet."""


@harbinger.command("run")
@click.argument("goal")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Print the final report as JSON instead of text.",
)
def run(goal: str, json_output: bool) -> None:
    """Plan **GOAL** and execute it, printing progress as tasks run."""

    report = asyncio.run(_run_goal(goal, quiet=json_output))
    if json_output:
        click.echo(report.model_dump_json(indent=2))
    else:
        _emit_lines(format_report(report))
    if report.status != RunStatus.COMPLETE:
        raise SystemExit(1)


@harbinger.command("workers")
def workers() -> None:
    """Check every registered worker and list its capabilities."""

    health = asyncio.run(_check_workers())
    _emit_lines(format_worker_health(health))


async def _run_goal(goal: str, quiet: bool = False) -> PlanReport:
    service = create_engine_service()
    try:
        return await stream_submission(
            service, goal, on_event=None if quiet else _print_event
        )
    finally:
        await service.aclose()


async def _check_workers() -> list[WorkerHealth]:
    service = create_engine_service()
    try:
        return await service.check_workers()
    finally:
        await service.aclose()


async def stream_submission(
    service: EngineService,
    goal: str,
    on_event=None,
) -> PlanReport:
    """Submit ``goal`` and hand each run event to ``on_event`` as it arrives."""
    run_id = service.new_run_id()
    queue = service.event_bus.subscribe(run_id)
    submission = asyncio.create_task(service.submit_plan(goal, run_id=run_id))

    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait(
                {getter, submission}, return_when=asyncio.FIRST_COMPLETED
            )
            if getter not in done:
                getter.cancel()
                break
            event = getter.result()
            if event.type == EventType.RUN_CLOSED:
                break
            if on_event is not None:
                on_event(event)

        # Events published right before the submission finished.
        while not queue.empty():
            event = queue.get_nowait()
            if event.type != EventType.RUN_CLOSED and on_event is not None:
                on_event(event)
    finally:
        service.event_bus.unsubscribe(run_id, queue)

    return await submission


# -----------------------------------------------------------------------------
# Formatting
# -----------------------------------------------------------------------------


def format_plan_table(tasks: list[dict]) -> list[str]:
    """Render planned tasks as a fixed-width table."""
    header = "  ".join(name.ljust(width) for name, width in _TABLE_COLUMNS)
    lines = [header, "-" * len(header)]
    for task in tasks:
        depends = ",".join(task.get("depends_on") or []) or "-"
        cells = (task.get("id", ""), task.get("agent", ""), task.get("action", ""), depends)
        lines.append(
            "  ".join(str(cell).ljust(width) for cell, (_, width) in zip(cells, _TABLE_COLUMNS))
        )
    return lines


def format_output(output_data: str) -> str:
    """Pretty-print JSON output, leave anything else as-is."""
    try:
        parsed = json.loads(output_data)
    except json.JSONDecodeError:
        return output_data
    return json.dumps(parsed, indent=2)


def format_report(report: PlanReport) -> list[str]:
    lines = [f"Run {report.run_id} [{report.plan_label or '-'}]: {report.status}"]

    for task_id in report.task_order:
        if task_id in report.skipped:
            lines.append(f"\nTask {task_id}: skipped (dependencies not met)")
            continue
        if task_id in report.not_attempted:
            lines.append(f"\nTask {task_id}: not attempted")
            continue
        result = report.results.get(task_id)
        if result is None:
            continue
        lines.append(f"\nTask {task_id}: {result.status}")
        if result.error_message:
            lines.append(f"  error ({result.failure_kind}): {result.error_message}")
        if result.output_uri:
            lines.append(f"  uri: {result.output_uri}")
        if result.output_data:
            lines.append(format_output(result.output_data))

    extra = [tid for tid in report.results if tid not in report.task_order]
    if extra:
        lines.append(f"\nFix plan steps: {', '.join(extra)}")
    if report.halted_at:
        lines.append(f"\nHalted at task {report.halted_at}.")
    if report.error_message and not report.halted_at:
        lines.append(f"\nError: {report.error_message}")
    return lines


def format_worker_health(health: list[WorkerHealth]) -> list[str]:
    lines = []
    for worker in health:
        endpoint = settings.worker_endpoints.get(worker.agent_name, "")
        line = f"{worker.agent_name:<12} {worker.status:<12} {endpoint}"
        if worker.capabilities:
            line += f"  [{', '.join(worker.capabilities)}]"
        if worker.error_message:
            line += f"  ({worker.error_message})"
        lines.append(line)
    return lines


def format_event(event: EngineEvent) -> list[str]:
    data = event.data
    prefix = "  [fix] " if event.fix_plan else ""
    if event.type == EventType.PLAN_GENERATED:
        return [f"Plan: {data.get('label', '')}", *format_plan_table(data.get("tasks", []))]
    if event.type == EventType.TASK_DISPATCHED:
        return [
            f"{prefix}-> {event.task_id} {data.get('agent')} {data.get('action')}"
            f" (attempt {data.get('attempt')})"
        ]
    if event.type == EventType.TASK_FAILED:
        return [f"{prefix}!! {event.task_id} failed: {data.get('error_message')}"]
    if event.type == EventType.TASK_SKIPPED:
        missing = ", ".join(data.get("missing_dependencies", []))
        return [f"-- {event.task_id} skipped, waiting on {missing}"]
    if event.type == EventType.RECOVERY_STARTED:
        return [f"Recovering task {event.task_id}..."]
    if event.type == EventType.FIX_PLAN_GENERATED:
        return [f"Fix plan for {event.task_id}:", *format_plan_table(data.get("tasks", []))]
    if event.type == EventType.RECOVERY_FAILED:
        return [f"Recovery of {event.task_id} failed: {data.get('error')}"]
    return []


def _print_event(event: EngineEvent) -> None:
    _emit_lines(format_event(event))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


def main() -> None:
    harbinger()


if __name__ == "__main__":  # pragma: no cover
    main()
