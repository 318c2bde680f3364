"""Catalogue of what each worker agent can do.

The catalogue is rendered into planner and recovery prompts so the planning
collaborator only proposes actions that registered workers actually accept.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class AgentCapability:
    """One agent and the action signatures it exposes."""

    name: str
    description: str
    actions: tuple[str, ...] = field(default_factory=tuple)


AGENT_CAPABILITIES: dict[str, AgentCapability] = {
    cap.name: cap
    for cap in (
        AgentCapability(
            "calendar",
            "Can create, list, and manage calendar events.",
        ),
        AgentCapability(
            "gmail",
            "Can draft and send emails.",
            (
                "gmail.send_email(to: string, subject: string, body: string, "
                "ical?: { start: string, end: string, summary: string, location?: string })"
                " // start/end MUST be ISO 8601 strings",
            ),
        ),
        AgentCapability(
            "browser",
            "Can search the web and scrape pages.",
            ("browser.search(query: string)", "browser.scrape(url: string)"),
        ),
        AgentCapability(
            "os",
            "Can perform file operations and launch applications.",
            (
                "os.create_file(path: string, content: string)",
                "os.delete_file(path: string)",
                "os.update_file(path: string, content: string)",
                "os.move_file(source: string, destination: string)",
                "os.read_file(path: string)",
                "os.list_directory(path: string)",
                "os.open_app(app_name: string, url?: string)",
                "os.open_folder(path: string)",
                "os.run_command(command: string)",
            ),
        ),
        AgentCapability(
            "humanizer",
            "Can rewrite text to sound more human and natural.",
            ("humanizer.humanize_content(content: string)",),
        ),
        AgentCapability(
            "interpreter",
            "Converts user instructions into clear technical requirements.",
            ("interpreter.interpret(input: string)",),
        ),
        AgentCapability(
            "planner",
            "Designs architecture, workflow, and file structure.",
            ("planner.plan_system(requirements: string)",),
        ),
        AgentCapability(
            "codegen",
            "Writes code for each required module. Returns code text, does not save files.",
            ("codegen.generate(spec: string)",),
        ),
        AgentCapability(
            "execution",
            "Runs the generated code and captures outputs or errors.",
            ("execution.run(command: string, cwd?: string)",),
        ),
        AgentCapability(
            "debugger",
            "Analyzes failures and fixes code issues.",
            ("debugger.debug(code: string, error: string)",),
        ),
        AgentCapability(
            "qa",
            "Validates correctness using tests, edge cases, and scenarios.",
            ("qa.generate_tests(code: string)",),
        ),
        AgentCapability(
            "reviewer",
            "Improves code quality, structure, and performance.",
            ("reviewer.review(code: string)",),
        ),
        AgentCapability(
            "dependency",
            "Installs, updates, and manages project libraries.",
            (
                "dependency.manage(command: string, package: string, cwd?: string, "
                'manager?: string) // command: "install" or "uninstall", '
                'manager: "npm" (default) or "pip"',
            ),
        ),
        AgentCapability(
            "docs",
            "Produces README, API docs, and usage guides.",
            ("docs.generate(code: string, type?: string)",),
        ),
        AgentCapability(
            "research",
            "Looks up examples, patterns, and best practices.",
            ("research.research(topic: string)",),
        ),
        AgentCapability(
            "memory",
            "Stores and retrieves information for later use.",
            (
                "memory.store(key?: string, value: any, context: string)",
                "memory.retrieve(key: string)",
                "memory.search(query: string, semantic?: boolean)",
                "memory.list()",
                "memory.forget(key: string)",
            ),
        ),
        AgentCapability(
            "excel",
            "Excel workbook automation and manipulation.",
            (
                "excel.create_workbook(name: string, path?: string, sheet_name?: string)",
                "excel.read_range(file_path: string, sheet: string, range: string)",
                "excel.write_range(file_path: string, sheet: string, range: string, "
                "values: array)",
                "excel.add_sheet(file_path: string, sheet_name: string)",
                "excel.create_table(file_path: string, sheet: string, range: string, "
                "table_name: string, columns?: array, rows?: array)",
                "excel.add_chart(file_path: string, sheet: string, chart_type: string, "
                "data_range: string, position?: string)",
                "excel.apply_formula(file_path: string, sheet: string, cell: string, "
                "formula: string)",
            ),
        ),
    )
}


def render_capability_catalogue(agent_names: Iterable[str] | None = None) -> str:
    """Render the catalogue as the bullet list used in prompts.

    Args:
        agent_names: Restrict to these agents (e.g. the worker registry keys).
            Agents without a catalogue entry are listed by name only.

    Returns:
        One ``- name: description`` line per agent with indented action lines.
    """
    names = list(agent_names) if agent_names is not None else list(AGENT_CAPABILITIES)

    lines: list[str] = []
    for name in names:
        cap = AGENT_CAPABILITIES.get(name)
        if cap is None:
            lines.append(f"- {name}")
            continue
        lines.append(f"- {cap.name}: {cap.description}")
        lines.extend(f"    - {action}" for action in cap.actions)
    return "\n".join(lines)
