"""Prompts for the planning collaborator.

This module contains:
- PLANNER_PROMPT: turns a user request into a task graph
- RECOVERY_PROMPT: turns a failed task and its error into a fix plan
- build_planner_messages / build_recovery_messages: assemble chat messages
"""

import json
from datetime import UTC, datetime
from typing import Any

PLANNER_PROMPT = """\
You are the Harbinger Planner. Convert the user's natural language request \
into a structured task graph that a pool of worker agents will execute in order.

## Output Format
Respond with ONLY a JSON object of this shape:
{
  "folder_name": "short_snake_case_label",
  "tasks": [
    {
      "id": "1",
      "agent": "browser",
      "action": "browser.search",
      "params": {"query": "latest news on AI"},
      "depends_on": []
    }
  ]
}

## Rules
1. Every task must use an agent and action from the catalogue below.
2. Tasks run strictly in the order listed. A task may only depend on tasks \
listed before it.
3. Use {{task_id}} inside a string param to pass the output of an earlier task, \
and list that task id in "depends_on".
4. "folder_name" is the root directory for any files this request creates. \
All file paths in params are relative to it. Never use absolute paths.
5. If information is requested (news, weather, facts), start with a \
browser.search or research.research task.
6. Agents that return text (codegen, qa, docs, humanizer) do not write files. \
Add an os.create_file task and pass their output with {{task_id}}.
7. Before emailing a person by name, look their address up with memory.search \
unless it is given in the request.
8. Only use the coding agents (interpreter, planner, codegen, execution, \
debugger, qa, reviewer, dependency, docs, research) when the user asks for a \
software project or coding work.

## Available Agents
"""

RECOVERY_PROMPT = """\
You are the Harbinger System Doctor. A task in the execution plan has failed. \
Analyze the error and produce a Fix Plan whose steps, once executed, allow the \
failed task to be retried successfully.

## Instructions
1. If a dependency is missing, use dependency.manage.
2. If code is broken, use codegen.generate to produce corrected code, followed \
by os.create_file to save it.
3. Steps run in order. A later step may reference an earlier step or a previous \
result with {{task_id}}.
4. Only use agents and actions from the catalogue.
5. Respond with ONLY a JSON object: {"folder_name": "...", "tasks": [...]} where \
each task has id, agent, action, params, depends_on. Use the failed plan's \
folder name or "error_resolution".
"""


def _current_time() -> str:
    return datetime.now(UTC).isoformat()


def build_planner_messages(user_input: str, catalogue: str) -> list[dict[str, str]]:
    """Build the chat messages for generating a top-level plan.

    Args:
        user_input: The user's free-text request
        catalogue: Rendered worker capability catalogue

    Returns:
        System + user messages for the LLM
    """
    system = f"{PLANNER_PROMPT}{catalogue}\n\nCurrent Time: {_current_time()}\n"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user_input},
    ]


def build_recovery_messages(
    failed_task: dict[str, Any],
    error: str,
    context: dict[str, Any],
    catalogue: str,
) -> list[dict[str, str]]:
    """Build the chat messages for generating a fix plan.

    Args:
        failed_task: The failed task as the planner spells it
        error: Error text from the failed attempt
        context: Results accumulated so far, keyed by task id
        catalogue: Rendered worker capability catalogue

    Returns:
        A single system message carrying the whole recovery brief
    """
    sections = [
        RECOVERY_PROMPT,
        "## Failed Task",
        json.dumps(failed_task, indent=2, default=str),
        "## Error Message",
        error,
        "## Context (Previous Results)",
        json.dumps(context, indent=2, default=str),
        "## Available Agents",
        catalogue,
    ]
    return [{"role": "system", "content": "\n\n".join(sections)}]
