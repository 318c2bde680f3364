"""Placeholder substitution between tasks.

A task's string params may reference the output of an earlier task with the
token ``{{<task_id>}}``. Before dispatch every such token is replaced by a
value taken from that task's ``output_data``:

- If ``output_data`` parses as a JSON object with a non-empty ``result``
  field, that field is used; otherwise a non-empty ``output`` field.
- Otherwise the raw ``output_data`` string is used unchanged.
- Structured substitution values are serialized to compact JSON text with
  non-ASCII characters kept as-is.

Tokens whose task has no successful result, or a result without
``output_data``, are left in place and reported in ``Resolution.unresolved``.
"""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from models.schemas import ExecutionResult, Task

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_.:\-]+)\s*\}\}")

# Fields of a JSON output_data object that carry the value, in priority order.
OUTPUT_FIELDS = ("result", "output")


@dataclass
class Resolution:
    """Outcome of resolving one task's params.

    Attributes:
        task: Copy of the task with substituted params
        substituted: Task ids whose output was inserted at least once
        unresolved: Task ids referenced by placeholders that had no value
    """

    task: Task
    substituted: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)


def extract_substitution_value(output_data: str) -> str:
    """Derive the text inserted for a placeholder from a task's output_data."""
    try:
        parsed = json.loads(output_data)
    except (json.JSONDecodeError, TypeError):
        return output_data

    if not isinstance(parsed, dict):
        return output_data

    for key in OUTPUT_FIELDS:
        value = parsed.get(key)
        if value:
            return (
                value if isinstance(value, str)
                else json.dumps(value, ensure_ascii=False, separators=(",", ":"))
            )

    return output_data


class _Substituter:
    """Walks a params structure and replaces placeholders in every string."""

    def __init__(self, results: Mapping[str, ExecutionResult]) -> None:
        self._results = results
        self._values: dict[str, str | None] = {}
        self.substituted: list[str] = []
        self.unresolved: list[str] = []

    def _value_for(self, task_id: str) -> str | None:
        if task_id not in self._values:
            result = self._results.get(task_id)
            if result is None or not result.succeeded or result.output_data is None:
                self._values[task_id] = None
            else:
                self._values[task_id] = extract_substitution_value(result.output_data)
        return self._values[task_id]

    def _replace(self, match: re.Match[str]) -> str:
        task_id = match.group(1)
        value = self._value_for(task_id)
        if value is None:
            if task_id not in self.unresolved:
                self.unresolved.append(task_id)
            return match.group(0)
        if task_id not in self.substituted:
            self.substituted.append(task_id)
        return value

    def walk(self, value: Any) -> Any:
        if isinstance(value, str):
            return PLACEHOLDER_PATTERN.sub(self._replace, value)
        if isinstance(value, dict):
            return {key: self.walk(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.walk(item) for item in value]
        return value


def resolve_params(
    params: Mapping[str, Any],
    results: Mapping[str, ExecutionResult],
) -> tuple[dict[str, Any], list[str], list[str]]:
    """Substitute placeholders throughout a params mapping.

    Args:
        params: Task params (nested mappings and sequences allowed)
        results: Results recorded so far, keyed by task id

    Returns:
        (new_params, substituted_ids, unresolved_ids). The input is not modified.
    """
    substituter = _Substituter(results)
    resolved = substituter.walk(dict(params))
    return resolved, substituter.substituted, substituter.unresolved


def resolve_task(task: Task, results: Mapping[str, ExecutionResult]) -> Resolution:
    """Return a copy of ``task`` with all resolvable placeholders substituted.

    Each placeholder is resolved independently against its own task's result,
    so one string may combine outputs from several dependencies.
    """
    params, substituted, unresolved = resolve_params(task.params, results)
    return Resolution(
        task=task.model_copy(update={"params": params}, deep=True),
        substituted=substituted,
        unresolved=unresolved,
    )
