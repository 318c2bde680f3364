"""Event type definitions for the engine event system.

Every meaningful state change of a plan run produces an event: task
dispatches and results, skips, recovery attempts and halts.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types emitted while a plan runs.

    Events are categorized by:
    - Run lifecycle: start, plan generation, completion and errors
    - Task lifecycle: skip, dispatch, success and failure
    - Recovery: fix plan generation and outcome
    - Observability: LLM call metrics
    """

    # Run lifecycle
    RUN_STARTED = "run_started"
    PLAN_GENERATED = "plan_generated"
    PLAN_HALTED = "plan_halted"
    RUN_COMPLETE = "run_complete"
    RUN_ERROR = "run_error"
    RUN_CLOSED = "run_closed"

    # Task lifecycle
    TASK_SKIPPED = "task_skipped"
    TASK_DISPATCHED = "task_dispatched"
    TASK_COMPLETE = "task_complete"
    TASK_FAILED = "task_failed"
    PLACEHOLDER_UNRESOLVED = "placeholder_unresolved"

    # Recovery
    RECOVERY_STARTED = "recovery_started"
    FIX_PLAN_GENERATED = "fix_plan_generated"
    RECOVERY_COMPLETE = "recovery_complete"
    RECOVERY_FAILED = "recovery_failed"

    # Observability
    LLM_CALL_COMPLETE = "llm_call_complete"


class EngineEvent(BaseModel):
    """An event emitted during plan execution.

    Each event includes:
    - type: The category of event (from EventType enum)
    - timestamp: Unix timestamp when the event occurred
    - run_id: Which plan run this event belongs to
    - task_id: Which task produced this event (if applicable)
    - fix_plan: True when the task belongs to a fix plan
    - data: Event-specific payload

    Payload schemas by event type:

    PLAN_GENERATED:
        - label: str - Plan label
        - tasks: list - Task dicts in authored order
        - forward_references: list - Dependencies that do not point backwards

    TASK_SKIPPED:
        - missing_dependencies: list - Dependencies absent or not successful

    TASK_DISPATCHED:
        - agent: str - Target agent
        - action: str - Action name
        - attempt: int - 1-based attempt number

    TASK_COMPLETE / TASK_FAILED:
        - status: str - success or fail
        - error_message: Optional[str]
        - failure_kind: Optional[str]

    RECOVERY_STARTED:
        - error: str - The error being repaired

    FIX_PLAN_GENERATED:
        - task_count: int - Steps in the fix plan

    PLAN_HALTED:
        - not_attempted: list - Task ids never tried
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    run_id: str
    task_id: str | None = None
    fix_plan: bool = False
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "task_dispatched",
                    "timestamp": 1699876543.123,
                    "run_id": "run_abc123",
                    "task_id": "1",
                    "fix_plan": False,
                    "data": {
                        "agent": "browser",
                        "action": "browser.search",
                        "attempt": 1,
                    },
                }
            ]
        }
    }


class LLMMetrics(BaseModel):
    """Token and latency metrics for a single LLM call.

    Attributes:
        model: The model identifier (e.g., "groq/llama-3.3-70b-versatile")
        input_tokens: Number of tokens in the prompt
        output_tokens: Number of tokens in the response
        latency_ms: Time taken for the LLM call in milliseconds
    """

    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used in this call."""
        return self.input_tokens + self.output_tokens
