"""Plan execution engine.

This module exports the components that turn a natural-language request into
dispatched worker tasks:
- Planning client and prompts for the LLM planning collaborator
- Dependency resolver for ``{{task_id}}`` placeholders
- Dispatch client and HTTP worker transport
- Sequential graph executor and the recovery subsystem
- LangGraph submit pipeline (plan -> execute -> report)
"""

from engine.capabilities import (
    AGENT_CAPABILITIES,
    AgentCapability,
    render_capability_catalogue,
)
from engine.dispatch import (
    DispatchClient,
    HttpWorkerClient,
    WorkerClient,
    WorkerProtocolError,
    WorkerRegistry,
    build_worker_registry,
    close_worker_registry,
)
from engine.executor import (
    ExecutionOutcome,
    GraphExecutor,
    create_executor,
)
from engine.graph import (
    SubmitGraph,
    SubmitState,
    create_submit_graph,
)
from engine.planner import (
    PlanningClient,
    PlanningError,
    assign_output_dir,
    derive_plan_label,
    find_forward_references,
    parse_plan,
)
from engine.recovery import RecoverySubsystem, propagate_output_dir
from engine.resolver import (
    PLACEHOLDER_PATTERN,
    Resolution,
    extract_substitution_value,
    resolve_params,
    resolve_task,
)
from engine.utils import (
    LLMClient,
    MockLLMClient,
    PlannerReply,
    extract_json_from_response,
)

__all__ = [
    # Capabilities
    "AGENT_CAPABILITIES",
    "AgentCapability",
    "render_capability_catalogue",
    # Dispatch
    "DispatchClient",
    "HttpWorkerClient",
    "WorkerClient",
    "WorkerProtocolError",
    "WorkerRegistry",
    "build_worker_registry",
    "close_worker_registry",
    # Executor
    "ExecutionOutcome",
    "GraphExecutor",
    "create_executor",
    # Submit graph
    "SubmitGraph",
    "SubmitState",
    "create_submit_graph",
    # Planning
    "PlanningClient",
    "PlanningError",
    "assign_output_dir",
    "derive_plan_label",
    "find_forward_references",
    "parse_plan",
    # Recovery
    "RecoverySubsystem",
    "propagate_output_dir",
    # Resolver
    "PLACEHOLDER_PATTERN",
    "Resolution",
    "extract_substitution_value",
    "resolve_params",
    "resolve_task",
    # Utils
    "LLMClient",
    "MockLLMClient",
    "PlannerReply",
    "extract_json_from_response",
]
