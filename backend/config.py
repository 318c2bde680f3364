"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Harbinger
task graph engine. All settings can be overridden via environment variables
or a .env file.
"""

import json
import logging
import os
import sys
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default worker fleet: one long-lived endpoint per agent.
DEFAULT_WORKER_ENDPOINTS: dict[str, str] = {
    "calendar": "http://localhost:50051",
    "gmail": "http://localhost:50052",
    "browser": "http://localhost:50053",
    "os": "http://localhost:50054",
    "humanizer": "http://localhost:50055",
    "interpreter": "http://localhost:50056",
    "planner": "http://localhost:50057",
    "codegen": "http://localhost:50058",
    "execution": "http://localhost:50059",
    "debugger": "http://localhost:50060",
    "qa": "http://localhost:50061",
    "reviewer": "http://localhost:50062",
    "dependency": "http://localhost:50063",
    "docs": "http://localhost:50064",
    "research": "http://localhost:50065",
    "memory": "http://localhost:50066",
    "excel": "http://localhost:50067",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        groq_api_key: API key for the Groq-hosted planning model.
        planner_model: Model used to turn free text into plans and fix plans.
        planner_fallback_model: Model tried once if the planner model keeps failing.
        planner_temperature: Sampling temperature for planning calls.
        llm_request_timeout_seconds: Timeout for a single LLM API call.
        llm_max_retries: Retries for transient LLM errors before fallback.
        worker_endpoints: Mapping of agent name to worker base URL.
        dispatch_timeout_seconds: Upper bound on a single worker call.
        health_check_timeout_seconds: Upper bound on a worker health check.
        max_task_retries: Re-dispatches allowed per task after a recovery.
        max_retained_runs: Finished runs kept for inspection; older ones are
            forgotten along with their event history.
        output_root: Base directory for per-plan artifact folders.
        output_dir_exempt_agents: Agents that never receive an output_dir hint.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Planning collaborator
    groq_api_key: str = ""
    # Model names must include provider prefix for LiteLLM (e.g., groq/, gemini/)
    planner_model: str = "groq/llama-3.3-70b-versatile"
    planner_fallback_model: str | None = None
    planner_temperature: float = 0.2
    llm_request_timeout_seconds: int = 120
    llm_max_retries: int = 3

    # Worker fleet
    worker_endpoints: dict[str, str] = DEFAULT_WORKER_ENDPOINTS
    dispatch_timeout_seconds: float = 120.0
    health_check_timeout_seconds: float = 5.0

    # Execution limits
    max_task_retries: int = 1
    max_retained_runs: int = 200

    # Artifact routing
    output_root: str = "Documents/Harbinger"
    output_dir_exempt_agents: str | list[str] = ["os", "calendar", "browser"]

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", "output_dir_exempt_agents", mode="before")
    @classmethod
    def parse_string_list(cls, v: Any) -> list[str]:
        """Parse a list setting from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'os,calendar,browser'
        - Single value: 'os'
        - Already a list: ["os"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            # Try JSON first
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            # Fallback to comma-separated
            return [item.strip() for item in v.split(",") if item.strip()]
        return []

    @field_validator("max_task_retries")
    @classmethod
    def check_retries(cls, v: int) -> int:
        """Reject negative retry budgets."""
        if v < 0:
            raise ValueError("max_task_retries must be >= 0")
        return v

    @field_validator("max_retained_runs")
    @classmethod
    def check_retained_runs(cls, v: int) -> int:
        """At least the most recent finished run is kept."""
        if v < 1:
            raise ValueError("max_retained_runs must be >= 1")
        return v

    model_config = SettingsConfigDict(
        # Support running from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def model_post_init(self, __context: Any) -> None:
        """Export the Groq API key to os.environ for LiteLLM discovery."""
        if self.groq_api_key:
            os.environ.setdefault("GROQ_API_KEY", self.groq_api_key)


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

# Create a logger for this module
logger = structlog.get_logger(__name__)
