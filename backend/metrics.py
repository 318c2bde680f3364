"""In-memory metrics collection for active plan runs.

This module provides the MetricsCollector class that accumulates LLM token
usage, dispatch counts and recovery outcomes for running plans. Finished
runs hand their numbers back to the caller and are dropped.

Usage:
    >>> from metrics import MetricsCollector
    >>> collector = MetricsCollector()
    >>> collector.start("run_abc123")
    >>> collector.record_llm_call("run_abc123", prompt_tokens=100, completion_tokens=50)
    >>> collector.record_dispatch("run_abc123", succeeded=True)
    >>> final = collector.finish("run_abc123")
"""

import time
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RunMetricsData:
    """Accumulated metrics for a single plan run.

    Attributes:
        prompt_tokens: Total input tokens across planning calls.
        completion_tokens: Total output tokens across planning calls.
        llm_calls: Number of planning-collaborator invocations.
        dispatch_calls: Number of worker dispatches, fix plans included.
        failed_dispatches: Dispatches that returned a fail result.
        recoveries_attempted: Times the recovery subsystem was invoked.
        recoveries_succeeded: Recoveries that reported success.
        duration_ms: Total execution time in milliseconds (set by finish()).
        started_at: Unix timestamp when tracking began.
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    llm_calls: int = 0
    dispatch_calls: int = 0
    failed_dispatches: int = 0
    recoveries_attempted: int = 0
    recoveries_succeeded: int = 0
    duration_ms: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, int]:
        """Convert to a plain dict for reporting."""
        return {
            "total_tokens": self.total_tokens,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "llm_calls": self.llm_calls,
            "dispatch_calls": self.dispatch_calls,
            "failed_dispatches": self.failed_dispatches,
            "recoveries_attempted": self.recoveries_attempted,
            "recoveries_succeeded": self.recoveries_succeeded,
            "duration_ms": self.duration_ms,
        }


class MetricsCollector:
    """In-memory collector that tracks per-run metrics.

    Runs are independent; each gets its own RunMetricsData. Recording
    against an unknown run id is a logged no-op.
    """

    def __init__(self) -> None:
        """Initialize an empty metrics collector."""
        self._runs: dict[str, RunMetricsData] = {}
        logger.info("metrics_collector_initialized")

    def start(self, run_id: str) -> None:
        """Begin tracking metrics for a run; no-op if already tracked."""
        if run_id in self._runs:
            logger.debug("metrics_already_tracking", run_id=run_id)
            return

        self._runs[run_id] = RunMetricsData()
        logger.debug("metrics_tracking_started", run_id=run_id)

    def _get_or_warn(self, run_id: str, event: str) -> RunMetricsData | None:
        data = self._runs.get(run_id)
        if data is None:
            logger.warning(event, run_id=run_id)
        return data

    def record_llm_call(
        self,
        run_id: str,
        prompt_tokens: int,
        completion_tokens: int,
    ) -> None:
        """Record token usage from a single planning call.

        Args:
            run_id: The run the call belongs to.
            prompt_tokens: Number of input tokens used.
            completion_tokens: Number of output tokens used.
        """
        data = self._get_or_warn(run_id, "metrics_llm_no_run")
        if data is None:
            return

        data.prompt_tokens += prompt_tokens
        data.completion_tokens += completion_tokens
        data.llm_calls += 1

    def record_dispatch(self, run_id: str, *, succeeded: bool) -> None:
        """Count one worker dispatch."""
        data = self._get_or_warn(run_id, "metrics_dispatch_no_run")
        if data is None:
            return

        data.dispatch_calls += 1
        if not succeeded:
            data.failed_dispatches += 1

    def record_recovery(self, run_id: str, *, succeeded: bool) -> None:
        """Count one recovery attempt and its outcome."""
        data = self._get_or_warn(run_id, "metrics_recovery_no_run")
        if data is None:
            return

        data.recoveries_attempted += 1
        if succeeded:
            data.recoveries_succeeded += 1

    def finish(self, run_id: str) -> RunMetricsData | None:
        """Finalize metrics for a run and stop tracking it.

        Args:
            run_id: The run to finalize.

        Returns:
            The final RunMetricsData with duration_ms set, or None if not tracked.
        """
        data = self._runs.pop(run_id, None)
        if data is None:
            logger.warning("metrics_finish_no_run", run_id=run_id)
            return None

        data.duration_ms = int((time.time() - data.started_at) * 1000)

        logger.info(
            "metrics_run_finished",
            run_id=run_id,
            **data.to_dict(),
        )

        return data

    def get(self, run_id: str) -> RunMetricsData | None:
        """Get in-progress metrics for a run without removing them."""
        return self._runs.get(run_id)
