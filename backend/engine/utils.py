"""LLM access for the planning collaborator.

Every planning call asks the provider for a single JSON object, so the
client here exposes one operation, ``complete_json``. Transient provider
errors are retried with capped exponential backoff, then the configured
fallback model gets one attempt. ``extract_json_from_response`` recovers
the object when a model wraps it in prose or a code fence anyway.
"""

import asyncio
import json
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings
from events.bus import EventBus
from events.types import EngineEvent, EventType, LLMMetrics

if TYPE_CHECKING:
    from metrics import MetricsCollector

logger = structlog.get_logger()

TRANSIENT_ERRORS = (RateLimitError, ServiceUnavailableError, Timeout)
MAX_BACKOFF_SECONDS = 4.0

JSON_OBJECT_FORMAT = {"type": "json_object"}


@dataclass
class PlannerReply:
    """Text of a planning completion and what it cost."""

    content: str
    metrics: LLMMetrics


class LLMClient:
    """JSON-mode completions through LiteLLM for plan and fix-plan generation.

    Attributes:
        default_model: Model used when a call names none
        fallback_model: Model tried once after the primary exhausts its retries
        retry_attempts: Retries of the primary model on transient errors
        retry_delay: Base backoff in seconds, doubled per attempt
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        default_model: str | None = None,
        fallback_model: str | None = None,
        retry_attempts: int | None = None,
        retry_delay: float = 1.0,
        metrics_collector: Optional["MetricsCollector"] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.event_bus = event_bus
        self.default_model = default_model or settings.planner_model
        self.fallback_model = fallback_model or settings.planner_fallback_model
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None else settings.llm_max_retries
        )
        self.retry_delay = retry_delay
        self.metrics_collector = metrics_collector
        self._sleep = sleep

    async def complete_json(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float = 0.0,
        run_id: str | None = None,
    ) -> PlannerReply:
        """Request a JSON object completion.

        Raises:
            AuthenticationError, BadRequestError: Immediately, without retry.
            The primary model's last transient error: When the fallback is
            missing, identical to the primary, or also fails.
        """
        primary = model or self.default_model
        started = time.monotonic()

        try:
            response = await self._with_retries(messages, primary, temperature)
            used = primary
        except TRANSIENT_ERRORS as primary_error:
            if not self.fallback_model or self.fallback_model == primary:
                raise
            logger.warning(
                "llm_fallback_attempt",
                primary_model=primary,
                fallback_model=self.fallback_model,
                primary_error=str(primary_error),
            )
            try:
                response = await self._request(messages, self.fallback_model, temperature)
            except Exception as fallback_error:
                logger.error(
                    "llm_fallback_failed",
                    fallback_model=self.fallback_model,
                    error_type=type(fallback_error).__name__,
                    error=str(fallback_error),
                )
                raise primary_error from fallback_error
            used = self.fallback_model

        reply = _to_reply(response, used, int((time.monotonic() - started) * 1000))
        await self._record(reply.metrics, run_id)
        logger.info(
            "llm_call_complete",
            run_id=run_id,
            model=used,
            input_tokens=reply.metrics.input_tokens,
            output_tokens=reply.metrics.output_tokens,
            latency_ms=reply.metrics.latency_ms,
        )
        return reply

    async def _with_retries(
        self, messages: list[dict[str, str]], model: str, temperature: float
    ) -> ModelResponse:
        for attempt in range(self.retry_attempts + 1):
            try:
                return await self._request(messages, model, temperature)
            except (AuthenticationError, BadRequestError) as e:
                logger.error(
                    "llm_call_rejected",
                    model=model,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise
            except TRANSIENT_ERRORS as e:
                if attempt == self.retry_attempts:
                    logger.error(
                        "llm_call_failed_all_retries",
                        model=model,
                        attempts=attempt + 1,
                        error_type=type(e).__name__,
                    )
                    raise
                delay = min(self.retry_delay * 2**attempt, MAX_BACKOFF_SECONDS)
                logger.warning(
                    "llm_call_retry",
                    model=model,
                    attempt=attempt + 1,
                    error_type=type(e).__name__,
                    retry_delay=delay,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")

    async def _request(
        self, messages: list[dict[str, str]], model: str, temperature: float
    ) -> ModelResponse:
        return await acompletion(
            model=model,
            messages=messages,
            temperature=temperature,
            timeout=settings.llm_request_timeout_seconds,
            response_format=JSON_OBJECT_FORMAT,
        )

    async def _record(self, metrics: LLMMetrics, run_id: str | None) -> None:
        if not run_id:
            return
        if self.metrics_collector:
            self.metrics_collector.record_llm_call(
                run_id,
                prompt_tokens=metrics.input_tokens,
                completion_tokens=metrics.output_tokens,
            )
        if self.event_bus:
            await self.event_bus.publish(
                EngineEvent(
                    type=EventType.LLM_CALL_COMPLETE,
                    run_id=run_id,
                    data=metrics.model_dump(),
                )
            )


def _to_reply(response: ModelResponse, model: str, latency_ms: int) -> PlannerReply:
    usage = getattr(response, "usage", None)
    return PlannerReply(
        content=response.choices[0].message.content or "",
        metrics=LLMMetrics(
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
        ),
    )


_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_decoder = json.JSONDecoder()


def _first_object(text: str) -> dict[str, Any] | None:
    for brace in re.finditer(r"\{", text):
        try:
            value, _ = _decoder.raw_decode(text, brace.start())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def extract_json_from_response(response: str) -> dict[str, Any] | None:
    """Return the first JSON object in ``response``, or None.

    Fenced code blocks are searched before the raw text.
    """
    blocks = [m.group(1) for m in _FENCED_BLOCK.finditer(response)]
    for text in (*blocks, response):
        found = _first_object(text)
        if found is not None:
            return found
    return None


class MockLLMClient(LLMClient):
    """Returns scripted replies in order and records each call.

    Raises IndexError once the script is exhausted.
    """

    def __init__(self, responses: list[PlannerReply] | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.responses = list(responses) if responses else []
        self.call_history: list[dict[str, Any]] = []

    async def complete_json(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float = 0.0,
        run_id: str | None = None,
    ) -> PlannerReply:
        self.call_history.append({
            "messages": messages,
            "model": model or self.default_model,
            "temperature": temperature,
            "run_id": run_id,
        })
        if len(self.call_history) > len(self.responses):
            raise IndexError("No more mock responses available")
        return self.responses[len(self.call_history) - 1]
