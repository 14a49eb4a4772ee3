"""Retry with exponential backoff for Graph API attempts.

The engine wraps a single physical attempt and decides, from its outcome,
whether to try again:

- 429 Too Many Requests: wait for the server's Retry-After hint when
  present, otherwise the computed backoff delay
- 5xx server errors: wait the computed backoff delay
- Transport failures (connection errors, timeouts): wait the computed
  backoff delay, or re-raise if no attempts remain
- Anything else: returned to the caller as-is

When every allowed attempt is throttled or fails with a 5xx, the engine
raises RetriesExhaustedError rather than surfacing the last response.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Protocol, TypeVar

import httpx

from outlook_mcp.core.errors import RetriesExhaustedError
from outlook_mcp.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 1.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_DELAY = 30.0  # seconds


class RetryableResponse(Protocol):
    """The parts of an HTTP response the engine inspects."""

    status_code: int
    headers: Any


R = TypeVar("R", bound=RetryableResponse)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff parameters, normally built from RetryConfig.

    Attributes:
        max_attempts: Total physical attempts allowed (including the first)
        initial_delay: Delay before the first retry, in seconds
        backoff_multiplier: Factor applied to the delay after each retry
        max_delay: Ceiling for the computed delay, in seconds
        jitter: Fraction of the computed delay added at random (0 disables)
        retry_on: Exception types treated as transport failures
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_delay: float = DEFAULT_INITIAL_DELAY
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_delay: float = DEFAULT_MAX_DELAY
    jitter: float = 0.0
    retry_on: tuple[type[BaseException], ...] = (httpx.TransportError,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be at least 1, got {self.backoff_multiplier}"
            )
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must not be smaller than "
                f"initial_delay ({self.initial_delay})"
            )


@dataclass(slots=True)
class RetryState:
    """Per-call retry bookkeeping. The delay never decreases and never exceeds max_delay."""

    max_attempts: int
    max_delay: float
    delay: float
    multiplier: float
    attempts: int = 0

    @classmethod
    def start(cls, policy: RetryPolicy) -> "RetryState":
        return cls(
            max_attempts=policy.max_attempts,
            max_delay=policy.max_delay,
            delay=min(policy.initial_delay, policy.max_delay),
            multiplier=policy.backoff_multiplier,
        )

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def advance(self) -> None:
        """Grow the delay for the next retry."""
        self.delay = min(self.delay * self.multiplier, self.max_delay)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds or as an HTTP date.

    Returns:
        Seconds to wait, or None when the header is missing or unparseable
    """
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=UTC)
        seconds = (when - datetime.now(UTC)).total_seconds()

    return max(seconds, 0.0)


class RetryEngine:
    """Runs an attempt function until it succeeds, fails permanently, or runs out of attempts.

    Example:
        engine = RetryEngine(RetryPolicy(max_attempts=5))
        response = await engine.run(lambda: http.send(request))
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def run(self, attempt_fn: Callable[[], Awaitable[R]]) -> R:
        """Execute ``attempt_fn`` with retries.

        Args:
            attempt_fn: Coroutine factory performing one physical attempt

        Returns:
            The first response that is not a 429 or 5xx

        Raises:
            RetriesExhaustedError: If every attempt returned 429 or 5xx
            Exception: The transport failure from the final attempt
        """
        state = RetryState.start(self.policy)

        while True:
            try:
                response = await attempt_fn()
            except self.policy.retry_on as e:
                state.attempts += 1
                if state.exhausted:
                    logger.warning(
                        "graph_transport_failed",
                        attempts=state.attempts,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise
                logger.warning(
                    "graph_transport_error_retrying",
                    attempt=state.attempts,
                    max_attempts=state.max_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                    delay=state.delay,
                )
                await self._wait(state, self._backoff(state))
                continue

            status = response.status_code
            if status == 429:
                state.attempts += 1
                if state.exhausted:
                    raise RetriesExhaustedError(state.attempts, last_response=response)
                hint = parse_retry_after(response.headers.get("Retry-After"))
                wait = hint if hint is not None else self._backoff(state)
                logger.warning(
                    "graph_throttled",
                    attempt=state.attempts,
                    max_attempts=state.max_attempts,
                    retry_after=hint,
                    delay=wait,
                )
                await self._wait(state, wait)
                continue

            if 500 <= status < 600:
                state.attempts += 1
                if state.exhausted:
                    raise RetriesExhaustedError(state.attempts, last_response=response)
                logger.warning(
                    "graph_server_error_retrying",
                    status_code=status,
                    attempt=state.attempts,
                    max_attempts=state.max_attempts,
                    delay=state.delay,
                )
                await self._wait(state, self._backoff(state))
                continue

            return response

    def _backoff(self, state: RetryState) -> float:
        """Computed delay for this retry, with optional upward jitter up to max_delay."""
        if self.policy.jitter <= 0:
            return state.delay
        jittered = state.delay + state.delay * self.policy.jitter * random.random()
        return min(jittered, self.policy.max_delay)

    async def _wait(self, state: RetryState, seconds: float) -> None:
        await self._sleep(seconds)
        state.advance()
