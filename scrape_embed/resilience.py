"""
Resilience primitives for embedding provider calls.

- Semaphore:      FIFO concurrency gate, one slot released per completion
- RateLimiter:    token bucket, acquire() waits and never drops a request
- CircuitBreaker: closed → open → half-open → closed|open
- with_timeout / with_retry / with_resilience: composable async wrappers

Breaker and limiter take an injectable `clock` (seconds, monotonic) so
their time-dependent transitions can be tested without sleeping.
"""

import asyncio
import math
import random
import time
from collections import deque
from typing import Any, Awaitable, Callable, Literal, Optional, TypeVar

import httpx

from .exceptions import CircuitOpenError, ProviderTimeoutError
from .schemas import (
    CircuitBreakerConfig,
    RateLimitConfig,
    ResilienceConfig,
    ResilienceState,
    RetryConfig,
)
from .logger import get_module_logger

logger = get_module_logger("resilience")

T = TypeVar("T")

Clock = Callable[[], float]
CircuitState = Literal["closed", "open", "half-open"]
OnRetry = Callable[[int, BaseException, float], Any]

DEFAULT_RETRYABLE_STATUSES = (408, 429, 500, 502, 503, 504)

# OpenAI SDK class names that indicate a transient failure
RETRYABLE_EXCEPTION_NAMES = (
    "RateLimitError",
    "APITimeoutError",
    "APIConnectionError",
    "InternalServerError",
    "ServiceUnavailableError",
)

RETRYABLE_MESSAGES = ("timeout", "rate limit", "too many requests", "temporarily unavailable")

# Token bucket holds this many seconds worth of requests
RATE_LIMIT_BURST_SECONDS = 10

JITTER_RATIO = 0.1


# --- Error classification ---

def is_retryable_error(
    error: BaseException,
    retryable_statuses: tuple[int, ...] = DEFAULT_RETRYABLE_STATUSES
) -> bool:
    """
    Decide whether a failure is transient.

    Checked in order: HTTP status, explicit `retryable` flag, network/timeout
    exception types, SDK class names, and finally the message text.
    """
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if status is None and isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
    if isinstance(status, int):
        return status in retryable_statuses

    retryable = getattr(error, "retryable", None)
    if isinstance(retryable, bool):
        return retryable

    if isinstance(error, (TimeoutError, ConnectionError, httpx.TransportError)):
        return True

    if type(error).__name__ in RETRYABLE_EXCEPTION_NAMES:
        return True

    message = str(error).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


# --- Concurrency ---

class Semaphore:
    """
    Counting semaphore with strict arrival-order hand-off.

    A released slot goes directly to the longest waiter, so a late caller
    can never overtake a queued one.
    """

    def __init__(self, permits: int = 1):
        if permits < 1:
            raise ValueError(f"Semaphore needs at least one permit, got {permits}")
        self.permits = permits
        self._waiting: deque[asyncio.Future] = deque()

    @property
    def waiting(self) -> int:
        return len(self._waiting)

    async def acquire(self) -> None:
        if self.permits > 0:
            self.permits -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiting.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation; pass it on
                self.release()
            elif waiter in self._waiting:
                self._waiting.remove(waiter)
            raise

    def release(self) -> None:
        while self._waiting:
            waiter = self._waiting.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self.permits += 1

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn holding one slot; the slot is released on success and failure alike."""
        await self.acquire()
        try:
            return await fn()
        finally:
            self.release()


# --- Rate limiting ---

class RateLimiter:
    """
    Token bucket limiter.

    Refills at requests_per_minute / 60 per second and holds up to ten
    seconds worth of requests (at least one).
    """

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Clock = time.monotonic):
        config = config or RateLimitConfig()
        self.refill_rate = config.requests_per_minute / 60
        self.max_tokens = max(1, math.ceil(self.refill_rate * RATE_LIMIT_BURST_SECONDS))
        self.tokens = float(self.max_tokens)
        self._clock = clock
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def can_proceed(self) -> bool:
        self._refill()
        return self.tokens >= 1

    def try_acquire(self, tokens: int = 1) -> bool:
        """Take tokens if available. Never waits."""
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    async def acquire(self, tokens: int = 1) -> None:
        """Wait until tokens are available, then take them."""
        if self.try_acquire(tokens):
            return

        wait = (tokens - self.tokens) / self.refill_rate
        logger.debug(f"Rate limited, waiting {wait:.2f}s")
        await asyncio.sleep(wait)

        # Clock drift can leave the bucket just short
        while not self.try_acquire(tokens):
            await asyncio.sleep(1 / self.refill_rate)

    def get_wait_time(self) -> float:
        """Seconds until the next token is available."""
        self._refill()
        if self.tokens >= 1:
            return 0.0
        return (1 - self.tokens) / self.refill_rate


# --- Circuit breaker ---

class CircuitBreaker:
    """
    Stops calling a failing provider.

    Opens after `failure_threshold` consecutive failures, rejects calls for
    `reset_timeout_seconds`, then lets one trial call through (half-open).
    A success closes it; a failure while half-open opens it again.
    """

    def __init__(self, config: Optional[CircuitBreakerConfig] = None, clock: Clock = time.monotonic):
        config = config or CircuitBreakerConfig()
        self.failure_threshold = config.failure_threshold
        self.reset_timeout = config.reset_timeout_seconds
        self._clock = clock
        self._state: CircuitState = "closed"
        self.failures = 0
        self.next_attempt_time: Optional[float] = None
        # When the half-open trial was handed out; None while no trial is running
        self._trial_started: Optional[float] = None

    def _update_state(self) -> None:
        if self._state == "open" and self.next_attempt_time is not None \
                and self._clock() >= self.next_attempt_time:
            self._state = "half-open"
            logger.info("Circuit breaker half-open, allowing a trial call")

    def is_open(self) -> bool:
        self._update_state()
        return self._state == "open"

    def allow_request(self) -> bool:
        """
        Gate a call. Closed lets everything through, open nothing.

        Half-open hands out a single trial until it is recorded. A trial that
        is never recorded (cancelled caller) expires after reset_timeout_seconds.
        """
        self._update_state()
        if self._state == "closed":
            return True
        if self._state == "open":
            return False

        now = self._clock()
        if self._trial_started is not None and now < self._trial_started + self.reset_timeout:
            return False
        self._trial_started = now
        return True

    def get_state(self) -> CircuitState:
        self._update_state()
        return self._state

    def record_success(self) -> None:
        if self._state != "closed":
            logger.info("Circuit breaker closed")
        self._state = "closed"
        self.failures = 0
        self.next_attempt_time = None
        self._trial_started = None

    def record_failure(self) -> None:
        self._update_state()
        self.failures += 1

        if self._state == "half-open" or self.failures >= self.failure_threshold:
            if self._state != "open":
                logger.warning(f"Circuit breaker opened after {self.failures} failures")
            self._state = "open"
            self.next_attempt_time = self._clock() + self.reset_timeout
        self._trial_started = None

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        if not self.allow_request():
            remaining = max(0.0, (self.next_attempt_time or 0) - self._clock())
            raise CircuitOpenError(
                f"Circuit breaker is open. Next attempt in {remaining:.1f}s",
                details={"failures": self.failures}
            )

        try:
            result = await fn()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        self._state = "closed"
        self.failures = 0
        self.next_attempt_time = None
        self._trial_started = None


# --- Wrappers ---

async def with_timeout(
    fn: Callable[[asyncio.Event], Awaitable[T]],
    timeout_seconds: float,
    provider: str = "unknown"
) -> T:
    """
    Run fn(signal) with a deadline.

    On timeout the in-flight call is cancelled, `signal` is set for callees
    that poll it, and a retryable ProviderTimeoutError is raised.
    """
    signal = asyncio.Event()
    try:
        return await asyncio.wait_for(fn(signal), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        signal.set()
        raise ProviderTimeoutError(
            f"Request timed out after {timeout_seconds}s",
            provider=provider,
            details={"timeout_seconds": timeout_seconds}
        )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[OnRetry] = None
) -> tuple[T, int]:
    """
    Run fn, retrying transient failures with exponential backoff (±10% jitter).

    Returns:
        (result, attempts used)

    Raises:
        The last error once attempts are exhausted, or the first terminal error
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await fn(), attempt
        except Exception as e:
            if attempt == config.max_attempts or not is_retryable_error(e, config.retryable_statuses):
                raise

            delay = config.backoff_seconds * config.backoff_multiplier ** (attempt - 1)
            delay *= 1 - JITTER_RATIO + random.random() * 2 * JITTER_RATIO

            logger.warning(f"Attempt {attempt}/{config.max_attempts} failed ({e}), retrying in {delay:.2f}s")

            if on_retry is not None:
                on_retry(attempt, e, delay)

            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("Retry loop exited without a result")


async def with_resilience(
    fn: Callable[[asyncio.Event], Awaitable[T]],
    config: Optional[ResilienceConfig] = None,
    state: Optional[ResilienceState] = None,
    on_retry: Optional[OnRetry] = None,
    provider: str = "unknown"
) -> tuple[T, int]:
    """
    Compose breaker check, rate limit, concurrency gate, timeout and retry.

    Breaker/limiter/semaphore come from `state`; any of them may be absent.

    Returns:
        (result, attempts used)
    """
    config = config or ResilienceConfig()
    breaker = state.circuit_breaker if state else None
    limiter = state.rate_limiter if state else None
    semaphore = state.semaphore if state else None

    if breaker is not None and not breaker.allow_request():
        raise CircuitOpenError("Circuit breaker is open")

    if limiter is not None:
        await limiter.acquire()

    async def attempt() -> T:
        return await with_timeout(fn, config.timeout_seconds, provider=provider)

    async def run() -> tuple[T, int]:
        try:
            outcome = await with_retry(attempt, config.retry, on_retry)
        except Exception:
            if breaker is not None:
                breaker.record_failure()
            raise
        if breaker is not None:
            breaker.record_success()
        return outcome

    if semaphore is not None:
        return await semaphore.execute(run)
    return await run()
