"""Retry-with-backoff policy shared by provider fetches, classification and store calls."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..errors import StepTimeoutError, is_transient

T = TypeVar("T")


def call_with_timeout(fn: Callable[..., T], timeout: float | None, *args: Any, **kwargs: Any) -> T:
    """Run ``fn`` and raise :class:`StepTimeoutError` if it outlives ``timeout`` seconds."""

    if timeout is None:
        return fn(*args, **kwargs)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="timed-call")
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as exc:
        future.cancel()
        name = getattr(fn, "__qualname__", repr(fn))
        raise StepTimeoutError(f"{name} timed out after {timeout:.1f}s") from exc
    finally:
        # A call stuck past its deadline keeps its worker; do not block on it.
        executor.shutdown(wait=False)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter and a permanent-error bail-out.

    ``max_attempts`` counts the first call. ``is_retryable`` decides whether an
    exception is transient; anything else is re-raised immediately. Timeouts
    raised by :func:`call_with_timeout` are transient under the default
    predicate.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: bool = True
    timeout: float | None = None
    is_retryable: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")

    def attempts(
        self,
        logger: structlog.BoundLogger | None = None,
        **context: Any,
    ) -> Retrying:
        """Return a tenacity iterator for call sites that need the attempt number."""

        log = logger or structlog.get_logger("headline_harvester.retry")

        def _before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            log.warning(
                "retrying_after_error",
                attempt=state.attempt_number,
                max_attempts=self.max_attempts,
                delay=round(delay, 3),
                error=str(error),
                error_type=type(error).__name__ if error else None,
                **context,
            )

        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception(self.is_retryable),
            reraise=True,
            sleep=self.sleep,
            before_sleep=_before_sleep,
        )

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        logger: structlog.BoundLogger | None = None,
        context: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> T:
        retrying = self.attempts(logger, **(context or {}))
        return retrying(call_with_timeout, fn, self.timeout, *args, **kwargs)

    def _wait(self):
        strategy = wait_exponential(
            multiplier=self.initial_delay,
            exp_base=self.multiplier,
            min=self.initial_delay,
            max=self.max_delay,
        )
        if self.jitter and self.initial_delay > 0:
            strategy = strategy + wait_random(0, self.initial_delay)
        return strategy


__all__ = ["RetryPolicy", "call_with_timeout"]
