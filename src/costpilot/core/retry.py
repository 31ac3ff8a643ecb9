"""Retry with exponential backoff and jitter.

``retry_call`` is a plain function taking the operation and a ``RetryPolicy``
value. It does not know about recommendations: callers observe each attempt
through the ``on_attempt`` hook. Sleeping and randomness are injectable so
callers (and tests) control time.
"""

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar
import logging

import httpx

from .exceptions import TransientExecutionError, FatalExecutionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_HTTPX_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    httpx.ProxyError,
)

MAX_ERROR_LENGTH = 500


def _is_server_status(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 500 <= value <= 599


def is_transient_error(error: BaseException) -> bool:
    """Connection-level failures and 5xx responses are transient. Everything else is fatal."""
    if isinstance(error, TransientExecutionError):
        return True
    if isinstance(error, FatalExecutionError):
        return False
    if isinstance(error, httpx.HTTPStatusError):
        return _is_server_status(error.response.status_code)
    if isinstance(error, _TRANSIENT_HTTPX_ERRORS):
        return True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    for attribute in ("status_code", "status"):
        if _is_server_status(getattr(error, attribute, None)):
            return True
    return False


def format_error(error: BaseException) -> str:
    """One-line, human-readable description of an error (never a traceback)"""
    message = str(error).strip()
    first_line = message.splitlines()[0] if message else ""
    text = f"{type(error).__name__}: {first_line}" if first_line else type(error).__name__
    if len(text) > MAX_ERROR_LENGTH:
        text = text[:MAX_ERROR_LENGTH - 3] + "..."
    return text


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between"""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter_ratio: float = 0.3
    is_retryable: Callable[[BaseException], bool] = is_transient_error

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError("jitter_ratio must be between 0 and 1")

    @classmethod
    def from_config(cls, execution_config) -> "RetryPolicy":
        """Build a policy from an ``ExecutionConfig`` section"""
        return cls(
            max_attempts=execution_config.max_attempts,
            base_delay=execution_config.base_delay_seconds,
            max_delay=execution_config.max_delay_seconds,
            jitter_ratio=execution_config.jitter_ratio,
        )

    def compute_delay(self, retry_number: int, rng: Optional[random.Random] = None) -> float:
        """Delay before retry ``retry_number`` (0 for the first retry).

        min(base * 2^n, max) plus up to ``jitter_ratio`` of that value.
        """
        delay = min(self.base_delay * (2 ** retry_number), self.max_delay)
        uniform = rng.uniform if rng is not None else random.uniform
        return delay + uniform(0, self.jitter_ratio * delay)


# on_attempt(attempt_number, error, will_retry, duration_seconds)
AttemptHook = Callable[[int, Optional[BaseException], bool, float], None]


def retry_call(operation: Callable[[], T],
               policy: RetryPolicy,
               sleep: Callable[[float], None] = time.sleep,
               on_attempt: Optional[AttemptHook] = None,
               rng: Optional[random.Random] = None) -> T:
    """Call ``operation`` until it succeeds, fails fatally or runs out of attempts.

    Returns the operation's result. Re-raises the last error when the error is
    not retryable or the attempt budget is exhausted.
    """
    retry_number = 0
    for attempt in range(1, policy.max_attempts + 1):
        started = time.monotonic()
        try:
            result = operation()
        except Exception as e:
            duration = time.monotonic() - started
            retryable = policy.is_retryable(e)
            will_retry = retryable and attempt < policy.max_attempts
            if on_attempt:
                on_attempt(attempt, e, will_retry, duration)

            if not will_retry:
                if retryable:
                    logger.error(f"Retries exhausted after {attempt} attempts: {format_error(e)}")
                raise

            delay = policy.compute_delay(retry_number, rng)
            retry_number += 1
            logger.warning(
                f"Attempt {attempt}/{policy.max_attempts} failed, retrying in {delay:.2f}s: {format_error(e)}"
            )
            sleep(delay)
            continue

        if on_attempt:
            on_attempt(attempt, None, False, time.monotonic() - started)
        if attempt > 1:
            logger.info(f"Operation succeeded on attempt {attempt}/{policy.max_attempts}")
        return result

    # max_attempts >= 1 guarantees the loop either returns or raises
    raise RuntimeError("retry loop exited without a result")
