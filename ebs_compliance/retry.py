"""Bounded exponential-backoff retries for AWS calls."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .utils import error_code

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERROR_CODES = frozenset(
    {
        "InternalError",
        "InternalFailure",
        "RequestLimitExceeded",
        "RequestThrottled",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "Unavailable",
    }
)


class RetryExhaustedError(RuntimeError):
    """Raised when an operation keeps failing after every allowed attempt."""

    def __init__(self, description: str, attempts: int) -> None:
        super().__init__(f"'{description}' failed after {attempts} attempts")
        self.description = description
        self.attempts = attempts


def is_retryable(exc: BaseException) -> bool:
    """Return ``True`` for transient network and throttling failures."""

    if isinstance(exc, (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)):
        return True
    if isinstance(exc, ClientError):
        return error_code(exc) in RETRYABLE_ERROR_CODES
    return False


class RetryPolicy:
    """Run a callable, retrying transient failures with doubling delays.

    After each failed attempt the policy sleeps for the current delay and then
    doubles it, so the worst case waits ``initial_delay * (2**max_retries - 1)``
    seconds before :class:`RetryExhaustedError` is raised. Errors rejected by
    ``retryable`` propagate immediately.
    """

    def __init__(
        self,
        max_retries: int = 5,
        initial_delay: float = 5.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
        retryable: Callable[[BaseException], bool] = is_retryable,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if initial_delay < 0:
            raise ValueError("initial_delay must not be negative")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self._sleep = sleep
        self._retryable = retryable

    def call(self, func: Callable[..., T], *args, description: str = "", **kwargs) -> T:
        """Invoke ``func(*args, **kwargs)`` under the retry policy.

        Only use this for idempotent operations.
        """

        return self._run(lambda: func(*args, **kwargs), description or _describe(func))

    def call_with_reconcile(
        self,
        func: Callable[[], T],
        reconcile: Callable[[], Optional[T]],
        *,
        description: str = "",
    ) -> T:
        """Invoke a mutating ``func``, checking ``reconcile`` before each retry.

        ``reconcile`` returns the outcome of an earlier attempt that reached the
        provider despite reporting an error, or ``None`` when nothing landed.
        """

        description = description or _describe(func)
        state = {"attempted": False}

        def attempt() -> T:
            if state["attempted"]:
                existing = reconcile()
                if existing is not None:
                    logger.info(
                        "Earlier attempt of '%s' already succeeded; reusing result", description
                    )
                    return existing
            state["attempted"] = True
            return func()

        return self._run(attempt, description)

    def _run(self, attempt: Callable[[], T], description: str) -> T:
        delay = self.initial_delay
        last_error: Optional[Exception] = None
        for number in range(1, self.max_retries + 1):
            logger.debug("Attempt %d: running '%s'", number, description)
            try:
                result = attempt()
            except Exception as exc:
                if not self._retryable(exc):
                    raise
                logger.warning(
                    "'%s' failed (%s). Retrying in %s seconds...", description, exc, delay
                )
                self._sleep(delay)
                delay *= 2
                last_error = exc
                continue
            if number > 1:
                logger.info("'%s' succeeded on attempt %d", description, number)
            return result

        raise RetryExhaustedError(description, self.max_retries) from last_error


def _describe(func: Callable[..., object]) -> str:
    return getattr(func, "__name__", None) or repr(func)


__all__ = ["RETRYABLE_ERROR_CODES", "RetryExhaustedError", "RetryPolicy", "is_retryable"]
