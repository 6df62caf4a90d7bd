"""Retry/backoff executor for backend calls.

Operations are retried as whole units, so they must be safe to repeat:
a failed streaming attempt may have written to the terminal, but it never
appended anything to the history.
"""

import logging
import threading
import time
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from streamchat.errors import (
    CallCancelledError,
    RetryExhaustedError,
    TransientError,
    check_cancelled,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 7
DEFAULT_INITIAL_DELAY = 3.0


def _log_retry(retry_state: RetryCallState) -> None:
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "try %d, transient error %s, retrying after %.1fs",
        retry_state.attempt_number,
        error,
        delay,
    )


def retry_call(
    operation: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    *,
    retry_on: tuple[type[BaseException], ...] = (TransientError,),
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call operation, retrying transient failures with exponential backoff.

    Delays are initial_delay, then doubled after every failure. Exceptions
    outside retry_on propagate unchanged on their first occurrence.

    Args:
        operation: Zero-argument callable to invoke.
        max_attempts: Total attempts, including the first.
        initial_delay: Seconds to sleep after the first failure.
        retry_on: Exception types considered transient.
        cancel: Optional event aborting between attempts and during backoff.
        sleep: Sleep function override (tests).
        clock: Monotonic clock used to measure elapsed time.

    Returns:
        The operation's result from the first successful attempt.

    Raises:
        RetryExhaustedError: After max_attempts transient failures.
        CallCancelledError: If cancel is set.
    """
    if max_attempts <= 0:
        raise ValueError("max_attempts must be positive")

    def backoff(seconds: float) -> None:
        check_cancelled(cancel)
        if sleep is not None:
            sleep(seconds)
        elif cancel is not None:
            if cancel.wait(seconds):
                raise CallCancelledError("call cancelled during backoff")
        else:
            time.sleep(seconds)

    def attempt() -> T:
        check_cancelled(cancel)
        return operation()

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=initial_delay, exp_base=2),
        retry=retry_if_exception_type(retry_on),
        sleep=backoff,
        before_sleep=_log_retry,
        reraise=False,
    )

    start = clock()
    try:
        return retrying(attempt)
    except RetryError as exc:
        last = exc.last_attempt
        raise RetryExhaustedError(
            last_error=last.exception(),
            attempts=last.attempt_number,
            elapsed=clock() - start,
        ) from last.exception()
