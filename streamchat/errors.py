"""Exception taxonomy for streamchat.

Transient errors (transport and decode failures) are retried by the
executor in ``streamchat.retry``; everything else surfaces immediately.
"""

import threading
from typing import Any, Optional


class ChatError(Exception):
    """Base exception for streamchat."""

    code = "CHAT_000"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(ChatError):
    """Invalid construction, e.g. a multiplexer with unordered capacities."""

    code = "CHAT_001"


class RoleUnknownError(ChatError):
    """A message carries a role outside system/user/assistant."""

    code = "CHAT_002"


class EstimationError(ChatError):
    """Token estimation itself failed."""

    code = "CHAT_003"


class TransientError(ChatError):
    """Retryable failure talking to a backend."""

    code = "CHAT_100"


class TransportError(TransientError):
    """Network or protocol level failure."""

    code = "CHAT_101"


class DecodeError(TransientError):
    """A received stream event could not be parsed."""

    code = "CHAT_102"


class RequestRejectedError(ChatError):
    """The backend refused the request itself, e.g. bad credentials or an invalid body."""

    code = "CHAT_004"


# Client-side statuses that still succeed on a later attempt.
RETRYABLE_CLIENT_STATUSES = frozenset({408, 409, 429})


def is_rejection(status: int | None) -> bool:
    """True for 4xx statuses that repeating the request cannot fix."""
    if status is None:
        return False
    return 400 <= status < 500 and status not in RETRYABLE_CLIENT_STATUSES


class UnexpectedFinishReasonError(ChatError):
    """The backend reported a completion state other than stop or length."""

    code = "CHAT_200"


class CapacityExhaustedError(ChatError):
    """The history does not fit any available backend."""

    code = "CHAT_201"


class RetryExhaustedError(ChatError):
    """The attempt budget was spent without a success."""

    code = "CHAT_202"

    def __init__(self, last_error: BaseException, attempts: int, elapsed: float):
        self.last_error = last_error
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"{last_error} after {attempts} tries, {elapsed:.1f}s",
            details={"attempts": attempts, "elapsed": elapsed},
        )


class CallCancelledError(ChatError):
    """An in-flight call was aborted by the caller."""

    code = "CHAT_300"


def check_cancelled(cancel: threading.Event | None) -> None:
    """Raise CallCancelledError if the cancel event is set."""
    if cancel is not None and cancel.is_set():
        raise CallCancelledError("call cancelled")
