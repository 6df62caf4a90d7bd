"""Base protocol and data types for model backends."""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, TextIO, TypedDict, runtime_checkable

from streamchat.errors import RoleUnknownError


class Role(str, Enum):
    """Roles a message can carry."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(Enum):
    """Why a completion ended, independent of provider codes."""
    STOP = "stop"
    LENGTH = "length"
    UNKNOWN = "unknown"


class Message(TypedDict):
    """A single message in a conversation."""
    role: str
    content: str


@dataclass(frozen=True)
class Response:
    """A fully assembled completion."""
    content: str
    finish_reason: FinishReason


def validate_roles(messages: list[Message]) -> list[Role]:
    """Check that every message carries a known role.

    Args:
        messages: Conversation messages.

    Returns:
        The parsed roles, in message order.

    Raises:
        RoleUnknownError: If any message has a role outside system/user/assistant.
    """
    roles = []
    for index, message in enumerate(messages):
        try:
            roles.append(Role(message["role"]))
        except ValueError:
            raise RoleUnknownError(
                f"unknown role: {message['role']!r}",
                details={"index": index},
            ) from None
    return roles


@runtime_checkable
class ModelBackend(Protocol):
    """Protocol that all model backends must implement.

    Backends wrap LLM clients and provide a unified interface for:
    - Reporting their context window capacity
    - Estimating tokens for a list of messages
    - Streaming a completion to a text sink
    """

    def max_tokens(self) -> int:
        """Return the maximum context window in tokens."""
        ...

    def token_estimate(self, messages: list[Message]) -> int:
        """Estimate tokens the backend would consume for the messages.

        Args:
            messages: List of messages to estimate.

        Returns:
            Estimated token count. Over-estimates are safe.

        Raises:
            RoleUnknownError: If a message carries an unrecognized role.
            EstimationError: If the estimate cannot be computed.
        """
        ...

    def streaming(
        self,
        messages: list[Message],
        sink: TextIO,
        cancel: threading.Event | None = None,
    ) -> Response:
        """Stream a completion, writing increments to sink as they arrive.

        Args:
            messages: Conversation history to complete.
            sink: Text stream receiving each increment in arrival order.
            cancel: Optional event; when set the call aborts.

        Returns:
            The assembled response. Its content equals the concatenation
            of everything written to sink.

        Raises:
            TransportError: On network or protocol failures.
            DecodeError: If a stream event cannot be parsed.
            CallCancelledError: If cancel was set during the call.
        """
        ...

    @property
    def model_name(self) -> str:
        """Return the model name being used."""
        ...
