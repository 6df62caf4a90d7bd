"""streamchat - Streaming multi-turn chat over interchangeable LLM backends.

A terminal chat session that streams replies as they arrive, retries
transient failures with backoff, and escalates to a larger-context model
when the conversation outgrows the smaller one.

Example:
    >>> import sys
    >>> import boto3
    >>> from openai import OpenAI
    >>> from streamchat import (
    ...     BedrockClaudeBackend, ChatSession, MultiBackend,
    ...     OpenAIChatBackend, SessionConfig,
    ... )
    >>>
    >>> backend = MultiBackend(
    ...     OpenAIChatBackend(OpenAI()),
    ...     BedrockClaudeBackend(boto3.client("bedrock-runtime")),
    ... )
    >>> session = ChatSession(backend, SessionConfig(seed_prompt="Be brief."))
    >>> session.run(sys.stdin, sys.stdout)
"""

from streamchat.backends.base import FinishReason, Message, ModelBackend, Response, Role
from streamchat.config import ResourceDocument, SessionConfig
from streamchat.errors import (
    CallCancelledError,
    CapacityExhaustedError,
    ChatError,
    ConfigurationError,
    DecodeError,
    EstimationError,
    RequestRejectedError,
    RetryExhaustedError,
    RoleUnknownError,
    TransientError,
    TransportError,
    UnexpectedFinishReasonError,
)
from streamchat.history import ConversationHistory
from streamchat.multi import MultiBackend
from streamchat.rate_limit import RateLimiter, TokenBucket
from streamchat.retry import retry_call
from streamchat.session import ChatSession, SessionState

__version__ = "0.1.0"

__all__ = [
    # Core
    "ChatSession",
    "SessionState",
    "SessionConfig",
    "ResourceDocument",
    "ConversationHistory",
    # Backends
    "ModelBackend",
    "MultiBackend",
    "Message",
    "Response",
    "Role",
    "FinishReason",
    # Resilience
    "retry_call",
    "RateLimiter",
    "TokenBucket",
    # Errors
    "ChatError",
    "ConfigurationError",
    "RoleUnknownError",
    "EstimationError",
    "RequestRejectedError",
    "TransientError",
    "TransportError",
    "DecodeError",
    "UnexpectedFinishReasonError",
    "CapacityExhaustedError",
    "RetryExhaustedError",
    "CallCancelledError",
    # Version
    "__version__",
]


# Lazy imports so provider SDKs load only when used
def __getattr__(name: str):
    if name == "OpenAIChatBackend":
        from streamchat.backends.openai import OpenAIChatBackend
        return OpenAIChatBackend
    if name == "BedrockClaudeBackend":
        from streamchat.backends.bedrock import BedrockClaudeBackend
        return BedrockClaudeBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
