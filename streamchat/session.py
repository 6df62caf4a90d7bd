"""Core ChatSession implementation.

The session owns the conversation history and drives the
read -> estimate -> dispatch -> append loop:

    AWAITING_INPUT -> DISPATCHING -> STREAMING -> APPENDING -> AWAITING_INPUT
                                                  (end of input) -> CLOSED
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, TextIO

from streamchat.backends.base import FinishReason, Message, ModelBackend, Response, Role
from streamchat.config import SessionConfig
from streamchat.errors import (
    CallCancelledError,
    CapacityExhaustedError,
    ChatError,
    EstimationError,
    UnexpectedFinishReasonError,
)
from streamchat.history import ConversationHistory
from streamchat.rate_limit import RateLimiter
from streamchat.retry import retry_call

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n<response token limit reached>\n"


class SessionState(Enum):
    """Where the session is in its turn cycle."""
    AWAITING_INPUT = "awaiting_input"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    APPENDING = "appending"
    CLOSED = "closed"


class ChatSession:
    """Streaming multi-turn chat over a ModelBackend.

    The backend may be a MultiBackend, in which case each turn is routed
    by estimated token load. Backend calls are retried with exponential
    backoff and optionally paced by a RateLimiter.

    Example:
        >>> import sys
        >>> from openai import OpenAI
        >>> from streamchat import ChatSession, OpenAIChatBackend, SessionConfig
        >>>
        >>> backend = OpenAIChatBackend(OpenAI())
        >>> session = ChatSession(backend, SessionConfig(seed_prompt="Be brief."))
        >>> session.run(sys.stdin, sys.stdout)
    """

    def __init__(
        self,
        backend: ModelBackend,
        config: SessionConfig | None = None,
        limiter: RateLimiter | None = None,
        on_history: Callable[[list[Message]], None] | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            backend: Model backend for LLM calls.
            config: Session configuration. Uses defaults if None.
            limiter: Rate limiter. Built from the config's pacing options if None.
            on_history: Optional callback receiving the history before each dispatch.
        """
        self._backend = backend
        self._config = config or SessionConfig()
        if limiter is None and (
            self._config.requests_per_minute is not None
            or self._config.tokens_per_minute is not None
        ):
            limiter = RateLimiter(
                requests_per_minute=self._config.requests_per_minute,
                tokens_per_minute=self._config.tokens_per_minute,
            )
        self._limiter = limiter
        self._on_history = on_history
        self._history = ConversationHistory()
        self._state = SessionState.AWAITING_INPUT
        self._in_flight = threading.Lock()
        self._started = False

        # Stats tracking
        self._turns: int = 0
        self._truncations: int = 0

        self._init_history()

    def _init_history(self) -> None:
        """Append resource documents, then the seed prompt, as system messages."""
        for document in self._config.resource_documents:
            self._history.append(Role.SYSTEM, document.render())
        if self._config.seed_prompt:
            self._history.append(Role.SYSTEM, self._config.seed_prompt.strip())

    @property
    def backend(self) -> ModelBackend:
        """The model backend being used."""
        return self._backend

    @property
    def config(self) -> SessionConfig:
        """The session configuration."""
        return self._config

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> list[Message]:
        """A copy of the conversation history."""
        return self._history.messages()

    @property
    def turns(self) -> int:
        """Number of completed backend turns."""
        return self._turns

    def run(
        self,
        input_stream: TextIO,
        output_stream: TextIO,
        cancel: threading.Event | None = None,
    ) -> None:
        """Drive the conversation until end of input.

        Empty lines re-prompt without calling the backend. A turn that does
        not fit any backend is reported on the output and the loop continues.

        Args:
            input_stream: Line-oriented user input.
            output_stream: Receives prompts and streamed responses.
            cancel: Optional event aborting the in-flight turn.

        Raises:
            RetryExhaustedError: If a backend call kept failing.
            UnexpectedFinishReasonError: If the backend ended abnormally.
            CallCancelledError: If cancel was set during a turn.
        """
        self._ensure_open()
        if not self._started:
            self._started = True
            if self._config.echo_initial:
                self._echo_initial(output_stream)
                if self._config.seed_prompt:
                    self._dispatch_reporting(output_stream, cancel)

        while True:
            output_stream.write(self._config.prompt)
            output_stream.flush()
            line = input_stream.readline()
            if not line:
                output_stream.write("\n")
                self._state = SessionState.CLOSED
                logger.debug("end of input after %d turns", self._turns)
                return

            text = line.strip()
            if not text:
                continue

            self._history.append(Role.USER, text)
            self._dispatch_reporting(output_stream, cancel)

    def chat(
        self,
        message: str,
        sink: TextIO,
        cancel: threading.Event | None = None,
    ) -> Response:
        """Send one user message and stream the reply to sink.

        Args:
            message: User message to send.
            sink: Receives the streamed response.
            cancel: Optional event aborting the call.

        Returns:
            The backend's response.
        """
        self._ensure_open()
        text = message.strip()
        if not text:
            raise ValueError("message must not be empty")
        self._history.append(Role.USER, text)
        return self._dispatch(sink, cancel)

    def _ensure_open(self) -> None:
        if self._state is SessionState.CLOSED:
            raise RuntimeError("session is closed")

    def _echo_initial(self, output: TextIO) -> None:
        for message in self._history.messages():
            output.write(f"{message['role']}: {message['content']}\n\n")
        output.flush()

    def _dispatch_reporting(self, output: TextIO, cancel: threading.Event | None) -> None:
        try:
            self._dispatch(output, cancel)
        except CapacityExhaustedError as exc:
            output.write(f"\n<{exc.message}>\n")
            output.flush()

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._in_flight.acquire(blocking=False):
            raise RuntimeError("a backend call is already in flight")
        try:
            yield
        finally:
            self._in_flight.release()

    def _estimate(self, messages: list[Message]) -> int:
        try:
            return self._backend.token_estimate(messages)
        except ChatError:
            raise
        except Exception as exc:
            raise EstimationError(f"token estimate failed: {exc}") from exc

    def _dispatch(self, output: TextIO, cancel: threading.Event | None) -> Response:
        """Call the backend on the current history and append the reply.

        History is only mutated after the call completes with STOP or LENGTH.
        """
        with self._exclusive():
            self._state = SessionState.DISPATCHING
            messages = self._history.messages()
            if self._on_history:
                self._on_history(messages)

            try:
                tokens = self._estimate(messages)
                logger.debug("dispatching %d messages, ~%d tokens", len(messages), tokens)
                if self._limiter is not None:
                    self._limiter.wait(tokens, cancel)

                self._state = SessionState.STREAMING
                response = retry_call(
                    lambda: self._backend.streaming(messages, output, cancel),
                    self._config.max_attempts,
                    self._config.initial_delay,
                    cancel=cancel,
                )

                self._state = SessionState.APPENDING
                self._append_response(response, output)
            except (CapacityExhaustedError, CallCancelledError) as exc:
                logger.warning("turn abandoned: %s", exc)
                self._state = SessionState.AWAITING_INPUT
                raise
            except Exception:
                self._state = SessionState.CLOSED
                raise

            if self._limiter is not None:
                self._limiter.record_response(response.content)
            self._turns += 1
            self._state = SessionState.AWAITING_INPUT
            return response

    def _append_response(self, response: Response, output: TextIO) -> None:
        if response.finish_reason is FinishReason.STOP:
            self._history.append(Role.ASSISTANT, response.content)
        elif response.finish_reason is FinishReason.LENGTH:
            output.write(TRUNCATION_MARKER)
            self._history.append(Role.ASSISTANT, response.content + TRUNCATION_MARKER)
            self._truncations += 1
        else:
            raise UnexpectedFinishReasonError(
                f"bad finish reason: {response.finish_reason.value}",
                details={"content_length": len(response.content)},
            )
        output.write("\n")
        output.flush()

    def get_stats(self) -> dict:
        """Get session statistics.

        Returns:
            Dictionary with stats:
            - messages: Messages in the history
            - turns: Completed backend turns
            - truncations: Turns that hit the response length limit
            - current_tokens: Token estimate of the current history
            - max_tokens: Backend capacity
        """
        return {
            "messages": len(self._history),
            "turns": self._turns,
            "truncations": self._truncations,
            "current_tokens": self._estimate(self._history.messages()),
            "max_tokens": self._backend.max_tokens(),
        }
