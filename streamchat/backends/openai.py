"""OpenAI backend implementation."""

import json
import logging
import threading
from typing import TextIO

import httpx
import openai

from streamchat.backends.base import FinishReason, Message, Response, validate_roles
from streamchat.errors import (
    DecodeError,
    RequestRejectedError,
    TransportError,
    check_cancelled,
    is_rejection,
)
from streamchat.token_counter import count_tokens_tiktoken

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4-0613"

# Context windows of common chat models, longest prefix wins.
CONTEXT_WINDOWS: dict[str, int] = {
    "gpt-3.5-turbo": 16_385,
    "gpt-4": 8 * 1024,
    "gpt-4-32k": 32 * 1024,
    "gpt-4-turbo": 128_000,
    "gpt-4o": 128_000,
    "gpt-4.1": 1_047_576,
}

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
}


def context_window_for(model: str) -> int:
    """Look up the context window for a model name.

    Unknown models get the smallest GPT-4 window, which is a safe floor.
    """
    matches = [prefix for prefix in CONTEXT_WINDOWS if model.startswith(prefix)]
    if not matches:
        return CONTEXT_WINDOWS["gpt-4"]
    return CONTEXT_WINDOWS[max(matches, key=len)]


class OpenAIChatBackend:
    """Backend for OpenAI chat-completions models.

    Wraps an OpenAI client and provides the ModelBackend interface.

    Example:
        >>> from openai import OpenAI
        >>> from streamchat.backends.openai import OpenAIChatBackend
        >>>
        >>> client = OpenAI()
        >>> backend = OpenAIChatBackend(client, model="gpt-4-0613")
    """

    def __init__(
        self,
        client: openai.OpenAI,
        model: str = DEFAULT_OPENAI_MODEL,
        temperature: float = 0.7,
        response_tokens: int | None = None,
        context_window: int | None = None,
    ) -> None:
        """Initialize the OpenAI backend.

        Args:
            client: An initialized OpenAI client.
            model: Model name to use for completions.
            temperature: Sampling temperature.
            response_tokens: Maximum tokens in response (None for model default).
            context_window: Override for the model's context window.
        """
        self._client = client
        self._model = model
        self._temperature = temperature
        self._response_tokens = response_tokens
        self._context_window = context_window or context_window_for(model)

    @property
    def model_name(self) -> str:
        """Return the model name being used."""
        return self._model

    def __str__(self) -> str:
        return f"openai.{self._model}"

    def max_tokens(self) -> int:
        return self._context_window

    def token_estimate(self, messages: list[Message]) -> int:
        """Count tokens using tiktoken.

        Args:
            messages: List of messages to count tokens for.

        Returns:
            Estimated token count.
        """
        return count_tokens_tiktoken(messages, self._model)

    def streaming(
        self,
        messages: list[Message],
        sink: TextIO,
        cancel: threading.Event | None = None,
    ) -> Response:
        """Stream a chat completion from OpenAI.

        Args:
            messages: List of conversation messages.
            sink: Receives each content delta as it arrives.
            cancel: Optional event aborting the call between deltas.

        Returns:
            The assembled response.
        """
        roles = validate_roles(messages)
        payload = [
            {"role": role.value, "content": message["content"]}
            for role, message in zip(roles, messages)
        ]
        check_cancelled(cancel)

        try:
            stream = self._client.chat.completions.create(
                model=self._model,
                messages=payload,  # type: ignore[arg-type]
                temperature=self._temperature,
                top_p=1,
                max_tokens=self._response_tokens,
                stream=True,
            )
        except openai.APIStatusError as exc:
            if is_rejection(exc.status_code):
                raise RequestRejectedError(
                    f"openai rejected the request: {exc}",
                    details={"status": exc.status_code},
                ) from exc
            raise TransportError(f"openai request failed: {exc}") from exc
        except openai.APIError as exc:
            raise TransportError(f"openai request failed: {exc}") from exc

        parts: list[str] = []
        finish_reason: str | None = None
        try:
            for chunk in stream:
                check_cancelled(cancel)
                choices = getattr(chunk, "choices", None)
                if not choices:
                    raise DecodeError("no choices in stream chunk")
                choice = choices[0]
                if choice.finish_reason is not None:
                    finish_reason = choice.finish_reason
                delta = choice.delta.content if choice.delta is not None else None
                if delta:
                    sink.write(delta)
                    sink.flush()
                    parts.append(delta)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"malformed stream event: {exc}") from exc
        except (openai.APIError, httpx.HTTPError) as exc:
            raise TransportError(f"openai stream failed: {exc}") from exc
        finally:
            stream.close()

        if finish_reason not in _FINISH_REASONS:
            logger.debug("openai finish reason %r mapped to unknown", finish_reason)
        return Response(
            content="".join(parts),
            finish_reason=_FINISH_REASONS.get(finish_reason or "", FinishReason.UNKNOWN),
        )
