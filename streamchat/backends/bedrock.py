"""AWS Bedrock backend for Anthropic Claude text-completion models."""

import json
import logging
import threading
from typing import Any, TextIO

import urllib3
from botocore.eventstream import ParserError
from botocore.exceptions import BotoCoreError, ClientError

from streamchat.backends.base import FinishReason, Message, Response, Role, validate_roles
from streamchat.errors import (
    DecodeError,
    RequestRejectedError,
    TransportError,
    check_cancelled,
    is_rejection,
)
from streamchat.token_counter import count_tokens_words

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_MODEL = "anthropic.claude-v2"

HUMAN_PROMPT = "\n\nHuman:"
ASSISTANT_PROMPT = "\n\nAssistant:"

_STOP_REASONS = {
    "stop_sequence": FinishReason.STOP,
    "end_turn": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
}

# Exception events Bedrock may interleave with chunks.
_ERROR_EVENTS = (
    "internalServerException",
    "modelStreamErrorException",
    "modelTimeoutException",
    "throttlingException",
    "validationException",
    "serviceUnavailableException",
)


def claude_prompt(messages: list[Message]) -> str:
    """Render messages in Claude's Human/Assistant transcript format.

    System messages are sent as Human turns.
    """
    parts = []
    for role, message in zip(validate_roles(messages), messages):
        prefix = ASSISTANT_PROMPT if role is Role.ASSISTANT else HUMAN_PROMPT
        parts.append(f"{prefix} {message['content']}\n")
    parts.append(f"{ASSISTANT_PROMPT}\n")
    return "".join(parts)


class BedrockClaudeBackend:
    """Backend for Claude models served through Bedrock runtime streaming.

    Example:
        >>> import boto3
        >>> from streamchat.backends.bedrock import BedrockClaudeBackend
        >>>
        >>> client = boto3.client("bedrock-runtime")
        >>> backend = BedrockClaudeBackend(client)
    """

    def __init__(
        self,
        client: Any,
        model: str = DEFAULT_CLAUDE_MODEL,
        response_tokens: int = 1000,
        context_window: int = 100 * 1024,
    ) -> None:
        self._client = client
        self._model = model
        self._response_tokens = response_tokens
        self._context_window = context_window

    @property
    def model_name(self) -> str:
        return self._model

    def __str__(self) -> str:
        return self._model

    def max_tokens(self) -> int:
        return self._context_window

    def token_estimate(self, messages: list[Message]) -> int:
        # assumes 1000 tokens are approximately 750 words
        return count_tokens_words(claude_prompt(messages))

    def _request_body(self, prompt: str) -> str:
        return json.dumps({
            "prompt": prompt,
            "max_tokens_to_sample": self._response_tokens,
            "temperature": 1,
            "top_k": 250,
            "top_p": 0.999,
            "stop_sequences": [HUMAN_PROMPT],
            "anthropic_version": "bedrock-2023-05-31",
        })

    def streaming(
        self,
        messages: list[Message],
        sink: TextIO,
        cancel: threading.Event | None = None,
    ) -> Response:
        """Stream a completion from Bedrock.

        Claude text completions start with a space; leading whitespace is
        dropped until the first visible text so the sink and the returned
        content never carry it.
        """
        prompt = claude_prompt(messages)
        check_cancelled(cancel)

        try:
            response = self._client.invoke_model_with_response_stream(
                body=self._request_body(prompt),
                modelId=self._model,
                accept="*/*",
                contentType="application/json",
            )
        except ClientError as exc:
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if is_rejection(status):
                raise RequestRejectedError(
                    f"bedrock rejected the request: {exc}",
                    details={"status": status},
                ) from exc
            raise TransportError(f"bedrock request failed: {exc}") from exc
        except BotoCoreError as exc:
            raise TransportError(f"bedrock request failed: {exc}") from exc

        stream = response["body"]
        parts: list[str] = []
        stop_reason: str | None = None
        leading = True
        events = 0
        try:
            for event in stream:
                events += 1
                check_cancelled(cancel)
                completion, reason = self._decode_event(event)
                if reason is not None:
                    stop_reason = reason
                if leading:
                    completion = completion.lstrip()
                    leading = not completion
                if completion:
                    sink.write(completion)
                    sink.flush()
                    parts.append(completion)
        except ParserError as exc:
            raise DecodeError(f"bad bedrock event frame: {exc}") from exc
        except (ClientError, BotoCoreError, urllib3.exceptions.HTTPError) as exc:
            raise TransportError(f"bedrock stream failed: {exc}") from exc
        finally:
            stream.close()

        logger.debug("bedrock stream done after %d events, stop reason %r", events, stop_reason)
        if stop_reason is None:
            finish_reason = FinishReason.STOP
        else:
            finish_reason = _STOP_REASONS.get(stop_reason, FinishReason.UNKNOWN)
        return Response(content="".join(parts), finish_reason=finish_reason)

    @staticmethod
    def _decode_event(event: dict[str, Any]) -> tuple[str, str | None]:
        """Extract (completion text, stop reason) from one stream event."""
        for name in _ERROR_EVENTS:
            if name in event:
                message = event[name].get("message", name)
                raise TransportError(f"bedrock {name}: {message}")
        if "chunk" not in event:
            raise DecodeError(f"unknown stream event: {sorted(event)}")
        try:
            data = json.loads(event["chunk"]["bytes"])
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"malformed chunk: {exc}") from exc
        if not isinstance(data, dict):
            raise DecodeError(f"unexpected chunk payload: {data!r}")
        return data.get("completion") or "", data.get("stop_reason")
