"""Tests for the Bedrock Claude streaming backend."""

import io
import json

import pytest
from botocore.eventstream import ChecksumMismatch
from botocore.exceptions import ClientError
from urllib3.exceptions import ProtocolError, ReadTimeoutError

from streamchat.backends.base import FinishReason
from streamchat.backends.bedrock import BedrockClaudeBackend, claude_prompt
from streamchat.errors import (
    DecodeError,
    RequestRejectedError,
    RoleUnknownError,
    TransientError,
    TransportError,
)


def event(completion=None, stop_reason=None):
    """Build a response-stream chunk event."""
    payload = {"completion": completion, "stop_reason": stop_reason}
    return {"chunk": {"bytes": json.dumps(payload).encode()}}


class FakeEventStream:
    """Iterable event stream recording close()."""

    def __init__(self, events):
        self._events = events
        self.closed = False

    def __iter__(self):
        for item in self._events:
            if isinstance(item, BaseException):
                raise item
            yield item

    def close(self):
        self.closed = True


class FakeBedrockRuntime:
    """Minimal stand-in for a bedrock-runtime client."""

    def __init__(self, stream=None, error=None):
        self.stream = stream
        self.error = error
        self.requests: list[dict] = []

    def invoke_model_with_response_stream(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"body": self.stream}


MESSAGES = [
    {"role": "system", "content": "S"},
    {"role": "user", "content": "U"},
    {"role": "assistant", "content": "A"},
]


class TestClaudePrompt:
    """Tests for transcript rendering."""

    def test_roles_rendered(self):
        assert claude_prompt(MESSAGES) == (
            "\n\nHuman: S\n"
            "\n\nHuman: U\n"
            "\n\nAssistant: A\n"
            "\n\nAssistant:\n"
        )

    def test_unknown_role(self):
        with pytest.raises(RoleUnknownError):
            claude_prompt([{"role": "narrator", "content": "x"}])  # type: ignore[list-item]

    def test_token_estimate_from_words(self):
        backend = BedrockClaudeBackend(FakeBedrockRuntime())

        # "Human:", "one", "two", "three", "Assistant:" -> 5 words
        assert backend.token_estimate([{"role": "user", "content": "one two three"}]) == 6
        assert backend.max_tokens() == 100 * 1024


class TestStreaming:
    """Tests for streaming assembly."""

    def test_leading_whitespace_stripped(self):
        """Test the first chunk's leading space never reaches the sink."""
        stream = FakeEventStream([
            event(" Hello"),
            event(" world"),
            event("!", "stop_sequence"),
        ])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))
        sink = io.StringIO()

        response = backend.streaming(MESSAGES, sink)

        assert response.content == "Hello world!"
        assert sink.getvalue() == response.content
        assert response.finish_reason is FinishReason.STOP
        assert stream.closed

    def test_whitespace_only_first_chunk(self):
        stream = FakeEventStream([event("  "), event("\n Hi"), event(" there")])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))
        sink = io.StringIO()

        response = backend.streaming(MESSAGES, sink)

        assert response.content == "Hi there"
        assert sink.getvalue() == "Hi there"

    @pytest.mark.parametrize(
        "reason,expected",
        [
            ("stop_sequence", FinishReason.STOP),
            ("max_tokens", FinishReason.LENGTH),
            ("refusal", FinishReason.UNKNOWN),
            (None, FinishReason.STOP),
        ],
    )
    def test_stop_reason_mapping(self, reason, expected):
        stream = FakeEventStream([event("text"), event("", reason)])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))

        assert backend.streaming(MESSAGES, io.StringIO()).finish_reason is expected

    def test_request_body(self):
        client = FakeBedrockRuntime(FakeEventStream([event("ok")]))
        backend = BedrockClaudeBackend(client)

        backend.streaming(MESSAGES, io.StringIO())

        request = client.requests[0]
        body = json.loads(request["body"])
        assert request["modelId"] == "anthropic.claude-v2"
        assert body["prompt"] == claude_prompt(MESSAGES)
        assert body["stop_sequences"] == ["\n\nHuman:"]
        assert body["max_tokens_to_sample"] == 1000


class TestStreamingErrors:
    """Tests for error classification and stream cleanup."""

    def test_malformed_chunk_is_decode_error(self):
        stream = FakeEventStream([event("a"), {"chunk": {"bytes": b"{not json"}}])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))

        with pytest.raises(DecodeError):
            backend.streaming(MESSAGES, io.StringIO())

        assert stream.closed

    def test_unknown_event_is_decode_error(self):
        stream = FakeEventStream([{"mystery": {}}])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))

        with pytest.raises(DecodeError):
            backend.streaming(MESSAGES, io.StringIO())

        assert stream.closed

    def test_exception_event_is_transport_error(self):
        stream = FakeEventStream([event("a"), {"throttlingException": {"message": "slow down"}}])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))

        with pytest.raises(TransportError, match="slow down"):
            backend.streaming(MESSAGES, io.StringIO())

        assert stream.closed

    def test_client_error_is_transport_error(self):
        error = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "slow down"}},
            "InvokeModelWithResponseStream",
        )
        backend = BedrockClaudeBackend(FakeBedrockRuntime(error=error))

        with pytest.raises(TransportError):
            backend.streaming(MESSAGES, io.StringIO())

    def test_stream_error_is_transport_error(self):
        error = ClientError(
            {"Error": {"Code": "InternalServerException", "Message": "boom"}},
            "InvokeModelWithResponseStream",
        )
        stream = FakeEventStream([event("a"), error])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))

        with pytest.raises(TransportError):
            backend.streaming(MESSAGES, io.StringIO())

        assert stream.closed

    @pytest.mark.parametrize(
        "error",
        [
            ProtocolError("Connection broken"),
            ReadTimeoutError(None, "/model/invoke", "Read timed out."),
        ],
    )
    def test_connection_drop_is_transport_error(self, error):
        """Test urllib3 failures while reading the body are retryable."""
        stream = FakeEventStream([event("a"), error])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))

        with pytest.raises(TransportError) as excinfo:
            backend.streaming(MESSAGES, io.StringIO())

        assert isinstance(excinfo.value, TransientError)
        assert excinfo.value.__cause__ is error
        assert stream.closed

    def test_corrupt_frame_is_decode_error(self):
        """Test a checksum failure in the event framing is a decode error."""
        error = ChecksumMismatch(1, 2)
        stream = FakeEventStream([event("a"), error])
        backend = BedrockClaudeBackend(FakeBedrockRuntime(stream))

        with pytest.raises(DecodeError) as excinfo:
            backend.streaming(MESSAGES, io.StringIO())

        assert excinfo.value.__cause__ is error
        assert stream.closed

    def test_access_denied_is_not_retryable(self):
        error = ClientError(
            {
                "Error": {"Code": "AccessDeniedException", "Message": "no access"},
                "ResponseMetadata": {"HTTPStatusCode": 403},
            },
            "InvokeModelWithResponseStream",
        )
        backend = BedrockClaudeBackend(FakeBedrockRuntime(error=error))

        with pytest.raises(RequestRejectedError) as excinfo:
            backend.streaming(MESSAGES, io.StringIO())

        assert not isinstance(excinfo.value, TransientError)
        assert excinfo.value.details == {"status": 403}

    def test_throttling_status_stays_retryable(self):
        error = ClientError(
            {
                "Error": {"Code": "ThrottlingException", "Message": "slow down"},
                "ResponseMetadata": {"HTTPStatusCode": 429},
            },
            "InvokeModelWithResponseStream",
        )
        backend = BedrockClaudeBackend(FakeBedrockRuntime(error=error))

        with pytest.raises(TransportError):
            backend.streaming(MESSAGES, io.StringIO())
