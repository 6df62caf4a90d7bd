"""Tests for the capacity multiplexer."""

import io

import pytest

from streamchat.backends.base import FinishReason, Message, ModelBackend, Response
from streamchat.errors import CapacityExhaustedError, ConfigurationError
from streamchat.multi import RESPONSE_MARGIN, MultiBackend


class FixedBackend:
    """Mock backend with a fixed capacity and estimate."""

    def __init__(self, name: str, capacity: int, estimate: int = 0):
        self._name = name
        self._capacity = capacity
        self.estimate = estimate
        self.calls: list[list[Message]] = []

    @property
    def model_name(self) -> str:
        return self._name

    def __str__(self) -> str:
        return self._name

    def max_tokens(self) -> int:
        return self._capacity

    def token_estimate(self, messages: list[Message]) -> int:
        return self.estimate

    def streaming(self, messages, sink, cancel=None) -> Response:
        self.calls.append(messages)
        reply = f"from {self._name}"
        sink.write(reply)
        return Response(content=reply, finish_reason=FinishReason.STOP)


HISTORY: list[Message] = [{"role": "user", "content": "Hello"}]


class TestConstruction:
    """Tests for MultiBackend construction."""

    @pytest.mark.parametrize(
        "first,second,ok",
        [
            (8000, 128000, True),
            (8000, 8001, True),
            (8000, 8000, False),
            (128000, 8000, False),
        ],
    )
    def test_requires_strictly_increasing_capacity(self, first, second, ok):
        """Test construction succeeds iff first capacity < second capacity."""
        small = FixedBackend("small", first)
        large = FixedBackend("large", second)

        if ok:
            MultiBackend(small, large)
        else:
            with pytest.raises(ConfigurationError):
                MultiBackend(small, large)

    def test_satisfies_backend_protocol(self):
        multi = MultiBackend(FixedBackend("a", 10), FixedBackend("b", 20))

        assert isinstance(multi, ModelBackend)

    def test_reports_first_capacity_and_estimate(self):
        """Test max_tokens and token_estimate delegate to the first backend."""
        small = FixedBackend("small", 8000, estimate=42)
        large = FixedBackend("large", 128000, estimate=99)
        multi = MultiBackend(small, large)

        assert multi.max_tokens() == 8000
        assert multi.token_estimate(HISTORY) == 42
        assert multi.model_name == "small / large"


class TestRouting:
    """Tests for routing by estimated token load."""

    def test_margin_default(self):
        assert RESPONSE_MARGIN == 1000

    @pytest.mark.parametrize(
        "estimate,expected",
        [
            (6999, "small"),
            (7000, "small"),
            (7001, "large"),
        ],
    )
    def test_routes_by_estimate_plus_margin(self, estimate, expected):
        """Test the 8000/128000 ladder with a 1000 token margin."""
        small = FixedBackend("small", 8000, estimate=estimate)
        large = FixedBackend("large", 128000, estimate=estimate)
        multi = MultiBackend(small, large)
        sink = io.StringIO()

        response = multi.streaming(HISTORY, sink)

        assert response.content == f"from {expected}"
        assert sink.getvalue() == response.content

    def test_capacity_exhausted_when_neither_fits(self):
        """Test that an oversize history fails fast without dispatching."""
        small = FixedBackend("small", 8000, estimate=9000)
        large = FixedBackend("large", 128000, estimate=127500)
        multi = MultiBackend(small, large)

        with pytest.raises(CapacityExhaustedError) as excinfo:
            multi.streaming(HISTORY, io.StringIO())

        assert excinfo.value.details["estimates"] == (9000, 127500)
        assert small.calls == []
        assert large.calls == []

    @pytest.mark.parametrize("nesting", ["left", "right"])
    def test_nested_ladder(self, nesting):
        """Test that multiplexers compose into a three-step ladder."""
        small = FixedBackend("small", 4000)
        medium = FixedBackend("medium", 16000)
        large = FixedBackend("large", 128000)
        if nesting == "left":
            ladder = MultiBackend(MultiBackend(small, medium), large)
        else:
            ladder = MultiBackend(small, MultiBackend(medium, large))

        for estimate, expected in [(100, "small"), (5000, "medium"), (20000, "large")]:
            small.estimate = medium.estimate = large.estimate = estimate
            assert ladder.streaming(HISTORY, io.StringIO()).content == f"from {expected}"

        small.estimate = medium.estimate = large.estimate = 200000
        with pytest.raises(CapacityExhaustedError):
            ladder.streaming(HISTORY, io.StringIO())

    def test_route_returns_concrete_backend(self):
        small = FixedBackend("small", 8000, estimate=7001)
        large = FixedBackend("large", 128000, estimate=7001)

        assert MultiBackend(small, large).route(HISTORY) is large
