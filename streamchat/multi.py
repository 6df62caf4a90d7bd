"""Capacity multiplexer over two backends.

Uses the first, smaller-capacity backend until the history no longer fits
it, then escalates to the second. A MultiBackend is itself a ModelBackend,
so multiplexers nest into a ladder (small -> medium -> large).
"""

import logging
import threading
from typing import TextIO

from streamchat.backends.base import Message, ModelBackend, Response
from streamchat.errors import CapacityExhaustedError, ConfigurationError

logger = logging.getLogger(__name__)

# Tokens held back for the anticipated reply.
RESPONSE_MARGIN = 1000


class MultiBackend:
    """Routes each call to the smallest backend with headroom.

    Example:
        >>> backend = MultiBackend(gpt4, claude)
        >>> ladder = MultiBackend(MultiBackend(small, medium), large)
    """

    def __init__(
        self,
        first: ModelBackend,
        second: ModelBackend,
        margin: int = RESPONSE_MARGIN,
    ) -> None:
        """Initialize the multiplexer.

        Args:
            first: Smaller-capacity backend, used while the history fits.
            second: Larger-capacity backend.
            margin: Tokens reserved for the response.

        Raises:
            ConfigurationError: If first does not have strictly less capacity.
        """
        if first.max_tokens() >= second.max_tokens():
            raise ConfigurationError(
                "first backend should have less capacity than second",
                details={"first": first.max_tokens(), "second": second.max_tokens()},
            )
        self._first = first
        self._second = second
        self._margin = margin

    @property
    def first(self) -> ModelBackend:
        return self._first

    @property
    def second(self) -> ModelBackend:
        return self._second

    @property
    def model_name(self) -> str:
        return f"{self._first.model_name} / {self._second.model_name}"

    def __str__(self) -> str:
        return f"{self._first} / {self._second}"

    def max_tokens(self) -> int:
        return self._first.max_tokens()

    def token_estimate(self, messages: list[Message]) -> int:
        return self._first.token_estimate(messages)

    def _fit(self, backend: ModelBackend, messages: list[Message]) -> tuple[ModelBackend, int]:
        # A nested multiplexer only reports its floor, so let it route itself.
        if isinstance(backend, MultiBackend):
            return backend._route(messages)
        n = backend.token_estimate(messages)
        if n + self._margin > backend.max_tokens():
            raise CapacityExhaustedError(
                f"{n} tokens too big for {backend}",
                details={"estimate": n, "capacity": backend.max_tokens()},
            )
        return backend, n

    def _route(self, messages: list[Message]) -> tuple[ModelBackend, int]:
        try:
            backend, n0 = self._fit(self._first, messages)
            logger.debug("routing %d tokens to %s", n0, backend)
            return backend, n0
        except CapacityExhaustedError as exc:
            n0 = exc.details["estimate"]

        try:
            backend, n1 = self._fit(self._second, messages)
        except CapacityExhaustedError as exc:
            n1 = exc.details["estimate"]
            raise CapacityExhaustedError(
                f"{n0} / {n1} tokens too big for either model",
                details={"estimate": n1, "estimates": (n0, n1), "margin": self._margin},
            ) from None
        logger.info("%d tokens exceed %s, escalating to %s", n0, self._first, backend)
        return backend, n1

    def route(self, messages: list[Message]) -> ModelBackend:
        """Pick the concrete backend for the given history.

        Estimates are taken fresh against each candidate. The history goes
        to the first backend when estimate + margin fits its capacity,
        otherwise to the second, which must fit as well.

        Raises:
            CapacityExhaustedError: If the history does not fit either backend.
        """
        return self._route(messages)[0]

    def streaming(
        self,
        messages: list[Message],
        sink: TextIO,
        cancel: threading.Event | None = None,
    ) -> Response:
        return self.route(messages).streaming(messages, sink, cancel)
