"""In-memory, append-only conversation history.

No persistence. Data is lost when the session ends.
"""

from streamchat.backends.base import Message, Role


class ConversationHistory:
    """Ordered message history for one session.

    Messages are only ever appended; insertion order defines turn order.

    Example:
        >>> history = ConversationHistory()
        >>> history.append(Role.USER, "Hello")
        >>> history.messages()
        [{'role': 'user', 'content': 'Hello'}]
    """

    def __init__(self) -> None:
        """Initialize empty history."""
        self._messages: list[Message] = []

    def append(self, role: Role, content: str) -> Message:
        """Append a message and return it.

        Args:
            role: Message role.
            content: Message text.
        """
        message: Message = {"role": role.value, "content": content}
        self._messages.append(message)
        return dict(message)  # type: ignore[return-value]

    def messages(self) -> list[Message]:
        """Return a copy of the history.

        Messages are copied too, so callers cannot mutate stored entries.
        """
        return [dict(m) for m in self._messages]  # type: ignore[misc]

    def __len__(self) -> int:
        return len(self._messages)

    def to_dict(self) -> dict:
        """Export history as a dictionary for debugging."""
        return {"messages": self.messages()}
