"""Configuration dataclasses for streamchat."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class ResourceDocument:
    """A document preloaded into the conversation as a system message.

    Attributes:
        content: Document body.
        metadata: Optional label, e.g. the file name.
    """

    content: str
    metadata: str | None = None

    @classmethod
    def from_path(cls, path: str | Path) -> "ResourceDocument":
        """Load a text file, labelled with its file name."""
        path = Path(path)
        return cls(content=path.read_text(encoding="utf-8"), metadata=path.name)

    def render(self) -> str:
        """Format the document as system message text."""
        body = self.content.strip()
        if self.metadata:
            return (
                f"the following resource has metadata: {self.metadata}"
                f"\n\ncontents:\n\n{body}"
            )
        return body


@dataclass
class SessionConfig:
    """Configuration for a chat session.

    Attributes:
        seed_prompt: Optional prompt appended as the last initial system message.
        resource_documents: Documents appended as system messages, in order.
        echo_initial: Write the initial messages to the output before the
                      first backend call. With a seed prompt, also dispatch
                      immediately instead of waiting for input.
        max_attempts: Total attempts per backend call.
        initial_delay: Seconds before the first retry; doubles per retry.
        requests_per_minute: Optional request pacing.
        tokens_per_minute: Optional estimated-token pacing.
        prompt: Text written before each input read.
    """

    seed_prompt: str | None = None
    resource_documents: list[ResourceDocument] = field(default_factory=list)
    echo_initial: bool = False

    # Resilience
    max_attempts: int = 7
    initial_delay: float = 3.0

    # Pacing (None disables)
    requests_per_minute: float | None = None
    tokens_per_minute: int | None = None

    prompt: str = "> "

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must not be negative")
        if self.requests_per_minute is not None and self.requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        if self.tokens_per_minute is not None and self.tokens_per_minute <= 0:
            raise ValueError("tokens_per_minute must be positive")
