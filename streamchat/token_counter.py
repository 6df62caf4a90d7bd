"""Token counting utilities."""

import tiktoken

from streamchat.backends.base import Message, validate_roles
from streamchat.errors import EstimationError


# Cache for tokenizer encodings
_ENCODING_CACHE: dict[str, tiktoken.Encoding] = {}


def _get_encoding(model: str) -> tiktoken.Encoding:
    """Get or create a tiktoken encoding for a model.

    Args:
        model: Model name (e.g., "gpt-4", "gpt-3.5-turbo").

    Returns:
        Tiktoken encoding for the model.

    Raises:
        EstimationError: If no encoding can be loaded.
    """
    if model not in _ENCODING_CACHE:
        try:
            _ENCODING_CACHE[model] = tiktoken.encoding_for_model(model)
        except KeyError:
            # Fallback to cl100k_base for unknown models (GPT-4, GPT-3.5-turbo family)
            try:
                _ENCODING_CACHE[model] = tiktoken.get_encoding("cl100k_base")
            except Exception as exc:
                raise EstimationError(f"encoding for model {model}: {exc}") from exc
        except Exception as exc:
            raise EstimationError(f"encoding for model {model}: {exc}") from exc

    return _ENCODING_CACHE[model]


def count_tokens_tiktoken(messages: list[Message], model: str = "gpt-4") -> int:
    """Count tokens in messages using tiktoken.

    This follows OpenAI's token counting guidelines for chat models.

    Args:
        messages: List of messages to count.
        model: Model name for encoding selection.

    Returns:
        Total token count.

    Raises:
        RoleUnknownError: If a message carries an unrecognized role.
        EstimationError: If the encoding is unavailable.
    """
    validate_roles(messages)
    encoding = _get_encoding(model)

    tokens_per_message = 3  # <|start|>role<|sep|>content<|end|>

    # Special-token text such as "<|endoftext|>" is counted as plain text.
    total = 0
    for message in messages:
        total += tokens_per_message
        total += len(encoding.encode(message["content"], disallowed_special=()))
        total += len(encoding.encode(message["role"], disallowed_special=()))

    # Every reply is primed with <|start|>assistant<|message|>
    total += 3

    return total


def count_tokens_words(text: str) -> int:
    """Rough estimate for non-tiktoken models: 4/3 token per word."""
    return int(4.0 / 3.0 * len(text.split()))
