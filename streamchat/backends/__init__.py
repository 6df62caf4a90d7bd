"""Backend implementations for different LLM providers."""

from streamchat.backends.base import FinishReason, Message, ModelBackend, Response, Role

__all__ = ["FinishReason", "Message", "ModelBackend", "Response", "Role"]

# Lazy imports so provider SDKs load only when used
def __getattr__(name: str):
    if name == "OpenAIChatBackend":
        from streamchat.backends.openai import OpenAIChatBackend
        return OpenAIChatBackend
    if name == "BedrockClaudeBackend":
        from streamchat.backends.bedrock import BedrockClaudeBackend
        return BedrockClaudeBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
