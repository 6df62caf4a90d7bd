"""Terminal chat entry point.

Streams a conversation over stdin/stdout. Backends are picked from the
environment: OpenAI when OPENAI_API_KEY is set, Bedrock Claude when
--bedrock (or STREAMCHAT_BEDROCK=1) is given. With both, the session
starts on OpenAI and escalates to Claude once the history outgrows it.
"""

import argparse
import os
import sys

from rich.console import Console

from streamchat.backends.base import ModelBackend
from streamchat.config import ResourceDocument, SessionConfig
from streamchat.errors import ChatError
from streamchat.log import setup_logging
from streamchat.multi import MultiBackend
from streamchat.session import ChatSession

console = Console(stderr=True)


def create_backend(args: argparse.Namespace) -> ModelBackend:
    """Create the model backend based on available credentials.

    Returns:
        A ModelBackend instance.

    Raises:
        RuntimeError: If no backend is configured.
    """
    backends: list[ModelBackend] = []

    if os.environ.get("OPENAI_API_KEY"):
        from openai import OpenAI
        from streamchat.backends.openai import OpenAIChatBackend

        model = args.model or os.environ.get("OPENAI_MODEL") or "gpt-4-0613"
        backends.append(OpenAIChatBackend(OpenAI(), model=model))

    if args.bedrock or os.environ.get("STREAMCHAT_BEDROCK") == "1":
        import boto3
        from streamchat.backends.bedrock import BedrockClaudeBackend

        backends.append(BedrockClaudeBackend(boto3.client("bedrock-runtime")))

    if not backends:
        raise RuntimeError(
            "No backend configured. Set OPENAI_API_KEY or pass --bedrock."
        )
    if len(backends) == 1:
        return backends[0]

    first, second = sorted(backends, key=lambda b: b.max_tokens())
    return MultiBackend(first, second)


def build_config(args: argparse.Namespace) -> SessionConfig:
    """Build the session configuration from parsed arguments."""
    return SessionConfig(
        seed_prompt=args.prompt,
        resource_documents=[ResourceDocument.from_path(p) for p in args.resource],
        echo_initial=args.echo,
        max_attempts=args.max_attempts,
        initial_delay=args.initial_delay,
        requests_per_minute=args.rpm,
        tokens_per_minute=args.tpm,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamchat",
        description="Streaming multi-turn LLM chat with capacity fallback",
    )

    parser.add_argument(
        "--prompt",
        type=str,
        default=None,
        help="Seed prompt added as the last system message",
    )

    parser.add_argument(
        "--resource",
        action="append",
        default=[],
        metavar="FILE",
        help="Text file preloaded as a system message (repeatable)",
    )

    parser.add_argument(
        "--echo",
        action="store_true",
        help="Print the initial messages; with --prompt, answer it before reading input",
    )

    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="OpenAI model name (default: $OPENAI_MODEL or gpt-4-0613)",
    )

    parser.add_argument(
        "--bedrock",
        action="store_true",
        help="Enable the Bedrock Claude backend (uses the default AWS credential chain)",
    )

    parser.add_argument(
        "--rpm",
        type=float,
        default=None,
        help="Limit on requests per minute",
    )

    parser.add_argument(
        "--tpm",
        type=int,
        default=None,
        help="Limit on estimated tokens per minute",
    )

    parser.add_argument(
        "--max-attempts",
        type=int,
        default=7,
        help="Attempts per backend call (default: 7)",
    )

    parser.add_argument(
        "--initial-delay",
        type=float,
        default=3.0,
        help="Seconds before the first retry, doubled each retry (default: 3)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for stderr diagnostics (default: WARNING)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = build_config(args)
        backend = create_backend(args)
    except (OSError, ValueError, RuntimeError, ChatError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 1

    console.print(f"Using model: [bold]{backend.model_name}[/bold]")

    session = ChatSession(backend, config)
    try:
        session.run(sys.stdin, sys.stdout)
    except KeyboardInterrupt:
        console.print("\nGoodbye!")
    except ChatError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
