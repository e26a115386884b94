"""Command-line interface for azureai."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import cast

from .agent.loop import TurnCancelled
from .agent.models import Confirmation, ToolOutcome, TurnResult, Usage, parse_confirmation
from .config import AppConfig, ConfigError
from .executor import PermissionSettings
from .llm.client import LLMClient, LLMTransportError
from .session import Session
from .shell import create_shell_adapter

LOGGER = logging.getLogger(__name__)

ReadLine = Callable[[str], str]

HELP_ROWS = [
    ("/exit, /quit, /q", "Exit interactive mode"),
    ("/clear, /c", "Clear conversation history"),
    ("/model <name>", "Switch model"),
    ("/model", "Show current model"),
    ("/allow-dangerous", "Allow dangerous commands (with confirmation)"),
    ("/deny-dangerous", "Block dangerous commands again"),
    ("/auto-reads on|off", "Auto-run safe read-only commands"),
    ("/clear-allowlist", "Forget commands approved with 'always'"),
    ("/show-permissions", "Show command execution permissions"),
    ("/help, /h", "Show this help"),
]


class CLIArgs(argparse.Namespace):
    query: str | None
    interactive: bool
    model: str | None
    list_models: bool
    verbose: bool
    usage: bool
    working_directory: str | None
    timeout: float | None
    allow_dangerous: bool


class ConsoleConfirmer:
    """Asks the user on the terminal before a command runs."""

    def __init__(self, read_line: ReadLine = input) -> None:
        self.read_line = read_line

    def confirm(self, command: str, reasoning: str) -> Confirmation:
        print("\n=== COMMAND CONFIRMATION ===")
        print(f"Command: {command}")
        if reasoning:
            print(f"Reason:  {reasoning}")
        print("============================")
        try:
            answer = self.read_line("Execute? [y]es / [a]lways / [N]o: ")
        except EOFError:
            return Confirmation(allow=False)
        return parse_confirmation(answer)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="azure-ai",
        description="Azure OpenAI CLI that can run shell commands on your behalf",
    )
    parser.add_argument("query", nargs="?", help="Question or task for the model")
    parser.add_argument(
        "-i", "--interactive", action="store_true", help="Interactive chat mode"
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Model/deployment name (defaults to first in AZURE_OPENAI_MODELS)",
    )
    parser.add_argument("--list-models", action="store_true", help="List available models")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "-u", "--usage", action="store_true", help="Show token usage statistics"
    )
    parser.add_argument(
        "--cwd",
        dest="working_directory",
        help=(
            "Override the working directory for command execution. "
            "Takes precedence over config/env cwd values."
        ),
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-command execution timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "--allow-dangerous",
        action="store_true",
        help="Start with dangerous commands allowed after confirmation",
    )
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    configure_logging(args.verbose)

    config = AppConfig.from_env()
    if args.model:
        config.model = args.model
    if args.timeout is not None and args.timeout > 0:
        config.command_timeout = args.timeout
    if args.allow_dangerous:
        config.allow_dangerous = True

    if args.list_models:
        if not config.available_models:
            print("No models configured. Set AZURE_OPENAI_MODELS environment variable.")
            print("Example: export AZURE_OPENAI_MODELS=gpt-4o,gpt-35-turbo")
            return 1
        _show_models(config.available_models, config.model)
        return 0

    try:
        config.validate()
    except ConfigError as exc:
        show_error(str(exc))
        return 1

    if not args.interactive and not args.query:
        parser.print_help()
        return 1

    configured_working_directory = (
        args.working_directory if args.working_directory is not None else config.working_directory
    )
    working_directory: str | None = None
    if configured_working_directory is not None:
        resolved_working_directory = Path(configured_working_directory).expanduser().resolve()
        if not resolved_working_directory.exists() or not resolved_working_directory.is_dir():
            print(f"Invalid configured cwd directory: {configured_working_directory}")
            return 1
        working_directory = str(resolved_working_directory)

    try:
        adapter = create_shell_adapter(config.shell, default_timeout=config.command_timeout)
    except ValueError as exc:
        show_error(str(exc))
        return 1
    LOGGER.debug("shell_adapter_selected", extra={"shell": adapter.name})

    client = LLMClient(
        api_key=config.api_key,
        api_url=config.api_url,
        model=config.model,
        timeout=config.request_timeout,
    )
    session = Session(
        config=config,
        client=client,
        shell=adapter,
        confirmer=ConsoleConfirmer(),
        working_directory=working_directory,
    )

    if args.interactive:
        run_interactive(session, show_usage=args.usage)
        return 0
    return 0 if run_turn(session, args.query or "", show_usage=args.usage) else 1


def run_turn(session: Session, text: str, *, show_usage: bool = False) -> bool:
    """Run one turn and print what happened. Returns False when the turn failed."""
    events = session.stream(text)
    try:
        while True:
            try:
                outcome = next(events)
            except StopIteration as stop:
                result = cast(TurnResult, stop.value)
                break
            _show_outcome(outcome)
    except LLMTransportError as exc:
        show_error(str(exc))
        return False
    except (TurnCancelled, KeyboardInterrupt):
        print("\nCancelled.")
        return False

    if result.content:
        print(result.content.strip())
    if show_usage:
        show_usage_table(result.usage)
    if result.exhausted:
        print(
            f"Stopped after {result.rounds} tool rounds without a final answer. "
            "Ask again to continue."
        )
    return True


def run_interactive(
    session: Session, read_line: ReadLine = input, *, show_usage: bool = False
) -> None:
    print("Azure AI CLI - Interactive Mode")
    print(f"Model: {session.model}")
    print("Type /help for commands, Ctrl+C to quit")
    print("Tip: End a line with \\ for multiline input")
    print()

    while True:
        try:
            text = _read_input(read_line)
        except (EOFError, KeyboardInterrupt):
            print("Goodbye!")
            return

        if not text:
            continue
        if text.startswith("/"):
            if handle_command(text, session):
                return
            continue

        print()
        run_turn(session, text, show_usage=show_usage)
        print()


def handle_command(text: str, session: Session) -> bool:
    """Apply a slash command. Returns True when the session should end."""
    parts = text.split(" ", 1)
    command = parts[0].lower()
    argument = parts[1].strip() if len(parts) > 1 else ""

    if command in {"/exit", "/quit", "/q"}:
        print("Goodbye!")
        return True

    if command in {"/clear", "/c"}:
        session.clear()
        print("Conversation cleared.")
    elif command in {"/help", "/h"}:
        print("\nCommands:")
        for usage, description in HELP_ROWS:
            print(f"  {usage:<24} {description}")
        print()
    elif command == "/model":
        _handle_model_command(session, argument)
    elif command == "/allow-dangerous":
        session.permissions.enable_dangerous()
        print("Dangerous commands enabled for this session")
        print("Note: You will still be asked to confirm before execution")
    elif command == "/deny-dangerous":
        session.permissions.disable_dangerous()
        print("Dangerous commands blocked")
    elif command == "/auto-reads":
        _handle_auto_reads_command(session, argument)
    elif command == "/clear-allowlist":
        session.permissions.clear_allowlist()
        print("Approved commands cleared.")
    elif command == "/show-permissions":
        show_permission_settings(session.settings())
    else:
        print(f"Unknown command: {command}")
        print("Type /help for available commands")
    return False


def show_error(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def show_usage_table(usage: Usage) -> None:
    print("\nTokens:")
    print(f"  Input:  {usage.prompt_tokens}")
    print(f"  Output: {usage.completion_tokens}")
    print(f"  Total:  {usage.total_tokens}")


def show_permission_settings(settings: PermissionSettings) -> None:
    print("\nCommand execution permissions:")
    print(f"  Auto-allow read-only commands: {_on_off(settings.auto_allow_reads)}")
    print(f"  Dangerous commands:            {_on_off(settings.dangerous_enabled)}")
    print(f"  Always-approved commands:      {settings.allowlist_count}")
    print()


def _read_input(read_line: ReadLine) -> str:
    text = read_line("> ")
    while text.rstrip(" \t").endswith("\\"):
        text = text.rstrip(" \t")[:-1] + "\n"
        try:
            text += read_line("... ")
        except EOFError:
            break
    return text.strip()


def _handle_model_command(session: Session, argument: str) -> None:
    if not argument:
        print(f"Current model: {session.model}")
        if session.config.available_models:
            print(f"Available: {session.config.available_models_display()}")
        return
    try:
        session.switch_model(argument)
    except ConfigError as exc:
        print(str(exc))
        return
    print(f"Switched to model: {session.model}")


def _handle_auto_reads_command(session: Session, argument: str) -> None:
    normalized = argument.lower()
    if normalized not in {"on", "off"}:
        status = _on_off(session.settings().auto_allow_reads)
        print(f"Auto-allow read-only commands: {status}")
        print("Usage: /auto-reads on | /auto-reads off")
        return
    session.permissions.set_auto_allow_reads(normalized == "on")
    print(f"Auto-allow read-only commands: {normalized}")


def _show_outcome(outcome: ToolOutcome) -> None:
    if outcome.status == "blocked":
        print("\n=== COMMAND BLOCKED ===")
        print(f"Command: {outcome.command}")
        print(f"Reason:  {outcome.decision_reason}")
        return
    if outcome.status == "denied":
        print(f"[denied] {outcome.command}")
        return
    if outcome.status in {"malformed", "unknown_tool"}:
        show_error(outcome.content)
        return

    print(f"$ {outcome.command}")
    output = outcome.content.rstrip()
    if outcome.status == "executed" and outcome.result is not None and not outcome.result.output:
        return
    if output:
        print(output)


def _show_models(models: list[str], current_model: str) -> None:
    print("Available models:")
    for model in models:
        if model == current_model:
            print(f"  * {model} (current)")
        else:
            print(f"    {model}")


def _on_off(value: bool) -> str:
    return "on" if value else "off"


if __name__ == "__main__":
    raise SystemExit(main())
