"""Tool-calling orchestration loop: ask the model, run what it asks for, repeat."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Generator, Sequence
from datetime import datetime, timezone
from pathlib import Path

from azureai.agent.models import (
    ChatMessage,
    CommandArguments,
    Confirmer,
    ToolArgumentError,
    ToolCall,
    ToolDefinition,
    ToolOutcome,
    TurnResult,
    Usage,
)
from azureai.agent.tools import EXECUTE_COMMAND, default_tools
from azureai.executor import PermissionManager
from azureai.llm.client import LLMClient
from azureai.shell import CommandSetupError, ShellAdapter

LOGGER = logging.getLogger(__name__)

NO_OUTPUT_SENTINEL = "Command executed successfully (no output)"
DENIED_BY_USER = "Command execution denied by user"
CANCELLED_BY_USER = "Command execution cancelled by user"


class TurnCancelled(RuntimeError):
    """The shared cancel signal was raised while a turn was in progress."""


class AgentLoop:
    """Runs model rounds until the model answers without requesting tools.

    Each round appends one assistant message carrying the tool calls followed by
    one tool message per call, in request order. Nothing from a round reaches the
    conversation until every call in it has been answered, so an interrupted
    round leaves the conversation exactly as it was before the round started.
    """

    def __init__(
        self,
        *,
        client: LLMClient,
        shell: ShellAdapter,
        permissions: PermissionManager,
        confirmer: Confirmer,
        log_dir: str | Path | None = None,
        max_rounds: int = 20,
        working_directory: str | None = None,
        command_timeout: float | None = None,
        tools: Sequence[ToolDefinition] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.shell = shell
        self.permissions = permissions
        self.confirmer = confirmer
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.max_rounds = max_rounds
        self.working_directory = working_directory
        self.command_timeout = command_timeout
        self.tools = list(tools) if tools is not None else default_tools()
        self.cancel_event = cancel_event

    def run_turn(self, conversation: list[ChatMessage]) -> TurnResult:
        events = self.iter_turn(conversation)
        while True:
            try:
                next(events)
            except StopIteration as stop:
                return stop.value

    def iter_turn(
        self, conversation: list[ChatMessage]
    ) -> Generator[ToolOutcome, None, TurnResult]:
        """Drive one turn, yielding each tool outcome as soon as it is known.

        The generator's return value is the final ``TurnResult``.
        """
        outcomes: list[ToolOutcome] = []
        usage = Usage()
        for round_index in range(1, self.max_rounds + 1):
            self._raise_if_cancelled()
            LOGGER.debug(
                "model_round_started",
                extra={"round": round_index, "message_count": len(conversation)},
            )
            response = self.client.complete(conversation, self.tools)
            usage = usage + response.usage
            if not response.has_tool_calls:
                return TurnResult(
                    content=response.content,
                    outcomes=outcomes,
                    rounds=round_index,
                    usage=usage,
                )

            pending = [ChatMessage.assistant(response.content, tuple(response.tool_calls))]
            for call in response.tool_calls:
                self._raise_if_cancelled()
                outcome = self._process_call(call)
                outcomes.append(outcome)
                self._append_log(outcome, round_index=round_index)
                yield outcome
                if outcome.status == "cancelled":
                    raise TurnCancelled(f"cancelled while running: {outcome.command}")
                if outcome.answered:
                    pending.append(ChatMessage.tool(call.id, outcome.content))
            conversation.extend(pending)

        LOGGER.warning("round_budget_exhausted", extra={"max_rounds": self.max_rounds})
        return TurnResult(
            content="",
            outcomes=outcomes,
            rounds=self.max_rounds,
            exhausted=True,
            usage=usage,
        )

    def _process_call(self, call: ToolCall) -> ToolOutcome:
        if not call.id:
            # nothing to answer against; never run a command we cannot report
            LOGGER.warning("tool_call_missing_id", extra={"tool": call.name})
            return ToolOutcome(
                call_id=call.id, status="malformed", content="tool call without id"
            )

        if call.name != EXECUTE_COMMAND:
            LOGGER.warning("unknown_tool_requested", extra={"call_id": call.id, "tool": call.name})
            return ToolOutcome(
                call_id=call.id,
                status="unknown_tool",
                content=f"Unknown tool: {call.name}",
            )

        try:
            arguments = CommandArguments.parse(call.arguments)
        except ToolArgumentError as exc:
            LOGGER.warning(
                "tool_arguments_malformed",
                extra={"call_id": call.id, "error": str(exc)},
            )
            return ToolOutcome(call_id=call.id, status="malformed", content=str(exc))

        decision = self.permissions.check_permission(arguments.command)
        if decision.blocked:
            LOGGER.warning(
                "command_blocked",
                extra={"call_id": call.id, "reason": decision.reason},
            )
            return ToolOutcome(
                call_id=call.id,
                status="blocked",
                content=f"Command blocked: {decision.reason}",
                command=arguments.command,
                reasoning=arguments.reasoning,
                decision_reason=decision.reason,
            )

        if decision.needs_confirm:
            confirmation = self.confirmer.confirm(arguments.command, arguments.reasoning)
            if not confirmation.allow:
                return ToolOutcome(
                    call_id=call.id,
                    status="denied",
                    content=DENIED_BY_USER,
                    command=arguments.command,
                    reasoning=arguments.reasoning,
                    decision_reason=decision.reason,
                )
            if confirmation.always:
                self.permissions.add_to_allowlist(arguments.command)

        return self._execute(call, arguments, decision_reason=decision.reason)

    def _execute(
        self, call: ToolCall, arguments: CommandArguments, *, decision_reason: str
    ) -> ToolOutcome:
        try:
            result = self.shell.execute(
                arguments.command,
                cwd=self.working_directory,
                timeout=self.command_timeout,
                cancel_event=self.cancel_event,
            )
        except CommandSetupError as exc:
            return ToolOutcome(
                call_id=call.id,
                status="failed",
                content=f"Command could not be started: {exc}",
                command=arguments.command,
                reasoning=arguments.reasoning,
                decision_reason=decision_reason,
            )

        if result.cancelled:
            status = "cancelled"
            content = CANCELLED_BY_USER
        elif result.succeeded:
            status = "executed"
            content = result.output or NO_OUTPUT_SENTINEL
        else:
            status = "failed"
            content = result.format_failure()

        return ToolOutcome(
            call_id=call.id,
            status=status,
            content=content,
            command=arguments.command,
            reasoning=arguments.reasoning,
            decision_reason=decision_reason,
            result=result,
        )

    def _raise_if_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise TurnCancelled("turn cancelled")

    def _append_log(self, outcome: ToolOutcome, *, round_index: int) -> None:
        LOGGER.info(
            "tool_call_processed",
            extra={"call_id": outcome.call_id, "status": outcome.status, "round": round_index},
        )
        if self.log_dir is None:
            return

        day_file = self.log_dir / f"session-{datetime.now(timezone.utc).date().isoformat()}.log"
        result = outcome.result
        entry = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": getattr(self.client, "model", None),
            "shell": getattr(self.shell, "name", self.shell.__class__.__name__),
            "working_directory": self.working_directory,
            "round": round_index,
            "call_id": outcome.call_id,
            "status": outcome.status,
            "command": outcome.command,
            "reasoning": outcome.reasoning,
            "decision_reason": outcome.decision_reason,
            "exit_code": result.exit_code if result else None,
            "duration": result.duration if result else None,
            "timed_out": result.timed_out if result else False,
        }
        # audit logging never affects the round
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with day_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry) + "\n")
        except OSError as exc:
            LOGGER.warning(
                "audit_log_write_failed",
                extra={"log_file": str(day_file), "error": str(exc)},
            )
