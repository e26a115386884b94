"""Data models used by the tool-calling agent loop."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Literal, Protocol

from azureai.shell import ExecutionResult

Role = Literal["system", "user", "assistant", "tool"]
ParameterType = Literal["string", "integer", "number", "boolean"]
OutcomeStatus = Literal[
    "executed", "failed", "blocked", "denied", "malformed", "unknown_tool", "cancelled"
]


class ToolArgumentError(ValueError):
    """Raised when a tool call carries an unusable argument payload."""


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A model request to invoke a named tool with JSON-encoded arguments."""

    id: str
    name: str
    arguments: str

    def to_wire(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One entry of the ordered conversation sent to the model."""

    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool messages must reference a tool call id")
        if self.tool_calls and self.role != "assistant":
            raise ValueError("only assistant messages may carry tool calls")

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: tuple[ToolCall, ...] = ()) -> ChatMessage:
        return cls(role="assistant", content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> ChatMessage:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    def to_wire(self) -> dict[str, object]:
        payload: dict[str, object] = {"role": self.role}
        # Some transports reject an explicit empty content next to tool calls.
        if self.content or not self.tool_calls:
            payload["content"] = self.content
        if self.tool_calls:
            payload["tool_calls"] = [call.to_wire() for call in self.tool_calls]
        if self.tool_call_id:
            payload["tool_call_id"] = self.tool_call_id
        return payload


@dataclass(frozen=True, slots=True)
class ToolParameter:
    name: str
    description: str
    type: ParameterType = "string"
    required: bool = True


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Typed description of a tool, serialized to the chat-completions format."""

    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()

    def to_wire(self) -> dict[str, object]:
        properties = {
            parameter.name: {"type": parameter.type, "description": parameter.description}
            for parameter in self.parameters
        }
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": [p.name for p in self.parameters if p.required],
                },
            },
        }


@dataclass(frozen=True, slots=True)
class CommandArguments:
    """Arguments of an ``execute_command`` call."""

    command: str
    reasoning: str

    @classmethod
    def parse(cls, raw: str) -> CommandArguments:
        try:
            payload = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            msg = f"invalid tool arguments: {exc}"
            raise ToolArgumentError(msg) from exc
        if not isinstance(payload, dict):
            raise ToolArgumentError("invalid tool arguments: expected a JSON object")

        command = payload.get("command")
        reasoning = payload.get("reasoning")
        if not isinstance(command, str):
            raise ToolArgumentError("invalid tool arguments: command must be a string")
        if not isinstance(reasoning, str):
            raise ToolArgumentError("invalid tool arguments: reasoning must be a string")
        return cls(command=command, reasoning=reasoning)


@dataclass(frozen=True, slots=True)
class Confirmation:
    """User answer to a confirmation prompt."""

    allow: bool
    always: bool = False


class Confirmer(Protocol):
    def confirm(self, command: str, reasoning: str) -> Confirmation: ...


def parse_confirmation(answer: str) -> Confirmation:
    normalized = answer.strip().lower()
    if normalized in {"y", "yes"}:
        return Confirmation(allow=True, always=False)
    if normalized in {"a", "always"}:
        return Confirmation(allow=True, always=True)
    return Confirmation(allow=False, always=False)


@dataclass(slots=True)
class ToolOutcome:
    """What happened to one tool call, and what the model is told about it."""

    call_id: str
    status: OutcomeStatus
    content: str
    command: str = ""
    reasoning: str = ""
    decision_reason: str | None = None
    result: ExecutionResult | None = None

    @property
    def answered(self) -> bool:
        """True when a tool message was produced for this call."""
        return self.status != "malformed"


@dataclass(frozen=True, slots=True)
class Usage:
    """Token counts reported by the model endpoint."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(slots=True)
class TurnResult:
    """Final state of one user turn.

    ``usage`` is summed over every model round of the turn.
    """

    content: str
    outcomes: list[ToolOutcome] = field(default_factory=list)
    rounds: int = 0
    exhausted: bool = False
    usage: Usage = field(default_factory=Usage)
