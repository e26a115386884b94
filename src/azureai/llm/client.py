"""Thin chat-completions client with tool-calling support."""

from __future__ import annotations

import http.client
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from urllib import request
from urllib.error import HTTPError, URLError

from azureai.agent.models import ChatMessage, ToolCall, ToolDefinition, Usage

LOGGER = logging.getLogger(__name__)


class LLMTransportError(RuntimeError):
    """The model endpoint could not be reached or returned an unusable reply."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class ChatResponse:
    """Assistant reply: either final content or a batch of tool calls."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class LLMClient:
    """Small HTTP client for chat-completions calls."""

    def __init__(
        self,
        *,
        api_key: str | None,
        api_url: str,
        model: str,
        timeout: float = 120.0,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout

    def complete(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition] = (),
    ) -> ChatResponse:
        payload = self._build_payload(messages, tools)
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        LOGGER.debug(
            "llm_request_prepared",
            extra={
                "api_url": self.api_url,
                "model": self.model,
                "payload_bytes": len(body),
                "message_count": len(messages),
                "tool_count": len(tools),
            },
        )

        req = request.Request(self.api_url, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            detail = self._azure_error_message(body_excerpt) or f"status code {exc.code}"
            raise LLMTransportError(
                f"Azure API error: {detail}", status_code=exc.code
            ) from exc
        except URLError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"api_url": self.api_url, "model": self.model, "reason": str(exc.reason)},
            )
            raise LLMTransportError(f"failed to send request: {exc.reason}") from exc
        except TimeoutError as exc:
            LOGGER.error(
                "llm_request_timeout",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "timeout_seconds": self.timeout,
                },
            )
            raise LLMTransportError(
                f"Model request timed out after {self.timeout:.1f}s"
            ) from exc
        except (http.client.HTTPException, OSError) as exc:
            # connection dropped while reading the body
            LOGGER.error(
                "llm_response_read_error",
                extra={"api_url": self.api_url, "model": self.model, "error": repr(exc)},
            )
            raise LLMTransportError(f"failed to read response: {exc!r}") from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "llm_response_parse_error",
                extra={"api_url": self.api_url, "model": self.model, "error": str(exc)},
            )
            raise LLMTransportError(f"failed to parse response: {exc}") from exc

        if not isinstance(raw_response, dict):
            raise LLMTransportError("failed to parse response: expected top-level object")
        response = self._to_chat_response(raw_response)
        LOGGER.debug(
            "llm_response_received",
            extra={
                "model": self.model,
                "tool_calls": len(response.tool_calls),
                "finish_reason": response.finish_reason,
                "total_tokens": response.usage.total_tokens,
            },
        )
        return response

    def _build_payload(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition],
    ) -> dict[str, object]:
        payload: dict[str, object] = {
            "model": self.model,
            "messages": [message.to_wire() for message in messages],
        }
        if tools:
            payload["tools"] = [tool.to_wire() for tool in tools]
        return payload

    @classmethod
    def _to_chat_response(cls, raw: dict[str, object]) -> ChatResponse:
        usage = cls._parse_usage(raw.get("usage"))
        choices = raw.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ChatResponse(content="", usage=usage)

        choice = choices[0]
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
        content = message.get("content")
        finish_reason = choice.get("finish_reason")
        return ChatResponse(
            content=content if isinstance(content, str) else "",
            tool_calls=cls._parse_tool_calls(message.get("tool_calls")),
            usage=usage,
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
        )

    @staticmethod
    def _parse_tool_calls(raw_calls: object) -> list[ToolCall]:
        if not isinstance(raw_calls, list):
            return []

        calls: list[ToolCall] = []
        for raw_call in raw_calls:
            if not isinstance(raw_call, dict):
                continue
            function = raw_call.get("function")
            if not isinstance(function, dict):
                continue
            call_id = raw_call.get("id")
            name = function.get("name")
            arguments = function.get("arguments")
            if not isinstance(call_id, str) or not call_id:
                # a tool result cannot be sent back without the call id
                LOGGER.error("llm_tool_call_missing_id", extra={"tool": name})
                raise LLMTransportError("failed to parse response: tool call without id")
            calls.append(
                ToolCall(
                    id=call_id,
                    name=name if isinstance(name, str) else "",
                    arguments=arguments if isinstance(arguments, str) else "",
                )
            )
        return calls

    @staticmethod
    def _parse_usage(raw_usage: object) -> Usage:
        if not isinstance(raw_usage, dict):
            return Usage()

        def _count(key: str) -> int:
            value = raw_usage.get(key)
            return value if isinstance(value, int) and not isinstance(value, bool) else 0

        return Usage(
            prompt_tokens=_count("prompt_tokens"),
            completion_tokens=_count("completion_tokens"),
            total_tokens=_count("total_tokens"),
        )

    @staticmethod
    def _azure_error_message(body_excerpt: str | None) -> str | None:
        if not body_excerpt:
            return None
        try:
            parsed = json.loads(body_excerpt)
        except json.JSONDecodeError:
            return None
        if not isinstance(parsed, dict):
            return None
        error = parsed.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message:
                return message
        return None

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt
