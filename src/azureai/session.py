"""Interactive session state: conversation, permissions and the agent loop."""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator

from azureai.agent.loop import AgentLoop
from azureai.agent.models import ChatMessage, Confirmer, ToolOutcome, TurnResult
from azureai.config import AppConfig, ConfigError
from azureai.executor import PermissionManager, PermissionSettings
from azureai.llm.client import LLMClient
from azureai.shell import ShellAdapter

LOGGER = logging.getLogger(__name__)


class Session:
    """One user's conversation with the model.

    The conversation list is owned by this object and only mutated from the
    thread driving ``ask``/``stream``. A failed or cancelled turn leaves the
    conversation as it was before the turn started.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        client: LLMClient,
        shell: ShellAdapter,
        confirmer: Confirmer,
        permissions: PermissionManager | None = None,
        working_directory: str | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.permissions = permissions or PermissionManager(
            auto_allow_reads=config.auto_allow_reads,
            dangerous_enabled=config.allow_dangerous,
        )
        self.cancel_event = threading.Event()
        self.loop = AgentLoop(
            client=client,
            shell=shell,
            permissions=self.permissions,
            confirmer=confirmer,
            log_dir=config.log_dir,
            max_rounds=config.max_rounds,
            working_directory=working_directory,
            command_timeout=config.command_timeout,
            cancel_event=self.cancel_event,
        )
        self.messages: list[ChatMessage] = [ChatMessage.system(config.system_prompt)]

    @property
    def model(self) -> str:
        return self.config.model

    def ask(self, text: str) -> TurnResult:
        events = self.stream(text)
        while True:
            try:
                next(events)
            except StopIteration as stop:
                return stop.value

    def stream(self, text: str) -> Generator[ToolOutcome, None, TurnResult]:
        """Run a turn for ``text``; yields tool outcomes, returns the ``TurnResult``."""
        self.cancel_event.clear()
        checkpoint = len(self.messages)
        self.messages.append(ChatMessage.user(text))
        try:
            result = yield from self.loop.iter_turn(self.messages)
        except BaseException as exc:
            # transport failure, cancellation, Ctrl+C or an abandoned generator
            self._rollback(checkpoint, reason=type(exc).__name__)
            raise

        if result.content:
            self.messages.append(ChatMessage.assistant(result.content))
        return result

    def cancel(self) -> None:
        self.cancel_event.set()

    def clear(self) -> None:
        self.messages = [ChatMessage.system(self.config.system_prompt)]

    def switch_model(self, model: str) -> None:
        if not self.config.is_known_model(model):
            raise ConfigError(
                f"Invalid model: {model}. Available: {self.config.available_models_display()}"
            )
        self.config.model = model
        self.client.model = model
        LOGGER.info("model_switched", extra={"model": model})

    def settings(self) -> PermissionSettings:
        return self.permissions.get_settings()

    def _rollback(self, checkpoint: int, *, reason: str) -> None:
        dropped = len(self.messages) - checkpoint
        del self.messages[checkpoint:]
        LOGGER.warning("turn_rolled_back", extra={"reason": reason, "dropped_messages": dropped})
