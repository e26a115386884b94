from __future__ import annotations

import json
from pathlib import Path

import pytest

from azureai import cli
from azureai.agent.models import Confirmation, ToolCall, ToolOutcome, Usage
from azureai.config import AppConfig
from azureai.llm.client import ChatResponse, LLMTransportError
from azureai.session import Session
from azureai.shell import ExecutionResult


def _fake_config() -> AppConfig:
    return AppConfig(
        endpoint="https://example.openai.azure.com",
        api_key="key",
        model="gpt-4o",
        available_models=["gpt-4o", "gpt-35-turbo"],
        log_dir=None,
    )


class FakeAdapter:
    name = "fake"

    def __init__(self) -> None:
        self.commands: list[str] = []

    def execute(self, command, *, cwd=None, timeout=None, cancel_event=None):
        self.commands.append(command)
        return ExecutionResult(command=command, output="file.txt\n", exit_code=0, duration=0.0)


class FakeClient:
    responses: list[object] = []
    instances: list[FakeClient] = []

    def __init__(self, *, api_key, api_url, model, timeout) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self.seen: list[list[object]] = []
        FakeClient.instances.append(self)

    def complete(self, messages, tools=()):
        self.seen.append(list(messages))
        response = FakeClient.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class NoConfirmer:
    def confirm(self, command: str, reasoning: str) -> Confirmation:
        return Confirmation(allow=False)


def _patch_runtime(
    monkeypatch: pytest.MonkeyPatch,
    responses: list[object],
    config_factory=_fake_config,
) -> FakeAdapter:
    adapter = FakeAdapter()
    FakeClient.responses = list(responses)
    FakeClient.instances = []
    monkeypatch.setattr(
        cli,
        "AppConfig",
        type("FakeConfig", (), {"from_env": staticmethod(config_factory)}),
    )
    monkeypatch.setattr(cli, "LLMClient", FakeClient)
    monkeypatch.setattr(
        cli, "create_shell_adapter", lambda _name, default_timeout: adapter
    )
    return adapter


def _session(responses: list[object] | None = None) -> Session:
    FakeClient.responses = list(responses or [])
    client = FakeClient(api_key="key", api_url="https://x", model="gpt-4o", timeout=1.0)
    return Session(
        config=_fake_config(),
        client=client,
        shell=FakeAdapter(),
        confirmer=NoConfirmer(),
    )


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])

    assert args.query is None
    assert args.interactive is False
    assert args.model is None
    assert args.working_directory is None
    assert args.timeout is None
    assert args.allow_dangerous is False


def test_parser_accepts_flags() -> None:
    args = cli.build_parser().parse_args(
        ["-i", "-m", "gpt-35-turbo", "--cwd", "./sandbox", "--timeout", "5", "--allow-dangerous"]
    )

    assert args.interactive is True
    assert args.model == "gpt-35-turbo"
    assert args.working_directory == "./sandbox"
    assert args.timeout == 5.0
    assert args.allow_dangerous is True


def test_main_reports_missing_endpoint(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def config_without_endpoint() -> AppConfig:
        config = _fake_config()
        config.endpoint = None
        return config

    _patch_runtime(monkeypatch, [], config_without_endpoint)

    assert cli.main(["list files"]) == 1
    assert "Error: Azure endpoint not found" in capsys.readouterr().err


def test_main_rejects_invalid_model(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _patch_runtime(monkeypatch, [])

    assert cli.main(["-m", "o1", "hi"]) == 1
    assert "invalid model specified: o1" in capsys.readouterr().err


def test_main_lists_models(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _patch_runtime(monkeypatch, [])

    assert cli.main(["--list-models"]) == 0
    out = capsys.readouterr().out
    assert "* gpt-4o (current)" in out
    assert "gpt-35-turbo" in out


def test_main_without_query_prints_help(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _patch_runtime(monkeypatch, [])

    assert cli.main([]) == 1
    assert "usage: azure-ai" in capsys.readouterr().out


def test_main_rejects_invalid_cwd_from_config(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def fake_config_with_missing_cwd() -> AppConfig:
        config = _fake_config()
        config.working_directory = "./definitely-missing-dir"
        return config

    _patch_runtime(monkeypatch, [], fake_config_with_missing_cwd)

    assert cli.main(["list files"]) == 1
    assert "Invalid configured cwd directory" in capsys.readouterr().out


def test_main_runs_one_shot_query(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    call = ToolCall(
        id="c1",
        name="execute_command",
        arguments=json.dumps({"command": "ls", "reasoning": "look"}),
    )
    adapter = _patch_runtime(
        monkeypatch,
        [ChatResponse(content="", tool_calls=[call]), ChatResponse(content="One file.")],
    )
    monkeypatch.setattr("sys.argv", ["azure-ai", "--cwd", str(tmp_path), "what is here?"])

    assert cli.main() == 0

    out = capsys.readouterr().out
    assert "$ ls" in out
    assert "file.txt" in out
    assert "One file." in out
    assert adapter.commands == ["ls"]
    client = FakeClient.instances[0]
    assert client.api_url == "https://example.openai.azure.com/openai/v1/chat/completions"


def test_main_returns_error_on_transport_failure(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _patch_runtime(monkeypatch, [LLMTransportError("Azure API error: status code 401")])

    assert cli.main(["hi"]) == 1
    assert "Error: Azure API error: status code 401" in capsys.readouterr().err


def test_interactive_mode_joins_continued_lines(
    capsys: pytest.CaptureFixture[str],
) -> None:
    session = _session([ChatResponse(content="Hi there.")])
    lines = iter(["hello\\", "world", "/exit"])

    cli.run_interactive(session, read_line=lambda _prompt: next(lines))

    assert session.messages[1].content == "hello\nworld"
    out = capsys.readouterr().out
    assert "Hi there." in out
    assert "Goodbye!" in out


def test_interactive_mode_exits_on_eof(capsys: pytest.CaptureFixture[str]) -> None:
    def read_line(_prompt: str) -> str:
        raise EOFError

    cli.run_interactive(_session(), read_line=read_line)

    assert "Goodbye!" in capsys.readouterr().out


@pytest.mark.parametrize("command", ["/exit", "/quit", "/q", "/QUIT"])
def test_exit_commands(command: str) -> None:
    assert cli.handle_command(command, _session()) is True


def test_permission_commands(capsys: pytest.CaptureFixture[str]) -> None:
    session = _session()

    cli.handle_command("/allow-dangerous", session)
    cli.handle_command("/auto-reads off", session)
    session.permissions.add_to_allowlist("make")
    cli.handle_command("/show-permissions", session)

    assert session.settings().dangerous_enabled is True
    assert session.settings().auto_allow_reads is False
    out = capsys.readouterr().out
    assert "Dangerous commands enabled" in out
    assert "Auto-allow read-only commands: off" in out
    assert "Always-approved commands:      1" in out

    cli.handle_command("/deny-dangerous", session)
    cli.handle_command("/clear-allowlist", session)

    assert session.settings().as_dict() == {
        "auto_allow_reads": False,
        "dangerous_enabled": False,
        "allowlist_count": 0,
    }


def test_model_command(capsys: pytest.CaptureFixture[str]) -> None:
    session = _session()

    cli.handle_command("/model", session)
    cli.handle_command("/model o1", session)
    cli.handle_command("/model gpt-35-turbo", session)

    out = capsys.readouterr().out
    assert "Current model: gpt-4o" in out
    assert "Invalid model: o1" in out
    assert "Switched to model: gpt-35-turbo" in out
    assert session.client.model == "gpt-35-turbo"


def test_clear_and_unknown_commands(capsys: pytest.CaptureFixture[str]) -> None:
    session = _session([ChatResponse(content="hello")])
    session.ask("hi")

    assert cli.handle_command("/c", session) is False
    assert cli.handle_command("/bogus", session) is False

    assert len(session.messages) == 1
    out = capsys.readouterr().out
    assert "Conversation cleared." in out
    assert "Unknown command: /bogus" in out


@pytest.mark.parametrize(
    ("answer", "expected"),
    [
        ("y", Confirmation(allow=True)),
        ("YES", Confirmation(allow=True)),
        ("a", Confirmation(allow=True, always=True)),
        ("", Confirmation(allow=False)),
        ("nope", Confirmation(allow=False)),
    ],
)
def test_console_confirmer(
    answer: str, expected: Confirmation, capsys: pytest.CaptureFixture[str]
) -> None:
    confirmer = cli.ConsoleConfirmer(read_line=lambda _prompt: answer)

    assert confirmer.confirm("npm install", "install deps") == expected
    out = capsys.readouterr().out
    assert "Command: npm install" in out
    assert "install deps" in out


def test_console_confirmer_denies_on_eof() -> None:
    def read_line(_prompt: str) -> str:
        raise EOFError

    assert cli.ConsoleConfirmer(read_line=read_line).confirm("rm x", "") == Confirmation(
        allow=False
    )


def test_blocked_outcome_shows_command_and_reason(capsys: pytest.CaptureFixture[str]) -> None:
    cli._show_outcome(
        ToolOutcome(
            call_id="c1",
            status="blocked",
            content="Command blocked: nope",
            command="sudo reboot",
            decision_reason="Dangerous command blocked (use /allow-dangerous to enable)",
        )
    )

    out = capsys.readouterr().out
    assert "sudo reboot" in out
    assert "use /allow-dangerous to enable" in out


def test_parser_accepts_usage_flag() -> None:
    assert cli.build_parser().parse_args(["-u", "hi"]).usage is True
    assert cli.build_parser().parse_args(["--usage", "hi"]).usage is True


def test_main_shows_usage_summed_over_rounds(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    call = ToolCall(
        id="c1",
        name="execute_command",
        arguments=json.dumps({"command": "ls", "reasoning": "look"}),
    )
    _patch_runtime(
        monkeypatch,
        [
            ChatResponse(
                content="",
                tool_calls=[call],
                usage=Usage(prompt_tokens=100, completion_tokens=20, total_tokens=120),
            ),
            ChatResponse(
                content="One file.",
                usage=Usage(prompt_tokens=150, completion_tokens=30, total_tokens=180),
            ),
        ],
    )

    assert cli.main(["--usage", "what is here?"]) == 0

    out = capsys.readouterr().out
    assert "Tokens:" in out
    assert "Input:  250" in out
    assert "Output: 50" in out
    assert "Total:  300" in out
    assert out.index("One file.") < out.index("Tokens:")


def test_usage_hidden_by_default(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _patch_runtime(monkeypatch, [ChatResponse(content="Hi.", usage=Usage(total_tokens=9))])

    assert cli.main(["hi"]) == 0
    assert "Tokens:" not in capsys.readouterr().out


def test_turn_survives_unwritable_audit_log(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    blocker = tmp_path / "logs"
    blocker.write_text("not a directory", encoding="utf-8")
    config = _fake_config()
    config.log_dir = str(blocker)
    call = ToolCall(
        id="c1",
        name="execute_command",
        arguments=json.dumps({"command": "ls", "reasoning": "look"}),
    )
    FakeClient.responses = [
        ChatResponse(content="", tool_calls=[call]),
        ChatResponse(content="Listed."),
    ]
    adapter = FakeAdapter()
    session = Session(
        config=config,
        client=FakeClient(api_key="key", api_url="https://x", model="gpt-4o", timeout=1.0),
        shell=adapter,
        confirmer=NoConfirmer(),
    )

    assert cli.run_turn(session, "hi") is True

    assert adapter.commands == ["ls"]
    assert [message.role for message in session.messages] == [
        "system",
        "user",
        "assistant",
        "tool",
        "assistant",
    ]
    assert "Listed." in capsys.readouterr().out
