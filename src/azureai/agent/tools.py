"""Tool definitions exposed to the model."""

from __future__ import annotations

from azureai.agent.models import ToolDefinition, ToolParameter

EXECUTE_COMMAND = "execute_command"

EXECUTE_COMMAND_TOOL = ToolDefinition(
    name=EXECUTE_COMMAND,
    description=(
        "Execute a shell command in the user's terminal and return the output. Use this"
        " to help users with system tasks, file operations, git commands, package"
        " management, and other terminal operations. The command will run in the"
        " user's current working directory."
    ),
    parameters=(
        ToolParameter(
            name="command",
            description=(
                "The shell command to execute (e.g., 'ls -la', 'git status', 'npm install')"
            ),
        ),
        ToolParameter(
            name="reasoning",
            description=(
                "Brief explanation of why this command is needed to accomplish the"
                " user's request"
            ),
        ),
    ),
)


def default_tools() -> list[ToolDefinition]:
    return [EXECUTE_COMMAND_TOOL]
