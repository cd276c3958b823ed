"""Process backends that run the agent CLI under a terminal."""

from agent_supervisor.orchestrator.backend.base import AgentBackend, ProcessHandle, SpawnRequest
from agent_supervisor.orchestrator.backend.pty_backend import PtyBackend
from agent_supervisor.orchestrator.backend.shell import (
    MACOS,
    WINDOWS,
    build_shell_command,
    escape_shell_arg,
    get_platform_shell,
    get_shell_args,
)

__all__ = [
    "MACOS",
    "WINDOWS",
    "AgentBackend",
    "ProcessHandle",
    "PtyBackend",
    "SpawnRequest",
    "build_shell_command",
    "escape_shell_arg",
    "get_platform_shell",
    "get_shell_args",
]
