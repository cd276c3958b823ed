"""Backend interface for spawning the supervised agent process."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

DataCallback = Callable[[str], None]
ExitCallback = Callable[[int, "int | None"], None]


@dataclass(slots=True)
class SpawnRequest:
    """Everything needed to launch one shell-wrapped agent invocation."""

    shell: str
    shell_args: list[str]
    cwd: Path
    env: dict[str, str] = field(default_factory=dict)
    rows: int = 30
    cols: int = 32_000


class ProcessHandle(Protocol):
    """Running process with a terminal-like input channel."""

    @property
    def pid(self) -> int:
        """OS process id of the shell."""

    def write(self, data: str) -> None:
        """Send text to the process input."""

    def kill(self) -> None:
        """Terminate immediately, without a grace period."""


class AgentBackend(Protocol):
    """Protocol implemented by process spawners."""

    def spawn(
        self,
        request: SpawnRequest,
        *,
        on_data: DataCallback,
        on_exit: ExitCallback,
    ) -> ProcessHandle:
        """Start the process; ``on_data`` receives output in order, then ``on_exit`` once."""
