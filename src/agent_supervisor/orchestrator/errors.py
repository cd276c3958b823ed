"""Exception hierarchy for task supervision."""

from __future__ import annotations


class SupervisorError(RuntimeError):
    """Base class for supervisor usage and execution errors."""


class SupervisorDisposedError(SupervisorError):
    def __init__(self) -> None:
        super().__init__("Supervisor has been disposed and cannot start new tasks")


class NoActiveProcessError(SupervisorError):
    def __init__(self) -> None:
        super().__init__("No active process")


class AgentCliNotFoundError(SupervisorError):
    """Agent executable or shell could not be launched."""

    def __init__(self, command: str) -> None:
        super().__init__(
            f"Agent CLI is not available: {command}. "
            "Check that it is installed and reachable from your shell PATH.",
        )
        self.command = command


class CompletionError(SupervisorError):
    """Agent exited without completing and the continuation budget is spent."""
