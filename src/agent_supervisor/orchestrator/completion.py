"""Completion enforcement for agent runs that exit without a clear "done".

An agent CLI may exit 0 after narrating a plan or doing part of the work.
`CompletionEnforcer` tracks the evidence seen during a run (tool usage,
todos, an explicit ``complete_task`` call) and, on a clean exit, either
reports success or resumes the same session with a nudge prompt, at most
``max_continuation_attempts`` times.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agent_supervisor.orchestrator.errors import CompletionError
from agent_supervisor.orchestrator.models import TodoItem

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTINUATION_ATTEMPTS = 5

_NATURAL_STOP_REASONS = frozenset({"stop", "end_turn"})

CONTINUATION_PROMPT = (
    "You stopped before the task was finished. Review what is left, complete the "
    "remaining work now, and call the complete_task tool when everything is done. "
    "If you are blocked, call complete_task with status \"blocked\" and explain why."
)

TODO_CONTINUATION_PROMPT = (
    "You marked the task complete, but these todo items are still open:\n"
    "{todos}\n\n"
    "Finish them (or update their status with todowrite if they no longer apply), "
    "then call complete_task again."
)


class CompletionFlowState(str, Enum):
    IDLE = "idle"
    COMPLETE_TASK_CALLED = "complete_task_called"
    CONTINUATION_PENDING = "continuation_pending"
    MAX_RETRIES_REACHED = "max_retries_reached"
    DONE = "done"


class StepFinishAction(str, Enum):
    """What the supervisor should do after a ``step_finish`` record."""

    CONTINUE = "continue"
    PENDING = "pending"
    COMPLETE = "complete"


@dataclass(slots=True)
class CompleteTaskArgs:
    status: str
    summary: str = ""
    remaining_work: str | None = None

    @classmethod
    def from_input(cls, tool_input: Any) -> CompleteTaskArgs:
        if not isinstance(tool_input, dict):
            return cls(status="success")
        return cls(
            status=str(tool_input.get("status") or "success"),
            summary=str(tool_input.get("summary") or ""),
            remaining_work=(
                str(tool_input["remaining_work"]) if tool_input.get("remaining_work") else None
            ),
        )


@dataclass(slots=True)
class CompletionEnforcerCallbacks:
    on_start_continuation: Callable[[str], None]
    on_complete: Callable[[], None]
    on_debug: Callable[[str, str, Any], None] = field(default=lambda *_: None)


class CompletionEnforcer:
    """Callback-driven state machine deciding whether a clean exit means done."""

    def __init__(
        self,
        callbacks: CompletionEnforcerCallbacks,
        *,
        max_continuation_attempts: int = DEFAULT_MAX_CONTINUATION_ATTEMPTS,
    ) -> None:
        self.callbacks = callbacks
        self.max_continuation_attempts = max_continuation_attempts
        self.state = CompletionFlowState.IDLE
        self.continuation_attempts = 0
        self.tools_used = False
        self.complete_task_args: CompleteTaskArgs | None = None
        self.todos: list[TodoItem] = []
        self._pending_prompt: str | None = None

    def reset(self) -> None:
        self.state = CompletionFlowState.IDLE
        self.continuation_attempts = 0
        self.tools_used = False
        self.complete_task_args = None
        self.todos = []
        self._pending_prompt = None

    def mark_tools_used(self) -> None:
        self.tools_used = True

    def update_todos(self, todos: list[TodoItem]) -> None:
        self.todos = list(todos)
        self._debug("todos", f"Tracking {len(self.todos)} todos", {"open": len(self.open_todos)})

    @property
    def open_todos(self) -> list[TodoItem]:
        return [todo for todo in self.todos if todo.is_open]

    def handle_complete_task_detection(self, tool_input: Any) -> bool:
        """Record an explicit ``complete_task`` call; return True the first time."""

        if self.state in (CompletionFlowState.COMPLETE_TASK_CALLED, CompletionFlowState.DONE):
            return False
        self.complete_task_args = CompleteTaskArgs.from_input(tool_input)
        self.state = CompletionFlowState.COMPLETE_TASK_CALLED
        self._pending_prompt = None
        self._debug(
            "complete_task",
            f"complete_task called with status={self.complete_task_args.status}",
            {"summary": self.complete_task_args.summary},
        )
        return True

    def handle_step_finish(self, reason: str | None) -> StepFinishAction:
        if reason not in _NATURAL_STOP_REASONS:
            return StepFinishAction.CONTINUE

        if self.complete_task_args is not None:
            open_todos = self.open_todos
            if self.complete_task_args.status == "success" and open_todos:
                self._schedule(_todo_prompt(open_todos))
                return StepFinishAction.PENDING
            self.state = CompletionFlowState.DONE
            return StepFinishAction.COMPLETE

        if not self.tools_used:
            # plain conversational answer, nothing to enforce
            self.state = CompletionFlowState.DONE
            return StepFinishAction.COMPLETE

        self._schedule(CONTINUATION_PROMPT)
        return StepFinishAction.PENDING

    def handle_process_exit(self, exit_code: int) -> None:
        """Resolve a clean exit: complete, continue, or raise `CompletionError`."""

        if self.state is CompletionFlowState.DONE:
            self.callbacks.on_complete()
            return

        if self._pending_prompt is None:
            # exited without a natural step_finish
            args = self.complete_task_args
            if args is None and self.tools_used:
                self._schedule(CONTINUATION_PROMPT)
            elif args is not None and args.status == "success" and self.open_todos:
                self._schedule(_todo_prompt(self.open_todos))

        if self._pending_prompt is None:
            self.state = CompletionFlowState.DONE
            self.callbacks.on_complete()
            return

        if self.continuation_attempts >= self.max_continuation_attempts:
            self.state = CompletionFlowState.MAX_RETRIES_REACHED
            self._debug(
                "continuation",
                "Continuation budget exhausted",
                {"attempts": self.continuation_attempts, "exit_code": exit_code},
            )
            raise CompletionError(
                "Agent stopped without completing the task and exceeded "
                f"{self.max_continuation_attempts} continuation attempts",
            )

        prompt, self._pending_prompt = self._pending_prompt, None
        self.continuation_attempts += 1
        self.state = CompletionFlowState.IDLE
        self._debug(
            "continuation",
            f"Starting continuation {self.continuation_attempts}/{self.max_continuation_attempts}",
            {"exit_code": exit_code},
        )
        self.callbacks.on_start_continuation(prompt)

    def _schedule(self, prompt: str) -> None:
        self._pending_prompt = prompt
        self.state = CompletionFlowState.CONTINUATION_PENDING
        if self.complete_task_args is not None:
            # a fresh complete_task is required after the nudge
            self.complete_task_args = None

    def _debug(self, kind: str, message: str, data: Any = None) -> None:
        logger.debug("Completion enforcer %s: %s", kind, message)
        self.callbacks.on_debug(kind, message, data)


def _todo_prompt(todos: list[TodoItem]) -> str:
    listing = "\n".join(f"- [{todo.status.value}] {todo.content}" for todo in todos)
    return TODO_CONTINUATION_PROMPT.format(todos=listing)
