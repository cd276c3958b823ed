"""Typed events published by `TaskSupervisor` and a small in-process bus."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from agent_supervisor.orchestrator.models import PermissionRequest, TaskResult, TodoItem
from agent_supervisor.orchestrator.stream_parser import ProtocolMessage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MessageEvent:
    message: ProtocolMessage


@dataclass(slots=True)
class ToolUseEvent:
    tool_name: str
    tool_input: Any


@dataclass(slots=True)
class ToolResultEvent:
    output: str


@dataclass(slots=True)
class PermissionRequestEvent:
    request: PermissionRequest


@dataclass(slots=True)
class ProgressEvent:
    stage: str
    message: str | None = None
    model_name: str | None = None


@dataclass(slots=True)
class CompleteEvent:
    result: TaskResult


@dataclass(slots=True)
class ErrorEvent:
    error: Exception


@dataclass(slots=True)
class DebugEvent:
    type: str
    message: str
    data: Any = None


@dataclass(slots=True)
class TodoUpdateEvent:
    todos: list[TodoItem] = field(default_factory=list)


@dataclass(slots=True)
class AuthErrorEvent:
    provider_id: str
    message: str


SupervisorEvent = (
    MessageEvent
    | ToolUseEvent
    | ToolResultEvent
    | PermissionRequestEvent
    | ProgressEvent
    | CompleteEvent
    | ErrorEvent
    | DebugEvent
    | TodoUpdateEvent
    | AuthErrorEvent
)

EventT = TypeVar("EventT")


class EventBus:
    """Synchronous publish/subscribe keyed by event class.

    Handlers run on the publishing thread. A handler that raises is logged and
    does not affect other handlers or the publisher.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[type, list[Callable[[Any], None]]] = {}
        self._catch_all: list[Callable[[SupervisorEvent], None]] = []

    def subscribe(
        self,
        event_type: type[EventT],
        handler: Callable[[EventT], None],
    ) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it."""

        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def subscribe_all(self, handler: Callable[[SupervisorEvent], None]) -> Callable[[], None]:
        with self._lock:
            self._catch_all.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._catch_all:
                    self._catch_all.remove(handler)

        return _unsubscribe

    def publish(self, event: SupervisorEvent) -> None:
        with self._lock:
            handlers = [*self._handlers.get(type(event), ()), *self._catch_all]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", type(event).__name__)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._catch_all.clear()

    @property
    def has_subscribers(self) -> bool:
        with self._lock:
            return bool(self._catch_all) or any(self._handlers.values())
