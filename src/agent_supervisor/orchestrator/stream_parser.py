"""Newline-delimited JSON protocol parser for agent CLI output.

The agent runs inside a pseudo-terminal, so its JSON records arrive mixed
with terminal control sequences, carriage returns and arbitrary chunk
boundaries. `StreamParser` buffers raw text, strips control sequences per
complete line and turns each JSON object into one `ProtocolMessage`.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

logger = logging.getLogger(__name__)

MAX_BUFFER_CHARS = 10 * 1024 * 1024

_CSI_SEQUENCE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")
_OSC_BEL_SEQUENCE = re.compile(r"\x1b\][^\x07]*\x07")
_OSC_ST_SEQUENCE = re.compile(r"\x1b\][^\x1b]*\x1b\\")


def strip_terminal_sequences(text: str) -> str:
    """Remove CSI/OSC escape sequences and carriage returns."""

    cleaned = _CSI_SEQUENCE.sub("", text)
    cleaned = _OSC_BEL_SEQUENCE.sub("", cleaned)
    cleaned = _OSC_ST_SEQUENCE.sub("", cleaned)
    return cleaned.replace("\r", "")


@dataclass(slots=True)
class StepStartMessage:
    kind: ClassVar[str] = "step_start"

    session_id: str | None
    timestamp: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class TextMessage:
    kind: ClassVar[str] = "text"

    session_id: str | None
    text: str
    message_id: str | None = None
    timestamp: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class ToolCallMessage:
    kind: ClassVar[str] = "tool_call"

    session_id: str | None
    tool: str
    input: Any = None
    message_id: str | None = None
    timestamp: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class ToolUseMessage:
    """Tool invocation with its execution state (pending, running, completed or error)."""

    kind: ClassVar[str] = "tool_use"

    session_id: str | None
    tool: str
    input: Any = None
    status: str | None = None
    output: str = ""
    message_id: str | None = None
    timestamp: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class ToolResultMessage:
    kind: ClassVar[str] = "tool_result"

    session_id: str | None
    output: str
    tool: str | None = None
    timestamp: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class StepFinishMessage:
    kind: ClassVar[str] = "step_finish"

    session_id: str | None
    reason: str | None
    tokens: dict[str, Any] = field(default_factory=dict)
    cost: float | None = None
    timestamp: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class ErrorMessage:
    kind: ClassVar[str] = "error"

    session_id: str | None
    error: str
    error_name: str | None = None
    timestamp: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class UnknownMessage:
    """Record with a type this parser does not know; kept for forward compatibility."""

    kind: ClassVar[str] = "unknown"

    type: str
    session_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


ProtocolMessage = (
    StepStartMessage
    | TextMessage
    | ToolCallMessage
    | ToolUseMessage
    | ToolResultMessage
    | StepFinishMessage
    | ErrorMessage
    | UnknownMessage
)


@dataclass(slots=True)
class StreamParseWarning:
    """Recoverable parse failure for one line of output."""

    message: str
    line: str


def parse_protocol_message(payload: dict[str, Any]) -> ProtocolMessage:  # noqa: PLR0911
    """Build the typed variant for one decoded JSON record."""

    message_type = str(payload.get("type") or "")
    part = payload.get("part")
    if not isinstance(part, dict):
        part = {}
    session_id = _as_str(part.get("sessionID")) or _as_str(payload.get("sessionID"))
    timestamp = _as_float(payload.get("timestamp"))
    message_id = _as_str(part.get("messageID"))

    if message_type == "step_start":
        return StepStartMessage(session_id=session_id, timestamp=timestamp, raw=payload)
    if message_type == "text":
        return TextMessage(
            session_id=session_id,
            text=_as_str(part.get("text")) or "",
            message_id=message_id,
            timestamp=timestamp,
            raw=payload,
        )
    if message_type == "tool_call":
        return ToolCallMessage(
            session_id=session_id,
            tool=_as_str(part.get("tool")) or "unknown",
            input=part.get("input"),
            message_id=message_id,
            timestamp=timestamp,
            raw=payload,
        )
    if message_type == "tool_use":
        state = part.get("state")
        if not isinstance(state, dict):
            state = {}
        return ToolUseMessage(
            session_id=session_id,
            tool=_as_str(part.get("tool")) or "unknown",
            input=state.get("input", part.get("input")),
            status=_as_str(state.get("status")),
            output=_as_text(state.get("output")),
            message_id=message_id,
            timestamp=timestamp,
            raw=payload,
        )
    if message_type == "tool_result":
        return ToolResultMessage(
            session_id=session_id,
            output=_as_text(part.get("output")),
            tool=_as_str(part.get("tool")),
            timestamp=timestamp,
            raw=payload,
        )
    if message_type == "step_finish":
        tokens = part.get("tokens")
        return StepFinishMessage(
            session_id=session_id,
            reason=_as_str(part.get("reason")),
            tokens=tokens if isinstance(tokens, dict) else {},
            cost=_as_float(part.get("cost")),
            timestamp=timestamp,
            raw=payload,
        )
    if message_type == "error":
        error_name, error_text = _error_details(payload.get("error"))
        return ErrorMessage(
            session_id=session_id,
            error=error_text,
            error_name=error_name,
            timestamp=timestamp,
            raw=payload,
        )
    return UnknownMessage(type=message_type or "<missing>", session_id=session_id, raw=payload)


class StreamParser:
    """Incremental parser; feed chunks in receive order."""

    def __init__(
        self,
        on_message: Callable[[ProtocolMessage], None] | None = None,
        on_warning: Callable[[StreamParseWarning], None] | None = None,
        *,
        max_buffer_chars: int = MAX_BUFFER_CHARS,
    ) -> None:
        self.on_message = on_message
        self.on_warning = on_warning
        self.max_buffer_chars = max_buffer_chars
        self._buffer = ""

    def feed(self, chunk: str) -> None:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._parse_line(line)

        if len(self._buffer) > self.max_buffer_chars:
            self._warn("Discarding oversized partial record", self._buffer[:200])
            self._buffer = ""

    def flush(self) -> None:
        """Parse whatever is left in the buffer as a final record."""

        remainder, self._buffer = self._buffer, ""
        if remainder:
            self._parse_line(remainder)

    def reset(self) -> None:
        self._buffer = ""

    def _parse_line(self, raw_line: str) -> None:
        line = strip_terminal_sequences(raw_line).strip()
        if not line.startswith("{"):
            if line:
                logger.debug("Skipping non-JSON output: %s", line[:200])
            return
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as error:
            self._warn(f"Failed to parse JSON record: {error}", line)
            return
        if not isinstance(payload, dict):
            self._warn("JSON record is not an object", line)
            return
        message = parse_protocol_message(payload)
        if self.on_message is not None:
            self.on_message(message)

    def _warn(self, message: str, line: str) -> None:
        logger.warning("Stream parse warning: %s", message)
        if self.on_warning is not None:
            self.on_warning(StreamParseWarning(message=message, line=line))


def _error_details(raw_error: object) -> tuple[str | None, str]:
    if isinstance(raw_error, str):
        return None, raw_error
    if isinstance(raw_error, dict):
        name = _as_str(raw_error.get("name"))
        data = raw_error.get("data")
        if isinstance(data, dict) and _as_str(data.get("message")):
            return name, str(data["message"])
        if _as_str(raw_error.get("message")):
            return name, str(raw_error["message"])
        return name, name or "Unknown error"
    return None, "Unknown error"


def _as_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _as_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    return None


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
