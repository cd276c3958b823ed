"""Out-of-band watcher for provider errors written to the agent's log files.

Provider and auth failures do not always reach the JSON stream on stdout;
the agent CLI still records them in its own log directory. `LogWatcher`
follows every ``*.log`` file there (only bytes appended after `start()`),
picks out structured error records and hands them to a callback.

Recognized line shapes::

    ERROR 2025-01-09T12:00:00 +3ms service=session.processor error={"name": ...} ...
    {"level": "error", "error": {"name": ..., "data": {...}}}
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from agent_supervisor.orchestrator.failure_classifier import (
    ProviderFailureClassification,
    classify_provider_error,
)
from agent_supervisor.orchestrator.models import FailureClass

logger = logging.getLogger(__name__)

_ERROR_LEVEL = re.compile(r"^\s*ERROR\b|\blevel=error\b", re.IGNORECASE)
_KEY_VALUE = re.compile(r"\b(providerID|modelID)=([^\s]+)")
_JSON_DECODER = json.JSONDecoder()


@dataclass(slots=True)
class LogError:
    """Structured error record parsed from one log line."""

    error_name: str
    message: str
    classification: ProviderFailureClassification
    status_code: int | None = None
    provider_id: str | None = None
    model_id: str | None = None
    raw: str = field(default="", repr=False)

    @property
    def is_auth_error(self) -> bool:
        return self.classification.is_auth_error

    @property
    def failure_class(self) -> FailureClass:
        return self.classification.failure_class


def parse_log_error(line: str) -> LogError | None:
    """Return a `LogError` when the line carries a structured error record."""

    stripped = line.strip()
    if not stripped:
        return None

    payload: dict[str, Any] | None = None
    if stripped.startswith("{"):
        record = _load_object(stripped, 0)
        if record is None or str(record.get("level", "")).lower() != "error":
            return None
        payload = record.get("error") if isinstance(record.get("error"), dict) else record
    elif _ERROR_LEVEL.search(stripped):
        marker = stripped.find("error={")
        if marker == -1:
            return None
        payload = _load_object(stripped, marker + len("error="))
    if payload is None:
        return None

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    tokens = dict(_KEY_VALUE.findall(stripped))
    error_name = str(payload.get("name") or "UnknownError")
    message = str(data.get("message") or payload.get("message") or error_name)
    status_code = _as_int(data.get("statusCode", payload.get("statusCode")))
    provider_id = data.get("providerID") or payload.get("providerID") or tokens.get("providerID")
    model_id = data.get("modelID") or payload.get("modelID") or tokens.get("modelID")

    return LogError(
        error_name=error_name,
        message=message,
        classification=classify_provider_error(
            error_name=error_name,
            message=message,
            status_code=status_code,
        ),
        status_code=status_code,
        provider_id=str(provider_id) if provider_id else None,
        model_id=str(model_id) if model_id else None,
        raw=stripped,
    )


class LogWatcher:
    """Follows agent log files and reports structured error records."""

    def __init__(
        self,
        log_dir: Path,
        on_error: Callable[[LogError], None] | None = None,
    ) -> None:
        self.log_dir = log_dir
        self.on_error = on_error
        self._lock = threading.Lock()
        self._offsets: dict[Path, int] = {}
        self._partial: dict[Path, str] = {}
        self._seen: set[tuple[str, str]] = set()
        self._observer: Any = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Begin watching; existing log content is skipped.

        Calling it again while running opens a new error window, so an error
        already reported for an earlier task is reported again.
        """

        with self._lock:
            already_running = self._running
            self._running = True
            self._reset_window()
        if already_running:
            return

        if not self.log_dir.is_dir():
            logger.info("Agent log directory %s not found; log watching disabled", self.log_dir)
            return
        observer = Observer()
        observer.daemon = True
        observer.schedule(_LogEventHandler(self), str(self.log_dir), recursive=False)
        observer.start()
        self._observer = observer
        logger.debug("Watching agent logs in %s", self.log_dir)

    def stop(self) -> None:
        with self._lock:
            self._running = False
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            if observer.is_alive():
                observer.join(timeout=2)

    def poll(self) -> None:
        """Read appended content from every log file."""

        for path in self._log_files():
            self.read_new_content(path)

    def read_new_content(self, path: Path) -> None:
        errors: list[LogError] = []
        with self._lock:
            if not self._running:
                return
            offset = self._offsets.get(path, 0)
            try:
                with path.open("rb") as handle:
                    handle.seek(offset)
                    chunk = handle.read()
            except OSError as error:
                logger.debug("Failed to read log file %s: %s", path, error)
                return
            if not chunk:
                return
            self._offsets[path] = offset + len(chunk)

            text = self._partial.pop(path, "") + chunk.decode("utf-8", errors="replace")
            *lines, rest = text.split("\n")
            if rest:
                self._partial[path] = rest
            for line in lines:
                parsed = parse_log_error(line)
                if parsed is None:
                    continue
                key = (parsed.error_name, parsed.message)
                if key in self._seen:
                    continue
                self._seen.add(key)
                errors.append(parsed)

        for parsed in errors:
            logger.info("Agent log reported %s: %s", parsed.error_name, parsed.message)
            if self.on_error is not None:
                self.on_error(parsed)

    @staticmethod
    def get_error_message(error: LogError) -> str:
        """User-facing message for a detected error."""

        failure_class = error.failure_class
        if failure_class is FailureClass.ACCESS_OR_AUTH:
            provider = error.provider_id or "the AI provider"
            return (
                f"Authentication failed for {provider}. "
                "Check your API key or credentials and try again."
            )
        if failure_class is FailureClass.BILLING_OR_QUOTA:
            return f"Provider quota or billing limit reached: {error.message}"
        if failure_class is FailureClass.MODEL_NOT_AVAILABLE:
            model = error.model_id or "The selected model"
            return f"{model} is not available: {error.message}"
        if failure_class is FailureClass.BACKEND_TRANSIENT:
            return f"Provider temporarily unavailable: {error.message}"
        return error.message

    def _reset_window(self) -> None:
        self._seen.clear()
        self._partial.clear()
        self._offsets = {path: _file_size(path) for path in self._log_files()}

    def _log_files(self) -> list[Path]:
        try:
            return sorted(self.log_dir.glob("*.log"))
        except OSError:
            return []


class _LogEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: LogWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = Path(os.fsdecode(event.src_path))
        if path.suffix == ".log":
            self._watcher.read_new_content(path)


def _load_object(text: str, index: int) -> dict[str, Any] | None:
    try:
        value, _ = _JSON_DECODER.raw_decode(text, index)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None
