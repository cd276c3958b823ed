"""Shared test fixtures."""

from __future__ import annotations

import json
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from agent_supervisor.attachments.temp_files import TempFileStore
from agent_supervisor.config import SupervisorSettings, TempFileSettings
from agent_supervisor.orchestrator.backend.base import DataCallback, ExitCallback, SpawnRequest
from agent_supervisor.orchestrator.controllers import build_agent_cli_args
from agent_supervisor.orchestrator.log_watcher import LogWatcher
from agent_supervisor.orchestrator.supervisor import SupervisorOptions, TaskSupervisor

ECHO_AGENT_ARGS = "-m agent_supervisor.orchestrator.backend.echo_agent run --format json"


def record(message_type: str, session_id: str = "ses_1", **part: Any) -> dict[str, Any]:
    """One agent protocol record as emitted by ``opencode run --format json``."""

    return {
        "type": message_type,
        "timestamp": 1_700_000_000_000,
        "sessionID": session_id,
        "part": {"sessionID": session_id, "type": message_type, **part},
    }


def tool_use(tool: str, tool_input: Any = None, *, status: str = "completed", output: str = ""):
    return record(
        "tool_use",
        tool=tool,
        state={"status": status, "input": tool_input or {}, "output": output},
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeHandle:
    """Process handle whose output and exit are driven by the test."""

    def __init__(
        self,
        request: SpawnRequest,
        on_data: DataCallback,
        on_exit: ExitCallback,
        pid: int,
    ) -> None:
        self.request = request
        self.pid = pid
        self.writes: list[str] = []
        self.killed = False
        self._on_data = on_data
        self._on_exit = on_exit

    def write(self, data: str) -> None:
        self.writes.append(data)

    def kill(self) -> None:
        self.killed = True

    def emit(self, *records: dict[str, Any]) -> None:
        for item in records:
            self._on_data(json.dumps(item) + "\r\n")

    def emit_raw(self, data: str) -> None:
        self._on_data(data)

    def exit(self, code: int = 0, signal: int | None = None) -> None:
        self._on_exit(code, signal)


class FakeBackend:
    """Records spawn requests instead of starting processes."""

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.spawn_error: OSError | None = None

    def spawn(
        self,
        request: SpawnRequest,
        *,
        on_data: DataCallback,
        on_exit: ExitCallback,
    ) -> FakeHandle:
        if self.spawn_error is not None:
            raise self.spawn_error
        handle = FakeHandle(request, on_data, on_exit, pid=1000 + len(self.handles))
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]


class ScriptedBackend:
    """Replays canned records on a reader thread, like a real process would."""

    def __init__(self, *runs: list[dict[str, Any]], exit_code: int = 0) -> None:
        self.runs = list(runs)
        self.exit_code = exit_code
        self.requests: list[SpawnRequest] = []

    def spawn(
        self,
        request: SpawnRequest,
        *,
        on_data: DataCallback,
        on_exit: ExitCallback,
    ) -> FakeHandle:
        self.requests.append(request)
        records = self.runs.pop(0) if self.runs else []
        handle = FakeHandle(request, on_data, on_exit, pid=2000 + len(self.requests))

        def _replay() -> None:
            handle.emit(*records)
            handle.exit(self.exit_code)

        threading.Thread(target=_replay, daemon=True).start()
        return handle


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[Any] = []
        self._lock = threading.Lock()

    def __call__(self, event: Any) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        with self._lock:
            return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture()
def temp_store(tmp_path: Path):
    store = TempFileStore(TempFileSettings(root_dir=tmp_path / "tmp"))
    store.initialize()
    yield store
    store.shutdown()


@pytest.fixture()
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def make_supervisor(tmp_path: Path, temp_store: TempFileStore, fake_backend: FakeBackend):
    """Factory for supervisors wired to the fake backend and a tmp log dir."""

    created: list[TaskSupervisor] = []
    workspace = tmp_path / "workspace"
    workspace.mkdir()

    def _make(
        *,
        platform: str = "linux",
        is_packaged: bool = False,
        settings: SupervisorSettings | None = None,
        log_watcher: LogWatcher | None = None,
        **option_overrides: Any,
    ) -> tuple[TaskSupervisor, EventRecorder]:
        options = SupervisorOptions(
            get_cli_command=lambda: ("opencode", ["run", "--format", "json"]),
            build_environment=lambda task_id: {"TASK_ID": task_id},
            build_cli_args=build_agent_cli_args,
            temp_path=workspace,
            platform=platform,
            is_packaged=is_packaged,
            **option_overrides,
        )
        supervisor = TaskSupervisor(
            options,
            temp_store,
            settings=replace(settings or SupervisorSettings(), log_dir=tmp_path / "logs"),
            backend=fake_backend,
            log_watcher=log_watcher,
        )
        recorder = EventRecorder()
        supervisor.events.subscribe_all(recorder)
        created.append(supervisor)
        return supervisor, recorder

    yield _make
    for supervisor in created:
        supervisor.dispose()


@pytest.fixture()
def cli_env(monkeypatch, tmp_path: Path) -> Path:
    """Point every CLI setting at ``tmp_path``."""

    monkeypatch.setenv("AGENT_SUPERVISOR_TEMP_ROOT", str(tmp_path / "tmp"))
    monkeypatch.setenv("AGENT_SUPERVISOR_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("AGENT_SUPERVISOR_FALLBACK_CWD", str(tmp_path))
    return tmp_path


@pytest.fixture()
def echo_agent(monkeypatch, cli_env: Path) -> Path:
    """Run the deterministic echo agent instead of opencode."""

    monkeypatch.setenv("AGENT_SUPERVISOR_AGENT_COMMAND", sys.executable)
    monkeypatch.setenv("AGENT_SUPERVISOR_AGENT_ARGS", ECHO_AGENT_ARGS)
    monkeypatch.setenv("SHELL", "/bin/sh")
    return cli_env
