from __future__ import annotations

import os
import time
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from agent_supervisor import main
from agent_supervisor.main import agent_supervisor
from agent_supervisor.orchestrator.controllers import (
    SupervisorCliController,
    build_agent_cli_args,
    load_attachment,
    render_event,
)
from agent_supervisor.orchestrator.events import (
    CompleteEvent,
    DebugEvent,
    ErrorEvent,
    MessageEvent,
    PermissionRequestEvent,
    ToolResultEvent,
)
from agent_supervisor.orchestrator.models import (
    AttachmentType,
    PermissionOption,
    PermissionRequest,
    TaskResult,
    TaskResultStatus,
)
from agent_supervisor.orchestrator.stream_parser import TextMessage
from agent_supervisor.orchestrator.supervisor import CliArgsRequest
from conftest import FakeBackend, ScriptedBackend, record, tool_use

pytestmark = [
    allure.epic("Agent Supervision"),
    allure.feature("CLI"),
]

CONVERSATION = [
    record("step_start"),
    record("text", text="Hello there"),
    record("step_finish", reason="stop"),
]


def _use_backend(monkeypatch, backend) -> None:
    monkeypatch.setattr(main, "SUPERVISOR_CONTROLLER", SupervisorCliController(backend=backend))


def test_run_prints_events_and_succeeds(monkeypatch, cli_env: Path) -> None:
    backend = ScriptedBackend(CONVERSATION)
    _use_backend(monkeypatch, backend)

    result = CliRunner().invoke(agent_supervisor, ["run", "say hello", "--model", "a/b"])

    assert result.exit_code == 0, result.output
    assert "Task started: task_id=task_" in result.output
    assert "[assistant] Hello there" in result.output
    assert "Task success: session=ses_1" in result.output
    assert backend.requests[0].cwd == cli_env
    assert backend.requests[0].shell_args[-1].endswith("--model a/b 'say hello'")


def test_run_resumes_session_until_complete_task(monkeypatch, cli_env: Path) -> None:
    backend = ScriptedBackend(
        [
            record("step_start"),
            tool_use("bash", {"command": "ls"}),
            record("step_finish", reason="stop"),
        ],
        [
            record("step_start"),
            tool_use("complete_task", {"status": "success", "summary": "done"}),
            record("step_finish", reason="stop"),
        ],
    )
    _use_backend(monkeypatch, backend)

    result = CliRunner().invoke(agent_supervisor, ["run", "fix it"])

    assert result.exit_code == 0, result.output
    assert len(backend.requests) == 2
    assert "--session ses_1" in backend.requests[1].shell_args[-1]
    assert result.output.count("Task success") == 1


def test_run_reports_agent_error(monkeypatch, cli_env: Path) -> None:
    backend = ScriptedBackend([{"type": "error", "error": {"name": "APIError", "message": "boom"}}])
    _use_backend(monkeypatch, backend)

    result = CliRunner().invoke(agent_supervisor, ["run", "hi"])

    assert result.exit_code == 1
    assert "Task error: session=-" in result.output
    assert "error=boom" in result.output
    assert "Task did not complete successfully." in result.output


def test_run_reports_nonzero_exit(monkeypatch, cli_env: Path) -> None:
    _use_backend(monkeypatch, ScriptedBackend([], exit_code=2))

    result = CliRunner().invoke(agent_supervisor, ["run", "hi"])

    assert result.exit_code == 1
    assert "Error: Agent CLI exited with code 2" in result.output


def test_run_rejects_blank_prompt(monkeypatch, cli_env: Path) -> None:
    _use_backend(monkeypatch, FakeBackend())

    result = CliRunner().invoke(agent_supervisor, ["run", "   "])

    assert result.exit_code == 1
    assert "Prompt is required" in result.output


def test_run_times_out(monkeypatch, cli_env: Path) -> None:
    backend = FakeBackend()
    _use_backend(monkeypatch, backend)

    result = CliRunner().invoke(agent_supervisor, ["run", "hi", "--timeout-seconds", "1"])

    assert result.exit_code == 1
    assert "Task timed out after 1.0s" in result.output
    assert backend.last.killed


def test_run_with_attachment_uses_session_directory(monkeypatch, cli_env: Path) -> None:
    notes = cli_env / "notes.txt"
    notes.write_text("remember the milk", encoding="utf-8")
    backend = ScriptedBackend(CONVERSATION)
    _use_backend(monkeypatch, backend)

    result = CliRunner().invoke(agent_supervisor, ["run", "read it", "--attach", str(notes)])

    assert result.exit_code == 0, result.output
    session_dir = backend.requests[0].cwd
    assert session_dir.parent == cli_env / "tmp" / "agent-attachments"
    command = backend.requests[0].shell_args[-1]
    assert "Attached files (in the working directory): notes.txt" in command
    assert not session_dir.exists()


def test_sessions_lists_recovered_sessions(cli_env: Path) -> None:
    runner = CliRunner()
    empty = runner.invoke(agent_supervisor, ["attachments", "sessions"])
    assert empty.exit_code == 0
    assert "No attachment sessions in" in empty.output

    session_dir = cli_env / "tmp" / "agent-attachments" / "task_1"
    session_dir.mkdir(parents=True)
    (session_dir / "a.txt").write_bytes(b"12345")

    listed = runner.invoke(agent_supervisor, ["attachments", "sessions"])

    assert listed.exit_code == 0
    assert "- task_1: files=1 bytes=5 idle_hours=0.0" in listed.output
    assert session_dir.exists()


def test_cleanup_expired_removes_only_stale_sessions(cli_env: Path, tmp_path: Path) -> None:
    root = tmp_path / "other-root"
    base = root / "agent-attachments"
    stale_dir = base / "task_stale"
    fresh_dir = base / "task_fresh"
    for session_dir in (stale_dir, fresh_dir):
        session_dir.mkdir(parents=True)
        (session_dir / "a.txt").write_bytes(b"x")
    stale = time.time() - 48 * 3_600
    for path in (stale_dir / "a.txt", stale_dir):
        os.utime(path, (stale, stale))

    result = CliRunner().invoke(
        agent_supervisor,
        ["attachments", "cleanup-expired", "--temp-root", str(root)],
    )

    assert result.exit_code == 0, result.output
    assert "Expired attachment sessions removed: sessions=1 files=1" in result.output
    assert not stale_dir.exists()
    assert fresh_dir.exists()


def test_version_option() -> None:
    result = CliRunner().invoke(agent_supervisor, ["--version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_build_agent_cli_args() -> None:
    assert build_agent_cli_args(CliArgsRequest(prompt="hi")) == ["hi"]
    assert build_agent_cli_args(
        CliArgsRequest(prompt="again", session_id="ses_1", selected_model="a/b"),
    ) == ["--session", "ses_1", "--model", "a/b", "again"]


def test_load_attachment(tmp_path: Path) -> None:
    image = tmp_path / "shot.png"
    image.write_bytes(b"\x89PNG")
    data = tmp_path / "data.json"
    data.write_text("{}", encoding="utf-8")

    assert load_attachment(image).type is AttachmentType.IMAGE
    assert load_attachment(image).data == "iVBORw=="
    assert load_attachment(data).type is AttachmentType.JSON
    assert load_attachment(data).size == 2


def test_render_event() -> None:
    assert render_event(MessageEvent(TextMessage(session_id=None, text="hi"))) == "[assistant] hi"
    assert render_event(MessageEvent(TextMessage(session_id=None, text="  "))) is None
    assert render_event(ToolResultEvent("x" * 250)) == "[tool-result] " + "x" * 200 + "..."
    assert render_event(DebugEvent(type="stdout", message="raw")) is None
    assert render_event(ErrorEvent(RuntimeError("bad"))) == "Error: bad"
    question = PermissionRequest(
        id="req_1",
        task_id="task_1",
        type="question",
        question="Pick one",
        created_at="now",
        options=[PermissionOption(label="A"), PermissionOption(label="B")],
    )
    assert render_event(PermissionRequestEvent(question)) == "[question] Pick one [A / B]"
    complete = CompleteEvent(
        TaskResult(status=TaskResultStatus.INTERRUPTED, session_id="ses_1", duration_ms=5),
    )
    assert render_event(complete) == "Task interrupted: session=ses_1 duration_ms=5"


@pytest.mark.skipif(os.name != "posix", reason="end-to-end run needs a POSIX pty")
@pytest.mark.parametrize("scenario", ["complete", "narrate"])
def test_echo_agent_end_to_end(monkeypatch, echo_agent: Path, scenario: str) -> None:
    monkeypatch.setenv("AGENT_SUPERVISOR_ECHO_SCENARIO", scenario)
    monkeypatch.setattr(main, "SUPERVISOR_CONTROLLER", SupervisorCliController())
    notes = echo_agent / "notes.txt"
    notes.write_text("hello", encoding="utf-8")

    result = CliRunner().invoke(
        agent_supervisor,
        ["run", "echo this", "--attach", str(notes), "--timeout-seconds", "60"],
    )

    assert result.exit_code == 0, result.output
    assert "[assistant] Received: echo this" in result.output
    assert "[assistant] Attached files: notes.txt" in result.output
    assert "[tool] bash" in result.output
    assert "Task success: session=ses_" in result.output
