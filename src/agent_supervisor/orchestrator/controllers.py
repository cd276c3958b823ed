"""Controllers for supervisor CLI commands."""

from __future__ import annotations

import base64
import mimetypes
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from agent_supervisor.attachments.temp_files import TempFileStore
from agent_supervisor.config import Settings
from agent_supervisor.orchestrator.backend import AgentBackend
from agent_supervisor.orchestrator.events import (
    AuthErrorEvent,
    CompleteEvent,
    ErrorEvent,
    MessageEvent,
    PermissionRequestEvent,
    ProgressEvent,
    SupervisorEvent,
    TodoUpdateEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from agent_supervisor.orchestrator.models import (
    AttachmentType,
    TaskAttachment,
    TaskConfig,
    TaskResultStatus,
)
from agent_supervisor.orchestrator.stream_parser import TextMessage
from agent_supervisor.orchestrator.supervisor import (
    CliArgsRequest,
    SupervisorOptions,
    TaskSupervisor,
    default_environment,
)

_TOOL_RESULT_PREVIEW_CHARS = 200


@dataclass(slots=True)
class RunTaskCommand:
    """CLI input for one supervised agent run."""

    prompt: str
    attachments: tuple[Path, ...] = ()
    cwd: Path | None = None
    model: str | None = None
    session_id: str | None = None
    timeout_seconds: float | None = None


@dataclass(slots=True)
class AttachmentsCommand:
    """CLI input for attachment store maintenance."""

    temp_root: Path | None = None


@dataclass(slots=True)
class RunTaskResult:
    """Rendered output and outcome of a supervised run."""

    lines: list[str] = field(default_factory=list)
    success: bool = False


class SupervisorCliController:
    """Runs agent tasks and attachment maintenance for the CLI."""

    def __init__(self, backend: AgentBackend | None = None) -> None:
        self._backend = backend

    def run_task(
        self,
        command: RunTaskCommand,
        on_line: Callable[[str], None] | None = None,
    ) -> RunTaskResult:
        settings = Settings.from_env()
        settings.validate()
        emit = on_line or (lambda _line: None)
        result = RunTaskResult()
        done = threading.Event()

        def _handle(event: SupervisorEvent) -> None:
            line = render_event(event)
            if line is not None:
                result.lines.append(line)
                emit(line)
            if isinstance(event, CompleteEvent):
                result.success = event.result.status is TaskResultStatus.SUCCESS
                done.set()
            elif isinstance(event, ErrorEvent):
                done.set()

        store = TempFileStore(settings.temp_files)
        store.initialize()
        agent_settings = settings.supervisor
        supervisor = TaskSupervisor(
            SupervisorOptions(
                get_cli_command=lambda: (
                    agent_settings.agent_command,
                    list(agent_settings.agent_args),
                ),
                build_environment=default_environment,
                build_cli_args=build_agent_cli_args,
                temp_path=agent_settings.fallback_cwd,
            ),
            store,
            settings=agent_settings,
            backend=self._backend,
        )
        supervisor.events.subscribe_all(_handle)

        task_id: str | None = None
        try:
            task = supervisor.start_task(
                TaskConfig(
                    prompt=command.prompt,
                    session_id=command.session_id,
                    working_directory=str(command.cwd) if command.cwd else None,
                    model_id=command.model,
                    attachments=[load_attachment(path) for path in command.attachments],
                ),
            )
            task_id = task.id
            line = f"Task started: task_id={task.id} status={task.status.value}"
            result.lines.append(line)
            emit(line)

            if not done.wait(timeout=command.timeout_seconds):
                supervisor.cancel_task()
                line = f"Task timed out after {command.timeout_seconds}s"
                result.lines.append(line)
                emit(line)
                result.success = False
        finally:
            supervisor.dispose()
            if task_id is not None and command.attachments:
                # the process exits right after this; do not leave cleanup to a daemon thread
                store.cleanup_session(task_id)
            store.close()
        return result

    def cleanup_expired(self, command: AttachmentsCommand) -> list[str]:
        store = _open_store(command)
        try:
            summary = store.cleanup_expired()
        finally:
            store.close()
        return [
            "Expired attachment sessions removed: "
            f"sessions={summary.sessions_cleaned_up} files={summary.files_cleaned_up}",
        ]

    def sessions(self, command: AttachmentsCommand) -> list[str]:
        store = _open_store(command)
        try:
            sessions = store.list_sessions()
        finally:
            store.close()
        if not sessions:
            return [f"No attachment sessions in {store.base_temp_path}"]

        now = datetime.now(UTC)
        lines = [f"Attachment sessions in {store.base_temp_path}:"]
        for info in sessions:
            idle_hours = (now - info.last_activity).total_seconds() / 3_600
            lines.append(
                f"- {info.session_id}: files={info.file_count} bytes={info.total_size} "
                f"idle_hours={idle_hours:.1f}",
            )
        return lines


def build_agent_cli_args(request: CliArgsRequest) -> list[str]:
    """Arguments appended to ``opencode run --format json``."""

    args: list[str] = []
    if request.session_id:
        args.extend(["--session", request.session_id])
    if request.selected_model:
        args.extend(["--model", request.selected_model])

    prompt = request.prompt
    if request.temp_files:
        names = ", ".join(info.temp_file_path.name for info in request.temp_files)
        prompt += f"\n\nAttached files (in the working directory): {names}"
    args.append(prompt)
    return args


def load_attachment(path: Path) -> TaskAttachment:
    """Read a local file into a base64 attachment."""

    payload = path.read_bytes()
    mime_type, _ = mimetypes.guess_type(path.name)
    return TaskAttachment(
        type=_attachment_type(mime_type),
        data=base64.b64encode(payload).decode("ascii"),
        file_name=path.name,
        mime_type=mime_type,
        size=len(payload),
        timestamp=datetime.now(UTC).isoformat(),
    )


def render_event(event: SupervisorEvent) -> str | None:  # noqa: PLR0911
    """One console line per user-visible event; debug noise is dropped."""

    if isinstance(event, MessageEvent):
        if isinstance(event.message, TextMessage) and event.message.text.strip():
            return f"[assistant] {event.message.text}"
        return None
    if isinstance(event, ToolUseEvent):
        return f"[tool] {event.tool_name}"
    if isinstance(event, ToolResultEvent):
        preview = event.output.strip().replace("\n", " ")
        if not preview:
            return None
        if len(preview) > _TOOL_RESULT_PREVIEW_CHARS:
            preview = preview[:_TOOL_RESULT_PREVIEW_CHARS] + "..."
        return f"[tool-result] {preview}"
    if isinstance(event, ProgressEvent):
        return f"[progress] {event.stage}: {event.message or ''}".rstrip()
    if isinstance(event, TodoUpdateEvent):
        todos = ", ".join(f"{todo.content} ({todo.status.value})" for todo in event.todos)
        return f"[todos] {todos}"
    if isinstance(event, PermissionRequestEvent):
        options = " / ".join(option.label for option in event.request.options)
        suffix = f" [{options}]" if options else ""
        return f"[question] {event.request.question}{suffix}"
    if isinstance(event, AuthErrorEvent):
        return f"[auth-error] {event.provider_id}: {event.message}"
    if isinstance(event, CompleteEvent):
        task_result = event.result
        line = (
            f"Task {task_result.status.value}: session={task_result.session_id or '-'} "
            f"duration_ms={task_result.duration_ms}"
        )
        if task_result.error:
            line += f" error={task_result.error}"
        return line
    if isinstance(event, ErrorEvent):
        return f"Error: {event.error}"
    return None


def _attachment_type(mime_type: str | None) -> AttachmentType:  # noqa: PLR0911
    if mime_type is None:
        return AttachmentType.DOCUMENT
    if mime_type == "application/json":
        return AttachmentType.JSON
    if mime_type.startswith("image/"):
        return AttachmentType.IMAGE
    if mime_type.startswith("audio/"):
        return AttachmentType.AUDIO
    if mime_type.startswith("video/"):
        return AttachmentType.VIDEO
    if mime_type in ("text/x-python", "application/javascript", "text/javascript"):
        return AttachmentType.CODE
    if mime_type.startswith("text/"):
        return AttachmentType.TEXT
    return AttachmentType.DOCUMENT


def _open_store(command: AttachmentsCommand) -> TempFileStore:
    settings = Settings.from_env()
    if command.temp_root is not None:
        settings.temp_files.root_dir = command.temp_root
    settings.validate()
    store = TempFileStore(settings.temp_files)
    store.initialize()
    return store
