"""Supervises one agent CLI process and turns its output into typed events.

`TaskSupervisor` spawns the agent inside a pty-backed shell, feeds its output
through `StreamParser`, routes each protocol record, and publishes
`SupervisorEvent` values on `events`. Completion on a clean exit is decided
by `CompletionEnforcer`; provider failures that only reach the agent's log
files are picked up by `LogWatcher`.

Output and exit callbacks arrive on backend reader threads. All state is
guarded by one re-entrant lock, and callbacks from a process that has been
superseded (new task, continuation or dispose) are dropped by generation.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_supervisor.attachments.temp_files import (
    TempFileInfo,
    TempFileStore,
    TempFileStoreError,
)
from agent_supervisor.config import SupervisorSettings
from agent_supervisor.orchestrator.backend import (
    WINDOWS,
    AgentBackend,
    ProcessHandle,
    PtyBackend,
    SpawnRequest,
    build_shell_command,
    get_platform_shell,
    get_shell_args,
)
from agent_supervisor.orchestrator.completion import (
    CompletionEnforcer,
    CompletionEnforcerCallbacks,
    StepFinishAction,
)
from agent_supervisor.orchestrator.errors import (
    AgentCliNotFoundError,
    NoActiveProcessError,
    SupervisorDisposedError,
    SupervisorError,
)
from agent_supervisor.orchestrator.events import (
    AuthErrorEvent,
    CompleteEvent,
    DebugEvent,
    ErrorEvent,
    EventBus,
    MessageEvent,
    PermissionRequestEvent,
    ProgressEvent,
    TodoUpdateEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from agent_supervisor.orchestrator.log_watcher import LogError, LogWatcher
from agent_supervisor.orchestrator.models import (
    PermissionOption,
    PermissionRequest,
    Task,
    TaskAttachment,
    TaskConfig,
    TaskMessage,
    TaskResult,
    TaskResultStatus,
    TaskStatus,
    TodoItem,
    TodoStatus,
    generate_id,
    utc_now_iso,
)
from agent_supervisor.orchestrator.stream_parser import (
    ErrorMessage,
    ProtocolMessage,
    StepFinishMessage,
    StepStartMessage,
    StreamParser,
    StreamParseWarning,
    TextMessage,
    ToolCallMessage,
    ToolResultMessage,
    ToolUseMessage,
    strip_terminal_sequences,
)
from agent_supervisor.orchestrator.validation import validate_task_config

logger = logging.getLogger(__name__)

START_TASK_TOOL = "start_task"
TODO_WRITE_TOOL = "todowrite"
COMPLETE_TASK_TOOL = "complete_task"
ASK_USER_QUESTION_TOOL = "AskUserQuestion"

_INTERRUPT = "\x03"
_WINDOWS_BATCH_CONFIRM = "Y\n"


@dataclass(slots=True)
class CliArgsRequest:
    """Inputs handed to the injected CLI argument builder."""

    prompt: str
    session_id: str | None = None
    selected_model: str | None = None
    attachments: list[TaskAttachment] = field(default_factory=list)
    temp_files: list[TempFileInfo] = field(default_factory=list)


@dataclass(slots=True)
class SupervisorOptions:
    """Host integration points; nothing here is hard-coded by the supervisor."""

    get_cli_command: Callable[[], tuple[str, list[str]]]
    build_environment: Callable[[str], dict[str, str]]
    build_cli_args: Callable[[CliArgsRequest], list[str]]
    temp_path: Path
    platform: str = sys.platform
    is_packaged: bool = False
    on_before_start: Callable[[], None] | None = None
    get_model_display_name: Callable[[str], str] | None = None


class TaskSupervisor:
    """Owns at most one agent process at a time."""

    def __init__(  # noqa: PLR0913
        self,
        options: SupervisorOptions,
        temp_store: TempFileStore,
        *,
        settings: SupervisorSettings | None = None,
        backend: AgentBackend | None = None,
        log_watcher: LogWatcher | None = None,
        task_id: str | None = None,
    ) -> None:
        self.options = options
        self.settings = settings or SupervisorSettings()
        self.events = EventBus()
        self._temp_store = temp_store
        self._backend: AgentBackend = backend or PtyBackend()
        self._log_watcher = log_watcher or LogWatcher(self.settings.log_dir)
        self._log_watcher.on_error = self._handle_log_error

        self._lock = threading.RLock()
        self._generation = 0
        self._process: ProcessHandle | None = None
        self._parser = StreamParser(on_message=self._on_message, on_warning=self._on_parse_warning)
        self._enforcer = CompletionEnforcer(
            CompletionEnforcerCallbacks(
                on_start_continuation=self._spawn_continuation,
                on_complete=lambda: self._finish(TaskResultStatus.SUCCESS),
                on_debug=self._publish_debug,
            ),
            max_continuation_attempts=self.settings.max_continuation_attempts,
        )
        self._waiting_timer: threading.Timer | None = None
        self._confirm_timer: threading.Timer | None = None

        self._task_id: str | None = task_id
        self._session_id: str | None = None
        self._model_id: str | None = None
        self._messages: list[TaskMessage] = []
        self._temp_files: list[TempFileInfo] = []
        self._temp_session_id: str | None = None
        self._temp_session_dir: Path | None = None
        self._last_working_directory: str | None = None
        self._completed = False
        self._interrupted = False
        self._disposed = False
        self._first_tool_seen = False
        self._plan_declared = False
        self._started_monotonic: float | None = None

    # -- public accessors ------------------------------------------------------

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def task_id(self) -> str | None:
        return self._task_id

    @property
    def running(self) -> bool:
        return self._process is not None and not self._completed

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def messages(self) -> list[TaskMessage]:
        """Transcript of assistant text for the current task."""

        with self._lock:
            return list(self._messages)

    # -- task lifecycle --------------------------------------------------------

    def start_task(self, config: TaskConfig) -> Task:
        """Spawn the agent for ``config`` and return a running task snapshot."""

        if self._disposed:
            raise SupervisorDisposedError
        config = validate_task_config(config)

        with self._lock:
            task_id = config.task_id or generate_id("task")
            self._reset_task_state(task_id, config)
            self._materialize_attachments(task_id, config.attachments)

            self._log_watcher.start()
            if self.options.on_before_start is not None:
                self.options.on_before_start()

            cli_args = self.options.build_cli_args(
                CliArgsRequest(
                    prompt=config.prompt,
                    session_id=config.session_id,
                    selected_model=self._model_id,
                    attachments=list(config.attachments),
                    temp_files=list(self._temp_files),
                ),
            )
            env = self.options.build_environment(task_id)
            cwd = self._resolve_working_directory()
            self._spawn(cli_args, env, cwd)
            self.events.publish(ProgressEvent(stage="loading", message="Loading agent..."))

            now = utc_now_iso()
            return Task(
                id=task_id,
                prompt=config.prompt,
                status=TaskStatus.RUNNING,
                created_at=now,
                started_at=now,
            )

    def resume_session(self, session_id: str, prompt: str) -> Task:
        return self.start_task(TaskConfig(prompt=prompt, session_id=session_id))

    def send_response(self, text: str) -> None:
        """Write an answer to the agent's terminal input."""

        with self._lock:
            if self._process is None:
                raise NoActiveProcessError
            self._process.write(text + "\n")
        logger.info("Response sent to agent process")

    def interrupt_task(self) -> None:
        """Soft interrupt: Ctrl+C, plus the batch-job confirmation on Windows."""

        with self._lock:
            process = self._process
            if process is None:
                logger.info("No active process to interrupt")
                return
            self._interrupted = True
            process.write(_INTERRUPT)
            logger.info("Sent Ctrl+C to agent process")

            if self.options.platform == WINDOWS:
                self._cancel_confirm_timer()
                timer = threading.Timer(
                    self.settings.interrupt_confirm_seconds,
                    self._confirm_interrupt,
                    args=(process,),
                )
                timer.daemon = True
                self._confirm_timer = timer
                timer.start()

    def cancel_task(self) -> None:
        """Hard kill without a soft signal."""

        with self._lock:
            if self._process is not None:
                self._process.kill()
                self._process = None

    def dispose(self) -> None:
        """Tear down the supervisor; safe to call more than once."""

        with self._lock:
            if self._disposed:
                return
            logger.info("Disposing supervisor for task %s", self._task_id)
            self._disposed = True
            self._generation += 1

            if self._process is not None:
                try:
                    self._process.kill()
                except OSError as error:
                    logger.warning("Failed to kill agent process: %s", error)
                self._process = None

            if self._temp_session_id is not None and self._temp_files:
                self._schedule_temp_cleanup(self._temp_session_id)

            self._cancel_waiting_timer()
            self._cancel_confirm_timer()
            self._task_id = None
            self._session_id = None
            self._model_id = None
            self._messages = []
            self._temp_files = []
            self._temp_session_id = None
            self._temp_session_dir = None
            self._completed = True
            self._first_tool_seen = False
            self._plan_declared = False
            self._parser.reset()
            self._enforcer.reset()
            self.events.clear()
        self._log_watcher.stop()
        logger.info("Supervisor disposed")

    # -- spawning --------------------------------------------------------------

    def _reset_task_state(self, task_id: str, config: TaskConfig) -> None:
        self._generation += 1
        self._cancel_waiting_timer()
        self._cancel_confirm_timer()
        self._task_id = task_id
        self._session_id = None
        self._model_id = config.model_id
        self._messages = []
        self._parser.reset()
        self._enforcer.reset()
        self._completed = False
        self._interrupted = False
        self._first_tool_seen = False
        self._plan_declared = False
        self._last_working_directory = config.working_directory
        self._temp_files = []
        self._temp_session_id = None
        self._temp_session_dir = None
        self._started_monotonic = time.monotonic()

    def _materialize_attachments(self, task_id: str, attachments: list[TaskAttachment]) -> None:
        if not attachments:
            logger.debug("No attachments to process for task %s", task_id)
            return
        try:
            self._temp_files = self._temp_store.create_temp_files_from_attachments(
                task_id,
                attachments,
            )
        except (TempFileStoreError, OSError) as error:
            logger.warning("Failed to create temp files, continuing without them: %s", error)
            return
        self._temp_session_id = task_id
        self._temp_session_dir = self._temp_store.get_session_path(task_id)
        logger.info(
            "Created %d temp files for task %s in %s",
            len(self._temp_files),
            task_id,
            self._temp_session_dir,
        )

    def _resolve_working_directory(self) -> Path:
        if self._temp_session_dir is not None:
            cwd = self._temp_session_dir
        elif self._last_working_directory:
            cwd = Path(self._last_working_directory)
        else:
            cwd = self.options.temp_path

        if self.options.is_packaged and self.options.platform == WINDOWS:
            _ensure_workspace_package_json(cwd)
        return cwd

    def _spawn(self, cli_args: list[str], env: dict[str, str], cwd: Path) -> None:
        command, base_args = self.options.get_cli_command()
        all_args = [*base_args, *cli_args]
        full_command = build_shell_command(command, all_args, self.options.platform)
        shell = get_platform_shell(self.options.platform, is_packaged=self.options.is_packaged)
        shell_args = get_shell_args(full_command, self.options.platform)

        self._publish_debug("info", f"Command: {command}")
        self._publish_debug("info", f"Args: {' '.join(all_args)}", {"args": all_args})
        self._publish_debug("info", f"Working directory: {cwd}")
        self._publish_debug("info", f"Full shell command: {full_command}")
        self._publish_debug("info", f"Using shell: {shell} {' '.join(shell_args)}")
        logger.info("Starting agent: %s (cwd=%s)", full_command, cwd)

        self._generation += 1
        generation = self._generation
        request = SpawnRequest(shell=shell, shell_args=shell_args, cwd=cwd, env=env)
        try:
            self._process = self._backend.spawn(
                request,
                on_data=lambda data: self._on_data(generation, data),
                on_exit=lambda code, sig: self._on_exit(generation, code, sig),
            )
        except FileNotFoundError as error:
            self._process = None
            raise AgentCliNotFoundError(shell) from error
        except OSError as error:
            self._process = None
            raise SupervisorError(f"Failed to start agent shell {shell}: {error}") from error
        self._publish_debug("info", f"PTY Process PID: {self._process.pid}")

    def _spawn_continuation(self, prompt: str) -> None:
        session_id = self._session_id
        if not session_id:
            raise SupervisorError("No session ID available for session resumption")
        logger.info("Resuming session %s with a continuation prompt", session_id)

        self._parser.reset()
        self._first_tool_seen = False
        cli_args = self.options.build_cli_args(
            CliArgsRequest(
                prompt=prompt,
                session_id=session_id,
                selected_model=self._model_id,
                temp_files=list(self._temp_files),
            ),
        )
        env = self.options.build_environment(self._task_id or "default")
        self._spawn(cli_args, env, self._resolve_working_directory())

    # -- process callbacks -----------------------------------------------------

    def _on_data(self, generation: int, data: str) -> None:
        cleaned = strip_terminal_sequences(data)
        if not cleaned.strip():
            return
        with self._lock:
            if generation != self._generation:
                return
            self.events.publish(DebugEvent(type="stdout", message=cleaned))
            self._parser.feed(cleaned)

    def _on_exit(self, generation: int, exit_code: int, signal_number: int | None) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._parser.flush()
            message = f"PTY Process exited with code: {exit_code}, signal: {signal_number}"
            logger.info("Agent process exited with code %s, signal %s", exit_code, signal_number)
            self._publish_debug("exit", message, {"exit_code": exit_code, "signal": signal_number})
            self._handle_process_exit(exit_code)

    def _handle_process_exit(self, exit_code: int) -> None:
        self._process = None
        self._cancel_waiting_timer()

        if self._interrupted and exit_code == 0 and not self._completed:
            logger.info("Task was interrupted by user")
            self._finish(TaskResultStatus.INTERRUPTED)
            self._task_id = None
            return

        if exit_code == 0 and not self._completed:
            try:
                self._enforcer.handle_process_exit(exit_code)
            except SupervisorError as error:
                logger.warning("Completion enforcer error: %s", error)
                self._finish(TaskResultStatus.ERROR, error=f"Failed to complete: {error}")
            if self._completed:
                self._task_id = None
            return

        if not self._completed and exit_code != 0:
            exit_error = SupervisorError(f"Agent CLI exited with code {exit_code}")
            self.events.publish(ErrorEvent(exit_error))
        self._task_id = None

    def _on_parse_warning(self, warning: StreamParseWarning) -> None:
        logger.warning("Stream parse warning: %s", warning.message)
        self.events.publish(DebugEvent(type="parse-warning", message=warning.message))

    # -- protocol routing ------------------------------------------------------

    def _on_message(self, message: ProtocolMessage) -> None:  # noqa: C901
        logger.debug("Handling message type: %s", message.kind)

        if isinstance(message, StepStartMessage):
            self._session_id = message.session_id or self._session_id
            model_name = "AI"
            if self._model_id and self.options.get_model_display_name is not None:
                model_name = self.options.get_model_display_name(self._model_id)
            self.events.publish(
                ProgressEvent(
                    stage="connecting",
                    message=f"Connecting to {model_name}...",
                    model_name=model_name,
                ),
            )
            self._arm_waiting_timer()

        elif isinstance(message, TextMessage):
            if not self._session_id and message.session_id:
                self._session_id = message.session_id
            self.events.publish(MessageEvent(message))
            if message.text:
                self._messages.append(
                    TaskMessage(
                        id=generate_id("msg"),
                        type="assistant",
                        content=message.text,
                        timestamp=utc_now_iso(),
                    ),
                )

        elif isinstance(message, ToolCallMessage):
            self._handle_tool_call(message.tool or "unknown", message.input, message.session_id)

        elif isinstance(message, ToolUseMessage):
            self._handle_tool_use(message)

        elif isinstance(message, ToolResultMessage):
            logger.debug("Tool result received, length: %d", len(message.output))
            self.events.publish(ToolResultEvent(message.output))

        elif isinstance(message, StepFinishMessage):
            self._handle_step_finish(message)

        elif isinstance(message, ErrorMessage):
            self._finish(TaskResultStatus.ERROR, error=message.error)

        else:
            logger.info("Unknown message type: %s", getattr(message, "type", message.kind))

    def _handle_tool_use(self, message: ToolUseMessage) -> None:
        tool_name = message.tool or "unknown"
        self._handle_tool_call(tool_name, message.input, message.session_id)

        description = message.input.get("description") if isinstance(message.input, dict) else None
        if isinstance(description, str) and description:
            self.events.publish(
                MessageEvent(
                    TextMessage(
                        session_id=message.session_id,
                        text=description,
                        message_id=message.message_id,
                        timestamp=message.timestamp,
                    ),
                ),
            )
        self.events.publish(MessageEvent(message))

        logger.debug("Tool use: %s status: %s", tool_name, message.status)
        if message.status in ("completed", "error"):
            self.events.publish(ToolResultEvent(message.output))

    def _handle_tool_call(self, tool_name: str, tool_input: Any, session_id: str | None) -> None:
        logger.debug("Tool call: %s", tool_name)

        if _is_tool(tool_name, START_TASK_TOOL):
            self._plan_declared = True
            self._handle_plan_declaration(tool_input, session_id or self._session_id)

        if not self._plan_declared and not _is_exempt_tool(tool_name):
            logger.warning("Tool %r called before %s", tool_name, START_TASK_TOOL)
            self._publish_debug(
                "warning",
                f'Tool "{tool_name}" called before {START_TASK_TOOL} - plan may not be captured',
            )

        if not self._first_tool_seen:
            self._first_tool_seen = True
            self._cancel_waiting_timer()

        self._enforcer.mark_tools_used()

        if _is_tool(tool_name, COMPLETE_TASK_TOOL):
            self._enforcer.handle_complete_task_detection(tool_input)

        if _is_tool(tool_name, TODO_WRITE_TOOL) and isinstance(tool_input, dict):
            raw_todos = tool_input.get("todos")
            if isinstance(raw_todos, list) and raw_todos:
                todos = [
                    TodoItem.from_payload(item, index)
                    for index, item in enumerate(raw_todos)
                    if isinstance(item, dict)
                ]
                self._publish_todos(todos)

        self.events.publish(ToolUseEvent(tool_name=tool_name, tool_input=tool_input))
        self.events.publish(ProgressEvent(stage="tool-use", message=f"Using {tool_name}"))

        if tool_name == ASK_USER_QUESTION_TOOL:
            self._handle_ask_user_question(tool_input)

    def _handle_plan_declaration(self, tool_input: Any, session_id: str | None) -> None:
        if not isinstance(tool_input, dict):
            return
        goal = tool_input.get("goal")
        steps = tool_input.get("steps")
        if not goal or not isinstance(steps, list):
            return

        self.events.publish(
            MessageEvent(
                TextMessage(
                    session_id=session_id,
                    text=format_plan_message(tool_input),
                    message_id=generate_id("msg"),
                    timestamp=time.time() * 1000,
                ),
            ),
        )
        todos = [
            TodoItem(
                id=str(index + 1),
                content=str(step),
                status=TodoStatus.IN_PROGRESS if index == 0 else TodoStatus.PENDING,
            )
            for index, step in enumerate(steps)
        ]
        if todos:
            self._publish_todos(todos)
            logger.debug("Created %d todos from %s steps", len(todos), START_TASK_TOOL)

    def _handle_ask_user_question(self, tool_input: Any) -> None:
        questions = tool_input.get("questions") if isinstance(tool_input, dict) else None
        if not isinstance(questions, list) or not questions or not isinstance(questions[0], dict):
            return
        question = questions[0]
        options = [
            PermissionOption(
                label=str(option.get("label", "")),
                description=option.get("description"),
            )
            for option in question.get("options") or []
            if isinstance(option, dict)
        ]
        request = PermissionRequest(
            id=generate_id("req"),
            task_id=self._task_id or "",
            type="question",
            question=str(question.get("question", "")),
            created_at=utc_now_iso(),
            header=question.get("header"),
            options=options,
            multi_select=bool(question.get("multiSelect", False)),
        )
        self.events.publish(PermissionRequestEvent(request))

    def _handle_step_finish(self, message: StepFinishMessage) -> None:
        if message.reason == "error":
            self._finish(TaskResultStatus.ERROR, error="Task failed")
            return
        if self._completed:
            return
        action = self._enforcer.handle_step_finish(message.reason)
        logger.debug("step_finish action: %s", action.value)
        if action is StepFinishAction.COMPLETE:
            self._finish(TaskResultStatus.SUCCESS)

    def _handle_log_error(self, error: LogError) -> None:
        with self._lock:
            if self._completed or self._process is None:
                return
            logger.warning("Log watcher detected error: %s", error.error_name)
            message = LogWatcher.get_error_message(error)
            details = error.classification.to_event_details(provider_id=error.provider_id)
            details.update(
                error_name=error.error_name,
                status_code=error.status_code,
                model_id=error.model_id,
                message=error.message,
            )
            self._publish_debug("error", f"[{error.error_name}] {message}", details)
            if error.is_auth_error and error.provider_id:
                self.events.publish(AuthErrorEvent(provider_id=error.provider_id, message=message))

            self._finish(TaskResultStatus.ERROR, error=message)
            try:
                self._process.kill()
            except OSError as kill_error:
                logger.warning("Error killing agent process after log error: %s", kill_error)
            self._process = None

    # -- helpers ---------------------------------------------------------------

    def _finish(self, status: TaskResultStatus, *, error: str | None = None) -> bool:
        """Publish the single terminal `CompleteEvent` for this task."""

        if self._completed:
            return False
        self._completed = True
        self._cancel_waiting_timer()
        duration_ms = None
        if self._started_monotonic is not None:
            duration_ms = int((time.monotonic() - self._started_monotonic) * 1000)
        logger.info("Task %s finished with status %s", self._task_id, status.value)
        self.events.publish(
            CompleteEvent(
                TaskResult(
                    status=status,
                    session_id=self._session_id,
                    duration_ms=duration_ms,
                    error=error,
                ),
            ),
        )
        return True

    def _publish_todos(self, todos: list[TodoItem]) -> None:
        self.events.publish(TodoUpdateEvent(todos))
        self._enforcer.update_todos(todos)

    def _publish_debug(self, kind: str, message: str, data: Any = None) -> None:
        self.events.publish(DebugEvent(type=kind, message=message, data=data))

    def _arm_waiting_timer(self) -> None:
        self._cancel_waiting_timer()
        timer = threading.Timer(
            self.settings.waiting_notice_seconds,
            self._on_waiting_timeout,
            args=(self._generation,),
        )
        timer.daemon = True
        self._waiting_timer = timer
        timer.start()

    def _on_waiting_timeout(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._waiting_timer = None
            if not self._first_tool_seen and not self._completed:
                notice = ProgressEvent(stage="waiting", message="Waiting for response...")
                self.events.publish(notice)

    def _cancel_waiting_timer(self) -> None:
        if self._waiting_timer is not None:
            self._waiting_timer.cancel()
            self._waiting_timer = None

    def _confirm_interrupt(self, process: ProcessHandle) -> None:
        with self._lock:
            self._confirm_timer = None
            if self._process is process:
                process.write(_WINDOWS_BATCH_CONFIRM)
                logger.info("Sent Y to confirm batch termination")

    def _cancel_confirm_timer(self) -> None:
        if self._confirm_timer is not None:
            self._confirm_timer.cancel()
            self._confirm_timer = None

    def _schedule_temp_cleanup(self, session_id: str) -> None:
        def _cleanup() -> None:
            try:
                removed = self._temp_store.cleanup_session(session_id)
            except (TempFileStoreError, OSError) as error:
                logger.warning("Failed to cleanup temp files for task %s: %s", session_id, error)
                return
            logger.info("Cleaned up %d temp files for task %s", removed, session_id)

        threading.Thread(target=_cleanup, name=f"temp-cleanup-{session_id}", daemon=True).start()
        logger.info("Scheduled cleanup for %d temp files", len(self._temp_files))


def format_plan_message(plan: dict[str, Any]) -> str:
    """Render a plan declaration as the markdown shown in the transcript."""

    steps = "\n".join(f"{index}. {step}" for index, step in enumerate(plan.get("steps") or [], 1))
    text = f"**Plan:**\n\n**Goal:** {plan.get('goal')}\n\n**Steps:**\n{steps}"

    verification = plan.get("verification") or []
    if verification:
        checks = "\n".join(f"{index}. {item}" for index, item in enumerate(verification, 1))
        text += f"\n\n**Verification:**\n{checks}"
    skills = plan.get("skills") or []
    if skills:
        text += f"\n\n**Skills:** {', '.join(str(skill) for skill in skills)}"
    return text


def _is_tool(tool_name: str, designated: str) -> bool:
    return tool_name == designated or tool_name.endswith(f"_{designated}")


def _is_exempt_tool(tool_name: str) -> bool:
    return _is_tool(tool_name, TODO_WRITE_TOOL) or _is_tool(tool_name, START_TASK_TOOL)


def _ensure_workspace_package_json(cwd: Path) -> None:
    package_json = cwd / "package.json"
    if package_json.exists():
        return
    try:
        package_json.write_text(
            json.dumps({"name": "agent-workspace", "private": True}, indent=2),
            encoding="utf-8",
        )
    except OSError as error:
        logger.warning("Could not create workspace package.json at %s: %s", package_json, error)
        return
    logger.info("Created workspace package.json at %s", package_json)


def default_environment(task_id: str) -> dict[str, str]:
    """Inherit the current environment and tag it with the task id."""

    return {**os.environ, "AGENT_SUPERVISOR_TASK_ID": task_id}
