"""Domain models for supervised agent tasks."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle states visible to callers."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    WAITING_PERMISSION = "waiting_permission"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"


class TaskResultStatus(str, Enum):
    """Terminal outcome carried by a complete event."""

    SUCCESS = "success"
    ERROR = "error"
    INTERRUPTED = "interrupted"


class AttachmentType(str, Enum):
    """Attachment content categories accepted from callers."""

    SCREENSHOT = "screenshot"
    JSON = "json"
    IMAGE = "image"
    TEXT = "text"
    CODE = "code"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"
    AUDIO = "audio"
    VIDEO = "video"
    EBOOK = "ebook"
    EMAIL = "email"


class FailureClass(str, Enum):
    """Normalized classes for provider errors reported by the agent."""

    ACCESS_OR_AUTH = "access_or_auth"
    BILLING_OR_QUOTA = "billing_or_quota"
    MODEL_NOT_AVAILABLE = "model_not_available"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class TaskAttachment:
    """User-supplied file payload, base64 encoded."""

    type: AttachmentType
    data: str
    label: str | None = None
    file_name: str | None = None
    mime_type: str | None = None
    size: int | None = None
    timestamp: str | None = None
    text_content: str | None = None
    page_count: int | None = None
    language: str | None = None


@dataclass(slots=True)
class TaskConfig:
    """Input payload for starting a supervised task."""

    prompt: str
    task_id: str | None = None
    session_id: str | None = None
    working_directory: str | None = None
    allowed_tools: list[str] | None = None
    system_prompt_append: str | None = None
    output_schema: dict[str, Any] | None = None
    model_id: str | None = None
    attachments: list[TaskAttachment] = field(default_factory=list)


@dataclass(slots=True)
class TaskMessage:
    """Transcript entry accumulated while the task runs."""

    id: str
    type: str
    content: str
    timestamp: str
    tool_name: str | None = None
    tool_input: Any = None


@dataclass(slots=True)
class TaskResult:
    """Terminal outcome of a task run."""

    status: TaskResultStatus
    session_id: str | None = None
    duration_ms: int | None = None
    error: str | None = None


@dataclass(slots=True)
class Task:
    """Snapshot returned to the caller when a task starts."""

    id: str
    prompt: str
    status: TaskStatus
    created_at: str
    session_id: str | None = None
    messages: list[TaskMessage] = field(default_factory=list)
    started_at: str | None = None
    completed_at: str | None = None
    result: TaskResult | None = None


@dataclass(slots=True)
class TodoItem:
    id: str
    content: str
    status: TodoStatus = TodoStatus.PENDING
    priority: str = "medium"

    @classmethod
    def from_payload(cls, payload: dict[str, Any], index: int) -> TodoItem:
        """Build a todo from an agent tool payload, tolerating unknown statuses."""

        raw_status = str(payload.get("status") or TodoStatus.PENDING.value)
        try:
            status = TodoStatus(raw_status)
        except ValueError:
            status = TodoStatus.PENDING
        return cls(
            id=str(payload.get("id") or index + 1),
            content=str(payload.get("content") or ""),
            status=status,
            priority=str(payload.get("priority") or "medium"),
        )

    @property
    def is_open(self) -> bool:
        return self.status in (TodoStatus.PENDING, TodoStatus.IN_PROGRESS)


@dataclass(slots=True)
class PermissionOption:
    label: str
    description: str | None = None


@dataclass(slots=True)
class PermissionRequest:
    """Question forwarded to the user on behalf of the agent."""

    id: str
    task_id: str
    type: str
    question: str
    created_at: str
    header: str | None = None
    options: list[PermissionOption] = field(default_factory=list)
    multi_select: bool = False


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def generate_id(prefix: str) -> str:
    """Return ``<prefix>_<epoch ms>_<random suffix>``."""

    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"
