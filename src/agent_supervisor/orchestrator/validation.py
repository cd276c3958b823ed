"""Input validation for task configs coming from UI or CLI callers."""

from __future__ import annotations

from dataclasses import replace

from agent_supervisor.orchestrator.models import AttachmentType, TaskAttachment, TaskConfig

MAX_PROMPT_LENGTH = 100_000
MAX_ID_LENGTH = 128
MAX_PATH_LENGTH = 1024
MAX_TOOL_NAME_LENGTH = 64
MAX_ALLOWED_TOOLS = 20


def validate_task_config(config: TaskConfig) -> TaskConfig:
    """Return a trimmed copy of ``config`` or raise ``ValueError``."""

    prompt = _clean(config.prompt, "prompt", MAX_PROMPT_LENGTH)
    if not prompt:
        raise ValueError("Prompt is required")

    allowed_tools = None
    if config.allowed_tools is not None:
        allowed_tools = [
            _clean(tool, "allowed_tools", MAX_TOOL_NAME_LENGTH)
            for tool in config.allowed_tools
            if isinstance(tool, str) and tool.strip()
        ][:MAX_ALLOWED_TOOLS]

    if config.output_schema is not None and not isinstance(config.output_schema, dict):
        raise ValueError("output_schema must be a JSON object")

    return replace(
        config,
        prompt=prompt,
        task_id=_optional(config.task_id, "task_id", MAX_ID_LENGTH),
        session_id=_optional(config.session_id, "session_id", MAX_ID_LENGTH),
        working_directory=_optional(
            config.working_directory,
            "working_directory",
            MAX_PATH_LENGTH,
        ),
        allowed_tools=allowed_tools,
        system_prompt_append=_optional(
            config.system_prompt_append,
            "system_prompt_append",
            MAX_PROMPT_LENGTH,
        ),
        model_id=_optional(config.model_id, "model_id", MAX_ID_LENGTH),
        attachments=[_validate_attachment(item) for item in config.attachments],
    )


def _validate_attachment(attachment: TaskAttachment) -> TaskAttachment:
    if not isinstance(attachment.type, AttachmentType):
        try:
            attachment = replace(attachment, type=AttachmentType(attachment.type))
        except ValueError as error:
            raise ValueError(f"Unsupported attachment type: {attachment.type!r}") from error
    if not isinstance(attachment.data, str):
        raise ValueError("Attachment data must be a base64 string")
    return attachment


def _clean(value: object, field_name: str, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    cleaned = value.strip()
    if len(cleaned) > max_length:
        raise ValueError(f"{field_name} exceeds maximum length of {max_length}")
    return cleaned


def _optional(value: str | None, field_name: str, max_length: int) -> str | None:
    if value is None:
        return None
    cleaned = _clean(value, field_name, max_length)
    return cleaned or None
