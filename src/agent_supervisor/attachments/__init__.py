"""Attachment materialization for agent tasks."""

from agent_supervisor.attachments.temp_files import (
    AttachmentError,
    CleanupSummary,
    InvalidSessionIdError,
    TempFileInfo,
    TempFileStore,
    TempFileStoreError,
    TempSessionInfo,
)

__all__ = [
    "AttachmentError",
    "CleanupSummary",
    "InvalidSessionIdError",
    "TempFileInfo",
    "TempFileStore",
    "TempFileStoreError",
    "TempSessionInfo",
]
