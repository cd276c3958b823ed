"""Runtime configuration for the agent supervisor and attachment store."""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

_DEFAULT_LOG_DIR = Path.home() / ".local" / "share" / "opencode" / "log"


@dataclass(slots=True)
class TempFileSettings:
    """Attachment store quotas and expiry settings."""

    root_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    base_dir_name: str = "agent-attachments"
    max_file_size_mb: int = 100
    max_session_size_mb: int = 500
    max_session_age_hours: float = 24.0
    cleanup_interval_seconds: float = 3_600.0

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def max_session_size_bytes(self) -> int:
        return self.max_session_size_mb * 1024 * 1024

    @property
    def max_session_age_seconds(self) -> float:
        return self.max_session_age_hours * 3_600.0


@dataclass(slots=True)
class SupervisorSettings:
    """Agent process supervision settings."""

    agent_command: str = "opencode"
    agent_args: tuple[str, ...] = ("run", "--format", "json")
    log_dir: Path = _DEFAULT_LOG_DIR
    fallback_cwd: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    waiting_notice_seconds: float = 0.5
    interrupt_confirm_seconds: float = 0.1
    max_continuation_attempts: int = 5


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    temp_files: TempFileSettings = field(default_factory=TempFileSettings)
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            temp_files=TempFileSettings(
                root_dir=Path(os.getenv("AGENT_SUPERVISOR_TEMP_ROOT", tempfile.gettempdir())),
                base_dir_name=os.getenv("AGENT_SUPERVISOR_TEMP_BASE_DIR", "agent-attachments"),
                max_file_size_mb=int(os.getenv("AGENT_SUPERVISOR_MAX_FILE_SIZE_MB", "100")),
                max_session_size_mb=int(
                    os.getenv("AGENT_SUPERVISOR_MAX_SESSION_SIZE_MB", "500"),
                ),
                max_session_age_hours=float(
                    os.getenv("AGENT_SUPERVISOR_MAX_SESSION_AGE_HOURS", "24"),
                ),
                cleanup_interval_seconds=float(
                    os.getenv("AGENT_SUPERVISOR_CLEANUP_INTERVAL_SECONDS", "3600"),
                ),
            ),
            supervisor=SupervisorSettings(
                agent_command=os.getenv("AGENT_SUPERVISOR_AGENT_COMMAND", "opencode"),
                agent_args=_split_args(
                    os.getenv("AGENT_SUPERVISOR_AGENT_ARGS", "run --format json"),
                ),
                log_dir=Path(os.getenv("AGENT_SUPERVISOR_LOG_DIR", str(_DEFAULT_LOG_DIR))),
                fallback_cwd=Path(
                    os.getenv("AGENT_SUPERVISOR_FALLBACK_CWD", tempfile.gettempdir()),
                ),
                waiting_notice_seconds=float(
                    os.getenv("AGENT_SUPERVISOR_WAITING_NOTICE_SECONDS", "0.5"),
                ),
                interrupt_confirm_seconds=float(
                    os.getenv("AGENT_SUPERVISOR_INTERRUPT_CONFIRM_SECONDS", "0.1"),
                ),
                max_continuation_attempts=int(
                    os.getenv("AGENT_SUPERVISOR_MAX_CONTINUATION_ATTEMPTS", "5"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if quotas, intervals or budgets are invalid."""

        temp = self.temp_files
        if not temp.base_dir_name.strip() or any(sep in temp.base_dir_name for sep in "/\\"):
            raise ValueError(
                f"AGENT_SUPERVISOR_TEMP_BASE_DIR must be a plain directory name: "
                f"{temp.base_dir_name!r}",
            )
        if temp.max_file_size_mb <= 0:
            raise ValueError("AGENT_SUPERVISOR_MAX_FILE_SIZE_MB must be > 0.")
        if temp.max_session_size_mb <= 0:
            raise ValueError("AGENT_SUPERVISOR_MAX_SESSION_SIZE_MB must be > 0.")
        if temp.max_session_size_mb < temp.max_file_size_mb:
            raise ValueError(
                "AGENT_SUPERVISOR_MAX_SESSION_SIZE_MB must be >= "
                "AGENT_SUPERVISOR_MAX_FILE_SIZE_MB.",
            )
        if temp.max_session_age_hours <= 0:
            raise ValueError("AGENT_SUPERVISOR_MAX_SESSION_AGE_HOURS must be > 0.")
        if temp.cleanup_interval_seconds <= 0:
            raise ValueError("AGENT_SUPERVISOR_CLEANUP_INTERVAL_SECONDS must be > 0.")

        supervisor = self.supervisor
        if not supervisor.agent_command.strip():
            raise ValueError("AGENT_SUPERVISOR_AGENT_COMMAND must not be empty.")
        if supervisor.waiting_notice_seconds < 0:
            raise ValueError("AGENT_SUPERVISOR_WAITING_NOTICE_SECONDS must be >= 0.")
        if supervisor.interrupt_confirm_seconds < 0:
            raise ValueError("AGENT_SUPERVISOR_INTERRUPT_CONFIRM_SECONDS must be >= 0.")
        if supervisor.max_continuation_attempts < 0:
            raise ValueError("AGENT_SUPERVISOR_MAX_CONTINUATION_ATTEMPTS must be >= 0.")


def _split_args(raw: str) -> tuple[str, ...]:
    return tuple(shlex.split(raw))
