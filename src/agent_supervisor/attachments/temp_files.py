"""Session-scoped temporary files materialized from task attachments.

Attachments arrive as base64 payloads; the agent CLI can only read real
files, so each payload is written under::

    <system temp>/<base dir>/<sanitized session id>/<sanitized file name>

One `TempFileStore` is constructed per process and handed to every
supervisor. Sessions are recovered from disk on `initialize()` so files left
behind by a crashed run are still swept once they expire.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import shutil
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from agent_supervisor.config import TempFileSettings
from agent_supervisor.orchestrator.models import TaskAttachment

logger = logging.getLogger(__name__)

MAX_SESSION_ID_LENGTH = 255
MAX_FILE_NAME_LENGTH = 255

_UNSAFE_FILE_CHARS = re.compile(r'[<>:"|?*\x00-\x1f/\\]')
_UNSAFE_SESSION_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class TempFileStoreError(RuntimeError):
    """Base error for attachment store failures."""


class InvalidSessionIdError(TempFileStoreError, ValueError):
    """Session id is empty, too long, or carries path traversal."""


class AttachmentError(TempFileStoreError):
    """Attachment could not be materialized (quota, payload, or write failure)."""


@dataclass(slots=True)
class TempFileInfo:
    """One materialized attachment."""

    session_id: str
    original_file_name: str
    temp_file_path: Path
    size: int
    created_at: datetime
    last_accessed: datetime
    mime_type: str | None = None


@dataclass(slots=True)
class TempSessionInfo:
    """Quota and expiry bookkeeping for one session directory."""

    session_id: str
    created_at: datetime
    last_activity: datetime
    file_count: int
    total_size: int


@dataclass(slots=True)
class CleanupSummary:
    sessions_cleaned_up: int = 0
    files_cleaned_up: int = 0


def _utc_now() -> datetime:
    return datetime.now(UTC)


def validate_session_id(session_id: object) -> str:
    """Reject ids that cannot safely name a session directory."""

    if not session_id or not isinstance(session_id, str):
        raise InvalidSessionIdError("Invalid session ID")
    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise InvalidSessionIdError("Session ID too long")
    if ".." in session_id or "/" in session_id or "\\" in session_id:
        raise InvalidSessionIdError("Invalid characters in session ID")
    return session_id


def sanitize_session_id(session_id: str) -> str:
    return _UNSAFE_SESSION_CHARS.sub("_", session_id) or "session"


def sanitize_file_name(file_name: str) -> str:
    """Return a basename safe to create inside a session directory."""

    sanitized = _UNSAFE_FILE_CHARS.sub("_", file_name).lstrip(".")
    sanitized = sanitized[:MAX_FILE_NAME_LENGTH]
    return sanitized or "unnamed_file"


class TempFileStore:
    """Creates, tracks and expires attachment files per session."""

    def __init__(
        self,
        settings: TempFileSettings | None = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.settings = settings or TempFileSettings()
        self._clock = clock
        self._base_path = self.settings.root_dir / self.settings.base_dir_name
        self._sessions: dict[str, TempSessionInfo] = {}
        self._files: dict[Path, TempFileInfo] = {}
        self._lock = threading.RLock()
        self._sweep_timer: threading.Timer | None = None
        self._initialized = False

    @property
    def base_temp_path(self) -> Path:
        return self._base_path

    @property
    def initialized(self) -> bool:
        return self._initialized

    def get_session_path(self, session_id: str) -> Path:
        return self._base_path / sanitize_session_id(session_id)

    def initialize(self) -> None:
        """Create the base directory, recover sessions on disk and start the sweep."""

        with self._lock:
            if self._initialized:
                return
            try:
                self._base_path.mkdir(parents=True, exist_ok=True)
            except OSError as error:
                raise TempFileStoreError(
                    f"Failed to initialize temp file store at {self._base_path}: {error}",
                ) from error
            self._recover_existing_sessions()
            self._schedule_sweep()
            self._initialized = True
        logger.info("Temp file store initialized at %s", self._base_path)

    def create_temp_files_from_attachments(
        self,
        session_id: str,
        attachments: list[TaskAttachment],
    ) -> list[TempFileInfo]:
        """Write every attachment to the session directory, all or nothing."""

        validate_session_id(session_id)
        if not self._initialized:
            self.initialize()
        if not attachments:
            return []

        with self._lock:
            session_path = self._ensure_session_directory(session_id)
            session_size = self._session_size(session_id)
            created: list[TempFileInfo] = []
            try:
                for attachment in attachments:
                    info = self._write_attachment(
                        session_id=session_id,
                        session_path=session_path,
                        attachment=attachment,
                        current_session_size=session_size,
                    )
                    created.append(info)
                    session_size += info.size
                    self._files[info.temp_file_path] = info
            except Exception:
                self._cleanup_files([info.temp_file_path for info in created])
                raise

            self._update_session_info(session_id, len(created), session_size)

        logger.info("Created %d temp files for session %s", len(created), session_id)
        return created

    def get_temp_file_info(self, file_path: Path | str) -> TempFileInfo | None:
        with self._lock:
            info = self._files.get(Path(file_path))
            if info is not None:
                info.last_accessed = self._clock()
            return info

    def get_session_files(self, session_id: str) -> list[TempFileInfo]:
        with self._lock:
            return [info for info in self._files.values() if info.session_id == session_id]

    def get_session_info(self, session_id: str) -> TempSessionInfo | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self) -> list[TempSessionInfo]:
        with self._lock:
            return sorted(self._sessions.values(), key=lambda item: item.created_at)

    def cleanup_session(self, session_id: str) -> int:
        """Remove a session's files and directory; return how many files were known."""

        validate_session_id(session_id)
        with self._lock:
            paths = [info.temp_file_path for info in self.get_session_files(session_id)]
            self._cleanup_files(paths)

            session_path = self.get_session_path(session_id)
            try:
                shutil.rmtree(session_path)
            except FileNotFoundError:
                pass
            except OSError as error:
                logger.warning("Failed to remove session directory %s: %s", session_path, error)

            self._sessions.pop(session_id, None)
        logger.info("Cleaned up session %s", session_id)
        return len(paths)

    def cleanup_expired(self) -> CleanupSummary:
        """Remove sessions idle for longer than the configured maximum age."""

        now = self._clock()
        max_age = self.settings.max_session_age_seconds
        with self._lock:
            expired = [
                session_id
                for session_id, info in self._sessions.items()
                if (now - info.last_activity).total_seconds() > max_age
            ]

        summary = CleanupSummary()
        for session_id in expired:
            summary.files_cleaned_up += self.cleanup_session(session_id)
            summary.sessions_cleaned_up += 1

        if summary.sessions_cleaned_up:
            logger.info(
                "Cleaned up %d expired sessions with %d files",
                summary.sessions_cleaned_up,
                summary.files_cleaned_up,
            )
        return summary

    def close(self) -> None:
        """Stop the sweep but leave sessions on disk for a later process to recover."""

        with self._lock:
            self._cancel_sweep()
            self._sessions.clear()
            self._files.clear()
            self._initialized = False

    def shutdown(self) -> None:
        """Stop the sweep and remove every remaining session."""

        with self._lock:
            self._cancel_sweep()
            session_ids = list(self._sessions)
        for session_id in session_ids:
            try:
                self.cleanup_session(session_id)
            except TempFileStoreError as error:
                logger.warning(
                    "Failed to cleanup session %s during shutdown: %s",
                    session_id,
                    error,
                )
        self._initialized = False

    def _ensure_session_directory(self, session_id: str) -> Path:
        session_path = self.get_session_path(session_id)
        if not session_path.exists():
            session_path.mkdir(parents=True, exist_ok=True)
            logger.debug("Created session directory %s", session_path)
        return session_path

    def _recover_existing_sessions(self) -> None:
        try:
            entries = list(self._base_path.iterdir())
        except OSError as error:
            logger.warning("Failed to scan %s for existing sessions: %s", self._base_path, error)
            return

        for entry in entries:
            if not entry.is_dir():
                continue
            try:
                self._recover_session(entry)
            except (OSError, TempFileStoreError) as error:
                logger.warning("Failed to recover session %s, removing it: %s", entry.name, error)
                shutil.rmtree(entry, ignore_errors=True)

    def _recover_session(self, session_dir: Path) -> None:
        session_id = validate_session_id(session_dir.name)
        dir_stat = session_dir.stat()
        created_ts = dir_stat.st_ctime
        activity_ts = dir_stat.st_mtime
        total_size = 0
        recovered = 0
        for file_path in session_dir.iterdir():
            try:
                stat = file_path.stat()
            except OSError as error:
                logger.warning("Failed to recover file %s: %s", file_path, error)
                continue
            if not file_path.is_file():
                continue
            self._files[file_path] = TempFileInfo(
                session_id=session_id,
                original_file_name=file_path.name,
                temp_file_path=file_path,
                size=stat.st_size,
                created_at=datetime.fromtimestamp(stat.st_ctime, UTC),
                last_accessed=datetime.fromtimestamp(stat.st_atime, UTC),
            )
            total_size += stat.st_size
            recovered += 1
            created_ts = min(created_ts, stat.st_ctime)
            activity_ts = max(activity_ts, stat.st_mtime)

        # on-disk times, so sessions left by an earlier process still expire
        self._sessions[session_id] = TempSessionInfo(
            session_id=session_id,
            created_at=datetime.fromtimestamp(created_ts, UTC),
            last_activity=datetime.fromtimestamp(activity_ts, UTC),
            file_count=recovered,
            total_size=total_size,
        )
        logger.info("Recovered session %s with %d files", session_id, recovered)

    def _write_attachment(
        self,
        *,
        session_id: str,
        session_path: Path,
        attachment: TaskAttachment,
        current_session_size: int,
    ) -> TempFileInfo:
        if not attachment.data:
            raise AttachmentError("Invalid attachment: missing data")
        try:
            payload = base64.b64decode(attachment.data)
        except (binascii.Error, ValueError) as error:
            raise AttachmentError(f"Invalid attachment data: {error}") from error

        size = len(payload)
        if size > self.settings.max_file_size_bytes:
            raise AttachmentError(
                "File size exceeds maximum allowed size of "
                f"{self.settings.max_file_size_mb}MB",
            )
        if current_session_size + size > self.settings.max_session_size_bytes:
            raise AttachmentError(
                "Session size would exceed maximum allowed size of "
                f"{self.settings.max_session_size_mb}MB",
            )

        now = self._clock()
        original_name = (
            attachment.file_name or attachment.label or f"attachment_{int(now.timestamp() * 1000)}"
        )
        safe_name = sanitize_file_name(original_name)
        target = self._write_unique(session_path, safe_name, payload)
        return TempFileInfo(
            session_id=session_id,
            original_file_name=original_name,
            temp_file_path=target,
            size=size,
            created_at=now,
            last_accessed=now,
            mime_type=attachment.mime_type,
        )

    def _write_unique(self, session_path: Path, safe_name: str, payload: bytes) -> Path:
        stem, suffix = Path(safe_name).stem, Path(safe_name).suffix
        target = session_path / safe_name
        counter = 1
        while True:
            try:
                with target.open("xb") as handle:
                    handle.write(payload)
            except FileExistsError:
                target = session_path / f"{stem}_{counter}{suffix}"
                counter += 1
                continue
            except OSError as error:
                raise AttachmentError(f"Failed to write temp file: {error}") from error
            return target

    def _cleanup_files(self, paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as error:
                logger.warning("Failed to cleanup file %s: %s", path, error)
                continue
            self._files.pop(path, None)

    def _update_session_info(self, session_id: str, added_files: int, total_size: int) -> None:
        now = self._clock()
        existing = self._sessions.get(session_id)
        if existing is not None:
            existing.last_activity = now
            existing.file_count += added_files
            existing.total_size = total_size
            return
        self._sessions[session_id] = TempSessionInfo(
            session_id=session_id,
            created_at=now,
            last_activity=now,
            file_count=added_files,
            total_size=total_size,
        )

    def _session_size(self, session_id: str) -> int:
        info = self._sessions.get(session_id)
        return info.total_size if info is not None else 0

    def _schedule_sweep(self) -> None:
        timer = threading.Timer(self.settings.cleanup_interval_seconds, self._run_sweep)
        timer.daemon = True
        timer.name = "temp-files-sweep"
        self._sweep_timer = timer
        timer.start()

    def _cancel_sweep(self) -> None:
        if self._sweep_timer is not None:
            self._sweep_timer.cancel()
            self._sweep_timer = None

    def _run_sweep(self) -> None:
        try:
            self.cleanup_expired()
        except (OSError, TempFileStoreError):
            logger.warning("Scheduled temp file cleanup failed", exc_info=True)
        with self._lock:
            if self._sweep_timer is not None:
                self._schedule_sweep()
