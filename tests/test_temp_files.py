from __future__ import annotations

import base64
import os
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from agent_supervisor.attachments.temp_files import (
    AttachmentError,
    InvalidSessionIdError,
    TempFileStore,
    sanitize_file_name,
    sanitize_session_id,
    validate_session_id,
)
from agent_supervisor.config import TempFileSettings
from agent_supervisor.orchestrator.models import AttachmentType, TaskAttachment

pytestmark = [
    allure.epic("Agent Supervision"),
    allure.feature("Attachment Temp Files"),
]


def _attachment(name: str | None, content: bytes = b"data", **extra) -> TaskAttachment:
    return TaskAttachment(
        type=AttachmentType.DOCUMENT,
        data=base64.b64encode(content).decode("ascii"),
        file_name=name,
        **extra,
    )


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 9, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def small_store(tmp_path: Path):
    store = TempFileStore(
        TempFileSettings(root_dir=tmp_path, max_file_size_mb=1, max_session_size_mb=2),
    )
    store.initialize()
    yield store
    store.shutdown()


def test_validate_session_id_rejects_bad_ids() -> None:
    with pytest.raises(InvalidSessionIdError, match="Invalid session ID"):
        validate_session_id("")
    with pytest.raises(InvalidSessionIdError, match="Session ID too long"):
        validate_session_id("a" * 256)
    with pytest.raises(InvalidSessionIdError, match="Invalid characters in session ID"):
        validate_session_id("../../etc")
    with pytest.raises(InvalidSessionIdError, match="Invalid characters in session ID"):
        validate_session_id("a\\b")
    assert validate_session_id("task_1_abc") == "task_1_abc"


def test_sanitizers() -> None:
    assert sanitize_session_id("task 1:abc") == "task_1_abc"
    assert sanitize_file_name("../secret?.txt") == "_secret_.txt"
    assert sanitize_file_name("...") == "unnamed_file"
    assert sanitize_file_name(".env") == "env"
    assert len(sanitize_file_name("x" * 400)) == 255


def test_initialize_creates_base_directory(tmp_path: Path) -> None:
    store = TempFileStore(TempFileSettings(root_dir=tmp_path, base_dir_name="attachments"))

    store.initialize()
    store.initialize()

    assert store.initialized
    assert store.base_temp_path == tmp_path / "attachments"
    assert store.base_temp_path.is_dir()
    store.shutdown()


def test_create_files_in_session_directory(small_store: TempFileStore) -> None:
    created = small_store.create_temp_files_from_attachments(
        "task_1",
        [
            _attachment("notes.txt", b"hello", mime_type="text/plain"),
            _attachment(None, label="clip"),
        ],
    )

    session_dir = small_store.get_session_path("task_1")
    assert [info.temp_file_path for info in created] == [
        session_dir / "notes.txt",
        session_dir / "clip",
    ]
    assert (session_dir / "notes.txt").read_bytes() == b"hello"
    assert created[0].mime_type == "text/plain"
    assert created[0].original_file_name == "notes.txt"
    info = small_store.get_session_info("task_1")
    assert info is not None
    assert info.file_count == 2
    assert info.total_size == 9
    assert small_store.get_temp_file_info(session_dir / "notes.txt") is created[0]


def test_name_collisions_get_numeric_suffix(small_store: TempFileStore) -> None:
    created = small_store.create_temp_files_from_attachments(
        "task_1",
        [_attachment("file.txt", content) for content in (b"a", b"b", b"c")],
    )

    names = [info.temp_file_path.name for info in created]
    assert names == ["file.txt", "file_1.txt", "file_2.txt"]
    assert [info.original_file_name for info in created] == ["file.txt"] * 3


def test_traversal_session_id_is_rejected(small_store: TempFileStore, tmp_path: Path) -> None:
    with pytest.raises(InvalidSessionIdError, match="Invalid characters in session ID"):
        small_store.create_temp_files_from_attachments("../../etc", [_attachment("passwd")])

    assert not (tmp_path / "etc").exists()


def test_file_quota(small_store: TempFileStore) -> None:
    with pytest.raises(AttachmentError, match="File size exceeds maximum allowed size of 1MB"):
        small_store.create_temp_files_from_attachments(
            "task_1",
            [_attachment("big.bin", b"x" * (1024 * 1024 + 1))],
        )


def test_session_quota_counts_earlier_batches(small_store: TempFileStore) -> None:
    almost_mb = b"x" * (1024 * 1024 - 10)
    small_store.create_temp_files_from_attachments("task_1", [_attachment("a.bin", almost_mb)])
    small_store.create_temp_files_from_attachments("task_1", [_attachment("b.bin", almost_mb)])

    with pytest.raises(AttachmentError, match="Session size would exceed maximum allowed size"):
        small_store.create_temp_files_from_attachments("task_1", [_attachment("c.bin", b"x" * 100)])

    assert small_store.get_session_info("task_1").file_count == 2


def test_failed_batch_removes_files_already_written(small_store: TempFileStore) -> None:
    with pytest.raises(AttachmentError, match="missing data"):
        small_store.create_temp_files_from_attachments(
            "task_1",
            [
                _attachment("ok.txt"),
                TaskAttachment(type=AttachmentType.TEXT, data="", file_name="empty.txt"),
            ],
        )

    assert not (small_store.get_session_path("task_1") / "ok.txt").exists()
    assert small_store.get_session_files("task_1") == []
    assert small_store.get_session_info("task_1") is None


def test_invalid_base64_is_rejected(small_store: TempFileStore) -> None:
    with pytest.raises(AttachmentError, match="Invalid attachment data"):
        small_store.create_temp_files_from_attachments(
            "task_1",
            [TaskAttachment(type=AttachmentType.TEXT, data="abc", file_name="a")],
        )


def test_cleanup_session_removes_directory(small_store: TempFileStore) -> None:
    small_store.create_temp_files_from_attachments(
        "task_1",
        [_attachment("a.txt"), _attachment("b.txt")],
    )

    removed = small_store.cleanup_session("task_1")

    assert removed == 2
    assert not small_store.get_session_path("task_1").exists()
    assert small_store.list_sessions() == []
    assert small_store.cleanup_session("task_1") == 0


def test_cleanup_expired_keeps_recent_sessions(tmp_path: Path) -> None:
    clock = _Clock()
    store = TempFileStore(
        TempFileSettings(root_dir=tmp_path, max_session_age_hours=1),
        clock=clock,
    )
    store.initialize()
    store.create_temp_files_from_attachments("old", [_attachment("a.txt")])
    clock.now += timedelta(minutes=50)
    store.create_temp_files_from_attachments("fresh", [_attachment("b.txt")])
    clock.now += timedelta(minutes=20)

    summary = store.cleanup_expired()

    assert summary.sessions_cleaned_up == 1
    assert summary.files_cleaned_up == 1
    assert [info.session_id for info in store.list_sessions()] == ["fresh"]
    assert not store.get_session_path("old").exists()
    assert store.get_session_path("fresh").exists()
    store.shutdown()


def test_recovers_sessions_left_on_disk(tmp_path: Path) -> None:
    settings = TempFileSettings(root_dir=tmp_path)
    session_dir = tmp_path / settings.base_dir_name / "task_old"
    session_dir.mkdir(parents=True)
    (session_dir / "a.txt").write_bytes(b"12345")
    (session_dir / "b.txt").write_bytes(b"123")
    stale = time.time() - 48 * 3_600
    for path in (session_dir / "a.txt", session_dir / "b.txt", session_dir):
        os.utime(path, (stale, stale))

    store = TempFileStore(settings)
    store.initialize()

    info = store.get_session_info("task_old")
    assert info is not None
    assert info.file_count == 2
    assert info.total_size == 8
    assert len(store.get_session_files("task_old")) == 2

    summary = store.cleanup_expired()
    assert summary.sessions_cleaned_up == 1
    assert summary.files_cleaned_up == 2
    assert not session_dir.exists()
    store.shutdown()


def test_invalid_directory_on_disk_is_removed(tmp_path: Path) -> None:
    settings = TempFileSettings(root_dir=tmp_path)
    bad_dir = tmp_path / settings.base_dir_name / "bad..name"
    bad_dir.mkdir(parents=True)

    store = TempFileStore(settings)
    store.initialize()

    assert not bad_dir.exists()
    assert store.list_sessions() == []
    store.shutdown()


def test_shutdown_removes_everything_and_is_safe_when_empty(tmp_path: Path) -> None:
    store = TempFileStore(TempFileSettings(root_dir=tmp_path))
    store.shutdown()

    store.initialize()
    store.create_temp_files_from_attachments("task_1", [_attachment("a.txt")])
    store.shutdown()

    assert not store.get_session_path("task_1").exists()
    assert not store.initialized


def test_close_leaves_files_for_recovery(tmp_path: Path) -> None:
    settings = TempFileSettings(root_dir=tmp_path)
    store = TempFileStore(settings)
    store.initialize()
    store.create_temp_files_from_attachments("task_1", [_attachment("a.txt")])

    store.close()

    assert (store.get_session_path("task_1") / "a.txt").exists()
    assert store.list_sessions() == []

    reopened = TempFileStore(settings)
    reopened.initialize()
    assert [info.session_id for info in reopened.list_sessions()] == ["task_1"]
    reopened.shutdown()


def test_create_initializes_lazily(tmp_path: Path) -> None:
    store = TempFileStore(TempFileSettings(root_dir=tmp_path))

    created = store.create_temp_files_from_attachments("task_1", [_attachment("a.txt")])

    assert store.initialized
    assert created[0].temp_file_path.exists()
    assert store.create_temp_files_from_attachments("task_1", []) == []
    store.shutdown()
