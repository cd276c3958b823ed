"""Pseudo-terminal backed process runner for agent CLIs.

On POSIX the shell gets a real pty as its controlling terminal, so the
agent sees an interactive session and Ctrl+C written to the terminal is
delivered as SIGINT. Windows has no pty in the standard library; there the
shell runs on pipes in a new process group and Ctrl+C is translated into a
CTRL_BREAK_EVENT.
"""

from __future__ import annotations

import codecs
import logging
import os
import signal
import struct
import subprocess
import sys
import threading

from agent_supervisor.orchestrator.backend.base import (
    DataCallback,
    ExitCallback,
    ProcessHandle,
    SpawnRequest,
)

logger = logging.getLogger(__name__)

_READ_SIZE = 65_536
_CTRL_C = "\x03"


class PtyProcessHandle:
    """POSIX process attached to the slave side of a pty."""

    def __init__(self, process: subprocess.Popen[bytes], master_fd: int) -> None:
        self._process = process
        self._master_fd = master_fd
        self._closed = False

    @property
    def pid(self) -> int:
        return self._process.pid

    def write(self, data: str) -> None:
        if self._closed:
            raise OSError("pty is closed")
        os.write(self._master_fd, data.encode("utf-8"))

    def kill(self) -> None:
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            try:
                self._process.kill()
            except ProcessLookupError:
                return

    def read_loop(self, on_data: DataCallback, on_exit: ExitCallback) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            try:
                chunk = os.read(self._master_fd, _READ_SIZE)
            except OSError:
                # EIO once the slave side is closed
                break
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                on_data(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            on_data(tail)

        returncode = self._process.wait()
        self._closed = True
        try:
            os.close(self._master_fd)
        except OSError:
            pass
        on_exit(*_split_returncode(returncode))


class PipeProcessHandle:
    """Fallback handle for platforms without a pty."""

    def __init__(self, process: subprocess.Popen[bytes]) -> None:
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    def write(self, data: str) -> None:
        if _CTRL_C in data and sys.platform == "win32":
            self._process.send_signal(signal.CTRL_BREAK_EVENT)
            data = data.replace(_CTRL_C, "")
        if data and self._process.stdin is not None:
            self._process.stdin.write(data.encode("utf-8"))
            self._process.stdin.flush()

    def kill(self) -> None:
        try:
            self._process.kill()
        except OSError:
            return

    def read_loop(self, on_data: DataCallback, on_exit: ExitCallback) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        stdout = self._process.stdout
        if stdout is not None:
            for chunk in iter(lambda: stdout.read1(_READ_SIZE), b""):
                text = decoder.decode(chunk)
                if text:
                    on_data(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            on_data(tail)
        on_exit(*_split_returncode(self._process.wait()))


class PtyBackend:
    """Spawns the shell-wrapped agent and pumps its output on a reader thread."""

    def spawn(
        self,
        request: SpawnRequest,
        *,
        on_data: DataCallback,
        on_exit: ExitCallback,
    ) -> ProcessHandle:
        if os.name == "posix":
            handle: PtyProcessHandle | PipeProcessHandle = _spawn_pty(request)
        else:
            handle = _spawn_pipes(request)
        logger.info("Spawned agent shell pid=%s cwd=%s", handle.pid, request.cwd)

        reader = threading.Thread(
            target=handle.read_loop,
            args=(on_data, on_exit),
            name=f"agent-reader-{handle.pid}",
            daemon=True,
        )
        reader.start()
        return handle


def _spawn_pty(request: SpawnRequest) -> PtyProcessHandle:
    import fcntl  # noqa: PLC0415
    import pty  # noqa: PLC0415
    import termios  # noqa: PLC0415

    master_fd, slave_fd = pty.openpty()
    fcntl.ioctl(
        slave_fd,
        termios.TIOCSWINSZ,
        struct.pack("HHHH", request.rows, min(request.cols, 65_535), 0, 0),
    )

    def _take_controlling_terminal() -> None:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)

    try:
        process = subprocess.Popen(  # noqa: S603
            [request.shell, *request.shell_args],
            stdin=slave_fd,
            stdout=slave_fd,
            stderr=slave_fd,
            cwd=request.cwd,
            env={**request.env, "TERM": request.env.get("TERM", "xterm-256color")},
            start_new_session=True,
            preexec_fn=_take_controlling_terminal,  # noqa: PLW1509
            close_fds=True,
        )
    except Exception:
        os.close(master_fd)
        raise
    finally:
        os.close(slave_fd)
    return PtyProcessHandle(process, master_fd)


def _spawn_pipes(request: SpawnRequest) -> PipeProcessHandle:
    process = subprocess.Popen(  # noqa: S603
        [request.shell, *request.shell_args],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        cwd=request.cwd,
        env=request.env,
        creationflags=getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0),
    )
    return PipeProcessHandle(process)


def _split_returncode(returncode: int) -> tuple[int, int | None]:
    """Map Popen's negative signal codes to ``(exit_code, signal)``."""

    if returncode < 0:
        return 128 - returncode, -returncode
    return returncode, None
