"""Shell selection and argument escaping for agent command lines.

The agent binary is launched through an interactive-capable shell so that
PATH and profile resolution match what the user sees in a terminal.
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from pathlib import Path

WINDOWS = "win32"
MACOS = "darwin"


def escape_shell_arg(arg: str, platform: str) -> str:
    """Quote one argument for the target platform's shell."""

    if platform == WINDOWS:
        if " " in arg or '"' in arg:
            return '"' + arg.replace('"', '""') + '"'
        return arg

    return shlex.quote(arg)


def build_shell_command(command: str, args: list[str], platform: str) -> str:
    return " ".join(escape_shell_arg(part, platform) for part in [command, *args])


def get_platform_shell(
    platform: str,
    *,
    is_packaged: bool,
    env: Mapping[str, str] | None = None,
) -> str:
    if platform == WINDOWS:
        return "cmd.exe"
    if is_packaged and platform == MACOS:
        return "/bin/sh"

    user_shell = (env if env is not None else os.environ).get("SHELL")
    if user_shell:
        return user_shell
    for candidate in ("/bin/bash", "/bin/zsh"):
        if Path(candidate).exists():
            return candidate
    return "/bin/sh"


def get_shell_args(command: str, platform: str) -> list[str]:
    if platform == WINDOWS:
        return ["/s", "/c", command]
    return ["-c", command]
