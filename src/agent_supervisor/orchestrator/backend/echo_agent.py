"""Local deterministic agent CLI for supervisor integration tests.

Speaks the same newline-delimited JSON protocol as the real agent::

    python -m agent_supervisor.orchestrator.backend.echo_agent run --format json \
        [--session ID] [--model ID] PROMPT

Behaviour is selected with ``AGENT_SUPERVISOR_ECHO_SCENARIO``:

- ``complete`` (default): declare a plan, run one tool, call complete_task.
- ``conversational``: answer with text only.
- ``narrate``: use a tool and stop without complete_task; a resumed session
  (``--session``) then completes normally.
- ``fail``: emit a top-level error record and exit 1.
"""

from __future__ import annotations

import argparse
import json
import os
import secrets
import sys
import time
from pathlib import Path
from typing import Any


def main(argv: list[str] | None = None) -> int:
    """Emit one scripted agent run on stdout."""

    parser = argparse.ArgumentParser()
    parser.add_argument("command", choices=["run"])
    parser.add_argument("--format", default="json")
    parser.add_argument("--session", default=None)
    parser.add_argument("--model", default=None)
    parser.add_argument("prompt", nargs="+")
    args = parser.parse_args(argv)

    prompt = " ".join(args.prompt)
    session_id = args.session or f"ses_{secrets.token_hex(6)}"
    scenario = os.getenv("AGENT_SUPERVISOR_ECHO_SCENARIO", "complete")
    if scenario == "narrate" and args.session:
        scenario = "complete"

    emit = _Emitter(session_id)
    emit("step_start", {})

    if scenario == "fail":
        emit.record({"type": "error", "sessionID": session_id, "error": "echo agent failure"})
        return 1

    files = sorted(path.name for path in Path.cwd().iterdir() if path.is_file())
    emit("text", {"text": f"Received: {prompt}"})
    if files:
        emit("text", {"text": "Attached files: " + ", ".join(files)})

    if scenario == "conversational":
        emit("step_finish", {"reason": "stop"})
        return 0

    if scenario == "complete":
        emit(
            "tool_use",
            _tool(
                "start_task",
                {
                    "original_request": prompt,
                    "goal": "Echo the request back",
                    "steps": ["Read the request", "Reply"],
                    "verification": ["Reply contains the request"],
                    "skills": [],
                },
            ),
        )
    emit(
        "tool_use",
        _tool(
            "bash",
            {"command": "echo done", "description": "Running echo"},
            output="done",
        ),
    )
    if scenario == "complete":
        emit("tool_use", _tool("complete_task", {"status": "success", "summary": "Echoed"}))
    emit("step_finish", {"reason": "stop"})
    return 0


class _Emitter:
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id

    def __call__(self, message_type: str, part: dict[str, Any]) -> None:
        self.record(
            {
                "type": message_type,
                "timestamp": int(time.time() * 1000),
                "sessionID": self.session_id,
                "part": {"sessionID": self.session_id, "type": message_type, **part},
            },
        )

    def record(self, payload: dict[str, Any]) -> None:
        sys.stdout.write(json.dumps(payload) + "\n")
        sys.stdout.flush()


def _tool(name: str, tool_input: dict[str, Any], *, output: str = "") -> dict[str, Any]:
    return {
        "tool": name,
        "state": {"status": "completed", "input": tool_input, "output": output},
    }


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
