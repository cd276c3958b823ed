"""CLI entrypoint for agent-supervisor."""

import logging
from pathlib import Path

import rich_click as click

from agent_supervisor import __version__
from agent_supervisor.orchestrator.controllers import (
    AttachmentsCommand,
    RunTaskCommand,
    SupervisorCliController,
)
from agent_supervisor.orchestrator.errors import SupervisorError

click.rich_click.USE_MARKDOWN = True
SUPERVISOR_CONTROLLER = SupervisorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agent-supervisor")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for supervisor diagnostics (written to stderr).",
)
def agent_supervisor(log_level: str) -> None:
    """Run and supervise an agent CLI under a pseudo-terminal."""

    logging.basicConfig(
        level=log_level.upper(),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@agent_supervisor.command("run")
@click.argument("prompt")
@click.option(
    "--attach",
    "attachments",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File to hand to the agent. Can be repeated.",
)
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Working directory when no attachments are given.",
)
@click.option("--model", default=None, help="Model id passed to the agent, e.g. provider/model.")
@click.option("--session-id", default=None, help="Resume an existing agent session.")
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=1),
    default=None,
    help="Kill the agent if no terminal event arrives in time.",
)
def run(  # noqa: PLR0913
    prompt: str,
    attachments: tuple[Path, ...],
    cwd: Path | None,
    model: str | None,
    session_id: str | None,
    timeout_seconds: float | None,
) -> None:
    """Run one task and print its events as they arrive."""

    try:
        result = SUPERVISOR_CONTROLLER.run_task(
            RunTaskCommand(
                prompt=prompt,
                attachments=attachments,
                cwd=cwd,
                model=model,
                session_id=session_id,
                timeout_seconds=timeout_seconds,
            ),
            on_line=click.echo,
        )
    except (SupervisorError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    if not result.success:
        raise click.ClickException("Task did not complete successfully.")


@agent_supervisor.group("attachments")
def attachments_group() -> None:
    """Temporary attachment store maintenance."""


@attachments_group.command("cleanup-expired")
@click.option(
    "--temp-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Override AGENT_SUPERVISOR_TEMP_ROOT.",
)
def attachments_cleanup_expired(temp_root: Path | None) -> None:
    """Remove attachment sessions idle for longer than the configured age."""

    _emit_lines(SUPERVISOR_CONTROLLER.cleanup_expired(AttachmentsCommand(temp_root=temp_root)))


@attachments_group.command("sessions")
@click.option(
    "--temp-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Override AGENT_SUPERVISOR_TEMP_ROOT.",
)
def attachments_sessions(temp_root: Path | None) -> None:
    """List attachment sessions recovered from disk."""

    _emit_lines(SUPERVISOR_CONTROLLER.sessions(AttachmentsCommand(temp_root=temp_root)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_supervisor()
