"""Main Typer application — imports and registers all CLI commands.

Entry point: ``tierforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from tierforge.cli.commands.approval import approve_cmd, reject_cmd
from tierforge.cli.commands.control import cancel_cmd, tick_cmd
from tierforge.cli.commands.demo import demo_cmd
from tierforge.cli.commands.inspect import match_cmd, resolve_cmd
from tierforge.cli.commands.status import list_cmd, status_cmd
from tierforge.cli.commands.trigger import push_event_cmd, register_cmd, start_cmd
from tierforge.config import EngineSettings

app = typer.Typer(
    name="tierforge",
    help="Tierforge: tiered build, approval and rolling-deploy pipelines.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _configure(
    log_level: str = typer.Option(
        None, "--log-level", help="Override TIERFORGE_LOG_LEVEL."
    ),
) -> None:
    level = (log_level or EngineSettings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="match", help="Show which tier a branch feeds.")(match_cmd)
app.command(name="resolve", help="Resolve a pipeline definition.")(resolve_cmd)
app.command(name="register", help="Register a service.")(register_cmd)
app.command(name="push-event", help="Submit a source push event.")(push_event_cmd)
app.command(name="start", help="Start a pipeline explicitly.")(start_cmd)
app.command(name="approve", help="Approve a production execution.")(approve_cmd)
app.command(name="reject", help="Reject a production execution.")(reject_cmd)
app.command(name="cancel", help="Cancel an execution.")(cancel_cmd)
app.command(name="status", help="Show an execution and its stage history.")(status_cmd)
app.command(name="list", help="List executions of a service/environment.")(list_cmd)
app.command(name="tick", help="Expire approvals and resume interrupted work.")(tick_cmd)
app.command(name="demo", help="Run the demo scenarios.")(demo_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
