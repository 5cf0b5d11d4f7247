"""Rich terminal renderer for the Tierforge execution monitor.

Color scheme
------------
- green     : succeeded
- red       : failed
- yellow    : running stages, awaiting approval
- magenta   : rolling back
- dim       : superseded, cancelled, queued
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tierforge.models.pipeline import ExecutionStatus, PipelineExecution, PipelineStage
from tierforge.monitor.projection import ExecutionSnapshot

_STAGE_STYLES: dict[PipelineStage, str] = {
    PipelineStage.SUCCEEDED: "bold green",
    PipelineStage.FAILED: "bold red",
    PipelineStage.AWAITING_APPROVAL: "bold yellow",
    PipelineStage.ROLLING_BACK: "bold magenta",
    PipelineStage.SUPERSEDED: "dim",
    PipelineStage.CANCELLED: "dim",
    PipelineStage.PENDING: "dim",
}

_STATUS_LABELS: dict[ExecutionStatus, str] = {
    ExecutionStatus.QUEUED: "[dim]QUEUED[/dim]",
    ExecutionStatus.RUNNING: "[yellow]RUNNING[/yellow]",
    ExecutionStatus.SUCCEEDED: "[green]SUCCEEDED[/green]",
    ExecutionStatus.FAILED: "[bold red]FAILED[/bold red]",
    ExecutionStatus.SUPERSEDED: "[dim]SUPERSEDED[/dim]",
    ExecutionStatus.CANCELLED: "[dim]CANCELLED[/dim]",
}


class MonitorRenderer:
    """Renders execution snapshots as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_snapshot(self, snapshot: ExecutionSnapshot) -> Panel:
        """Render one execution as a Panel holding its stage history table."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Stage", min_width=18)
        table.add_column("Entered (UTC)", min_width=19)
        table.add_column("Actor", min_width=10)
        table.add_column("Detail", min_width=20)

        for i, transition in enumerate(snapshot.history):
            style = _STAGE_STYLES.get(transition.stage, "yellow")
            table.add_row(
                str(i),
                f"[{style}]{transition.stage.value}[/{style}]",
                transition.entered_at.strftime("%Y-%m-%d %H:%M:%S"),
                transition.actor or "[dim]-[/dim]",
                transition.detail or "[dim]-[/dim]",
            )

        summary_parts: list[str] = [
            f"[bold]Revision:[/bold] {snapshot.revision}",
            f"[bold]Status:[/bold] {_STATUS_LABELS[snapshot.status]}",
        ]
        if snapshot.failure_reason is not None:
            summary_parts.append(
                f"[bold red]Reason:[/bold red] {snapshot.failure_reason.value}"
            )
        if snapshot.tags:
            summary_parts.append(f"[bold]Tags:[/bold] {', '.join(snapshot.tags)}")
        if snapshot.approval is not None:
            summary_parts.append(
                f"[bold]Approval:[/bold] {snapshot.approval.decision.value} "
                f"(deadline {snapshot.approval.deadline.strftime('%Y-%m-%d %H:%M')})"
            )
        chain = (
            "[green]valid[/green]"
            if snapshot.chain_valid
            else "[bold red]BROKEN[/bold red]"
        )
        summary_parts.append(f"[bold]Chain:[/bold] {chain}")

        content = Group(table, Text(""), Text.from_markup("  |  ".join(summary_parts)))
        return Panel(
            content,
            title=f"[bold]{snapshot.pipeline_name}[/bold]  {snapshot.execution_id}",
            subtitle=(
                f"Last updated: "
                f"{snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}"
            ),
            border_style="red" if snapshot.status == ExecutionStatus.FAILED else "blue",
            padding=(1, 2),
        )

    def render_executions(
        self, title: str, executions: list[PipelineExecution]
    ) -> Table:
        """Render a one-row-per-execution table, newest last."""
        table = Table(title=title, header_style="bold cyan")
        table.add_column("Execution", style="cyan")
        table.add_column("Revision")
        table.add_column("Stage")
        table.add_column("Status", justify="center")
        table.add_column("Reason")

        for execution in executions:
            style = _STAGE_STYLES.get(execution.current_stage, "yellow")
            table.add_row(
                execution.execution_id,
                execution.source_revision,
                f"[{style}]{execution.current_stage.value}[/{style}]",
                _STATUS_LABELS[execution.status],
                execution.failure_reason.value if execution.failure_reason else "",
            )
        return table

    def print_snapshot(self, snapshot: ExecutionSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_chain_verification(self, execution_id: str, valid: bool) -> None:
        if valid:
            self.console.print(
                f"[green]Stage history of {execution_id} is intact.[/green]"
            )
        else:
            self.console.print(
                f"[bold red]Stage history of {execution_id} is BROKEN![/bold red]"
            )
