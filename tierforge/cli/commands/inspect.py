"""``tierforge match`` and ``tierforge resolve`` — pure rule-table lookups.

Neither command touches the state database.
"""

from __future__ import annotations

import typer
from rich.panel import Panel
from rich.table import Table

from tierforge.cli.commands._engine import cli_errors, console, load_settings
from tierforge.core.branch_matcher import match_branch
from tierforge.core.resolver import resolve_pipeline_spec
from tierforge.models.environments import TIER_DEFAULTS
from tierforge.models.services import Runtime, Service, ServiceType


def match_cmd(
    branch: str = typer.Argument(..., help="Branch name, e.g. release/1.2.0."),
) -> None:
    """Show which pipeline tier a branch feeds."""
    result = match_branch(branch)
    if result is None:
        console.print(f"[dim]{branch}: no match, event would be ignored[/dim]")
        raise typer.Exit(code=0)

    environments = ", ".join(e.value for e in result.environments)
    console.print(
        f"[bold green]{result.branch}[/bold green] -> "
        f"[bold]{result.pipeline_type.value}[/bold] ({environments}) "
        f"[dim]via {result.rule.pattern}[/dim]"
    )


def resolve_cmd(
    service_name: str = typer.Argument(..., help="Service name."),
    environment: str = typer.Argument(..., help="develop, test, qa or prod."),
    runtime: Runtime = typer.Option(Runtime.COMPILED_WEB, "--runtime"),
    service_type: ServiceType = typer.Option(ServiceType.PUBLIC, "--type"),
) -> None:
    """Resolve the pipeline definition of a service in an environment."""
    settings = load_settings()
    with cli_errors():
        service = Service(name=service_name, runtime=runtime, service_type=service_type)
        spec = resolve_pipeline_spec(service, environment, settings)

    defaults = TIER_DEFAULTS[spec.environment]
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column(style="bold")
    table.add_column()
    rows = [
        ("Pipeline", spec.pipeline_name),
        ("Type", spec.pipeline_type.value),
        ("Trigger", spec.trigger_mode.value),
        ("Approval", "required" if spec.requires_approval else "no"),
        ("Approval timeout", str(spec.approval_timeout)),
        ("Deploy min/max", f"{spec.deploy_min_healthy_percent}% / {spec.deploy_max_percent}%"),
        ("Deploy timeout", str(spec.deploy_timeout)),
        ("Scan gate", "blocking" if spec.scan_gate_blocking else "advisory"),
        ("Desired count", str(spec.desired_count)),
        ("Task cpu/memory", f"{defaults.task_cpu} / {defaults.task_memory}"),
        ("Log retention", f"{defaults.log_retention_days} days"),
        ("Exposure", service.exposure),
    ]
    for label, value in rows:
        table.add_row(label, value)
    console.print(Panel(table, title=f"[bold]{spec.spec_ref}[/bold]", border_style="cyan"))
