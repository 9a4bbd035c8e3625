import click
import json
import yaml
from pathlib import Path
from rich.table import Table
from rich.panel import Panel

from ...core.exceptions import NotFoundError
from ...core.logging import get_audit_logger
from ...reporting.patches import ResourcePatch
from ..common import open_store, format_cores, format_mib, status_style


@click.command()
@click.option('--confidence', type=click.Choice(['high', 'medium', 'low']), help='Only this confidence level')
@click.option('--min-savings', default=0.0, type=float, help='Minimum savings threshold (USD/month)')
@click.option('--limit', default=100, type=int, help='Maximum number of recommendations')
@click.option('--format', '-f', 'output_format', type=click.Choice(['table', 'json', 'yaml']),
              default='table', help='Output format')
@click.pass_context
def recommendations(ctx, confidence, min_savings, limit, output_format):
    """
    List right-sizing recommendations by savings

    Examples:
        rightsizer recommendations --min-savings 10
        rightsizer recommendations --confidence high -f json
    """
    console = ctx.obj['console']
    store = open_store(ctx.obj['settings'])

    items = store.list_recommendations(confidence=confidence, min_savings=min_savings, limit=limit)
    total_savings = sum(r.monthly_savings for r in items)

    if output_format == 'json':
        click.echo(json.dumps({
            'recommendations': [r.to_dict() for r in items],
            'total_savings': total_savings,
            'total_count': len(items),
        }, indent=2))
        return
    if output_format == 'yaml':
        click.echo(yaml.safe_dump([r.to_dict() for r in items], default_flow_style=False, sort_keys=False))
        return

    if not items:
        console.print("[yellow]No recommendations yet. Run 'rightsizer collect' first.[/yellow]")
        return

    table = Table(title="Recommendations", show_header=True, header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Namespace", style="cyan")
    table.add_column("Pod")
    table.add_column("Container")
    table.add_column("CPU", justify="right")
    table.add_column("Memory", justify="right")
    table.add_column("Savings/mo", justify="right", style="green")
    table.add_column("Confidence")
    table.add_column("Status")

    for rec in items:
        style = status_style(rec.status)
        table.add_row(
            str(rec.id),
            rec.namespace,
            rec.pod_name,
            rec.container_name,
            f"{format_cores(rec.current_cpu)} → {format_cores(rec.recommended_cpu)}",
            f"{format_mib(rec.current_memory)} → {format_mib(rec.recommended_memory)}",
            f"${rec.monthly_savings:,.2f}",
            rec.confidence,
            f"[{style}]{rec.status}[/{style}]",
        )

    console.print(table)
    console.print(f"\nTotal: [bold]{len(items)}[/bold] recommendations, "
                  f"[bold yellow]${total_savings:,.2f}/month[/bold yellow]")


@click.command()
@click.option('--format', '-f', 'output_format', type=click.Choice(['panel', 'json']), default='panel')
@click.pass_context
def stats(ctx, output_format):
    """Show cluster-wide provisioning statistics"""
    console = ctx.obj['console']
    statistics = open_store(ctx.obj['settings']).get_statistics()

    if output_format == 'json':
        click.echo(json.dumps(statistics.to_dict(), indent=2))
        return

    last_analysis = statistics.last_analysis.strftime('%Y-%m-%d %H:%M') if statistics.last_analysis else 'never'
    last_collection = statistics.last_collection.strftime('%Y-%m-%d %H:%M') if statistics.last_collection else 'never'

    summary_text = f"""[bold]Pods analyzed:[/bold] {statistics.total_pods}
  Over-provisioned: [yellow]{statistics.over_provisioned}[/yellow]
  Under-provisioned: [red]{statistics.under_provisioned}[/red]
  Optimal: [green]{statistics.optimal}[/green]

Monthly Savings: [bold yellow]${statistics.total_monthly_savings:,.2f}[/bold yellow]
Annual Savings: [bold yellow]${statistics.total_monthly_savings * 12:,.2f}[/bold yellow]
Wasted CPU: {statistics.total_cpu_waste_cores:.2f} cores
Wasted Memory: {statistics.total_memory_waste_gb:.2f} GiB

Last analysis: {last_analysis}
Last collection: {last_collection} UTC"""

    console.print(Panel(summary_text, title="Cluster Statistics", border_style="green"))


@click.command()
@click.argument('recommendation_id', type=int)
@click.option('--output', '-o', type=click.Path(path_type=Path),
              help='Write the patch to this file or directory')
@click.pass_context
def patch(ctx, recommendation_id, output):
    """
    Render the resource patch for a recommendation as YAML

    Examples:
        rightsizer patch 42
        rightsizer patch 42 -o patches/
    """
    console = ctx.obj['console']
    store = open_store(ctx.obj['settings'])

    try:
        resource_patch = ResourcePatch.from_recommendation(store.get_recommendation(recommendation_id))
    except NotFoundError as e:
        raise click.ClickException(str(e))

    if not output:
        click.echo(resource_patch.to_yaml(), nl=False)
        return

    if output.is_dir():
        output = output / resource_patch.filename
    output.write_text(resource_patch.to_yaml())
    console.print(f"✓ Patch written to [green]{output}[/green]")


@click.command()
@click.argument('recommendation_id', type=int)
@click.option('--undo', is_flag=True, help='Mark the recommendation as not applied')
@click.pass_context
def apply(ctx, recommendation_id, undo):
    """Mark a recommendation as applied (or not, with --undo)"""
    console = ctx.obj['console']
    store = open_store(ctx.obj['settings'])
    applied = not undo

    try:
        store.mark_applied(recommendation_id, applied)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    get_audit_logger().log_event(
        "recommendation", "apply" if applied else "unapply",
        resource=f"recommendation:{recommendation_id}", details={"source": "cli"},
    )
    state = "applied" if applied else "not applied"
    console.print(f"✓ Recommendation [bold]{recommendation_id}[/bold] marked as {state}")
