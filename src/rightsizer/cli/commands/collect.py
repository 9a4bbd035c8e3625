import click
import signal
import threading
from pathlib import Path
from rich.table import Table
from rich.panel import Panel

from ...collectors.kube_source import KubernetesSampleSource
from ...core.exceptions import ConfigurationError
from ...core.orchestrator import CollectionEngine, CycleResult
from ..common import open_store, parse_interval


@click.command()
@click.option('--once', is_flag=True, help='Run a single cycle and exit')
@click.option('--interval', help='Time between cycles, e.g. 30s, 5m, 1h (default from config)')
@click.option('--namespace', '-n', help='Only collect pods from this namespace')
@click.option('--kubeconfig', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Path to kubeconfig file')
@click.option('--context', 'kube_context', help='Kubeconfig context to use')
@click.option('--in-cluster', is_flag=True, help='Use the pod service account')
@click.pass_context
def collect(ctx, once, interval, namespace, kubeconfig, kube_context, in_cluster):
    """
    Collect pod usage from the cluster and refresh recommendations

    Examples:
        rightsizer collect --once
        rightsizer collect --interval 10m --namespace production
    """
    console = ctx.obj['console']
    settings = ctx.obj['settings']

    kube_config = settings.kubernetes.model_copy(update={
        key: value for key, value in {
            'namespace': namespace,
            'kubeconfig': kubeconfig,
            'context': kube_context,
            'in_cluster': in_cluster or None,
        }.items() if value is not None
    })
    period = parse_interval(interval) if interval else None

    try:
        source = KubernetesSampleSource(kube_config)
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    engine = CollectionEngine(settings, open_store(settings), source=source)

    if once:
        with console.status("[bold green]Running collection cycle..."):
            result = engine.run_cycle(namespace=kube_config.namespace)
        display_cycle(console, result)
        return

    stop_event = threading.Event()

    def _stop(signum, frame):
        console.print("\n[yellow]Shutting down collector...[/yellow]")
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    console.print(Panel(
        f"Namespace: [cyan]{kube_config.namespace or 'all'}[/cyan]\n"
        f"Interval: [cyan]{period or f'{settings.analysis.collection_interval_minutes}m'}[/cyan]\n"
        f"Workers: [cyan]{settings.collector.max_workers}[/cyan]",
        title="Collector", border_style="blue",
    ))
    engine.run_forever(period, stop_event=stop_event, on_cycle=lambda r: display_cycle(console, r))


@click.command()
@click.pass_context
def analyze(ctx):
    """
    Analyze stored usage history without contacting the cluster

    Examples:
        rightsizer analyze
    """
    console = ctx.obj['console']
    settings = ctx.obj['settings']

    engine = CollectionEngine(settings, open_store(settings))
    with console.status("[bold green]Analyzing containers..."):
        result = engine.analyze_only()
    display_cycle(console, result)


def display_cycle(console, result: CycleResult):
    """Print the per-phase outcome counts of one cycle"""
    if result.skipped_overlap:
        console.print(f"[yellow]Cycle {result.cycle_id} skipped: previous cycle still running[/yellow]")
        return

    table = Table(title=f"Cycle {result.cycle_id}", show_header=True, header_style="bold magenta")
    table.add_column("Phase", style="cyan")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")

    for phase, counts in (("reconcile", result.reconcile_counts), ("analyze", result.analyze_counts)):
        table.add_row(phase, str(counts['success']), str(counts['skipped']), str(counts['failed']))

    console.print(table)

    for failure in result.failures()[:10]:
        console.print(f"  [red]✗[/red] {failure.entity}: {failure.error}")

    note = " [yellow](cancelled)[/yellow]" if result.cancelled else ""
    console.print(f"✓ Completed in {result.duration_seconds:.1f}s{note}")
