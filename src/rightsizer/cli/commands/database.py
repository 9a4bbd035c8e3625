import click
import random
from rich.panel import Panel

from ...core.orchestrator import CollectionEngine
from ...core.logging import SecurityFilter
from ...storage.seed import seed_history
from ..common import open_store
from .collect import display_cycle


@click.command(name='init-db')
@click.pass_context
def init_db(ctx):
    """Create the history store tables"""
    console = ctx.obj['console']
    settings = ctx.obj['settings']

    store = open_store(settings)
    url = SecurityFilter.redact(settings.database.url.get_secret_value())
    console.print(f"✓ Schema ready on [green]{url}[/green] ({store.db.dialect})")


@click.command()
@click.option('--pods', default=50, type=click.IntRange(min=1), help='Number of pods to generate')
@click.option('--samples', default=100, type=click.IntRange(min=1), help='Hourly samples per container')
@click.option('--random-seed', type=int, help='Seed for reproducible data')
@click.option('--no-analyze', is_flag=True, help='Skip the analysis pass')
@click.pass_context
def seed(ctx, pods, samples, random_seed, no_analyze):
    """
    Fill the history store with synthetic demo data

    Examples:
        rightsizer seed --pods 20
    """
    console = ctx.obj['console']
    settings = ctx.obj['settings']
    store = open_store(settings)

    with console.status("[bold green]Generating usage history..."):
        containers = seed_history(store, pods=pods, samples=samples, rng=random.Random(random_seed))
    console.print(f"✓ Seeded {containers} containers with {samples} samples each")

    if no_analyze:
        return

    with console.status("[bold green]Analyzing containers..."):
        result = CollectionEngine(settings, store).analyze_only()
    display_cycle(console, result)
    console.print(Panel("Run [bold]rightsizer recommendations[/bold] to see the results",
                        border_style="green"))
