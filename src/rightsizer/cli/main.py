import click
from rich.console import Console
from rich.logging import RichHandler
from pathlib import Path

from .. import __version__
from ..core.config import get_settings, reload_settings
from ..core.exceptions import ConfigurationError
from ..core.logging import setup_logging
from .commands import collect, report, server, database

console = Console()
log_console = Console(stderr=True)


@click.group()
@click.version_option(version=__version__, prog_name='rightsizer')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--config', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Path to configuration file (YAML or JSON)')
@click.pass_context
def cli(ctx, debug, config):
    """
    kube-rightsizer - Kubernetes resource right-sizing

    Collects container usage, compares it with declared requests and
    recommends requests sized to the observed p95 plus headroom.
    """
    ctx.ensure_object(dict)

    try:
        settings = reload_settings(config) if config else get_settings()
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    setup_logging(
        level="DEBUG" if debug else settings.logging.level,
        log_file=settings.logging.file,
        structured=settings.logging.structured,
        console=settings.logging.console,
        console_handler=RichHandler(console=log_console, rich_tracebacks=True, show_path=debug),
        max_bytes=settings.logging.max_bytes,
        backup_count=settings.logging.backup_count,
        audit_file=settings.logging.audit_file,
        fmt=settings.logging.format,
    )

    ctx.obj['settings'] = settings
    ctx.obj['console'] = console


# Register commands
cli.add_command(collect.collect)
cli.add_command(collect.analyze)
cli.add_command(report.recommendations)
cli.add_command(report.stats)
cli.add_command(report.patch)
cli.add_command(report.apply)
cli.add_command(server.serve)
cli.add_command(database.init_db)
cli.add_command(database.seed)


@cli.command()
@click.pass_context
def config(ctx):
    """Show the effective configuration"""
    settings = ctx.obj['settings']
    console.print(f"[bold blue]kube-rightsizer[/bold blue] version [green]{__version__}[/green]")
    for key, value in settings.summary().items():
        console.print(f"  {key}: [cyan]{value}[/cyan]")


if __name__ == '__main__':
    cli()
