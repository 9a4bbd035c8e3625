import click


@click.command()
@click.option('--host', help='Bind address (default from config)')
@click.option('--port', type=int, help='Port (default from config)')
@click.pass_context
def serve(ctx, host, port):
    """
    Serve the reporting API

    Requires the 'api' extra: pip install kube-rightsizer[api]
    """
    import uvicorn
    from ...api.app import create_app

    console = ctx.obj['console']
    settings = ctx.obj['settings']
    host = host or settings.api.host
    port = port or settings.api.port

    console.print(f"Starting API on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_level=settings.logging.level.lower(),
    )
