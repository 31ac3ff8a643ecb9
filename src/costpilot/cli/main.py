import click
import logging
from rich.console import Console
from rich.logging import RichHandler
from pathlib import Path

from .. import __version__
from ..core.config import load_settings
from ..core.exceptions import CostPilotError
from ..core.logging import setup_logging_from_settings
from .commands import recommendations, report, scan

console = Console()
log_console = Console(stderr=True)


@click.group()
@click.version_option(version=__version__, prog_name='costpilot')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--config', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Path to a YAML or JSON configuration file')
@click.option('--inventory', '-i', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='YAML/JSON resource inventory to analyze')
@click.option('--adapter', type=click.Choice(['simulated', 'aws', 'http']), default='simulated',
              show_default=True, help='How approved actions are applied')
@click.option('--endpoint', help='Action service URL for the http adapter')
@click.option('--state', type=click.Path(dir_okay=False, path_type=Path),
              help='Keep recommendations in this JSON file between runs')
@click.pass_context
def cli(ctx, debug, config, inventory, adapter, endpoint, state):
    """
    costpilot - autonomous cost-optimization recommendations

    Detects idle and oversized cloud resources, fixes the low-risk ones on its
    own and queues the rest for human approval.
    """
    ctx.ensure_object(dict)

    try:
        settings = load_settings(config)
    except CostPilotError as e:
        raise click.ClickException(str(e))

    if state:
        settings.storage.backend = "json"
        settings.storage.path = state

    if settings.logging.file or settings.logging.structured:
        setup_logging_from_settings(settings.logging)
    else:
        logging.basicConfig(
            level=settings.logging.level.upper(),
            format="%(message)s",
            handlers=[RichHandler(console=log_console, rich_tracebacks=True)],
            force=True,
        )
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.obj['settings'] = settings
    ctx.obj['inventory'] = inventory
    ctx.obj['adapter'] = adapter
    ctx.obj['endpoint'] = endpoint
    ctx.obj['console'] = console


# Register commands
cli.add_command(scan.scan)
cli.add_command(scan.run)
cli.add_command(recommendations.recommendations)
cli.add_command(recommendations.approve)
cli.add_command(recommendations.reject)
cli.add_command(report.summary)
cli.add_command(report.export)


if __name__ == '__main__':
    cli()
