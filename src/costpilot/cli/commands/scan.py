import click
import json
import time
from pathlib import Path

from .recommendations import recommendation_table
from ..context import build_service


@click.command()
@click.option('--dry-run', is_flag=True, help='Simulate actions instead of applying them')
@click.option('--format', '-f', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path),
              help='Also write the tick report to this JSON file')
@click.pass_context
def scan(ctx, dry_run, format, output):
    """
    Run one detection tick over the inventory

    Autonomous fixes run straight away; everything else is left pending
    for approval.

    Examples:
        costpilot -i samples/resources.yaml scan --dry-run
        costpilot -i inventory.yaml --state state.json scan -o tick.json
    """
    console = ctx.obj['console']
    settings = ctx.obj['settings']
    if dry_run:
        settings.execution.dry_run = True

    service = build_service(ctx, require_inventory=True)
    try:
        with console.status("[bold green]Scanning resources..."):
            report = service.run_tick()
            service.scheduler.wait_idle(timeout=settings.scheduler.shutdown_timeout_seconds)
    finally:
        service.stop()

    created = [service.get_recommendation(rec_id) for rec_id in report.created_ids]

    if output:
        with open(output, 'w') as f:
            json.dump(report.to_dict(), f, indent=2)

    if format == 'json':
        click.echo(json.dumps({
            'report': report.to_dict(),
            'recommendations': [rec.to_payload() for rec in created],
        }, indent=2))
        return

    console.print(f"✓ Scanned [bold]{report.scanned}[/bold] resources, "
                  f"[bold]{report.wasteful}[/bold] wasteful")
    console.print(f"✓ Created [bold]{report.created}[/bold] recommendations "
                  f"({report.duplicates} already open, {report.held} held, "
                  f"{report.build_failures} skipped)")
    if report.errors:
        console.print(f"[red]✗ {report.errors} resources could not be processed[/red]")
    if created:
        console.print(recommendation_table(created, title="New recommendations"))
        total = sum(rec.projected_monthly_savings for rec in created)
        console.print(f"\nSavings identified: [bold]${total:,.2f}/month[/bold]")


@click.command()
@click.option('--api/--no-api', default=None, help='Serve the HTTP API (defaults to api.enabled)')
@click.option('--duration', type=float, help='Stop after this many seconds')
@click.pass_context
def run(ctx, api, duration):
    """
    Run the control loop until interrupted

    Examples:
        costpilot -i inventory.yaml --state state.json run
        costpilot --config costpilot.yaml -i inventory.yaml run --api
    """
    console = ctx.obj['console']
    settings = ctx.obj['settings']
    if api is None:
        api = settings.api.enabled
    else:
        settings.api.enabled = api

    service = build_service(ctx, require_inventory=True)
    interval = settings.scheduler.tick_interval_seconds
    console.print(f"[bold]costpilot[/bold] ticking every [cyan]{interval}s[/cyan]")

    if api:
        from ...api.app import run as serve
        console.print(f"API on [cyan]http://{settings.api.host}:{settings.api.port}[/cyan]")
        serve(service, settings)
        return

    service.start()
    started = time.monotonic()
    try:
        while duration is None or time.monotonic() - started < duration:
            time.sleep(min(1.0, duration) if duration else 1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted, shutting down...[/yellow]")
    finally:
        failed = service.stop(timeout=settings.scheduler.shutdown_timeout_seconds)

    if failed:
        console.print(f"[red]{len(failed)} execution(s) were cut short and marked failed[/red]")
    summary = service.get_summary()
    console.print(f"Realized savings: [bold]${summary.realized_monthly_savings:,.2f}/month[/bold]")
