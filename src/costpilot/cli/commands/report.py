import click
from rich.table import Table
import json
from pathlib import Path
from datetime import datetime

from ...core.exceptions import CostPilotError
from ...reporting.export import EXPORT_FORMATS, export_recommendations
from ..context import build_service


@click.command()
@click.option('--format', '-f', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def summary(ctx, format):
    """
    Show savings KPIs

    Monthly spend and waste percentage come from --inventory when given.

    Examples:
        costpilot --state state.json -i inventory.yaml summary
    """
    console = ctx.obj['console']
    service = build_service(ctx)
    resources = service.provider.list_resources()
    kpis = service.get_summary(resources)

    if format == 'json':
        click.echo(json.dumps(kpis.to_dict(), indent=2))
        return

    table = Table(title="Optimization Summary", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Recommendations", str(kpis.total_recommendations))
    table.add_row("Pending", str(kpis.pending_count))
    table.add_row("Awaiting approval", str(kpis.awaiting_approval_count))
    table.add_row("Identified savings", f"${kpis.identified_monthly_savings:,.2f}/month")
    table.add_row("Realized savings", f"${kpis.realized_monthly_savings:,.2f}/month")
    table.add_row("Realized annual", f"${kpis.realized_annual_savings:,.2f}")
    table.add_row("Monthly spend", f"${kpis.monthly_spend:,.2f}")
    table.add_row("Waste eliminated", f"{kpis.waste_percentage}%")
    table.add_row("Resources analyzed", str(kpis.resources_analyzed))
    mix = kpis.optimization_mix
    table.add_row("Autonomous / HITL",
                  f"{mix.get('autonomous_percentage', 0)}% / {mix.get('hitl_percentage', 0)}%")
    if kpis.last_action_at:
        table.add_row("Last action", kpis.last_action_at.strftime('%Y-%m-%d %H:%M:%S UTC'))
    console.print(table)


@click.command()
@click.option('--format', '-f', type=click.Choice(list(EXPORT_FORMATS)), default='csv', help='Export format')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path), help='Output file path')
@click.option('--status', '-s', 'status_filter', help='Only export recommendations in this status')
@click.pass_context
def export(ctx, format, output, status_filter):
    """
    Export recommendations as CSV or JSON

    Examples:
        costpilot --state state.json export -f csv -o recommendations.csv
    """
    console = ctx.obj['console']
    service = build_service(ctx)

    if not output:
        output = Path(f"costpilot_recommendations_{datetime.now().strftime('%Y%m%d_%H%M%S')}.{format}")

    try:
        recs = service.list_recommendations(status=status_filter)
        export_recommendations(recs, output, format=format)
    except CostPilotError as e:
        raise click.ClickException(str(e))

    console.print(f"✓ Exported {len(recs)} recommendations to [green]{output}[/green]")
