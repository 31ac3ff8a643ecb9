import click
from rich.table import Table
import json

from ...core.exceptions import CostPilotError
from ...core.security import Role, User
from ..context import build_service

DECISION_TITLES = {'approve': 'Approved', 'reject': 'Rejected'}

STATUS_STYLES = {
    'pending': 'yellow',
    'approved': 'cyan',
    'executing': 'blue',
    'executed': 'green',
    'rejected': 'dim',
    'failed': 'red',
}


def recommendation_table(recommendations, title="Recommendations") -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Resource")
    table.add_column("Type")
    table.add_column("Finding")
    table.add_column("Risk")
    table.add_column("Mode")
    table.add_column("Status")
    table.add_column("Monthly", justify="right")

    for rec in recommendations:
        status = rec.status.value
        table.add_row(
            rec.id[:8],
            rec.resource_id,
            rec.resource_type,
            rec.waste_kind.value,
            rec.risk_level.value,
            rec.execution_mode.value,
            f"[{STATUS_STYLES.get(status, 'white')}]{status}[/]",
            f"${rec.projected_monthly_savings:,.2f}",
        )
    return table


def resolve_id(service, recommendation_id: str) -> str:
    """Accept a full id or the unique prefix shown in tables"""
    matches = [rec.id for rec in service.list_recommendations() if rec.id.startswith(recommendation_id)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise click.ClickException(f"Id prefix '{recommendation_id}' is ambiguous")
    return recommendation_id


@click.command()
@click.option('--status', '-s', 'status_filter',
              type=click.Choice(['pending', 'approved', 'rejected', 'executing', 'executed', 'failed']),
              help='Only show recommendations in this status')
@click.option('--type', '-t', 'resource_type', help='Only show this resource type (e.g. EC2)')
@click.option('--format', '-f', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def recommendations(ctx, status_filter, resource_type, format):
    """
    List stored recommendations

    Examples:
        costpilot --state state.json recommendations --status pending
        costpilot --state state.json recommendations -t EBS -f json
    """
    console = ctx.obj['console']
    service = build_service(ctx)
    recs = service.list_recommendations(status=status_filter, resource_type=resource_type)

    if format == 'json':
        click.echo(json.dumps([rec.to_payload() for rec in recs], indent=2))
        return

    if not recs:
        console.print("[yellow]No recommendations match[/yellow]")
        return
    console.print(recommendation_table(recs))


def _decide(ctx, action: str, recommendation_id: str, user: str, role: str):
    console = ctx.obj['console']
    service = build_service(ctx)
    acting_user = User(username=user, role=Role.parse(role))
    recommendation_id = resolve_id(service, recommendation_id)

    try:
        if action == 'approve':
            with console.status(f"[bold green]Approving and executing {recommendation_id}..."):
                rec = service.approve(recommendation_id, acting_user)
        else:
            rec = service.reject(recommendation_id, acting_user)
    except CostPilotError as e:
        raise click.ClickException(str(e))
    finally:
        service.stop()

    console.print(recommendation_table([rec], title=DECISION_TITLES[action]))
    if rec.last_error:
        console.print(f"[red]Last error:[/red] {rec.last_error}")
    return rec


@click.command()
@click.argument('recommendation_id')
@click.option('--user', '-u', required=True, help='Who is approving')
@click.option('--role', '-r', type=click.Choice(['readonly', 'user', 'admin']), default='user',
              help='Role of the approving user')
@click.pass_context
def approve(ctx, recommendation_id, user, role):
    """Approve a pending recommendation and execute it"""
    _decide(ctx, 'approve', recommendation_id, user, role)


@click.command()
@click.argument('recommendation_id')
@click.option('--user', '-u', required=True, help='Who is rejecting')
@click.option('--role', '-r', type=click.Choice(['readonly', 'user', 'admin']), default='user',
              help='Role of the rejecting user')
@click.pass_context
def reject(ctx, recommendation_id, user, role):
    """Reject a pending recommendation"""
    _decide(ctx, 'reject', recommendation_id, user, role)
