"""Builds the service a command runs against from the click context"""

import click

from ..core.exceptions import CostPilotError
from ..core.orchestrator.service import AutopilotService
from ..providers.http import HttpActionAdapter
from ..providers.simulated import SimulatedActionAdapter
from ..providers.static import StaticTelemetryProvider


def build_adapter(name: str, endpoint=None, timeout: float = 30.0):
    if name == 'aws':
        from ..providers.aws import AwsActionAdapter
        return AwsActionAdapter()
    if name == 'http':
        if not endpoint:
            raise click.UsageError("--endpoint is required with --adapter http")
        return HttpActionAdapter(endpoint, timeout=timeout)
    return SimulatedActionAdapter()


def build_service(ctx, require_inventory: bool = False) -> AutopilotService:
    obj = ctx.obj
    settings = obj['settings']
    inventory = obj.get('inventory')

    if inventory is None and require_inventory:
        raise click.UsageError("This command needs --inventory")

    try:
        provider = StaticTelemetryProvider.from_file(inventory) if inventory else StaticTelemetryProvider()
        adapter = build_adapter(obj.get('adapter', 'simulated'), obj.get('endpoint'),
                                timeout=settings.execution.action_timeout_seconds)
        return AutopilotService(settings, provider, adapter=adapter)
    except CostPilotError as e:
        raise click.ClickException(str(e))
