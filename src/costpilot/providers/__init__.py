from .static import StaticTelemetryProvider
from .simulated import SimulatedActionAdapter
from .http import HttpActionAdapter

__all__ = ['StaticTelemetryProvider', 'SimulatedActionAdapter', 'HttpActionAdapter']
