from .publisher import (
    Event, EventPublisher, Subscription, NEW_RECOMMENDATION, OPTIMIZATION_EXECUTED
)

__all__ = [
    'Event', 'EventPublisher', 'Subscription', 'NEW_RECOMMENDATION', 'OPTIMIZATION_EXECUTED'
]
