"""Real-time lifecycle events"""

import queue
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from ..core.base import Recommendation, utcnow
from ..core.monitoring import EVENTS_DROPPED, MetricsCollector

logger = logging.getLogger(__name__)

NEW_RECOMMENDATION = "new_recommendation"
OPTIMIZATION_EXECUTED = "optimization_executed"


@dataclass
class Event:
    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    def to_message(self) -> Dict[str, Any]:
        """Wire form: ``{"type": ..., "data": ...}``"""
        return {"type": self.type, "data": self.data}

    @classmethod
    def new_recommendation(cls, recommendation: Recommendation) -> "Event":
        return cls(NEW_RECOMMENDATION, recommendation.to_payload())

    @classmethod
    def optimization_executed(cls, recommendation: Recommendation) -> "Event":
        data: Dict[str, Any] = {
            "recommendationId": recommendation.id,
            "status": recommendation.status.value,
        }
        if recommendation.last_error:
            data["error"] = recommendation.last_error
        return cls(OPTIMIZATION_EXECUTED, data)


class Subscription:
    """One subscriber's bounded inbox"""

    def __init__(self, publisher: "EventPublisher", maxsize: int):
        self.id = str(uuid.uuid4())
        self._publisher = publisher
        self._queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None when nothing arrives within ``timeout``"""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Event]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._publisher.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class EventPublisher:
    """Best-effort fan-out to the subscribers connected right now.

    There is no replay buffer. A subscriber whose inbox is full loses the
    event; a client that connects late reconciles with a full re-fetch.
    """

    def __init__(self, queue_size: int = 100, metrics: Optional[MetricsCollector] = None):
        self.queue_size = queue_size
        self.metrics = metrics
        self._subscribers: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.queue_size)
        with self._lock:
            self._subscribers[subscription.id] = subscription
        logger.debug(f"Subscriber {subscription.id} connected")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(subscription.id, None)
        logger.debug(f"Subscriber {subscription.id} disconnected")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Event) -> int:
        """Deliver to every current subscriber; returns how many accepted it"""
        with self._lock:
            subscribers = list(self._subscribers.values())

        delivered = 0
        for subscription in subscribers:
            if subscription.offer(event):
                delivered += 1
            else:
                logger.warning(f"Subscriber {subscription.id} is full, dropped {event.type} event")
                if self.metrics:
                    self.metrics.increment_counter(EVENTS_DROPPED, tags={'type': event.type})
        return delivered

    def publish_new_recommendation(self, recommendation: Recommendation) -> int:
        return self.publish(Event.new_recommendation(recommendation))

    def publish_execution_result(self, recommendation: Recommendation) -> int:
        return self.publish(Event.optimization_executed(recommendation))
