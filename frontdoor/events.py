"""
Topic-scoped event bus for push-style call updates.

Publishers address a household or a building topic; subscribers receive every
event published to the topics they hold. The in-memory implementation only
reaches subscribers inside the current process, so a deployment running more
than one worker has to provide an EventBus backed by a shared broker.

The HTTP app only publishes. Consumers (a push gateway or broker adapter
bridging household panels and front desk consoles) hold subscriptions in
their own process; panels without one fall back to polling call-status.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


def household_topic(household_id: str) -> str:
    return f"household:{household_id}"


def building_topic(building_id: str) -> str:
    return f"building:{building_id}"


class Subscription:
    """Handle returned by subscribe(); events arrive on an unbounded queue."""

    def __init__(self, topic: str):
        self.topic = topic
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue()

    def deliver(self, event: Dict[str, Any]) -> None:
        self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next event, or None when nothing arrives within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Dict[str, Any]]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class EventBus(Protocol):
    def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """Deliver event to the topic's subscribers; returns how many received it."""
        ...

    def subscribe(self, topic: str) -> Subscription:
        ...

    def unsubscribe(self, subscription: Subscription) -> None:
        ...


class InMemoryEventBus:
    """Process-local EventBus."""

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def publish(self, topic: str, event: Dict[str, Any]) -> int:
        with self._lock:
            subscribers = list(self._subscriptions.get(topic, ()))
        for subscription in subscribers:
            subscription.deliver(event)
        logger.debug(f"Published {event.get('type')} to {topic} ({len(subscribers)} subscribers)")
        return len(subscribers)

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(topic)
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.topic, None)
