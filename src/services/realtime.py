"""
Session Event Bus - In-process push channel for payment session changes.

The session manager publishes every row it writes; watchers subscribe per
session id. Delivery is synchronous on the publisher's task and carries no
ordering or exactly-once guarantee across subscribers, so consumers treat
pushes as hints and reconcile with polling.
"""

import logging
from typing import Callable

from models import PaymentSession

logger = logging.getLogger(__name__)


SessionCallback = Callable[[PaymentSession], None]


class Subscription:
    """Handle returned by ``SessionEventBus.subscribe``."""

    def __init__(self, bus: "SessionEventBus", session_id: str, callback: SessionCallback):
        self._bus = bus
        self.session_id = session_id
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)


class SessionEventBus:
    """Fan-out of session row changes to per-session subscribers."""

    def __init__(self):
        self._subscribers: dict[str, list[Subscription]] = {}

    def subscribe(self, session_id: str, callback: SessionCallback) -> Subscription:
        subscription = Subscription(self, session_id, callback)
        self._subscribers.setdefault(session_id, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.session_id)
        if not subs:
            return
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            del self._subscribers[subscription.session_id]

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def publish(self, session: PaymentSession) -> int:
        """Deliver a session row to its subscribers. Returns the delivery count."""
        delivered = 0
        for subscription in list(self._subscribers.get(session.session_id, ())):
            if not subscription.active:
                continue
            try:
                subscription.callback(session)
                delivered += 1
            except Exception as e:
                logger.error(f"Subscriber for {session.session_id} failed: {e}")
        return delivered
