"""
Services package - Backend services for BrewFi.

Contains:
- ChainClient: async JSON-RPC access
- ContractReader: product, balance and allowance reads
- PaymentSessionManager: QR payment session lifecycle
- SessionEventBus: push channel for session changes
- SessionWatcher: push + poll observation of one session
- PaymentWebhookNotifier: settlement webhook client
- PurchaseFlow: approve-then-purchase for a custodial account
"""

from .chain import ChainClient
from .contracts import ContractReader
from .realtime import SessionEventBus, Subscription
from .sessions import PaymentSessionManager
from .watcher import SessionWatcher, WatcherPhase, WatcherState, reduce_event
from .webhook import PaymentWebhookNotifier
from .settlement import handle_payment_webhook
from .purchase import PurchaseFlow, PurchaseResult

__all__ = [
    "ChainClient",
    "ContractReader",
    "SessionEventBus",
    "Subscription",
    "PaymentSessionManager",
    "SessionWatcher",
    "WatcherPhase",
    "WatcherState",
    "reduce_event",
    "PaymentWebhookNotifier",
    "handle_payment_webhook",
    "PurchaseFlow",
    "PurchaseResult",
]
