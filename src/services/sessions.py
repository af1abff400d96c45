"""
Payment Session Manager - Lifecycle of seller QR payment sessions.

Sessions start ``pending`` with a fixed 15 minute TTL and move exactly once
to ``paid`` or ``expired``. Every status change is a compare-and-set inside
the store lock, and the expiry decision uses this manager's clock, never a
client countdown.

Every successful write is published on the SessionEventBus.
"""

import logging
from typing import Callable, Optional

from errors import (
    SessionExpiredError,
    SessionNotPendingError,
    SessionStillActiveError,
)
from models import (
    PaymentSession,
    Product,
    SessionStore,
    generate_session_id,
    STATUS_PENDING,
    STATUS_PAID,
    STATUS_EXPIRED,
)
from config import SESSION_TTL_MS
from networks import PAYMENT_METHODS, format_address
from utils import now_ms
from .chain import to_checksum
from .realtime import SessionEventBus

logger = logging.getLogger(__name__)


def _validate_amount(amount) -> str:
    """Amounts are positive integer strings in the token's 6-decimal scale."""
    text = str(amount).strip() if amount is not None else ""
    if not text.isdigit() or int(text) <= 0:
        raise ValueError(f"Amount must be a positive integer string, got {amount!r}")
    return text


class PaymentSessionManager:
    """
    Creates sessions and performs their pending -> paid / expired transitions.

    Usage:
        manager = PaymentSessionManager(SessionStore(), events=bus)
        session = await manager.create_session(seller, product=product)
        qr_text = session.to_qr_payload().to_json()
    """

    def __init__(self, store: SessionStore, events: Optional[SessionEventBus] = None,
                 ttl_ms: int = SESSION_TTL_MS, clock: Callable[[], int] = now_ms):
        """
        Args:
            store: Session persistence
            events: Bus to publish changes on (a private one if omitted)
            ttl_ms: Session lifetime in milliseconds
            clock: Returns the current time in epoch milliseconds
        """
        self.store = store
        self.events = events or SessionEventBus()
        self.ttl_ms = ttl_ms
        self.clock = clock

    def _publish(self, session: PaymentSession) -> PaymentSession:
        self.events.publish(session)
        return session

    # ============================================
    # Creation / Reads
    # ============================================

    async def create_session(self, seller_wallet_address: str,
                             product: Optional[Product] = None,
                             amount: Optional[str] = None) -> PaymentSession:
        """
        Create a pending session expiring ``ttl_ms`` from now.

        The amount defaults to the product price when a product is given.

        Raises:
            ValueError: invalid seller address or amount
        """
        seller = to_checksum(seller_wallet_address)
        if amount is None and product is not None:
            amount = str(product.price)
        amount = _validate_amount(amount)

        created_at = self.clock()
        session = PaymentSession(
            session_id=generate_session_id(created_at),
            seller_wallet_address=seller,
            amount=amount,
            status=STATUS_PENDING,
            created_at=created_at,
            expires_at=created_at + self.ttl_ms,
            product_id=product.product_id if product else None,
            product_name=product.name if product else None,
        )
        await self.store.insert(session)
        logger.info(f"Created payment session {session.session_id} for {amount} (seller {format_address(seller)})")
        return self._publish(session)

    async def get_session(self, session_id: str) -> Optional[PaymentSession]:
        return await self.store.get(session_id)

    async def refresh_status(self, session_id: str) -> Optional[PaymentSession]:
        """
        Current row, expiring it first if its TTL has elapsed.

        Returns None for an unknown session id.
        """
        session = await self.store.get(session_id)
        if session is None:
            return None
        if session.is_pending and session.is_due(self.clock()):
            try:
                return await self.mark_expired(session_id)
            except (SessionNotPendingError, SessionStillActiveError):
                # Another writer got there first
                return await self.store.get(session_id)
        return session

    # ============================================
    # Transitions
    # ============================================

    async def mark_paid(self, session_id: str, tx_hash: str, buyer_address: str,
                        method: str, amount: Optional[str] = None) -> PaymentSession:
        """
        Settle a pending session.

        A session whose TTL has elapsed is moved to ``expired`` instead and
        the payment is rejected.

        Raises:
            SessionNotFoundError: unknown session id
            SessionNotPendingError: already paid or expired
            SessionExpiredError: TTL elapsed before this payment was recorded
            ValueError: unknown payment method or invalid buyer address
        """
        if method not in PAYMENT_METHODS:
            raise ValueError(f"Unsupported payment method: {method}")
        buyer = to_checksum(buyer_address)
        now = self.clock()

        def apply(current: PaymentSession) -> PaymentSession:
            if current.status != STATUS_PENDING:
                raise SessionNotPendingError(session_id, current.status)
            if current.is_due(now):
                return current.with_changes(status=STATUS_EXPIRED)
            if amount is not None and str(amount) != current.amount:
                logger.warning(
                    f"Session {session_id} paid {amount} but requested {current.amount}"
                )
            return current.with_changes(
                status=STATUS_PAID,
                payment_tx_hash=tx_hash,
                buyer_address=buyer,
                payment_method=method,
            )

        updated = await self.store.transition(session_id, apply)
        self._publish(updated)
        if updated.status == STATUS_EXPIRED:
            logger.info(f"Session {session_id} expired before payment {tx_hash}")
            raise SessionExpiredError(session_id)

        logger.info(f"Session {session_id} paid by {format_address(buyer)} via {method} ({tx_hash})")
        return updated

    async def mark_expired(self, session_id: str) -> PaymentSession:
        """
        Expire a pending session whose TTL has elapsed.

        Raises:
            SessionNotFoundError: unknown session id
            SessionNotPendingError: already paid or expired
            SessionStillActiveError: TTL has not elapsed yet
        """
        now = self.clock()

        def apply(current: PaymentSession) -> PaymentSession:
            if current.status != STATUS_PENDING:
                raise SessionNotPendingError(session_id, current.status)
            if not current.is_due(now):
                raise SessionStillActiveError(session_id, current.expires_at)
            return current.with_changes(status=STATUS_EXPIRED)

        updated = await self.store.transition(session_id, apply)
        logger.info(f"Session {session_id} expired")
        return self._publish(updated)

    async def expire_due_sessions(self) -> list[PaymentSession]:
        """Expire every pending session whose TTL has elapsed."""
        now = self.clock()
        expired = []
        for session in await self.store.list_pending():
            if not session.is_due(now):
                continue
            try:
                expired.append(await self.mark_expired(session.session_id))
            except (SessionNotPendingError, SessionStillActiveError) as e:
                logger.debug(f"Skipped expiry of {session.session_id}: {e}")
        if expired:
            logger.info(f"Expired {len(expired)} payment session(s)")
        return expired

    async def mark_notified(self, session_id: str) -> PaymentSession:
        """Record when the seller was told about the payment (paid sessions only)."""
        def apply(current: PaymentSession) -> PaymentSession:
            if current.status != STATUS_PAID:
                raise SessionNotPendingError(session_id, current.status)
            return current.with_changes(notified_at=self.clock())

        return self._publish(await self.store.transition(session_id, apply))
