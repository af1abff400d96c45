"""
Payment Session model.

A QR payment session created by a seller and settled by a buyer's purchase.

Status lifecycle:
- pending: Created, waiting for payment (15 minute TTL)
- paid: Purchase confirmed and reported before expiry (terminal)
- expired: TTL elapsed without payment (terminal)
"""

import json
import math
import secrets
from dataclasses import dataclass, asdict, replace
from typing import Optional

from errors import InvalidQRFormatError, SessionExpiredError
from utils import ms_to_iso, iso_to_ms


STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_EXPIRED = "expired"

VALID_STATUSES = (STATUS_PENDING, STATUS_PAID, STATUS_EXPIRED)
TERMINAL_STATUSES = (STATUS_PAID, STATUS_EXPIRED)

SESSION_ID_PREFIX = "brewfi"
SESSION_ID_RANDOM_BYTES = 6  # 48 bits of randomness per id


def generate_session_id(timestamp_ms: int) -> str:
    """brewfi_{epoch_ms}_{random hex}; two ids in the same millisecond differ by the suffix."""
    return f"{SESSION_ID_PREFIX}_{timestamp_ms}_{secrets.token_hex(SESSION_ID_RANDOM_BYTES)}"


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


@dataclass(frozen=True)
class PaymentSession:
    """A seller's QR payment request."""
    session_id: str
    seller_wallet_address: str
    amount: str                         # Integer string, 6-decimal scale ("5000000" = 5 USDC)
    status: str
    created_at: int                     # epoch ms
    expires_at: int                     # epoch ms, fixed at creation
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    payment_tx_hash: Optional[str] = None
    buyer_address: Optional[str] = None
    payment_method: Optional[str] = None
    notified_at: Optional[int] = None   # epoch ms

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def is_due(self, now: int) -> bool:
        """True once the TTL has elapsed (now >= expires_at)."""
        return now >= self.expires_at

    def with_changes(self, **changes) -> "PaymentSession":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)

    # ============================================
    # Persistence record (snake_case columns, ISO timestamps)
    # ============================================

    def to_record(self) -> dict:
        """Convert to the external session persistence record."""
        return {
            "session_id": self.session_id,
            "seller_wallet_address": self.seller_wallet_address,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "amount": self.amount,
            "status": self.status,
            "created_at": ms_to_iso(self.created_at),
            "expires_at": ms_to_iso(self.expires_at),
            "payment_tx_hash": self.payment_tx_hash,
            "buyer_address": self.buyer_address,
            "payment_method": self.payment_method,
            "notified_at": ms_to_iso(self.notified_at) if self.notified_at is not None else None,
        }

    @classmethod
    def from_record(cls, record: dict) -> "PaymentSession":
        """Create from a persistence record with input validation."""
        status = record.get("status", "")
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid status: {status}. Must be one of {VALID_STATUSES}")

        notified_at = record.get("notified_at")
        return cls(
            session_id=record["session_id"],
            seller_wallet_address=record["seller_wallet_address"],
            amount=str(record["amount"]),
            status=status,
            created_at=iso_to_ms(record["created_at"]),
            expires_at=iso_to_ms(record["expires_at"]),
            product_id=record.get("product_id"),
            product_name=record.get("product_name"),
            payment_tx_hash=record.get("payment_tx_hash"),
            buyer_address=record.get("buyer_address"),
            payment_method=record.get("payment_method"),
            notified_at=iso_to_ms(notified_at) if notified_at else None,
        )

    # ============================================
    # QR
    # ============================================

    def to_qr_payload(self) -> "QRPayload":
        return QRPayload(
            session_id=self.session_id,
            wallet_address=self.seller_wallet_address,
            amount=self.amount,
            timestamp=self.created_at,
            expires_at=self.expires_at,
            product_id=self.product_id,
            product_name=self.product_name,
        )


# ============================================
# QR Payload
# ============================================

QR_REQUIRED_FIELDS = ("sessionId", "walletAddress", "amount", "timestamp", "expiresAt")


@dataclass(frozen=True)
class QRPayload:
    """The JSON object encoded into a seller's payment QR code."""
    session_id: str
    wallet_address: str
    amount: str
    timestamp: int      # ms
    expires_at: int     # ms
    product_id: Optional[int] = None
    product_name: Optional[str] = None

    def to_json_dict(self) -> dict:
        data = {
            "sessionId": self.session_id,
            "walletAddress": self.wallet_address,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "expiresAt": self.expires_at,
        }
        if self.product_id is not None:
            data["productId"] = self.product_id
        if self.product_name is not None:
            data["productName"] = self.product_name
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_json_dict(), separators=(",", ":"))

    def seconds_remaining(self, now: int) -> int:
        """Countdown for display only. The session store decides expiry."""
        return max(0, (self.expires_at - now) // 1000)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_qr_payload(text: str) -> Optional[QRPayload]:
    """
    Parse scanned QR text into a payload.

    Returns None for malformed JSON, non-object JSON, or missing/invalid
    required fields. Never raises.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None

    if not isinstance(data, dict):
        return None
    if any(not data.get(key) for key in QR_REQUIRED_FIELDS):
        return None

    session_id = data["sessionId"]
    wallet_address = data["walletAddress"]
    amount = data["amount"]
    if not isinstance(session_id, str) or not isinstance(wallet_address, str):
        return None
    if not isinstance(amount, str) or not amount.isdigit():
        return None
    if not _is_number(data["timestamp"]) or not _is_number(data["expiresAt"]):
        return None

    product_id = data.get("productId")
    if product_id is not None and (not isinstance(product_id, int) or isinstance(product_id, bool)):
        return None
    product_name = data.get("productName")
    if product_name is not None and not isinstance(product_name, str):
        return None

    return QRPayload(
        session_id=session_id,
        wallet_address=wallet_address,
        amount=amount,
        timestamp=int(data["timestamp"]),
        expires_at=int(data["expiresAt"]),
        product_id=product_id,
        product_name=product_name,
    )


def decode_scanned_qr(text: str, now: int) -> QRPayload:
    """
    Parse scanned QR text for the buyer flow.

    Raises:
        InvalidQRFormatError: not a payment QR (user should rescan)
        SessionExpiredError: payload says the session has expired (user should
            ask the seller for a new code). Advisory only; the session store
            remains the authority.
    """
    payload = parse_qr_payload(text)
    if payload is None:
        raise InvalidQRFormatError("Invalid QR code format")
    if now >= payload.expires_at:
        raise SessionExpiredError(payload.session_id)
    return payload
