"""
Models package - Data models for BrewFi.

Contains:
- AccountSummary, TransactionResult, FeeParams, Product: wallet-side values
- PaymentSession, QRPayload: QR payment sessions and their QR encoding
- SessionStore: compare-and-set persistence for payment sessions
"""

from .account import AccountSummary, TransactionResult, FeeParams, Product
from .payment_session import (
    PaymentSession,
    QRPayload,
    generate_session_id,
    parse_qr_payload,
    decode_scanned_qr,
    is_terminal,
    STATUS_PENDING,
    STATUS_PAID,
    STATUS_EXPIRED,
    TERMINAL_STATUSES,
)
from .store import SessionStore

__all__ = [
    "AccountSummary",
    "TransactionResult",
    "FeeParams",
    "Product",
    "PaymentSession",
    "QRPayload",
    "generate_session_id",
    "parse_qr_payload",
    "decode_scanned_qr",
    "is_terminal",
    "STATUS_PENDING",
    "STATUS_PAID",
    "STATUS_EXPIRED",
    "TERMINAL_STATUSES",
    "SessionStore",
]
