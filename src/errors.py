"""
Errors - Typed failures shared by the wallet and payment-session code.

Each error carries a ``retryable`` flag so callers can decide between
"try again" and "needs new input" without inspecting messages.
"""

from typing import Optional


class BrewfiError(Exception):
    """Base class for all BrewFi errors."""
    retryable = False


# ============================================
# Wallet / Chain
# ============================================

class InvalidSecretError(BrewfiError, ValueError):
    """Seed phrase fails the BIP-39 word-count or checksum contract."""


class NetworkError(BrewfiError):
    """RPC or transport failure. Safe to retry."""
    retryable = True


class ConfirmationTimeoutError(NetworkError):
    """A transaction was broadcast but no receipt arrived in time."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"No receipt for {tx_hash} after {timeout:g}s")


class InsufficientBalanceError(BrewfiError):
    """The account cannot cover the amount plus fees."""

    def __init__(self, asset: str, required: int, available: int):
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient {asset} balance: need {required}, have {available}"
        )


class FeeLimitExceededError(BrewfiError):
    """Estimated fee is above the configured maximum for transfers."""

    def __init__(self, fee: int, max_fee: int):
        self.fee = fee
        self.max_fee = max_fee
        super().__init__(f"Estimated fee {fee} exceeds max fee {max_fee}")


class TransactionFailedError(BrewfiError):
    """Transaction reverted on-chain or was rejected before broadcast."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class WalletNotReadyError(BrewfiError):
    """No secret has been loaded for the current user yet."""


class WalletExistsError(BrewfiError):
    """A secret already exists for this user and must not be replaced."""


# ============================================
# Payment Sessions
# ============================================

class SessionError(BrewfiError):
    """Base class for payment session state errors."""

    def __init__(self, session_id: str, message: str):
        self.session_id = session_id
        super().__init__(message)


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: str):
        super().__init__(session_id, f"Payment session not found: {session_id}")


class SessionNotPendingError(SessionError):
    """The session already reached a terminal status."""

    def __init__(self, session_id: str, status: str):
        self.status = status
        super().__init__(session_id, f"Payment session {session_id} is already {status}")


class SessionExpiredError(SessionError):
    """The session's TTL has elapsed; a new QR code is required."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Payment session {session_id} has expired")


class SessionStillActiveError(SessionError):
    """Expiry was requested before the session's TTL elapsed."""
    retryable = True

    def __init__(self, session_id: str, expires_at: int):
        self.expires_at = expires_at
        super().__init__(session_id, f"Payment session {session_id} is active until {expires_at}")


class InvalidQRFormatError(BrewfiError, ValueError):
    """Scanned text is not a BrewFi payment QR payload. Rescan."""


class WebhookDeliveryError(BrewfiError):
    """Settlement webhook could not be delivered."""
    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
