"""
Settlement - Server side of the payment webhook.

Validates a ``payment_received`` body and records the payment with
``PaymentSessionManager.mark_paid``. A repeated delivery carrying the
transaction hash already stored on the session is answered as a success, so
the notifier's retries are harmless.

Responses are ``(http_status, json_dict)`` pairs; errors carry a ``code``
mapped to an HTTP status through ERROR_CODE_TO_HTTP_STATUS.
"""

import hmac
import json
import logging
import re
from typing import Optional, Union

from errors import (
    NetworkError,
    SessionExpiredError,
    SessionNotFoundError,
    SessionNotPendingError,
)
from models import STATUS_PAID, STATUS_EXPIRED
from networks import PAYMENT_METHODS
from .sessions import PaymentSessionManager
from .webhook import WEBHOOK_EVENT_TYPE

logger = logging.getLogger(__name__)


# Map error codes to appropriate HTTP status codes
ERROR_CODE_TO_HTTP_STATUS = {
    # 400 Bad Request - malformed request
    "INVALID_JSON": 400,
    "INVALID_EVENT": 400,
    "INVALID_REQUEST": 400,
    "MISSING_TX_HASH": 400,
    "INVALID_TX_HASH": 400,
    "INVALID_PAYMENT_METHOD": 400,

    # 401 Unauthorized - authentication failure
    "AUTH_FAILED": 401,

    # 404 Not Found
    "SESSION_NOT_FOUND": 404,

    # 409 Conflict - session already settled by another payment
    "PAYMENT_ALREADY_SETTLED": 409,

    # 410 Gone - session expired, seller must issue a new QR code
    "SESSION_EXPIRED": 410,

    # 503 Service Unavailable - temporary, retryable
    "SERVICE_NOT_READY": 503,
}

TX_HASH_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')

REQUIRED_FIELDS = ("sessionId", "txHash", "buyerAddress", "paymentMethod")


def get_http_status_for_error(error_code: str) -> int:
    """Get the appropriate HTTP status code for an error code."""
    return ERROR_CODE_TO_HTTP_STATUS.get(error_code, 400)


def _error(code: str, message: str, **extra) -> tuple[int, dict]:
    return get_http_status_for_error(code), {"status": "error", "error": message, "code": code, **extra}


def _check_auth(api_key: Optional[str], authorization: Optional[str]) -> bool:
    if not api_key:
        return True
    expected = f"Bearer {api_key}"
    return bool(authorization) and hmac.compare_digest(authorization, expected)


async def handle_payment_webhook(manager: PaymentSessionManager,
                                 body: Union[str, bytes, dict],
                                 authorization: Optional[str] = None,
                                 api_key: Optional[str] = None) -> tuple[int, dict]:
    """
    Handle one webhook delivery.

    Args:
        manager: Session manager that owns the sessions
        body: Raw JSON body or an already-decoded dict
        authorization: Value of the request's Authorization header
        api_key: Expected bearer token (None disables the check)

    Returns:
        (HTTP status code, JSON response)
    """
    if not _check_auth(api_key, authorization):
        return _error("AUTH_FAILED", "Invalid or missing bearer token")

    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body or "{}")
        except json.JSONDecodeError:
            return _error("INVALID_JSON", "Invalid JSON")
    if not isinstance(body, dict):
        return _error("INVALID_REQUEST", "Body must be a JSON object")

    if body.get("type") != WEBHOOK_EVENT_TYPE:
        return _error("INVALID_EVENT", f"Unsupported event type: {body.get('type')!r}")

    data = body.get("data")
    if not isinstance(data, dict):
        return _error("INVALID_REQUEST", "Missing data object")
    if not data.get("txHash"):
        return _error("MISSING_TX_HASH", "Missing txHash")
    missing = [key for key in REQUIRED_FIELDS if not data.get(key)]
    if missing:
        return _error("INVALID_REQUEST", f"Missing fields: {', '.join(missing)}")

    session_id = data["sessionId"]
    tx_hash = data["txHash"]
    if not isinstance(tx_hash, str) or not TX_HASH_PATTERN.match(tx_hash):
        return _error("INVALID_TX_HASH", "Invalid transaction hash format")
    if data["paymentMethod"] not in PAYMENT_METHODS:
        return _error("INVALID_PAYMENT_METHOD", f"Unsupported payment method: {data['paymentMethod']}")
    amount = data.get("amount")

    try:
        session = await manager.mark_paid(
            session_id, tx_hash, data["buyerAddress"], data["paymentMethod"],
            amount=str(amount) if amount is not None else None,
        )
    except SessionNotFoundError as e:
        return _error("SESSION_NOT_FOUND", str(e))
    except SessionExpiredError as e:
        return _error("SESSION_EXPIRED", str(e))
    except SessionNotPendingError as e:
        current = await manager.get_session(session_id)
        if current is not None and current.status == STATUS_PAID \
                and (current.payment_tx_hash or "").lower() == tx_hash.lower():
            logger.info(f"Duplicate webhook for session {session_id} ({tx_hash})")
            return 200, {"status": "ok", "duplicate": True, "session": current.to_record()}
        if current is not None and current.status == STATUS_EXPIRED:
            return _error("SESSION_EXPIRED", str(e))
        return _error("PAYMENT_ALREADY_SETTLED", str(e))
    except NetworkError as e:
        logger.error(f"Settlement for {session_id} failed: {e}")
        return _error("SERVICE_NOT_READY", "Session store unavailable")
    except ValueError as e:
        return _error("INVALID_REQUEST", str(e))

    return 200, {"status": "ok", "duplicate": False, "session": session.to_record()}
