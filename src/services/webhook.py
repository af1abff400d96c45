"""
Payment Webhook Notifier - Reports a completed QR purchase to the settlement
endpoint (the ``qr-payment-webhook`` function).

POST body:
    {"type": "payment_received",
     "data": {"sessionId", "txHash", "buyerAddress", "paymentMethod", "amount"?}}

Any 2xx response counts as delivered. Transport errors and non-2xx responses
are retried up to ``max_attempts`` times with linear backoff.
"""

import asyncio
import logging
from typing import Optional

import httpx

from errors import WebhookDeliveryError
from networks import PAYMENT_METHODS

logger = logging.getLogger(__name__)


WEBHOOK_EVENT_TYPE = "payment_received"


def build_webhook_payload(session_id: str, tx_hash: str, buyer_address: str,
                          payment_method: str, amount: Optional[str] = None) -> dict:
    """Webhook body for a completed payment. ``amount`` is omitted when unknown."""
    if payment_method not in PAYMENT_METHODS:
        raise ValueError(f"Unsupported payment method: {payment_method}")
    data = {
        "sessionId": session_id,
        "txHash": tx_hash,
        "buyerAddress": buyer_address,
        "paymentMethod": payment_method,
    }
    if amount is not None:
        data["amount"] = str(amount)
    return {"type": WEBHOOK_EVENT_TYPE, "data": data}


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Webhook returned status {response.status_code}"


class PaymentWebhookNotifier:
    """Async client for the settlement webhook."""

    def __init__(self, webhook_url: str, api_key: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0,
                 max_attempts: int = 3, retry_delay: float = 1.0):
        """
        Args:
            webhook_url: Full URL of the settlement endpoint
            api_key: Bearer token sent in the Authorization header
            client: Shared AsyncClient (created and owned here if omitted)
            timeout: Per-request timeout in seconds
            max_attempts: Total delivery attempts before giving up
            retry_delay: Base delay; attempt n waits n * retry_delay
        """
        if not webhook_url:
            raise ValueError("webhook_url is required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.webhook_url = webhook_url
        self.api_key = api_key
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, payload: dict) -> None:
        try:
            response = await self._client.post(self.webhook_url, json=payload, headers=self._headers())
        except httpx.RequestError as e:
            raise WebhookDeliveryError(f"Webhook request failed: {e}") from e
        if not response.is_success:
            raise WebhookDeliveryError(_error_detail(response), status_code=response.status_code)

    async def notify(self, session_id: str, tx_hash: str, buyer_address: str,
                     payment_method: str, amount: Optional[str] = None) -> None:
        """
        Deliver the payment notification.

        Raises:
            ValueError: unsupported payment method
            WebhookDeliveryError: every attempt failed
        """
        payload = build_webhook_payload(session_id, tx_hash, buyer_address, payment_method, amount)

        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._post(payload)
            except WebhookDeliveryError as e:
                # 4xx other than 429 will not improve on retry
                status = e.status_code
                final = attempt == self.max_attempts or (
                    status is not None and 400 <= status < 500 and status != 429
                )
                logger.warning(
                    f"Webhook attempt {attempt}/{self.max_attempts} for {session_id} failed: {e}"
                )
                if final:
                    raise
                await asyncio.sleep(self.retry_delay * attempt)
            else:
                logger.info(f"Webhook delivered for session {session_id} ({tx_hash})")
                return

    async def notify_safely(self, session_id: str, tx_hash: str, buyer_address: str,
                            payment_method: str,
                            amount: Optional[str] = None) -> Optional[WebhookDeliveryError]:
        """
        Fire-and-forget variant for the buyer flow. Returns the delivery error
        instead of raising it, None on success.
        """
        try:
            await self.notify(session_id, tx_hash, buyer_address, payment_method, amount)
        except WebhookDeliveryError as e:
            logger.error(f"Payment webhook for {session_id} not delivered: {e}")
            return e
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
