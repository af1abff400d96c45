"""
Purchase Flow - Buy a product with USDC/USDT from a custodial account.

Sequence:
1. Fresh token balance read (no transaction is sent if it is short)
2. Fresh allowance read; approve the purchase contract for the price only
   when the allowance is below it, and wait for that approval's receipt
3. Send the purchase and wait for its receipt (a timeout does not fail the
   purchase; it is reported as unconfirmed)
4. For QR payments, notify the settlement webhook once the purchase is
   confirmed; a delivery failure is recorded on the result and never undoes
   the purchase. An unconfirmed purchase is not reported.
5. Refresh the wallet's cached balances, also when a step above failed
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, TYPE_CHECKING

from errors import ConfirmationTimeoutError, InsufficientBalanceError
from models import decode_scanned_qr
from networks import PURCHASE_FUNCTIONS, get_token_address
from utils import now_ms
from .contracts import ContractReader, encode_approve, encode_purchase
from .webhook import PaymentWebhookNotifier

if TYPE_CHECKING:
    from wallet.session import WalletSession

logger = logging.getLogger(__name__)


UNCONFIRMED_PURCHASE = "purchase not confirmed"


@dataclass
class PurchaseResult:
    """Outcome of a product purchase."""
    tx_hash: str
    product_id: int
    method: str
    amount: int
    buyer_address: str
    approval_hash: Optional[str] = None   # None when the allowance already covered the price
    confirmed: bool = False
    session_id: Optional[str] = None
    webhook_delivered: Optional[bool] = None  # None when there was nothing to notify
    webhook_error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class PurchaseFlow:
    """
    Usage:
        flow = PurchaseFlow(wallet_session, reader, notifier)
        result = await flow.purchase(0, product_id=1, method="USDC")
        result = await flow.pay_scanned_qr(0, qr_text, method="USDT")
    """

    def __init__(self, wallet: "WalletSession", reader: ContractReader,
                 notifier: Optional[PaymentWebhookNotifier] = None):
        self.wallet = wallet
        self.reader = reader
        self.notifier = notifier

    def _token_for(self, method: str) -> str:
        if method not in PURCHASE_FUNCTIONS:
            raise ValueError(f"Unsupported purchase method: {method}")
        return get_token_address(method, self.wallet.service.chain_id)

    async def _resolve_price(self, product_id: int) -> int:
        product = await self.reader.get_product(product_id)
        if product is None or not product.active:
            raise ValueError(f"Product {product_id} is not available")
        return product.price

    async def purchase(self, index: int, product_id: int, method: str,
                       amount: Optional[int] = None,
                       session_id: Optional[str] = None) -> PurchaseResult:
        """
        Approve if needed, then purchase.

        Args:
            index: Buyer account index
            product_id: Catalog product id
            method: "USDC" or "USDT"
            amount: Price in 6-decimal units (read from the contract if None)
            session_id: QR payment session to report to the webhook

        Raises:
            InsufficientBalanceError: token balance below the price
            ConfirmationTimeoutError: the approval was not confirmed in time
            TransactionFailedError: approval or purchase reverted
            NetworkError: RPC failure
        """
        service = self.wallet.service
        token = self._token_for(method)
        price = int(amount) if amount is not None else await self._resolve_price(product_id)
        if price <= 0:
            raise ValueError("Purchase amount must be positive")
        buyer = service.get_address(index)
        spender = self.reader.purchase_contract

        balance = await self.reader.get_token_balance(token, buyer)
        if balance < price:
            raise InsufficientBalanceError(method, price, balance)

        try:
            return await self._approve_and_purchase(
                index, product_id, method, token, price, buyer, spender, session_id
            )
        finally:
            # Also after a failed approval or receipt wait
            await self.wallet.refresh()

    async def _approve_and_purchase(self, index: int, product_id: int, method: str,
                                    token: str, price: int, buyer: str, spender: str,
                                    session_id: Optional[str]) -> PurchaseResult:
        service = self.wallet.service
        approval_hash = None
        allowance = await self.reader.get_allowance(token, buyer, spender)
        if allowance < price:
            logger.info(f"Allowance {allowance} < {price}; approving {method} for {spender}")
            approval = await service.send_contract_transaction(
                index, to=token, data=encode_approve(spender, price)
            )
            approval_hash = approval.hash
            await service.wait_for_confirmation(approval_hash)

        submitted = await service.send_contract_transaction(
            index, to=spender, data=encode_purchase(method, product_id)
        )
        result = PurchaseResult(
            tx_hash=submitted.hash,
            product_id=product_id,
            method=method,
            amount=price,
            buyer_address=buyer,
            approval_hash=approval_hash,
            session_id=session_id,
        )

        try:
            await service.wait_for_confirmation(submitted.hash)
            result.confirmed = True
        except ConfirmationTimeoutError as e:
            logger.warning(f"Purchase {submitted.hash} not confirmed yet: {e}")

        if session_id and self.notifier is not None:
            if result.confirmed:
                error = await self.notifier.notify_safely(
                    session_id, submitted.hash, buyer, method, str(price)
                )
                result.webhook_delivered = error is None
                result.webhook_error = str(error) if error else None
            else:
                logger.warning(f"Not reporting session {session_id}: purchase {submitted.hash} unconfirmed")
                result.webhook_delivered = False
                result.webhook_error = UNCONFIRMED_PURCHASE

        logger.info(f"Purchased product {product_id} with {method} ({submitted.hash})")
        return result

    async def pay_scanned_qr(self, index: int, qr_text: str, method: str,
                             now: Optional[int] = None) -> PurchaseResult:
        """
        Pay a seller's QR session.

        Raises:
            InvalidQRFormatError: not a payment QR
            SessionExpiredError: the QR says the session is over
            ValueError: the QR carries no product id
        """
        payload = decode_scanned_qr(qr_text, now if now is not None else now_ms())
        if payload.product_id is None:
            raise ValueError("QR payment has no product to purchase")
        return await self.purchase(
            index,
            product_id=payload.product_id,
            method=method,
            amount=int(payload.amount),
            session_id=payload.session_id,
        )
