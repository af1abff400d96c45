"""
Wallet Service - The single gateway for a user's outgoing chain mutations.

Owns the HD wallet for one user session and a chain client. Reads balances,
builds/signs/broadcasts native, token and contract transactions, and waits
for confirmations.

Submissions from the same account index are serialized with a per-index
lock; the nonce is taken as max(chain pending nonce, last nonce used + 1).
Refreshing cached balances after a mutation is the caller's job.
"""

import asyncio
import logging
from typing import Iterable, Optional

from errors import (
    FeeLimitExceededError,
    InsufficientBalanceError,
    NetworkError,
    TransactionFailedError,
    WalletNotReadyError,
)
from models import AccountSummary, FeeParams, TransactionResult
from networks import DEFAULT_TRANSFER_MAX_FEE
from services.chain import ChainClient, to_checksum
from services.contracts import encode_transfer
from .crypto import HDWallet, derivation_path

logger = logging.getLogger(__name__)


GAS_BUFFER = 1.2  # 20% over the node's estimate
DEFAULT_CONFIRMATION_TIMEOUT = 30.0


class WalletService:
    """
    Balance queries and transaction submission for one seed phrase.

    Usage:
        service = WalletService(seed_phrase, chain)
        summary = await service.get_account_summary(0, [usdc_address])
        result = await service.send_contract_transaction(0, to=token, data=calldata)
        await service.wait_for_confirmation(result.hash)
    """

    def __init__(self, seed_phrase: str, chain: ChainClient,
                 transfer_max_fee: int = DEFAULT_TRANSFER_MAX_FEE,
                 confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT):
        """
        Args:
            seed_phrase: BIP-39 mnemonic (raises InvalidSecretError if invalid)
            chain: Chain client used for every read and broadcast
            transfer_max_fee: Maximum fee in wei accepted for token transfers
            confirmation_timeout: Default seconds to wait for a receipt
        """
        self._wallet: Optional[HDWallet] = HDWallet(seed_phrase)
        self._chain = chain
        self.transfer_max_fee = transfer_max_fee
        self.confirmation_timeout = confirmation_timeout
        self._locks: dict[int, asyncio.Lock] = {}
        self._next_nonce: dict[int, int] = {}

    @property
    def chain(self) -> ChainClient:
        return self._chain

    @property
    def chain_id(self) -> int:
        return self._chain.chain_id

    def _require_wallet(self) -> HDWallet:
        if self._wallet is None:
            raise WalletNotReadyError("Wallet service has been disposed")
        return self._wallet

    def get_address(self, index: int) -> str:
        return self._require_wallet().get_address(index)

    def _lock_for(self, index: int) -> asyncio.Lock:
        lock = self._locks.get(index)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[index] = lock
        return lock

    # ============================================
    # Balances
    # ============================================

    async def get_account_summary(self, index: int,
                                  token_addresses: Iterable[str] = ()) -> AccountSummary:
        """
        Native balance plus one balance per requested token.

        The token batch is all-or-nothing: any failed read fails the call.

        Raises:
            NetworkError: RPC failure (retryable)
        """
        path = derivation_path(index)
        address = self.get_address(index)
        tokens = list(token_addresses)

        native_balance = await self._chain.get_balance(address)
        try:
            amounts = await asyncio.gather(
                *(self._chain.get_token_balance(token, address) for token in tokens)
            )
        except NetworkError:
            raise
        except Exception as e:
            raise NetworkError(f"Token balance read failed for {address}: {e}") from e

        return AccountSummary(
            index=index,
            derivation_path=path,
            address=address,
            native_balance=native_balance,
            token_balances=dict(zip(tokens, amounts)),
        )

    async def get_account_summaries(self, count: int,
                                    token_addresses: Iterable[str] = ()) -> list[AccountSummary]:
        """Summaries for indices 0..count-1."""
        tokens = list(token_addresses)
        return [await self.get_account_summary(i, tokens) for i in range(count)]

    # ============================================
    # Transaction Building
    # ============================================

    async def _fee_fields(self, fee_params: Optional[FeeParams]) -> tuple[dict, int]:
        """Return (fee fields for the tx dict, per-gas price used for fee estimates)."""
        if fee_params and fee_params.is_eip1559:
            priority = fee_params.max_priority_fee_per_gas or 0
            return {
                "maxFeePerGas": fee_params.max_fee_per_gas,
                "maxPriorityFeePerGas": priority,
            }, fee_params.max_fee_per_gas

        gas_price = fee_params.gas_price if fee_params and fee_params.gas_price else None
        if gas_price is None:
            gas_price = await self._chain.get_gas_price()
        return {"gasPrice": gas_price}, gas_price

    async def _build(self, index: int, to: str, value: int, data: Optional[str],
                     fee_params: Optional[FeeParams]) -> tuple[dict, int]:
        """Build an unsigned tx (without nonce). Returns (tx, estimated fee in wei)."""
        sender = self.get_address(index)
        tx = {
            "to": to_checksum(to),
            "value": value,
            "chainId": self.chain_id,
        }
        if data and data != "0x":
            tx["data"] = data

        fee_fields, per_gas = await self._fee_fields(fee_params)
        tx.update(fee_fields)

        if fee_params and fee_params.gas_limit:
            gas = fee_params.gas_limit
        else:
            estimate = await self._chain.estimate_gas({**tx, "from": sender})
            gas = int(estimate * GAS_BUFFER)
        tx["gas"] = gas
        return tx, gas * per_gas

    async def _submit(self, index: int, tx: dict) -> str:
        """Assign a nonce, sign and broadcast. Serialized per account index."""
        wallet = self._require_wallet()
        async with self._lock_for(index):
            chain_nonce = await self._chain.get_transaction_count(wallet.get_address(index))
            nonce = max(chain_nonce, self._next_nonce.get(index, 0))
            signed = wallet.sign_transaction(index, {**tx, "nonce": nonce})
            tx_hash = await self._chain.send_raw_transaction(signed.raw_transaction)
            self._next_nonce[index] = nonce + 1
        logger.info(f"Broadcast tx {tx_hash} from account {index} (nonce {nonce})")
        return tx_hash

    async def _require_native(self, address: str, required: int) -> None:
        available = await self._chain.get_balance(address)
        if available < required:
            raise InsufficientBalanceError("AVAX", required, available)

    # ============================================
    # Mutations
    # ============================================

    async def send_native_transaction(self, index: int, to: str, value: int,
                                      fee_params: Optional[FeeParams] = None) -> TransactionResult:
        """
        Send AVAX.

        Raises:
            InsufficientBalanceError: value + fee exceeds the native balance
            NetworkError: RPC failure
        """
        if value < 0:
            raise ValueError("value must be non-negative")
        address = self.get_address(index)
        await self._require_native(address, value)

        tx, fee = await self._build(index, to, value, None, fee_params)
        await self._require_native(address, value + fee)
        return TransactionResult(hash=await self._submit(index, tx), fee=fee)

    async def quote_token_transfer(self, index: int, token: str, recipient: str,
                                   amount: int) -> int:
        """Estimated fee in wei for an ERC-20 transfer."""
        _, fee = await self._build(index, token, 0, encode_transfer(recipient, amount), None)
        return fee

    async def transfer_token(self, index: int, token: str, recipient: str,
                             amount: int) -> TransactionResult:
        """
        Direct ERC-20 transfer (no allowance involved).

        Raises:
            InsufficientBalanceError: token amount or fee not covered
            FeeLimitExceededError: fee above ``transfer_max_fee``
            NetworkError: RPC failure
        """
        if amount <= 0:
            raise ValueError("amount must be positive")
        address = self.get_address(index)
        token_balance = await self._chain.get_token_balance(token, address)
        if token_balance < amount:
            raise InsufficientBalanceError(token, amount, token_balance)

        tx, fee = await self._build(index, token, 0, encode_transfer(recipient, amount), None)
        if fee > self.transfer_max_fee:
            raise FeeLimitExceededError(fee, self.transfer_max_fee)
        await self._require_native(address, fee)
        return TransactionResult(hash=await self._submit(index, tx), fee=fee)

    async def send_contract_transaction(self, index: int, to: str, data: str,
                                        value: int = 0,
                                        fee_params: Optional[FeeParams] = None) -> TransactionResult:
        """
        Send arbitrary calldata (approvals, purchases). ``data`` is not inspected.

        Raises:
            InsufficientBalanceError: value + fee exceeds the native balance
            TransactionFailedError: the call reverts during estimation
            NetworkError: RPC failure
        """
        address = self.get_address(index)
        tx, fee = await self._build(index, to, value, data, fee_params)
        await self._require_native(address, value + fee)
        return TransactionResult(hash=await self._submit(index, tx), fee=fee)

    async def wait_for_confirmation(self, tx_hash: str,
                                    timeout: Optional[float] = None) -> dict:
        """
        Wait for a receipt.

        Raises:
            ConfirmationTimeoutError: no receipt in time
            TransactionFailedError: receipt status is 0 (reverted)
        """
        receipt = await self._chain.wait_for_receipt(
            tx_hash, timeout=timeout if timeout is not None else self.confirmation_timeout
        )
        if receipt.get("status") != 1:
            raise TransactionFailedError(f"Transaction {tx_hash} reverted", tx_hash=tx_hash)
        logger.info(f"Confirmed {tx_hash} in block {receipt.get('blockNumber')}")
        return receipt

    # ============================================
    # Messages
    # ============================================

    def sign_message(self, index: int, message: str) -> str:
        return self._require_wallet().sign_message(index, message)

    def verify_message(self, index: int, message: str, signature: str) -> bool:
        return self._require_wallet().verify_message(index, message, signature)

    # ============================================
    # Lifecycle
    # ============================================

    @property
    def is_disposed(self) -> bool:
        return self._wallet is None

    def dispose(self) -> None:
        """Clear key material. Further calls raise WalletNotReadyError."""
        if self._wallet is not None:
            self._wallet.lock()
            self._wallet = None
        self._next_nonce.clear()


