"""
Chain Client - Async JSON-RPC access to the EVM chain.

Thin wrapper over ``AsyncWeb3`` that converts transport and RPC failures into
``NetworkError`` at one boundary. Reverts found during gas estimation become
``TransactionFailedError``.
"""

import logging
from contextlib import contextmanager
from typing import Any, Optional

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from errors import (
    BrewfiError,
    ConfirmationTimeoutError,
    NetworkError,
    TransactionFailedError,
)
from networks import NetworkConfig, ERC20_ABI

logger = logging.getLogger(__name__)


@contextmanager
def rpc_errors(action: str):
    """Re-raise anything that escapes an RPC call as NetworkError."""
    try:
        yield
    except BrewfiError:
        raise
    except ContractLogicError as e:
        raise TransactionFailedError(f"{action} reverted: {e}") from e
    except Exception as e:
        raise NetworkError(f"{action} failed: {e}") from e


def to_checksum(address: str) -> str:
    try:
        return AsyncWeb3.to_checksum_address(address)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid address: {address!r}") from e


class ChainClient:
    """Async RPC client for one network."""

    def __init__(self, network: NetworkConfig, rpc_url: Optional[str] = None,
                 request_timeout: int = 30, w3: Optional[AsyncWeb3] = None):
        """
        Args:
            network: Network configuration
            rpc_url: Custom RPC URL, or None to use network default
            request_timeout: Per-request HTTP timeout in seconds
            w3: Preconfigured AsyncWeb3 instance (overrides rpc_url)
        """
        self.network = network
        self.chain_id = network.chain_id
        effective_rpc = rpc_url if rpc_url else network.rpc_url
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            effective_rpc,
            request_kwargs={"timeout": request_timeout},
        ))

    # ============================================
    # Reads
    # ============================================

    async def get_balance(self, address: str) -> int:
        """Native balance in wei."""
        with rpc_errors("get_balance"):
            return await self.w3.eth.get_balance(to_checksum(address))

    async def get_token_balance(self, token: str, owner: str) -> int:
        with rpc_errors("balanceOf"):
            contract = self.w3.eth.contract(address=to_checksum(token), abi=ERC20_ABI)
            return await contract.functions.balanceOf(to_checksum(owner)).call()

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        with rpc_errors("allowance"):
            contract = self.w3.eth.contract(address=to_checksum(token), abi=ERC20_ABI)
            return await contract.functions.allowance(
                to_checksum(owner), to_checksum(spender)
            ).call()

    async def call_function(self, address: str, abi: list, fn_name: str, *args) -> Any:
        """Call a view function and return its decoded result."""
        with rpc_errors(fn_name):
            contract = self.w3.eth.contract(address=to_checksum(address), abi=abi)
            return await getattr(contract.functions, fn_name)(*args).call()

    async def get_transaction_count(self, address: str) -> int:
        """Pending nonce for an address."""
        with rpc_errors("get_transaction_count"):
            return await self.w3.eth.get_transaction_count(to_checksum(address), "pending")

    async def get_gas_price(self) -> int:
        with rpc_errors("gas_price"):
            return await self.w3.eth.gas_price

    async def estimate_gas(self, tx: dict) -> int:
        with rpc_errors("estimate_gas"):
            return await self.w3.eth.estimate_gas(tx)

    # ============================================
    # Writes
    # ============================================

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Broadcast a signed transaction. Returns the 0x-prefixed hash."""
        with rpc_errors("send_raw_transaction"):
            tx_hash = await self.w3.eth.send_raw_transaction(raw_transaction)
            return AsyncWeb3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 30.0,
                               poll_latency: float = 1.0) -> dict:
        """
        Wait until the transaction is included.

        Raises:
            ConfirmationTimeoutError: no receipt within ``timeout`` seconds
            NetworkError: RPC failure while polling
        """
        try:
            with rpc_errors("wait_for_transaction_receipt"):
                return dict(await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=timeout, poll_latency=poll_latency
                ))
        except NetworkError as e:
            if isinstance(e.__cause__, TimeExhausted):
                raise ConfirmationTimeoutError(tx_hash, timeout) from e.__cause__
            raise

    async def close(self) -> None:
        """Close the provider's HTTP session if it has one."""
        provider = self.w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            try:
                await disconnect()
            except Exception as e:
                logger.debug(f"Provider disconnect failed: {e}")
