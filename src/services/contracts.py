"""
Contract Reader - Read-only access to the BrewFi contracts, plus calldata
encoders for the write calls a wallet signs.

Reads always go to the chain. Allowance-gated flows must call
``get_allowance`` right before deciding, never reuse a cached value.
"""

import logging
from typing import Optional

from web3 import Web3

from errors import TransactionFailedError
from models import Product
from networks import (
    BREWFI_TOKEN_ABI,
    ERC20_ABI,
    PURCHASE_ABI,
    PURCHASE_FUNCTIONS,
)
from .chain import ChainClient, to_checksum

logger = logging.getLogger(__name__)


# Provider-less instance; only used for ABI encoding
_encoder = Web3()
_erc20 = _encoder.eth.contract(abi=ERC20_ABI)
_purchase = _encoder.eth.contract(abi=PURCHASE_ABI)
_brewfi = _encoder.eth.contract(abi=BREWFI_TOKEN_ABI)


# ============================================
# Calldata Encoders
# ============================================

def encode_approve(spender: str, amount: int) -> str:
    """ERC-20 approve(spender, amount) calldata."""
    return _erc20.encode_abi("approve", args=[to_checksum(spender), amount])


def encode_transfer(recipient: str, amount: int) -> str:
    """ERC-20 transfer(recipient, amount) calldata."""
    return _erc20.encode_abi("transfer", args=[to_checksum(recipient), amount])


def encode_purchase(method: str, product_id: int) -> str:
    """purchaseWithUSDC / purchaseWithUSDT calldata for a product."""
    fn_name = PURCHASE_FUNCTIONS.get(method)
    if fn_name is None:
        raise ValueError(f"Unsupported purchase method: {method}")
    return _purchase.encode_abi(fn_name, args=[product_id])


def encode_mint(recipient: str, amount: int) -> str:
    """BREWFI mint(to, amount) calldata."""
    return _brewfi.encode_abi("mint", args=[to_checksum(recipient), amount])


def _to_product(product_id: int, raw) -> Product:
    # Tuple order: (name, priceUSD, rewardRatio, active)
    return Product(
        product_id=product_id,
        name=raw[0],
        price=int(raw[1]),
        reward_ratio=int(raw[2]),
        active=bool(raw[3]),
    )


class ContractReader:
    """Read-only façade over the purchase contract and ERC-20 tokens."""

    def __init__(self, chain: ChainClient, purchase_contract: str):
        self.chain = chain
        self.purchase_contract = to_checksum(purchase_contract)

    async def get_all_products(self) -> list[Product]:
        """All products, indexed by their position in the catalog."""
        raw_products = await self.chain.call_function(
            self.purchase_contract, PURCHASE_ABI, "getAllProducts"
        )
        return [_to_product(i, raw) for i, raw in enumerate(raw_products or [])]

    async def get_active_products(self) -> list[Product]:
        return [p for p in await self.get_all_products() if p.active]

    async def get_product(self, product_id: int) -> Optional[Product]:
        """A single product, or None if the contract rejects the id."""
        try:
            raw = await self.chain.call_function(
                self.purchase_contract, PURCHASE_ABI, "getProduct", product_id
            )
        except TransactionFailedError as e:
            logger.info(f"Product {product_id} not available: {e}")
            return None
        return _to_product(product_id, raw)

    async def get_product_count(self) -> int:
        count = await self.chain.call_function(
            self.purchase_contract, PURCHASE_ABI, "getProductCount"
        )
        return int(count)

    async def get_allowance(self, token: str, owner: str, spender: Optional[str] = None) -> int:
        """Current allowance granted by ``owner`` (default spender: purchase contract)."""
        return await self.chain.get_allowance(token, owner, spender or self.purchase_contract)

    async def get_token_balance(self, token: str, owner: str) -> int:
        return await self.chain.get_token_balance(token, owner)

    async def get_native_balance(self, address: str) -> int:
        return await self.chain.get_balance(address)
