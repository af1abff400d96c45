"""
Account models.

Derived account summaries, transaction results and fee overrides. None of
these are persisted; summaries are recomputed on every refresh.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class AccountSummary:
    """Address and balances for one derived account index."""
    index: int
    derivation_path: str
    address: str
    native_balance: int                                    # wei
    token_balances: dict[str, int] = field(default_factory=dict)  # token address -> raw amount

    def token_balance(self, token: str) -> int:
        """Balance for a token address (case-insensitive), 0 if untracked."""
        token_lower = token.lower()
        for address, amount in self.token_balances.items():
            if address.lower() == token_lower:
                return amount
        return 0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "derivationPath": self.derivation_path,
            "address": self.address,
            "nativeBalance": str(self.native_balance),
            "tokenBalances": {k: str(v) for k, v in self.token_balances.items()},
        }


@dataclass(frozen=True)
class TransactionResult:
    """Returned to the caller that issued a transaction."""
    hash: str
    fee: Optional[int] = None  # Estimated max fee in wei


@dataclass(frozen=True)
class FeeParams:
    """Optional overrides for gas/fee fields of an outgoing transaction."""
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def is_eip1559(self) -> bool:
        return self.max_fee_per_gas is not None


@dataclass(frozen=True)
class Product:
    """A product from the purchase contract catalog."""
    product_id: int
    name: str
    price: int          # USD price scaled by 1e6
    reward_ratio: int   # BREWFI reward ratio scaled by 1e18
    active: bool = True
