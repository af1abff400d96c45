"""
Wallet package - Custodial key management for BrewFi.

Contains:
- HDWallet: BIP-39/44 derivation and signing
- WalletService: balance reads and transaction submission
- AccountCache: latest account summaries per user session
- SeedVault, WalletRow: per-user secret storage
- WalletSession: user-scoped owner of the above
"""

from .crypto import (
    HDWallet,
    DerivedAddress,
    derivation_path,
    generate_seed_phrase,
    validate_seed_phrase,
    encrypt_seed,
    decrypt_seed,
    NO_PASSWORD_SENTINEL,
)
from .manager import WalletService
from .cache import AccountCache
from .vault import SeedVault, WalletRow
from .session import WalletSession

__all__ = [
    # Crypto
    "HDWallet",
    "DerivedAddress",
    "derivation_path",
    "generate_seed_phrase",
    "validate_seed_phrase",
    "encrypt_seed",
    "decrypt_seed",
    "NO_PASSWORD_SENTINEL",
    # Service
    "WalletService",
    "AccountCache",
    # Storage
    "SeedVault",
    "WalletRow",
    "WalletSession",
]
