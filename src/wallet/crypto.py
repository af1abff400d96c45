"""
Wallet Crypto - Deterministic key derivation and seed protection.

- BIP-39 seed phrases (validated word list + checksum)
- BIP-32/44 HD derivation at m/44'/60'/0'/0/{index}
- Argon2id key derivation (memory-hard) for at-rest seed encryption
- AES-256-GCM authenticated encryption

Derivation is pure: the same (seed phrase, index) always yields the same
address and signing key.
"""

import secrets
from dataclasses import dataclass
from typing import Optional

# Cryptography
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from argon2.low_level import hash_secret_raw, Type

# Ethereum
from mnemonic import Mnemonic
from eth_account import Account
from eth_account.hdaccount import seed_from_mnemonic, key_from_seed
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from errors import InvalidSecretError

# Enable HD wallet features
Account.enable_unaudited_hdwallet_features()


# ============================================
# Security Constants
# ============================================

# Argon2id parameters (OWASP recommendations for high-security)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits for AES-256

AES_IV_SIZE = 12  # 96 bits (recommended for GCM)

# BIP-44 derivation path for Ethereum-compatible chains (Avalanche C-Chain)
ETH_DERIVATION_PATH = "m/44'/60'/0'/0/{}"

VALID_WORD_COUNTS = (12, 15, 18, 21, 24)

# Sentinel for unencrypted vaults (testnet / local development)
NO_PASSWORD_SENTINEL = "__NO_PASSWORD__"


# ============================================
# Data Classes
# ============================================

@dataclass(frozen=True)
class DerivedAddress:
    """An address derived from the HD wallet."""
    index: int
    path: str       # BIP-44 path (e.g., "m/44'/60'/0'/0/0")
    address: str    # 0x... checksum address


def derivation_path(index: int) -> str:
    """BIP-44 path for an account index."""
    if index < 0:
        raise ValueError("Account index must be zero or greater")
    return ETH_DERIVATION_PATH.format(index)


# ============================================
# Seed Phrases
# ============================================

def generate_seed_phrase(word_count: int = 12) -> str:
    """Generate a fresh English BIP-39 mnemonic (12 or 24 words)."""
    if word_count not in (12, 24):
        raise ValueError("word_count must be 12 or 24")
    return Mnemonic("english").generate(strength=128 if word_count == 12 else 256)


def validate_seed_phrase(seed_phrase: str) -> str:
    """
    Normalize and validate a seed phrase.

    Returns the normalized phrase (single spaces, lower case).

    Raises:
        InvalidSecretError: wrong word count, unknown word or bad checksum
    """
    if not isinstance(seed_phrase, str):
        raise InvalidSecretError("Seed phrase must be a string")

    words = seed_phrase.strip().lower().split()
    if len(words) not in VALID_WORD_COUNTS:
        raise InvalidSecretError(
            f"Seed phrase must have 12-24 words, got {len(words)}"
        )

    normalized = " ".join(words)
    if not Mnemonic("english").check(normalized):
        raise InvalidSecretError("Invalid seed phrase checksum")
    return normalized


# ============================================
# Key Derivation (password -> AES key)
# ============================================

def derive_key(password: str, salt: bytes) -> bytes:
    """
    Derive an encryption key from password using Argon2id.

    Each password guess requires ~64MB RAM.
    """
    return hash_secret_raw(
        secret=password.encode('utf-8'),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID
    )


# ============================================
# Encryption
# ============================================

def encrypt_seed(seed_phrase: str, password: str) -> tuple[bytes, bytes, bytes, bytes]:
    """
    Encrypt a seed phrase with a password.

    Returns: (encrypted_data, iv, tag, salt)
    """
    salt = secrets.token_bytes(16)
    key = derive_key(password, salt)
    iv = secrets.token_bytes(AES_IV_SIZE)

    aesgcm = AESGCM(key)
    ciphertext_and_tag = aesgcm.encrypt(iv, seed_phrase.encode('utf-8'), None)

    ciphertext = ciphertext_and_tag[:-16]
    tag = ciphertext_and_tag[-16:]

    return ciphertext, iv, tag, salt


def decrypt_seed(encrypted_seed: bytes, iv: bytes, tag: bytes,
                 salt: bytes, password: str) -> str:
    """
    Decrypt a seed phrase with a password.

    Raises: InvalidTag if password is wrong or data is tampered.
    """
    key = derive_key(password, salt)
    ciphertext_and_tag = encrypted_seed + tag

    aesgcm = AESGCM(key)
    plaintext = aesgcm.decrypt(iv, ciphertext_and_tag, None)

    return plaintext.decode('utf-8')


# ============================================
# HD Wallet
# ============================================

class HDWallet:
    """
    Deterministic account derivation from a single seed phrase.

    Usage:
        wallet = HDWallet(seed_phrase)
        address = wallet.get_address(0)
        signed = wallet.sign_transaction(0, tx_dict)
    """

    def __init__(self, seed_phrase: str):
        self._seed_phrase: Optional[str] = validate_seed_phrase(seed_phrase)
        self._seed: Optional[bytes] = seed_from_mnemonic(self._seed_phrase, passphrase="")
        self._addresses: dict[int, DerivedAddress] = {}

    @property
    def is_locked(self) -> bool:
        return self._seed is None

    def _require_seed(self) -> bytes:
        if self._seed is None:
            raise RuntimeError("Wallet is locked")
        return self._seed

    def get_private_key(self, index: int) -> bytes:
        """
        Get the private key for an account index.

        WARNING: Handle with extreme care! Only for signing.
        """
        return key_from_seed(self._require_seed(), derivation_path(index))

    def get_account(self, index: int) -> LocalAccount:
        """Get an eth_account LocalAccount for signing."""
        return Account.from_key(self.get_private_key(index))

    def derive_address(self, index: int) -> DerivedAddress:
        """Derive (and memoize) the address at the given index."""
        if index in self._addresses:
            return self._addresses[index]
        account = self.get_account(index)
        derived = DerivedAddress(index=index, path=derivation_path(index), address=account.address)
        self._addresses[index] = derived
        return derived

    def get_address(self, index: int) -> str:
        return self.derive_address(index).address

    @property
    def primary_address(self) -> str:
        """The first (primary) address."""
        return self.get_address(0)

    # ============================================
    # Signing
    # ============================================

    def sign_transaction(self, index: int, tx: dict):
        """Sign a transaction dict. Returns eth_account SignedTransaction."""
        return self.get_account(index).sign_transaction(tx)

    def sign_message(self, index: int, message: str) -> str:
        """EIP-191 personal_sign. Returns 0x-prefixed signature hex."""
        signed = self.get_account(index).sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()

    def verify_message(self, index: int, message: str, signature: str) -> bool:
        """Check that ``signature`` over ``message`` was made by account ``index``."""
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception:
            # Malformed signatures fail verification rather than raising
            return False
        return recovered == self.get_address(index)

    # ============================================
    # Security: Memory Cleanup
    # ============================================

    def lock(self) -> None:
        """Clear the seed from memory. The wallet cannot sign afterwards."""
        self._seed_phrase = None
        self._seed = None

    def __del__(self):
        """Attempt to clear sensitive data on destruction."""
        self.lock()
