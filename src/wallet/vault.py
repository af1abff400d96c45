"""
Seed Vault - One secret per user id.

Keyed store of wallet rows ``{user_id, seed_phrase, primary_account,
created_at, updated_at}``. Rows live in ``vault.json``; seed phrases are
encrypted at rest (Argon2id + AES-256-GCM) unless the vault is opened with
``NO_PASSWORD_SENTINEL``.

A row is created once at onboarding and afterwards only its
``primary_account`` is updated.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

from errors import WalletExistsError, WalletNotReadyError
from utils import set_secure_permissions, utc_now_iso
from .crypto import (
    NO_PASSWORD_SENTINEL,
    decrypt_seed,
    encrypt_seed,
    generate_seed_phrase,
    validate_seed_phrase,
)

logger = logging.getLogger(__name__)


VAULT_VERSION = 1


@dataclass
class WalletRow:
    """A user's wallet record (seed phrase decrypted)."""
    user_id: str
    seed_phrase: str
    primary_account: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class SeedVault:
    """File-backed store of per-user seed phrases."""

    def __init__(self, vault_dir: str | Path, password: str = NO_PASSWORD_SENTINEL):
        """
        Args:
            vault_dir: Directory holding vault.json
            password: Encryption password, or NO_PASSWORD_SENTINEL for plaintext
        """
        self.vault_dir = Path(vault_dir)
        self.vault_dir.mkdir(parents=True, exist_ok=True)
        self.vault_path = self.vault_dir / "vault.json"
        self._password = password
        self._records: dict[str, dict] = {}
        self._lock = asyncio.Lock()
        self._load()

    @property
    def is_encrypted(self) -> bool:
        return self._password != NO_PASSWORD_SENTINEL

    def _load(self) -> None:
        """Load vault index from disk."""
        if not self.vault_path.exists():
            return
        with open(self.vault_path, "r") as f:
            data = json.load(f)
        if data.get("version") != VAULT_VERSION:
            raise ValueError(f"Unsupported vault version: {data.get('version')}")
        self._records = {r["user_id"]: r for r in data.get("wallets", [])}

    def _save(self) -> None:
        data = {"version": VAULT_VERSION, "wallets": list(self._records.values())}
        temp_path = self.vault_path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(data, f, indent=2)
        temp_path.replace(self.vault_path)
        set_secure_permissions(self.vault_path)

    # ============================================
    # Seed (de)serialization
    # ============================================

    def _seal(self, seed_phrase: str) -> dict:
        if not self.is_encrypted:
            return {"encrypted": False, "seed_phrase": seed_phrase}
        ciphertext, iv, tag, salt = encrypt_seed(seed_phrase, self._password)
        return {
            "encrypted": True,
            "kdf": {"algorithm": "argon2id", "salt": salt.hex()},
            "encrypted_seed": ciphertext.hex(),
            "iv": iv.hex(),
            "tag": tag.hex(),
        }

    def _unseal(self, record: dict) -> str:
        if not record.get("encrypted", True):
            return record["seed_phrase"]
        if not self.is_encrypted:
            raise ValueError("Vault entry is encrypted but no password was given")
        try:
            return decrypt_seed(
                bytes.fromhex(record["encrypted_seed"]),
                bytes.fromhex(record["iv"]),
                bytes.fromhex(record["tag"]),
                bytes.fromhex(record["kdf"]["salt"]),
                self._password,
            )
        except Exception as e:
            raise ValueError("Wrong password or corrupted vault entry") from e

    def _to_row(self, record: dict, seed_phrase: str) -> WalletRow:
        return WalletRow(
            user_id=record["user_id"],
            seed_phrase=seed_phrase,
            primary_account=record.get("primary_account"),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    # ============================================
    # Operations
    # ============================================

    def has_wallet(self, user_id: str) -> bool:
        return user_id in self._records

    async def fetch(self, user_id: str) -> Optional[WalletRow]:
        """Wallet row for a user, or None if they have not onboarded."""
        record = self._records.get(user_id)
        if record is None:
            return None
        # Argon2 is deliberately slow; keep it off the event loop
        seed_phrase = await asyncio.to_thread(self._unseal, record)
        return self._to_row(record, seed_phrase)

    async def upsert(self, row: WalletRow, create_only: bool = False) -> WalletRow:
        """
        Insert or replace a user's row (keyed by user_id).

        Raises:
            WalletExistsError: ``create_only`` and the user already has a row
        """
        seed_phrase = validate_seed_phrase(row.seed_phrase)
        sealed = await asyncio.to_thread(self._seal, seed_phrase)
        async with self._lock:
            if create_only and row.user_id in self._records:
                raise WalletExistsError(f"Wallet already exists for user {row.user_id}")
            now = utc_now_iso()
            existing = self._records.get(row.user_id, {})
            record = {
                "user_id": row.user_id,
                **sealed,
                "primary_account": row.primary_account,
                "created_at": existing.get("created_at") or row.created_at or now,
                "updated_at": now,
            }
            self._records[row.user_id] = record
            self._save()
        return self._to_row(record, seed_phrase)

    async def create_wallet(self, user_id: str, word_count: int = 12) -> WalletRow:
        """
        Generate and store a new secret for a user.

        Raises:
            WalletExistsError: the user already has a secret
        """
        if not user_id:
            raise ValueError("user_id is required")
        if self.has_wallet(user_id):
            raise WalletExistsError(f"Wallet already exists for user {user_id}")
        row = await self.upsert(
            WalletRow(user_id=user_id, seed_phrase=generate_seed_phrase(word_count)),
            create_only=True,
        )
        logger.info(f"Created wallet for user {user_id}")
        return row

    async def update_primary_account(self, user_id: str, primary_account: str) -> None:
        """Refresh the cached primary (index 0) address."""
        async with self._lock:
            record = self._records.get(user_id)
            if record is None:
                raise WalletNotReadyError(f"No wallet for user {user_id}")
            record["primary_account"] = primary_account
            record["updated_at"] = utc_now_iso()
            self._save()
