"""
Wallet Session - The user-scoped wallet context.

Created explicitly for one signed-in user and passed to whoever needs it.
Loads the user's secret from the vault, owns the WalletService and
AccountCache built from it, and refreshes the cache after every mutation.
"""

import logging
from typing import Iterable, Optional

from errors import ConfirmationTimeoutError, NetworkError, WalletNotReadyError
from models import AccountSummary, FeeParams, TransactionResult
from networks import DEFAULT_TRANSFER_MAX_FEE
from services.chain import ChainClient
from .cache import AccountCache
from .manager import WalletService, DEFAULT_CONFIRMATION_TIMEOUT
from .vault import SeedVault, WalletRow

logger = logging.getLogger(__name__)


class WalletSession:
    """
    Usage:
        session = WalletSession(user_id, vault, chain, token_addresses=[usdc])
        await session.open()          # False if the user has no wallet yet
        await session.create_wallet() # onboarding
        await session.transfer_token(0, usdc, recipient, 5_000_000)
        await session.close()
    """

    def __init__(self, user_id: str, vault: SeedVault, chain: ChainClient,
                 token_addresses: Iterable[str] = (),
                 transfer_max_fee: int = DEFAULT_TRANSFER_MAX_FEE,
                 confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT):
        self.user_id = user_id
        self.vault = vault
        self.chain = chain
        self.token_addresses = tuple(token_addresses)
        self.transfer_max_fee = transfer_max_fee
        self.confirmation_timeout = confirmation_timeout

        self._row: Optional[WalletRow] = None
        self._service: Optional[WalletService] = None
        self._cache: Optional[AccountCache] = None

    # ============================================
    # Lifecycle
    # ============================================

    @property
    def is_ready(self) -> bool:
        return self._service is not None

    @property
    def service(self) -> WalletService:
        if self._service is None:
            raise WalletNotReadyError(f"No wallet loaded for user {self.user_id}")
        return self._service

    @property
    def cache(self) -> AccountCache:
        if self._cache is None:
            raise WalletNotReadyError(f"No wallet loaded for user {self.user_id}")
        return self._cache

    def _attach(self, row: WalletRow) -> None:
        self._row = row
        self._service = WalletService(
            row.seed_phrase,
            self.chain,
            transfer_max_fee=self.transfer_max_fee,
            confirmation_timeout=self.confirmation_timeout,
        )
        self._cache = AccountCache(self._service, indices=(0,),
                                   token_addresses=self.token_addresses)

    async def open(self) -> bool:
        """
        Load the user's wallet from the vault and do a first refresh.

        Returns:
            False when the user has not onboarded yet (no secret stored)
        """
        row = await self.vault.fetch(self.user_id)
        if row is None:
            logger.info(f"No wallet for user {self.user_id}")
            return False
        self._attach(row)
        await self.refresh()
        return True

    async def create_wallet(self, word_count: int = 12) -> str:
        """
        Onboard the user with a new secret. Returns the primary address.

        Raises:
            WalletExistsError: the user already has one
        """
        row = await self.vault.create_wallet(self.user_id, word_count)
        self._attach(row)
        await self.refresh()
        return self.service.get_address(0)

    async def close(self) -> None:
        """Drop key material and cached balances."""
        if self._cache is not None:
            self._cache.clear()
        if self._service is not None:
            self._service.dispose()
        self._row = None
        self._service = None
        self._cache = None

    # ============================================
    # Balances
    # ============================================

    async def refresh(self) -> list[AccountSummary]:
        """
        Re-read tracked accounts. Also stores the primary address on the
        wallet row when it changed. A failed read is logged and the previous
        snapshot is kept.
        """
        try:
            summaries = await self.cache.refresh()
        except NetworkError as e:
            logger.warning(f"Balance refresh failed for user {self.user_id}: {e}")
            return self.cache.accounts

        primary = self.service.get_address(0)
        if self._row is not None and self._row.primary_account != primary:
            try:
                await self.vault.update_primary_account(self.user_id, primary)
                self._row.primary_account = primary
            except Exception as e:
                logger.warning(f"Failed to store primary account for {self.user_id}: {e}")
        return summaries

    @property
    def accounts(self) -> list[AccountSummary]:
        return self.cache.accounts

    @property
    def primary_account(self) -> Optional[AccountSummary]:
        return self.cache.primary_account

    # ============================================
    # Mutations
    # ============================================

    async def _settle(self, result: TransactionResult) -> TransactionResult:
        """
        Wait for the receipt (a timeout is not fatal), then refresh.

        The refresh also runs when the transaction reverted; the
        TransactionFailedError is re-raised afterwards.
        """
        try:
            await self.service.wait_for_confirmation(result.hash, self.confirmation_timeout)
        except ConfirmationTimeoutError as e:
            logger.warning(f"{e}; refreshing anyway")
        finally:
            await self.refresh()
        return result

    async def send_native(self, index: int, to: str, value: int,
                          fee_params: Optional[FeeParams] = None) -> TransactionResult:
        self.cache.track(index)
        result = await self.service.send_native_transaction(index, to, value, fee_params)
        return await self._settle(result)

    async def transfer_token(self, index: int, token: str, recipient: str,
                             amount: int) -> TransactionResult:
        self.cache.track(index)
        result = await self.service.transfer_token(index, token, recipient, amount)
        return await self._settle(result)

    async def call_contract(self, index: int, to: str, data: str, value: int = 0,
                            fee_params: Optional[FeeParams] = None) -> TransactionResult:
        self.cache.track(index)
        result = await self.service.send_contract_transaction(index, to, data, value, fee_params)
        return await self._settle(result)
