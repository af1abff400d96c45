"""
Account Cache - Latest account summaries for a user session.

The snapshot is an immutable mapping replaced in a single assignment, so a
reader sees either the previous refresh or the next one, never a mix. A
failed refresh keeps the previous snapshot. Not a source of truth for
allowance or balance checks that gate a transaction.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, TYPE_CHECKING

from models import AccountSummary
from utils import now_ms

if TYPE_CHECKING:
    from .manager import WalletService

logger = logging.getLogger(__name__)


class AccountCache:
    """In-memory cache of AccountSummary by account index."""

    def __init__(self, wallet_service: "WalletService",
                 indices: Iterable[int] = (0,),
                 token_addresses: Iterable[str] = ()):
        self._service = wallet_service
        self._indices = tuple(sorted(set(indices)))
        self._tokens = tuple(token_addresses)
        self._snapshot: Mapping[int, AccountSummary] = MappingProxyType({})
        self._refreshed_at: Optional[int] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def indices(self) -> tuple[int, ...]:
        return self._indices

    @property
    def token_addresses(self) -> tuple[str, ...]:
        return self._tokens

    def track(self, index: int) -> None:
        """Track another account index from the next refresh on."""
        if index < 0:
            raise ValueError("Account index must be zero or greater")
        if index not in self._indices:
            self._indices = tuple(sorted(self._indices + (index,)))

    async def refresh(self) -> list[AccountSummary]:
        """
        Re-read every tracked account and swap the snapshot.

        Raises:
            NetworkError: any read failed (previous snapshot is kept)
        """
        async with self._refresh_lock:
            summaries = await asyncio.gather(
                *(self._service.get_account_summary(i, self._tokens) for i in self._indices)
            )
            self._snapshot = MappingProxyType({s.index: s for s in summaries})
            self._refreshed_at = now_ms()
        logger.debug(f"Refreshed {len(summaries)} account(s)")
        return list(summaries)

    @property
    def accounts(self) -> list[AccountSummary]:
        """All cached summaries ordered by index."""
        snapshot = self._snapshot
        return [snapshot[i] for i in sorted(snapshot)]

    @property
    def primary_account(self) -> Optional[AccountSummary]:
        return self._snapshot.get(0)

    def get(self, index: int) -> Optional[AccountSummary]:
        return self._snapshot.get(index)

    def token_balance(self, index: int, token: str) -> int:
        summary = self._snapshot.get(index)
        return summary.token_balance(token) if summary else 0

    @property
    def refreshed_at(self) -> Optional[int]:
        return self._refreshed_at

    def clear(self) -> None:
        self._snapshot = MappingProxyType({})
        self._refreshed_at = None
