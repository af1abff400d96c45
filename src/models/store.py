"""
Session Store - Persistence for payment sessions.

All status changes go through ``transition``, which applies a change function
under the store lock, so a write is rejected rather than overwritten when
another writer already moved the session to a terminal state.

With ``data_dir`` set, sessions are written to ``sessions.json`` after every
change; otherwise the store is memory-only.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, Optional

from errors import SessionNotFoundError
from utils import set_secure_permissions
from .payment_session import PaymentSession, STATUS_PENDING

logger = logging.getLogger(__name__)


class SessionStore:
    """Keyed store of PaymentSession rows with compare-and-set updates."""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self.sessions_file = self.data_dir / "sessions.json" if self.data_dir else None
        self._sessions: dict[str, PaymentSession] = {}
        self._lock = asyncio.Lock()

        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._load()

    def _load(self) -> None:
        """Load sessions from disk."""
        if not self.sessions_file.exists():
            return
        try:
            with open(self.sessions_file, "r") as f:
                data = json.load(f)
            for record in data:
                session = PaymentSession.from_record(record)
                self._sessions[session.session_id] = session
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Failed to load sessions: {e}")

    def _save(self) -> None:
        """Save sessions to disk (atomic replace)."""
        if self.sessions_file is None:
            return
        data = [s.to_record() for s in self._sessions.values()]
        temp_path = self.sessions_file.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(data, f, indent=2)
        temp_path.replace(self.sessions_file)
        set_secure_permissions(self.sessions_file)

    async def insert(self, session: PaymentSession) -> PaymentSession:
        """Insert a new session. Session ids must be unique."""
        async with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Duplicate session id: {session.session_id}")
            self._sessions[session.session_id] = session
            self._save()
        return session

    async def get(self, session_id: str) -> Optional[PaymentSession]:
        return self._sessions.get(session_id)

    async def list_by_status(self, status: str) -> list[PaymentSession]:
        return [s for s in self._sessions.values() if s.status == status]

    async def transition(
        self,
        session_id: str,
        apply: Callable[[PaymentSession], PaymentSession],
    ) -> PaymentSession:
        """
        Atomically read-modify-write one session.

        ``apply`` receives the current row and returns the new row, or raises
        to reject the change (nothing is written in that case).

        Raises:
            SessionNotFoundError: unknown session id
        """
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise SessionNotFoundError(session_id)
            updated = apply(current)
            self._sessions[session_id] = updated
            self._save()
        return updated

    async def list_pending(self) -> list[PaymentSession]:
        return await self.list_by_status(STATUS_PENDING)
