"""
Session Watcher - Seller-side observation of one payment session.

Two redundant channels report the session status: a push subscription on the
SessionEventBus and a poll loop that asks the session manager every
``poll_interval`` seconds. Their reports are folded as tagged events through
``reduce_event``, where the first terminal status wins. When that happens both
channels are cancelled, each exactly once.

Phases: idle -> observing -> terminal. ``cancel()`` is safe from any phase.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Union

from errors import NetworkError
from models import PaymentSession, is_terminal
from config import POLL_INTERVAL_SECONDS
from .realtime import SessionEventBus
from .sessions import PaymentSessionManager

logger = logging.getLogger(__name__)


class WatcherPhase(Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class PushEvent:
    """Status delivered by the realtime subscription."""
    status: str
    channel = "push"


@dataclass(frozen=True)
class PollEvent:
    """Status read by the poll loop."""
    status: str
    channel = "poll"


ChannelEvent = Union[PushEvent, PollEvent]


@dataclass(frozen=True)
class WatcherState:
    phase: WatcherPhase = WatcherPhase.IDLE
    session_id: Optional[str] = None
    outcome: Optional[str] = None       # "paid" | "expired" once terminal
    decided_by: Optional[str] = None    # channel that delivered the outcome


def reduce_event(state: WatcherState, event: ChannelEvent) -> WatcherState:
    """
    Fold one channel event into the watcher state.

    Non-terminal statuses never change the state. Once terminal, later
    events are ignored; a later event naming a different terminal status is
    logged as an inconsistency.
    """
    if state.phase is WatcherPhase.IDLE:
        return state

    if state.phase is WatcherPhase.TERMINAL:
        if is_terminal(event.status) and event.status != state.outcome:
            logger.warning(
                f"Session {state.session_id}: {event.channel} reported {event.status} "
                f"after {state.decided_by} reported {state.outcome}; keeping {state.outcome}"
            )
        return state

    if is_terminal(event.status):
        return replace(state, phase=WatcherPhase.TERMINAL,
                       outcome=event.status, decided_by=event.channel)
    return state


class ChannelHandle:
    """Cancellation token for one observation channel."""

    def __init__(self, name: str, stop: Callable[[], None]):
        self.name = name
        self._stop = stop
        self.stop_count = 0

    @property
    def cancelled(self) -> bool:
        return self.stop_count > 0

    def cancel(self) -> None:
        """Stop the channel. Only the first call has an effect."""
        if self.stop_count:
            return
        self.stop_count += 1
        self._stop()


def _task_stopper(task: asyncio.Task) -> Callable[[], None]:
    def stop() -> None:
        # The poll task may be the one reaching the terminal state; it exits on its own
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
    return stop


class SessionWatcher:
    """
    Usage:
        watcher = SessionWatcher(manager)
        await watcher.observe(session.session_id)
        outcome = await watcher.wait(timeout=900)   # "paid", "expired" or None
        watcher.cancel()                            # on teardown, always safe
    """

    def __init__(self, manager: PaymentSessionManager,
                 events: Optional[SessionEventBus] = None,
                 poll_interval: float = POLL_INTERVAL_SECONDS,
                 on_terminal: Optional[Callable[[WatcherState], None]] = None):
        self.manager = manager
        self.events = events or manager.events
        self.poll_interval = poll_interval
        self.on_terminal = on_terminal

        self._state = WatcherState()
        self._push: Optional[ChannelHandle] = None
        self._poll: Optional[ChannelHandle] = None
        self._outcome: Optional[asyncio.Future] = None

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def phase(self) -> WatcherPhase:
        return self._state.phase

    @property
    def channels(self) -> tuple[Optional[ChannelHandle], Optional[ChannelHandle]]:
        """(push, poll) handles of the current or last observation."""
        return self._push, self._poll

    async def observe(self, session_id: str) -> None:
        """
        Open both channels for a session.

        Raises:
            RuntimeError: already observing or terminal
        """
        if self._state.phase is not WatcherPhase.IDLE:
            raise RuntimeError(f"Watcher is {self._state.phase.value}, not idle")

        self._state = WatcherState(phase=WatcherPhase.OBSERVING, session_id=session_id)
        self._outcome = asyncio.get_running_loop().create_future()

        subscription = self.events.subscribe(session_id, self._on_push)
        self._push = ChannelHandle("push", subscription.unsubscribe)
        poll_task = asyncio.create_task(self._poll_loop(session_id))
        self._poll = ChannelHandle("poll", _task_stopper(poll_task))
        logger.debug(f"Observing session {session_id}")

    def _on_push(self, session: PaymentSession) -> None:
        self._dispatch(PushEvent(session.status))

    def _dispatch(self, event: ChannelEvent) -> None:
        previous = self._state
        self._state = reduce_event(previous, event)
        if previous.phase is WatcherPhase.OBSERVING and self._state.phase is WatcherPhase.TERMINAL:
            logger.info(
                f"Session {self._state.session_id} {self._state.outcome} "
                f"(via {self._state.decided_by})"
            )
            self._stop_channels()
            if self._outcome is not None and not self._outcome.done():
                self._outcome.set_result(self._state.outcome)
            if self.on_terminal is not None:
                self.on_terminal(self._state)

    async def _poll_loop(self, session_id: str) -> None:
        while self._state.phase is WatcherPhase.OBSERVING:
            try:
                session = await self.manager.refresh_status(session_id)
            except NetworkError as e:
                logger.warning(f"Status poll for {session_id} failed: {e}")
            else:
                if session is None:
                    logger.warning(f"Polled session {session_id} not found")
                else:
                    self._dispatch(PollEvent(session.status))

            if self._state.phase is not WatcherPhase.OBSERVING:
                return
            await asyncio.sleep(self.poll_interval)

    def _stop_channels(self) -> None:
        for handle in (self._push, self._poll):
            if handle is not None:
                handle.cancel()

    def cancel(self) -> None:
        """
        Stop both channels. Idempotent and valid in every phase.

        An observation in progress returns to idle and ``wait()`` resolves
        to None. A terminal outcome is kept.
        """
        self._stop_channels()
        if self._state.phase is WatcherPhase.OBSERVING:
            logger.debug(f"Stopped observing session {self._state.session_id}")
            self._state = WatcherState()
            if self._outcome is not None and not self._outcome.done():
                self._outcome.set_result(None)

    async def wait(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Wait for the terminal outcome.

        Returns:
            "paid" or "expired", or None if the watch was cancelled

        Raises:
            asyncio.TimeoutError: no outcome within ``timeout`` seconds
        """
        if self._outcome is None:
            return self._state.outcome
        return await asyncio.wait_for(asyncio.shield(self._outcome), timeout)
