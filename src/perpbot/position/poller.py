"""Position poller -- tracks an open position until it is closed.

State machine: IDLE -> RUNNING -> STOPPED (and STOPPED -> RUNNING on restart).

While RUNNING, a background task fetches the symbol's positions every
``poll_interval`` seconds and keeps the newest ``history_capacity``
snapshots. When a fetch shows neither a long nor a short position (closed
by stop-loss/take-profit or by hand), the poller stops itself and invokes
the disarm callback exactly once.

A fetch error is logged and polling continues; it is never read as "no
position", so an exchange outage cannot disarm the system.

Cancellation uses one asyncio.Event per run, checked at every suspension
point: stop() sets it and the loop exits before its next scheduled tick
without disarming.
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum

from perpbot.exchange.client import ExchangeClient
from perpbot.exchange.types import Position, PositionSide
from perpbot.logging import get_logger
from perpbot.models import PositionInfo, PositionRecord

logger = get_logger(__name__)

DisarmCallback = Callable[[PositionInfo], Awaitable[None]]


class PollerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class PositionPoller:
    """Background position polling with bounded history.

    Only one polling loop runs per instance: start() checks and transitions
    the state under an asyncio.Lock, so concurrent start() calls spawn a
    single loop. History and state are guarded by the same lock, which is
    never held across an exchange call or the disarm callback.

    Args:
        exchange: Shared exchange client.
        symbol: Symbol whose positions are tracked.
        disarm: Coroutine invoked with the final PositionInfo when the
            position is found closed.
        poll_interval: Seconds between fetches.
        history_capacity: Snapshots retained; the oldest is dropped first.
        clock: Wall clock in seconds, used for ``recorded_at``.
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        symbol: str,
        disarm: DisarmCallback,
        poll_interval: float = 180.0,
        history_capacity: int = 15,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if history_capacity <= 0:
            raise ValueError("history_capacity must be positive")
        self._exchange = exchange
        self._symbol = symbol
        self._disarm = disarm
        self._poll_interval = poll_interval
        self._clock = clock
        self._history: deque[PositionRecord] = deque(maxlen=history_capacity)
        self._state = PollerState.IDLE
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._lock = asyncio.Lock()

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is PollerState.RUNNING

    async def start(self) -> bool:
        """Start polling. No-op while already running.

        Returns:
            True if a new polling loop was started.
        """
        async with self._lock:
            if self._state is PollerState.RUNNING:
                logger.debug("position_poller_already_running", symbol=self._symbol)
                return False
            self._state = PollerState.RUNNING
            self._history.clear()
            stop_event = asyncio.Event()
            self._stop_event = stop_event
            self._task = asyncio.create_task(self._poll_loop(stop_event))

        logger.info(
            "position_poller_started",
            symbol=self._symbol,
            poll_interval=self._poll_interval,
        )
        return True

    async def stop(self) -> None:
        """Signal the loop to exit and clear history. Idempotent."""
        async with self._lock:
            if self._state is not PollerState.RUNNING:
                return
            self._terminate(clear_history=True)
        logger.info("position_poller_stopped", symbol=self._symbol)

    async def join(self) -> None:
        """Wait for the current polling task to finish."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)

    async def history(self) -> list[PositionRecord]:
        """Retained snapshots, oldest first."""
        async with self._lock:
            return list(self._history)

    async def history_for(self, symbol: str, side: PositionSide) -> list[Position]:
        """Every retained position leg matching ``symbol`` and ``side``, oldest first."""
        async with self._lock:
            return [
                p
                for record in self._history
                for p in record.positions
                if p.symbol == symbol and p.position_side is side
            ]

    def _terminate(self, clear_history: bool) -> None:
        # Caller holds self._lock.
        self._state = PollerState.STOPPED
        if self._stop_event is not None:
            self._stop_event.set()
            self._stop_event = None
        if clear_history:
            self._history.clear()

    async def _poll_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            positions: list[Position] | None
            try:
                positions = await self._exchange.fetch_positions(self._symbol)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("position_poll_error", symbol=self._symbol, error=str(exc))
                positions = None

            if positions is not None:
                info = PositionInfo.from_positions(positions, now=self._clock())
                closed = False
                async with self._lock:
                    if stop_event.is_set():
                        break
                    if not info.has_position:
                        self._terminate(clear_history=True)
                        closed = True
                    else:
                        self._history.append(
                            PositionRecord(positions, info, recorded_at=self._clock())
                        )

                if closed:
                    logger.info("position_closed_disarming", symbol=self._symbol)
                    await self._invoke_disarm(info)
                    return

                logger.info(
                    "position_polled",
                    symbol=self._symbol,
                    side="short" if info.has_short else "long",
                    unrealized_pnl=str(info.unrealized_pnl),
                )

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                continue

        logger.info("position_poller_cancelled", symbol=self._symbol)

    async def _invoke_disarm(self, info: PositionInfo) -> None:
        try:
            await self._disarm(info)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error("disarm_callback_failed", symbol=self._symbol, exc_info=True)
