"""Scheduler — the monitor loop and the pending-signal sweep loop.

Each loop fires its tick immediately on start and then every *interval*
seconds.  A tick that is still running when the next one is due causes
that next one to be skipped.  Stopping a loop cancels its timer only; a
tick already in progress runs to completion.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("marketpulse.scheduler")


class PeriodicLoop:
    """Fixed-interval asyncio loop around an async *tick* callable.

    Args:
        name: Label used in log lines and status.
        interval: Seconds between tick starts.
        tick: Zero-argument coroutine function run on every tick.
        sleep: Awaitable delay, replaceable in tests.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[object]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._name = name
        self._interval = interval
        self._tick = tick
        self._sleep = sleep
        self._timer: Optional[asyncio.Task] = None
        self._ticking = False
        self._tick_tasks: set[asyncio.Task] = set()
        self._tick_count = 0
        self._skipped_count = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_ticking(self) -> bool:
        return self._ticking

    def status(self) -> dict:
        return {
            "name": self._name,
            "running": self.is_running,
            "ticking": self._ticking,
            "interval_seconds": self._interval,
            "tick_count": self._tick_count,
            "skipped_count": self._skipped_count,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start the timer; returns ``False`` (and warns) if already running.

        Must be called from inside a running event loop.
        """
        if self.is_running:
            logger.warning("Loop '%s' already running — start ignored", self._name)
            return False
        self._timer = asyncio.create_task(self._run(), name=f"{self._name}-timer")
        logger.info("Loop '%s' started (every %.0fs)", self._name, self._interval)
        return True

    def stop(self) -> bool:
        """Cancel the timer; returns ``False`` if the loop was not running."""
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        logger.info("Loop '%s' stopped", self._name)
        return True

    async def _run(self) -> None:
        while True:
            task = asyncio.create_task(self.run_tick(), name=f"{self._name}-tick")
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await self._sleep(self._interval)

    # ── Tick ─────────────────────────────────────────────────────────────

    async def run_tick(self) -> bool:
        """Run one tick unless another is in progress.

        Returns ``True`` if the tick ran (successfully or not), ``False``
        if it was skipped.  Tick errors are logged, never raised.
        """
        if self._ticking:
            self._skipped_count += 1
            logger.warning("Loop '%s' tick still running — overlapping tick skipped", self._name)
            return False

        self._ticking = True
        self._tick_count += 1
        try:
            await self._tick()
        except Exception as exc:
            logger.error("Loop '%s' tick %d failed: %s", self._name, self._tick_count, exc)
        finally:
            self._ticking = False
        return True


class TradingScheduler:
    """Owns the monitor loop and the sweep loop.

    Args:
        monitor: Object exposing ``async run_cycle()``.
        executor: Object exposing ``async process_pending()``.
        monitor_interval: Seconds between monitor cycles.
        sweep_interval: Seconds between pending-signal sweeps.
        sleep: Awaitable delay, replaceable in tests.
    """

    def __init__(
        self,
        monitor,
        executor,
        monitor_interval: float = 60.0,
        sweep_interval: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.monitor_loop = PeriodicLoop("monitor", monitor_interval, monitor.run_cycle, sleep)
        self.sweep_loop = PeriodicLoop("sweep", sweep_interval, executor.process_pending, sleep)

    def start(self, trading: bool = True) -> None:
        """Start the monitor loop, and the sweep loop when *trading*."""
        self.monitor_loop.start()
        if trading:
            self.sweep_loop.start()

    def stop(self) -> None:
        self.monitor_loop.stop()
        self.sweep_loop.stop()

    def status(self) -> dict:
        return {
            "monitor": self.monitor_loop.status(),
            "sweep": self.sweep_loop.status(),
        }
