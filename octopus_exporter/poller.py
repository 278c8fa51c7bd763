"""
Octopus Exporter: Poll Loop

    IDLE ──→ FETCHING ──→ PUBLISHING ──→ SLEEPING ──┐
                 ▲                                  │
                 └──────────────────────────────────┘
    any state ──(run timeout / stop())──→ STOPPED

Window starts are computed once when the loop starts and reused by every
cycle (each cycle moves the window ends to its own "now"), unless
rolling_windows is set.

A fetch in flight when the stop signal fires is cancelled and nothing is
published for that cycle. Publishing itself never awaits, so it cannot be
cut in half.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from .metrics import ExporterMetrics
from .summary import Summary, SummaryBuilder
from .windows import WindowSet, compute_windows

logger = logging.getLogger("octopus.poller")


class PollState(str, Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    PUBLISHING = "PUBLISHING"
    SLEEPING = "SLEEPING"
    STOPPED = "STOPPED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollLoop:
    """Drives the summary builder on a fixed interval and publishes into the registry."""

    def __init__(
        self,
        builder: SummaryBuilder,
        metrics: ExporterMetrics,
        interval: float,
        run_timeout: Optional[float] = None,
        windows: Optional[WindowSet] = None,
        rolling_windows: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.builder = builder
        self.metrics = metrics
        self.interval = interval
        self.run_timeout = run_timeout
        self.windows = windows
        self.rolling_windows = rolling_windows
        self.clock = clock

        self.state = PollState.IDLE
        self.cycles = 0
        self.failed_cycles = 0
        self.timed_out = False
        self._stop = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Request shutdown; safe to call from a signal handler."""
        if not self._stop.is_set():
            logger.info("Stop requested")
            self._stop.set()

    def _on_timeout(self) -> None:
        logger.info("Run timeout of %ss elapsed", self.run_timeout)
        self.timed_out = True
        self.stop()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        timeout_handle = None
        if self.run_timeout:
            timeout_handle = loop.call_later(self.run_timeout, self._on_timeout)

        if self.windows is None:
            self.windows = compute_windows(self.clock())
        for window in self.windows:
            logger.info("Window %s starts %s", window.label.value, window.start.isoformat())

        try:
            while not self.stopped:
                await self.run_once()
                if self.stopped:
                    break
                await self._sleep()
        finally:
            if timeout_handle is not None:
                timeout_handle.cancel()
            self.state = PollState.STOPPED
            logger.info(
                "Poll loop stopped after %d cycles (%d failed)",
                self.cycles, self.failed_cycles,
            )

    async def run_once(self) -> Optional[Summary]:
        """One FETCHING → PUBLISHING pass. Returns the published Summary, if any."""
        self.state = PollState.FETCHING
        now = self.clock()
        if self.rolling_windows or self.windows is None:
            self.windows = compute_windows(now)

        fetch = asyncio.create_task(self.builder.build(now, self.windows))
        stop_wait = asyncio.create_task(self._stop.wait())
        done, _ = await asyncio.wait({fetch, stop_wait}, return_when=asyncio.FIRST_COMPLETED)

        if fetch not in done:
            logger.info("Fetch cancelled by stop signal")
            fetch.cancel()
            await asyncio.gather(fetch, return_exceptions=True)
            return None
        stop_wait.cancel()

        self.cycles += 1
        try:
            summary = fetch.result()
        except Exception:
            logger.exception("Poll cycle failed, keeping previous metric values")
            self.failed_cycles += 1
            self.metrics.record_error()
            return None

        self.state = PollState.PUBLISHING
        written = self.metrics.publish(summary)
        logger.info("Electricity usage kWh: %s", summary.describe("electricity_kwh"))
        logger.info("Gas usage kWh: %s", summary.describe("gas_kwh"))
        logger.info("Carbon grams: %s", summary.describe("carbon_grams"))
        if summary.failures:
            logger.warning(
                "Published %d gauges, %d upstream errors this cycle",
                written, summary.failures,
            )
        return summary

    async def _sleep(self) -> None:
        self.state = PollState.SLEEPING
        logger.debug("Sleeping for %ss before next poll", self.interval)
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass
