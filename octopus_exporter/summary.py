"""
Octopus Exporter: Usage Summary Builder

Fans the consumption and carbon aggregators out across all nine windows
and joins the results into one immutable Summary per poll cycle.

Per window:
  electricity kWh ─┐
                   ├─ concurrently
  gas kWh ─────────┘
  carbon grams ──── after electricity (needs its kWh)

Windows run concurrently, bounded by a semaphore. A failed call leaves its
field as None, is logged and counted once, and never stops the other
windows or commodities.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Awaitable, Callable, Iterator, Mapping, Optional

from .carbon import aggregate_carbon
from .clients import Commodity, ConsumptionSource, IntensitySource, MeterPoint
from .consumption import DEFAULT_PAGE_SIZE, aggregate_consumption
from .errors import EmptyIntensityData, ExporterError, IntensityFetchError, ReadingFetchError
from .regions import Region
from .windows import Window, WindowLabel, WindowSet

logger = logging.getLogger("octopus.summary")

RECOVERABLE_ERRORS = (ReadingFetchError, IntensityFetchError, EmptyIntensityData)

ErrorCallback = Callable[[ExporterError], None]


@dataclass(frozen=True, slots=True)
class WindowUsage:
    """Aggregates for one window. None means the value could not be produced."""
    electricity_kwh: Optional[float] = None
    gas_kwh: Optional[float] = None
    carbon_grams: Optional[float] = None


@dataclass(frozen=True)
class Summary:
    generated_at: datetime
    usage: Mapping[WindowLabel, WindowUsage]
    failures: int = 0

    def __getitem__(self, label) -> WindowUsage:
        return self.usage[WindowLabel(label)]

    def __iter__(self) -> Iterator[tuple[WindowLabel, WindowUsage]]:
        for label in WindowLabel:
            yield label, self.usage.get(label, WindowUsage())

    @property
    def complete(self) -> bool:
        return self.failures == 0

    def describe(self, field: str) -> str:
        """One log-friendly line for a WindowUsage field across all windows."""
        parts = []
        for label, usage in self:
            value = getattr(usage, field)
            parts.append(f"{label.value}: {'n/a' if value is None else format(value, '.3f')}")
        return ", ".join(parts)


class SummaryBuilder:
    """Builds a Summary from the two upstream sources for one meter pair."""

    def __init__(
        self,
        consumption: ConsumptionSource,
        intensity: IntensitySource,
        electricity_meter: MeterPoint,
        gas_meter: MeterPoint,
        region: Region,
        max_concurrency: int = 4,
        page_size: int = DEFAULT_PAGE_SIZE,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        if electricity_meter.commodity is not Commodity.ELECTRICITY:
            raise ValueError("electricity_meter must be an electricity meter point")
        if gas_meter.commodity is not Commodity.GAS:
            raise ValueError("gas_meter must be a gas meter point")
        self.consumption = consumption
        self.intensity = intensity
        self.electricity_meter = electricity_meter
        self.gas_meter = gas_meter
        self.region = region
        self.max_concurrency = max(1, max_concurrency)
        self.page_size = page_size
        self.on_error = on_error

    async def build(self, now: datetime, windows: WindowSet) -> Summary:
        """
        Aggregate every window with its end moved to ``now``.

        Only the recoverable per-call errors are absorbed; anything else
        propagates and fails the whole cycle.
        """
        windows = windows.until(now)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        results = await asyncio.gather(
            *(self._build_window(w, semaphore) for w in windows)
        )

        usage = {}
        failures = 0
        for window, (window_usage, window_failures) in zip(windows, results):
            usage[window.label] = window_usage
            failures += window_failures

        return Summary(
            generated_at=now,
            usage=MappingProxyType(usage),
            failures=failures,
        )

    async def _build_window(
        self, window: Window, semaphore: asyncio.Semaphore,
    ) -> tuple[WindowUsage, int]:
        failures = []

        async with semaphore:
            electricity, gas = await asyncio.gather(
                self._attempt(
                    aggregate_consumption(self.consumption, self.electricity_meter, window, self.page_size),
                    failures,
                ),
                self._attempt(
                    aggregate_consumption(self.consumption, self.gas_meter, window, self.page_size),
                    failures,
                ),
            )

            carbon = None
            if electricity is not None:
                carbon = await self._attempt(
                    aggregate_carbon(self.intensity, electricity, self.region, window),
                    failures,
                )
            else:
                logger.debug("carbon %s skipped, no electricity figure", window.label.value)

        return WindowUsage(electricity, gas, carbon), len(failures)

    async def _attempt(self, call: Awaitable[float], failures: list) -> Optional[float]:
        try:
            return await call
        except RECOVERABLE_ERRORS as e:
            logger.warning("%s", e)
            failures.append(e)
            if self.on_error is not None:
                self.on_error(e)
            return None
