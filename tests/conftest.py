import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from octopus_exporter.clients import Commodity, IntensitySample, MeterPoint, Reading
from octopus_exporter.metrics import ExporterMetrics
from octopus_exporter.regions import Region
from octopus_exporter.summary import SummaryBuilder
from octopus_exporter.windows import compute_windows

NOW = datetime(2025, 3, 15, 12, 34, 56, tzinfo=timezone.utc)

ELECTRICITY_METER = MeterPoint(Commodity.ELECTRICITY, "1200000000001", "E1S0001")
GAS_METER = MeterPoint(Commodity.GAS, "3000000001", "G4S0001")


def make_readings(values):
    start = datetime(2025, 3, 1, tzinfo=timezone.utc)
    return [
        Reading(
            interval_start=start + timedelta(hours=i),
            interval_end=start + timedelta(hours=i + 1),
            consumption=v,
        )
        for i, v in enumerate(values)
    ]


def make_samples(values):
    start = datetime(2025, 3, 1, tzinfo=timezone.utc)
    return [
        IntensitySample(
            start=start + timedelta(minutes=30 * i),
            end=start + timedelta(minutes=30 * (i + 1)),
            intensity=float(v),
        )
        for i, v in enumerate(values)
    ]


class FakeConsumption:
    """
    In-memory ConsumptionSource. ``fail`` is a set of (commodity, period_from)
    pairs that raise instead of returning readings.
    """

    def __init__(self, electricity=(1.0, 2.0), gas=(3.0,), fail=(), delay=0.0):
        self.values = {Commodity.ELECTRICITY: list(electricity), Commodity.GAS: list(gas)}
        self.fail = set(fail)
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def list_consumption(self, meter, period_from, period_to, group_by="hour", page_size=10000):
        self.calls.append({
            "meter": meter,
            "period_from": period_from,
            "period_to": period_to,
            "group_by": group_by,
            "page_size": page_size,
        })
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if (meter.commodity, period_from) in self.fail:
                raise ConnectionError(f"{meter.commodity.value} upstream unavailable")
            return make_readings(self.values[meter.commodity])
        finally:
            self.in_flight -= 1


class FakeIntensity:
    def __init__(self, values=(200, 300, 500), fail=False):
        self.values = list(values)
        self.fail = fail
        self.calls = []

    async def list_intensity(self, region, period_from, period_to):
        self.calls.append((region, period_from, period_to))
        if self.fail:
            raise ConnectionError("carbon intensity upstream unavailable")
        return make_samples(self.values)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def windows(now):
    return compute_windows(now)


@pytest.fixture
def metrics():
    return ExporterMetrics()


@pytest.fixture
def consumption():
    return FakeConsumption()


@pytest.fixture
def intensity():
    return FakeIntensity()


@pytest.fixture
def builder(consumption, intensity, metrics):
    return SummaryBuilder(
        consumption=consumption,
        intensity=intensity,
        electricity_meter=ELECTRICITY_METER,
        gas_meter=GAS_METER,
        region=Region.ENGLAND,
        on_error=metrics.record_error,
    )
