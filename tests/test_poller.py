import asyncio
from datetime import timedelta

import pytest
from conftest import ELECTRICITY_METER, GAS_METER, FakeConsumption

from octopus_exporter.clients import Commodity
from octopus_exporter.metrics import ExporterMetrics, gauge_name
from octopus_exporter.poller import PollLoop, PollState
from octopus_exporter.regions import Region
from octopus_exporter.summary import SummaryBuilder
from octopus_exporter.windows import WindowLabel


def sample(metrics: ExporterMetrics, label, field):
    return metrics.registry.get_sample_value(gauge_name(WindowLabel(label), field))


def errors(metrics: ExporterMetrics):
    return metrics.registry.get_sample_value("carbon_service_errors_total")


class StepClock:
    def __init__(self, start, step=timedelta(hours=1)):
        self.current = start
        self.step = step

    def __call__(self):
        value = self.current
        self.current += self.step
        return value


@pytest.mark.asyncio
async def test_cycle_with_one_gas_failure_publishes_everything_else(builder, consumption, metrics, now, windows):
    consumption.fail.add((Commodity.GAS, windows["3m"].start))
    poller = PollLoop(builder, metrics, interval=60, windows=windows, clock=lambda: now)

    summary = await poller.run_once()

    assert summary is not None
    assert poller.state is PollState.PUBLISHING
    for label in WindowLabel:
        assert sample(metrics, label, "electricity_kwh") == pytest.approx(3.0)
        assert sample(metrics, label, "carbon_grams") == pytest.approx(1000.0)
        if label is not WindowLabel.THREE_MONTHS:
            assert sample(metrics, label, "gas_kwh") == pytest.approx(3.0)
    assert sample(metrics, "3m", "gas_kwh") == 0.0
    assert errors(metrics) == 1.0
    assert metrics.registry.get_sample_value(
        "octopus_exporter_last_success_timestamp_seconds"
    ) == pytest.approx(now.timestamp())


@pytest.mark.asyncio
async def test_failed_value_keeps_previous_gauge(builder, consumption, metrics, now, windows):
    poller = PollLoop(builder, metrics, interval=60, windows=windows, clock=lambda: now)
    await poller.run_once()
    assert sample(metrics, "3m", "gas_kwh") == pytest.approx(3.0)

    consumption.values[Commodity.GAS] = [5.0]
    consumption.fail.add((Commodity.GAS, windows["3m"].start))
    await poller.run_once()

    assert sample(metrics, "3m", "gas_kwh") == pytest.approx(3.0)
    assert sample(metrics, "6m", "gas_kwh") == pytest.approx(5.0)
    assert errors(metrics) == 1.0


@pytest.mark.asyncio
async def test_whole_cycle_failure_counts_and_skips_publish(metrics, now, windows):
    class FailingBuilder:
        async def build(self, now, windows):
            raise RuntimeError("unexpected")

    poller = PollLoop(FailingBuilder(), metrics, interval=60, windows=windows, clock=lambda: now)
    assert await poller.run_once() is None
    assert errors(metrics) == 1.0
    assert poller.failed_cycles == 1
    assert metrics.registry.get_sample_value("octopus_exporter_last_success_timestamp_seconds") == 0.0


@pytest.mark.asyncio
async def test_run_timeout_wins_over_sleep(builder, metrics):
    poller = PollLoop(builder, metrics, interval=3600, run_timeout=0.05)

    await asyncio.wait_for(poller.run(), timeout=5)

    assert poller.timed_out
    assert poller.state is PollState.STOPPED
    assert poller.cycles == 1


@pytest.mark.asyncio
async def test_short_interval_runs_several_cycles(builder, metrics):
    poller = PollLoop(builder, metrics, interval=0.01, run_timeout=0.2)
    await asyncio.wait_for(poller.run(), timeout=5)
    assert poller.cycles >= 2
    assert poller.state is PollState.STOPPED


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_fetch(metrics, now):
    started = asyncio.Event()

    class SlowBuilder:
        async def build(self, now, windows):
            started.set()
            await asyncio.sleep(30)

    poller = PollLoop(SlowBuilder(), metrics, interval=60, clock=lambda: now)
    task = asyncio.create_task(poller.run())
    await started.wait()
    poller.stop()
    await asyncio.wait_for(task, timeout=5)

    assert poller.cycles == 0
    assert poller.state is PollState.STOPPED
    assert metrics.registry.get_sample_value("octopus_exporter_last_success_timestamp_seconds") == 0.0


@pytest.mark.asyncio
async def test_window_starts_fixed_for_the_whole_run(builder, consumption, metrics, now):
    clock = StepClock(now)
    poller = PollLoop(builder, metrics, interval=60, clock=clock)
    await poller.run_once()
    await poller.run_once()

    first, second = consumption.calls[:18], consumption.calls[18:]
    assert {c["period_from"] for c in first} == {c["period_from"] for c in second}
    assert {c["period_to"] for c in first} != {c["period_to"] for c in second}


@pytest.mark.asyncio
async def test_rolling_windows_recompute_starts(intensity, metrics, now):
    consumption = FakeConsumption()
    builder = SummaryBuilder(consumption, intensity, ELECTRICITY_METER, GAS_METER, Region.ENGLAND)
    poller = PollLoop(builder, metrics, interval=60, rolling_windows=True, clock=StepClock(now))
    await poller.run_once()
    await poller.run_once()

    first = {c["period_from"] for c in consumption.calls[:18]}
    second = {c["period_from"] for c in consumption.calls[18:]}
    assert now - timedelta(days=2) in first
    assert now + timedelta(hours=1) - timedelta(days=2) in second


@pytest.mark.asyncio
async def test_full_outage_leaves_freshness_gauge_alone(builder, consumption, intensity, metrics, now, windows):
    poller = PollLoop(builder, metrics, interval=60, windows=windows, clock=lambda: now)
    await poller.run_once()
    fresh = metrics.registry.get_sample_value("octopus_exporter_last_success_timestamp_seconds")
    assert fresh == pytest.approx(now.timestamp())

    consumption.fail.update(
        (commodity, window.start) for commodity in Commodity for window in windows
    )
    intensity.fail = True
    poller.clock = lambda: now + timedelta(hours=1)
    summary = await poller.run_once()

    assert summary.failures == 18
    assert errors(metrics) == 18.0
    assert metrics.registry.get_sample_value(
        "octopus_exporter_last_success_timestamp_seconds"
    ) == fresh
    assert sample(metrics, "1w", "electricity_kwh") == pytest.approx(3.0)
