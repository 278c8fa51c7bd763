"""
Octopus Exporter: Carbon Aggregator

grams CO2 = electricity kWh over the window x mean regional intensity (gCO2/kWh)

The intensity API takes minute-precision labels (YYYY-MM-DDTHH:MMZ), so
window bounds are truncated to the minute before the call.
"""

import logging
from typing import Sequence

from .clients import IntensitySample, IntensitySource, format_intensity_time
from .errors import EmptyIntensityData, IntensityFetchError
from .regions import Region
from .windows import Window

logger = logging.getLogger("octopus.carbon")


def mean_intensity(samples: Sequence[IntensitySample], window: str) -> float:
    if not samples:
        raise EmptyIntensityData(window)
    return sum(s.intensity for s in samples) / len(samples)


async def aggregate_carbon(
    source: IntensitySource,
    electricity_kwh: float,
    region: Region,
    window: Window,
) -> float:
    """
    Total grams of CO2 attributable to ``electricity_kwh`` used in ``window``.

    Raises IntensityFetchError if the upstream call fails and
    EmptyIntensityData if it returns no samples.
    """
    period_from = format_intensity_time(window.start)
    period_to = format_intensity_time(window.end)

    try:
        samples = await source.list_intensity(region, period_from, period_to)
    except Exception as e:
        raise IntensityFetchError(window.label.value, str(e)) from e

    avg = mean_intensity(samples, window.label.value)
    grams = electricity_kwh * avg
    logger.debug(
        "carbon %s: %d samples, mean %.1f gCO2/kWh, %.1f g for %.3f kWh",
        window.label.value, len(samples), avg, grams, electricity_kwh,
    )
    return grams
