"""
Octopus Exporter: Consumption Aggregator

Sums hourly consumption readings for one commodity over one window.
"""

import logging

from .clients import ConsumptionSource, MeterPoint
from .errors import ReadingFetchError
from .windows import Window

logger = logging.getLogger("octopus.consumption")

GROUP_BY = "hour"
DEFAULT_PAGE_SIZE = 10000


async def aggregate_consumption(
    source: ConsumptionSource,
    meter: MeterPoint,
    window: Window,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> float:
    """
    Total kWh for ``meter`` over ``window``.

    An empty result set is 0.0. Any failure of the upstream call is raised
    as ReadingFetchError tagged with the commodity and window label.
    """
    try:
        readings = await source.list_consumption(
            meter,
            period_from=window.start,
            period_to=window.end,
            group_by=GROUP_BY,
            page_size=page_size,
        )
    except Exception as e:
        raise ReadingFetchError(meter.commodity.value, window.label.value, str(e)) from e

    total = sum((r.consumption for r in readings), 0.0)
    logger.debug(
        "%s %s: %d readings, %.3f kWh",
        meter.commodity.value, window.label.value, len(readings), total,
    )
    return total
