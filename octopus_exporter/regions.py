"""
Octopus Exporter: Region Mapper

GB carbon intensity regions as published by the National Grid ESO API
(regionid 1-14 are DNO regions, 15-17 are the national aggregates).
"""

import logging
from enum import Enum

from .errors import UnknownRegion

logger = logging.getLogger("octopus.regions")


class Region(Enum):
    """(regionid, display name) for each of the 17 API regions."""
    NORTH_SCOTLAND = (1, "North Scotland")
    SOUTH_SCOTLAND = (2, "South Scotland")
    NORTH_WEST_ENGLAND = (3, "North West England")
    NORTH_EAST_ENGLAND = (4, "North East England")
    YORKSHIRE = (5, "Yorkshire")
    NORTH_WALES_MERSEYSIDE = (6, "North Wales & Merseyside")
    SOUTH_WALES = (7, "South Wales")
    WEST_MIDLANDS = (8, "West Midlands")
    EAST_MIDLANDS = (9, "East Midlands")
    EAST_ENGLAND = (10, "East England")
    SOUTH_WEST_ENGLAND = (11, "South West England")
    SOUTH_ENGLAND = (12, "South England")
    LONDON = (13, "London")
    SOUTH_EAST_ENGLAND = (14, "South East England")
    ENGLAND = (15, "England")
    SCOTLAND = (16, "Scotland")
    WALES = (17, "Wales")

    @property
    def region_id(self) -> int:
        return self.value[0]

    @property
    def display_name(self) -> str:
        return self.value[1]

    def __str__(self) -> str:
        return self.display_name


DEFAULT_REGION = Region.ENGLAND

_BY_NAME = {r.display_name: r for r in Region}


def map_region(name: str, strict: bool = False) -> Region:
    """
    Resolve a display name (exact, case-sensitive) to a Region.

    Unknown names fall back to England with a warning, unless ``strict``
    is set, in which case UnknownRegion is raised.
    """
    region = _BY_NAME.get(name)
    if region is not None:
        return region

    if strict:
        raise UnknownRegion(name)

    logger.warning(
        "Unknown region %r, falling back to %s. Known regions: %s",
        name, DEFAULT_REGION.display_name, ", ".join(_BY_NAME),
    )
    return DEFAULT_REGION
