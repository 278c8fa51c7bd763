import logging

import pytest

from octopus_exporter.errors import UnknownRegion
from octopus_exporter.regions import DEFAULT_REGION, Region, map_region


def test_known_names():
    assert map_region("England") is Region.ENGLAND
    assert map_region("South Wales") is Region.SOUTH_WALES
    assert map_region("North West England") is Region.NORTH_WEST_ENGLAND


def test_all_seventeen_regions_round_trip_by_display_name():
    assert len(Region) == 17
    assert sorted(r.region_id for r in Region) == list(range(1, 18))
    for region in Region:
        assert map_region(region.display_name) is region


def test_unknown_name_falls_back_to_england_with_warning(caplog):
    # Flagged behaviour: a typo silently reports England's intensity.
    with caplog.at_level(logging.WARNING, logger="octopus.regions"):
        region = map_region("Atlantis")
    assert region is DEFAULT_REGION is Region.ENGLAND
    assert "Atlantis" in caplog.text


def test_match_is_case_sensitive(caplog):
    with caplog.at_level(logging.WARNING, logger="octopus.regions"):
        assert map_region("south wales") is Region.ENGLAND
    assert caplog.records


def test_strict_mode_raises():
    with pytest.raises(UnknownRegion) as exc:
        map_region("Atlantis", strict=True)
    assert exc.value.name == "Atlantis"
