"""
Octopus Exporter: Error Types

Only ConfigMissing (and UnknownRegion in strict mode) is fatal, and only at
startup. Everything raised inside a poll cycle is caught at window/commodity
granularity by the summary builder and turned into skip + count + log.
"""

from typing import Optional


class ExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigMissing(ExporterError):
    """Required credentials or meter identifiers are absent."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(
            "Missing required environment variables: " + ", ".join(missing)
        )


class DateConstructionError(ExporterError):
    """A window boundary could not be built from calendar values."""


class UnknownRegion(ExporterError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown carbon intensity region: {name!r}")


class ReadingFetchError(ExporterError):
    """The consumption API call for one commodity/window failed."""

    def __init__(self, commodity: str, window: str, reason: Optional[str] = None) -> None:
        self.commodity = commodity
        self.window = window
        msg = f"Failed to fetch {commodity} readings for window {window}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class IntensityFetchError(ExporterError):
    """The carbon intensity API call for one window failed."""

    def __init__(self, window: str, reason: Optional[str] = None) -> None:
        self.window = window
        msg = f"Failed to fetch carbon intensity for window {window}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class EmptyIntensityData(ExporterError):
    """No intensity samples came back, so there is no mean to take."""

    def __init__(self, window: str) -> None:
        self.window = window
        super().__init__(f"No carbon intensity samples for window {window}")
