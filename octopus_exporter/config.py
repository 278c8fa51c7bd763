"""
Octopus Exporter: Configuration

Credentials and tuning come from the environment (or a .env file) via
pydantic-settings; interval, timeout and region come from CLI flags.
Both are resolved once at startup into a frozen ExporterConfig.
"""

import argparse
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .clients import CARBON_INTENSITY_BASE_URL, OCTOPUS_BASE_URL, Commodity, MeterPoint
from .errors import ConfigMissing
from .regions import DEFAULT_REGION, Region, map_region

DEFAULT_INTERVAL_S = 1800
DEFAULT_TIMEOUT_S = 0


class Settings(BaseSettings):
    """All environment-sourced settings."""

    # ── Octopus credentials (required) ───────────────────────────────────
    OCTOPUS_API_KEY: str = Field(min_length=1)
    MPAN: str = Field(min_length=1)
    E_SERIAL_NO: str = Field(min_length=1)
    MPRN: str = Field(min_length=1)
    G_SERIAL_NO: str = Field(min_length=1)

    # ── Upstream APIs ────────────────────────────────────────────────────
    OCTOPUS_BASE_URL: str = OCTOPUS_BASE_URL
    CARBON_INTENSITY_BASE_URL: str = CARBON_INTENSITY_BASE_URL
    HTTP_TIMEOUT: float = 30.0
    PAGE_SIZE: int = Field(default=10000, ge=1, le=25000)
    MAX_PAGES: int = Field(default=10, ge=1)
    MAX_CONCURRENCY: int = Field(default=4, ge=1, le=16)

    # ── Windows ──────────────────────────────────────────────────────────
    ROLLING_WINDOWS: bool = False  # recompute window starts every cycle

    # ── Observability ────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    METRICS_HOST: str = "0.0.0.0"
    METRICS_PORT: int = 9090

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@dataclass(frozen=True)
class ExporterConfig:
    """Resolved, immutable configuration handed to the poll loop."""
    poll_interval: float
    run_timeout: Optional[float]
    region: Region
    api_key: str = field(repr=False)
    electricity_meter: MeterPoint
    gas_meter: MeterPoint
    metrics_host: str = "0.0.0.0"
    metrics_port: int = 9090
    log_level: str = "INFO"
    max_concurrency: int = 4
    page_size: int = 10000
    max_pages: int = 10
    http_timeout: float = 30.0
    rolling_windows: bool = False
    octopus_base_url: str = OCTOPUS_BASE_URL
    carbon_intensity_base_url: str = CARBON_INTENSITY_BASE_URL


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="octopus-exporter",
        description="Prometheus exporter for Octopus Energy usage and grid carbon intensity",
    )
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT_S,
                        help="Stop after this many seconds (0 = run forever)")
    parser.add_argument("--interval", type=int, default=DEFAULT_INTERVAL_S,
                        help="Seconds between polls")
    parser.add_argument("--region", type=str, default=DEFAULT_REGION.display_name,
                        help="Carbon intensity region, e.g. 'North West England'")
    parser.add_argument("--strict-region", action="store_true",
                        help="Fail on an unknown region instead of falling back to England")
    parser.add_argument("--port", type=int, default=None,
                        help="Metrics port (overrides METRICS_PORT)")
    parser.add_argument("--log-level", type=str, default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def load_settings(**overrides) -> Settings:
    """Load Settings, turning missing/invalid variables into ConfigMissing."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        fields = []
        for err in e.errors():
            name = str(err["loc"][0]) if err.get("loc") else "?"
            if name not in fields:
                fields.append(name)
        raise ConfigMissing(fields) from e


def load_config(argv: Optional[Sequence[str]] = None, **settings_overrides) -> ExporterConfig:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.interval <= 0:
        parser.error("--interval must be positive")
    if args.timeout < 0:
        parser.error("--timeout must be >= 0")

    settings = load_settings(**settings_overrides)

    # UnknownRegion propagates in strict mode
    region = map_region(args.region, strict=args.strict_region)

    log_level = (args.log_level or settings.LOG_LEVEL).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        log_level = "INFO"

    return ExporterConfig(
        poll_interval=float(args.interval),
        run_timeout=float(args.timeout) if args.timeout > 0 else None,
        region=region,
        api_key=settings.OCTOPUS_API_KEY,
        electricity_meter=MeterPoint(Commodity.ELECTRICITY, settings.MPAN, settings.E_SERIAL_NO),
        gas_meter=MeterPoint(Commodity.GAS, settings.MPRN, settings.G_SERIAL_NO),
        metrics_host=settings.METRICS_HOST,
        metrics_port=args.port if args.port is not None else settings.METRICS_PORT,
        log_level=log_level,
        max_concurrency=settings.MAX_CONCURRENCY,
        page_size=settings.PAGE_SIZE,
        max_pages=settings.MAX_PAGES,
        http_timeout=settings.HTTP_TIMEOUT,
        rolling_windows=settings.ROLLING_WINDOWS,
        octopus_base_url=settings.OCTOPUS_BASE_URL,
        carbon_intensity_base_url=settings.CARBON_INTENSITY_BASE_URL,
    )
