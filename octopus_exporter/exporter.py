"""
Octopus Exporter: Main Service

Wires configuration, upstream clients, the metrics registry, the HTTP
server and the poll loop together, and owns their lifecycle.

Architecture:
  Octopus API ─────────┐
                       ├──→ SummaryBuilder ──→ PollLoop ──→ ExporterMetrics
  Carbon Intensity API ┘                                        │
                                                                ▼
                                              aiohttp  GET /metrics, /health

Exit codes: 0 on normal or timeout shutdown, 1 when credentials are missing.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from .clients import CarbonIntensityClient, OctopusClient
from .config import ExporterConfig, load_config
from .errors import ConfigMissing, UnknownRegion
from .metrics import ExporterMetrics, start_metrics_server
from .poller import PollLoop
from .summary import SummaryBuilder

logger = logging.getLogger("octopus.exporter")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    # one line per request is noise at poll-interval scrape rates
    logging.getLogger("httpx").setLevel(logging.WARNING)


class OctopusExporter:
    """Owns the registry, clients, server and poll loop for one process."""

    def __init__(
        self,
        config: ExporterConfig,
        metrics: Optional[ExporterMetrics] = None,
        octopus: Optional[OctopusClient] = None,
        carbon: Optional[CarbonIntensityClient] = None,
    ) -> None:
        self.config = config
        self.metrics = metrics or ExporterMetrics()
        self.octopus = octopus or OctopusClient(
            config.api_key,
            base_url=config.octopus_base_url,
            timeout=config.http_timeout,
            max_pages=config.max_pages,
        )
        self.carbon = carbon or CarbonIntensityClient(
            base_url=config.carbon_intensity_base_url,
            timeout=config.http_timeout,
        )
        self.builder = SummaryBuilder(
            consumption=self.octopus,
            intensity=self.carbon,
            electricity_meter=config.electricity_meter,
            gas_meter=config.gas_meter,
            region=config.region,
            max_concurrency=config.max_concurrency,
            page_size=config.page_size,
            on_error=self.metrics.record_error,
        )
        self.poller = PollLoop(
            self.builder,
            self.metrics,
            interval=config.poll_interval,
            run_timeout=config.run_timeout,
            rolling_windows=config.rolling_windows,
        )
        self._runner = None

    async def start(self) -> None:
        """Serve /metrics and run the poll loop until it stops."""
        logger.info("=" * 60)
        logger.info("Octopus exporter starting")
        logger.info("=" * 60)
        logger.info(
            "interval=%ss timeout=%s region=%s (regionid %d)",
            int(self.config.poll_interval),
            f"{int(self.config.run_timeout)}s" if self.config.run_timeout else "none",
            self.config.region.display_name,
            self.config.region.region_id,
        )

        self._runner = await start_metrics_server(
            self.metrics, self.config.metrics_host, self.config.metrics_port,
        )
        try:
            await self.poller.run()
        finally:
            await self.stop()

    def request_stop(self) -> None:
        self.poller.stop()

    async def stop(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down...")
        self.poller.stop()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.octopus.close()
        await self.carbon.close()
        logger.info("Shutdown complete")


async def run(config: ExporterConfig) -> int:
    exporter = OctopusExporter(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, exporter.request_stop)
        except (NotImplementedError, AttributeError):
            pass

    await exporter.start()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the console script and ``python -m octopus_exporter``."""
    try:
        config = load_config(argv)
    except (ConfigMissing, UnknownRegion) as e:
        configure_logging()
        logger.error("%s", e)
        return 1

    configure_logging(config.log_level)
    return asyncio.run(run(config))


if __name__ == "__main__":
    sys.exit(main())
