"""
Octopus Exporter: Metrics

Owns the Prometheus registry shared by the poll loop (writer) and the HTTP
handlers (reader), and serves it on /metrics alongside a /health probe.

The registry is an explicit object rather than module globals, created once
at startup and passed to both consumers.
"""

import logging
from typing import Optional

from aiohttp import web
from prometheus_client import CollectorRegistry, Counter, Gauge, disable_created_metrics, generate_latest

from .errors import ExporterError
from .summary import Summary
from .windows import WindowLabel

logger = logging.getLogger("octopus.metrics")

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

METRICS_KEY = web.AppKey("metrics", object)

# ── Metric naming ────────────────────────────────────────────────────────
# (name suffix, help text phrase) per window
WINDOW_METRIC_NAMES = {
    WindowLabel.TWO_DAYS: ("two_days", "for two days"),
    WindowLabel.ONE_WEEK: ("week", "on weekly basis"),
    WindowLabel.TWO_WEEKS: ("2w", "for last 2 weeks"),
    WindowLabel.FOUR_WEEKS: ("4w", "for last 4 weeks"),
    WindowLabel.CURRENT_MONTH: ("current_month", "for current month"),
    WindowLabel.TWO_MONTHS: ("last_2_months", "for the last two months"),
    WindowLabel.THREE_MONTHS: ("last_3_months", "for the last three months"),
    WindowLabel.SIX_MONTHS: ("last_6_months", "for the last six months"),
    WindowLabel.ONE_YEAR: ("last_1_year", "for the last 1 year"),
}

# WindowUsage field -> (name template, help template)
FIELD_METRICS = {
    "electricity_kwh": (
        "octopus_electricity_usage_{suffix}_kwh",
        "Total Octopus Energy electricity usage {phrase} in kWh",
    ),
    "gas_kwh": (
        "octopus_gas_usage_{suffix}_kwh",
        "Total Octopus Energy gas usage {phrase} in kWh",
    ),
    "carbon_grams": (
        "octopus_carbon_{suffix}_grams",
        "Total grams of CO2 for Octopus Energy electricity usage {phrase}",
    ),
}

ERROR_COUNTER_NAME = "carbon_service_errors"


def gauge_name(label: WindowLabel, field: str) -> str:
    suffix, _ = WINDOW_METRIC_NAMES[WindowLabel(label)]
    return FIELD_METRICS[field][0].format(suffix=suffix)


class ExporterMetrics:
    """Gauges for every window x field, an error counter and a freshness gauge."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        # process-wide switch; the exposition carries no *_created series
        disable_created_metrics()
        self.registry = registry if registry is not None else CollectorRegistry()
        self._gauges: dict[tuple[WindowLabel, str], Gauge] = {}

        for field, (name_tpl, help_tpl) in FIELD_METRICS.items():
            for label in WindowLabel:
                suffix, phrase = WINDOW_METRIC_NAMES[label]
                self._gauges[(label, field)] = Gauge(
                    name_tpl.format(suffix=suffix),
                    help_tpl.format(phrase=phrase),
                    registry=self.registry,
                )

        self.errors = Counter(
            ERROR_COUNTER_NAME,
            "Total number of errors encountered",
            registry=self.registry,
        )
        self.last_success = Gauge(
            "octopus_exporter_last_success_timestamp_seconds",
            "Unix time of the last poll cycle that published a summary",
            registry=self.registry,
        )

    def gauge(self, label: WindowLabel, field: str) -> Gauge:
        return self._gauges[(WindowLabel(label), field)]

    def publish(self, summary: Summary) -> int:
        """
        Copy a complete Summary into the gauges. Runs without awaiting, so
        nothing interleaves with it on the event loop and a scrape sees
        either the old or the new summary. None fields keep their stale value.
        The freshness gauge only moves when at least one gauge was written.
        Returns the number of gauges written.
        """
        written = 0
        for label, usage in summary:
            for field in FIELD_METRICS:
                value = getattr(usage, field)
                if value is None:
                    continue
                self._gauges[(label, field)].set(value)
                written += 1
        if written:
            self.last_success.set(summary.generated_at.timestamp())
        return written

    def record_error(self, error: Optional[ExporterError] = None) -> None:
        self.errors.inc()
        if error is not None:
            logger.debug("Counted %s: %s", type(error).__name__, error)

    def render(self) -> bytes:
        return generate_latest(self.registry)


# ── HTTP endpoints ───────────────────────────────────────────────────────

async def _handle_metrics(request: web.Request) -> web.Response:
    """Prometheus text exposition format."""
    metrics: ExporterMetrics = request.app[METRICS_KEY]
    return web.Response(body=metrics.render(), headers={"Content-Type": CONTENT_TYPE})


async def _handle_health(request: web.Request) -> web.Response:
    """Liveness probe."""
    return web.Response(text="OK")


def create_app(metrics: ExporterMetrics) -> web.Application:
    app = web.Application()
    app[METRICS_KEY] = metrics
    app.router.add_get("/metrics", _handle_metrics)
    app.router.add_get("/health", _handle_health)
    return app


async def start_metrics_server(metrics: ExporterMetrics, host: str, port: int) -> web.AppRunner:
    """Start the metrics HTTP server; the caller owns runner.cleanup()."""
    runner = web.AppRunner(create_app(metrics))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Metrics server listening on %s:%d", host, port)
    logger.info("Metrics endpoint: http://%s:%d/metrics", host, port)
    logger.info("Health endpoint: http://%s:%d/health", host, port)
    return runner
