"""
Octopus Exporter: Upstream API Clients

Thin async HTTP clients for the two upstream services:

  Octopus Energy REST API   /v1/{electricity|gas}-meter-points/.../consumption/
  Carbon Intensity API      /regional/intensity/{from}/{to}/regionid/{id}

The aggregators only depend on the ConsumptionSource / IntensitySource
protocols, so tests substitute in-memory fakes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Protocol

import httpx

from .regions import Region

logger = logging.getLogger("octopus.clients")

OCTOPUS_BASE_URL = "https://api.octopus.energy/v1"
CARBON_INTENSITY_BASE_URL = "https://api.carbonintensity.org.uk"

OCTOPUS_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
INTENSITY_TIME_FORMAT = "%Y-%m-%dT%H:%MZ"

# Regional intensity queries are rejected above this span
MAX_INTENSITY_SPAN = timedelta(days=14)


class Commodity(str, Enum):
    ELECTRICITY = "electricity"
    GAS = "gas"


@dataclass(frozen=True, slots=True)
class MeterPoint:
    """MPAN or MPRN plus the meter serial number."""
    commodity: Commodity
    point_id: str
    serial_number: str


@dataclass(frozen=True, slots=True)
class Reading:
    interval_start: datetime
    interval_end: Optional[datetime]
    consumption: float      # kWh (gas meters on SMETS2 also report kWh)


@dataclass(frozen=True, slots=True)
class IntensitySample:
    start: datetime
    end: Optional[datetime]
    intensity: float        # gCO2/kWh


class ConsumptionSource(Protocol):
    async def list_consumption(
        self,
        meter: MeterPoint,
        period_from: datetime,
        period_to: datetime,
        group_by: str = "hour",
        page_size: int = 10000,
    ) -> list[Reading]: ...


class IntensitySource(Protocol):
    async def list_intensity(
        self, region: Region, period_from: str, period_to: str,
    ) -> list[IntensitySample]: ...


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_octopus_time(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime(OCTOPUS_TIME_FORMAT)


def format_intensity_time(dt: datetime) -> str:
    """Minute precision with a trailing Z; seconds are truncated, not rounded."""
    return dt.astimezone(timezone.utc).strftime(INTENSITY_TIME_FORMAT)


# ─────────────────────────────────────────────
# Octopus Energy
# ─────────────────────────────────────────────

class OctopusClient:
    """
    HTTP client for the Octopus consumption endpoints.
    Authenticates with the API key as the basic-auth username.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = OCTOPUS_BASE_URL,
        timeout: float = 30.0,
        max_pages: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_pages = max_pages
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=httpx.BasicAuth(self.api_key, ""),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    @staticmethod
    def _consumption_path(meter: MeterPoint) -> str:
        kind = "electricity" if meter.commodity is Commodity.ELECTRICITY else "gas"
        return f"/{kind}-meter-points/{meter.point_id}/meters/{meter.serial_number}/consumption/"

    async def list_consumption(
        self,
        meter: MeterPoint,
        period_from: datetime,
        period_to: datetime,
        group_by: str = "hour",
        page_size: int = 10000,
    ) -> list[Reading]:
        client = await self._get_client()
        params = {
            "period_from": format_octopus_time(period_from),
            "period_to": format_octopus_time(period_to),
            "group_by": group_by,
            "page_size": page_size,
        }

        readings: list[Reading] = []
        url: Optional[str] = self._consumption_path(meter)
        pages = 0
        while url and pages < self.max_pages:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            body = resp.json()
            pages += 1

            for row in body.get("results", []):
                readings.append(Reading(
                    interval_start=parse_timestamp(row.get("interval_start")),
                    interval_end=parse_timestamp(row.get("interval_end")),
                    consumption=float(row["consumption"]),
                ))

            # "next" is an absolute URL that already carries the query string
            url = body.get("next")
            params = None

        if url:
            logger.warning(
                "%s consumption for %s truncated after %d pages (%d readings)",
                meter.commodity.value, meter.point_id, pages, len(readings),
            )
        return readings


# ─────────────────────────────────────────────
# Carbon Intensity
# ─────────────────────────────────────────────

def _intensity_chunks(start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
    chunks = []
    cursor = start
    while cursor < end:
        chunk_end = min(cursor + MAX_INTENSITY_SPAN, end)
        chunks.append((cursor, chunk_end))
        cursor = chunk_end
    return chunks or [(start, end)]


def _parse_intensity_payload(payload: dict[str, Any]) -> list[IntensitySample]:
    data = payload.get("data", {})
    if isinstance(data, list):
        data = data[0] if data else {}
    samples = []
    for entry in data.get("data", []):
        intensity = entry.get("intensity") or {}
        value = intensity.get("actual")
        if value is None:
            value = intensity.get("forecast")
        if value is None:
            continue
        samples.append(IntensitySample(
            start=parse_timestamp(entry.get("from")),
            end=parse_timestamp(entry.get("to")),
            intensity=float(value),
        ))
    return samples


class CarbonIntensityClient:
    """HTTP client for the GB regional carbon intensity endpoint (no auth)."""

    def __init__(
        self,
        base_url: str = CARBON_INTENSITY_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def list_intensity(
        self, region: Region, period_from: str, period_to: str,
    ) -> list[IntensitySample]:
        """
        Fetch half-hourly intensity samples for ``region`` between two
        ``YYYY-MM-DDTHH:MMZ`` labels. Spans longer than 14 days are split
        into consecutive requests.
        """
        client = await self._get_client()
        start = parse_timestamp(period_from)
        end = parse_timestamp(period_to)

        samples: list[IntensitySample] = []
        seen: set[datetime] = set()
        for chunk_from, chunk_to in _intensity_chunks(start, end):
            path = (
                f"/regional/intensity/{format_intensity_time(chunk_from)}"
                f"/{format_intensity_time(chunk_to)}/regionid/{region.region_id}"
            )
            resp = await client.get(path)
            resp.raise_for_status()
            for sample in _parse_intensity_payload(resp.json()):
                # adjacent chunks share their boundary period
                if sample.start in seen:
                    continue
                seen.add(sample.start)
                samples.append(sample)

        logger.debug(
            "Fetched %d intensity samples for %s (%s to %s)",
            len(samples), region.display_name, period_from, period_to,
        )
        return samples
