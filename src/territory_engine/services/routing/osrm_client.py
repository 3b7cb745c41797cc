"""Routing collaborators used to resolve drive-time selections."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Protocol, Sequence

import httpx

from ...config import settings
from ...errors import RoutingUnavailable
from ...models.domain import BoundaryFeature, Coordinate
from ..geospatial import haversine_km

logger = logging.getLogger(__name__)


class RoutingProvider(Protocol):
    async def resolve_codes(
        self,
        origin: Coordinate,
        max_duration_minutes: float,
        candidates: Sequence[BoundaryFeature],
    ) -> list[str]:
        """Return the candidate codes reachable within the duration."""
        ...


def estimate_drive_minutes(
    origin: Coordinate,
    destination: Coordinate,
    *,
    road_factor: float | None = None,
    average_speed_kmh: float | None = None,
) -> float:
    """Approximate driving time from straight-line distance."""

    factor = road_factor if road_factor is not None else settings.drive_time_road_factor
    speed = average_speed_kmh if average_speed_kmh is not None else settings.drive_time_average_speed_kmh
    distance = haversine_km(origin[1], origin[0], destination[1], destination[0]) * factor
    return (distance / speed) * 60.0


class ApproximateRoutingProvider:
    """Resolves drive-time selections without a routing service."""

    def __init__(self, road_factor: float | None = None, average_speed_kmh: float | None = None) -> None:
        self.road_factor = road_factor if road_factor is not None else settings.drive_time_road_factor
        self.average_speed_kmh = (
            average_speed_kmh if average_speed_kmh is not None else settings.drive_time_average_speed_kmh
        )

    async def resolve_codes(
        self,
        origin: Coordinate,
        max_duration_minutes: float,
        candidates: Sequence[BoundaryFeature],
    ) -> list[str]:
        return [
            feature.code
            for feature in candidates
            if estimate_drive_minutes(
                origin,
                feature.centroid,
                road_factor=self.road_factor,
                average_speed_kmh=self.average_speed_kmh,
            )
            <= max_duration_minutes
        ]


class OSRMRoutingProvider:
    """Resolves drive-time selections with the OSRM ``table`` endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float = 30.0,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        batch_size: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.batch_size = batch_size or settings.osrm_batch_size
        self.timeout = timeout
        self._client = client

    async def resolve_codes(
        self,
        origin: Coordinate,
        max_duration_minutes: float,
        candidates: Sequence[BoundaryFeature],
    ) -> list[str]:
        if not candidates:
            return []
        durations = await self.durations_from(origin, [feature.centroid for feature in candidates])
        return [
            feature.code
            for feature, minutes in zip(candidates, durations)
            if minutes <= max_duration_minutes
        ]

    async def durations_from(self, origin: Coordinate, destinations: Sequence[Coordinate]) -> list[float]:
        """Travel minutes from the origin to each destination (``inf`` when unroutable)."""

        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        try:
            durations: list[float] = []
            # Chunk to respect OSRM table limits.
            for start in range(0, len(destinations), self.batch_size):
                chunk = [origin, *destinations[start : start + self.batch_size]]
                durations.extend(await self._table_single_request(client, chunk))
            return durations
        finally:
            if self._client is None:
                await client.aclose()

    async def _table_single_request(self, client: httpx.AsyncClient, coordinates: Sequence[Coordinate]) -> list[float]:
        coordinate_str = ";".join(f"{lng},{lat}" for lng, lat in coordinates)
        params = {
            "annotations": "duration",
            "sources": "0",
            "destinations": ";".join(str(i) for i in range(1, len(coordinates))),
        }
        url = f"{self.base_url}/table/v1/{self.profile}/{coordinate_str}"

        attempt = 0
        while True:
            try:
                response = await client.get(url, params=params)
                response.raise_for_status()
                data = response.json()
                if "durations" not in data:
                    raise ValueError("OSRM response missing durations.")
                row = data["durations"][0] if data["durations"] else []
                return [value / 60.0 if value is not None else math.inf for value in row]
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 414:
                    raise ValueError(
                        f"OSRM request URL too large ({len(coordinates)} coordinates). "
                        f"Try reducing osrm_batch_size (current: {self.batch_size})"
                    ) from exc
                attempt += 1
                if attempt > self.max_retries:
                    raise RoutingUnavailable(f"OSRM table request failed: {exc}") from exc
                await asyncio.sleep(self.backoff_seconds * attempt)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                attempt += 1
                if attempt > self.max_retries:
                    raise RoutingUnavailable(
                        f"Failed to connect to OSRM service at {self.base_url}: {exc}"
                    ) from exc
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                logger.debug(
                    "OSRM network error, retrying in %.1fs (attempt %d/%d): %s",
                    wait_time,
                    attempt,
                    self.max_retries,
                    exc,
                )
                await asyncio.sleep(wait_time)


def get_routing_provider() -> RoutingProvider:
    """OSRM when configured, the straight-line approximation otherwise."""

    if settings.osrm_base_url:
        return OSRMRoutingProvider()
    return ApproximateRoutingProvider()


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM service health by making a simple table request.

    Public OSRM endpoints may not have a /health endpoint, so we test
    connectivity by making a minimal table request with two coordinates.
    """
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        test_coords = "11.575490,48.137154;11.558180,48.140230"
        url = f"{base}/table/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(url, params={"annotations": "duration"}, timeout=5.0)
        response.raise_for_status()
        data = response.json()
        return "durations" in data and isinstance(data.get("durations"), list)
    except (httpx.HTTPError, ValueError):
        return False
