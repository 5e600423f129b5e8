"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Sequence

import httpx

from ...config import settings

# OSRM table endpoint has URL length limits; larger coordinate lists are split
# into source/destination chunk pairs.
DEFAULT_MAX_COORDINATES_PER_REQUEST = 80
DEFAULT_MAX_PARALLEL_REQUESTS = 8

logger = logging.getLogger(__name__)


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        max_coordinates_per_request: int = DEFAULT_MAX_COORDINATES_PER_REQUEST,
        max_parallel_requests: int = DEFAULT_MAX_PARALLEL_REQUESTS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.base_url = self.base_url.rstrip("/")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.osrm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.max_coordinates_per_request = max_coordinates_per_request
        self.max_parallel_requests = max_parallel_requests
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        """Create a fresh client; chunk requests run on worker threads."""
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            limits=httpx.Limits(max_connections=1, max_keepalive_connections=0),
            transport=self._transport,
        )

    def _get_json(self, url: str, params: dict) -> dict:
        """GET with retries; network failures surface as ConnectionError."""
        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code", "Ok") != "Ok":
                        raise ValueError(f"OSRM request failed: {data.get('message', data.get('code'))}")
                    return data
                except httpx.HTTPStatusError as exc:
                    if exc.response.status_code == 414:
                        raise ValueError(
                            f"OSRM request URL too large. Try reducing max_coordinates_per_request "
                            f"(current: {self.max_coordinates_per_request})"
                        ) from exc
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ConnectionError(f"OSRM returned HTTP {exc.response.status_code}") from exc
                    time.sleep(self.backoff_seconds * attempt)
                except httpx.TransportError as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ConnectionError(
                            f"Failed to connect to OSRM service at {self.base_url}: {exc}"
                        ) from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(
                        "OSRM transport error, retrying in %.1fs (attempt %d/%d): %s",
                        wait_time, attempt, self.max_retries, exc,
                    )
                    time.sleep(wait_time)
        finally:
            client.close()

    def _table_single_request(
        self,
        coordinates: Sequence[tuple[float, float]],
        sources: Sequence[int] | None = None,
        destinations: Sequence[int] | None = None,
    ) -> dict:
        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        params = {"annotations": "duration,distance"}
        if sources is not None:
            params["sources"] = ";".join(str(i) for i in sources)
        if destinations is not None:
            params["destinations"] = ";".join(str(i) for i in destinations)
        url = f"{self.base_url}/table/v1/{self.profile}/{coordinate_str}"
        data = self._get_json(url, params)
        if "durations" not in data or "distances" not in data:
            raise ValueError("OSRM response missing durations/distances.")
        return data

    def table(self, coordinates: Sequence[tuple[float, float]]) -> dict:
        """Distance (m) / duration (s) matrix for (lat, lon) coordinates, chunked when large."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM table.")

        if len(coordinates) <= self.max_coordinates_per_request:
            return self._table_single_request(coordinates)

        started = time.time()
        size = self.max_coordinates_per_request
        ranges = [(i, min(i + size, len(coordinates))) for i in range(0, len(coordinates), size)]
        n = len(coordinates)
        durations: list[list[float | None]] = [[None] * n for _ in range(n)]
        distances: list[list[float | None]] = [[None] * n for _ in range(n)]

        def fetch(src: tuple[int, int], dst: tuple[int, int]) -> tuple[tuple[int, int], tuple[int, int], dict]:
            src_coords = list(coordinates[src[0]:src[1]])
            dst_coords = list(coordinates[dst[0]:dst[1]])
            combined = src_coords + dst_coords
            result = self._table_single_request(
                combined,
                sources=range(len(src_coords)),
                destinations=range(len(src_coords), len(combined)),
            )
            return src, dst, result

        logger.info(
            "Chunking OSRM table request: %d coordinates in %d chunk pairs",
            n, len(ranges) ** 2,
        )
        with ThreadPoolExecutor(max_workers=self.max_parallel_requests) as executor:
            futures = [executor.submit(fetch, src, dst) for src in ranges for dst in ranges]
            for future in as_completed(futures):
                src, dst, result = future.result()
                for local_src, global_src in enumerate(range(*src)):
                    for local_dst, global_dst in enumerate(range(*dst)):
                        durations[global_src][global_dst] = result["durations"][local_src][local_dst]
                        distances[global_src][global_dst] = result["distances"][local_src][local_dst]

        logger.info("Completed chunked OSRM table request in %.2fs", time.time() - started)
        return {"durations": durations, "distances": distances}

    def route(self, coordinates: Sequence[tuple[float, float]]) -> dict:
        """Street-following route through (lat, lon) waypoints, in the given order.

        Returns a dict with decoded ``geometry`` [(lat, lon), ...], total
        ``distance`` (m), ``duration`` (s) and per-leg ``legs``.
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")

        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        params = {
            "overview": "full",
            "geometries": "polyline",
            "steps": "false",
        }
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"
        data = self._get_json(url, params)
        routes = data.get("routes") or []
        if not routes:
            raise ValueError("OSRM route response contained no routes.")
        best = routes[0]
        return {
            "geometry": decode_polyline(best.get("geometry", "")),
            "distance": float(best.get("distance", 0.0)),
            "duration": float(best.get("duration", 0.0)),
            "legs": [
                {"distance": float(leg.get("distance", 0.0)), "duration": float(leg.get("duration", 0.0))}
                for leg in best.get("legs", [])
            ],
        }


def decode_polyline(polyline: str) -> list[tuple[float, float]]:
    """Decode Google polyline string to list of (lat, lon) coordinates."""
    coordinates = []
    index = 0
    lat = 0
    lon = 0

    def _next_value() -> int:
        nonlocal index
        shift = 0
        result = 0
        while True:
            b = ord(polyline[index]) - 63
            index += 1
            result |= (b & 0x1F) << shift
            shift += 5
            if b < 0x20:
                break
        return ~(result >> 1) if (result & 1) else (result >> 1)

    while index < len(polyline):
        lat += _next_value()
        lon += _next_value()
        coordinates.append((lat / 1e5, lon / 1e5))

    return coordinates


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM service health with a minimal two-coordinate table request."""
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        test_coords = "13.388860,52.517037;13.385983,52.496891"
        url = f"{base.rstrip('/')}/table/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(url, params={"annotations": "duration"}, timeout=5.0)
        response.raise_for_status()
        data = response.json()
        return "durations" in data and isinstance(data.get("durations"), list)
    except (httpx.HTTPError, ValueError):
        return False
