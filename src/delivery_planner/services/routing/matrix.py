"""Distance/duration matrix for sequencing, with a haversine fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ...config import settings
from ..geospatial import haversine_km
from .osrm_client import OSRMClient

logger = logging.getLogger(__name__)

# More than this share of unreachable depot legs means the OSRM table is unusable.
MAX_UNREACHABLE_RATE = 0.5


@dataclass(slots=True)
class TravelMatrix:
    """Square matrices in metres and seconds; index 0 is the route origin."""

    distances: list[list[float]]
    durations: list[list[float]]
    source: str

    def __len__(self) -> int:
        return len(self.distances)

    def distance_km(self, i: int, j: int) -> float:
        return self.distances[i][j] / 1000.0

    def duration_min(self, i: int, j: int) -> float:
        return self.durations[i][j] / 60.0

    def subset(self, indices: Sequence[int]) -> "TravelMatrix":
        """Matrix restricted to (and reordered by) ``indices``."""
        return TravelMatrix(
            distances=[[self.distances[i][j] for j in indices] for i in indices],
            durations=[[self.durations[i][j] for j in indices] for i in indices],
            source=self.source,
        )


def haversine_matrix(
    coordinates: Sequence[tuple[float, float]],
    average_speed_kmh: float | None = None,
) -> TravelMatrix:
    """Straight-line matrix with durations estimated from an average speed."""
    speed = average_speed_kmh or settings.average_speed_kmh
    n = len(coordinates)
    distances = [[0.0] * n for _ in range(n)]
    durations = [[0.0] * n for _ in range(n)]
    for i in range(n):
        lat1, lon1 = coordinates[i]
        for j in range(i + 1, n):
            lat2, lon2 = coordinates[j]
            distance_km = haversine_km(lat1, lon1, lat2, lon2)
            duration_s = (distance_km / speed) * 3600.0
            distances[i][j] = distances[j][i] = distance_km * 1000.0
            durations[i][j] = durations[j][i] = duration_s
    return TravelMatrix(distances=distances, durations=durations, source="haversine")


def _unreachable_rate(table: dict) -> float:
    durations = table.get("durations") or []
    if not durations:
        return 1.0
    depot_row = durations[0]
    total = len(depot_row) - 1
    if total <= 0:
        return 0.0
    unreachable = sum(1 for value in depot_row[1:] if value is None)
    return unreachable / total


def _merge_with_fallback(table: dict, fallback: TravelMatrix) -> TravelMatrix:
    """Fill individual unreachable OSRM cells from the haversine matrix."""
    n = len(fallback)
    distances = [[0.0] * n for _ in range(n)]
    durations = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(n):
            distance = table["distances"][i][j]
            duration = table["durations"][i][j]
            distances[i][j] = float(distance) if distance is not None else fallback.distances[i][j]
            durations[i][j] = float(duration) if duration is not None else fallback.durations[i][j]
    return TravelMatrix(distances=distances, durations=durations, source="osrm")


def build_travel_matrix(
    coordinates: Sequence[tuple[float, float]],
    osrm_client: Optional[OSRMClient] = None,
) -> TravelMatrix:
    """Matrix from OSRM when available, otherwise haversine."""
    fallback = haversine_matrix(coordinates)
    if osrm_client is None or len(coordinates) < 2:
        return fallback

    try:
        table = osrm_client.table(coordinates)
    except (ConnectionError, ValueError) as exc:
        logger.warning("OSRM table request failed: %s. Using haversine fallback.", exc)
        return fallback

    rate = _unreachable_rate(table)
    if rate > MAX_UNREACHABLE_RATE:
        logger.warning(
            "Too many unreachable routes from OSRM (%.1f%%). Using haversine fallback.",
            rate * 100,
        )
        return fallback
    return _merge_with_fallback(table, fallback)
