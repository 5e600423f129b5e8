"""Path geometry collaborators for ordered stop lists."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from ...config import settings
from ...errors import GeoRouterUnavailable
from .osrm_client import OSRMClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PathLeg:
    distance_km: float
    duration_min: float


@dataclass(slots=True)
class PathResult:
    geometry: list[tuple[float, float]]
    total_distance_km: float
    total_duration_min: float
    legs: list[PathLeg] = field(default_factory=list)


class GeoRouter(Protocol):
    def compute_path(self, points: Sequence[tuple[float, float]]) -> PathResult:
        """Trace the given (lat, lon) points in order; raise GeoRouterUnavailable on failure."""


class OSRMGeoRouter:
    """GeoRouter backed by the OSRM ``route`` service."""

    def __init__(self, client: OSRMClient) -> None:
        self.client = client

    def compute_path(self, points: Sequence[tuple[float, float]]) -> PathResult:
        if len(points) < 2:
            return PathResult(geometry=list(points), total_distance_km=0.0, total_duration_min=0.0)
        try:
            data = self.client.route(points)
        except (ConnectionError, ValueError) as exc:
            raise GeoRouterUnavailable(f"OSRM route request failed: {exc}") from exc

        return PathResult(
            geometry=data["geometry"],
            total_distance_km=data["distance"] / 1000.0,
            total_duration_min=data["duration"] / 60.0,
            legs=[
                PathLeg(distance_km=leg["distance"] / 1000.0, duration_min=leg["duration"] / 60.0)
                for leg in data["legs"]
            ],
        )


def build_osrm_client() -> Optional[OSRMClient]:
    if not settings.osrm_base_url:
        return None
    return OSRMClient()


def build_geo_router(client: Optional[OSRMClient] = None) -> Optional[GeoRouter]:
    """Configured GeoRouter, or None when no routing service is set up."""
    client = client or build_osrm_client()
    if client is None:
        logger.info("OSRM base URL not configured; routes will carry no geometry.")
        return None
    return OSRMGeoRouter(client)
