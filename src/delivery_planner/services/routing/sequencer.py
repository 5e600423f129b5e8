"""Visiting-order computation for delivery stops.

Orders are built with a nearest-neighbour pass from the depot followed by a
bounded 2-opt improvement over an open path (no return leg). Ties on distance
go to the lower order id so identical inputs always give identical routes.
Path geometry and leg timings come from the GeoRouter when it answers; the
order itself never depends on it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Sequence

from ...config import settings
from ...errors import GeoRouterUnavailable
from ...models.domain import Depot, RouteType, Stop
from ..geospatial import area_tag_for_point
from .geo_router import GeoRouter, PathLeg
from .matrix import TravelMatrix, build_travel_matrix, haversine_matrix
from .models import AreaBreakdown, RouteFingerprint, RouteSnapshot, SequencedStop
from .osrm_client import OSRMClient
from .recalculation import build_fingerprint

logger = logging.getLogger(__name__)

_IMPROVEMENT_EPSILON = 1e-9


def _sort_key(stop: Stop) -> tuple[str, str]:
    return (stop.order_id, stop.stop_id)


def _symmetric_costs(matrix: TravelMatrix) -> list[list[float]]:
    """Average both directions so segment reversal does not change inner costs."""
    n = len(matrix)
    return [
        [(matrix.distances[i][j] + matrix.distances[j][i]) / 2.0 for j in range(n)]
        for i in range(n)
    ]


def nearest_neighbour_order(costs: list[list[float]], stops: Sequence[Stop]) -> list[int]:
    """Greedy order of matrix indices 1..n starting from index 0."""
    remaining = list(range(1, len(stops) + 1))
    ordered: list[int] = []
    current = 0
    while remaining:
        # rounding keeps float noise from overriding the order-id tie-break
        nearest = min(
            remaining,
            key=lambda idx: (
                round(costs[current][idx], 6),
                stops[idx - 1].order_id,
                stops[idx - 1].stop_id,
            ),
        )
        ordered.append(nearest)
        remaining.remove(nearest)
        current = nearest
    return ordered


def path_cost(costs: list[list[float]], route: Sequence[int]) -> float:
    total = 0.0
    previous = 0
    for idx in route:
        total += costs[previous][idx]
        previous = idx
    return total


def two_opt_improve(costs: list[list[float]], route: list[int], max_passes: int) -> list[int]:
    """Open-path 2-opt: reverse route[i..j] whenever it shortens the path."""
    if len(route) <= 2:
        return route

    best = list(route)
    passes = 0
    improved = True
    while improved and passes < max_passes:
        improved = False
        passes += 1
        for i in range(len(best) - 1):
            before = best[i - 1] if i > 0 else 0
            for j in range(i + 1, len(best)):
                after = best[j + 1] if j + 1 < len(best) else None
                removed = costs[before][best[i]]
                added = costs[before][best[j]]
                if after is not None:
                    removed += costs[best[j]][after]
                    added += costs[best[i]][after]
                if added - removed < -_IMPROVEMENT_EPSILON:
                    best[i : j + 1] = reversed(best[i : j + 1])
                    improved = True
    return best


class RouteSequencer:
    """Decides the visiting order for a set of stops and traces the result."""

    def __init__(
        self,
        geo_router: Optional[GeoRouter] = None,
        osrm_client: Optional[OSRMClient] = None,
        *,
        max_passes: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.geo_router = geo_router
        self.osrm_client = osrm_client
        self.max_passes = max_passes if max_passes is not None else settings.two_opt_max_passes
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def order_stops(self, stops: Sequence[Stop], origin: Depot) -> tuple[list[Stop], TravelMatrix]:
        """Order the locatable stops.

        Returns the ordered stops with the travel matrix rearranged to match:
        index 0 is the origin and index k the k-th visited stop.
        """
        candidates = sorted((stop for stop in stops if stop.has_coordinates), key=_sort_key)
        coordinates = [(origin.latitude, origin.longitude)]
        coordinates.extend((stop.latitude, stop.longitude) for stop in candidates)
        matrix = build_travel_matrix(coordinates, self.osrm_client)
        if not candidates:
            return [], matrix

        costs = _symmetric_costs(matrix)
        route = nearest_neighbour_order(costs, candidates)
        route = two_opt_improve(costs, route, self.max_passes)
        logger.debug(
            "Ordered %d stops, path cost %.0fm (%s matrix)",
            len(route), path_cost(costs, route), matrix.source,
        )
        return [candidates[idx - 1] for idx in route], matrix.subset([0, *route])

    def compute_route(
        self,
        stops: Sequence[Stop],
        origin: Depot,
        *,
        delivery_date: date,
        route_type: RouteType = RouteType.DELIVERY,
        driver_id: Optional[str] = None,
    ) -> RouteSnapshot:
        """Order ``stops`` from ``origin`` and write 1-based ranks onto them.

        ``delivery_sequence`` gets the rank and ``packing_sequence`` its reverse.
        Stops without coordinates get neither and are listed on the snapshot.
        """
        fingerprint = build_fingerprint(
            [stop.stop_id for stop in stops],
            {stop.stop_id: stop.driver_id for stop in stops},
        )
        unlocatable = sorted(stop.stop_id for stop in stops if not stop.has_coordinates)
        if unlocatable:
            logger.warning(
                "Excluding %d stops without coordinates from %s route for %s: %s",
                len(unlocatable), route_type.value, delivery_date, ", ".join(unlocatable),
            )
        for stop in stops:
            if not stop.has_coordinates:
                stop.delivery_sequence = None
                stop.packing_sequence = None

        ordered, matrix = self.order_stops(stops, origin)
        total = len(ordered)
        for rank, stop in enumerate(ordered, start=1):
            stop.delivery_sequence = rank
            stop.packing_sequence = total - rank + 1

        snapshot = self.trace_route(
            ordered,
            origin,
            delivery_date=delivery_date,
            route_type=route_type,
            driver_id=driver_id,
            fingerprint=fingerprint,
            matrix=matrix,
        )
        snapshot.unlocatable_stop_ids = unlocatable
        return snapshot

    def trace_route(
        self,
        ordered_stops: Sequence[Stop],
        origin: Depot,
        *,
        delivery_date: date,
        route_type: RouteType,
        driver_id: Optional[str],
        fingerprint: RouteFingerprint,
        matrix: Optional[TravelMatrix] = None,
    ) -> RouteSnapshot:
        """Build a snapshot for stops already in visiting order."""
        if not ordered_stops:
            return RouteSnapshot(
                delivery_date=delivery_date,
                route_type=route_type,
                driver_id=driver_id,
                stops=[],
                geometry=None,
                total_distance_km=0.0,
                total_duration_min=0.0,
                fingerprint=fingerprint,
                computed_at=self._clock(),
                metadata={"stop_count": 0},
            )

        points = [(origin.latitude, origin.longitude)]
        points.extend((stop.latitude, stop.longitude) for stop in ordered_stops)
        geometry, legs, geometry_source = self._trace(points, matrix)

        sequenced = self._sequenced_stops(ordered_stops, legs, origin, delivery_date)
        return RouteSnapshot(
            delivery_date=delivery_date,
            route_type=route_type,
            driver_id=driver_id,
            stops=sequenced,
            geometry=geometry,
            total_distance_km=round(sum(leg.distance_km for leg in legs), 3),
            total_duration_min=round(sum(leg.duration_min for leg in legs), 2),
            fingerprint=fingerprint,
            computed_at=self._clock(),
            area_breakdown=self._area_breakdown(sequenced),
            metadata={
                "stop_count": len(sequenced),
                "geometry_source": geometry_source,
                "matrix_source": matrix.source if matrix else "haversine",
            },
        )

    def _trace(
        self,
        points: list[tuple[float, float]],
        matrix: Optional[TravelMatrix],
    ) -> tuple[Optional[list[tuple[float, float]]], list[PathLeg], Optional[str]]:
        expected_legs = len(points) - 1
        if self.geo_router is not None:
            try:
                result = self.geo_router.compute_path(points)
            except GeoRouterUnavailable as exc:
                logger.warning("Geo router unavailable, route has no geometry: %s", exc.message)
            else:
                if len(result.legs) == expected_legs:
                    return result.geometry, result.legs, "osrm"
                logger.warning(
                    "Geo router returned %d legs for %d stops; using matrix legs",
                    len(result.legs), expected_legs,
                )
                return result.geometry, self._matrix_legs(points, matrix), "osrm"

        return None, self._matrix_legs(points, matrix), None

    @staticmethod
    def _matrix_legs(points: list[tuple[float, float]], matrix: Optional[TravelMatrix]) -> list[PathLeg]:
        if matrix is None or len(matrix) != len(points):
            matrix = haversine_matrix(points)
        legs: list[PathLeg] = []
        for step in range(1, len(points)):
            legs.append(
                PathLeg(
                    distance_km=matrix.distance_km(step - 1, step),
                    duration_min=matrix.duration_min(step - 1, step),
                )
            )
        return legs

    def _sequenced_stops(
        self,
        ordered_stops: Sequence[Stop],
        legs: Sequence[PathLeg],
        origin: Depot,
        delivery_date: date,
    ) -> list[SequencedStop]:
        clock = datetime.combine(delivery_date, time(hour=settings.route_start_hour))
        dwell = timedelta(minutes=settings.stop_service_minutes)
        sequenced: list[SequencedStop] = []
        for position, (stop, leg) in enumerate(zip(ordered_stops, legs), start=1):
            clock += timedelta(minutes=leg.duration_min)
            area_tag = stop.area_tag or area_tag_for_point(
                origin.latitude, origin.longitude, stop.latitude, stop.longitude
            )
            sequenced.append(
                SequencedStop(
                    stop_id=stop.stop_id,
                    order_id=stop.order_id,
                    sequence=position,
                    latitude=stop.latitude,
                    longitude=stop.longitude,
                    area_tag=area_tag,
                    distance_from_prev_km=round(leg.distance_km, 3),
                    duration_from_prev_min=round(leg.duration_min, 2),
                    estimated_arrival=clock,
                )
            )
            clock += dwell
        return sequenced

    @staticmethod
    def _area_breakdown(stops: Sequence[SequencedStop]) -> list[AreaBreakdown]:
        buckets: dict[str, list[SequencedStop]] = defaultdict(list)
        for stop in stops:
            buckets[stop.area_tag or "unknown"].append(stop)

        preferred = {tag: idx for idx, tag in enumerate(settings.area_order)}
        ordered_tags = sorted(buckets, key=lambda tag: (preferred.get(tag, len(preferred)), tag))
        return [
            AreaBreakdown(
                area_tag=tag,
                stop_count=len(buckets[tag]),
                distance_km=round(sum(stop.distance_from_prev_km for stop in buckets[tag]), 3),
                duration_min=round(sum(stop.duration_from_prev_min for stop in buckets[tag]), 2),
            )
            for tag in ordered_tags
        ]
