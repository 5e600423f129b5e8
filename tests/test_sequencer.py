from datetime import date, datetime

import pytest

from delivery_planner.errors import GeoRouterUnavailable
from delivery_planner.models.domain import Depot, RouteType, Stop
from delivery_planner.services.routing.geo_router import PathLeg, PathResult
from delivery_planner.services.routing.sequencer import (
    RouteSequencer,
    path_cost,
    two_opt_improve,
)

DEPOT = Depot(code="WH", latitude=0.0, longitude=0.0)
DAY = date(2024, 5, 1)


def _stop(stop_id: str, lat: float | None, lon: float | None, area: str | None = None) -> Stop:
    return Stop(stop_id=stop_id, order_id=stop_id, latitude=lat, longitude=lon, area_tag=area)


class FixedLegRouter:
    def __init__(self, leg_minutes: float = 10.0) -> None:
        self.leg_minutes = leg_minutes
        self.calls = []

    def compute_path(self, points):
        self.calls.append(list(points))
        legs = [PathLeg(distance_km=2.0, duration_min=self.leg_minutes) for _ in range(len(points) - 1)]
        return PathResult(
            geometry=list(points),
            total_distance_km=2.0 * len(legs),
            total_duration_min=self.leg_minutes * len(legs),
            legs=legs,
        )


class FailingRouter:
    def compute_path(self, points):
        raise GeoRouterUnavailable("offline")


def test_stops_are_visited_nearest_first_along_a_line():
    stops = [_stop("C", 0.0, 0.03), _stop("A", 0.0, 0.01), _stop("B", 0.0, 0.02)]

    snapshot = RouteSequencer().compute_route(stops, DEPOT, delivery_date=DAY)

    assert snapshot.stop_ids == ["A", "B", "C"]
    assert {stop.stop_id: stop.delivery_sequence for stop in stops} == {"A": 1, "B": 2, "C": 3}
    assert {stop.stop_id: stop.packing_sequence for stop in stops} == {"A": 3, "B": 2, "C": 1}
    assert snapshot.route_type is RouteType.DELIVERY
    assert snapshot.total_distance_km == pytest.approx(3.336, abs=0.01)


def test_sequences_form_a_permutation_and_skip_unlocatable_stops():
    stops = [
        _stop("S1", 0.01, 0.02),
        _stop("S2", -0.03, 0.01),
        _stop("S3", None, None),
        _stop("S4", 0.02, -0.02),
        _stop("S5", -0.01, -0.04),
    ]

    snapshot = RouteSequencer().compute_route(stops, DEPOT, delivery_date=DAY)

    ranks = sorted(stop.delivery_sequence for stop in stops if stop.has_coordinates)
    assert ranks == [1, 2, 3, 4]
    unlocatable = next(stop for stop in stops if stop.stop_id == "S3")
    assert unlocatable.delivery_sequence is None
    assert unlocatable.packing_sequence is None
    assert snapshot.unlocatable_stop_ids == ["S3"]
    assert "S3" not in snapshot.stop_ids
    # fingerprint still covers the unlocatable stop
    assert snapshot.fingerprint.stop_count == 5


def test_equidistant_stops_prefer_lower_order_id():
    stops = [_stop("B", 0.0, 0.01), _stop("A", 0.0, -0.01)]

    snapshot = RouteSequencer().compute_route(stops, DEPOT, delivery_date=DAY)

    assert snapshot.stop_ids == ["A", "B"]


def test_same_input_gives_same_order():
    def build():
        return [
            _stop("O7", 0.012, 0.004),
            _stop("O3", -0.008, 0.011),
            _stop("O9", 0.02, -0.015),
            _stop("O1", -0.017, -0.006),
            _stop("O5", 0.003, 0.019),
        ]

    sequencer = RouteSequencer()
    first = sequencer.compute_route(build(), DEPOT, delivery_date=DAY)
    second = sequencer.compute_route(list(reversed(build())), DEPOT, delivery_date=DAY)

    assert first.stop_ids == second.stop_ids


def test_no_locatable_stops_returns_empty_snapshot():
    stops = [_stop("X", None, None), _stop("Y", None, 46.7)]

    snapshot = RouteSequencer(geo_router=FixedLegRouter()).compute_route(stops, DEPOT, delivery_date=DAY)

    assert snapshot.is_empty
    assert snapshot.geometry is None
    assert snapshot.total_distance_km == 0.0
    assert snapshot.unlocatable_stop_ids == ["X", "Y"]


def test_geo_router_failure_keeps_order_without_geometry():
    stops = [_stop("A", 0.0, 0.01), _stop("B", 0.0, 0.02)]

    snapshot = RouteSequencer(geo_router=FailingRouter()).compute_route(stops, DEPOT, delivery_date=DAY)

    assert snapshot.stop_ids == ["A", "B"]
    assert snapshot.geometry is None
    assert snapshot.metadata["geometry_source"] is None
    assert all(stop.distance_from_prev_km > 0 for stop in snapshot.stops)


def test_geo_router_supplies_geometry_and_arrival_times():
    router = FixedLegRouter(leg_minutes=10.0)
    stops = [_stop("A", 0.0, 0.01), _stop("B", 0.0, 0.02)]

    snapshot = RouteSequencer(geo_router=router).compute_route(stops, DEPOT, delivery_date=DAY)

    assert router.calls[0][0] == (0.0, 0.0)
    assert snapshot.geometry == [(0.0, 0.0), (0.0, 0.01), (0.0, 0.02)]
    assert snapshot.total_duration_min == 20.0
    arrivals = [stop.estimated_arrival for stop in snapshot.stops]
    # 09:00 start, 10 minute legs, 5 minutes at each stop
    assert arrivals == [datetime(2024, 5, 1, 9, 10), datetime(2024, 5, 1, 9, 25)]


def test_area_breakdown_infers_quadrants_from_depot():
    stops = [
        _stop("E1", 0.0, 0.01),
        _stop("N1", 0.01, 0.0),
        _stop("T1", -0.02, 0.0, area="south"),
    ]

    snapshot = RouteSequencer().compute_route(stops, DEPOT, delivery_date=DAY)

    tags = {stop.stop_id: stop.area_tag for stop in snapshot.stops}
    assert tags == {"E1": "east", "N1": "north", "T1": "south"}
    assert [area.area_tag for area in snapshot.area_breakdown] == ["north", "east", "south"]
    assert sum(area.stop_count for area in snapshot.area_breakdown) == 3


def test_two_opt_reverses_a_crossing_segment():
    positions = [0, 2, 1, 3]
    costs = [[abs(a - b) for b in positions] for a in positions]

    improved = two_opt_improve(costs, [1, 2, 3], max_passes=4)

    assert improved == [2, 1, 3]
    assert path_cost(costs, improved) == 3
    assert two_opt_improve(costs, [1, 2, 3], max_passes=0) == [1, 2, 3]


def test_order_stops_returns_matrix_in_visiting_order():
    stops = [_stop("C", 0.0, 0.03), _stop("A", 0.0, 0.01)]

    ordered, matrix = RouteSequencer().order_stops(stops, DEPOT)

    assert [stop.stop_id for stop in ordered] == ["A", "C"]
    assert matrix.distance_km(0, 1) == pytest.approx(1.112, abs=0.01)
    assert matrix.distance_km(1, 2) == pytest.approx(2.224, abs=0.01)
