from collections import Counter
from datetime import date, datetime, timezone

import pytest

from delivery_planner.models.domain import RouteType
from delivery_planner.services.routing.allocator import DriverSequenceAllocator, plan_area_assignment
from delivery_planner.services.routing.models import (
    AreaBreakdown,
    RouteFingerprint,
    RouteSnapshot,
    SequencedStop,
)


def _sequenced(stop_id: str, sequence: int, area: str = "north") -> SequencedStop:
    return SequencedStop(
        stop_id=stop_id,
        order_id=stop_id,
        sequence=sequence,
        latitude=0.0,
        longitude=0.0,
        area_tag=area,
        distance_from_prev_km=1.0,
        duration_from_prev_min=2.0,
    )


def _snapshot(stops: list[SequencedStop], areas: tuple[str, ...] = ("north", "east", "south", "west")) -> RouteSnapshot:
    return RouteSnapshot(
        delivery_date=date(2024, 5, 1),
        route_type=RouteType.DELIVERY,
        driver_id=None,
        stops=stops,
        geometry=None,
        total_distance_km=0.0,
        total_duration_min=0.0,
        fingerprint=RouteFingerprint(stop_count=len(stops), stop_ids_hash="x", assignment_hash="y"),
        computed_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        area_breakdown=[AreaBreakdown(area, 0, 0.0, 0.0) for area in areas],
    )


def _by_stop(result):
    return {entry.stop_id: entry for entry in result.entries}


def test_two_drivers_interleaved_in_global_order():
    snapshot = _snapshot([_sequenced(f"S{i}", i) for i in range(1, 5)])
    assignment = {"S1": "A", "S3": "A", "S2": "B", "S4": "B"}

    results = DriverSequenceAllocator().allocate(snapshot, assignment)

    driver_a = _by_stop(results["A"])
    driver_b = _by_stop(results["B"])
    assert results["A"].delivery_order == ["S1", "S3"]
    assert [driver_a["S1"].driver_delivery_sequence, driver_a["S3"].driver_delivery_sequence] == [1, 2]
    assert [driver_a["S1"].driver_packing_sequence, driver_a["S3"].driver_packing_sequence] == [2, 1]
    assert results["B"].delivery_order == ["S2", "S4"]
    assert [driver_b["S2"].driver_delivery_sequence, driver_b["S4"].driver_delivery_sequence] == [1, 2]
    assert [driver_b["S2"].driver_packing_sequence, driver_b["S4"].driver_packing_sequence] == [2, 1]
    assert results["A"].packing_order == ["S3", "S1"]
    assert None not in results


def test_packing_is_exact_reverse_of_delivery_for_every_driver():
    stops = [_sequenced(f"S{i:02d}", i) for i in range(1, 12)]
    drivers = ["D1", "D2", "D3"]
    assignment = {stop.stop_id: drivers[(index * 7) % 3] for index, stop in enumerate(stops)}

    results = DriverSequenceAllocator().allocate(_snapshot(stops), assignment)

    for driver_id in drivers:
        entries = results[driver_id].entries
        size = len(entries)
        assert Counter(entry.driver_packing_sequence for entry in entries) == Counter(range(1, size + 1))
        for entry in entries:
            assert entry.driver_packing_sequence + entry.driver_delivery_sequence == size + 1
        globals_in_order = [entry.delivery_sequence for entry in entries]
        assert globals_in_order == sorted(globals_in_order)


def test_unassigned_stops_keep_only_global_sequences():
    snapshot = _snapshot([_sequenced("S1", 1), _sequenced("S2", 2), _sequenced("S3", 3)])

    results = DriverSequenceAllocator().allocate(snapshot, {"S2": "A", "S3": None})

    unassigned = _by_stop(results[None])
    assert set(unassigned) == {"S1", "S3"}
    assert unassigned["S1"].driver_delivery_sequence is None
    assert unassigned["S1"].driver_packing_sequence is None
    assert unassigned["S1"].packing_sequence == 3
    assert unassigned["S3"].packing_sequence == 1
    assert results[None].packing_order == ["S3", "S1"]
    assert _by_stop(results["A"])["S2"].driver_delivery_sequence == 1


def test_drivers_are_listed_in_first_seen_order():
    snapshot = _snapshot([_sequenced("S1", 1), _sequenced("S2", 2), _sequenced("S3", 3), _sequenced("S4", 4)])

    results = DriverSequenceAllocator().allocate(snapshot, {"S1": "Z", "S3": "A", "S4": "Z"})

    assert list(results) == ["Z", None, "A"]


def test_allocate_is_idempotent():
    snapshot = _snapshot([_sequenced(f"S{i}", i) for i in range(1, 7)])
    assignment = {"S1": "B", "S2": "A", "S4": "B", "S6": "A"}
    allocator = DriverSequenceAllocator()

    assert allocator.allocate(snapshot, assignment) == allocator.allocate(snapshot, assignment)


def test_driver_orderer_reorders_within_driver_only():
    snapshot = _snapshot([_sequenced(f"S{i}", i) for i in range(1, 5)])
    assignment = {"S1": "A", "S2": "A", "S3": "A", "S4": "B"}

    def reverse(driver_id, members):
        return list(reversed(members))

    results = DriverSequenceAllocator().allocate(snapshot, assignment, driver_orderer=reverse)

    assert results["A"].delivery_order == ["S3", "S2", "S1"]
    driver_a = _by_stop(results["A"])
    assert driver_a["S3"].driver_delivery_sequence == 1
    assert driver_a["S3"].driver_packing_sequence == 3
    assert driver_a["S3"].delivery_sequence == 3
    assert results["B"].delivery_order == ["S4"]


def test_driver_orderer_may_not_change_stop_set():
    snapshot = _snapshot([_sequenced("S1", 1), _sequenced("S2", 2)])

    with pytest.raises(ValueError):
        DriverSequenceAllocator().allocate(
            snapshot, {"S1": "A", "S2": "A"}, driver_orderer=lambda driver_id, members: members[:1]
        )


def test_area_plan_splits_contiguous_blocks_and_flags_uncovered_areas():
    stops = [_sequenced(f"N{i}", i, "north") for i in range(1, 6)]
    stops.append(_sequenced("W1", 6, "west"))
    stops.append(_sequenced("N6", 7, "north"))
    snapshot = _snapshot(stops)

    plan = plan_area_assignment(
        snapshot,
        current_assignment={"N6": "D9"},
        driver_areas={"D1": ["North"], "D2": ["north", "east"]},
    )

    assert plan.assignments == {"N1": "D1", "N2": "D1", "N3": "D1", "N4": "D2", "N5": "D2"}
    previews = {area.area_tag: area for area in plan.areas}
    assert previews["north"].stop_count == 5
    assert previews["north"].driver_ids == ["D1", "D2"]
    assert previews["north"].has_drivers
    assert not previews["west"].has_drivers
    assert plan.unassignable_stop_count == 1
    assert [area.area_tag for area in plan.areas] == ["north", "west"]
