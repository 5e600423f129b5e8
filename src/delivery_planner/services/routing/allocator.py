"""Split a global delivery order into per-driver delivery and packing orders."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Mapping, Optional, Sequence

from .models import (
    AreaAssignmentPlan,
    AreaPreview,
    DriverSequenceEntry,
    DriverSequenceResult,
    RouteSnapshot,
    SequencedStop,
)

logger = logging.getLogger(__name__)

# Reorders one driver's stops; receives the driver id and stops in global order.
DriverOrderer = Callable[[str, list[SequencedStop]], list[SequencedStop]]


class DriverSequenceAllocator:
    """Derives contiguous per-driver sequences from a global snapshot.

    Within a driver, delivery rank follows the global order (or the order
    returned by ``driver_orderer`` when per-driver re-optimization is on) and
    the packing rank is its exact reverse, so the first stop delivered is the
    last one loaded. Unassigned stops keep only their global sequences.
    """

    def allocate(
        self,
        snapshot: RouteSnapshot,
        assignment: Mapping[str, Optional[str]],
        driver_orderer: Optional[DriverOrderer] = None,
    ) -> dict[Optional[str], DriverSequenceResult]:
        total = len(snapshot.stops)
        global_order = sorted(snapshot.stops, key=lambda stop: (stop.sequence, stop.order_id))

        # dict preserves first-seen driver order for display palettes
        groups: dict[Optional[str], list[SequencedStop]] = {}
        for stop in global_order:
            groups.setdefault(assignment.get(stop.stop_id) or None, []).append(stop)

        results: dict[Optional[str], DriverSequenceResult] = {}
        for driver_id, members in groups.items():
            if driver_id is not None and driver_orderer is not None and len(members) > 1:
                members = self._checked_reorder(driver_id, members, driver_orderer)
            results[driver_id] = self._rank_group(driver_id, members, total)

        logger.debug(
            "Allocated %d stops across %d drivers (%d unassigned)",
            total,
            sum(1 for key in results if key is not None),
            len(results[None].entries) if None in results else 0,
        )
        return results

    @staticmethod
    def _checked_reorder(
        driver_id: str,
        members: list[SequencedStop],
        driver_orderer: DriverOrderer,
    ) -> list[SequencedStop]:
        reordered = driver_orderer(driver_id, list(members))
        if sorted(stop.stop_id for stop in reordered) != sorted(stop.stop_id for stop in members):
            raise ValueError(f"Driver orderer changed the stop set for driver {driver_id}")
        return reordered

    @staticmethod
    def _rank_group(
        driver_id: Optional[str],
        members: Sequence[SequencedStop],
        total: int,
    ) -> DriverSequenceResult:
        size = len(members)
        entries: list[DriverSequenceEntry] = []
        for rank, stop in enumerate(members, start=1):
            entries.append(
                DriverSequenceEntry(
                    stop_id=stop.stop_id,
                    order_id=stop.order_id,
                    delivery_sequence=stop.sequence,
                    packing_sequence=total - stop.sequence + 1,
                    driver_delivery_sequence=rank if driver_id is not None else None,
                    driver_packing_sequence=size - rank + 1 if driver_id is not None else None,
                )
            )
        return DriverSequenceResult(driver_id=driver_id, entries=entries)


def _split_evenly(stops: Sequence[SequencedStop], driver_ids: Sequence[str]) -> dict[str, str]:
    """Contiguous blocks, earlier drivers taking the remainder one stop each."""
    base, extra = divmod(len(stops), len(driver_ids))
    assignments: dict[str, str] = {}
    cursor = 0
    for position, driver_id in enumerate(driver_ids):
        size = base + (1 if position < extra else 0)
        for stop in stops[cursor : cursor + size]:
            assignments[stop.stop_id] = driver_id
        cursor += size
    return assignments


def plan_area_assignment(
    snapshot: RouteSnapshot,
    current_assignment: Mapping[str, Optional[str]],
    driver_areas: Mapping[str, Sequence[str]],
) -> AreaAssignmentPlan:
    """Propose drivers for unassigned stops based on which areas each driver covers."""
    drivers_by_area: dict[str, list[str]] = defaultdict(list)
    for driver_id, areas in driver_areas.items():
        for area in areas:
            key = area.strip().lower()
            if key and driver_id not in drivers_by_area[key]:
                drivers_by_area[key].append(driver_id)

    unassigned_by_area: dict[str, list[SequencedStop]] = defaultdict(list)
    for stop in sorted(snapshot.stops, key=lambda item: item.sequence):
        if current_assignment.get(stop.stop_id):
            continue
        unassigned_by_area[(stop.area_tag or "unknown").lower()].append(stop)

    previews: list[AreaPreview] = []
    assignments: dict[str, str] = {}
    area_order = [breakdown.area_tag.lower() for breakdown in snapshot.area_breakdown]
    ordered_areas = sorted(
        unassigned_by_area,
        key=lambda tag: (area_order.index(tag) if tag in area_order else len(area_order), tag),
    )
    for area in ordered_areas:
        stops = unassigned_by_area[area]
        drivers = drivers_by_area.get(area, [])
        previews.append(AreaPreview(area_tag=area, stop_count=len(stops), driver_ids=list(drivers)))
        if drivers:
            assignments.update(_split_evenly(stops, drivers))
        else:
            logger.info("No driver covers area %s; %d stops stay unassigned", area, len(stops))

    return AreaAssignmentPlan(areas=previews, assignments=assignments)
