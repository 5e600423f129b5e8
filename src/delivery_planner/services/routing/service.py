"""Routing orchestration service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Mapping, Optional, Sequence

from ...config import settings
from ...errors import DepotNotConfiguredError
from ...models.domain import (
    ROUTE_STATUSES,
    DeliverySequenceFields,
    Depot,
    Order,
    RouteType,
    Stop,
)
from ...persistence.filesystem import FileStorage
from ...persistence.memory import InMemoryOrderStore
from ..audit import AuditAction, log_event
from ..outputs.routing_formatter import snapshot_to_json, snapshots_to_csv
from .allocator import DriverOrderer, DriverSequenceAllocator, plan_area_assignment
from .models import AreaAssignmentPlan, DriverSequenceResult, RouteSnapshot, SequencedStop
from .recalculation import RecalculationGate, SnapshotStore
from .sequencer import RouteSequencer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeliveryRoutes:
    delivery_date: date
    snapshots: list[RouteSnapshot]
    recomputed: bool
    reason: Optional[str] = None
    export_path: Optional[Path] = None


@dataclass(slots=True)
class PackingGroup:
    """Orders for one driver (or unassigned), in loading order."""

    driver_id: Optional[str]
    orders: list[Order] = field(default_factory=list)


def depot_from_settings() -> Optional[Depot]:
    if not settings.depot_configured:
        return None
    return Depot(
        code=settings.depot_code,
        latitude=settings.depot_latitude,
        longitude=settings.depot_longitude,
    )


def _assignment(orders: Sequence[Order]) -> dict[str, Optional[str]]:
    return {order.order_id: order.driver_id for order in orders}


class RouteSequencingService:
    """Runs the sequencer and allocator when the gate says so, and writes results back."""

    def __init__(
        self,
        orders: InMemoryOrderStore,
        snapshots: SnapshotStore,
        sequencer: RouteSequencer,
        depot: Optional[Depot],
        allocator: Optional[DriverSequenceAllocator] = None,
        storage: Optional[FileStorage] = None,
    ) -> None:
        self.orders = orders
        self.snapshots = snapshots
        self.sequencer = sequencer
        self.depot = depot
        self.allocator = allocator or DriverSequenceAllocator()
        self.gate = RecalculationGate(snapshots)
        self.storage = storage

    def _require_depot(self) -> Depot:
        if self.depot is None:
            raise DepotNotConfiguredError()
        return self.depot

    def _orders_for(self, delivery_date: date, route_type: RouteType) -> list[Order]:
        return self.orders.list_orders(delivery_date, ROUTE_STATUSES[route_type])

    def prepare_packing_route(self, delivery_date: date, force: bool = False) -> RouteSnapshot:
        """Global packing-type route over confirmed, packing and ready orders."""
        depot = self._require_depot()
        orders = self._orders_for(delivery_date, RouteType.PACKING)
        assignment = _assignment(orders)
        if not force:
            stored = self.snapshots.get(delivery_date, RouteType.PACKING)
            fresh = not self.gate.needs_recalculation(
                delivery_date, assignment.keys(), assignment, RouteType.PACKING
            )
            if stored is not None and fresh:
                return stored

        stops = [order.to_stop(RouteType.PACKING) for order in orders]
        snapshot = self.sequencer.compute_route(
            stops, depot, delivery_date=delivery_date, route_type=RouteType.PACKING
        )
        results = self.allocator.allocate(snapshot, assignment)
        arrivals = {stop.stop_id: stop.estimated_arrival for stop in snapshot.stops}
        self._write_sequences(orders, results, arrivals, RouteType.PACKING)
        self.snapshots.replace(delivery_date, RouteType.PACKING, [snapshot])
        self._export(delivery_date, RouteType.PACKING, [snapshot])
        logger.info(
            "Packing route for %s: %d stops, %.1f km",
            delivery_date, len(snapshot.stops), snapshot.total_distance_km,
        )
        return snapshot

    def ensure_delivery_routes(
        self,
        delivery_date: date,
        force: bool = False,
        reoptimize_per_driver: Optional[bool] = None,
    ) -> DeliveryRoutes:
        """Delivery snapshots for the date, recomputed only when stale or forced."""
        depot = self._require_depot()
        orders = self._orders_for(delivery_date, RouteType.DELIVERY)
        assignment = _assignment(orders)
        reason = self.gate.stale_reason(delivery_date, assignment.keys(), assignment, RouteType.DELIVERY)
        if reason is None and not force:
            return DeliveryRoutes(
                delivery_date=delivery_date,
                snapshots=self.snapshots.list(delivery_date, RouteType.DELIVERY),
                recomputed=False,
            )
        reason = reason or "forced"
        logger.info("Recomputing delivery routes for %s (%s)", delivery_date, reason)

        stops = [order.to_stop() for order in orders]
        by_id = {stop.stop_id: stop for stop in stops}
        global_snapshot = self.sequencer.compute_route(
            stops, depot, delivery_date=delivery_date, route_type=RouteType.DELIVERY
        )

        reoptimize = settings.reoptimize_per_driver if reoptimize_per_driver is None else reoptimize_per_driver
        orderer = self._driver_orderer(by_id, depot) if reoptimize else None
        results = self.allocator.allocate(global_snapshot, assignment, orderer)

        snapshots = self._driver_snapshots(global_snapshot, results, by_id, depot, reoptimize)
        arrivals = {
            stop.stop_id: stop.estimated_arrival for snapshot in snapshots for stop in snapshot.stops
        }
        self._write_sequences(orders, results, arrivals, RouteType.DELIVERY)
        self.snapshots.replace(delivery_date, RouteType.DELIVERY, snapshots)
        export_path = self._export(delivery_date, RouteType.DELIVERY, snapshots)
        return DeliveryRoutes(
            delivery_date=delivery_date,
            snapshots=snapshots,
            recomputed=True,
            reason=reason,
            export_path=export_path,
        )

    def _driver_orderer(self, by_id: Mapping[str, Stop], depot: Depot) -> DriverOrderer:
        def reorder(driver_id: str, members: list[SequencedStop]) -> list[SequencedStop]:
            ordered, _ = self.sequencer.order_stops([by_id[stop.stop_id] for stop in members], depot)
            position = {stop.stop_id: index for index, stop in enumerate(ordered)}
            logger.debug("Re-optimized %d stops for driver %s", len(members), driver_id)
            return sorted(members, key=lambda stop: position[stop.stop_id])

        return reorder

    def _driver_snapshots(
        self,
        global_snapshot: RouteSnapshot,
        results: Mapping[Optional[str], DriverSequenceResult],
        by_id: Mapping[str, Stop],
        depot: Depot,
        reoptimized: bool,
    ) -> list[RouteSnapshot]:
        drivers = [driver_id for driver_id in results if driver_id is not None]
        if not drivers:
            global_snapshot.metadata.update({"driver_rank": 0, "reoptimized_per_driver": False})
            return [global_snapshot]

        snapshots: list[RouteSnapshot] = []
        ranked: list[Optional[str]] = [*drivers, None] if None in results else list(drivers)
        for rank, driver_id in enumerate(ranked, start=1):
            ordered = [by_id[stop_id] for stop_id in results[driver_id].delivery_order]
            snapshot = self.sequencer.trace_route(
                ordered,
                depot,
                delivery_date=global_snapshot.delivery_date,
                route_type=RouteType.DELIVERY,
                driver_id=driver_id,
                fingerprint=global_snapshot.fingerprint,
            )
            snapshot.unlocatable_stop_ids = list(global_snapshot.unlocatable_stop_ids)
            snapshot.metadata.update(
                {
                    "driver_rank": rank,
                    "unassigned": driver_id is None,
                    "reoptimized_per_driver": reoptimized and driver_id is not None,
                }
            )
            snapshots.append(snapshot)
        return snapshots

    def _write_sequences(
        self,
        orders: Sequence[Order],
        results: Mapping[Optional[str], DriverSequenceResult],
        arrivals: Mapping[str, Optional[datetime]],
        route_type: RouteType,
    ) -> None:
        entries = {entry.stop_id: entry for result in results.values() for entry in result.entries}
        for order in orders:
            entry = entries.get(order.order_id)
            if entry is None:
                fields = DeliverySequenceFields()
            else:
                fields = DeliverySequenceFields(
                    delivery_sequence=entry.delivery_sequence,
                    packing_sequence=entry.packing_sequence,
                    driver_delivery_sequence=entry.driver_delivery_sequence,
                    driver_packing_sequence=entry.driver_packing_sequence,
                    estimated_arrival=arrivals.get(order.order_id),
                )
            self.orders.write_sequences(order.order_id, fields, route_type)

    def _export(self, delivery_date: date, route_type: RouteType, snapshots: Sequence[RouteSnapshot]) -> Optional[Path]:
        if self.storage is None:
            return None
        run_dir = self.storage.make_run_directory(prefix=f"{route_type.value}_{delivery_date.isoformat()}")
        self.storage.write_json(
            run_dir / "summary.json",
            {
                "delivery_date": delivery_date.isoformat(),
                "route_type": route_type.value,
                "snapshots": [snapshot_to_json(snapshot) for snapshot in snapshots],
            },
        )
        self.storage.write_csv(run_dir / "sequence.csv", snapshots_to_csv(snapshots))
        return run_dir

    def packing_groups(self, delivery_date: date) -> list[PackingGroup]:
        """Orders grouped by driver, each group in LIFO loading order."""
        self.prepare_packing_route(delivery_date)
        orders = self._orders_for(delivery_date, RouteType.PACKING)

        def group_position(order: Order) -> tuple[int, str]:
            return (order.packing_sequences.delivery_sequence or 10**9, order.order_id)

        groups: dict[Optional[str], list[Order]] = {}
        for order in sorted(orders, key=group_position):
            groups.setdefault(order.driver_id, []).append(order)

        def load_position(order: Order) -> tuple[int, str]:
            sequence = (
                order.packing_sequences.driver_packing_sequence
                if order.driver_id
                else order.packing_sequences.packing_sequence
            )
            return (sequence if sequence is not None else 10**9, order.order_id)

        ordered_keys = [key for key in groups if key is not None]
        if None in groups:
            ordered_keys.append(None)
        return [
            PackingGroup(driver_id=key, orders=sorted(groups[key], key=load_position))
            for key in ordered_keys
        ]

    def route_status(self, delivery_date: date) -> dict:
        packing_orders = self._orders_for(delivery_date, RouteType.PACKING)
        delivery_orders = self._orders_for(delivery_date, RouteType.DELIVERY)
        packing_assignment = _assignment(packing_orders)
        delivery_assignment = _assignment(delivery_orders)
        return {
            "delivery_date": delivery_date,
            "packing_stop_count": len(packing_orders),
            "delivery_stop_count": len(delivery_orders),
            "packing_stale_reason": self.gate.stale_reason(
                delivery_date, packing_assignment.keys(), packing_assignment, RouteType.PACKING
            ),
            "delivery_stale_reason": self.gate.stale_reason(
                delivery_date, delivery_assignment.keys(), delivery_assignment, RouteType.DELIVERY
            ),
            "delivery_snapshot_count": len(self.snapshots.list(delivery_date, RouteType.DELIVERY)),
            "unlocatable_order_ids": sorted(
                order.order_id
                for order in packing_orders
                if order.latitude is None or order.longitude is None
            ),
        }

    def auto_assign(
        self,
        delivery_date: date,
        driver_areas: Mapping[str, Sequence[str]],
        apply: bool = False,
        actor: str = "system",
    ) -> AreaAssignmentPlan:
        """Preview (or apply) area-based driver assignment for unassigned ready orders."""
        depot = self._require_depot()
        orders = self._orders_for(delivery_date, RouteType.DELIVERY)
        snapshot = self.sequencer.compute_route(
            [order.to_stop() for order in orders],
            depot,
            delivery_date=delivery_date,
            route_type=RouteType.DELIVERY,
        )
        plan = plan_area_assignment(snapshot, _assignment(orders), driver_areas)
        if apply:
            for order_id, driver_id in plan.assignments.items():
                self.assign_driver(order_id, driver_id, actor)
            logger.info("Auto-assigned %d orders for %s", len(plan.assignments), delivery_date)
        return plan

    def assign_driver(self, order_id: str, driver_id: Optional[str], actor: str) -> Order:
        order = self.orders.assign_driver(order_id, driver_id)
        log_event(
            AuditAction.DRIVER_ASSIGNED if driver_id else AuditAction.DRIVER_UNASSIGNED,
            order_id,
            actor,
            driver_id=driver_id,
        )
        return order
