"""In-memory order and snapshot stores."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import Callable, Iterable, Iterator, Optional, Sequence

from ..errors import ConcurrencyConflictError, ItemNotFoundError, OrderNotFoundError
from ..models.domain import DeliverySequenceFields, Order, OrderStatus, RouteType
from ..services.routing.models import RouteSnapshot


class InMemoryOrderStore:
    """Order store with per-order locks.

    Order-level transitions go through ``transaction``, which holds the
    order's lock, checks the caller's expected version and bumps the version
    on commit. Item flags and sequence fields are written under the same
    lock without touching the version.
    """

    def __init__(self, orders: Iterable[Order] = ()) -> None:
        self._orders: dict[str, Order] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()
        for order in orders:
            self.put(order)

    def _lock_for(self, order_id: str) -> threading.RLock:
        with self._guard:
            return self._locks.setdefault(order_id, threading.RLock())

    def put(self, order: Order) -> Order:
        with self._lock_for(order.order_id):
            self._orders[order.order_id] = copy.deepcopy(order)
            return copy.deepcopy(order)

    def get(self, order_id: str) -> Order:
        with self._lock_for(order_id):
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            return copy.deepcopy(order)

    def list_orders(
        self,
        delivery_date: Optional[date] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> list[Order]:
        wanted = set(statuses) if statuses is not None else None
        with self._guard:
            orders = list(self._orders.values())
        selected = [
            copy.deepcopy(order)
            for order in orders
            if (delivery_date is None or order.delivery_date == delivery_date)
            and (wanted is None or order.status in wanted)
        ]
        return sorted(selected, key=lambda order: order.order_id)

    @contextmanager
    def transaction(self, order_id: str, expected_version: Optional[int] = None) -> Iterator[Order]:
        """Yield a working copy; it replaces the stored order only if the block succeeds."""
        with self._lock_for(order_id):
            current = self._orders.get(order_id)
            if current is None:
                raise OrderNotFoundError(order_id)
            if expected_version is not None and expected_version != current.version:
                raise ConcurrencyConflictError(order_id, expected_version, current.version)
            working = copy.deepcopy(current)
            yield working
            working.version = current.version + 1
            self._orders[order_id] = working

    def set_item_packed(
        self,
        order_id: str,
        item_id: str,
        packed: bool,
        actor: str,
        at: datetime,
        guard: Optional[Callable[[Order], None]] = None,
    ) -> Order:
        with self._lock_for(order_id):
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if guard is not None:
                guard(order)
            item = order.find_item(item_id)
            if item is None:
                raise ItemNotFoundError(order_id, item_id)
            item.packed = packed
            order.packing.last_packed_by = actor
            order.packing.last_packed_at = at
            order.packing.last_activity_at = at
            return copy.deepcopy(order)

    def write_sequences(
        self,
        order_id: str,
        fields: DeliverySequenceFields,
        route_type: RouteType = RouteType.DELIVERY,
    ) -> None:
        """Overwrite only the sequence fields owned by the given route type."""
        with self._lock_for(order_id):
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if route_type is RouteType.PACKING:
                order.packing_sequences = copy.deepcopy(fields)
            else:
                order.sequences = copy.deepcopy(fields)

    def assign_driver(self, order_id: str, driver_id: Optional[str]) -> Order:
        with self._lock_for(order_id):
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            order.driver_id = driver_id or None
            return copy.deepcopy(order)


def _snapshot_key(delivery_date: date, route_type: RouteType, driver_id: Optional[str]) -> tuple[date, str, str]:
    return (delivery_date, route_type.value, driver_id or "")


class InMemorySnapshotStore:
    """Snapshots keyed by (delivery_date, route_type, driver_id)."""

    def __init__(self) -> None:
        self._snapshots: dict[tuple[date, str, str], RouteSnapshot] = {}
        self._lock = threading.Lock()

    def get(self, delivery_date: date, route_type: RouteType, driver_id: Optional[str] = None) -> Optional[RouteSnapshot]:
        with self._lock:
            snapshot = self._snapshots.get(_snapshot_key(delivery_date, route_type, driver_id))
            return copy.deepcopy(snapshot) if snapshot else None

    def list(self, delivery_date: date, route_type: RouteType) -> list[RouteSnapshot]:
        with self._lock:
            matches = [
                (key, snapshot)
                for key, snapshot in self._snapshots.items()
                if key[0] == delivery_date and key[1] == route_type.value
            ]
        matches.sort(key=lambda pair: pair[1].metadata.get("driver_rank", 0))
        return [copy.deepcopy(snapshot) for _, snapshot in matches]

    def replace(self, delivery_date: date, route_type: RouteType, snapshots: Sequence[RouteSnapshot]) -> None:
        with self._lock:
            for key in [key for key in self._snapshots if key[0] == delivery_date and key[1] == route_type.value]:
                del self._snapshots[key]
            for snapshot in snapshots:
                key = _snapshot_key(delivery_date, route_type, snapshot.driver_id)
                self._snapshots[key] = copy.deepcopy(snapshot)
