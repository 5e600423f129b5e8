"""Staleness checks for stored route snapshots."""

from __future__ import annotations

import hashlib
import logging
from datetime import date
from typing import Iterable, Mapping, Optional, Protocol, Sequence

from ...models.domain import RouteType
from .models import RouteFingerprint, RouteSnapshot

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    def get(self, delivery_date: date, route_type: RouteType, driver_id: Optional[str] = None) -> Optional[RouteSnapshot]:
        ...

    def list(self, delivery_date: date, route_type: RouteType) -> list[RouteSnapshot]:
        ...

    def replace(self, delivery_date: date, route_type: RouteType, snapshots: Sequence[RouteSnapshot]) -> None:
        ...


def _digest(parts: Iterable[str]) -> str:
    hasher = hashlib.sha256()
    for part in parts:
        hasher.update(part.encode("utf-8"))
        hasher.update(b"\n")
    return hasher.hexdigest()


def stop_ids_fingerprint(stop_ids: Iterable[str]) -> str:
    return _digest(sorted(set(stop_ids)))


def assignment_fingerprint(assignment: Mapping[str, Optional[str]]) -> str:
    """Hash of sorted (stop_id, driver_id) pairs; unassigned stops are left out."""
    pairs = sorted((stop_id, driver_id) for stop_id, driver_id in assignment.items() if driver_id)
    return _digest(f"{stop_id}\t{driver_id}" for stop_id, driver_id in pairs)


def build_fingerprint(stop_ids: Iterable[str], assignment: Mapping[str, Optional[str]]) -> RouteFingerprint:
    unique_ids = set(stop_ids)
    return RouteFingerprint(
        stop_count=len(unique_ids),
        stop_ids_hash=stop_ids_fingerprint(unique_ids),
        assignment_hash=assignment_fingerprint(assignment),
    )


class RecalculationGate:
    """Decides whether the stored snapshots for a date must be recomputed.

    Signals are checked cheapest first: stop count, then the id-set hash,
    then the driver assignment hash. Nothing is recomputed here.
    """

    def __init__(self, snapshots: SnapshotStore) -> None:
        self.snapshots = snapshots

    def stale_reason(
        self,
        delivery_date: date,
        current_stop_ids: Iterable[str],
        current_assignment: Mapping[str, Optional[str]],
        route_type: RouteType = RouteType.DELIVERY,
    ) -> Optional[str]:
        stored = self.snapshots.list(delivery_date, route_type)
        if not stored:
            return "no_snapshot"

        fingerprint = stored[0].fingerprint
        current_ids = set(current_stop_ids)
        if len(current_ids) != fingerprint.stop_count:
            return "count_changed"
        if stop_ids_fingerprint(current_ids) != fingerprint.stop_ids_hash:
            return "stop_set_changed"
        scoped = {stop_id: current_assignment.get(stop_id) for stop_id in current_ids}
        if assignment_fingerprint(scoped) != fingerprint.assignment_hash:
            return "assignment_changed"
        return None

    def needs_recalculation(
        self,
        delivery_date: date,
        current_stop_ids: Iterable[str],
        current_assignment: Mapping[str, Optional[str]],
        route_type: RouteType = RouteType.DELIVERY,
    ) -> bool:
        reason = self.stale_reason(delivery_date, current_stop_ids, current_assignment, route_type)
        if reason is None:
            logger.debug("%s route for %s is current", route_type.value, delivery_date)
            return False
        logger.info("%s route for %s needs recalculation: %s", route_type.value, delivery_date, reason)
        return True
