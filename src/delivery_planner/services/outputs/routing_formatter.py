"""Serializers for route snapshots."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict
from datetime import date, datetime
from typing import Any, Sequence

from ...models.domain import RouteType
from ..routing.models import AreaBreakdown, RouteFingerprint, RouteSnapshot, SequencedStop


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def snapshot_to_json(snapshot: RouteSnapshot) -> dict[str, Any]:
    return {
        "delivery_date": snapshot.delivery_date.isoformat(),
        "route_type": snapshot.route_type.value,
        "driver_id": snapshot.driver_id,
        "total_distance_km": snapshot.total_distance_km,
        "total_duration_min": snapshot.total_duration_min,
        "computed_at": snapshot.computed_at.isoformat(),
        "fingerprint": asdict(snapshot.fingerprint),
        "geometry": [list(point) for point in snapshot.geometry] if snapshot.geometry is not None else None,
        "area_breakdown": [asdict(area) for area in snapshot.area_breakdown],
        "unlocatable_stop_ids": list(snapshot.unlocatable_stop_ids),
        "metadata": dict(snapshot.metadata),
        "stops": [
            {**asdict(stop), "estimated_arrival": _iso(stop.estimated_arrival)}
            for stop in snapshot.stops
        ],
    }


def snapshot_from_json(payload: dict[str, Any]) -> RouteSnapshot:
    geometry = payload.get("geometry")
    return RouteSnapshot(
        delivery_date=date.fromisoformat(payload["delivery_date"]),
        route_type=RouteType(payload["route_type"]),
        driver_id=payload.get("driver_id") or None,
        stops=[
            SequencedStop(
                **{
                    **stop,
                    "estimated_arrival": datetime.fromisoformat(stop["estimated_arrival"])
                    if stop.get("estimated_arrival")
                    else None,
                }
            )
            for stop in payload.get("stops", [])
        ],
        geometry=[tuple(point) for point in geometry] if geometry is not None else None,
        total_distance_km=float(payload.get("total_distance_km", 0.0)),
        total_duration_min=float(payload.get("total_duration_min", 0.0)),
        fingerprint=RouteFingerprint(**payload["fingerprint"]),
        computed_at=datetime.fromisoformat(payload["computed_at"]),
        area_breakdown=[AreaBreakdown(**area) for area in payload.get("area_breakdown", [])],
        unlocatable_stop_ids=list(payload.get("unlocatable_stop_ids", [])),
        metadata=dict(payload.get("metadata") or {}),
    )


def snapshots_to_csv(snapshots: Sequence[RouteSnapshot]) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "route_type",
        "driver_id",
        "sequence",
        "stop_id",
        "order_id",
        "area_tag",
        "distance_from_prev_km",
        "duration_from_prev_min",
        "estimated_arrival",
        "total_distance_km",
        "total_duration_min",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for snapshot in snapshots:
        for stop in snapshot.stops:
            writer.writerow(
                {
                    "route_type": snapshot.route_type.value,
                    "driver_id": snapshot.driver_id or "",
                    "sequence": stop.sequence,
                    "stop_id": stop.stop_id,
                    "order_id": stop.order_id,
                    "area_tag": stop.area_tag or "",
                    "distance_from_prev_km": stop.distance_from_prev_km,
                    "duration_from_prev_min": stop.duration_from_prev_min,
                    "estimated_arrival": _iso(stop.estimated_arrival) or "",
                    "total_distance_km": snapshot.total_distance_km,
                    "total_duration_min": snapshot.total_duration_min,
                }
            )
    return buffer.getvalue()
