"""Database persistence for route snapshots."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional, Sequence

from ..config import settings
from ..models.domain import RouteType
from ..services.outputs.routing_formatter import snapshot_from_json, snapshot_to_json
from ..services.routing.models import RouteSnapshot

logger = logging.getLogger(__name__)


def _driver_key(driver_id: Optional[str]) -> str:
    return driver_id or ""


class SupabaseSnapshotStore:
    """Snapshots stored one row per (delivery_date, route_type, driver_key).

    ``driver_key`` is the driver id, or an empty string for the global route.
    The serialized snapshot lives in the ``payload`` JSON column.
    """

    def __init__(self, client: Any, table: Optional[str] = None) -> None:
        self.client = client
        self.table = table or settings.snapshot_table

    def get(self, delivery_date: date, route_type: RouteType, driver_id: Optional[str] = None) -> Optional[RouteSnapshot]:
        response = (
            self.client.table(self.table)
            .select("*")
            .eq("delivery_date", delivery_date.isoformat())
            .eq("route_type", route_type.value)
            .eq("driver_key", _driver_key(driver_id))
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return snapshot_from_json(rows[0]["payload"]) if rows else None

    def list(self, delivery_date: date, route_type: RouteType) -> list[RouteSnapshot]:
        response = (
            self.client.table(self.table)
            .select("*")
            .eq("delivery_date", delivery_date.isoformat())
            .eq("route_type", route_type.value)
            .execute()
        )
        snapshots = [snapshot_from_json(row["payload"]) for row in (response.data or [])]
        snapshots.sort(key=lambda snapshot: snapshot.metadata.get("driver_rank", 0))
        return snapshots

    def replace(self, delivery_date: date, route_type: RouteType, snapshots: Sequence[RouteSnapshot]) -> None:
        """Swap the stored set for (date, route_type).

        Rows are upserted first and only keys missing from the new set are
        deleted afterwards, so readers never see an empty set mid-replace.
        """
        rows = [
            {
                "delivery_date": delivery_date.isoformat(),
                "route_type": route_type.value,
                "driver_key": _driver_key(snapshot.driver_id),
                "stop_count": snapshot.fingerprint.stop_count,
                "stop_ids_hash": snapshot.fingerprint.stop_ids_hash,
                "assignment_hash": snapshot.fingerprint.assignment_hash,
                "computed_at": snapshot.computed_at.isoformat(),
                "payload": snapshot_to_json(snapshot),
            }
            for snapshot in snapshots
        ]
        if rows:
            self.client.table(self.table).upsert(
                rows, on_conflict="delivery_date,route_type,driver_key"
            ).execute()

        keep = {row["driver_key"] for row in rows}
        existing = (
            self.client.table(self.table)
            .select("driver_key")
            .eq("delivery_date", delivery_date.isoformat())
            .eq("route_type", route_type.value)
            .execute()
        )
        stale = sorted({row["driver_key"] for row in (existing.data or [])} - keep)
        if stale:
            (
                self.client.table(self.table)
                .delete()
                .eq("delivery_date", delivery_date.isoformat())
                .eq("route_type", route_type.value)
                .in_("driver_key", stale)
                .execute()
            )
        logger.info(
            "Stored %d %s snapshots for %s (removed %d)",
            len(rows), route_type.value, delivery_date, len(stale),
        )


def check_database_health(client: Any, table: Optional[str] = None) -> bool:
    if client is None:
        return False
    try:
        client.table(table or settings.snapshot_table).select("driver_key").limit(1).execute()
        return True
    except Exception as exc:  # client surfaces transport and API errors alike
        logger.warning("Database health check failed: %s", exc)
        return False
