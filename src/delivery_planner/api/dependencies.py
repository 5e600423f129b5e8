"""Cached collaborator providers for the API layer."""

from __future__ import annotations

from functools import lru_cache

from ..config import settings
from ..db.supabase import get_supabase_client
from ..persistence.database import SupabaseSnapshotStore
from ..persistence.filesystem import FileStorage
from ..persistence.memory import InMemoryOrderStore, InMemorySnapshotStore
from ..services.packing.pin import HashedPinPolicy
from ..services.packing.state_machine import PackingSessionStateMachine
from ..services.routing.geo_router import build_geo_router, build_osrm_client
from ..services.routing.recalculation import SnapshotStore
from ..services.routing.sequencer import RouteSequencer
from ..services.routing.service import RouteSequencingService, depot_from_settings
from ..services.stock.store import InMemoryStockStore


@lru_cache()
def get_order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@lru_cache()
def get_stock_store() -> InMemoryStockStore:
    return InMemoryStockStore()


@lru_cache()
def get_snapshot_store() -> SnapshotStore:
    client = get_supabase_client()
    if client is None:
        return InMemorySnapshotStore()
    return SupabaseSnapshotStore(client)


@lru_cache()
def get_route_service() -> RouteSequencingService:
    osrm_client = build_osrm_client()
    sequencer = RouteSequencer(geo_router=build_geo_router(osrm_client), osrm_client=osrm_client)
    return RouteSequencingService(
        orders=get_order_store(),
        snapshots=get_snapshot_store(),
        sequencer=sequencer,
        depot=depot_from_settings(),
        storage=FileStorage() if settings.export_snapshots else None,
    )


@lru_cache()
def get_packing_machine() -> PackingSessionStateMachine:
    return PackingSessionStateMachine(
        orders=get_order_store(),
        stock=get_stock_store(),
        pin_policy=HashedPinPolicy.from_settings(),
    )


def reset_dependencies() -> None:
    """Drop cached collaborators (used after settings change, e.g. in tests)."""
    for provider in (
        get_order_store,
        get_stock_store,
        get_snapshot_store,
        get_route_service,
        get_packing_machine,
    ):
        provider.cache_clear()
