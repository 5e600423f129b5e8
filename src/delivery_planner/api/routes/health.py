"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...config import settings

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok", "depot_configured": settings.depot_configured}


@router.get("/health/osrm", status_code=status.HTTP_200_OK)
def health_osrm() -> dict:
    """Check OSRM service health."""
    from ...services.routing.osrm_client import check_health

    if not settings.osrm_base_url:
        return {"service": "osrm", "configured": False, "healthy": False}
    return {"service": "osrm", "configured": True, "healthy": check_health()}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check database connection and snapshot table access."""
    from ...db.supabase import get_supabase_client
    from ...persistence.database import check_database_health

    client = get_supabase_client()
    if client is None:
        return {
            "configured": False,
            "message": "Supabase not configured. Set DP_SUPABASE_URL and DP_SUPABASE_KEY; snapshots are kept in memory.",
        }
    connected = check_database_health(client)
    return {
        "configured": True,
        "connected": connected,
        "table": settings.snapshot_table,
        "message": "Database connected." if connected else "Database connection error.",
    }
