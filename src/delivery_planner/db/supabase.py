"""Supabase client for the snapshot store."""

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client | None:
    """Get cached Supabase client instance.

    Returns None when credentials are missing or the client cannot be built.
    This does not test the connection; queries may still fail with network errors.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logger.info("Supabase credentials not configured; using in-memory snapshot store")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as exc:  # supabase raises a mix of httpx and its own errors
        logger.error("Failed to create Supabase client: %s", exc)
        return None
