"""Shared FastAPI dependencies."""

from __future__ import annotations

import logging
from functools import lru_cache

from ..config import settings
from ..db.supabase import get_supabase_client
from ..persistence.database import SupabaseDispatchRepository
from ..persistence.memory import InMemoryDispatchRepository
from ..persistence.repository import DispatchRepository

logger = logging.getLogger(__name__)


@lru_cache()
def get_repository() -> DispatchRepository:
    """Process-wide repository selected by ``DISPATCH_STORAGE_BACKEND``."""
    if settings.storage_backend == "supabase":
        client = get_supabase_client()
        if client is None:
            raise RuntimeError(
                "Supabase storage selected but DISPATCH_SUPABASE_URL / DISPATCH_SUPABASE_KEY are not set"
            )
        logger.info("Using Supabase dispatch repository")
        return SupabaseDispatchRepository(client)

    logger.info("Using in-memory dispatch repository")
    return InMemoryDispatchRepository()
