"""
Cache Admin Routes

Operational endpoints for the result cache: statistics, invalidation
and the enable/disable toggle.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from modelgate.cache import ResultCache
from modelgate.core.dependencies import get_result_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/cache", tags=["Cache"])


# =============================================================================
# Request/Response Models
# =============================================================================

class CacheInvalidateRequest(BaseModel):
    """Request to invalidate cache entries. Empty invalidates everything."""
    datasourceId: Optional[str] = None
    sql: Optional[str] = None


class CacheInvalidateResponse(BaseModel):
    """Cache invalidation response."""
    invalidatedCount: int


class CacheStatsResponse(BaseModel):
    """Cache statistics response."""
    enabled: bool
    hits: int
    misses: int
    hitRate: float
    evictions: int
    entryCount: int
    estimatedBytes: int
    maxEntries: int
    ttlSeconds: int


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache: ResultCache = Depends(get_result_cache)):
    """Get cache statistics."""
    return CacheStatsResponse(**cache.stats())


@router.post("/invalidate", response_model=CacheInvalidateResponse)
async def invalidate_cache(
    request: Optional[CacheInvalidateRequest] = None,
    cache: ResultCache = Depends(get_result_cache),
):
    """
    Invalidate cache entries.

    With datasourceId (and optionally sql) only matching entries are
    dropped; with no body everything is dropped.
    """
    request = request or CacheInvalidateRequest()

    if request.datasourceId:
        count = cache.invalidate(request.datasourceId, request.sql)
    elif request.sql:
        raise HTTPException(400, "Provide datasourceId when invalidating by sql")
    else:
        count = cache.invalidate_all()

    return CacheInvalidateResponse(invalidatedCount=count)


@router.post("/invalidate/datasource/{datasource_id}", response_model=CacheInvalidateResponse)
async def invalidate_datasource(datasource_id: str, cache: ResultCache = Depends(get_result_cache)):
    """Invalidate every cached result for one datasource."""
    return CacheInvalidateResponse(invalidatedCount=cache.invalidate(datasource_id))


@router.post("/toggle")
async def toggle_cache(
    enabled: bool = Query(...),
    cache: ResultCache = Depends(get_result_cache),
):
    """Enable or disable caching. Disabling clears the cache."""
    cache.set_enabled(enabled)
    return {"enabled": cache.is_enabled()}
