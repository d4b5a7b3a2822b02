"""Cache administration routes. Admin roles only."""

import logging

from fastapi import APIRouter, Header, Query, Request

from errors import ForbiddenError
from routes.analytics import current_user

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_admin(role: str | None, region_id: int | None) -> None:
    user = current_user(role, region_id)
    if not user.is_admin:
        raise ForbiddenError("Cache administration requires an admin role")


@router.get("/cache/stats")
async def stats(
    request: Request,
    x_user_role: str | None = Header(None),
    x_user_region_id: int | None = Header(None),
) -> dict:
    _require_admin(x_user_role, x_user_region_id)
    return request.app.state.cache.get_stats()


@router.delete("/cache")
async def clear(
    request: Request,
    prefix: str | None = Query(None),
    x_user_role: str | None = Header(None),
    x_user_region_id: int | None = Header(None),
) -> dict:
    """Clear the whole cache, or only keys starting with prefix."""
    _require_admin(x_user_role, x_user_region_id)
    cache = request.app.state.cache
    if prefix:
        removed = cache.clear_pattern(prefix)
    else:
        removed = len(cache)
        cache.clear()
    logger.info("Cache cleared (prefix=%s, removed=%d)", prefix, removed)
    return {"removed": removed}


@router.delete("/cache/{key:path}")
async def delete_key(
    request: Request,
    key: str,
    x_user_role: str | None = Header(None),
    x_user_region_id: int | None = Header(None),
) -> dict:
    _require_admin(x_user_role, x_user_region_id)
    cache = request.app.state.cache
    existed = key in cache
    cache.delete(key)
    return {"key": key, "removed": existed}


@router.post("/cache/sweep")
async def sweep(
    request: Request,
    x_user_role: str | None = Header(None),
    x_user_region_id: int | None = Header(None),
) -> dict:
    """Run the expired-entry sweep now instead of waiting for the timer."""
    _require_admin(x_user_role, x_user_region_id)
    return {"removed": request.app.state.cache.clean_expired()}
