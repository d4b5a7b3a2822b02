"""Analytics data service: cached report queries against the remote data source.

Every report method follows the same path: scope the region to what the
caller may see, check the cache, fall through to the data source on a miss,
and store the result. Report-level TTLs override the cache default where a
report goes stale faster.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Sequence

from errors import ForbiddenError
from services.cache import MISS, AnalyticsCache, generate_key
from services.data_source import DataSource

logger = logging.getLogger(__name__)

ROLES = {"superadmin", "admin", "encoder", "viewer"}
ADMIN_ROLES = {"superadmin", "admin"}

AGGREGATIONS = {"monthly", "daily"}

SPECIES_DISTRIBUTION_TTL_MS = 3 * 60 * 1000

# Every cached report method; refresh() clears all of them
REPORT_METHODS = (
    "get_catch_trends",
    "get_species_distribution",
    "get_regional_comparison",
    "get_gear_analysis",
    "get_comparison_stats",
    "get_vessel_stats",
    "get_sample_day_stats",
    "get_top_vessels",
    "get_top_species",
    "get_top_landing_centers",
    "get_top_fishing_grounds",
    "get_efficiency_metrics",
)


@dataclass(frozen=True)
class UserProfile:
    role: str
    region_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def scope_region(user: UserProfile, region_id: int | None) -> int | None:
    """Resolve the region a caller may query.

    Admins get what they asked for (None means all regions). Everyone else
    is pinned to their own region.
    """
    if user.is_admin:
        return region_id
    if user.region_id is None:
        raise ForbiddenError(f"User with role '{user.role}' has no region assignment")
    return user.region_id


class AnalyticsService:
    def __init__(self, cache: AnalyticsCache, data_source: DataSource):
        self.cache = cache
        self.data_source = data_source

    def _get_cached(self, method: str, args: Sequence[Any]) -> Any:
        return self.cache.get(generate_key(method, args))

    def _set_cache(self, method: str, args: Sequence[Any], data: Any, ttl_ms: float | None = None) -> None:
        self.cache.set(generate_key(method, args), data, ttl_ms)

    def clear_cache(self, pattern: str) -> int:
        """Drop cached results whose key starts with pattern."""
        removed = self.cache.clear_pattern(pattern)
        if removed:
            logger.info("Cleared %d cached entries for %s", removed, pattern)
        return removed

    def refresh(self) -> int:
        """Drop every cached report result, e.g. after filters or data change."""
        return sum(self.clear_cache(method) for method in REPORT_METHODS)

    async def _cached_fetch(
        self,
        method: str,
        args: Sequence[Any],
        params: dict,
        ttl_ms: float | None = None,
    ) -> Any:
        cached = self._get_cached(method, args)
        if cached is not MISS:
            return cached

        result = await self.data_source.fetch(method, params)
        self._set_cache(method, args, result, ttl_ms)
        return result

    async def _report(
        self,
        method: str,
        user: UserProfile,
        from_date: date | None,
        to_date: date | None,
        region_id: int | None,
        ttl_ms: float | None = None,
        **extras: Any,
    ) -> Any:
        region = scope_region(user, region_id)
        args = [from_date, to_date, *extras.values(), region]
        params = {"from_date": from_date, "to_date": to_date, **extras, "region_id": region}
        return await self._cached_fetch(method, args, params, ttl_ms)

    async def get_catch_trends(
        self,
        user: UserProfile,
        from_date: date | None = None,
        to_date: date | None = None,
        aggregation: str = "monthly",
        region_id: int | None = None,
    ) -> Any:
        """Catch totals over time, bucketed monthly or daily."""
        if aggregation not in AGGREGATIONS:
            raise ValueError(f"Unsupported aggregation: {aggregation}. Supported: {sorted(AGGREGATIONS)}")
        return await self._report(
            "get_catch_trends", user, from_date, to_date, region_id, aggregation=aggregation
        )

    async def get_species_distribution(self, user, from_date=None, to_date=None, region_id=None):
        return await self._report(
            "get_species_distribution", user, from_date, to_date, region_id,
            ttl_ms=SPECIES_DISTRIBUTION_TTL_MS,
        )

    async def get_regional_comparison(self, user, from_date=None, to_date=None, region_id=None):
        return await self._report("get_regional_comparison", user, from_date, to_date, region_id)

    async def get_gear_analysis(self, user, from_date=None, to_date=None, region_id=None):
        return await self._report("get_gear_analysis", user, from_date, to_date, region_id)

    async def get_comparison_stats(self, user, from_date, to_date, region_id=None):
        """Current period vs. the preceding period of equal length."""
        if from_date is None or to_date is None:
            raise ValueError("Comparison stats require both from_date and to_date")
        return await self._report("get_comparison_stats", user, from_date, to_date, region_id)

    async def get_vessel_stats(self, user, from_date=None, to_date=None, region_id=None):
        return await self._report("get_vessel_stats", user, from_date, to_date, region_id)

    async def get_sample_day_stats(self, user, from_date=None, to_date=None, region_id=None):
        return await self._report("get_sample_day_stats", user, from_date, to_date, region_id)

    async def get_top_vessels(self, user, from_date=None, to_date=None, region_id=None, limit=10):
        return await self._report("get_top_vessels", user, from_date, to_date, region_id, limit=limit)

    async def get_top_species(self, user, from_date=None, to_date=None, region_id=None, limit=10):
        return await self._report("get_top_species", user, from_date, to_date, region_id, limit=limit)

    async def get_top_landing_centers(self, user, from_date=None, to_date=None, region_id=None, limit=10):
        return await self._report(
            "get_top_landing_centers", user, from_date, to_date, region_id, limit=limit
        )

    async def get_top_fishing_grounds(self, user, from_date=None, to_date=None, region_id=None, limit=10):
        return await self._report(
            "get_top_fishing_grounds", user, from_date, to_date, region_id, limit=limit
        )

    async def get_efficiency_metrics(
        self,
        user: UserProfile,
        from_date: date | None = None,
        to_date: date | None = None,
        region_id: int | None = None,
        gear_id: int | None = None,
        effort_unit_id: int | None = None,
        vessel_id: int | None = None,
    ) -> Any:
        """Catch per unit effort, optionally narrowed to a gear, effort unit or vessel."""
        return await self._report(
            "get_efficiency_metrics", user, from_date, to_date, region_id,
            gear_id=gear_id, effort_unit_id=effort_unit_id, vessel_id=vessel_id,
        )

    async def get_regions(self, user: UserProfile) -> Any:
        """Regions visible to the caller. Not cached."""
        region = None if user.is_admin else scope_region(user, None)
        return await self.data_source.fetch("get_regions", {"region_id": region})
