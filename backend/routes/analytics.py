"""Analytics report routes — cached report queries for dashboards.

Caller identity arrives in headers set by the upstream auth layer:
    X-User-Role       superadmin | admin | encoder | viewer
    X-User-Region-Id  region the user is assigned to (non-admins)
"""

import logging
from datetime import date

from fastapi import APIRouter, Header, Query, Request

from errors import AuthenticationError, ForbiddenError, UnknownReportError
from services.analytics import ROLES, AnalyticsService, UserProfile

logger = logging.getLogger(__name__)

router = APIRouter()

# URL slug → (service method, report-specific query params)
REPORTS = {
    "catch-trends": ("get_catch_trends", ("aggregation",)),
    "species-distribution": ("get_species_distribution", ()),
    "regional-comparison": ("get_regional_comparison", ()),
    "gear-analysis": ("get_gear_analysis", ()),
    "comparison-stats": ("get_comparison_stats", ()),
    "vessel-stats": ("get_vessel_stats", ()),
    "sample-day-stats": ("get_sample_day_stats", ()),
    "top-vessels": ("get_top_vessels", ("limit",)),
    "top-species": ("get_top_species", ("limit",)),
    "top-landing-centers": ("get_top_landing_centers", ("limit",)),
    "top-fishing-grounds": ("get_top_fishing_grounds", ("limit",)),
    "efficiency-metrics": ("get_efficiency_metrics", ("gear_id", "effort_unit_id", "vessel_id")),
}


def current_user(role: str | None, region_id: int | None) -> UserProfile:
    """Build the caller's profile from identity headers."""
    if not role:
        raise AuthenticationError()
    role = role.lower()
    if role not in ROLES:
        raise ForbiddenError(f"Unknown role: {role}")
    return UserProfile(role=role, region_id=region_id)


def _service(request: Request) -> AnalyticsService:
    return request.app.state.analytics


@router.get("/analytics/regions")
async def regions(
    request: Request,
    x_user_role: str | None = Header(None),
    x_user_region_id: int | None = Header(None),
) -> dict:
    user = current_user(x_user_role, x_user_region_id)
    return {"regions": await _service(request).get_regions(user)}


@router.post("/analytics/refresh")
async def refresh(
    request: Request,
    x_user_role: str | None = Header(None),
    x_user_region_id: int | None = Header(None),
) -> dict:
    """Drop all cached report results so the next load hits the data source."""
    current_user(x_user_role, x_user_region_id)
    cleared = _service(request).refresh()
    return {"cleared": cleared}


@router.get("/analytics/{report}")
async def report(
    request: Request,
    report: str,
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    region_id: int | None = Query(None),
    aggregation: str = Query("monthly"),
    limit: int = Query(10, ge=1, le=100),
    gear_id: int | None = Query(None),
    effort_unit_id: int | None = Query(None),
    vessel_id: int | None = Query(None),
    x_user_role: str | None = Header(None),
    x_user_region_id: int | None = Header(None),
) -> dict:
    """Run (or serve from cache) one named report."""
    if report not in REPORTS:
        raise UnknownReportError(report, REPORTS)
    user = current_user(x_user_role, x_user_region_id)

    if from_date and to_date and from_date > to_date:
        raise ValueError("from_date must be on or before to_date")

    method, extra_names = REPORTS[report]
    available = {
        "aggregation": aggregation,
        "limit": limit,
        "gear_id": gear_id,
        "effort_unit_id": effort_unit_id,
        "vessel_id": vessel_id,
    }
    extras = {name: available[name] for name in extra_names}

    data = await getattr(_service(request), method)(
        user, from_date=from_date, to_date=to_date, region_id=region_id, **extras
    )
    return {
        "report": report,
        "from_date": from_date,
        "to_date": to_date,
        "data": data,
    }
