"""
Admin Dashboard Endpoints

Reporting views for the back-office landing page: headline stats, revenue
and user growth charts, the monthly target and recent activity.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status
import structlog

from backoffice.database.models import TargetType, User
from backoffice.reporting.aggregator import MetricAggregator
from backoffice.reporting.dashboard import DashboardAssembler
from backoffice.reporting.periods import GrowthWindow, RevenueWindow
from backoffice.reporting.targets import TargetService
from backoffice.serving.api.dependencies import (
    get_aggregator,
    get_clock,
    get_dashboard,
    get_target_service,
    require_backoffice_user,
)
from backoffice.serving.api.schemas import CamelModel, TargetOut, success

router = APIRouter()
logger = structlog.get_logger(__name__)


class MonthlyTargetRequest(CamelModel):
    """Body of set-target"""
    target_value: Optional[float] = None
    target_type: TargetType = TargetType.REVENUE
    description: Optional[str] = None


@router.get("/stats")
async def get_dashboard_stats(
    dashboard: DashboardAssembler = Depends(get_dashboard),
) -> Dict[str, Any]:
    """Full dashboard payload."""
    payload = await dashboard.build_stats()
    logger.info("Dashboard stats built", user_id=str(dashboard.user_id))
    return success(payload)


@router.get("/revenue-overview")
async def get_revenue_overview(
    period: RevenueWindow = Query(RevenueWindow.SIX_MONTHS),
    dashboard: DashboardAssembler = Depends(get_dashboard),
) -> Dict[str, Any]:
    return success({"revenue_overview": await dashboard.revenue_overview(period)})


@router.get("/user-growth-progress")
async def get_user_growth_progress(
    period: GrowthWindow = Query(GrowthWindow.EIGHT_WEEKS),
    dashboard: DashboardAssembler = Depends(get_dashboard),
) -> Dict[str, Any]:
    return success({"user_growth_progress": await dashboard.user_growth(period)})


@router.post("/set-target")
async def set_monthly_target(
    body: MonthlyTargetRequest,
    response: Response,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    """Create or update the target covering the current month."""
    target, created = await targets.set_monthly_target(
        user.id,
        body.target_value,
        target_type=body.target_type,
        description=body.description,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return success(
        {"target": TargetOut.from_target(target, now)},
        message="Target created successfully" if created else "Target updated successfully",
    )


@router.get("/monthly-target")
async def get_monthly_target(
    target_type: TargetType = Query(TargetType.REVENUE, alias="targetType"),
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    """Current month's target with its value recomputed from live data."""
    target = await targets.monthly_target(user.id, target_type)
    if target is None:
        return success({"target": None, "message": "No target set for this month"})
    return success({"target": TargetOut.from_target(target, now)})


@router.get("/recent-orders")
async def get_recent_orders(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(require_backoffice_user),
    aggregator: MetricAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    orders = await aggregator.recent_orders(limit)
    return success({"orders": orders}, results=len(orders))


@router.get("/recent-users")
async def get_recent_users(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(require_backoffice_user),
    aggregator: MetricAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    users = await aggregator.recent_users(limit)
    return success({"users": users}, results=len(users))


@router.get("/performance-metrics")
async def get_performance_metrics(
    dashboard: DashboardAssembler = Depends(get_dashboard),
) -> Dict[str, Any]:
    return success(await dashboard.performance_metrics())
