"""
Dashboard Assembler

Builds the admin dashboard payloads. Independent aggregations are fanned
out with asyncio.gather; each one is wrapped so that a failing query is
logged and replaced by a zero/empty default instead of failing the request.
Target lookups and reconciliation run on the request session and are
therefore awaited one at a time, after the fan-out.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

import structlog

from backoffice.config import get_settings
from backoffice.database.models import CONVERTING_ORDER_STATUSES, OrderStatus, Target, TargetPeriod
from backoffice.reporting import metrics
from backoffice.reporting.aggregator import MetricAggregator
from backoffice.reporting.metrics import SessionStats
from backoffice.reporting.periods import (
    Bucket,
    GrowthWindow,
    RevenueWindow,
    add_months,
    day_progress,
    from_storage,
    last_months,
    month_bucket,
    revenue_buckets,
    shift_month,
    start_of_day,
    to_ist,
    trailing_window,
    week_buckets,
    year_bounds,
)
from backoffice.reporting.targets import TargetService, period_label, progress_state

logger = structlog.get_logger(__name__)

EMPTY_TARGET_STATS = {
    "stats": [],
    "summary": {"total_targets": 0, "active_targets": 0, "completed_this_month": 0},
}


class DashboardAssembler:
    """
    Dashboard payloads for one back-office user.

    Example:
        assembler = DashboardAssembler(aggregator, target_service, user.id)
        payload = await assembler.build_stats()
    """

    def __init__(
        self,
        aggregator: MetricAggregator,
        targets: TargetService,
        user_id: uuid.UUID,
    ):
        self.aggregator = aggregator
        self.targets = targets
        self.user_id = user_id
        self.now = targets.now
        self.settings = get_settings().reporting

    async def _safe(self, name: str, awaitable: Awaitable[Any], default: Any) -> Any:
        """Await one aggregation, downgrading any failure to `default`."""
        try:
            return await awaitable
        except Exception as e:
            logger.warning(
                "Aggregation failed, using default",
                aggregation=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return default

    def _projected(self, revenue: float) -> int:
        return int(metrics.round_half_up(revenue * self.settings.target_uplift))

    @staticmethod
    def _avg_monthly(revenue: Sequence[float]) -> int:
        """Mean over the months that had revenue; over every month when none did."""
        months = len([r for r in revenue if r > 0]) or len(revenue)
        return int(metrics.round_half_up(metrics.safe_ratio(sum(revenue), months)))

    def _target_series(
        self,
        buckets: Sequence[Bucket],
        revenue: Sequence[float],
        stored: Dict[Tuple[int, int], Target],
        current: Optional[Target],
    ) -> List[float]:
        """Stored target per month; months without one are projected from revenue."""
        values = []
        for bucket, actual in zip(buckets, revenue):
            key = (bucket.start.year, bucket.start.month)
            if current is not None and key == (self.now.year, self.now.month):
                values.append(current.target_value)
            elif key in stored:
                values.append(stored[key].target_value)
            else:
                values.append(self._projected(actual))
        return values

    async def _stored_targets(self, buckets: Sequence[Bucket]) -> Dict[Tuple[int, int], Target]:
        return await self._safe(
            "monthly_targets",
            self.targets.monthly_targets(self.user_id, buckets[0].start, buckets[-1].end),
            {},
        )

    # =========================================================================
    # FULL DASHBOARD
    # =========================================================================

    async def build_stats(self) -> Dict[str, Any]:
        """Everything the dashboard landing page shows, in one payload."""
        agg = self.aggregator
        now = self.now
        last_30 = trailing_window(now, 30)
        prev_30 = trailing_window(now, 30, periods_back=1)
        today = start_of_day(now)
        month = month_bucket(now.year, now.month)
        prev_month = month_bucket(*shift_month(now.year, now.month, -1))
        year = revenue_buckets(RevenueWindow.YEARLY, now)
        six_months = last_months(6, now)
        weeks = week_buckets(GrowthWindow.EIGHT_WEEKS, now)
        limit = self.settings.recent_items_limit

        def converting_orders(start: datetime, end: datetime) -> Awaitable[int]:
            return agg.order_count(start, end, CONVERTING_ORDER_STATUSES)

        (
            total_revenue, revenue_30, revenue_prev_30, today_revenue,
            total_orders, orders_30, orders_prev_30, delivered_orders, pending_orders, today_orders,
            customers, new_users_30, new_users_prev_30,
            current_earnings, prev_month_earnings,
            sessions,
            year_revenue, six_month_revenue,
            weekly_users, weekly_visitors, weekly_orders,
            recent_orders, recent_users,
        ) = await asyncio.gather(
            self._safe("total_revenue", agg.revenue(), 0.0),
            self._safe("revenue_last_30_days", agg.revenue(*last_30), 0.0),
            self._safe("revenue_previous_30_days", agg.revenue(*prev_30), 0.0),
            self._safe("today_revenue", agg.revenue(today, None), 0.0),
            self._safe("total_orders", agg.order_count(), 0),
            self._safe("orders_last_30_days", agg.order_count(*last_30), 0),
            self._safe("orders_previous_30_days", agg.order_count(*prev_30), 0),
            self._safe("delivered_orders", agg.order_count(statuses=[OrderStatus.DELIVERED]), 0),
            self._safe("pending_orders", agg.order_count(statuses=[OrderStatus.PENDING]), 0),
            self._safe("today_orders", agg.order_count(today, None), 0),
            self._safe("customers", agg.customer_count(), 0),
            self._safe("new_users_last_30_days", agg.new_user_count(*last_30), 0),
            self._safe("new_users_previous_30_days", agg.new_user_count(*prev_30), 0),
            self._safe("current_month_revenue", agg.revenue(month.start, month.end), 0.0),
            self._safe("previous_month_revenue", agg.revenue(prev_month.start, prev_month.end), 0.0),
            self._safe("session_stats", agg.session_stats(*last_30), SessionStats()),
            self._safe("monthly_revenue", agg.series(year, agg.revenue), [0.0] * len(year)),
            self._safe("six_month_revenue", agg.series(six_months, agg.revenue), [0.0] * len(six_months)),
            self._safe("weekly_new_users", agg.series(weeks, agg.new_user_count), [0] * len(weeks)),
            self._safe("weekly_visitors", agg.series(weeks, agg.unique_sessions), [0] * len(weeks)),
            self._safe("weekly_orders", agg.series(weeks, converting_orders), [0] * len(weeks)),
            self._safe("recent_orders", agg.recent_orders(limit), []),
            self._safe("recent_users", agg.recent_users(limit), []),
        )

        # Request-session work, one statement at a time
        current_target = await self._safe(
            "monthly_target",
            self.targets.find_live(self.user_id, period=TargetPeriod.MONTHLY),
            None,
        )
        if current_target is not None:
            target_actual = await self._safe(
                "monthly_target_actual", self.targets.actual_for(current_target), current_earnings
            )
            await self._safe(
                "target_reconciliation",
                self.targets.reconcile_target(current_target, target_actual),
                False,
            )
        target_stats = await self._safe("target_stats", self.targets.stats(self.user_id), EMPTY_TARGET_STATS)
        stored_year = await self._stored_targets(year)
        stored_six = await self._stored_targets(six_months)

        revenue_stats = next(
            (s for s in target_stats["stats"] if s["target_type"] == "revenue"),
            None,
        ) or {}
        target_summary = {
            "total_targets": revenue_stats.get("total_targets", 0),
            "active_targets": revenue_stats.get("active_targets", 0),
            "completed_targets": revenue_stats.get("completed_targets", 0),
            "total_target_value": revenue_stats.get("total_value", 0.0),
            "total_achieved_value": revenue_stats.get("current_value", 0.0),
            "avg_progress": revenue_stats.get("avg_progress", 0.0),
        }
        target_summary["overall_progress"] = metrics.percentage(
            target_summary["total_achieved_value"], target_summary["total_target_value"]
        )

        revenue_growth = metrics.growth_rate(revenue_prev_30, revenue_30)
        user_growth = metrics.growth_rate(new_users_prev_30, new_users_30)
        orders_growth = metrics.growth_rate(orders_prev_30, orders_30)
        month_growth = metrics.growth_rate(prev_month_earnings, current_earnings)

        monthly_target = self._monthly_target_block(
            current_target, current_earnings, month_growth, today_revenue, month
        )

        year_targets = self._target_series(year, year_revenue, stored_year, current_target)
        six_targets = self._target_series(six_months, six_month_revenue, stored_six, current_target)

        weekly_conversion = [
            metrics.conversion_rate(orders, visitors)
            for orders, visitors in zip(weekly_orders, weekly_visitors)
        ]

        return {
            "stats": [
                {
                    "key": "revenue",
                    "title": "Total Revenue",
                    "value": metrics.format_inr(total_revenue),
                    "change": metrics.format_change(revenue_growth),
                    "value_raw": total_revenue,
                },
                {
                    "key": "customers",
                    "title": "Total Users",
                    "value": metrics.format_indian_number(customers),
                    "change": metrics.format_change(user_growth),
                    "value_raw": customers,
                },
                {
                    "key": "orders",
                    "title": "Total Orders",
                    "value": metrics.format_indian_number(total_orders),
                    "change": metrics.format_change(orders_growth),
                    "value_raw": total_orders,
                },
                {
                    "key": "target_progress",
                    "title": "Target Progress",
                    "value": f"{metrics.round_half_up(target_summary['avg_progress'], 1)}%",
                    "change": metrics.format_change(month_growth),
                    "value_raw": target_summary["avg_progress"],
                },
            ],
            "monthly_target": monthly_target,
            "target_stats": {k: v for k, v in target_summary.items() if k != "avg_progress"},
            "revenue_overview": {
                "labels": [b.label for b in year],
                "datasets": [
                    {"label": "Revenue", "data": year_revenue},
                    {"label": "Target", "data": year_targets},
                ],
                "summary": {
                    "current_month": current_earnings,
                    "target": monthly_target["target"],
                    "growth": revenue_growth,
                    "avg_monthly": self._avg_monthly(year_revenue),
                    "year": now.year,
                },
            },
            "target_vs_actual": {
                "labels": [b.label for b in six_months],
                "actual": six_month_revenue,
                "target": six_targets,
                "progress": [
                    metrics.percentage(actual, target, digits=2)
                    for actual, target in zip(six_month_revenue, six_targets)
                ],
            },
            "user_growth_progress": {
                "labels": [b.label for b in weeks],
                "new_users": weekly_users,
                "visitors": weekly_visitors,
                "conversion": weekly_conversion,
                "weekly_growth": self._last_step_growth(weekly_users),
                "new_users_this_week": weekly_users[-1] if weekly_users else 0,
                "conversion_rate": metrics.conversion_rate(sum(weekly_orders), sum(weekly_visitors)),
            },
            "recent_orders": recent_orders,
            "recent_users": recent_users,
            "performance_metrics": self._performance_block(
                sessions=sessions,
                orders_30=orders_30,
                total_orders=total_orders,
                delivered_orders=delivered_orders,
                total_revenue=total_revenue,
                customers=customers,
                new_users_30=new_users_30,
                target_summary=target_summary,
            ),
            "raw_data": {
                "total_users": customers,
                "total_orders": total_orders,
                "total_revenue": total_revenue,
                "pending_orders": pending_orders,
                "delivered_orders": delivered_orders,
                "today_orders": today_orders,
                "today_revenue": today_revenue,
                "new_users_last_30_days": new_users_30,
                "revenue_last_30_days": revenue_30,
                "current_year": now.year,
            },
            "target_insights": self._insights(monthly_target),
        }

    def _monthly_target_block(
        self,
        target: Optional[Target],
        current_earnings: float,
        month_growth: float,
        today_earnings: float,
        month: Bucket,
    ) -> Dict[str, Any]:
        if target is None:
            days = day_progress(month.start, month.end, self.now)
            return {
                "has_target": False,
                "target": 0,
                "current_earnings": current_earnings,
                "progress": 0,
                "remaining": 0,
                "increase_from_last_month": month_growth,
                "today_earnings": today_earnings,
                "target_status": progress_state(None),
                "target_details": None,
                "days_elapsed": {"total": days.total, "elapsed": days.elapsed, "remaining": days.remaining},
            }

        days = day_progress(to_ist(target.start_date), to_ist(target.end_date), self.now)
        return {
            "has_target": True,
            "target": target.target_value,
            "current_earnings": current_earnings,
            "progress": metrics.percentage(current_earnings, target.target_value, digits=2),
            "remaining": max(0.0, target.target_value - current_earnings),
            "increase_from_last_month": month_growth,
            "today_earnings": today_earnings,
            "target_status": progress_state(target.progress),
            "target_details": {
                "id": target.id,
                "description": target.description,
                "period": target.period.value,
                "period_label": period_label(target),
                "start_date": from_storage(target.start_date),
                "end_date": from_storage(target.end_date),
                "status": target.status.value,
                "progress": target.progress,
                "is_active": target.is_active,
            },
            "days_elapsed": {"total": days.total, "elapsed": days.elapsed, "remaining": days.remaining},
        }

    def _performance_block(
        self,
        sessions: SessionStats,
        orders_30: int,
        total_orders: int,
        delivered_orders: int,
        total_revenue: float,
        customers: int,
        new_users_30: int,
        target_summary: Dict[str, Any],
    ) -> Dict[str, Any]:
        return {
            "conversion_rate": metrics.conversion_rate(orders_30, sessions.sessions),
            "user_to_order_rate": metrics.percentage(total_orders, customers, digits=2),
            "avg_session_duration": sessions.avg_session_duration,
            "bounce_rate": sessions.bounce_rate,
            "avg_pages_per_session": sessions.avg_pages_per_session,
            "new_sessions": new_users_30,
            "avg_order_value": metrics.average_order_value(total_revenue, total_orders),
            "target_completion_rate": metrics.completion_rate(
                target_summary["completed_targets"], target_summary["total_targets"]
            ),
            "order_fulfillment_rate": metrics.fulfillment_rate(delivered_orders, total_orders),
            "avg_revenue_per_user": metrics.revenue_per_user(total_revenue, customers),
            "total_sessions": sessions.sessions,
            "total_unique_visitors": sessions.sessions,
            "total_page_views": sessions.page_views,
            "bounced_sessions": sessions.bounced_sessions,
        }

    @staticmethod
    def _insights(block: Dict[str, Any]) -> Dict[str, Any]:
        days = block["days_elapsed"]
        if not block["has_target"]:
            return {
                "has_current_target": False,
                "recommendation": "Set a monthly revenue target to track your performance better.",
                "days_remaining": days["remaining"],
                "daily_target_needed": 0,
                "on_track": None,
            }

        progress = block["progress"]
        expected = metrics.percentage(days["elapsed"], days["total"])
        return {
            "has_current_target": True,
            "recommendation": (
                f"You're {'exceeding' if progress >= 100 else 'at'} "
                f"{metrics.round_half_up(progress, 1)}% of your monthly target."
            ),
            "days_remaining": days["remaining"],
            "daily_target_needed": metrics.safe_ratio(block["remaining"], max(1, days["remaining"])),
            "on_track": progress >= expected,
        }

    @staticmethod
    def _last_step_growth(series: Sequence[float]) -> float:
        """Growth of the last bucket over the one before it."""
        if len(series) < 2:
            return 0.0
        return metrics.growth_rate(series[-2], series[-1])

    # =========================================================================
    # REPORTS
    # =========================================================================

    async def revenue_overview(self, window: RevenueWindow = RevenueWindow.SIX_MONTHS) -> Dict[str, Any]:
        """
        Revenue and target per month for `window`.

        Growth compares the window total with the previous calendar year for
        `yearly`, and with the equally sized window just before it otherwise.
        """
        window = RevenueWindow(window)
        agg = self.aggregator
        buckets = revenue_buckets(window, self.now)
        month = month_bucket(self.now.year, self.now.month)

        if window == RevenueWindow.YEARLY:
            previous = year_bounds(self.now.year - 1)
        else:
            previous = (add_months(buckets[0].start, -window.months), buckets[0].start)

        revenue, current_earnings, previous_revenue = await asyncio.gather(
            self._safe("revenue_series", agg.series(buckets, agg.revenue), [0.0] * len(buckets)),
            self._safe("current_month_revenue", agg.revenue(month.start, month.end), 0.0),
            self._safe("previous_window_revenue", agg.revenue(*previous), 0.0),
        )

        current_target = await self._safe(
            "monthly_target",
            self.targets.find_live(self.user_id, period=TargetPeriod.MONTHLY),
            None,
        )
        stored = await self._stored_targets(buckets)
        targets = self._target_series(buckets, revenue, stored, current_target)
        period_revenue = sum(revenue)

        return {
            "labels": [b.label for b in buckets],
            "datasets": [
                {"label": "Revenue", "data": revenue},
                {"label": "Target", "data": targets},
            ],
            "summary": {
                "current_month": current_earnings,
                "target": current_target.target_value if current_target else self._projected(current_earnings),
                "growth": metrics.growth_rate(previous_revenue, period_revenue),
                "avg_monthly": self._avg_monthly(revenue),
                "year": self.now.year,
            },
            "period": window.value,
        }

    async def user_growth(self, window: GrowthWindow = GrowthWindow.EIGHT_WEEKS) -> Dict[str, Any]:
        """New users, visitors and visitor conversion for each complete week of `window`."""
        window = GrowthWindow(window)
        agg = self.aggregator
        buckets = week_buckets(window, self.now)
        zeros = [0] * len(buckets)

        def converting_orders(start: datetime, end: datetime) -> Awaitable[int]:
            return agg.order_count(start, end, CONVERTING_ORDER_STATUSES)

        new_users, visitors, orders = await asyncio.gather(
            self._safe("weekly_new_users", agg.series(buckets, agg.new_user_count), zeros),
            self._safe("weekly_visitors", agg.series(buckets, agg.unique_sessions), zeros),
            self._safe("weekly_orders", agg.series(buckets, converting_orders), zeros),
        )
        conversion = [metrics.conversion_rate(o, v) for o, v in zip(orders, visitors)]

        total_users, total_visitors, total_orders = sum(new_users), sum(visitors), sum(orders)
        first_day = to_ist(buckets[0].start).date()
        last_day = (to_ist(buckets[-1].end) - timedelta(days=1)).date()

        return {
            "labels": [b.label for b in buckets],
            "datasets": [
                {"label": "New Users", "data": new_users},
                {"label": "Conversion Rate %", "data": conversion},
            ],
            "weekly_growth": self._last_step_growth(new_users),
            "new_users_this_week": new_users[-1],
            "conversion_rate": metrics.conversion_rate(total_orders, total_visitors),
            "summary": {
                "total_new_users": total_users,
                "total_visitors": total_visitors,
                "total_orders": total_orders,
                "avg_weekly_users": int(metrics.round_half_up(total_users / window.weeks)),
                "avg_weekly_visitors": int(metrics.round_half_up(total_visitors / window.weeks)),
                "visitor_to_user_rate": metrics.percentage(total_users, total_visitors, digits=2),
                "period": window.value,
                "weeks_count": window.weeks,
                "date_range": {
                    "start": first_day.isoformat(),
                    "end": last_day.isoformat(),
                    "note": "Complete weeks only (excludes current partial week)",
                },
                "most_recent_week": {
                    "label": buckets[-1].label,
                    "visitors": visitors[-1],
                    "new_users": new_users[-1],
                    "conversion": conversion[-1],
                    "orders": orders[-1],
                },
            },
        }

    async def performance_metrics(self) -> Dict[str, Any]:
        """Order, payment and user engagement figures for the last 30 days."""
        agg = self.aggregator
        last_30 = trailing_window(self.now, 30)
        prev_30 = trailing_window(self.now, 30, periods_back=1)

        orders, previous_orders, delivered, avg_value, by_method, new_users, active_users = await asyncio.gather(
            self._safe("orders_last_30_days", agg.order_count(*last_30), 0),
            self._safe("orders_previous_30_days", agg.order_count(*prev_30), 0),
            self._safe("delivered_last_30_days", agg.order_count(*last_30, statuses=[OrderStatus.DELIVERED]), 0),
            self._safe("average_order_value", agg.average_order_value(*last_30), 0.0),
            self._safe("revenue_by_payment_method", agg.revenue_by_payment_method(*last_30), []),
            self._safe("new_users_last_30_days", agg.new_user_count(*last_30, active_only=False), 0),
            self._safe("active_users", agg.active_user_count(last_30[0]), 0),
        )

        return {
            "orders": {
                "total_orders": orders,
                "order_growth": metrics.growth_rate(previous_orders, orders),
                "fulfillment_rate": metrics.fulfillment_rate(delivered, orders),
                "avg_order_value": avg_value,
                "revenue_by_payment_method": by_method,
            },
            "users": {
                "new_users": new_users,
                "active_users": active_users,
                "engagement_rate": metrics.percentage(active_users, new_users, digits=2),
            },
        }
