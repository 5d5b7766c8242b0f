"""
Metric Aggregator

Scalar business metrics over a time window, one aggregation query per
call. Every call opens its own session from the factory, so any number of
them can be awaited concurrently with asyncio.gather and merged
positionally. A per-instance semaphore bounds how many of those sessions
are open at once, keeping one dashboard load inside the connection pool.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import structlog
from sqlalchemy import Select, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from backoffice.config import get_settings
from backoffice.database.models import (
    ADMIN_ROLES,
    AnalyticsEvent,
    EventType,
    Order,
    OrderStatus,
    TargetType,
    User,
)
from backoffice.reporting import metrics
from backoffice.reporting.metrics import SessionStats
from backoffice.reporting.periods import Bucket, from_storage, to_storage

logger = structlog.get_logger(__name__)


def _within(column, start: Optional[datetime], end: Optional[datetime]) -> List[Any]:
    """Half-open [start, end) conditions on a naive-UTC column."""
    conditions = []
    if start is not None:
        conditions.append(column >= to_storage(start))
    if end is not None:
        conditions.append(column < to_storage(end))
    return conditions


class MetricAggregator:
    """
    Read-only aggregation over orders, users and analytics events.

    Example:
        aggregator = MetricAggregator(session_factory)
        revenue, orders = await asyncio.gather(
            aggregator.revenue(start, end),
            aggregator.order_count(start, end),
        )
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_concurrent: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.settings = get_settings().reporting
        self._slots = asyncio.Semaphore(max_concurrent or self.settings.max_concurrent_queries)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """A session of its own, at most max_concurrent_queries open at once."""
        async with self._slots:
            async with self.session_factory() as session:
                yield session

    async def _scalar(self, query: Select) -> Any:
        async with self._session() as session:
            result = await session.execute(query)
            return result.scalar()

    async def _rows(self, query: Select) -> Sequence[Any]:
        async with self._session() as session:
            result = await session.execute(query)
            return result.all()

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def revenue(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> float:
        """Sum of delivered order totals in [start, end)."""
        query = select(func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.status == OrderStatus.DELIVERED,
            *_within(Order.created_at, start, end),
        )
        return float(await self._scalar(query) or 0)

    async def order_count(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> int:
        """Orders placed in [start, end), optionally limited to `statuses`."""
        conditions = _within(Order.created_at, start, end)
        if statuses is not None:
            conditions.append(Order.status.in_(list(statuses)))
        query = select(func.count(Order.id))
        if conditions:
            query = query.where(*conditions)
        return int(await self._scalar(query) or 0)

    async def average_order_value(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> float:
        """Mean order total across every order placed in the window."""
        query = select(func.avg(Order.total_amount)).where(*_within(Order.created_at, start, end))
        return round(float(await self._scalar(query) or 0), 2)

    async def revenue_by_payment_method(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        query = (
            select(
                Order.payment_method,
                func.sum(Order.total_amount).label("total"),
                func.count(Order.id).label("count"),
            )
            .where(*_within(Order.created_at, start, end))
            .group_by(Order.payment_method)
            .order_by(func.sum(Order.total_amount).desc())
        )
        return [
            {
                "payment_method": row.payment_method.value if row.payment_method else None,
                "total": float(row.total or 0),
                "count": row.count,
            }
            for row in await self._rows(query)
        ]

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def new_user_count(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        active_only: bool = True,
    ) -> int:
        """Non-staff accounts created in [start, end)."""
        conditions = [User.role.not_in(ADMIN_ROLES), *_within(User.created_at, start, end)]
        if active_only:
            conditions.append(User.is_active.is_(True))
        query = select(func.count(User.id)).where(*conditions)
        return int(await self._scalar(query) or 0)

    async def customer_count(self) -> int:
        """Active non-staff accounts."""
        return await self.new_user_count()

    async def active_user_count(self, since: datetime) -> int:
        """Non-staff accounts that logged in since `since`."""
        query = select(func.count(User.id)).where(
            User.role.not_in(ADMIN_ROLES),
            User.last_login >= to_storage(since),
        )
        return int(await self._scalar(query) or 0)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def unique_sessions(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """Distinct sessions with at least one page view in [start, end)."""
        query = select(func.count(func.distinct(AnalyticsEvent.session_id))).where(
            AnalyticsEvent.type == EventType.PAGE_VIEW,
            *_within(AnalyticsEvent.timestamp, start, end),
        )
        return int(await self._scalar(query) or 0)

    async def session_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SessionStats:
        """
        Reduce page-view sessions in the window.

        A bounced session has exactly one page view. Only multi-view
        sessions contribute duration, each capped by the configured limit.
        """
        query = (
            select(
                AnalyticsEvent.session_id,
                func.min(AnalyticsEvent.timestamp).label("first_view"),
                func.max(AnalyticsEvent.timestamp).label("last_view"),
                func.count(AnalyticsEvent.id).label("page_views"),
            )
            .where(
                AnalyticsEvent.type == EventType.PAGE_VIEW,
                *_within(AnalyticsEvent.timestamp, start, end),
            )
            .group_by(AnalyticsEvent.session_id)
        )
        rows = await self._rows(query)

        stats = SessionStats(sessions=len(rows))
        cap = self.settings.session_duration_cap_seconds
        for row in rows:
            stats.page_views += row.page_views
            if row.page_views == 1:
                stats.bounced_sessions += 1
            else:
                duration = (row.last_view - row.first_view).total_seconds()
                stats.total_duration_seconds += min(duration, cap)

        logger.debug(
            "Session stats reduced",
            sessions=stats.sessions,
            page_views=stats.page_views,
            bounced=stats.bounced_sessions,
        )
        return stats

    async def conversion_rate(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> float:
        """Orders per unique page-view session in the window, in percent."""
        orders, sessions = await asyncio.gather(
            self.order_count(start, end, statuses),
            self.unique_sessions(start, end),
        )
        return metrics.conversion_rate(orders, sessions)

    # -------------------------------------------------------------------------
    # Buckets and targets
    # -------------------------------------------------------------------------

    async def series(
        self,
        buckets: Sequence[Bucket],
        metric: Callable[[datetime, datetime], Awaitable[Any]],
    ) -> List[Any]:
        """Evaluate `metric` for every bucket concurrently, in bucket order."""
        return list(await asyncio.gather(*(metric(b.start, b.end) for b in buckets)))

    async def metric_for_target(
        self,
        target_type: TargetType,
        start: datetime,
        end: datetime,
    ) -> float:
        """Actual value of the metric a target of `target_type` tracks over [start, end)."""
        target_type = TargetType(target_type)
        if target_type == TargetType.REVENUE:
            return await self.revenue(start, end)
        if target_type == TargetType.ORDERS:
            return float(await self.order_count(start, end))
        if target_type == TargetType.USERS:
            return float(await self.new_user_count(start, end, active_only=False))
        return await self.conversion_rate(start, end)

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    async def recent_orders(self, limit: int) -> List[Dict[str, Any]]:
        """Newest orders with their customer and item count."""
        query = (
            select(Order)
            .options(selectinload(Order.user), selectinload(Order.items))
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        async with self._session() as session:
            orders = (await session.execute(query)).scalars().all()

        return [
            {
                "id": order.id,
                "order_number": order.order_number,
                "customer": (order.user.full_name or "Unknown") if order.user else "Unknown",
                "email": order.user.email if order.user else "N/A",
                "amount": float(order.total_amount),
                "status": order.status.value,
                "payment_status": order.payment_status.value,
                "item_count": sum(item.quantity for item in order.items),
                "date": from_storage(order.created_at),
            }
            for order in orders
        ]

    async def recent_users(self, limit: int) -> List[Dict[str, Any]]:
        """Newest non-staff accounts with their order count and delivered spend."""
        order_stats = (
            select(
                Order.user_id.label("user_id"),
                func.count(Order.id).label("order_count"),
                func.sum(
                    case((Order.status == OrderStatus.DELIVERED, Order.total_amount), else_=0)
                ).label("total_spent"),
            )
            .group_by(Order.user_id)
            .subquery()
        )
        query = (
            select(
                User,
                func.coalesce(order_stats.c.order_count, 0).label("order_count"),
                func.coalesce(order_stats.c.total_spent, 0).label("total_spent"),
            )
            .outerjoin(order_stats, order_stats.c.user_id == User.id)
            .where(User.role.not_in(ADMIN_ROLES))
            .order_by(User.created_at.desc())
            .limit(limit)
        )
        rows = await self._rows(query)

        return [
            {
                "id": row.User.id,
                "name": row.User.full_name or "User",
                "email": row.User.email,
                "status": "Active" if row.User.is_active else "Inactive",
                "join_date": from_storage(row.User.created_at),
                "last_login": from_storage(row.User.last_login) if row.User.last_login else None,
                "order_count": int(row.order_count),
                "total_spent": float(row.total_spent),
            }
            for row in rows
        ]
