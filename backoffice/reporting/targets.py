"""
Target Reconciliation

Keeps a target's cached current value, progress and status consistent with
freshly aggregated actuals. The module-level functions work on any object
carrying the target columns and never touch the database; TargetService
binds them to a request session for the targets API and the dashboard.
"""

import calendar
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database.models import (
    Currency,
    Target,
    TargetPeriod,
    TargetStatus,
    TargetType,
)
from backoffice.errors import ConflictError, NotFoundError, ValidationError
from backoffice.reporting import metrics
from backoffice.reporting.aggregator import MetricAggregator
from backoffice.reporting.periods import (
    MONTH_NAMES,
    add_period,
    day_progress,
    from_storage,
    month_bucket,
    period_window,
    start_of_day,
    to_ist,
    to_storage,
)

logger = structlog.get_logger(__name__)

REPORTING_PERIODS = (
    TargetPeriod.MONTHLY,
    TargetPeriod.QUARTERLY,
    TargetPeriod.HALF_YEARLY,
    TargetPeriod.YEARLY,
    TargetPeriod.ANNUALLY,
)

SORTABLE_FIELDS = {
    "createdAt": Target.created_at,
    "updatedAt": Target.updated_at,
    "startDate": Target.start_date,
    "endDate": Target.end_date,
    "targetValue": Target.target_value,
    "currentValue": Target.current_value,
    "progress": Target.progress,
}

# Columns a partial update may set to null
NULLABLE_FIELDS = {"tags", "description", "notes"}


@dataclass(frozen=True)
class TargetChanges:
    """Column values a reconciliation wants to write back"""
    current_value: float
    progress: int
    status: TargetStatus


# =============================================================================
# PURE RECONCILIATION
# =============================================================================

def derive_end_date(start: datetime, period: TargetPeriod) -> datetime:
    """End of a target window from its period, calendar months taken in IST."""
    return add_period(to_ist(start), period)


def progress_state(progress: Optional[int]) -> str:
    """Display state of a progress value; None means there is no target at all."""
    if progress is None:
        return "no-target"
    if progress >= 100:
        return "completed"
    if progress > 0:
        return "in-progress"
    return "not-started"


def apply_expiry(target: Any, now: datetime, progress: Optional[int] = None) -> Optional[TargetStatus]:
    """Final status for an active target whose end date has passed, else None."""
    if progress is None:
        progress = target.progress
    if target.status != TargetStatus.ACTIVE:
        return None
    if to_ist(now) <= from_storage(target.end_date):
        return None
    return TargetStatus.COMPLETED if progress >= 100 else TargetStatus.FAILED


def reconcile(target: Any, actual: float, now: datetime) -> Optional[TargetChanges]:
    """
    Compare a stored target with a freshly computed actual.

    Returns the values to persist, or None when the stored ones are current.
    An active target completes once progress reaches 100; a completed target
    stays completed whatever the actual does afterwards.
    """
    current_value = float(actual or 0)
    progress = metrics.target_progress(current_value, target.target_value)

    status = TargetStatus(target.status)
    if status == TargetStatus.ACTIVE and progress >= 100:
        status = TargetStatus.COMPLETED
    else:
        status = apply_expiry(target, now, progress) or status

    if (
        current_value == float(target.current_value or 0)
        and progress == target.progress
        and status == target.status
    ):
        return None
    return TargetChanges(current_value=current_value, progress=progress, status=status)


def days_remaining(target: Any, now: datetime) -> int:
    remaining = from_storage(target.end_date) - to_ist(now)
    return max(0, math.ceil(remaining / timedelta(days=1)))


def is_overdue(target: Any, now: datetime) -> bool:
    return to_ist(now) > from_storage(target.end_date) and target.status == TargetStatus.ACTIVE


def period_label(target: Any) -> str:
    """Human label for the window a target covers, e.g. "Q4 2026" or "October 2026"."""
    start = to_ist(target.start_date)
    period = TargetPeriod(target.period)
    month_name = calendar.month_name[start.month]

    if period == TargetPeriod.DAILY:
        return f"{calendar.day_name[start.weekday()]}, {MONTH_NAMES[start.month - 1]} {start.day}"
    if period == TargetPeriod.WEEKLY:
        return f"Week {math.ceil(start.day / 7)} of {month_name} {start.year}"
    if period == TargetPeriod.MONTHLY:
        return f"{month_name} {start.year}"
    if period == TargetPeriod.QUARTERLY:
        return f"Q{(start.month - 1) // 3 + 1} {start.year}"
    if period == TargetPeriod.HALF_YEARLY:
        return f"H{1 if start.month <= 6 else 2} {start.year}"
    if period in (TargetPeriod.YEARLY, TargetPeriod.ANNUALLY):
        return f"Year {start.year}"

    last_day = to_ist(target.end_date) - timedelta(microseconds=1)
    return f"{start:%d %b %Y} - {last_day:%d %b %Y}"


def _is_finished(target: Target) -> bool:
    return target.status == TargetStatus.COMPLETED and target.progress >= 100


def _overlapping(start: datetime, end: datetime) -> List[Any]:
    """Stored windows intersecting the half-open [start, end)."""
    return [Target.start_date < to_storage(end), Target.end_date > to_storage(start)]


def _covering(now: datetime) -> List[Any]:
    instant = to_storage(now)
    return [Target.start_date <= instant, Target.end_date > instant]


# =============================================================================
# TARGET SERVICE
# =============================================================================

class TargetService:
    """
    Target operations for one request.

    Reads and writes go through the request session; actuals come from the
    aggregator, which uses sessions of its own. Every lookup is scoped to the
    requesting user, so a foreign target is indistinguishable from a
    missing one.
    """

    def __init__(
        self,
        session: AsyncSession,
        aggregator: MetricAggregator,
        now: Optional[datetime] = None,
    ):
        self.session = session
        self.aggregator = aggregator
        self.now = to_ist(now)

    async def _save(self, target: Target) -> Target:
        await self.session.flush()
        await self.session.refresh(target)
        return target

    async def _first(self, *conditions: Any) -> Optional[Target]:
        query = select(Target).where(*conditions).order_by(Target.created_at.desc()).limit(1)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    def _refresh(self, target: Target) -> None:
        """Recompute progress and status from the stored current value."""
        changes = reconcile(target, target.current_value, self.now)
        if changes is not None:
            target.progress = changes.progress
            target.status = changes.status

    async def _resolve_overlaps(
        self,
        user_id: uuid.UUID,
        target_type: TargetType,
        start: datetime,
        end: datetime,
    ) -> None:
        """
        Raise ConflictError when an unfinished active target of the same type
        overlaps [start, end); finished ones are deactivated to make room.
        """
        result = await self.session.execute(
            select(Target)
            .where(
                Target.user_id == user_id,
                Target.target_type == target_type,
                Target.is_active.is_(True),
                *_overlapping(start, end),
            )
            .order_by(Target.start_date)
        )
        overlapping = result.scalars().all()

        for existing in overlapping:
            if not _is_finished(existing):
                raise ConflictError(
                    f"You already have an active {target_type.value} target for this period "
                    f"({to_ist(existing.start_date):%d/%m/%Y} to {to_ist(existing.end_date):%d/%m/%Y}). "
                    "Please complete or archive the existing target first."
                )

        for existing in overlapping:
            existing.is_active = False
            existing.last_updated_by = user_id
            logger.info("Deactivated completed target", target_id=str(existing.id), user_id=str(user_id))

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def create(self, user_id: uuid.UUID, data: Dict[str, Any]) -> Target:
        """
        Create a target for `user_id` from validated request fields.

        Raises:
            ValidationError: start not before end, or a custom period without an end date
            ConflictError: an unfinished active target of the same type overlaps
        """
        data = dict(data)
        target_type = TargetType(data.pop("target_type", TargetType.REVENUE))
        period = TargetPeriod(data.pop("period", TargetPeriod.MONTHLY))
        start = to_ist(data.pop("start_date", None) or self.now)
        end = data.pop("end_date", None)

        if end is None:
            if period == TargetPeriod.CUSTOM:
                raise ValidationError("End date is required for custom targets")
            end = derive_end_date(start, period)
        end = to_ist(end)

        if start >= end:
            raise ValidationError("Start date must be before end date")

        await self._resolve_overlaps(user_id, target_type, start, end)

        target = Target(
            **data,
            user_id=user_id,
            target_type=target_type,
            period=period,
            start_date=to_storage(start),
            end_date=to_storage(end),
            current_value=0,
            progress=0,
            status=TargetStatus.ACTIVE,
            is_active=True,
            created_by=user_id,
            last_updated_by=user_id,
        )
        self.session.add(target)
        await self._save(target)

        logger.info(
            "Target created",
            target_id=str(target.id),
            user_id=str(user_id),
            target_type=target_type.value,
            period=period.value,
        )
        return target

    async def list_targets(
        self,
        user_id: uuid.UUID,
        status: Optional[TargetStatus] = None,
        target_type: Optional[TargetType] = None,
        period: Optional[TargetPeriod] = None,
        is_active: Optional[bool] = None,
        sort: str = "-createdAt",
        page: int = 1,
        limit: int = 100,
    ) -> Tuple[Sequence[Target], int]:
        """Filtered, sorted page of the user's targets and the filtered total."""
        conditions = [Target.user_id == user_id]
        if status is not None:
            conditions.append(Target.status == status)
        if target_type is not None:
            conditions.append(Target.target_type == target_type)
        if period is not None:
            conditions.append(Target.period == period)
        if is_active is not None:
            conditions.append(Target.is_active.is_(is_active))

        ordering = []
        for field in filter(None, (part.strip() for part in sort.split(","))):
            column = SORTABLE_FIELDS.get(field.lstrip("-"))
            if column is None:
                raise ValidationError(f"Cannot sort targets by '{field.lstrip('-')}'")
            ordering.append(column.desc() if field.startswith("-") else column.asc())

        query = (
            select(Target)
            .where(*conditions)
            .order_by(*ordering)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        targets = (await self.session.execute(query)).scalars().all()
        total = await self.session.scalar(select(func.count(Target.id)).where(*conditions))
        return targets, int(total or 0)

    async def get(self, user_id: uuid.UUID, target_id: uuid.UUID) -> Target:
        target = await self._first(Target.id == target_id, Target.user_id == user_id)
        if target is None:
            raise NotFoundError("Target", target_id)
        return target

    async def update(self, user_id: uuid.UUID, target_id: uuid.UUID, changes: Dict[str, Any]) -> Target:
        """
        Apply a partial update.

        Raises:
            NotFoundError: no such target for this user
            ValidationError: the target is completed and this is not an archive,
                a required field is cleared, or the resulting window is empty
            ConflictError: the target ends up active over a range another
                active target of the same type already covers
        """
        target = await self.get(user_id, target_id)
        changes = {k: v for k, v in changes.items() if k not in ("user_id", "created_by")}

        cleared = sorted(k for k, v in changes.items() if v is None and k not in NULLABLE_FIELDS)
        if cleared:
            raise ValidationError(f"Cannot clear required fields: {', '.join(cleared)}")

        if target.status == TargetStatus.COMPLETED and changes.get("status") != TargetStatus.ARCHIVED:
            raise ValidationError("Cannot modify a completed target")

        start = to_ist(changes.pop("start_date", None) or target.start_date)
        end = to_ist(changes.pop("end_date", None) or target.end_date)
        if start >= end:
            raise ValidationError("Start date must be before end date")

        touches_window = (
            start != to_ist(target.start_date)
            or end != to_ist(target.end_date)
            or "status" in changes
            or "is_active" in changes
        )
        stays_active = (
            changes.get("is_active", target.is_active)
            and TargetStatus(changes.get("status", target.status)) == TargetStatus.ACTIVE
        )
        if touches_window and stays_active:
            overlapping = await self._first(
                Target.user_id == user_id,
                Target.target_type == target.target_type,
                Target.is_active.is_(True),
                Target.id != target.id,
                *_overlapping(start, end),
            )
            if overlapping is not None:
                raise ConflictError(
                    f"Another active {target.target_type.value} target overlaps with this date range."
                )

        target.start_date = to_storage(start)
        target.end_date = to_storage(end)
        for key, value in changes.items():
            setattr(target, key, value)

        if target.status == TargetStatus.ARCHIVED:
            target.is_active = False
        target.last_updated_by = user_id
        self._refresh(target)
        return await self._save(target)

    async def delete(self, user_id: uuid.UUID, target_id: uuid.UUID) -> None:
        target = await self.get(user_id, target_id)
        await self.session.delete(target)
        await self.session.flush()
        logger.info("Target deleted", target_id=str(target_id), user_id=str(user_id))

    async def update_value(self, user_id: uuid.UUID, target_id: uuid.UUID, current_value: Optional[float]) -> Target:
        """Record a manually measured current value on an active target."""
        if current_value is None:
            raise ValidationError("Current value is required")

        target = await self.get(user_id, target_id)
        if target.status != TargetStatus.ACTIVE:
            raise ValidationError("Cannot update value for non-active target")

        target.current_value = float(current_value)
        target.last_updated_by = user_id
        self._refresh(target)
        return await self._save(target)

    async def archive(self, user_id: uuid.UUID, target_id: uuid.UUID) -> Target:
        target = await self.get(user_id, target_id)
        target.is_active = False
        target.status = TargetStatus.ARCHIVED
        target.last_updated_by = user_id
        return await self._save(target)

    async def bulk_archive(self, user_id: uuid.UUID, target_ids: Sequence[uuid.UUID]) -> int:
        """Archive many targets in one statement; returns how many rows changed."""
        if not target_ids:
            raise ValidationError("Please provide an array of target IDs")

        result = await self.session.execute(
            update(Target)
            .where(Target.id.in_(list(target_ids)), Target.user_id == user_id)
            .values(is_active=False, status=TargetStatus.ARCHIVED, last_updated_by=user_id)
            .execution_options(synchronize_session=False)
        )
        logger.info("Targets archived", user_id=str(user_id), count=result.rowcount)
        return result.rowcount

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def current(self, user_id: uuid.UUID, target_type: TargetType = TargetType.REVENUE) -> Optional[Target]:
        """Newest active target of `target_type` whose window contains now."""
        return await self._first(
            Target.user_id == user_id,
            Target.target_type == target_type,
            Target.is_active.is_(True),
            Target.status == TargetStatus.ACTIVE,
            *_covering(self.now),
        )

    async def stats(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """Per-type aggregates over the user's live targets plus an overall summary."""
        completed = func.sum(case((Target.status == TargetStatus.COMPLETED, 1), else_=0))
        active = func.sum(case((Target.status == TargetStatus.ACTIVE, 1), else_=0))
        query = (
            select(
                Target.target_type,
                func.count(Target.id).label("total_targets"),
                func.sum(Target.target_value).label("total_value"),
                func.sum(Target.current_value).label("current_value"),
                func.avg(Target.progress).label("avg_progress"),
                completed.label("completed_targets"),
                active.label("active_targets"),
            )
            .where(Target.user_id == user_id, Target.is_active.is_(True))
            .group_by(Target.target_type)
        )
        rows = (await self.session.execute(query)).all()

        by_type = [
            {
                "target_type": row.target_type.value,
                "total_targets": row.total_targets,
                "total_value": float(row.total_value or 0),
                "current_value": float(row.current_value or 0),
                "avg_progress": metrics.round_half_up(float(row.avg_progress or 0), 2),
                "completion_rate": metrics.percentage(row.completed_targets, row.total_targets, digits=2),
                "active_targets": int(row.active_targets or 0),
                "completed_targets": int(row.completed_targets or 0),
            }
            for row in rows
        ]

        month = month_bucket(self.now.year, self.now.month)
        total = await self.session.scalar(select(func.count(Target.id)).where(Target.user_id == user_id))
        active_count = await self.session.scalar(
            select(func.count(Target.id)).where(
                Target.user_id == user_id,
                Target.status == TargetStatus.ACTIVE,
                Target.is_active.is_(True),
            )
        )
        completed_this_month = await self.session.scalar(
            select(func.count(Target.id)).where(
                Target.user_id == user_id,
                Target.status == TargetStatus.COMPLETED,
                Target.updated_at >= to_storage(month.start),
            )
        )

        return {
            "stats": by_type,
            "summary": {
                "total_targets": int(total or 0),
                "active_targets": int(active_count or 0),
                "completed_this_month": int(completed_this_month or 0),
            },
        }

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def actual_for(self, target: Target) -> float:
        """The target's metric aggregated over [start_date, min(end_date, now))."""
        start = from_storage(target.start_date)
        end = min(from_storage(target.end_date), self.now)
        if end <= start:
            return 0.0
        return await self.aggregator.metric_for_target(TargetType(target.target_type), start, end)

    async def reconcile_target(self, target: Target, actual: float) -> bool:
        """
        Persist a fresh actual onto `target` when it differs from the stored one.

        Concurrent reconciliations of the same target simply overwrite each
        other; the value written is recomputed from source data every time.
        """
        changes = reconcile(target, actual, self.now)
        if changes is None:
            return False

        target.current_value = changes.current_value
        target.progress = changes.progress
        target.status = changes.status
        await self._save(target)

        logger.info(
            "Target reconciled",
            target_id=str(target.id),
            current_value=changes.current_value,
            progress=changes.progress,
            status=changes.status.value,
        )
        return True

    async def find_live(
        self,
        user_id: uuid.UUID,
        target_type: TargetType = TargetType.REVENUE,
        period: Optional[TargetPeriod] = None,
    ) -> Optional[Target]:
        """Newest live target of `target_type` covering now; completed ones included."""
        conditions = [
            Target.user_id == user_id,
            Target.target_type == target_type,
            Target.is_active.is_(True),
            Target.status.in_([TargetStatus.ACTIVE, TargetStatus.COMPLETED]),
            *_covering(self.now),
        ]
        if period is not None:
            conditions.append(Target.period == period)
        return await self._first(*conditions)

    async def monthly_targets(
        self,
        user_id: uuid.UUID,
        start: datetime,
        end: datetime,
        target_type: TargetType = TargetType.REVENUE,
    ) -> Dict[Tuple[int, int], Target]:
        """Live monthly targets starting in [start, end), keyed by their IST (year, month)."""
        result = await self.session.execute(
            select(Target)
            .where(
                Target.user_id == user_id,
                Target.target_type == target_type,
                Target.period == TargetPeriod.MONTHLY,
                Target.is_active.is_(True),
                Target.start_date >= to_storage(start),
                Target.start_date < to_storage(end),
            )
            .order_by(Target.created_at)
        )
        by_month = {}
        for target in result.scalars():
            local = to_ist(target.start_date)
            by_month[(local.year, local.month)] = target
        return by_month

    async def monthly_target(self, user_id: uuid.UUID, target_type: TargetType = TargetType.REVENUE) -> Optional[Target]:
        """
        The live target of `target_type` covering now, reconciled over its own
        window so far. Targets that completed mid-period are still returned.
        """
        target = await self.find_live(user_id, target_type)
        if target is None:
            return None

        await self.reconcile_target(target, await self.actual_for(target))
        return target

    async def set_monthly_target(
        self,
        user_id: uuid.UUID,
        target_value: float,
        target_type: TargetType = TargetType.REVENUE,
        description: Optional[str] = None,
    ) -> Tuple[Target, bool]:
        """
        Update the active target covering now, or create a monthly one for
        the current IST month. Returns the target and whether it was created.

        Raises:
            ValidationError: target value missing or not positive
        """
        if not target_value or target_value <= 0:
            raise ValidationError("Target value is required and must be greater than 0")

        target_type = TargetType(target_type)
        month = month_bucket(self.now.year, self.now.month)

        existing = await self.current(user_id, target_type)
        if existing is not None:
            existing.target_value = float(target_value)
            if description:
                existing.description = description
            existing.last_updated_by = user_id
            await self.reconcile_target(existing, await self.actual_for(existing))
            logger.info("Monthly target updated", target_id=str(existing.id), target_value=target_value)
            return await self._save(existing), False

        await self._resolve_overlaps(user_id, target_type, month.start, month.end)

        target = Target(
            user_id=user_id,
            target_type=target_type,
            target_value=float(target_value),
            currency=Currency(self.aggregator.settings.default_currency),
            period=TargetPeriod.MONTHLY,
            start_date=to_storage(month.start),
            end_date=to_storage(month.end),
            current_value=0,
            progress=0,
            status=TargetStatus.ACTIVE,
            is_active=True,
            description=description or (
                f"Monthly {target_type.value} target for {calendar.month_name[self.now.month]} {self.now.year}"
            ),
            created_by=user_id,
            last_updated_by=user_id,
        )
        self.session.add(target)
        await self.session.flush()
        await self.reconcile_target(target, await self.actual_for(target))

        logger.info("Monthly target created", target_id=str(target.id), target_value=target_value)
        return await self._save(target), True

    async def revenue_progress(self, user_id: uuid.UUID, period: TargetPeriod = TargetPeriod.MONTHLY) -> Dict[str, Any]:
        """
        Revenue target progress for the calendar period containing now,
        compared with last period's archived target.
        """
        period = TargetPeriod(period)
        if period not in REPORTING_PERIODS:
            raise ValidationError(f"Unsupported period '{period.value}'")

        current, previous = period_window(period, self.now)

        target = await self._first(
            Target.user_id == user_id,
            Target.target_type == TargetType.REVENUE,
            Target.period == period,
            Target.is_active.is_(True),
            *_overlapping(current.start, current.end),
        )
        last_target = await self._first(
            Target.user_id == user_id,
            Target.target_type == TargetType.REVENUE,
            Target.period == period,
            Target.is_active.is_(False),
            Target.start_date >= to_storage(previous.start),
            Target.start_date < to_storage(previous.end),
        )
        today_earnings = await self.aggregator.revenue(start_of_day(self.now), None)
        days = day_progress(current.start, current.end, self.now)

        progress = target.progress if target else 0
        return {
            "has_target": target is not None,
            "target": target,
            "progress": progress,
            "today_earnings": today_earnings,
            "increase_from_last_period": (progress - last_target.progress) if last_target else 0,
            "remaining": max(0.0, target.target_value - target.current_value) if target else 0,
            "current_earnings": target.current_value if target else 0,
            "days_elapsed": {
                "total": days.total,
                "elapsed": days.elapsed,
                "remaining": days.remaining,
            },
            "period": period.value,
        }
