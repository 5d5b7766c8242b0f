"""
Integration Tests - Target Service
"""
import uuid
from datetime import datetime

import pytest

from backoffice.database.models import (
    OrderStatus,
    Target,
    TargetPeriod,
    TargetStatus,
    TargetType,
)
from backoffice.errors import ConflictError, NotFoundError, ValidationError
from backoffice.reporting.periods import IST

# October 2026 in IST, stored as naive UTC
OCT_START = datetime(2026, 9, 30, 18, 30)
OCT_END = datetime(2026, 10, 31, 18, 30)


class TestCreate:
    """Tests for target creation"""

    async def test_end_date_derived_from_period(self, target_service, admin_user):
        """Test a monthly target starting Oct 1 IST ends Nov 1 IST"""
        target = await target_service.create(admin_user.id, {
            "target_value": 100000,
            "period": TargetPeriod.MONTHLY,
            "start_date": datetime(2026, 10, 1, tzinfo=IST),
        })

        assert target.start_date == OCT_START
        assert target.end_date == OCT_END
        assert target.status == TargetStatus.ACTIVE
        assert target.is_active is True
        assert target.progress == 0
        assert target.created_by == admin_user.id

    async def test_custom_requires_end_date(self, target_service, admin_user):
        """Test custom targets cannot derive an end date"""
        with pytest.raises(ValidationError, match="End date is required"):
            await target_service.create(admin_user.id, {
                "target_value": 5000,
                "period": TargetPeriod.CUSTOM,
            })

    async def test_start_must_precede_end(self, target_service, admin_user):
        with pytest.raises(ValidationError, match="Start date must be before end date"):
            await target_service.create(admin_user.id, {
                "target_value": 5000,
                "period": TargetPeriod.CUSTOM,
                "start_date": datetime(2026, 10, 10, tzinfo=IST),
                "end_date": datetime(2026, 10, 5, tzinfo=IST),
            })

    async def test_unfinished_overlap_conflicts(self, target_service, admin_user, factory):
        """Test an active target in progress blocks an overlapping one"""
        await factory.target(admin_user, OCT_START, OCT_END, progress=40, current_value=40000)

        with pytest.raises(ConflictError, match="already have an active revenue target"):
            await target_service.create(admin_user.id, {
                "target_value": 100000,
                "start_date": datetime(2026, 10, 15, tzinfo=IST),
            })

    async def test_finished_overlap_deactivated(self, target_service, admin_user, factory, test_db):
        """Test a completed target is deactivated to make room"""
        finished = await factory.target(
            admin_user, OCT_START, OCT_END,
            status=TargetStatus.COMPLETED, progress=100, current_value=100000,
        )

        created = await target_service.create(admin_user.id, {
            "target_value": 150000,
            "start_date": datetime(2026, 10, 1, tzinfo=IST),
        })

        old = await test_db.get(Target, finished.id)
        assert old.is_active is False
        assert created.is_active is True

    async def test_adjacent_windows_do_not_overlap(self, target_service, admin_user, factory):
        """Test a target starting where another ends is allowed"""
        await factory.target(admin_user, OCT_START, OCT_END, progress=40)

        november = await target_service.create(admin_user.id, {
            "target_value": 100000,
            "start_date": datetime(2026, 11, 1, tzinfo=IST),
        })
        assert november.start_date == OCT_END

    async def test_other_types_do_not_conflict(self, target_service, admin_user, factory):
        """Test overlap is checked per target type"""
        await factory.target(admin_user, OCT_START, OCT_END, progress=40)

        orders_target = await target_service.create(admin_user.id, {
            "target_type": TargetType.ORDERS,
            "target_value": 50,
            "start_date": datetime(2026, 10, 1, tzinfo=IST),
        })
        assert orders_target.target_type == TargetType.ORDERS


class TestQueries:
    """Tests for listing and lookup"""

    async def test_list_filters_and_total(self, target_service, admin_user, factory):
        """Test filters apply to both the page and the total"""
        await factory.target(admin_user, OCT_START, OCT_END)
        await factory.target(admin_user, OCT_START, OCT_END, target_type=TargetType.ORDERS, target_value=40)
        await factory.target(
            admin_user, datetime(2026, 8, 31, 18, 30), OCT_START,
            status=TargetStatus.ARCHIVED, is_active=False,
        )

        targets, total = await target_service.list_targets(admin_user.id, status=TargetStatus.ACTIVE)
        assert total == 2
        assert len(targets) == 2

        targets, total = await target_service.list_targets(
            admin_user.id, sort="targetValue", page=1, limit=1
        )
        assert total == 3
        assert [t.target_value for t in targets] == [40]

    async def test_unknown_sort_field(self, target_service, admin_user):
        with pytest.raises(ValidationError):
            await target_service.list_targets(admin_user.id, sort="-owner")

    async def test_other_users_target_is_not_found(self, target_service, admin_user, factory):
        """Test targets are scoped to their owner"""
        colleague = await factory.user()
        foreign = await factory.target(colleague, OCT_START, OCT_END)

        with pytest.raises(NotFoundError, match="Target not found"):
            await target_service.get(admin_user.id, foreign.id)

    async def test_current(self, target_service, admin_user, factory):
        """Test the current target covers now and is active"""
        await factory.target(admin_user, datetime(2026, 8, 31, 18, 30), OCT_START, progress=80)
        october = await factory.target(admin_user, OCT_START, OCT_END)

        current = await target_service.current(admin_user.id, TargetType.REVENUE)
        assert current.id == october.id
        assert await target_service.current(admin_user.id, TargetType.USERS) is None


class TestUpdates:
    """Tests for target mutation"""

    async def test_completed_target_is_read_only(self, target_service, admin_user, factory):
        """Test completed targets may only be archived"""
        done = await factory.target(
            admin_user, OCT_START, OCT_END,
            status=TargetStatus.COMPLETED, progress=100, current_value=100000,
        )

        with pytest.raises(ValidationError, match="Cannot modify a completed target"):
            await target_service.update(admin_user.id, done.id, {"target_value": 200000})

        archived = await target_service.update(admin_user.id, done.id, {"status": TargetStatus.ARCHIVED})
        assert archived.status == TargetStatus.ARCHIVED
        assert archived.is_active is False

    async def test_date_change_conflict(self, target_service, admin_user, factory):
        """Test moving a target onto another active one is rejected"""
        await factory.target(admin_user, OCT_START, OCT_END)
        november = await factory.target(admin_user, OCT_END, datetime(2026, 11, 30, 18, 30))

        with pytest.raises(ConflictError, match="overlaps with this date range"):
            await target_service.update(admin_user.id, november.id, {
                "start_date": datetime(2026, 10, 20, tzinfo=IST),
            })

    async def test_reactivation_conflict(self, target_service, admin_user, factory):
        """Test an archived target cannot be revived over a live one"""
        archived = await factory.target(
            admin_user, OCT_START, OCT_END, status=TargetStatus.ARCHIVED, is_active=False,
        )
        await factory.target(admin_user, OCT_START, OCT_END)

        with pytest.raises(ConflictError, match="overlaps with this date range"):
            await target_service.update(admin_user.id, archived.id, {
                "status": TargetStatus.ACTIVE,
                "is_active": True,
            })

    async def test_reactivation_without_overlap(self, target_service, admin_user, factory):
        archived = await factory.target(
            admin_user, OCT_START, OCT_END, status=TargetStatus.ARCHIVED, is_active=False,
        )

        revived = await target_service.update(admin_user.id, archived.id, {
            "status": TargetStatus.ACTIVE,
            "is_active": True,
        })

        assert revived.status == TargetStatus.ACTIVE
        assert revived.is_active is True

    async def test_required_fields_cannot_be_cleared(self, target_service, admin_user, factory):
        """Test explicit nulls are rejected for required columns, allowed for optional ones"""
        target = await factory.target(admin_user, OCT_START, OCT_END)

        with pytest.raises(ValidationError, match="Cannot clear required fields: target_value"):
            await target_service.update(admin_user.id, target.id, {"target_value": None})

        updated = await target_service.update(admin_user.id, target.id, {"description": None})
        assert updated.description is None
        assert updated.target_value == 100000

    async def test_update_value_recomputes_progress(self, target_service, admin_user, factory):
        """Test a manual value refreshes progress and completes at 100"""
        target = await factory.target(admin_user, OCT_START, OCT_END, target_value=50000)

        updated = await target_service.update_value(admin_user.id, target.id, 25000)
        assert updated.progress == 50
        assert updated.status == TargetStatus.ACTIVE

        updated = await target_service.update_value(admin_user.id, target.id, 50000)
        assert updated.progress == 100
        assert updated.status == TargetStatus.COMPLETED

        with pytest.raises(ValidationError, match="non-active target"):
            await target_service.update_value(admin_user.id, target.id, 60000)

    async def test_update_value_required(self, target_service, admin_user, factory):
        target = await factory.target(admin_user, OCT_START, OCT_END)

        with pytest.raises(ValidationError, match="Current value is required"):
            await target_service.update_value(admin_user.id, target.id, None)

    async def test_bulk_archive(self, target_service, admin_user, factory):
        """Test bulk archive only touches the caller's targets"""
        mine = await factory.target(admin_user, OCT_START, OCT_END)
        colleague = await factory.user()
        theirs = await factory.target(colleague, OCT_START, OCT_END)

        count = await target_service.bulk_archive(admin_user.id, [mine.id, theirs.id])
        assert count == 1

        with pytest.raises(ValidationError):
            await target_service.bulk_archive(admin_user.id, [])

    async def test_delete(self, target_service, admin_user, factory):
        target = await factory.target(admin_user, OCT_START, OCT_END)

        await target_service.delete(admin_user.id, target.id)

        with pytest.raises(NotFoundError):
            await target_service.get(admin_user.id, target.id)


class TestMonthlyTarget:
    """Tests for the dashboard's monthly target"""

    async def test_set_creates_and_reconciles(self, target_service, admin_user, factory):
        """Test a new monthly target picks up the month's revenue so far"""
        customer = await factory.user()
        await factory.order(customer, 25000, datetime(2026, 10, 5, 10, 0))
        await factory.order(customer, 10000, datetime(2026, 9, 20, 10, 0))
        await factory.order(customer, 5000, datetime(2026, 10, 6), status=OrderStatus.PENDING)

        target, created = await target_service.set_monthly_target(admin_user.id, 100000)

        assert created is True
        assert target.current_value == 25000.0
        assert target.progress == 25
        assert target.status == TargetStatus.ACTIVE
        assert (target.start_date, target.end_date) == (OCT_START, OCT_END)
        assert target.description == "Monthly revenue target for October 2026"

    async def test_set_updates_existing(self, target_service, admin_user, factory):
        """Test a second call updates the target and can complete it"""
        customer = await factory.user()
        await factory.order(customer, 25000, datetime(2026, 10, 5, 10, 0))

        first, _ = await target_service.set_monthly_target(admin_user.id, 100000)
        second, created = await target_service.set_monthly_target(admin_user.id, 20000)

        assert created is False
        assert second.id == first.id
        assert second.progress == 100
        assert second.status == TargetStatus.COMPLETED

        # Still shown for the rest of the month
        shown = await target_service.monthly_target(admin_user.id)
        assert shown.id == first.id

    async def test_set_requires_positive_value(self, target_service, admin_user):
        with pytest.raises(ValidationError, match="must be greater than 0"):
            await target_service.set_monthly_target(admin_user.id, 0)

    async def test_no_monthly_target(self, target_service, admin_user):
        assert await target_service.monthly_target(admin_user.id) is None

    async def test_yearly_target_reconciled_year_to_date(self, target_service, admin_user, factory):
        """Test a live yearly target is measured over its own window, not this month"""
        customer = await factory.user()
        await factory.order(customer, 10000, datetime(2026, 9, 20, 10, 0))
        await factory.order(customer, 25000, datetime(2026, 10, 5, 10, 0))
        await factory.order(customer, 4000, datetime(2025, 12, 20, 10, 0))
        yearly = await factory.target(
            admin_user, datetime(2025, 12, 31, 18, 30), datetime(2026, 12, 31, 18, 30),
            period=TargetPeriod.YEARLY,
        )

        shown = await target_service.monthly_target(admin_user.id)

        assert shown.id == yearly.id
        assert shown.current_value == 35000.0
        assert shown.progress == 35

    async def test_set_on_quarterly_target_uses_its_window(self, target_service, admin_user, factory):
        """Test updating a live quarterly target reconciles quarter-to-date"""
        customer = await factory.user()
        await factory.order(customer, 10000, datetime(2026, 9, 20, 10, 0))
        await factory.order(customer, 25000, datetime(2026, 10, 5, 10, 0))
        quarter = await factory.target(
            admin_user, OCT_START, datetime(2026, 12, 31, 18, 30), period=TargetPeriod.QUARTERLY,
        )

        target, created = await target_service.set_monthly_target(admin_user.id, 50000)

        assert created is False
        assert target.id == quarter.id
        assert target.current_value == 25000.0
        assert target.progress == 50


class TestProgressViews:
    """Tests for stats and revenue progress"""

    async def test_stats(self, target_service, admin_user, factory):
        """Test per-type aggregates over live targets"""
        await factory.target(admin_user, OCT_START, OCT_END, progress=40, current_value=40000)
        await factory.target(
            admin_user, datetime(2026, 8, 31, 18, 30), OCT_START,
            status=TargetStatus.COMPLETED, progress=100, current_value=100000,
        )

        stats = await target_service.stats(admin_user.id)

        revenue = stats["stats"][0]
        assert revenue["target_type"] == "revenue"
        assert revenue["total_targets"] == 2
        assert revenue["current_value"] == 140000.0
        assert revenue["avg_progress"] == 70.0
        assert revenue["completion_rate"] == 50.0
        assert stats["summary"]["total_targets"] == 2
        assert stats["summary"]["active_targets"] == 1

    async def test_revenue_progress(self, target_service, admin_user, factory):
        """Test monthly progress against last month's archived target"""
        await factory.target(admin_user, OCT_START, OCT_END, progress=60, current_value=60000)
        await factory.target(
            admin_user, datetime(2026, 8, 31, 18, 30), OCT_START,
            status=TargetStatus.ARCHIVED, progress=45, is_active=False,
        )

        progress = await target_service.revenue_progress(admin_user.id, TargetPeriod.MONTHLY)

        assert progress["has_target"] is True
        assert progress["progress"] == 60
        assert progress["increase_from_last_period"] == 15
        assert progress["remaining"] == 40000.0
        assert progress["days_elapsed"] == {"total": 31, "elapsed": 19, "remaining": 12}

    async def test_revenue_progress_unsupported_period(self, target_service, admin_user):
        with pytest.raises(ValidationError):
            await target_service.revenue_progress(admin_user.id, TargetPeriod.CUSTOM)

    async def test_missing_target_id(self, target_service, admin_user):
        with pytest.raises(NotFoundError):
            await target_service.archive(admin_user.id, uuid.uuid4())
