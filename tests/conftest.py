"""
Test Suite Configuration
"""
import os

os.environ.setdefault("APP_ENV", "testing")

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from backoffice.config import Settings
from backoffice.database.connection import create_session_factory, get_db_dependency
from backoffice.database.models import (
    AnalyticsEvent,
    Base,
    EventType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Target,
    TargetPeriod,
    TargetStatus,
    TargetType,
    User,
    UserRole,
)
from backoffice.reporting.aggregator import MetricAggregator
from backoffice.reporting.targets import TargetService
from backoffice.serving.api.dependencies import get_aggregator, get_clock
from backoffice.serving.api.main import create_api_app

# Monday 19 October 2026, 12:00 IST
FIXED_NOW = datetime(2026, 10, 19, 6, 30, tzinfo=timezone.utc)


class Factory:
    """Persists fixture rows, each in its own committed session."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _save(self, *rows):
        async with self.session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0]

    async def user(
        self,
        role: UserRole = UserRole.CUSTOMER,
        created_at: datetime = datetime(2026, 6, 1, 9, 0),
        is_active: bool = True,
        last_login: Optional[datetime] = None,
        first_name: str = "Asha",
        last_name: str = "Rao",
    ) -> User:
        user = User(
            email=f"{uuid.uuid4().hex[:10]}@example.com",
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=is_active,
            last_login=last_login,
            created_at=created_at,
        )
        return await self._save(user)

    async def order(
        self,
        user: User,
        amount: float,
        created_at: datetime,
        status: OrderStatus = OrderStatus.DELIVERED,
        payment_method: PaymentMethod = PaymentMethod.UPI,
        quantity: int = 1,
    ) -> Order:
        order = Order(
            order_number=f"ORD-{uuid.uuid4().hex[:8].upper()}",
            user_id=user.id,
            status=status,
            payment_status=PaymentStatus.PAID if status == OrderStatus.DELIVERED else PaymentStatus.PENDING,
            payment_method=payment_method,
            total_amount=Decimal(str(amount)),
            created_at=created_at,
        )
        order.items.append(OrderItem(
            product_name="Gold Hoop Earrings",
            quantity=quantity,
            unit_price=Decimal(str(amount)),
            line_total=Decimal(str(amount)),
        ))
        return await self._save(order)

    async def page_views(self, session_id: str, *timestamps: datetime) -> None:
        await self._save(*[
            AnalyticsEvent(type=EventType.PAGE_VIEW, session_id=session_id, timestamp=ts)
            for ts in timestamps
        ])

    async def target(
        self,
        user: User,
        start_date: datetime,
        end_date: datetime,
        target_value: float = 100000,
        target_type: TargetType = TargetType.REVENUE,
        period: TargetPeriod = TargetPeriod.MONTHLY,
        status: TargetStatus = TargetStatus.ACTIVE,
        progress: int = 0,
        current_value: float = 0,
        is_active: bool = True,
    ) -> Target:
        target = Target(
            user_id=user.id,
            target_type=target_type,
            target_value=target_value,
            period=period,
            start_date=start_date,
            end_date=end_date,
            status=status,
            progress=progress,
            current_value=current_value,
            is_active=is_active,
            created_by=user.id,
        )
        return await self._save(target)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(APP_ENV="testing", DEBUG=True)


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite so concurrent aggregation sessions see the same data"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'backoffice.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def factory(session_factory) -> Factory:
    return Factory(session_factory)


@pytest.fixture
def aggregator(session_factory) -> MetricAggregator:
    return MetricAggregator(session_factory)


@pytest.fixture
def target_service(test_db, aggregator) -> TargetService:
    return TargetService(test_db, aggregator, now=FIXED_NOW)


@pytest.fixture
async def admin_user(factory) -> User:
    return await factory.user(role=UserRole.ADMIN, created_at=datetime(2026, 1, 1), first_name="Meera")


@pytest.fixture
def admin_headers(admin_user) -> dict:
    return {"X-User-Id": str(admin_user.id)}


@pytest.fixture
def app(session_factory):
    """API app wired to the test database and a fixed clock"""
    app = create_api_app()

    async def override_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_dependency] = override_db
    app.dependency_overrides[get_aggregator] = lambda: MetricAggregator(session_factory)
    app.dependency_overrides[get_clock] = lambda: FIXED_NOW
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
