"""
Database Models

Transactional records read by the reporting engine and the targets it owns:

- User: customer and staff accounts
- Order / OrderItem: checkout transactions with their line items
- AnalyticsEvent: storefront page and interaction events
- Target: per-user goals for a business metric over a period

All timestamps are stored as naive UTC.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    """Enum column persisted by value ("delivered") rather than by member name."""
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


# =============================================================================
# ENUMERATIONS
# =============================================================================

class UserRole(str, Enum):
    """User role enumeration"""
    CUSTOMER = "customer"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPERADMIN)


class OrderStatus(str, Enum):
    """Order status enumeration"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


# Orders that count towards conversion: placed and not unwound
CONVERTING_ORDER_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


class PaymentStatus(str, Enum):
    """Payment status enumeration"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentMethod(str, Enum):
    """Payment method enumeration"""
    RAZORPAY = "razorpay"
    COD = "cod"
    CARD = "card"
    WALLET = "wallet"
    NETBANKING = "netbanking"
    UPI = "upi"


class EventType(str, Enum):
    """Storefront analytics event types"""
    PAGE_VIEW = "page_view"
    PRODUCT_VIEW = "product_view"
    CATEGORY_VIEW = "category_view"
    SEARCH = "search"
    ADD_TO_CART = "add_to_cart"
    ADD_TO_WISHLIST = "add_to_wishlist"
    PURCHASE = "purchase"
    CHECKOUT_START = "checkout_start"
    CHECKOUT_COMPLETE = "checkout_complete"


class TargetType(str, Enum):
    """Metric a target tracks"""
    REVENUE = "revenue"
    USERS = "users"
    ORDERS = "orders"
    CONVERSION = "conversion"


class TargetPeriod(str, Enum):
    """Target period enumeration"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half-yearly"
    YEARLY = "yearly"
    ANNUALLY = "annually"
    CUSTOM = "custom"


class TargetStatus(str, Enum):
    """Stored target lifecycle status"""
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    ARCHIVED = "archived"


class TargetCategory(str, Enum):
    """Target category enumeration"""
    SALES = "sales"
    MARKETING = "marketing"
    OPERATIONS = "operations"
    FINANCIAL = "financial"


class Currency(str, Enum):
    """Supported target currencies"""
    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


# =============================================================================
# COMMERCE TABLES
# =============================================================================

class User(Base):
    """
    User Table

    Customer and staff accounts. Staff roles are excluded from every
    business metric.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"), default=UserRole.CUSTOMER, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    orders: Mapped[List["Order"]] = relationship(back_populates="user")

    __table_args__ = (
        Index("ix_users_role_active", "role", "is_active"),
        Index("ix_users_created_at", "created_at"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Order(Base):
    """
    Order Table

    One checkout. `total_amount` is the grand total charged to the customer.
    """
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus, "order_status"), default=OrderStatus.PENDING, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"), default=PaymentStatus.PENDING, nullable=False
    )
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        _enum_column(PaymentMethod, "payment_method")
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship(back_populates="orders")
    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_user", "user_id"),
    )


class OrderItem(Base):
    """Order line item"""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    order: Mapped["Order"] = relationship(back_populates="items")


class AnalyticsEvent(Base):
    """
    Analytics Event Table

    Storefront events keyed by browser session; page views drive session,
    bounce and visitor conversion metrics.
    """
    __tablename__ = "analytics_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[EventType] = mapped_column(
        _enum_column(EventType, "event_type"), nullable=False
    )
    session_id: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("users.id"))
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    referrer: Mapped[Optional[str]] = mapped_column(String(500))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))

    __table_args__ = (
        Index("ix_analytics_type_timestamp", "type", "timestamp"),
        Index("ix_analytics_session", "session_id"),
    )


# =============================================================================
# TARGETS
# =============================================================================

class Target(Base):
    """
    Target Table

    A goal for one metric owned by a back-office user. `current_value` and
    `progress` are cached actuals refreshed by target reconciliation.
    """
    __tablename__ = "targets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    target_type: Mapped[TargetType] = mapped_column(
        _enum_column(TargetType, "target_type"), default=TargetType.REVENUE, nullable=False
    )
    target_value: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[Currency] = mapped_column(
        _enum_column(Currency, "currency"), default=Currency.INR, nullable=False
    )
    period: Mapped[TargetPeriod] = mapped_column(
        _enum_column(TargetPeriod, "target_period"), default=TargetPeriod.MONTHLY, nullable=False
    )
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    current_value: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[TargetStatus] = mapped_column(
        _enum_column(TargetStatus, "target_status"), default=TargetStatus.ACTIVE, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    notifications: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notification_threshold: Mapped[int] = mapped_column(Integer, default=80, nullable=False)
    category: Mapped[TargetCategory] = mapped_column(
        _enum_column(TargetCategory, "target_category"), default=TargetCategory.FINANCIAL, nullable=False
    )
    tags: Mapped[Optional[List[str]]] = mapped_column(JSON)
    description: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_by: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    last_updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("users.id"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_targets_user_status", "user_id", "status"),
        Index("ix_targets_user_type", "user_id", "target_type"),
        Index("ix_targets_user_window", "user_id", "start_date", "end_date"),
    )
