"""
Request Dependencies

Identity, clock and service wiring for the back-office routes. Identity is
established upstream; the gateway forwards the authenticated user's id in
a header and this layer only checks that the account exists, is active
and holds a back-office role.
"""

import uuid
from datetime import datetime, timezone

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.config import get_settings
from backoffice.database.connection import get_db_dependency, get_session_factory
from backoffice.database.models import User
from backoffice.errors import AuthenticationError, AuthorizationError
from backoffice.reporting.aggregator import MetricAggregator
from backoffice.reporting.dashboard import DashboardAssembler
from backoffice.reporting.targets import TargetService


def get_clock() -> datetime:
    """The request's notion of now."""
    return datetime.now(timezone.utc)


def get_aggregator() -> MetricAggregator:
    return MetricAggregator(get_session_factory())


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db_dependency),
) -> User:
    """
    Resolve the forwarded identity header to an active user.

    Raises:
        AuthenticationError: header missing, malformed or not an active user
    """
    raw_id = request.headers.get(get_settings().security.user_header)
    if not raw_id:
        raise AuthenticationError("You are not logged in! Please log in to get access.")

    try:
        user_id = uuid.UUID(raw_id)
    except ValueError:
        raise AuthenticationError("Invalid user identity")

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("The user belonging to this identity no longer exists or is inactive")
    return user


async def require_backoffice_user(user: User = Depends(get_current_user)) -> User:
    """Only admin-level roles may use the back-office API."""
    if user.role.value not in get_settings().security.backoffice_roles:
        raise AuthorizationError()
    return user


def get_target_service(
    db: AsyncSession = Depends(get_db_dependency),
    aggregator: MetricAggregator = Depends(get_aggregator),
    now: datetime = Depends(get_clock),
) -> TargetService:
    return TargetService(db, aggregator, now=now)


def get_dashboard(
    targets: TargetService = Depends(get_target_service),
    user: User = Depends(require_backoffice_user),
) -> DashboardAssembler:
    return DashboardAssembler(targets.aggregator, targets, user.id)
