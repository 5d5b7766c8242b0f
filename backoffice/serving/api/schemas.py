"""
Shared API Schemas

Request/response bodies use camelCase on the wire, as the admin front-end
expects; Python code stays snake_case.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from backoffice.database.models import (
    Currency,
    Target,
    TargetCategory,
    TargetPeriod,
    TargetStatus,
    TargetType,
)
from backoffice.reporting import metrics
from backoffice.reporting import targets as reconciler
from backoffice.reporting.periods import from_storage


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def camelize(value: Any) -> Any:
    """Recursively rename snake_case dict keys to camelCase."""
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    if isinstance(value, dict):
        return {
            (to_camel(key) if isinstance(key, str) else key): camelize(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [camelize(item) for item in value]
    return value


def success(data: Any = None, **extra: Any) -> Dict[str, Any]:
    """Success envelope; `extra` carries list metadata such as results/total or a message."""
    return {"status": "success", **camelize(extra), "data": camelize(data)}


class TargetOut(CamelModel):
    """Target as returned by the API, with its derived display values"""
    id: uuid.UUID
    user_id: uuid.UUID
    target_type: TargetType
    target_value: float
    currency: Currency
    period: TargetPeriod
    start_date: datetime
    end_date: datetime
    current_value: float
    progress: int
    status: TargetStatus
    is_active: bool
    notifications: bool
    notification_threshold: int
    category: TargetCategory
    tags: List[str] = []
    description: Optional[str] = None
    notes: Optional[str] = None
    created_by: uuid.UUID
    last_updated_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    days_remaining: int
    achievement_percentage: int
    is_overdue: bool
    period_label: str

    @classmethod
    def from_target(cls, target: Target, now: datetime) -> "TargetOut":
        return cls(
            id=target.id,
            user_id=target.user_id,
            target_type=target.target_type,
            target_value=target.target_value,
            currency=target.currency,
            period=target.period,
            start_date=from_storage(target.start_date),
            end_date=from_storage(target.end_date),
            current_value=target.current_value,
            progress=target.progress,
            status=target.status,
            is_active=target.is_active,
            notifications=target.notifications,
            notification_threshold=target.notification_threshold,
            category=target.category,
            tags=target.tags or [],
            description=target.description,
            notes=target.notes,
            created_by=target.created_by,
            last_updated_by=target.last_updated_by,
            created_at=from_storage(target.created_at) if target.created_at else None,
            updated_at=from_storage(target.updated_at) if target.updated_at else None,
            days_remaining=reconciler.days_remaining(target, now),
            achievement_percentage=metrics.target_progress(target.current_value, target.target_value),
            is_overdue=reconciler.is_overdue(target, now),
            period_label=reconciler.period_label(target),
        )
