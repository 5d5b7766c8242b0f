"""
Target Endpoints

CRUD and progress views for the requesting user's targets. Every route is
scoped to that user; other users' targets answer 404.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import Field

from backoffice.database.models import (
    Currency,
    TargetCategory,
    TargetPeriod,
    TargetStatus,
    TargetType,
    User,
)
from backoffice.reporting.targets import TargetService
from backoffice.serving.api.dependencies import (
    get_clock,
    get_target_service,
    require_backoffice_user,
)
from backoffice.serving.api.schemas import CamelModel, TargetOut, success

router = APIRouter()


class TargetCreate(CamelModel):
    """New target"""
    target_type: TargetType = TargetType.REVENUE
    target_value: float = Field(..., gt=0)
    currency: Currency = Currency.INR
    period: TargetPeriod = TargetPeriod.MONTHLY
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    notifications: bool = True
    notification_threshold: int = Field(80, ge=0, le=100)
    category: TargetCategory = TargetCategory.FINANCIAL
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    notes: Optional[str] = None


class TargetUpdate(CamelModel):
    """Partial target update; owner and creator cannot be changed"""
    target_value: Optional[float] = Field(None, gt=0)
    currency: Optional[Currency] = None
    period: Optional[TargetPeriod] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    current_value: Optional[float] = Field(None, ge=0)
    status: Optional[TargetStatus] = None
    is_active: Optional[bool] = None
    notifications: Optional[bool] = None
    notification_threshold: Optional[int] = Field(None, ge=0, le=100)
    category: Optional[TargetCategory] = None
    tags: Optional[List[str]] = None
    description: Optional[str] = None
    notes: Optional[str] = None


class TargetValueUpdate(CamelModel):
    current_value: Optional[float] = Field(None, ge=0)


class BulkArchiveRequest(CamelModel):
    target_ids: List[uuid.UUID] = Field(default_factory=list)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_target(
    body: TargetCreate,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    target = await targets.create(user.id, body.model_dump())
    return success({"target": TargetOut.from_target(target, now)})


@router.get("")
async def list_targets(
    target_status: Optional[TargetStatus] = Query(None, alias="status"),
    target_type: Optional[TargetType] = Query(None, alias="targetType"),
    period: Optional[TargetPeriod] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    sort: str = "-createdAt",
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=100),
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    found, total = await targets.list_targets(
        user.id,
        status=target_status,
        target_type=target_type,
        period=period,
        is_active=is_active,
        sort=sort,
        page=page,
        limit=limit,
    )
    return success(
        {"targets": [TargetOut.from_target(t, now) for t in found]},
        results=len(found),
        total=total,
    )


@router.patch("/bulk-archive")
async def bulk_archive_targets(
    body: BulkArchiveRequest,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
) -> Dict[str, Any]:
    modified = await targets.bulk_archive(user.id, body.target_ids)
    return success({"modified_count": modified})


@router.get("/current")
async def get_current_target(
    target_type: TargetType = Query(TargetType.REVENUE, alias="type"),
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    target = await targets.current(user.id, target_type)
    return success({"target": TargetOut.from_target(target, now) if target else None})


@router.get("/stats")
async def get_target_stats(
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
) -> Dict[str, Any]:
    return success(await targets.stats(user.id))


@router.get("/revenue/monthly")
async def get_revenue_progress(
    period: TargetPeriod = TargetPeriod.MONTHLY,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    """Revenue target progress for the calendar period containing today."""
    progress = await targets.revenue_progress(user.id, period)
    target = progress["target"]
    progress["target"] = TargetOut.from_target(target, now) if target else None
    return success(progress)


@router.get("/{target_id}")
async def get_target(
    target_id: uuid.UUID,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    target = await targets.get(user.id, target_id)
    return success({"target": TargetOut.from_target(target, now)})


@router.patch("/{target_id}")
async def update_target(
    target_id: uuid.UUID,
    body: TargetUpdate,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    target = await targets.update(user.id, target_id, body.model_dump(exclude_unset=True))
    return success({"target": TargetOut.from_target(target, now)})


@router.delete("/{target_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_target(
    target_id: uuid.UUID,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
) -> Response:
    await targets.delete(user.id, target_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{target_id}/update-value")
async def update_target_value(
    target_id: uuid.UUID,
    body: TargetValueUpdate,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    target = await targets.update_value(user.id, target_id, body.current_value)
    return success({"target": TargetOut.from_target(target, now)})


@router.patch("/{target_id}/archive")
async def archive_target(
    target_id: uuid.UUID,
    user: User = Depends(require_backoffice_user),
    targets: TargetService = Depends(get_target_service),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    target = await targets.archive(user.id, target_id)
    return success({"target": TargetOut.from_target(target, now)})
