"""Commission rate routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request

from tipping.core.rate_limit import limiter
from tipping.core.rbac import RequireAdmin, RequireManager, check_restaurant_access
from tipping.core.responses import list_response
from tipping.db.session import DbSession
from tipping.schemas.commission import (
    CommissionRateChangeResponse,
    CommissionRateResponse,
    CommissionRateUpdate,
)
from tipping.services.commission_service import CommissionService

router = APIRouter()


@router.get("/restaurants/{restaurant_id}/commission", response_model=CommissionRateResponse)
@limiter.limit("60/minute")
def get_commission_rate(request: Request, restaurant_id: int, db: DbSession, current_user: RequireManager):
    """Current commission rate applied to new tips."""
    check_restaurant_access(current_user, restaurant_id)
    rate = CommissionService(db).get_rate(restaurant_id)
    return CommissionRateResponse(restaurant_id=restaurant_id, commission_rate=float(rate))


@router.put("/restaurants/{restaurant_id}/commission", response_model=CommissionRateChangeResponse)
@limiter.limit("30/minute")
def update_commission_rate(
    request: Request,
    restaurant_id: int,
    body: CommissionRateUpdate,
    db: DbSession,
    current_user: RequireAdmin,
):
    """Change the platform commission for a restaurant. Platform admins only."""
    return CommissionService(db).update_rate(
        restaurant_id,
        body.rate,
        changed_by=current_user.email,
        reason=body.reason,
    )


@router.get("/restaurants/{restaurant_id}/commission/history")
@limiter.limit("60/minute")
def get_commission_history(
    request: Request,
    restaurant_id: int,
    db: DbSession,
    current_user: RequireManager,
    limit: int = Query(50, ge=1, le=500),
):
    check_restaurant_access(current_user, restaurant_id)
    changes = CommissionService(db).rate_history(restaurant_id, limit=limit)
    return list_response([CommissionRateChangeResponse.model_validate(c) for c in changes])


@router.get("/admin/commission/summary")
@limiter.limit("60/minute")
def get_commission_summary(
    request: Request,
    db: DbSession,
    current_user: RequireAdmin,
    start: datetime = Query(...),
    end: datetime = Query(...),
    restaurant_id: Optional[int] = None,
):
    """Platform-wide commission totals over completed tips in [start, end)."""
    return CommissionService(db).commission_summary(start, end, restaurant_id=restaurant_id)
