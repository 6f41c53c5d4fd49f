"""Distribution group and payout schedule routes."""

from fastapi import APIRouter, Request

from tipping.core.exceptions import RestaurantNotFound, WaiterNotFound
from tipping.core.rate_limit import limiter
from tipping.core.rbac import RequireManager, check_restaurant_access
from tipping.core.responses import list_response
from tipping.db.session import DbSession
from tipping.models import DistributionGroup, Restaurant, Waiter
from tipping.schemas.distribution import (
    DistributionGroupResponse,
    DistributionGroupsUpdate,
    PayoutScheduleResponse,
    PayoutScheduleUpdate,
    WaiterGroupAssignment,
)
from tipping.services.distribution_service import DistributionService

router = APIRouter()


def _group_response(group: DistributionGroup) -> DistributionGroupResponse:
    return DistributionGroupResponse(
        id=group.id,
        restaurant_id=group.restaurant_id,
        group_name=group.group_name,
        percentage=float(group.percentage),
        member_count=sum(1 for m in group.members if m.is_active),
    )


@router.get("/restaurants/{restaurant_id}/distribution-groups")
@limiter.limit("60/minute")
def list_distribution_groups(request: Request, restaurant_id: int, db: DbSession, current_user: RequireManager):
    check_restaurant_access(current_user, restaurant_id)
    groups = DistributionService(db).get_groups(restaurant_id)
    return list_response([_group_response(g) for g in groups])


@router.put("/restaurants/{restaurant_id}/distribution-groups")
@limiter.limit("30/minute")
def replace_distribution_groups(
    request: Request,
    restaurant_id: int,
    body: DistributionGroupsUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    """Replace the whole group set. Percentages must total 100."""
    check_restaurant_access(current_user, restaurant_id)
    groups = DistributionService(db).replace_groups(
        restaurant_id, [g.model_dump() for g in body.groups],
    )
    return list_response([_group_response(g) for g in groups])


@router.post("/restaurants/{restaurant_id}/distribution-groups/defaults")
@limiter.limit("30/minute")
def create_default_groups(request: Request, restaurant_id: int, db: DbSession, current_user: RequireManager):
    check_restaurant_access(current_user, restaurant_id)
    groups = DistributionService(db).ensure_default_groups(restaurant_id)
    return list_response([_group_response(g) for g in groups])


@router.put("/waiters/{waiter_id}/distribution-group")
@limiter.limit("30/minute")
def assign_waiter_group(
    request: Request,
    waiter_id: int,
    body: WaiterGroupAssignment,
    db: DbSession,
    current_user: RequireManager,
):
    waiter = db.get(Waiter, waiter_id)
    if waiter is None:
        raise WaiterNotFound(f"Waiter {waiter_id} not found")
    check_restaurant_access(current_user, waiter.restaurant_id)
    waiter = DistributionService(db).assign_waiter(waiter_id, body.group_id)
    return {"waiter_id": waiter.id, "distribution_group_id": waiter.distribution_group_id}


@router.get("/restaurants/{restaurant_id}/payout-schedule", response_model=PayoutScheduleResponse)
@limiter.limit("60/minute")
def get_payout_schedule(request: Request, restaurant_id: int, db: DbSession, current_user: RequireManager):
    check_restaurant_access(current_user, restaurant_id)
    restaurant = db.get(Restaurant, restaurant_id)
    if restaurant is None:
        raise RestaurantNotFound(f"Restaurant {restaurant_id} not found")
    return PayoutScheduleResponse(
        restaurant_id=restaurant.id,
        payout_day=restaurant.payout_day,
        notification_days=restaurant.notification_days,
    )


@router.put("/restaurants/{restaurant_id}/payout-schedule", response_model=PayoutScheduleResponse)
@limiter.limit("30/minute")
def update_payout_schedule(
    request: Request,
    restaurant_id: int,
    body: PayoutScheduleUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    check_restaurant_access(current_user, restaurant_id)
    restaurant = db.get(Restaurant, restaurant_id)
    if restaurant is None:
        raise RestaurantNotFound(f"Restaurant {restaurant_id} not found")
    restaurant.payout_day = body.payout_day
    restaurant.notification_days = body.notification_days
    db.commit()
    db.refresh(restaurant)
    return PayoutScheduleResponse(
        restaurant_id=restaurant.id,
        payout_day=restaurant.payout_day,
        notification_days=restaurant.notification_days,
    )
