"""Payout calculation, generation, processing and retry routes."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from tipping.core.rate_limit import limiter
from tipping.core.rbac import RequireAdmin, RequireManager, check_restaurant_access
from tipping.core.responses import list_response
from tipping.db.session import DbSession
from tipping.models import PayoutStatus
from tipping.schemas.payout import (
    MONTH_REGEX,
    GeneratePayoutsRequest,
    PayoutResponse,
    PayoutStatusOverride,
    ProcessMonthlyRequest,
    ProcessPayoutsRequest,
    RetryPayoutsRequest,
    calculation_to_dict,
)
from tipping.services.payout_calculator import PayoutCalculator
from tipping.services.payout_notifications import PayoutNotifier
from tipping.services.payout_processor import PayoutProcessor
from tipping.services.payout_service import PayoutService, previous_month

logger = logging.getLogger(__name__)

router = APIRouter()


def get_payout_processor(db: DbSession) -> PayoutProcessor:
    return PayoutProcessor(db)


def get_payout_notifier(db: DbSession) -> PayoutNotifier:
    return PayoutNotifier(db)


Processor = Annotated[PayoutProcessor, Depends(get_payout_processor)]
Notifier = Annotated[PayoutNotifier, Depends(get_payout_notifier)]


@router.get("/restaurants/{restaurant_id}/payouts/calculate")
@limiter.limit("60/minute")
def calculate_payouts(
    request: Request,
    restaurant_id: int,
    db: DbSession,
    current_user: RequireManager,
    month: str = Query(..., pattern=MONTH_REGEX),
):
    """Preview the month's payouts without writing anything."""
    check_restaurant_access(current_user, restaurant_id)
    calculation = PayoutCalculator(db).calculate_monthly_payouts(restaurant_id, month)
    return calculation_to_dict(calculation)


@router.post("/restaurants/{restaurant_id}/payouts/generate", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def generate_payouts(
    request: Request,
    restaurant_id: int,
    body: GeneratePayoutsRequest,
    db: DbSession,
    current_user: RequireManager,
):
    """Create pending payout records for a month. 409 if the month already has them."""
    check_restaurant_access(current_user, restaurant_id)
    result = PayoutService(db).calculate_and_generate(
        restaurant_id, body.month, minimum_threshold=body.minimum_threshold,
    )
    return result.to_dict()


@router.get("/restaurants/{restaurant_id}/payouts")
@limiter.limit("60/minute")
def list_payouts(
    request: Request,
    restaurant_id: int,
    db: DbSession,
    current_user: RequireManager,
    month: Optional[str] = Query(None, pattern=MONTH_REGEX),
):
    check_restaurant_access(current_user, restaurant_id)
    payouts = PayoutService(db).get_monthly_payouts(restaurant_id, month)
    return list_response([PayoutResponse.model_validate(p) for p in payouts])


@router.get("/restaurants/{restaurant_id}/payouts/summary")
@limiter.limit("60/minute")
def payout_summary(
    request: Request,
    restaurant_id: int,
    db: DbSession,
    current_user: RequireManager,
    month: str = Query(..., pattern=MONTH_REGEX),
):
    check_restaurant_access(current_user, restaurant_id)
    return PayoutService(db).monthly_summary(restaurant_id, month)


@router.post("/restaurants/{restaurant_id}/payouts/process")
@limiter.limit("10/minute")
async def process_payouts(
    request: Request,
    restaurant_id: int,
    body: ProcessPayoutsRequest,
    current_user: RequireManager,
    processor: Processor,
):
    """Disburse the restaurant's pending payouts, or just the listed ones."""
    check_restaurant_access(current_user, restaurant_id)
    result = await processor.process_payouts(
        restaurant_id=restaurant_id,
        payout_ids=body.payout_ids or None,
        dry_run=body.dry_run,
    )
    return result.to_dict()


@router.post("/restaurants/{restaurant_id}/payouts/notify-upcoming")
@limiter.limit("10/minute")
async def notify_upcoming_payouts(
    request: Request,
    restaurant_id: int,
    current_user: RequireManager,
    notifier: Notifier,
    month: str = Query(..., pattern=MONTH_REGEX),
):
    check_restaurant_access(current_user, restaurant_id)
    return await notifier.notify_upcoming(restaurant_id, month)


@router.post("/payouts/retry")
@limiter.limit("10/minute")
async def retry_payouts(
    request: Request,
    body: RetryPayoutsRequest,
    db: DbSession,
    current_user: RequireManager,
    processor: Processor,
):
    """Reset failed payouts to pending and process them again."""
    service = PayoutService(db)
    for payout_id in body.payout_ids:
        check_restaurant_access(current_user, service.get_payout(payout_id).restaurant_id)
    result = await processor.retry_failed_payouts(body.payout_ids, dry_run=body.dry_run)
    return result.to_dict()


@router.get("/payouts/{payout_id}", response_model=PayoutResponse)
@limiter.limit("60/minute")
def get_payout(request: Request, payout_id: int, db: DbSession, current_user: RequireManager):
    payout = PayoutService(db).get_payout(payout_id)
    check_restaurant_access(current_user, payout.restaurant_id)
    return payout


@router.patch("/payouts/{payout_id}/status", response_model=PayoutResponse)
@limiter.limit("10/minute")
def override_payout_status(
    request: Request,
    payout_id: int,
    body: PayoutStatusOverride,
    db: DbSession,
    current_user: RequireAdmin,
):
    """Manual reconciliation of a payout the provider never settled."""
    logger.warning(f"Payout {payout_id} status override to {body.status} by {current_user.email}")
    return PayoutService(db).update_payout_status(
        payout_id,
        PayoutStatus(body.status),
        transaction_reference=body.transaction_reference,
        error_message=body.error_message,
    )


@router.post("/admin/payouts/process-monthly")
@limiter.limit("10/minute")
async def process_monthly_payouts(
    request: Request,
    body: ProcessMonthlyRequest,
    db: DbSession,
    current_user: RequireAdmin,
    processor: Processor,
):
    """Generate every active restaurant's payouts for a month, then disburse them."""
    month = body.month or previous_month()
    logger.info(f"Monthly payout run for {month} started by {current_user.email}")
    generation = PayoutService(db).generate_for_all_restaurants(month)
    processing = await processor.process_payouts()
    return {
        "month": month,
        "generation": generation,
        "processing": processing.to_dict(),
    }
