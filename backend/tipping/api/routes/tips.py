"""Tip recording and payment status routes."""

from fastapi import APIRouter, Request, status

from tipping.core.rate_limit import limiter
from tipping.core.rbac import RequireAdmin
from tipping.db.session import DbSession
from tipping.schemas.tip import TipCreate, TipResponse, TipStatusUpdate
from tipping.services.tip_service import TipService

router = APIRouter()


@router.post(
    "/restaurants/{restaurant_id}/tips",
    response_model=TipResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def record_tip(request: Request, restaurant_id: int, body: TipCreate, db: DbSession):
    """Record a customer tip as pending until the payment confirms."""
    return TipService(db).record_tip(
        restaurant_id,
        body.amount,
        body.tip_type,
        waiter_id=body.waiter_id,
        payment_method=body.payment_method,
        table_reference=body.table_reference,
        customer_phone=body.customer_phone,
    )


@router.post("/tips/{tip_id}/status", response_model=TipResponse)
@limiter.limit("60/minute")
def update_tip_status(request: Request, tip_id: int, body: TipStatusUpdate, db: DbSession, current_user: RequireAdmin):
    """Payment status callback relayed by the payment integration."""
    return TipService(db).update_payment_status(tip_id, body.status, transaction_id=body.transaction_id)
