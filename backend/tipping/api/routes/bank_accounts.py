"""Bank accounts for distribution groups paid by bank transfer."""

from fastapi import APIRouter, Request, status
from sqlalchemy import select

from tipping.core.exceptions import DuplicateBankAccount, NotFound, RestaurantNotFound, ValidationError
from tipping.core.rate_limit import limiter
from tipping.core.rbac import RequireManager, check_restaurant_access
from tipping.core.responses import list_response
from tipping.db.session import DbSession
from tipping.models import BankAccount, DistributionGroup, Restaurant
from tipping.schemas.bank_account import BankAccountCreate, BankAccountResponse

router = APIRouter()


@router.get("/restaurants/{restaurant_id}/bank-accounts")
@limiter.limit("60/minute")
def list_bank_accounts(request: Request, restaurant_id: int, db: DbSession, current_user: RequireManager):
    check_restaurant_access(current_user, restaurant_id)
    accounts = db.execute(
        select(BankAccount)
        .where(BankAccount.restaurant_id == restaurant_id)
        .order_by(BankAccount.group_name)
    ).scalars().all()
    return list_response([BankAccountResponse.model_validate(a) for a in accounts])


@router.post(
    "/restaurants/{restaurant_id}/bank-accounts",
    response_model=BankAccountResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def create_bank_account(
    request: Request,
    restaurant_id: int,
    body: BankAccountCreate,
    db: DbSession,
    current_user: RequireManager,
):
    """Register the account a group's pooled payout goes to. One per group."""
    check_restaurant_access(current_user, restaurant_id)
    if db.get(Restaurant, restaurant_id) is None:
        raise RestaurantNotFound(f"Restaurant {restaurant_id} not found")
    group = db.execute(
        select(DistributionGroup).where(
            DistributionGroup.restaurant_id == restaurant_id,
            DistributionGroup.group_name == body.group_name,
        )
    ).scalars().first()
    if group is None:
        raise ValidationError(f"Unknown distribution group: {body.group_name}")

    account = db.execute(
        select(BankAccount).where(
            BankAccount.restaurant_id == restaurant_id,
            BankAccount.group_name == body.group_name,
        )
    ).scalars().first()
    if account is not None and account.is_active:
        raise DuplicateBankAccount(restaurant_id, body.group_name)

    if account is None:
        account = BankAccount(restaurant_id=restaurant_id, group_name=body.group_name)
        db.add(account)
    # A deactivated row is reused; the table allows one row per group
    account.account_number = body.account_number
    account.account_name = body.account_name
    account.bank_code = body.bank_code
    account.bank_name = body.bank_name
    account.branch_code = body.branch_code
    account.is_active = True
    db.commit()
    db.refresh(account)
    return account


@router.delete("/restaurants/{restaurant_id}/bank-accounts/{account_id}", response_model=BankAccountResponse)
@limiter.limit("30/minute")
def deactivate_bank_account(
    request: Request,
    restaurant_id: int,
    account_id: int,
    db: DbSession,
    current_user: RequireManager,
):
    check_restaurant_access(current_user, restaurant_id)
    account = db.get(BankAccount, account_id)
    if account is None or account.restaurant_id != restaurant_id:
        raise NotFound(f"Bank account {account_id} not found")
    account.is_active = False
    db.commit()
    db.refresh(account)
    return account
