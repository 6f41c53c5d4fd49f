"""API routes."""

from fastapi import APIRouter

from tipping.api.routes import bank_accounts, commission, distribution, payouts, tips, webhooks

api_router = APIRouter()

# Routers carry full paths: restaurant-scoped, admin and webhook endpoints share them
api_router.include_router(commission.router, tags=["commission"])
api_router.include_router(distribution.router, tags=["distribution", "payout-schedule"])
api_router.include_router(bank_accounts.router, tags=["bank-accounts"])
api_router.include_router(tips.router, tags=["tips"])
api_router.include_router(payouts.router, tags=["payouts"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
