"""Pytest configuration and fixtures."""

import os

# Must be set before tipping.core.config is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SMS_PROVIDER"] = "mock"
os.environ["EMAIL_PROVIDER"] = "mock"

from datetime import datetime, timezone
from decimal import Decimal
from typing import Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tipping.core.security import create_access_token
from tipping.db.base import Base
from tipping.db.session import get_db
from tipping.main import app
# Import all models to ensure they're registered with Base.metadata
from tipping.models import (
    DistributionGroup,
    PaymentStatus,
    Payout,
    PayoutStatus,
    PayoutType,
    Restaurant,
    Tip,
    TipType,
    Waiter,
)
from tipping.services.commission_service import calculate_commission
from tipping.services.disbursement import (
    BulkDisbursementResult,
    DisbursementItemResult,
    FallbackDisbursementStrategy,
)
from tipping.services.distribution_service import DistributionService
from tipping.services.notification_service import NotificationResult

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

TEST_MONTH = "2024-01"
IN_MONTH = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiters during tests to avoid flaky failures
    from tipping.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Tenants and staff
# ---------------------------------------------------------------------------

@pytest.fixture
def restaurant(db_session: Session) -> Restaurant:
    """A restaurant charging the default 10% commission."""
    restaurant = Restaurant(
        name="Java House Westlands",
        slug="java-westlands",
        email="owner@javahouse.test",
        phone_number="0711000000",
        commission_rate=Decimal("10.00"),
    )
    db_session.add(restaurant)
    db_session.commit()
    db_session.refresh(restaurant)
    return restaurant


@pytest.fixture
def other_restaurant(db_session: Session) -> Restaurant:
    restaurant = Restaurant(name="Mama Oliech", slug="mama-oliech", commission_rate=Decimal("5.00"))
    db_session.add(restaurant)
    db_session.commit()
    db_session.refresh(restaurant)
    return restaurant


@pytest.fixture
def make_waiter(db_session: Session, restaurant: Restaurant):
    def _make(name: str, phone: Optional[str] = "0712345678", email: Optional[str] = None,
              group: Optional[DistributionGroup] = None, restaurant_id: Optional[int] = None,
              is_active: bool = True) -> Waiter:
        waiter = Waiter(
            restaurant_id=restaurant_id or restaurant.id,
            name=name,
            phone_number=phone,
            email=email,
            is_active=is_active,
            distribution_group_id=group.id if group else None,
        )
        db_session.add(waiter)
        db_session.commit()
        db_session.refresh(waiter)
        return waiter
    return _make


@pytest.fixture
def waiter(make_waiter) -> Waiter:
    return make_waiter("Alice Wanjiku", phone="0712345678", email="alice@javahouse.test")


@pytest.fixture
def groups(db_session: Session, restaurant: Restaurant) -> List[DistributionGroup]:
    """Waiters 60 / Kitchen 25 / Cleaners 15, sorted by name."""
    return DistributionService(db_session).replace_groups(restaurant.id, [
        {"group_name": "Waiters", "percentage": Decimal("60")},
        {"group_name": "Kitchen", "percentage": Decimal("25")},
        {"group_name": "Cleaners", "percentage": Decimal("15")},
    ])


@pytest.fixture
def group_by_name(groups):
    return {g.group_name: g for g in groups}


# ---------------------------------------------------------------------------
# Tips and payouts
# ---------------------------------------------------------------------------

@pytest.fixture
def add_tip(db_session: Session, restaurant: Restaurant):
    """Insert a tip with its commission split; pooled completed tips are distributed."""
    def _add(amount, waiter: Optional[Waiter] = None, status: PaymentStatus = PaymentStatus.COMPLETED,
             created_at: datetime = IN_MONTH, restaurant_id: Optional[int] = None) -> Tip:
        rid = restaurant_id or restaurant.id
        rate = db_session.get(Restaurant, rid).commission_rate
        split = calculate_commission(amount, rate)
        tip = Tip(
            restaurant_id=rid,
            waiter_id=waiter.id if waiter else None,
            amount=split.amount,
            commission_amount=split.commission_amount,
            net_amount=split.net_amount,
            tip_type=(TipType.WAITER if waiter else TipType.RESTAURANT).value,
            payment_status=PaymentStatus(status).value,
            created_at=created_at,
        )
        db_session.add(tip)
        db_session.commit()
        db_session.refresh(tip)
        if tip.is_pooled and tip.payment_status == PaymentStatus.COMPLETED:
            DistributionService(db_session).split_pooled_tip(tip)
        return tip
    return _add


@pytest.fixture
def make_payout(db_session: Session, restaurant: Restaurant):
    def _make(amount="500.00", waiter: Optional[Waiter] = None, status: PayoutStatus = PayoutStatus.PENDING,
              group_name: Optional[str] = None, recipient_phone: Optional[str] = None,
              transaction_reference: Optional[str] = None, month: str = TEST_MONTH,
              recipient_account: Optional[str] = None) -> Payout:
        payout = Payout(
            restaurant_id=restaurant.id,
            waiter_id=waiter.id if waiter else None,
            payout_type=(PayoutType.GROUP if group_name else PayoutType.WAITER).value,
            group_name=group_name,
            amount=Decimal(amount),
            payout_month=month,
            status=PayoutStatus(status).value,
            recipient_phone=recipient_phone or (waiter.phone_number if waiter else None),
            recipient_account=recipient_account,
            transaction_reference=transaction_reference,
        )
        db_session.add(payout)
        db_session.commit()
        db_session.refresh(payout)
        return payout
    return _make


# ---------------------------------------------------------------------------
# Providers and notifications
# ---------------------------------------------------------------------------

class FakeProvider:
    """Records calls and answers from a per-reference script.

    ``outcomes`` maps a reference to ``"ok"``, ``"pending"``, ``"fail"``,
    ``"unknown"`` or ``"missing"``; unlisted references succeed and settle.
    """

    is_configured = True

    def __init__(self, name: str = "fake", outcomes: Optional[dict] = None, raises=None):
        self.name = name
        self.outcomes = outcomes or {}
        self.raises = raises
        self.calls: List[list] = []

    async def disburse(self, items):
        self.calls.append(list(items))
        if self.raises is not None:
            raise self.raises
        result = BulkDisbursementResult(provider=self.name)
        for index, item in enumerate(items):
            outcome = self.outcomes.get(item.reference, "ok")
            if outcome == "missing":
                continue
            if outcome == "unknown":
                result.items.append(DisbursementItemResult.unknown(item.reference, "ReadTimeout('timed out')"))
            elif outcome == "fail":
                result.items.append(DisbursementItemResult(
                    reference=item.reference, success=False, error="Insufficient float",
                ))
            else:
                result.items.append(DisbursementItemResult(
                    reference=item.reference,
                    success=True,
                    provider_transaction_id=f"{self.name.upper()}-{index}-{item.reference}",
                    settled=outcome == "ok",
                ))
        return result


class RecordingNotificationService:
    """Notification channel double that records every send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sms: List[tuple] = []
        self.emails: List[tuple] = []

    async def send_sms(self, to, message):
        self.sms.append((to, message))
        return NotificationResult(success=not self.fail, channel="sms", recipient=to, message=message,
                                  error="SMS gateway down" if self.fail else None)

    async def send_email(self, to, subject, body):
        self.emails.append((to, subject, body))
        return NotificationResult(success=not self.fail, channel="email", recipient=to, message=body,
                                  error="Email gateway down" if self.fail else None)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def strategy(fake_provider) -> FallbackDisbursementStrategy:
    return FallbackDisbursementStrategy([fake_provider])


@pytest.fixture
def notifications() -> RecordingNotificationService:
    return RecordingNotificationService()


@pytest.fixture
def provider_factory():
    return FakeProvider


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def _headers(role: str, restaurant_id: Optional[int] = None, email: str = "user@test.com") -> dict:
    data = {"sub": "1", "email": email, "role": role}
    if restaurant_id is not None:
        data["restaurant_id"] = restaurant_id
    return {"Authorization": f"Bearer {create_access_token(data)}"}


@pytest.fixture
def manager_headers(restaurant: Restaurant) -> dict:
    return _headers("manager", restaurant.id, email="manager@javahouse.test")


@pytest.fixture
def staff_headers(restaurant: Restaurant) -> dict:
    return _headers("staff", restaurant.id)


@pytest.fixture
def admin_headers() -> dict:
    return _headers("admin", email="ops@tipping.test")


@pytest.fixture
def foreign_manager_headers(other_restaurant: Restaurant) -> dict:
    return _headers("manager", other_restaurant.id)
