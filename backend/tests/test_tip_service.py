"""Tip recording and payment status callbacks."""

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from tipping.core.exceptions import (
    InvalidDistribution,
    InvalidStatusTransition,
    RestaurantNotFound,
    TipNotFound,
    ValidationError,
)
from tipping.models import PaymentStatus, TipDistribution, TipType
from tipping.services.tip_service import TipService


class TestRecordTip:

    def test_waiter_tip_stores_commission_split(self, db_session: Session, restaurant, waiter):
        tip = TipService(db_session).record_tip(restaurant.id, 1000, TipType.WAITER, waiter_id=waiter.id)
        assert tip.payment_status == PaymentStatus.PENDING
        assert tip.commission_amount == Decimal("100.00")
        assert tip.net_amount == Decimal("900.00")

    def test_pooled_tip(self, db_session: Session, restaurant):
        tip = TipService(db_session).record_tip(restaurant.id, "250.50", TipType.RESTAURANT)
        assert tip.waiter_id is None
        assert tip.is_pooled

    def test_waiter_tip_requires_waiter(self, db_session: Session, restaurant):
        with pytest.raises(ValidationError):
            TipService(db_session).record_tip(restaurant.id, 100, TipType.WAITER)

    def test_pooled_tip_cannot_name_waiter(self, db_session: Session, restaurant, waiter):
        with pytest.raises(ValidationError):
            TipService(db_session).record_tip(restaurant.id, 100, TipType.RESTAURANT, waiter_id=waiter.id)

    def test_waiter_must_belong_to_restaurant(self, db_session: Session, other_restaurant, waiter):
        with pytest.raises(ValidationError):
            TipService(db_session).record_tip(other_restaurant.id, 100, TipType.WAITER, waiter_id=waiter.id)

    def test_inactive_restaurant(self, db_session: Session, restaurant):
        restaurant.is_active = False
        db_session.commit()
        with pytest.raises(RestaurantNotFound):
            TipService(db_session).record_tip(restaurant.id, 100, TipType.RESTAURANT)

    @pytest.mark.parametrize("amount", [0, -10, "2000000"])
    def test_amount_limits(self, db_session: Session, restaurant, amount):
        with pytest.raises(ValidationError):
            TipService(db_session).record_tip(restaurant.id, amount, TipType.RESTAURANT)


class TestPaymentStatus:

    def test_completing_pooled_tip_splits_it(self, db_session: Session, restaurant, groups):
        service = TipService(db_session)
        tip = service.record_tip(restaurant.id, 2000, TipType.RESTAURANT)
        service.update_payment_status(tip.id, PaymentStatus.COMPLETED, transaction_id="QK12ABC")

        assert tip.payment_status == PaymentStatus.COMPLETED
        assert tip.transaction_id == "QK12ABC"
        assert db_session.query(TipDistribution).filter_by(tip_id=tip.id).count() == 3

    def test_completing_waiter_tip_does_not_split(self, db_session: Session, restaurant, groups, waiter):
        service = TipService(db_session)
        tip = service.record_tip(restaurant.id, 500, TipType.WAITER, waiter_id=waiter.id)
        service.update_payment_status(tip.id, PaymentStatus.COMPLETED)
        assert db_session.query(TipDistribution).count() == 0

    def test_same_status_is_noop(self, db_session: Session, restaurant, groups):
        service = TipService(db_session)
        tip = service.record_tip(restaurant.id, 2000, TipType.RESTAURANT)
        service.update_payment_status(tip.id, PaymentStatus.COMPLETED)
        service.update_payment_status(tip.id, PaymentStatus.COMPLETED)
        assert db_session.query(TipDistribution).filter_by(tip_id=tip.id).count() == 3

    def test_terminal_tip_is_immutable(self, db_session: Session, restaurant, waiter):
        service = TipService(db_session)
        tip = service.record_tip(restaurant.id, 500, TipType.WAITER, waiter_id=waiter.id)
        service.update_payment_status(tip.id, PaymentStatus.FAILED)
        with pytest.raises(InvalidStatusTransition):
            service.update_payment_status(tip.id, PaymentStatus.COMPLETED)

    def test_processing_cannot_go_back_to_pending(self, db_session: Session, restaurant, waiter):
        service = TipService(db_session)
        tip = service.record_tip(restaurant.id, 500, TipType.WAITER, waiter_id=waiter.id)
        service.update_payment_status(tip.id, PaymentStatus.PROCESSING)
        with pytest.raises(InvalidStatusTransition):
            service.update_payment_status(tip.id, PaymentStatus.PENDING)

    def test_pooled_tip_without_groups_stays_pending(self, db_session: Session, restaurant):
        service = TipService(db_session)
        tip = service.record_tip(restaurant.id, 2000, TipType.RESTAURANT)
        with pytest.raises(InvalidDistribution):
            service.update_payment_status(tip.id, PaymentStatus.COMPLETED)
        db_session.refresh(tip)
        assert tip.payment_status == PaymentStatus.PENDING

    def test_unknown_tip(self, db_session: Session):
        with pytest.raises(TipNotFound):
            TipService(db_session).update_payment_status(42, PaymentStatus.COMPLETED)
