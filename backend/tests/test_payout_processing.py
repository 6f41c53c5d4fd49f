"""Payout disbursement: claiming, batches, provider outcomes, retry and callbacks."""

from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.orm import Session

from tipping.core.config import Settings
from tipping.core.exceptions import ProviderError
from tipping.models import BankAccount, Payout, PayoutNotification, PayoutStatus
from tipping.services.disbursement import (
    BankDestination,
    FallbackDisbursementStrategy,
    MpesaB2CProvider,
    PesaWiseProvider,
)
from tipping.services.payout_notifications import PayoutNotifier
from tipping.services.payout_processor import PayoutProcessor, ProcessingResult

PESAWISE_CONFIG = Settings(
    pesawise_api_key="pw-key",
    pesawise_secret_key="pw-secret",
    pesawise_balance_id="bal-1",
    pesawise_api_url="https://pesawise.test",
)

MPESA_CONFIG = Settings(
    mpesa_consumer_key="ck",
    mpesa_consumer_secret="cs",
    mpesa_business_short_code="600000",
    mpesa_initiator_name="apiop",
    mpesa_security_credential="cred",
    mpesa_b2c_result_url="https://tips.test/api/v1/webhooks/mpesa/b2c/result",
    mpesa_b2c_timeout_url="https://tips.test/api/v1/webhooks/mpesa/b2c/timeout",
)


@pytest.fixture
def notifier(db_session: Session, notifications) -> PayoutNotifier:
    return PayoutNotifier(db_session, service=notifications)


@pytest.fixture
def processor(db_session: Session, strategy, notifier) -> PayoutProcessor:
    return PayoutProcessor(db_session, strategy=strategy, notifier=notifier)


@pytest.fixture
def chef(make_waiter):
    return make_waiter("Chef Kamau", phone="0733000111")


class TestProcessPayouts:

    @pytest.mark.asyncio
    async def test_settled_items_complete_and_notify(self, db_session: Session, restaurant, waiter, make_payout,
                                                     processor, fake_provider, notifications):
        payout = make_payout("900.00", waiter=waiter)

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert result.success
        assert result.processed_payouts == 1
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.provider == "fake"
        assert payout.transaction_reference == f"FAKE-0-{payout.reference}"
        assert payout.processed_at is not None
        assert fake_provider.calls[0][0].destination == waiter.phone_number
        assert len(notifications.sms) == 1
        assert "has been processed successfully" in notifications.sms[0][1]
        assert db_session.query(PayoutNotification).filter_by(payout_id=payout.id).count() == 2

    @pytest.mark.asyncio
    async def test_accepted_items_wait_for_callback(self, db_session: Session, restaurant, waiter, make_payout,
                                                    processor, fake_provider, notifications):
        payout = make_payout(waiter=waiter)
        fake_provider.outcomes[payout.reference] = "pending"

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.PROCESSING
        assert result.pending_settlement == 1
        assert result.processed_payouts == 0
        assert notifications.sms == []

    @pytest.mark.asyncio
    async def test_per_item_failure_does_not_affect_others(self, db_session: Session, restaurant, waiter, make_waiter,
                                                           make_payout, processor, fake_provider, notifications):
        other = make_waiter("Brian", phone="0722000000")
        bad = make_payout("100.00", waiter=waiter)
        good = make_payout("200.00", waiter=other)
        fake_provider.outcomes[bad.reference] = "fail"

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(bad)
        db_session.refresh(good)
        assert not result.success
        assert bad.status == PayoutStatus.FAILED
        assert bad.error_message == "Insufficient float"
        assert good.status == PayoutStatus.COMPLETED
        assert (result.processed_payouts, result.failed_payouts) == (1, 1)
        assert any("issue processing your tip payout" in msg for _, msg in notifications.sms)

    @pytest.mark.asyncio
    async def test_missing_item_result_stays_processing(self, db_session: Session, restaurant, waiter, make_payout,
                                                        processor, fake_provider):
        payout = make_payout(waiter=waiter)
        fake_provider.outcomes[payout.reference] = "missing"

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.PROCESSING
        assert "returned no result" in payout.error_message
        assert not result.success

    @pytest.mark.asyncio
    async def test_ownerless_group_payout_fails_without_sending(self, db_session: Session, restaurant, waiter,
                                                                make_payout, processor, fake_provider):
        ownerless = make_payout("270.00", group_name="Cleaners")
        direct = make_payout("900.00", waiter=waiter)

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(ownerless)
        db_session.refresh(direct)
        assert ownerless.status == PayoutStatus.FAILED
        assert "no disbursement account" in ownerless.error_message
        assert direct.status == PayoutStatus.COMPLETED
        sent = [item.reference for call in fake_provider.calls for item in call]
        assert ownerless.reference not in sent

    @pytest.mark.asyncio
    async def test_waiter_and_group_batches_are_separate(self, db_session: Session, restaurant, waiter, chef,
                                                         make_payout, processor, fake_provider):
        make_payout(waiter=waiter)
        make_payout(waiter=chef, group_name="Kitchen - Chef Kamau")

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        assert len(fake_provider.calls) == 2
        assert (result.waiter_payouts, result.group_payouts) == (1, 1)
        assert len(result.waiter_results) == 1
        assert len(result.group_results) == 1
        assert fake_provider.calls[1][0].destination == chef.phone_number

    @pytest.mark.asyncio
    async def test_provider_failure_returns_batch_to_pending(self, db_session: Session, restaurant, waiter,
                                                             make_payout, notifier, provider_factory, notifications):
        down = provider_factory("pesawise", raises=ProviderError("pesawise", "connection refused"))
        processor = PayoutProcessor(db_session, strategy=FallbackDisbursementStrategy([down]), notifier=notifier)
        payout = make_payout(waiter=waiter)

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.PENDING
        assert payout.transaction_reference is None
        assert not result.success
        assert result.provider_attempts[0]["provider"] == "pesawise"
        assert result.provider_attempts[0]["succeeded"] is False
        assert notifications.sms == []

    @pytest.mark.asyncio
    async def test_falls_back_to_next_provider(self, db_session: Session, restaurant, waiter, make_payout,
                                               notifier, provider_factory):
        down = provider_factory("pesawise", raises=ProviderError("pesawise", "HTTP 503"))
        mpesa = provider_factory("mpesa")
        processor = PayoutProcessor(db_session, strategy=FallbackDisbursementStrategy([down, mpesa]), notifier=notifier)
        payout = make_payout(waiter=waiter)
        mpesa.outcomes[payout.reference] = "pending"

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert payout.provider == "mpesa"
        assert payout.status == PayoutStatus.PROCESSING
        assert [a["provider"] for a in result.provider_attempts] == ["pesawise", "mpesa"]
        assert result.provider_attempts[1]["fallback_from"] == "pesawise"

    @pytest.mark.asyncio
    async def test_unconfigured_providers_leave_payouts_pending(self, db_session: Session, restaurant, waiter,
                                                                make_payout, notifier):
        payout = make_payout(waiter=waiter)
        processor = PayoutProcessor(db_session, notifier=notifier)

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.PENDING
        assert any("No disbursement provider is configured" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_selected_ids_only(self, db_session: Session, restaurant, waiter, make_payout, processor):
        chosen = make_payout(waiter=waiter)
        untouched = make_payout(waiter=waiter)
        done = make_payout(waiter=waiter, status=PayoutStatus.COMPLETED)

        result = await processor.process_payouts(restaurant_id=restaurant.id, payout_ids=[chosen.id, done.id])

        db_session.refresh(untouched)
        assert result.total_payouts == 1
        assert untouched.status == PayoutStatus.PENDING
        assert result.errors == [f"Payout {done.id} is not pending"]

    @pytest.mark.asyncio
    async def test_dry_run_moves_no_money_and_sends_nothing(self, db_session: Session, restaurant, waiter, chef,
                                                            make_payout, processor, fake_provider, notifications):
        direct = make_payout(waiter=waiter)
        grouped = make_payout(waiter=chef, group_name="Kitchen - Chef Kamau")

        result = await processor.process_payouts(restaurant_id=restaurant.id, dry_run=True)

        db_session.refresh(direct)
        db_session.refresh(grouped)
        assert result.dry_run
        assert fake_provider.calls == []
        assert notifications.sms == [] and notifications.emails == []
        assert direct.status == PayoutStatus.COMPLETED
        assert direct.transaction_reference.startswith("DRY-RUN-")
        assert grouped.transaction_reference.startswith("DRY-RUN-GROUP-")


class TestUncertainOutcomes:

    @pytest.mark.asyncio
    async def test_read_timeout_is_not_resent_to_fallback(self, db_session: Session, restaurant, waiter, make_payout,
                                                          notifier, provider_factory, notifications):
        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        pesawise = PesaWiseProvider(PESAWISE_CONFIG, transport=httpx.MockTransport(timeout))
        second = provider_factory("mpesa")
        processor = PayoutProcessor(
            db_session, strategy=FallbackDisbursementStrategy([pesawise, second]), notifier=notifier,
        )
        payout = make_payout(waiter=waiter)

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert second.calls == []
        assert payout.status == PayoutStatus.PROCESSING
        assert payout.provider == "pesawise"
        assert "outcome unknown" in payout.error_message
        assert (result.pending_settlement, result.failed_payouts) == (1, 0)
        assert result.total_amount == Decimal("0")
        assert [a["provider"] for a in result.provider_attempts] == ["pesawise"]
        assert notifications.sms == []

    @pytest.mark.asyncio
    async def test_unknown_outcome_is_neither_reprocessed_nor_retried(self, db_session: Session, restaurant, waiter,
                                                                      make_payout, processor, fake_provider):
        payout = make_payout(waiter=waiter)
        fake_provider.outcomes[payout.reference] = "unknown"
        await processor.process_payouts(restaurant_id=restaurant.id)

        second_run = await processor.process_payouts(restaurant_id=restaurant.id)
        retry = await processor.retry_failed_payouts([payout.id])

        assert second_run.total_payouts == 0
        assert retry.errors == [f"Payout {payout.id} is not in failed state"]
        assert len(fake_provider.calls) == 1

    @pytest.mark.asyncio
    async def test_callback_settles_timed_out_payout_by_reference(self, db_session: Session, restaurant, waiter,
                                                                  make_payout, processor, fake_provider,
                                                                  notifications):
        payout = make_payout(waiter=waiter)
        fake_provider.outcomes[payout.reference] = "unknown"
        await processor.process_payouts(restaurant_id=restaurant.id)

        outcome = await processor.apply_settlement_callback(payout.reference, success=True, receipt="QK42")

        db_session.refresh(payout)
        assert outcome.applied
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.error_message is None
        assert payout.provider_receipt == "QK42"
        assert len(notifications.sms) == 1

    @pytest.mark.asyncio
    async def test_mpesa_fractional_amount_fails_instead_of_rounding(self, db_session: Session, restaurant, waiter,
                                                                     make_payout, notifier):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/v1/generate":
                return httpx.Response(200, json={"access_token": "tok"})
            return httpx.Response(200, json={"ConversationID": "AG_1", "ResponseCode": "0"})

        mpesa = MpesaB2CProvider(MPESA_CONFIG, transport=httpx.MockTransport(handler))
        processor = PayoutProcessor(db_session, strategy=FallbackDisbursementStrategy([mpesa]), notifier=notifier)
        fractional = make_payout("450.50", waiter=waiter)
        whole = make_payout("451.00", waiter=waiter)

        result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(fractional)
        db_session.refresh(whole)
        assert fractional.status == PayoutStatus.FAILED
        assert fractional.error_message == MpesaB2CProvider.WHOLE_SHILLINGS_ERROR
        assert whole.status == PayoutStatus.PROCESSING
        assert result.total_amount == Decimal("451.00")


@pytest.fixture
def bank_provider(provider_factory):
    return provider_factory("pesawise_bank")


@pytest.fixture
def bank_processor(db_session: Session, strategy, notifier, bank_provider) -> PayoutProcessor:
    return PayoutProcessor(
        db_session, strategy=strategy, notifier=notifier,
        bank_strategy=FallbackDisbursementStrategy([bank_provider]),
    )


@pytest.fixture
def cleaners_account(db_session: Session, restaurant) -> BankAccount:
    account = BankAccount(
        restaurant_id=restaurant.id,
        group_name="Cleaners",
        account_name="Java House Cleaners",
        account_number="0123456789012",
        bank_name="Equity Bank",
        bank_code="68",
    )
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


class TestBankTransfers:

    @pytest.mark.asyncio
    async def test_ownerless_group_pays_registered_bank_account(self, db_session: Session, restaurant, waiter,
                                                                make_payout, cleaners_account, bank_processor,
                                                                bank_provider, fake_provider):
        ownerless = make_payout("270.00", group_name="Cleaners")
        direct = make_payout("900.00", waiter=waiter)
        bank_provider.outcomes[ownerless.reference] = "pending"

        result = await bank_processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(ownerless)
        db_session.refresh(direct)
        [[item]] = bank_provider.calls
        assert item.reference == ownerless.reference
        assert item.destination == "0123456789012"
        assert item.bank.bank_code == "68"
        assert item.bank.account_name == "Java House Cleaners"
        assert [i.reference for call in fake_provider.calls for i in call] == [direct.reference]
        assert ownerless.status == PayoutStatus.PROCESSING
        assert ownerless.provider == "pesawise_bank"
        assert direct.status == PayoutStatus.COMPLETED
        assert result.group_payouts == 1
        assert result.group_results[0]["payout_id"] == ownerless.id

    @pytest.mark.asyncio
    async def test_stored_bank_details_are_used(self, db_session: Session, restaurant, make_payout, bank_processor,
                                                bank_provider, fake_provider):
        account = BankDestination(account_number="9988776655", account_name="Kitchen Staff", bank_code="01")
        payout = make_payout("1080.00", group_name="Kitchen", recipient_account=account.to_json())

        await bank_processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert bank_provider.calls[0][0].bank == account
        assert fake_provider.calls == []
        assert payout.status == PayoutStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_inactive_bank_account_is_ignored(self, db_session: Session, restaurant, make_payout,
                                                    cleaners_account, bank_processor, bank_provider):
        cleaners_account.is_active = False
        db_session.commit()
        payout = make_payout("270.00", group_name="Cleaners")

        await bank_processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.FAILED
        assert "no disbursement account" in payout.error_message
        assert bank_provider.calls == []

    @pytest.mark.asyncio
    async def test_unconfigured_bank_transfers_leave_group_pending(self, db_session: Session, restaurant, waiter,
                                                                   make_payout, cleaners_account, processor):
        ownerless = make_payout("270.00", group_name="Cleaners")
        direct = make_payout("900.00", waiter=waiter)

        with patch("tipping.services.payout_processor.build_bank_strategy",
                   side_effect=ProviderError("none", "No bank transfer provider is configured", retryable=False)):
            result = await processor.process_payouts(restaurant_id=restaurant.id)

        db_session.refresh(ownerless)
        db_session.refresh(direct)
        assert ownerless.status == PayoutStatus.PENDING
        assert direct.status == PayoutStatus.COMPLETED
        assert any("No bank transfer provider is configured" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_dry_run_covers_bank_transfers(self, db_session: Session, restaurant, make_payout, cleaners_account,
                                                 bank_processor, bank_provider):
        payout = make_payout("270.00", group_name="Cleaners")

        await bank_processor.process_payouts(restaurant_id=restaurant.id, dry_run=True)

        db_session.refresh(payout)
        assert bank_provider.calls == []
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.transaction_reference.startswith("DRY-RUN-GROUP-")


class TestClaiming:

    def test_claim_is_exclusive(self, db_session: Session, waiter, make_payout, processor):
        payout = make_payout(waiter=waiter)
        assert processor.claim(payout.id)
        db_session.commit()
        assert not processor.claim(payout.id)

    @pytest.mark.asyncio
    async def test_overlapping_run_skips_claimed_rows(self, db_session: Session, restaurant, waiter, make_waiter,
                                                      make_payout, processor, fake_provider, strategy, notifier):
        taken = make_payout(waiter=waiter)
        free = make_payout(waiter=make_waiter("Brian", phone="0722000000"))
        candidates = processor.payouts.payouts_for_processing(restaurant.id)

        rival = PayoutProcessor(db_session, strategy=strategy, notifier=notifier)
        assert rival.claim(taken.id)
        db_session.commit()

        with patch.object(processor.payouts, "payouts_for_processing", return_value=candidates):
            result = await processor.process_payouts(restaurant_id=restaurant.id)

        assert result.total_payouts == 1
        assert [item.reference for item in fake_provider.calls[0]] == [free.reference]


class TestRetry:

    @pytest.mark.asyncio
    async def test_failed_payout_is_reset_and_reprocessed(self, db_session: Session, waiter, make_payout, processor):
        payout = make_payout(waiter=waiter, status=PayoutStatus.FAILED)
        payout.error_message = "Insufficient float"
        payout.transaction_reference = "OLD-REF"
        db_session.commit()

        result = await processor.retry_failed_payouts([payout.id])

        db_session.refresh(payout)
        assert result.processed_payouts == 1
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.error_message is None
        assert payout.transaction_reference != "OLD-REF"

    @pytest.mark.asyncio
    async def test_only_failed_payouts_can_be_retried(self, db_session: Session, waiter, make_payout, processor,
                                                      fake_provider):
        completed = make_payout(waiter=waiter, status=PayoutStatus.COMPLETED)

        result = await processor.retry_failed_payouts([completed.id])

        assert result.errors == [f"Payout {completed.id} is not in failed state"]
        assert fake_provider.calls == []


class TestSettlementCallbacks:

    @pytest.mark.asyncio
    async def test_success_callback_completes_and_notifies(self, db_session: Session, waiter, make_payout, processor,
                                                           notifications):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="AG_2024_abc")

        outcome = await processor.apply_settlement_callback("AG_2024_abc", success=True)

        assert outcome.found and outcome.applied
        assert outcome.status == PayoutStatus.COMPLETED
        db_session.refresh(payout)
        assert payout.processed_at is not None
        assert len(notifications.sms) == 1

    @pytest.mark.asyncio
    async def test_duplicate_callback_is_noop(self, db_session: Session, waiter, make_payout, processor, notifications):
        make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="AG_2024_abc")
        await processor.apply_settlement_callback("AG_2024_abc", success=True)

        again = await processor.apply_settlement_callback("AG_2024_abc", success=False, error="late failure")

        assert again.found and not again.applied
        assert again.status == PayoutStatus.COMPLETED
        assert len(notifications.sms) == 1

    @pytest.mark.asyncio
    async def test_failure_callback_records_error(self, db_session: Session, waiter, make_payout, processor):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="REQ-1")

        await processor.apply_settlement_callback("REQ-1", success=False, error="The initiator is not allowed")

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.FAILED
        assert payout.error_message == "The initiator is not allowed"

    @pytest.mark.asyncio
    async def test_lookup_by_payout_reference(self, db_session: Session, waiter, make_payout, processor):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING)

        outcome = await processor.apply_settlement_callback(payout.reference, success=True, receipt="QK1")

        db_session.refresh(payout)
        assert outcome.applied
        assert payout.provider_receipt == "QK1"
        assert payout.transaction_reference is None

    @pytest.mark.asyncio
    async def test_receipt_never_replaces_transaction_reference(self, db_session: Session, waiter, make_payout,
                                                                processor):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="AG_2024_abc")

        await processor.apply_settlement_callback("AG_2024_abc", success=True, receipt="QK7HGT2")

        db_session.refresh(payout)
        assert payout.transaction_reference == "AG_2024_abc"
        assert payout.provider_receipt == "QK7HGT2"
        again = await processor.apply_settlement_callback("AG_2024_abc", success=True, receipt="QK7HGT2")
        assert again.found and not again.applied
        assert again.payout_id == payout.id

    @pytest.mark.asyncio
    async def test_unknown_reference(self, processor):
        outcome = await processor.apply_settlement_callback("nope", success=True)
        assert not outcome.found


def test_processing_result_to_dict():
    result = ProcessingResult(total_payouts=2, processed_payouts=1, failed_payouts=1)
    result.errors.append("Payout 7: Insufficient float")

    data = result.to_dict()

    assert data["success"] is False
    assert data["details"] == {"waiter_results": [], "group_results": []}
    assert data["errors"] == ["Payout 7: Insufficient float"]
