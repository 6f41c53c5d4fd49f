"""Provider settlement callbacks over HTTP."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tipping.api.routes.payouts import get_payout_processor
from tipping.main import app
from tipping.models import PayoutStatus
from tipping.services.payout_notifications import PayoutNotifier
from tipping.services.payout_processor import PayoutProcessor

MPESA_RESULT_URL = "/api/v1/webhooks/mpesa/b2c/result"
MPESA_TIMEOUT_URL = "/api/v1/webhooks/mpesa/b2c/timeout"
PESAWISE_URL = "/api/v1/webhooks/pesawise"
BANK_TRANSFER_URL = "/api/v1/webhooks/bank-transfer"


@pytest.fixture
def webhook_client(client: TestClient, db_session: Session, strategy, notifications) -> TestClient:
    app.dependency_overrides[get_payout_processor] = lambda: PayoutProcessor(
        db_session, strategy=strategy, notifier=PayoutNotifier(db_session, service=notifications),
    )
    return client


def b2c_result(conversation_id: str, code: int = 0, desc: str = "The service request is processed successfully.",
               originator: str = "10571-7910404-1"):
    result = {
        "ResultType": 0,
        "ResultCode": code,
        "ResultDesc": desc,
        "OriginatorConversationID": originator,
        "ConversationID": conversation_id,
        "TransactionID": "LGR019G3J2" if code == 0 else None,
    }
    if code == 0:
        result["ResultParameters"] = {"ResultParameter": [
            {"Key": "TransactionAmount", "Value": 900},
            {"Key": "TransactionReceipt", "Value": "LGR019G3J2"},
        ]}
    return {"Result": result}


class TestMpesaB2CResult:

    def test_success_completes_payout(self, webhook_client, db_session, waiter, make_payout, notifications):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="AG_20240201_1")

        response = webhook_client.post(MPESA_RESULT_URL, json=b2c_result("AG_20240201_1"))

        assert response.status_code == 200
        assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
        db_session.refresh(payout)
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.transaction_reference == "AG_20240201_1"
        assert payout.provider_receipt == "LGR019G3J2"
        assert len(notifications.sms) == 1

    def test_unacknowledged_request_matches_on_originator_id(self, webhook_client, db_session, waiter, make_payout):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING)

        response = webhook_client.post(
            MPESA_RESULT_URL, json=b2c_result("AG_20240201_9", originator=payout.reference),
        )

        assert response.json()["ResultDesc"] == "Accepted"
        db_session.refresh(payout)
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.transaction_reference is None
        assert payout.provider_receipt == "LGR019G3J2"

    def test_failure_marks_payout_failed(self, webhook_client, db_session, waiter, make_payout):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="AG_20240201_2")

        webhook_client.post(
            MPESA_RESULT_URL, json=b2c_result("AG_20240201_2", code=2001, desc="The initiator information is invalid."),
        )

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.FAILED
        assert payout.error_message == "The initiator information is invalid."

    def test_repeated_callback_is_ignored(self, webhook_client, db_session, waiter, make_payout, notifications):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="AG_20240201_3")

        webhook_client.post(MPESA_RESULT_URL, json=b2c_result("AG_20240201_3"))
        second = webhook_client.post(MPESA_RESULT_URL, json=b2c_result("AG_20240201_3", code=1, desc="late"))

        assert second.json()["ResultCode"] == 0
        db_session.refresh(payout)
        assert payout.status == PayoutStatus.COMPLETED
        assert len(notifications.sms) == 1

    def test_unknown_conversation_is_acknowledged(self, webhook_client):
        response = webhook_client.post(MPESA_RESULT_URL, json=b2c_result("AG_unknown"))
        assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted: unknown conversation"}

    @pytest.mark.parametrize("kwargs", [
        {"json": {"Result": {"ResultCode": 0}}},
        {"json": {"unexpected": True}},
        {"content": b"not json", "headers": {"Content-Type": "application/json"}},
    ])
    def test_malformed_payload_is_acknowledged(self, webhook_client, kwargs):
        response = webhook_client.post(MPESA_RESULT_URL, **kwargs)
        assert response.status_code == 200
        assert response.json() == {"ResultCode": 0, "ResultDesc": "Rejected: malformed payload"}

    def test_queue_timeout_leaves_payout_processing(self, webhook_client, db_session, waiter, make_payout):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="AG_20240201_4")

        response = webhook_client.post(MPESA_TIMEOUT_URL, json=b2c_result("AG_20240201_4", code=1, desc="timeout"))

        assert response.json()["ResultDesc"] == "Timeout received"
        db_session.refresh(payout)
        assert payout.status == PayoutStatus.PROCESSING


class TestPesaWiseCallback:

    def test_success_by_request_id(self, webhook_client, db_session, waiter, make_payout):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="req-77")

        response = webhook_client.post(PESAWISE_URL, json={"requestId": "req-77", "status": "SUCCESS"})

        assert response.status_code == 200
        body = response.json()
        assert body["found"] and body["applied"]
        assert body["payout_id"] == payout.id
        assert body["status"] == "completed"

    def test_failure_message_is_recorded(self, webhook_client, db_session, waiter, make_payout):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING, transaction_reference="req-78")

        webhook_client.post(PESAWISE_URL, json={
            "requestId": "req-78", "status": "FAILED", "message": "Recipient not registered",
        })

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.FAILED
        assert payout.error_message == "Recipient not registered"

    def test_falls_back_to_payout_reference(self, webhook_client, db_session, waiter, make_payout):
        payout = make_payout(waiter=waiter, status=PayoutStatus.PROCESSING)

        response = webhook_client.post(PESAWISE_URL, json={
            "transactionId": "tx-unknown", "status": "COMPLETED", "reference": payout.reference,
        })

        assert response.json()["applied"]
        db_session.refresh(payout)
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.provider_receipt == "tx-unknown"

    def test_unknown_reference(self, webhook_client):
        response = webhook_client.post(PESAWISE_URL, json={"requestId": "nope", "status": "SUCCESS"})
        assert response.status_code == 200
        assert response.json()["found"] is False

    def test_missing_identifier_is_rejected(self, webhook_client):
        response = webhook_client.post(PESAWISE_URL, json={"status": "SUCCESS"})
        assert response.status_code == 400


def bank_event(transfer_id, tx_ref: str, event: str = "transfer.completed", status: str = "SUCCESSFUL",
               processor_response: str = "Transaction Successful"):
    return {
        "event": event,
        "data": {
            "id": transfer_id,
            "tx_ref": tx_ref,
            "amount": 270,
            "currency": "KES",
            "status": status,
            "processor_response": processor_response,
        },
    }


class TestBankTransferCallback:

    def test_completed_transfer(self, webhook_client, db_session, make_payout):
        payout = make_payout("270.00", group_name="Cleaners", status=PayoutStatus.PROCESSING,
                             transaction_reference="4821")

        response = webhook_client.post(BANK_TRANSFER_URL, json=bank_event(4821, payout.reference))

        assert response.status_code == 200
        assert response.json()["applied"]
        db_session.refresh(payout)
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.transaction_reference == "4821"
        assert payout.provider_receipt == "4821"

    def test_failed_transfer(self, webhook_client, db_session, make_payout):
        payout = make_payout("270.00", group_name="Cleaners", status=PayoutStatus.PROCESSING,
                             transaction_reference="4822")

        webhook_client.post(BANK_TRANSFER_URL, json=bank_event(
            4822, payout.reference, event="transfer.failed", status="FAILED", processor_response="Account closed",
        ))

        db_session.refresh(payout)
        assert payout.status == PayoutStatus.FAILED
        assert payout.error_message == "Account closed"

    def test_falls_back_to_tx_ref(self, webhook_client, db_session, make_payout):
        payout = make_payout("270.00", group_name="Cleaners", status=PayoutStatus.PROCESSING)

        response = webhook_client.post(BANK_TRANSFER_URL, json=bank_event("TRF-9", payout.reference))

        assert response.json()["payout_id"] == payout.id
        db_session.refresh(payout)
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.provider_receipt == "TRF-9"

    def test_intermediate_status_changes_nothing(self, webhook_client, db_session, make_payout):
        payout = make_payout("270.00", group_name="Cleaners", status=PayoutStatus.PROCESSING,
                             transaction_reference="4823")

        response = webhook_client.post(BANK_TRANSFER_URL, json=bank_event(
            4823, payout.reference, event="transfer.updated", status="PENDING",
        ))

        assert response.json()["applied"] is False
        db_session.refresh(payout)
        assert payout.status == PayoutStatus.PROCESSING

    def test_malformed_payload_is_rejected(self, webhook_client):
        response = webhook_client.post(BANK_TRANSFER_URL, json={"event": "transfer.completed"})
        assert response.status_code == 400
