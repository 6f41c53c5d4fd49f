"""Disbursement provider settlement callbacks.

Called by the providers, not by users, so there is no JWT. Daraja retries
any B2C result that is not acknowledged, so the result endpoint always
answers ``ResultCode: 0``, malformed payloads included.

Each callback is matched on the provider id stored when the request was
accepted, then on the ``PAYOUT-`` reference, which is the only key for a
payout whose request timed out before the provider answered.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import ValidationError

from tipping.api.routes.payouts import Processor
from tipping.schemas.callbacks import BankTransferCallback, MpesaB2CCallback, PesaWiseCallback

logger = logging.getLogger(__name__)

router = APIRouter()


def _mpesa_ack(description: str) -> dict:
    return {"ResultCode": 0, "ResultDesc": description}


def _outcome_response(outcome) -> dict:
    return {
        "received": True,
        "found": outcome.found,
        "applied": outcome.applied,
        "payout_id": outcome.payout_id,
        "status": outcome.status,
    }


@router.post("/mpesa/b2c/result")
async def mpesa_b2c_result(request: Request, processor: Processor):
    try:
        callback = MpesaB2CCallback.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"Rejected malformed M-Pesa B2C result: {e}")
        return _mpesa_ack("Rejected: malformed payload")

    result = callback.Result
    logger.info(
        f"M-Pesa B2C result {result.ConversationID} "
        f"(originator {result.OriginatorConversationID}): {result.ResultCode} {result.ResultDesc}"
        + (f" receipt {result.TransactionID}" if result.TransactionID else "")
    )
    error = None if result.succeeded else (result.ResultDesc or f"ResultCode {result.ResultCode}")
    outcome = await processor.apply_settlement_callback(
        result.ConversationID, success=result.succeeded, receipt=result.TransactionID, error=error,
    )
    if not outcome.found:
        outcome = await processor.apply_settlement_callback(
            result.OriginatorConversationID, success=result.succeeded, receipt=result.TransactionID, error=error,
        )
    if not outcome.found:
        return _mpesa_ack("Accepted: unknown conversation")
    return _mpesa_ack("Accepted")


@router.post("/mpesa/b2c/timeout")
async def mpesa_b2c_timeout(request: Request):
    """Queue timeout. The payout stays processing until the result callback or an operator settles it."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    logger.warning(f"M-Pesa B2C queue timeout: {payload}")
    return _mpesa_ack("Timeout received")


@router.post("/pesawise")
async def pesawise_callback(request: Request, processor: Processor):
    try:
        callback = PesaWiseCallback.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"Rejected malformed PesaWise callback: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid callback payload")

    error = None if callback.succeeded else (callback.message or f"PesaWise status {callback.status}")
    outcome = await processor.apply_settlement_callback(
        callback.lookup_reference, success=callback.succeeded, receipt=callback.transactionId, error=error,
    )
    if not outcome.found and callback.reference:
        outcome = await processor.apply_settlement_callback(
            callback.reference, success=callback.succeeded, receipt=callback.transactionId, error=error,
        )
    return _outcome_response(outcome)


@router.post("/bank-transfer")
async def bank_transfer_callback(request: Request, processor: Processor):
    try:
        callback = BankTransferCallback.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"Rejected malformed bank transfer callback: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid callback payload")

    data = callback.data
    if not (callback.succeeded or callback.failed):
        logger.info(f"Bank transfer {data.tx_ref} status {data.status} ({callback.event}), not final")
        return {"received": True, "found": None, "applied": False, "payout_id": None, "status": data.status}

    error = None if callback.succeeded else (data.processor_response or "Transfer failed")
    outcome = await processor.apply_settlement_callback(
        data.id, success=callback.succeeded, receipt=data.id, error=error,
    )
    if not outcome.found:
        outcome = await processor.apply_settlement_callback(
            data.tx_ref, success=callback.succeeded, receipt=data.id, error=error,
        )
    return _outcome_response(outcome)
