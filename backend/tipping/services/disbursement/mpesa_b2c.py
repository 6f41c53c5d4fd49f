"""Safaricom M-Pesa Daraja B2C disbursement provider."""

import base64
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import httpx

from tipping.core.config import Settings, settings as default_settings
from tipping.core.exceptions import ProviderError
from tipping.services.disbursement.base import (
    BulkDisbursementResult,
    DisbursementItem,
    DisbursementItemResult,
    normalize_kenyan_phone,
    request_may_have_been_sent,
)

logger = logging.getLogger(__name__)


class MpesaB2CProvider:
    """Business-to-customer payments, one B2C request per payout.

    Daraja only acknowledges the request; the outcome arrives later on the
    ResultURL keyed by ConversationID, so accepted items are never settled
    here. The payout reference also travels as OriginatorConversationID so a
    result can still be matched when the acknowledgement itself was lost.
    """

    name = "mpesa"

    SANDBOX_BASE = "https://sandbox.safaricom.co.ke"
    PRODUCTION_BASE = "https://api.safaricom.co.ke"
    TOKEN_TTL = timedelta(minutes=55)
    COMMAND_ID = "BusinessPayment"
    WHOLE_SHILLINGS_ERROR = "M-Pesa B2C only supports whole shilling amounts"

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or default_settings
        self._consumer_key = config.mpesa_consumer_key
        self._consumer_secret = config.mpesa_consumer_secret
        self._short_code = config.mpesa_business_short_code
        self._initiator_name = config.mpesa_initiator_name
        self._security_credential = config.mpesa_security_credential
        self._result_url = config.mpesa_b2c_result_url
        self._timeout_url = config.mpesa_b2c_timeout_url
        self._timeout = config.mpesa_timeout_seconds
        self._base_url = (
            self.PRODUCTION_BASE if config.mpesa_environment == "production" else self.SANDBOX_BASE
        )
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires: Optional[datetime] = None

    @property
    def is_configured(self) -> bool:
        return all([
            self._consumer_key, self._consumer_secret, self._short_code,
            self._initiator_name, self._security_credential,
            self._result_url, self._timeout_url,
        ])

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        """Obtain or reuse the OAuth token."""
        if (
            self._access_token
            and self._token_expires
            and datetime.now(timezone.utc) < self._token_expires
        ):
            return self._access_token

        credentials = base64.b64encode(
            f"{self._consumer_key}:{self._consumer_secret}".encode()
        ).decode()
        try:
            resp = await client.get(
                "/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {credentials}"},
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"OAuth request failed: {e}")
        if not resp.is_success:
            raise ProviderError(
                self.name, f"OAuth rejected with HTTP {resp.status_code}",
                retryable=resp.status_code >= 500,
            )
        token = resp.json().get("access_token")
        if not token:
            raise ProviderError(self.name, "OAuth response has no access_token")

        self._access_token = token
        self._token_expires = datetime.now(timezone.utc) + self.TOKEN_TTL
        return token

    def _payload(self, item: DisbursementItem, phone: str) -> dict:
        return {
            "InitiatorName": self._initiator_name,
            "SecurityCredential": self._security_credential,
            "CommandID": self.COMMAND_ID,
            "Amount": int(item.amount),
            "PartyA": self._short_code,
            "PartyB": phone,
            "Remarks": f"Tip payout {item.reference}"[:100],
            "QueueTimeOutURL": self._timeout_url,
            "ResultURL": self._result_url,
            "Occasion": item.reference,
            "OriginatorConversationID": item.reference,
        }

    async def disburse(self, items: Sequence[DisbursementItem]) -> BulkDisbursementResult:
        if not self.is_configured:
            raise ProviderError(self.name, "M-Pesa B2C credentials are not configured", retryable=False)

        result = BulkDisbursementResult(provider=self.name)
        accepted = 0
        in_doubt = 0
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport,
        ) as client:
            token = await self._get_access_token(client)
            headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

            for item in items:
                if item.is_bank_transfer:
                    result.items.append(DisbursementItemResult(
                        reference=item.reference, success=False, error="Bank accounts are paid by bank transfer",
                    ))
                    continue
                try:
                    phone = normalize_kenyan_phone(item.destination)
                except ValueError as e:
                    result.items.append(DisbursementItemResult(reference=item.reference, success=False, error=str(e)))
                    continue
                if item.amount != item.amount.to_integral_value():
                    # Daraja takes whole shillings only
                    result.items.append(DisbursementItemResult(
                        reference=item.reference, success=False, error=self.WHOLE_SHILLINGS_ERROR,
                    ))
                    continue

                try:
                    response = await client.post(
                        "/mpesa/b2c/v1/paymentrequest", json=self._payload(item, phone), headers=headers,
                    )
                except httpx.HTTPError as e:
                    if request_may_have_been_sent(e):
                        in_doubt += 1
                        logger.error(f"M-Pesa B2C outcome unknown for {item.reference}: {e!r}")
                        result.items.append(DisbursementItemResult.unknown(
                            item.reference, f"M-Pesa B2C outcome unknown: {e!r}",
                        ))
                        continue
                    if accepted == 0 and in_doubt == 0:
                        raise ProviderError(self.name, f"B2C request failed: {e}")
                    logger.error(f"M-Pesa B2C request for {item.reference} failed: {e}")
                    result.items.append(DisbursementItemResult(reference=item.reference, success=False, error=str(e)))
                    continue

                try:
                    data = response.json()
                except ValueError:
                    data = {}
                if response.is_success and str(data.get("ResponseCode")) == "0" and data.get("ConversationID"):
                    accepted += 1
                    result.items.append(DisbursementItemResult(
                        reference=item.reference,
                        success=True,
                        provider_transaction_id=data["ConversationID"],
                        settled=False,
                    ))
                else:
                    error = (
                        data.get("errorMessage")
                        or data.get("ResponseDescription")
                        or f"HTTP {response.status_code}"
                    )
                    logger.warning(f"M-Pesa B2C rejected {item.reference}: {error}")
                    result.items.append(DisbursementItemResult(reference=item.reference, success=False, error=error))

        logger.info(f"M-Pesa B2C disbursement: {accepted}/{len(items)} accepted, {in_doubt} unknown")
        return result
