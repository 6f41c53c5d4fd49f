"""PesaWise direct-payment disbursement provider.

PesaWise has no true bulk endpoint, so each item is sent as its own
direct payment. Accepted items settle asynchronously through the PesaWise
webhook.
"""

import logging
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


class PesaWiseProvider:
    """Sends payouts via ``POST /api/payments/create-direct-payment``."""

    name = "pesawise"

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or default_settings
        self._api_key = config.pesawise_api_key
        self._secret_key = config.pesawise_secret_key
        self._balance_id = config.pesawise_balance_id
        self._base_url = config.pesawise_api_url.rstrip("/")
        self._timeout = config.pesawise_timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._secret_key and self._balance_id)

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "api-key": self._api_key,
            "api-secret": self._secret_key,
        }

    @staticmethod
    def _error_from(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if isinstance(data, dict):
            return str(data.get("detail") or data.get("message") or f"HTTP {response.status_code}")
        return f"HTTP {response.status_code}"

    async def disburse(self, items: Sequence[DisbursementItem]) -> BulkDisbursementResult:
        if not self.is_configured:
            raise ProviderError(self.name, "PesaWise credentials are not configured", retryable=False)

        result = BulkDisbursementResult(provider=self.name)
        accepted = 0
        in_doubt = 0
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport,
        ) as client:
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

                payload = {
                    "balanceId": self._balance_id,
                    "amount": float(item.amount),
                    "phoneNumber": phone,
                    "reference": item.reference,
                }
                try:
                    response = await client.post(
                        "/api/payments/create-direct-payment",
                        json=payload,
                        headers=self._headers(),
                    )
                except httpx.HTTPError as e:
                    if request_may_have_been_sent(e):
                        in_doubt += 1
                        logger.error(f"PesaWise outcome unknown for {item.reference}: {e!r}")
                        result.items.append(DisbursementItemResult.unknown(
                            item.reference, f"PesaWise outcome unknown: {e!r}",
                        ))
                        continue
                    if accepted == 0 and in_doubt == 0:
                        raise ProviderError(self.name, f"Request failed: {e}")
                    logger.error(f"PesaWise request for {item.reference} failed: {e}")
                    result.items.append(DisbursementItemResult(reference=item.reference, success=False, error=str(e)))
                    continue

                if response.status_code in (401, 403) and accepted == 0 and in_doubt == 0:
                    raise ProviderError(
                        self.name, f"Authentication rejected: {self._error_from(response)}", retryable=False,
                    )

                data = {}
                if response.is_success:
                    try:
                        data = response.json()
                    except ValueError:
                        data = {}
                request_id = data.get("requestId") if isinstance(data, dict) else None
                if response.is_success and request_id:
                    accepted += 1
                    result.items.append(DisbursementItemResult(
                        reference=item.reference,
                        success=True,
                        provider_transaction_id=str(request_id),
                        settled=False,
                    ))
                else:
                    error = self._error_from(response) if not response.is_success else "No requestId in response"
                    logger.warning(f"PesaWise rejected {item.reference}: {error}")
                    result.items.append(DisbursementItemResult(reference=item.reference, success=False, error=error))

        logger.info(f"PesaWise disbursement: {accepted}/{len(items)} accepted, {in_doubt} unknown")
        return result
