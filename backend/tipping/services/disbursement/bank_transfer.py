"""PesaWise bank transfers for group payouts paid into a restaurant bank account."""

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
    request_may_have_been_sent,
)

logger = logging.getLogger(__name__)


class BankTransferProvider:
    """Sends each bank item via ``POST /transfers``.

    Transfers settle asynchronously; the bank-transfer webhook reports the
    final status keyed by the transfer id, with the payout reference as
    ``tx_ref``.
    """

    name = "pesawise_bank"

    TOKEN_TTL = timedelta(minutes=50)

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or default_settings
        self._api_key = config.pesawise_api_key
        self._secret_key = config.pesawise_secret_key
        self._base_url = config.pesawise_api_url.rstrip("/")
        self._callback_url = config.bank_transfer_callback_url
        self._currency = config.currency
        self._timeout = config.pesawise_timeout_seconds
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires: Optional[datetime] = None

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._secret_key and self._callback_url)

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        if (
            self._access_token
            and self._token_expires
            and datetime.now(timezone.utc) < self._token_expires
        ):
            return self._access_token

        try:
            resp = await client.post(
                "/auth/token", json={"api_key": self._api_key, "api_secret": self._secret_key},
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"Token request failed: {e}")
        if not resp.is_success:
            raise ProviderError(
                self.name, f"Token request rejected with HTTP {resp.status_code}",
                retryable=resp.status_code >= 500,
            )
        token = resp.json().get("access_token")
        if not token:
            raise ProviderError(self.name, "Token response has no access_token")

        self._access_token = token
        self._token_expires = datetime.now(timezone.utc) + self.TOKEN_TTL
        return token

    def _payload(self, item: DisbursementItem) -> dict:
        bank = item.bank
        return {
            "account_number": bank.account_number,
            "account_name": bank.account_name or item.name,
            "bank_code": bank.bank_code,
            "amount": float(item.amount),
            "reference": item.reference,
            "narration": f"Tip payout {item.name}"[:100],
            "currency": self._currency,
            "callback_url": self._callback_url,
        }

    async def disburse(self, items: Sequence[DisbursementItem]) -> BulkDisbursementResult:
        if not self.is_configured:
            raise ProviderError(self.name, "Bank transfer credentials are not configured", retryable=False)

        result = BulkDisbursementResult(provider=self.name)
        accepted = 0
        in_doubt = 0
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport,
        ) as client:
            token = await self._get_access_token(client)
            headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

            for item in items:
                if not item.is_bank_transfer:
                    result.items.append(DisbursementItemResult(
                        reference=item.reference, success=False, error="No bank account details",
                    ))
                    continue

                try:
                    response = await client.post("/transfers", json=self._payload(item), headers=headers)
                except httpx.HTTPError as e:
                    if request_may_have_been_sent(e):
                        in_doubt += 1
                        logger.error(f"Bank transfer outcome unknown for {item.reference}: {e!r}")
                        result.items.append(DisbursementItemResult.unknown(
                            item.reference, f"Bank transfer outcome unknown: {e!r}",
                        ))
                        continue
                    if accepted == 0 and in_doubt == 0:
                        raise ProviderError(self.name, f"Transfer request failed: {e}")
                    logger.error(f"Bank transfer for {item.reference} failed: {e}")
                    result.items.append(DisbursementItemResult(reference=item.reference, success=False, error=str(e)))
                    continue

                try:
                    data = response.json()
                except ValueError:
                    data = {}
                if not isinstance(data, dict):
                    data = {}
                transfer = data.get("data") if isinstance(data.get("data"), dict) else {}
                if response.is_success and data.get("status") == "success" and transfer.get("transaction_id"):
                    accepted += 1
                    result.items.append(DisbursementItemResult(
                        reference=item.reference,
                        success=True,
                        provider_transaction_id=str(transfer["transaction_id"]),
                        settled=False,
                    ))
                else:
                    error = data.get("message") or f"HTTP {response.status_code}"
                    logger.warning(f"Bank transfer rejected {item.reference}: {error}")
                    result.items.append(DisbursementItemResult(reference=item.reference, success=False, error=error))

        logger.info(f"Bank transfers: {accepted}/{len(items)} accepted, {in_doubt} unknown")
        return result
