"""Bulk disbursement contract shared by every provider."""

import json
import re
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import httpx


@dataclass(frozen=True)
class BankDestination:
    account_number: str
    account_name: str
    bank_code: str
    bank_name: Optional[str] = None
    branch_code: Optional[str] = None

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional["BankDestination"]:
        """Parse a stored ``recipient_account`` JSON object; None if it is not one."""
        if not raw or not raw.lstrip().startswith("{"):
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(data, dict) or not data.get("account_number") or not data.get("bank_code"):
            return None
        return cls(
            account_number=str(data["account_number"]),
            account_name=str(data.get("account_name") or ""),
            bank_code=str(data["bank_code"]),
            bank_name=data.get("bank_name"),
            branch_code=data.get("branch_code"),
        )

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None}, sort_keys=True)


@dataclass(frozen=True)
class DisbursementItem:
    """One payout to send. ``destination`` is a phone, or the account number when ``bank`` is set."""
    reference: str
    destination: str
    amount: Decimal
    name: str
    bank: Optional[BankDestination] = None

    @property
    def is_bank_transfer(self) -> bool:
        return self.bank is not None


@dataclass(frozen=True)
class DisbursementItemResult:
    """Provider outcome for one item.

    ``settled`` is True when the provider completed the transfer
    synchronously. Accepted but unsettled items wait for a callback.

    ``outcome_unknown`` marks a request that may have reached the provider
    but got no usable answer (read timeout, dropped connection). Such an
    item must not be sent again until a callback or an operator settles it.
    """
    reference: str
    success: bool
    provider_transaction_id: Optional[str] = None
    error: Optional[str] = None
    settled: bool = False
    outcome_unknown: bool = False

    @classmethod
    def unknown(cls, reference: str, error: str) -> "DisbursementItemResult":
        return cls(reference=reference, success=False, error=error, outcome_unknown=True)


@dataclass
class BulkDisbursementResult:
    provider: str
    items: List[DisbursementItemResult] = field(default_factory=list)

    def for_reference(self, reference: str) -> Optional[DisbursementItemResult]:
        for item in self.items:
            if item.reference == reference:
                return item
        return None

    @property
    def failed_count(self) -> int:
        return sum(1 for i in self.items if not i.success and not i.outcome_unknown)


@runtime_checkable
class DisbursementProvider(Protocol):
    name: str

    @property
    def is_configured(self) -> bool: ...

    async def disburse(self, items: Sequence[DisbursementItem]) -> BulkDisbursementResult:
        """Send every item; raise ProviderError only if the request as a whole failed."""
        ...


# Raised before any request bytes left this process
_UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout, httpx.UnsupportedProtocol)


def request_may_have_been_sent(error: httpx.HTTPError) -> bool:
    """False only when the request certainly never reached the provider."""
    return not isinstance(error, _UNSENT_ERRORS)


_NON_DIGITS = re.compile(r"\D")


def normalize_kenyan_phone(phone: str) -> str:
    """Normalize to ``254XXXXXXXXX``.

    Accepts ``07XXXXXXXX``, ``01XXXXXXXX``, ``7XXXXXXXX``, ``+2547...`` and
    ``2547...``. Raises ValueError for anything else.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if digits.startswith("254") and len(digits) == 12:
        normalized = digits
    elif digits.startswith("0") and len(digits) == 10:
        normalized = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "17":
        normalized = "254" + digits
    else:
        raise ValueError(f"Invalid Kenyan phone number: {phone!r}")
    if normalized[3] not in "17":
        raise ValueError(f"Invalid Kenyan mobile number: {phone!r}")
    return normalized
