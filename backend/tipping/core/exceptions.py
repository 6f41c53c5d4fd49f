"""Domain exceptions for the payout engine.

Services raise these; the API layer maps them onto HTTP status codes in
``tipping.main``. Per-item disbursement failures are never raised, they
are recorded on the payout row and reported in the processing result.
"""

from typing import Optional


class TippingError(Exception):
    """Base class for all payout engine errors."""


class ValidationError(TippingError):
    """Input rejected before any persistence happened."""


class InvalidRate(ValidationError):
    """Commission rate outside the accepted range or precision."""


class InvalidDistribution(ValidationError):
    """Distribution group set is empty, duplicated or does not total 100%."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or [message]


class NotFound(TippingError):
    pass


class RestaurantNotFound(NotFound):
    pass


class PayoutNotFound(NotFound):
    pass


class TipNotFound(NotFound):
    pass


class WaiterNotFound(NotFound):
    pass


class DuplicatePayoutPeriod(TippingError):
    """Payout records already exist for this restaurant and month."""

    def __init__(self, restaurant_id: int, month: str):
        super().__init__(f"Payouts already generated for restaurant {restaurant_id} month {month}")
        self.restaurant_id = restaurant_id
        self.month = month


class InvalidStatusTransition(TippingError):
    pass


class MissingDisbursementAccount(TippingError):
    """A payout has nowhere to send the money."""

    def __init__(self, payout_id: int, label: str = ""):
        suffix = f" ({label})" if label else ""
        super().__init__(f"Payout {payout_id}{suffix} has no disbursement account configured")
        self.payout_id = payout_id


class ProviderError(TippingError):
    """The bulk disbursement request failed as a whole."""

    def __init__(self, provider: str, message: str, retryable: bool = True, attempts: Optional[list] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.retryable = retryable
        self.attempts = attempts or []


class DuplicateBankAccount(TippingError):
    """The distribution group already has a bank account."""

    def __init__(self, restaurant_id: int, group_name: str):
        super().__init__(f"Bank account already exists for group: {group_name}")
        self.restaurant_id = restaurant_id
        self.group_name = group_name
