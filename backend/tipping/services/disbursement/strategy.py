"""Provider selection with explicit, auditable fallback.

Providers are tried in order. A provider is only skipped when its whole
request fails (ProviderError); per-item rejections are final for that run
and never re-sent to the next provider, which would risk paying twice.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from tipping.core.config import Settings, settings as default_settings
from tipping.core.exceptions import ProviderError
from tipping.services.disbursement.base import (
    BulkDisbursementResult,
    DisbursementItem,
    DisbursementProvider,
)
from tipping.services.disbursement.bank_transfer import BankTransferProvider
from tipping.services.disbursement.mpesa_b2c import MpesaB2CProvider
from tipping.services.disbursement.pesawise import PesaWiseProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderAttempt:
    """One provider call: succeeded (``error is None``) or failed as a whole."""
    provider: str
    succeeded: bool
    error: Optional[str] = None
    fallback_from: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "succeeded": self.succeeded,
            "error": self.error,
            "fallback_from": self.fallback_from,
        }


@dataclass
class StrategyOutcome:
    result: BulkDisbursementResult
    attempts: List[ProviderAttempt] = field(default_factory=list)


class FallbackDisbursementStrategy:
    def __init__(self, providers: Sequence[DisbursementProvider]):
        if not providers:
            raise ValueError("At least one disbursement provider is required")
        self.providers = list(providers)

    @property
    def provider_names(self) -> List[str]:
        return [p.name for p in self.providers]

    async def disburse(self, items: Sequence[DisbursementItem]) -> StrategyOutcome:
        """Raise ProviderError (with every attempt attached) if all providers fail."""
        attempts: List[ProviderAttempt] = []
        previous: Optional[str] = None
        for provider in self.providers:
            try:
                result = await provider.disburse(items)
            except ProviderError as e:
                logger.warning(
                    f"Disbursement provider {provider.name} failed for {len(items)} items: {e}"
                    + (f" (fallback from {previous})" if previous else "")
                )
                attempts.append(ProviderAttempt(
                    provider=provider.name, succeeded=False, error=str(e), fallback_from=previous,
                ))
                previous = provider.name
                continue

            attempts.append(ProviderAttempt(provider=provider.name, succeeded=True, fallback_from=previous))
            if previous:
                logger.info(f"Disbursement fell back from {previous} to {provider.name}")
            return StrategyOutcome(result=result, attempts=attempts)

        raise ProviderError(
            "+".join(self.provider_names),
            "; ".join(a.error or "" for a in attempts),
            attempts=attempts,
        )


def build_provider_chain(config: Optional[Settings] = None) -> List[DisbursementProvider]:
    """Configured providers in ``payout_provider_order``."""
    config = config or default_settings
    factories = {
        "pesawise": PesaWiseProvider,
        "mpesa": MpesaB2CProvider,
    }
    providers = []
    for name in config.provider_order_list:
        provider = factories[name](config)
        if provider.is_configured:
            providers.append(provider)
        else:
            logger.warning(f"Disbursement provider {name} is not configured, skipping")
    return providers


def build_strategy(config: Optional[Settings] = None) -> FallbackDisbursementStrategy:
    providers = build_provider_chain(config)
    if not providers:
        raise ProviderError("none", "No disbursement provider is configured", retryable=False)
    return FallbackDisbursementStrategy(providers)


def build_bank_strategy(config: Optional[Settings] = None) -> FallbackDisbursementStrategy:
    """Bank transfers have a single provider, so nothing to fall back to."""
    provider = BankTransferProvider(config)
    if not provider.is_configured:
        raise ProviderError("none", "No bank transfer provider is configured", retryable=False)
    return FallbackDisbursementStrategy([provider])
