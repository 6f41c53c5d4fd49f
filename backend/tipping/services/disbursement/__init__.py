"""Bulk disbursement providers and provider selection."""

from tipping.services.disbursement.base import (
    BankDestination,
    BulkDisbursementResult,
    DisbursementItem,
    DisbursementItemResult,
    DisbursementProvider,
    normalize_kenyan_phone,
    request_may_have_been_sent,
)
from tipping.services.disbursement.bank_transfer import BankTransferProvider
from tipping.services.disbursement.dry_run import DryRunProvider
from tipping.services.disbursement.mpesa_b2c import MpesaB2CProvider
from tipping.services.disbursement.pesawise import PesaWiseProvider
from tipping.services.disbursement.strategy import (
    FallbackDisbursementStrategy,
    ProviderAttempt,
    StrategyOutcome,
    build_bank_strategy,
    build_provider_chain,
    build_strategy,
)
