# Services module

from tipping.services.commission_service import (
    CommissionResult,
    CommissionService,
    calculate_commission,
    validate_commission_rate,
)
from tipping.services.distribution_service import (
    DistributionService,
    GroupValidation,
    even_split,
    validate_groups,
)
from tipping.services.tip_ledger import TipLedger, month_window
from tipping.services.tip_service import TipService
from tipping.services.payout_calculator import PayoutCalculation, PayoutCalculator
from tipping.services.payout_service import GenerationResult, PayoutService, previous_month
from tipping.services.notification_service import NotificationResult, NotificationService
from tipping.services.payout_notifications import NotificationTemplate, PayoutNotifier
from tipping.services.payout_processor import CallbackOutcome, PayoutProcessor, ProcessingResult
