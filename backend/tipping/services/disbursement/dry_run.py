"""Rehearsal provider that approves everything without moving money."""

import logging
import time
from typing import Sequence

from tipping.services.disbursement.base import (
    BulkDisbursementResult,
    DisbursementItem,
    DisbursementItemResult,
)

logger = logging.getLogger(__name__)


class DryRunProvider:
    name = "dry_run"
    is_configured = True

    def __init__(self, prefix: str = "DRY-RUN"):
        self.prefix = prefix

    async def disburse(self, items: Sequence[DisbursementItem]) -> BulkDisbursementResult:
        stamp = int(time.time() * 1000)
        logger.info(f"Dry run: simulating {len(items)} disbursements")
        return BulkDisbursementResult(
            provider=self.name,
            items=[
                DisbursementItemResult(
                    reference=item.reference,
                    success=True,
                    provider_transaction_id=f"{self.prefix}-{stamp}-{index}",
                    settled=True,
                )
                for index, item in enumerate(items)
            ],
        )
