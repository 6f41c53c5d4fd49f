"""Payout disbursement: claim, send, apply per-item results, notify.

State machine per payout::

    pending -> processing -> completed | failed
    failed  -> pending      (explicit retry only)

Rows are claimed with a conditional ``UPDATE ... WHERE status = 'pending'``
before anything is sent, so two overlapping runs can never both dispatch
the same payout. When the provider request fails as a whole, the rows
claimed for that batch go back to ``pending``; nothing was sent for them.
A request that may have reached the provider without a usable answer
leaves its payout ``processing`` until a callback or an operator settles it.

Group payouts with no member to pay go to the group's bank account through
a separate bank-transfer strategy; everything else goes to a phone.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from tipping.core.exceptions import MissingDisbursementAccount, ProviderError
from tipping.core.money import ZERO, quantize
from tipping.models import BankAccount, Payout, PayoutStatus, PayoutType, TERMINAL_PAYOUT_STATUSES, Waiter
from tipping.services.disbursement import (
    BankDestination,
    DisbursementItem,
    DryRunProvider,
    FallbackDisbursementStrategy,
    build_bank_strategy,
    build_strategy,
)
from tipping.services.payout_notifications import NotificationTemplate, PayoutNotifier
from tipping.services.payout_service import PayoutService

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    total_payouts: int = 0
    processed_payouts: int = 0
    failed_payouts: int = 0
    pending_settlement: int = 0
    total_amount: Decimal = ZERO
    waiter_payouts: int = 0
    group_payouts: int = 0
    dry_run: bool = False
    errors: List[str] = field(default_factory=list)
    waiter_results: List[Dict[str, Any]] = field(default_factory=list)
    group_results: List[Dict[str, Any]] = field(default_factory=list)
    provider_attempts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def merge_errors(self, errors: Sequence[str]) -> None:
        self.errors = list(errors) + self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "total_payouts": self.total_payouts,
            "processed_payouts": self.processed_payouts,
            "failed_payouts": self.failed_payouts,
            "pending_settlement": self.pending_settlement,
            "total_amount": self.total_amount,
            "waiter_payouts": self.waiter_payouts,
            "group_payouts": self.group_payouts,
            "errors": self.errors,
            "details": {
                "waiter_results": self.waiter_results,
                "group_results": self.group_results,
            },
            "provider_attempts": self.provider_attempts,
        }


@dataclass(frozen=True)
class CallbackOutcome:
    found: bool
    applied: bool
    payout_id: Optional[int] = None
    status: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PayoutProcessor:
    """Drives pending payouts through a disbursement strategy.

    Both strategies are only built on first real (non dry-run) use, so dry
    runs work without any provider credentials.
    """

    def __init__(
        self,
        db: Session,
        strategy: Optional[FallbackDisbursementStrategy] = None,
        notifier: Optional[PayoutNotifier] = None,
        bank_strategy: Optional[FallbackDisbursementStrategy] = None,
    ):
        self.db = db
        self._strategy = strategy
        self._bank_strategy = bank_strategy
        self.notifier = notifier or PayoutNotifier(db)
        self.payouts = PayoutService(db)

    @property
    def strategy(self) -> FallbackDisbursementStrategy:
        if self._strategy is None:
            self._strategy = build_strategy()
        return self._strategy

    @property
    def bank_strategy(self) -> FallbackDisbursementStrategy:
        if self._bank_strategy is None:
            self._bank_strategy = build_bank_strategy()
        return self._bank_strategy

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def claim(self, payout_id: int) -> bool:
        """Atomically move one payout pending -> processing. False if someone else has it."""
        result = self.db.execute(
            update(Payout)
            .where(Payout.id == payout_id, Payout.status == PayoutStatus.PENDING.value)
            .values(status=PayoutStatus.PROCESSING.value, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _release(self, payout_ids: Sequence[int]) -> int:
        """Return claimed rows to pending after a whole-request provider failure."""
        if not payout_ids:
            return 0
        result = self.db.execute(
            update(Payout)
            .where(Payout.id.in_(list(payout_ids)), Payout.status == PayoutStatus.PROCESSING.value)
            .values(status=PayoutStatus.PENDING.value, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_payouts(
        self,
        restaurant_id: Optional[int] = None,
        payout_ids: Optional[Sequence[int]] = None,
        dry_run: bool = False,
    ) -> ProcessingResult:
        result = ProcessingResult(dry_run=dry_run)
        candidates = self.payouts.payouts_for_processing(restaurant_id, payout_ids)
        if payout_ids:
            found = {p.id for p in candidates}
            for missing in sorted(set(payout_ids) - found):
                result.errors.append(f"Payout {missing} is not pending")

        claimed_ids = [p.id for p in candidates if self.claim(p.id)]
        self.db.commit()
        skipped = len(candidates) - len(claimed_ids)
        if skipped:
            logger.warning(f"{skipped} payouts were claimed by another run and skipped")

        claimed = list(self.db.execute(
            select(Payout).where(Payout.id.in_(claimed_ids)).order_by(Payout.id)
        ).scalars()) if claimed_ids else []
        for payout in claimed:
            self.db.refresh(payout)

        waiter_batch = [p for p in claimed if p.payout_type == PayoutType.WAITER]
        group_batch = [p for p in claimed if p.payout_type == PayoutType.GROUP]
        result.total_payouts = len(claimed)
        result.waiter_payouts = len(waiter_batch)
        result.group_payouts = len(group_batch)
        logger.info(
            f"Processing {len(claimed)} payouts ({len(waiter_batch)} waiter, "
            f"{len(group_batch)} group){' [DRY RUN]' if dry_run else ''}"
        )

        # Sequential: both batches share this session
        await self._process_batch(waiter_batch, "waiter", result, result.waiter_results, dry_run)
        await self._process_batch(group_batch, "group", result, result.group_results, dry_run)

        logger.info(
            f"Payout run finished: {result.processed_payouts} completed, "
            f"{result.pending_settlement} awaiting settlement, {result.failed_payouts} failed"
        )
        return result

    def _group_bank_account(self, payout: Payout) -> Optional[BankDestination]:
        account = self.db.execute(
            select(BankAccount).where(
                BankAccount.restaurant_id == payout.restaurant_id,
                BankAccount.group_name == payout.group_name,
                BankAccount.is_active.is_(True),
            )
        ).scalars().first()
        if account is None:
            return None
        return BankDestination(
            account_number=account.account_number,
            account_name=account.account_name,
            bank_code=account.bank_code,
            bank_name=account.bank_name,
            branch_code=account.branch_code,
        )

    def _bank_destination(self, payout: Payout) -> Optional[BankDestination]:
        """Bank details for an ownerless group payout, stored or registered."""
        if payout.payout_type != PayoutType.GROUP or payout.waiter_id:
            return None
        return BankDestination.from_json(payout.recipient_account) or self._group_bank_account(payout)

    def _destination(self, payout: Payout) -> Optional[str]:
        if payout.payout_type == PayoutType.WAITER or payout.waiter_id:
            waiter = self.db.get(Waiter, payout.waiter_id) if payout.waiter_id else None
            if waiter is not None and waiter.phone_number:
                return waiter.phone_number
        if BankDestination.from_json(payout.recipient_account):
            return payout.recipient_phone
        return payout.recipient_phone or payout.recipient_account

    def _disbursement_item(self, payout: Payout) -> Optional[DisbursementItem]:
        """Route to a bank account or a phone; None when the payout has neither."""
        name = payout.group_name or (payout.waiter.name if payout.waiter else payout.reference)
        bank = self._bank_destination(payout)
        if bank is not None:
            return DisbursementItem(
                reference=payout.reference,
                destination=bank.account_number,
                amount=quantize(payout.amount),
                name=name,
                bank=bank,
            )
        destination = self._destination(payout)
        if not destination:
            return None
        return DisbursementItem(
            reference=payout.reference,
            destination=destination,
            amount=quantize(payout.amount),
            name=name,
        )

    def _detail(self, payout: Payout, **extra) -> Dict[str, Any]:
        detail = {
            "payout_id": payout.id,
            "reference": payout.reference,
            "name": payout.group_name or (payout.waiter.name if payout.waiter else None),
            "amount": quantize(payout.amount),
            "status": payout.status,
            "transaction_id": payout.transaction_reference,
            "receipt": payout.provider_receipt,
            "error": payout.error_message,
        }
        detail.update(extra)
        return detail

    def _mark_failed(self, payout: Payout, error: str) -> None:
        payout.status = PayoutStatus.FAILED.value
        payout.error_message = error
        payout.processed_at = _now()

    async def _process_batch(
        self,
        batch: List[Payout],
        label: str,
        result: ProcessingResult,
        details: List[Dict[str, Any]],
        dry_run: bool,
    ) -> None:
        if not batch:
            return

        ready: List[Tuple[Payout, DisbursementItem]] = []
        unroutable: List[Payout] = []
        for payout in batch:
            item = self._disbursement_item(payout)
            if item is None:
                error = MissingDisbursementAccount(payout.id, payout.group_name or "")
                self._mark_failed(payout, str(error))
                unroutable.append(payout)
                result.failed_payouts += 1
                result.errors.append(str(error))
                logger.warning(str(error))
                continue
            ready.append((payout, item))
        self.db.commit()
        for payout in unroutable:
            details.append(self._detail(payout))

        mobile = [(p, item) for p, item in ready if not item.is_bank_transfer]
        bank = [(p, item) for p, item in ready if item.is_bank_transfer]
        if mobile:
            await self._dispatch(mobile, label, result, details, dry_run)
        if bank:
            await self._dispatch(bank, f"{label} bank", result, details, dry_run, bank_transfer=True)

        if not dry_run:
            for payout in batch:
                if payout.status == PayoutStatus.COMPLETED:
                    await self.notifier.safe_notify(payout, NotificationTemplate.PROCESSED)
                elif payout.status == PayoutStatus.FAILED:
                    await self.notifier.safe_notify(payout, NotificationTemplate.FAILED)

    async def _dispatch(
        self,
        ready: List[Tuple[Payout, DisbursementItem]],
        label: str,
        result: ProcessingResult,
        details: List[Dict[str, Any]],
        dry_run: bool,
        bank_transfer: bool = False,
    ) -> None:
        if dry_run:
            prefix = "DRY-RUN-GROUP" if label.startswith("group") else "DRY-RUN"
            strategy = FallbackDisbursementStrategy([DryRunProvider(prefix)])
        else:
            try:
                strategy = self.bank_strategy if bank_transfer else self.strategy
            except ProviderError as e:
                self._fail_whole_batch(ready, label, result, e)
                return

        items = [item for _, item in ready]
        try:
            outcome = await strategy.disburse(items)
        except ProviderError as e:
            result.provider_attempts.extend(a.to_dict() for a in e.attempts)
            self._fail_whole_batch(ready, label, result, e)
            return

        result.provider_attempts.extend(a.to_dict() for a in outcome.attempts)
        provider_name = outcome.result.provider
        for payout, item in ready:
            item_result = outcome.result.for_reference(item.reference)
            payout.provider = provider_name
            if item_result is None or item_result.outcome_unknown:
                # Keep processing so a callback or operator can settle it; never resend
                payout.error_message = (
                    item_result.error if item_result is not None and item_result.error
                    else f"{provider_name} returned no result for {item.reference}"
                )
                result.pending_settlement += 1
                result.errors.append(f"Payout {payout.id}: {payout.error_message}")
                logger.error(f"Payout {payout.id} outcome unknown: {payout.error_message}")
            elif item_result.success:
                payout.transaction_reference = item_result.provider_transaction_id
                payout.error_message = None
                result.total_amount += item.amount
                if item_result.settled:
                    payout.status = PayoutStatus.COMPLETED.value
                    payout.processed_at = _now()
                    result.processed_payouts += 1
                    logger.info(f"Payout {payout.id} completed via {provider_name} ({payout.transaction_reference})")
                else:
                    result.pending_settlement += 1
                    logger.info(f"Payout {payout.id} accepted by {provider_name}, awaiting callback")
            else:
                self._mark_failed(payout, item_result.error or "Disbursement failed")
                result.failed_payouts += 1
                result.errors.append(f"Payout {payout.id}: {payout.error_message}")
                logger.warning(f"Payout {payout.id} failed via {provider_name}: {payout.error_message}")
            details.append(self._detail(payout))
        self.db.commit()

    def _fail_whole_batch(
        self,
        ready: List[Tuple[Payout, DisbursementItem]],
        label: str,
        result: ProcessingResult,
        error: ProviderError,
    ) -> None:
        ids = [payout.id for payout, _ in ready]
        released = self._release(ids)
        logger.error(f"{label} batch disbursement failed, {released} payouts returned to pending: {error}")
        result.errors.append(f"{label} batch failed: {error}")
        for payout, _ in ready:
            self.db.refresh(payout)
            result.errors.append(f"Payout {payout.id} returned to pending")

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def retry_failed_payouts(self, payout_ids: Sequence[int], dry_run: bool = False) -> ProcessingResult:
        """Reset failed payouts to pending, clearing the old attempt, and process them again."""
        errors: List[str] = []
        reset_ids: List[int] = []
        for payout_id in payout_ids:
            reset = self.db.execute(
                update(Payout)
                .where(Payout.id == payout_id, Payout.status == PayoutStatus.FAILED.value)
                .values(
                    status=PayoutStatus.PENDING.value,
                    transaction_reference=None,
                    provider_receipt=None,
                    processed_at=None,
                    error_message=None,
                    provider=None,
                    updated_at=_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if reset.rowcount == 1:
                reset_ids.append(payout_id)
            else:
                errors.append(f"Payout {payout_id} is not in failed state")
        self.db.commit()
        self.db.expire_all()
        logger.info(f"Retrying {len(reset_ids)} failed payouts")

        if reset_ids:
            result = await self.process_payouts(payout_ids=reset_ids, dry_run=dry_run)
        else:
            result = ProcessingResult(dry_run=dry_run)
        result.merge_errors(errors)
        return result

    # ------------------------------------------------------------------
    # Settlement callbacks
    # ------------------------------------------------------------------

    def _find_by_reference(self, reference: str) -> Optional[Payout]:
        payout = self.db.execute(
            select(Payout).where(Payout.transaction_reference == reference).order_by(Payout.id.desc())
        ).scalars().first()
        if payout is None and reference.startswith("PAYOUT-"):
            try:
                payout = self.db.get(Payout, int(reference[len("PAYOUT-"):]))
            except ValueError:
                payout = None
        return payout

    async def apply_settlement_callback(
        self,
        reference: str,
        success: bool,
        receipt: Optional[str] = None,
        error: Optional[str] = None,
    ) -> CallbackOutcome:
        """Finalize an asynchronously settled payout.

        Duplicate callbacks for a payout that is already terminal are
        no-ops. Unknown references return ``found=False``. ``receipt`` is
        stored as ``provider_receipt``; ``transaction_reference`` stays the
        key later callbacks are matched on.
        """
        payout = self._find_by_reference(reference)
        if payout is None:
            logger.warning(f"Settlement callback for unknown reference {reference}")
            return CallbackOutcome(found=False, applied=False)

        if payout.status in TERMINAL_PAYOUT_STATUSES:
            logger.info(f"Duplicate callback for payout {payout.id} ({payout.status}), ignoring")
            return CallbackOutcome(found=True, applied=False, payout_id=payout.id, status=payout.status)

        new_status = PayoutStatus.COMPLETED if success else PayoutStatus.FAILED
        values: Dict[str, Any] = {
            "status": new_status.value,
            "processed_at": _now(),
            "updated_at": _now(),
            "error_message": None if success else (error or "Provider reported failure"),
        }
        if receipt:
            values["provider_receipt"] = receipt

        applied = self.db.execute(
            update(Payout)
            .where(
                Payout.id == payout.id,
                or_(
                    Payout.status == PayoutStatus.PROCESSING.value,
                    Payout.status == PayoutStatus.PENDING.value,
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        self.db.commit()
        self.db.refresh(payout)

        if not applied:
            return CallbackOutcome(found=True, applied=False, payout_id=payout.id, status=payout.status)

        logger.info(f"Payout {payout.id} settled by callback: {payout.status}")
        template = NotificationTemplate.PROCESSED if success else NotificationTemplate.FAILED
        await self.notifier.safe_notify(payout, template)
        return CallbackOutcome(found=True, applied=True, payout_id=payout.id, status=payout.status)
