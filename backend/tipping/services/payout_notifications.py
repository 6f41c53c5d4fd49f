"""Payout notification templates and dispatch.

Three templates: ``upcoming`` (sent N days before the payout date),
``processed`` and ``failed``. SMS and email are attempted independently
for every recipient and each attempt is logged to payout_notifications.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tipping.core.money import format_amount
from tipping.models import Payout, PayoutNotification, PayoutStatus, PayoutType, Restaurant, Waiter
from tipping.services.notification_service import NotificationResult, NotificationService
from tipping.services.tip_ledger import format_month, last_day_of_month

logger = logging.getLogger(__name__)


class NotificationTemplate(str, Enum):
    UPCOMING = "upcoming"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass(frozen=True)
class RenderedNotification:
    subject: str
    sms: str
    email: str


@dataclass(frozen=True)
class Recipient:
    name: str
    phone: Optional[str]
    email: Optional[str]


def format_payout_date(month: str) -> str:
    """Last day of ``month`` as ``January 31, 2024``."""
    day = last_day_of_month(month)
    return f"{day:%B} {day.day}, {day.year}"


def render_template(
    template: NotificationTemplate,
    recipient_name: str,
    amount,
    payout_date: Optional[str] = None,
) -> RenderedNotification:
    amount_text = format_amount(amount)
    if template == NotificationTemplate.UPCOMING:
        sms = (
            f"Hello {recipient_name}, your tip payout of {amount_text} will be processed on "
            f"{payout_date}. Ensure your phone number is active to receive the payment."
        )
        subject = "Upcoming Tip Payout Notification"
    elif template == NotificationTemplate.PROCESSED:
        sms = (
            f"Hello {recipient_name}, your tip payout of {amount_text} has been processed "
            f"successfully. You should receive the payment shortly on your registered phone number."
        )
        subject = "Tip Payout Processed Successfully"
    else:
        sms = (
            f"Hello {recipient_name}, we encountered an issue processing your tip payout of "
            f"{amount_text}. Please contact support or ensure your phone number is correct and active."
        )
        subject = "Tip Payout Failed"

    email = f"{sms}\n\nThank you,\nThe Tip Payouts Team"
    return RenderedNotification(subject=subject, sms=sms, email=email)


class PayoutNotifier:
    """Sends payout notifications; never raises."""

    def __init__(self, db: Session, service: Optional[NotificationService] = None):
        self.db = db
        self.service = service or NotificationService()

    def resolve_recipient(self, payout: Payout) -> Optional[Recipient]:
        """Waiter or group member first, else the restaurant itself."""
        waiter = self.db.get(Waiter, payout.waiter_id) if payout.waiter_id else None
        if payout.payout_type == PayoutType.WAITER:
            if waiter is None:
                return None
            return Recipient(
                name=waiter.name,
                phone=waiter.phone_number or payout.recipient_phone,
                email=waiter.email,
            )
        if waiter is not None:
            return Recipient(
                name=payout.group_name or waiter.name,
                phone=waiter.phone_number or payout.recipient_phone,
                email=waiter.email,
            )
        restaurant = self.db.get(Restaurant, payout.restaurant_id)
        if restaurant is None:
            return None
        return Recipient(
            name=f"{restaurant.name} ({payout.group_name})" if payout.group_name else restaurant.name,
            phone=restaurant.phone_number,
            email=restaurant.email,
        )

    async def notify(self, payout: Payout, template: NotificationTemplate) -> List[NotificationResult]:
        try:
            recipient = self.resolve_recipient(payout)
        except SQLAlchemyError as e:
            logger.error(f"Could not resolve recipient for payout {payout.id}: {e}")
            return []
        if recipient is None:
            logger.warning(f"No notification recipient for payout {payout.id}")
            return []

        rendered = render_template(
            template,
            recipient.name,
            payout.amount,
            payout_date=format_payout_date(payout.payout_month),
        )

        results: List[NotificationResult] = []
        if recipient.phone:
            results.append(await self.service.send_sms(recipient.phone, rendered.sms))
        if recipient.email:
            results.append(await self.service.send_email(recipient.email, rendered.subject, rendered.email))
        if not results:
            logger.warning(f"Payout {payout.id} recipient {recipient.name} has no phone or email")

        self._log(payout.id, template, results)
        return results

    def _log(self, payout_id: int, template: NotificationTemplate, results: List[NotificationResult]) -> None:
        if not results:
            return
        try:
            self.db.add_all([
                PayoutNotification(
                    payout_id=payout_id,
                    template=template.value,
                    channel=r.channel,
                    recipient=r.recipient,
                    success=r.success,
                    error=r.error,
                )
                for r in results
            ])
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to log notifications for payout {payout_id}: {e}")

    async def safe_notify(self, payout: Payout, template: NotificationTemplate) -> List[NotificationResult]:
        """notify() wrapped so no exception can reach a financial code path."""
        try:
            return await self.notify(payout, template)
        except Exception as e:
            logger.error(f"Notification '{template.value}' for payout {payout.id} failed: {e}")
            return []

    async def notify_upcoming(self, restaurant_id: int, month: str) -> Dict[str, Any]:
        """Bulk upcoming notifications for a restaurant's pending payouts."""
        payouts = list(self.db.execute(
            select(Payout)
            .where(
                Payout.restaurant_id == restaurant_id,
                Payout.payout_month == month,
                Payout.status == PayoutStatus.PENDING.value,
            )
            .order_by(Payout.id)
        ).scalars())
        return await self._send_bulk(payouts)

    def restaurants_due_for_upcoming(self, today: Optional[date] = None) -> List[Tuple[Restaurant, str]]:
        """Active restaurants whose month-end payout date is notification_days from today.

        Returns (restaurant, payout month) pairs.
        """
        today = today or date.today()
        due: List[Tuple[Restaurant, str]] = []
        restaurants = self.db.execute(
            select(Restaurant).where(Restaurant.is_active.is_(True)).order_by(Restaurant.id)
        ).scalars()
        for restaurant in restaurants:
            target = today + timedelta(days=restaurant.notification_days)
            month = format_month(target)
            if target == last_day_of_month(month):
                due.append((restaurant, month))
        return due

    def payouts_needing_upcoming(self, today: Optional[date] = None) -> List[Payout]:
        """Pending payouts of every restaurant due for its upcoming notice today."""
        due: List[Payout] = []
        for restaurant, month in self.restaurants_due_for_upcoming(today):
            due.extend(self.db.execute(
                select(Payout)
                .where(
                    Payout.restaurant_id == restaurant.id,
                    Payout.payout_month == month,
                    Payout.status == PayoutStatus.PENDING.value,
                )
                .order_by(Payout.id)
            ).scalars())
        return due

    async def process_upcoming(self, today: Optional[date] = None) -> Dict[str, Any]:
        return await self._send_bulk(self.payouts_needing_upcoming(today))

    async def _send_bulk(self, payouts: List[Payout]) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"total": len(payouts), "sent": 0, "failed": 0, "errors": []}
        for payout in payouts:
            results = await self.safe_notify(payout, NotificationTemplate.UPCOMING)
            if results and any(r.success for r in results):
                summary["sent"] += 1
            else:
                summary["failed"] += 1
                errors = [r.error for r in results if r.error] or ["no deliverable channel"]
                summary["errors"].append(f"Payout {payout.id}: {'; '.join(errors)}")
        logger.info(f"Upcoming payout notifications: {summary['sent']}/{summary['total']} sent")
        return summary
