"""Notification channels: SMS and email over HTTP provider APIs.

Every send returns a NotificationResult; nothing here raises, because a
failed message must never undo a payout state change.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

from tipping.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    """Result of a notification attempt."""
    success: bool
    channel: str  # "sms" or "email"
    recipient: str
    message: str
    error: Optional[str] = None
    sent_at: Optional[datetime] = None


class NotificationService:
    """Sends SMS (Africa's Talking, Twilio) and email (SendGrid)."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or default_settings
        self.sms_provider = config.sms_provider
        self.sms_api_key = config.sms_api_key
        self.sms_api_secret = config.sms_api_secret
        self.sms_username = config.sms_username
        self.sms_sender_id = config.sms_sender_id

        self.email_provider = config.email_provider
        self.email_api_key = config.email_api_key
        self.email_from = config.smtp_from_email
        self.email_from_name = config.smtp_from_name

        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _failure(self, channel: str, to: str, message: str, error: str) -> NotificationResult:
        return NotificationResult(success=False, channel=channel, recipient=to, message=message, error=error)

    def _sent(self, channel: str, to: str, message: str) -> NotificationResult:
        return NotificationResult(
            success=True, channel=channel, recipient=to, message=message,
            sent_at=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # SMS
    # ------------------------------------------------------------------

    async def send_sms(self, to: str, message: str) -> NotificationResult:
        try:
            if self.sms_provider == "africastalking":
                result = await self._send_africastalking_sms(to, message)
            elif self.sms_provider == "twilio":
                result = await self._send_twilio_sms(to, message)
            else:
                result = await self._send_mock_sms(to, message)
        except Exception as e:
            logger.error(f"SMS send error to {to}: {e}")
            result = self._failure("sms", to, message, str(e))
        if not result.success:
            logger.warning(f"SMS to {to} failed: {result.error}")
        return result

    async def _send_africastalking_sms(self, to: str, message: str) -> NotificationResult:
        """Send SMS via Africa's Talking."""
        if not self.sms_api_key or not self.sms_username:
            return self._failure("sms", to, message, "Africa's Talking credentials not configured")

        client = await self._get_client()
        data = {"username": self.sms_username, "to": to, "message": message}
        if self.sms_sender_id:
            data["from"] = self.sms_sender_id
        response = await client.post(
            "https://api.africastalking.com/version1/messaging",
            headers={"apiKey": self.sms_api_key, "Accept": "application/json"},
            data=data,
        )
        if response.status_code in (200, 201):
            recipients = response.json().get("SMSMessageData", {}).get("Recipients", [])
            if recipients and recipients[0].get("status") == "Success":
                return self._sent("sms", to, message)
            return self._failure("sms", to, message, f"Africa's Talking rejected: {recipients}")
        return self._failure(
            "sms", to, message, f"Africa's Talking error: {response.status_code} - {response.text}",
        )

    async def _send_twilio_sms(self, to: str, message: str) -> NotificationResult:
        """Send SMS via Twilio."""
        if not self.sms_api_key or not self.sms_api_secret:
            return self._failure("sms", to, message, "Twilio credentials not configured")

        client = await self._get_client()
        account_sid = self.sms_api_key
        response = await client.post(
            f"https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json",
            auth=(account_sid, self.sms_api_secret),
            data={"To": to, "From": self.sms_sender_id, "Body": message},
        )
        if response.status_code in (200, 201):
            return self._sent("sms", to, message)
        return self._failure("sms", to, message, f"Twilio error: {response.status_code} - {response.text}")

    async def _send_mock_sms(self, to: str, message: str) -> NotificationResult:
        """Mock SMS for development - logs that no real SMS is sent."""
        logger.warning(f"[MOCK SMS] Message NOT actually sent. To: {to}, Message: {message}")
        return self._sent("sms", to, message)

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    async def send_email(self, to: str, subject: str, body: str) -> NotificationResult:
        try:
            if self.email_provider == "sendgrid":
                result = await self._send_sendgrid_email(to, subject, body)
            else:
                result = await self._send_mock_email(to, subject, body)
        except Exception as e:
            logger.error(f"Email send error to {to}: {e}")
            result = self._failure("email", to, body, str(e))
        if not result.success:
            logger.warning(f"Email to {to} failed: {result.error}")
        return result

    async def _send_sendgrid_email(self, to: str, subject: str, body: str) -> NotificationResult:
        """Send email via SendGrid."""
        if not self.email_api_key:
            return self._failure("email", to, body, "SendGrid API key not configured")

        client = await self._get_client()
        response = await client.post(
            "https://api.sendgrid.com/v3/mail/send",
            headers={
                "Authorization": f"Bearer {self.email_api_key}",
                "Content-Type": "application/json",
            },
            json={
                "personalizations": [{"to": [{"email": to}]}],
                "from": {"email": self.email_from, "name": self.email_from_name},
                "subject": subject,
                "content": [{"type": "text/plain", "value": body}],
            },
        )
        if response.status_code in (200, 202):
            return self._sent("email", to, body)
        return self._failure("email", to, body, f"SendGrid error: {response.status_code}")

    async def _send_mock_email(self, to: str, subject: str, body: str) -> NotificationResult:
        logger.warning(f"[MOCK EMAIL] Message NOT actually sent. To: {to}, Subject: {subject}")
        return self._sent("email", to, body)
