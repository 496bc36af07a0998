"""
Notification Dispatcher - transactional email + in-app notifications
"""
from dataclasses import dataclass
from html import escape
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from travelagent.config import settings
from travelagent.exceptions import NotificationError
from travelagent.models.notification import Notification

logger = logging.getLogger(__name__)


@dataclass
class BookingConfirmationEmail:
    booking_number: str
    destination_name: str
    start_date: str
    end_date: str
    total_formatted: str


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str


def render_booking_confirmation(data: BookingConfirmationEmail) -> str:
    return f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h1>Booking Confirmed!</h1>
        <p>Your trip to <strong>{escape(data.destination_name)}</strong> has been confirmed.</p>
        <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
          <p><strong>Booking Number:</strong> {escape(data.booking_number)}</p>
          <p><strong>Dates:</strong> {escape(data.start_date)} - {escape(data.end_date)}</p>
          <p><strong>Total:</strong> {escape(data.total_formatted)}</p>
        </div>
        <p>We'll send you more details closer to your departure date.</p>
        <p>Safe travels!</p>
      </div>
    """


def _is_transient(error: BaseException) -> bool:
    """Connection problems and 5xx answers are retried; 4xx fail fast"""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.TransportError)


class EmailSender:
    """
    Sends email through the SendGrid v3 HTTP API.

    Without an API key, messages are only logged (local development).
    """

    def __init__(
        self,
        api_key: str = settings.SENDGRID_API_KEY,
        from_email: str = settings.FROM_EMAIL,
        api_url: str = settings.SENDGRID_API_URL,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.api_url = api_url
        self.outbox: List[EmailMessage] = []  # mock mode only

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
    )
    async def _post(self, payload: Dict[str, Any]):
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=15.0,
            )
            response.raise_for_status()

    async def send(self, message: EmailMessage):
        if not self.is_configured:
            logger.info(f"[MOCK EMAIL] To {message.to}: {message.subject}")
            self.outbox.append(message)
            return

        payload = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self.from_email},
            "subject": message.subject,
            "content": [{"type": "text/html", "value": message.html}],
        }
        try:
            await self._post(payload)
        except Exception as e:
            raise NotificationError(f"Failed to send email to {message.to}", e)
        logger.info(f"Email sent to {message.to}: {message.subject}")


class NotificationDispatcher:
    """Booking-related emails and in-app notification rows"""

    def __init__(self, session_factory: async_sessionmaker, email_sender: Optional[EmailSender] = None):
        self._sessions = session_factory
        self.email_sender = email_sender or EmailSender()

    async def send_booking_confirmation(self, to: str, data: BookingConfirmationEmail):
        await self.email_sender.send(EmailMessage(
            to=to,
            subject=f"Booking Confirmed - {data.booking_number}",
            html=render_booking_confirmation(data),
        ))

    async def create_notification(
        self,
        user_id: UUID,
        type: str,
        title: str,
        message: str,
        booking_id: Optional[UUID] = None,
    ) -> Notification:
        """Append an in-app notification"""
        async with self._sessions() as session:
            notification = Notification(
                user_id=user_id,
                booking_id=booking_id,
                type=type,
                title=title,
                message=message,
            )
            session.add(notification)
            await session.commit()

        logger.info(f"Notification {type} created for user {user_id}")
        return notification
