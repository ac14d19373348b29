import asyncio
import logging
import re
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

from journeyflow.errors import CrmError, DeliveryError
from journeyflow.models.journey import Channel
from journeyflow.stores.base import CrmStore

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Notifier(ABC):
    """Delivers the side effects of journey blocks."""

    @abstractmethod
    async def send(self, user_id: str, channel: Channel, content: Optional[str]) -> None:
        """Raises DeliveryError when the message could not be handed over."""

    @abstractmethod
    async def add_to_crm(self, user_id: str) -> None:
        """Raises CrmError when the CRM write failed."""


class LoggingNotifier(Notifier):
    """
    Logs notifications instead of delivering them and records CRM entries in
    the given store. Recording the same user twice is harmless.
    """

    def __init__(self, crm_store: CrmStore):
        self.crm_store = crm_store

    async def send(self, user_id: str, channel: Channel, content: Optional[str]) -> None:
        logger.info(f"[NOTIFY] {channel.value} sent to user {user_id}: {content}")

    async def add_to_crm(self, user_id: str) -> None:
        try:
            added = await self.crm_store.add(user_id)
        except Exception as e:
            raise CrmError(f"Failed to add user {user_id} to CRM: {e}") from e
        if added:
            logger.info(f"[NOTIFY] Added user {user_id} to CRM")
        else:
            logger.info(f"[NOTIFY] User {user_id} already in CRM")


def convert_text_to_html(plain_text: str) -> str:
    """Convert a plain text body to HTML, keeping line breaks."""
    if not plain_text:
        return ""
    return escape(plain_text).replace("\n", "<br>")


class SmtpNotifier(LoggingNotifier):
    """
    Sends email blocks over SMTP with STARTTLS; the user id is the recipient
    address. Other channels are only logged.
    """

    def __init__(
        self,
        crm_store: CrmStore,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        subject: str = "A message for you",
        sender_name: str = "Journeyflow",
        timeout: float = 10.0,
    ):
        super().__init__(crm_store)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.subject = subject
        self.sender_name = sender_name
        self.timeout = timeout

    async def send(self, user_id: str, channel: Channel, content: Optional[str]) -> None:
        if channel != Channel.EMAIL:
            await super().send(user_id, channel, content)
            return
        await asyncio.to_thread(self._send_email, user_id, content or "")

    def _build_message(self, recipient_email: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = self.subject
        msg["From"] = f"{self.sender_name} <{self.username}>"
        msg["To"] = recipient_email
        msg["Reply-To"] = self.username
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(f"<html><body>{convert_text_to_html(body)}</body></html>", "html"))
        return msg

    def _send_email(self, recipient_email: str, body: str) -> None:
        if not EMAIL_PATTERN.match(recipient_email or ""):
            logger.error(f"[EMAIL] User id {recipient_email} is not an email address")
            raise DeliveryError(f"User {recipient_email} has no email address")

        if not self.username or not self.password:
            logger.error(f"[EMAIL] SMTP_USERNAME: {'SET' if self.username else 'MISSING'}")
            logger.error(f"[EMAIL] SMTP_PASSWORD: {'SET' if self.password else 'MISSING'}")
            raise DeliveryError("Missing SMTP credentials")

        msg = self._build_message(recipient_email, body)
        try:
            logger.debug(f"[EMAIL] Connecting to {self.host}:{self.port}")
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.username, self.password)
                server.send_message(msg)
            logger.info(f"[EMAIL] Email sent to {recipient_email}")
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"[EMAIL] SMTP Authentication failed for {recipient_email}: {e}")
            raise DeliveryError(f"SMTP authentication failed: {e}") from e
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"[EMAIL] SMTP Recipients refused for {recipient_email}: {e}")
            raise DeliveryError(f"Recipient refused: {recipient_email}") from e
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"[EMAIL] Failed to send email to {recipient_email}: {e}")
            raise DeliveryError(f"Failed to send email: {e}") from e
