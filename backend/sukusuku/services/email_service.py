"""
Transactional email: welcome messages and contact-form relay.

MailerSend's HTTP API is tried first, Gmail SMTP second. Callers decide
whether a delivery failure matters; the contact form ignores it.
"""
import asyncio
import html
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Optional

import httpx

from sukusuku.config import settings
from sukusuku.exceptions import EmailDeliveryError
from sukusuku.utils.logging import log_email_failure

logger = logging.getLogger(__name__)

MAILERSEND_URL = "https://api.mailersend.com/v1/email"
GMAIL_SMTP_HOST = "smtp.gmail.com"
GMAIL_SMTP_PORT = 465
SENDER_NAME = "The Developer Team @SukuSuku.ai"


def _welcome_bodies(first_name: str):
    name = html.escape(first_name)
    text = (
        f"Hi {first_name},\n\n"
        "Welcome aboard! We're thrilled to have you join SukuSuku.ai.\n\n"
        "Write stories, scripts and concepts with Penora, and bring them to life with ImageGene. "
        "If you have ideas or a feature you'd love to see, just hit reply.\n\n"
        "Warmly,\nThe Developer Team\n@sukusuku.ai\n"
    )
    body = (
        f"<p>Hi {name},</p>"
        "<p><strong>Welcome aboard!</strong> We're thrilled to have you join SukuSuku.ai.</p>"
        "<p>Write stories, scripts and concepts with Penora, and bring them to life with ImageGene. "
        "If you have ideas or a feature you'd love to see, just hit reply.</p>"
        "<p>Warmly,<br>The Developer Team<br>@sukusuku.ai</p>"
    )
    return body, text


def _contact_confirmation_bodies(message: str):
    text = (
        "Hi there!\n\n"
        "Thank you for reaching out to SukuSuku.ai.\n\n"
        f"Your message:\n\"{message}\"\n\n"
        "Our team will get back to you within 24 hours.\n\n"
        "The Developer Team\n@SukuSuku.ai\n"
    )
    body = (
        "<p>Hi there!</p>"
        "<p>Thank you for reaching out to <strong>SukuSuku.ai</strong>.</p>"
        f"<blockquote>{html.escape(message)}</blockquote>"
        "<p>Our team will get back to you <strong>within 24 hours</strong>.</p>"
        "<p>The Developer Team<br>@SukuSuku.ai</p>"
    )
    return body, text


def _contact_notification_bodies(name: str, email: str, message: str):
    submitted = datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")
    text = (
        "New Contact Form Submission\n\n"
        f"Name: {name}\nEmail: {email}\nSubmitted: {submitted}\n\n"
        f"Message:\n{message}\n\n"
        f"Reply directly to this email to respond to {name}\n"
    )
    body = (
        "<h2>New Contact Form Submission</h2>"
        f"<p><strong>Name:</strong> {html.escape(name)}<br>"
        f"<strong>Email:</strong> {html.escape(email)}<br>"
        f"<strong>Submitted:</strong> {submitted}</p>"
        f"<p>{html.escape(message).replace(chr(10), '<br>')}</p>"
    )
    return body, text


class EmailService:
    """Sends email through MailerSend or Gmail, whichever is configured and works."""

    def __init__(
        self,
        mailersend_api_token: Optional[str] = None,
        gmail_username: Optional[str] = None,
        gmail_app_password: Optional[str] = None,
        mail_from: str = "hello@sukusuku.ai",
        contact_inbox: str = "developers@sukusuku.ai",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.mailersend_api_token = mailersend_api_token
        self.gmail_username = gmail_username
        self.gmail_app_password = gmail_app_password
        self.mail_from = mail_from
        self.contact_inbox = contact_inbox
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "EmailService":
        return cls(
            mailersend_api_token=settings.mailersend_api_token,
            gmail_username=settings.gmail_username,
            gmail_app_password=settings.gmail_app_password,
            mail_from=settings.mail_from,
            contact_inbox=settings.contact_inbox,
        )

    @property
    def configured(self) -> bool:
        return bool(self.mailersend_api_token or (self.gmail_username and self.gmail_app_password))

    async def _send_mailersend(self, to: str, subject: str, html_body: str, text_body: str, reply_to: Optional[str]):
        payload = {
            "from": {"email": self.mail_from, "name": SENDER_NAME},
            "to": [{"email": to}],
            "subject": subject,
            "html": html_body,
            "text": text_body,
        }
        if reply_to:
            payload["reply_to"] = {"email": reply_to}
        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            response = await client.post(
                MAILERSEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.mailersend_api_token}"},
            )
        response.raise_for_status()

    def _send_gmail_blocking(self, to: str, subject: str, html_body: str, text_body: str, reply_to: Optional[str]):
        message = EmailMessage()
        message["From"] = f'"{SENDER_NAME}" <{self.gmail_username}>'
        message["To"] = to
        message["Subject"] = subject
        if reply_to:
            message["Reply-To"] = reply_to
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")
        with smtplib.SMTP_SSL(GMAIL_SMTP_HOST, GMAIL_SMTP_PORT, timeout=10) as smtp:
            smtp.login(self.gmail_username, self.gmail_app_password)
            smtp.send_message(message)

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        reply_to: Optional[str] = None,
        purpose: str = "generic",
    ) -> str:
        """
        Deliver one message.

        Returns:
            Name of the provider that accepted the message

        Raises:
            EmailDeliveryError: If no provider is configured or all failed
        """
        if self.mailersend_api_token:
            try:
                await self._send_mailersend(to, subject, html_body, text_body, reply_to)
                return "mailersend"
            except httpx.HTTPError as e:
                log_email_failure(logger, provider="mailersend", purpose=purpose, error=str(e))

        if self.gmail_username and self.gmail_app_password:
            try:
                await asyncio.to_thread(self._send_gmail_blocking, to, subject, html_body, text_body, reply_to)
                return "gmail"
            except (smtplib.SMTPException, OSError) as e:
                log_email_failure(logger, provider="gmail", purpose=purpose, error=str(e))
                raise EmailDeliveryError(f"Email delivery failed for {purpose}") from e

        if not self.configured:
            raise EmailDeliveryError("No email service configured (MailerSend or Gmail)")
        raise EmailDeliveryError(f"Email delivery failed for {purpose}")

    async def send_welcome_email(self, to: str, first_name: Optional[str] = None) -> bool:
        """Send the welcome message. Failures are logged and reported as False."""
        html_body, text_body = _welcome_bodies(first_name or "Creator")
        try:
            provider = await self.send(
                to,
                "Welcome to SukuSuku.ai - Let's Create Stories That Matter!",
                html_body,
                text_body,
                reply_to=self.mail_from,
                purpose="welcome",
            )
        except EmailDeliveryError as e:
            logger.warning(f"Welcome email not sent to {to}: {e}")
            return False
        logger.info(f"Welcome email sent to {to} via {provider}")
        return True

    async def send_contact_emails(self, name: str, email: str, message: str) -> None:
        """
        Send a confirmation to the visitor and a notification to the team.

        Raises:
            EmailDeliveryError: If either message could not be delivered
        """
        confirmation_html, confirmation_text = _contact_confirmation_bodies(message)
        notification_html, notification_text = _contact_notification_bodies(name, email, message)

        results = await asyncio.gather(
            self.send(
                email,
                "Thank you for contacting SukuSuku.ai!",
                confirmation_html,
                confirmation_text,
                reply_to=self.mail_from,
                purpose="contact_confirmation",
            ),
            self.send(
                self.contact_inbox,
                f"New Contact Form Message from {name}",
                notification_html,
                notification_text,
                reply_to=email,
                purpose="contact_notification",
            ),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            raise failures[0]
        logger.info(f"Contact emails sent: confirmation to {email}, notification to {self.contact_inbox}")


def get_email_service() -> EmailService:
    """FastAPI dependency for the email service."""
    return EmailService.from_settings()
