"""
Email delivery through the platform SMTP relay or Resend (fallback)
Templates are MJML and compiled to HTML before sending
"""

import logging
import smtplib
import ssl
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, parseaddr
from typing import Optional, Protocol

import resend
from mjml import mjml_to_html

from .config import (
    EMAIL_FROM_ADDRESS,
    RESEND_API_KEY,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
)
from .errors import TransportError

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send(self, to_email: str, to_name: Optional[str], subject: str, html: str) -> str:
        """Deliver one message and return the provider's message id. Raises TransportError."""
        ...


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns an object (or dict) with 'html' and 'errors'
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        errors = getattr(result, "errors", None)
        if errors:
            logger.warning(f"MJML compilation warnings: {errors}")
        return getattr(result, "html", None) or str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise TransportError(f"Failed to compile MJML template: {str(e)}") from e


def _recipient(to_email: str, to_name: Optional[str]) -> str:
    return formataddr((to_name, to_email)) if to_name else to_email


class ResendEmailSender:
    """Sends through the Resend API"""

    def __init__(self, api_key: Optional[str] = RESEND_API_KEY, from_address: str = EMAIL_FROM_ADDRESS):
        self.api_key = api_key
        self.from_address = from_address

    def send(self, to_email: str, to_name: Optional[str], subject: str, html: str) -> str:
        if not self.api_key:
            logger.error("❌ No email service configured - RESEND_API_KEY missing and no SMTP relay")
            raise TransportError("Email service not configured")

        resend.api_key = self.api_key
        try:
            logger.info(f"📧 Sending email via Resend to: {to_email}")
            response = resend.Emails.send(
                {
                    "from": self.from_address,
                    "to": [_recipient(to_email, to_name)],
                    "subject": subject,
                    "html": html,
                }
            )
        except Exception as e:
            logger.error(f"❌ Email send error to {to_email}: {e}")
            raise TransportError(f"Failed to send email: {str(e)}") from e

        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info(f"✅ Email sent successfully via Resend: {message_id}")
        return message_id or ""


class SmtpEmailSender:
    """Sends through an SMTP relay"""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_address: str = EMAIL_FROM_ADDRESS,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address

    def send(self, to_email: str, to_name: Optional[str], subject: str, html: str) -> str:
        message_id = f"<{uuid.uuid4()}@{self.host}>"
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = _recipient(to_email, to_name)
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(html, "html"))

        try:
            if self.port == 465:
                context = ssl.create_default_context()
                server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=30)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=30)
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
            try:
                if self.username:
                    server.login(self.username, self.password or "")
                server.sendmail(parseaddr(self.from_address)[1], [to_email], msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"❌ SMTP send failed via {self.host}: {e}")
            raise TransportError(f"SMTP send failed: {str(e)}") from e

        logger.info(f"✅ SMTP email sent successfully via {self.host}")
        return message_id


class FallbackEmailSender:
    """Tries each sender in order and returns the first success"""

    def __init__(self, *senders: EmailSender):
        self.senders = senders

    def send(self, to_email: str, to_name: Optional[str], subject: str, html: str) -> str:
        last_error: Optional[TransportError] = None
        for sender in self.senders:
            try:
                return sender.send(to_email, to_name, subject, html)
            except TransportError as e:
                logger.warning(f"⚠️ {type(sender).__name__} failed, trying next sender: {e}")
                last_error = e
        raise last_error or TransportError("No email sender configured")


def get_email_sender() -> EmailSender:
    """Platform SMTP relay when configured (falling back to Resend), otherwise Resend"""
    if SMTP_HOST:
        smtp = SmtpEmailSender(
            host=SMTP_HOST,
            port=SMTP_PORT,
            username=SMTP_USERNAME,
            password=SMTP_PASSWORD,
            use_tls=SMTP_USE_TLS,
        )
        return FallbackEmailSender(smtp, ResendEmailSender())
    return ResendEmailSender()
