"""Email notification transport for tourquote.

Sends estimate submission notices via SMTP with Jinja2 templates.
"""
from __future__ import annotations

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from tourquote.config import NotificationsConfig, get_config

logger = structlog.get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


class EmailTransport:
    """Fire-and-forget SMTP sender with template support."""

    def __init__(self, config: NotificationsConfig | None = None) -> None:
        self.config = config or get_config().notifications
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def render_template(self, template_name: str, context: dict[str, Any]) -> str:
        """Render an email template with the given context.

        Args:
            template_name: Name of the template file (e.g., "expert_submission.html")
            context: Variables passed to the template

        Returns:
            Rendered HTML string
        """
        return self.jinja_env.get_template(template_name).render(**context)

    def _send_sync(self, to_emails: list[str], subject: str, html_body: str) -> bool:
        if not self.config.smtp_user or not self.config.smtp_password:
            logger.warning("email_not_configured", to=to_emails, subject=subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.config.from_email or self.config.smtp_user
        msg["To"] = ", ".join(to_emails)
        msg.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
                server.starttls()
                server.login(self.config.smtp_user, self.config.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", to=to_emails, subject=subject, error=str(e))
            return False

        logger.info("email_sent", to=to_emails, subject=subject)
        return True

    async def send(self, to_emails: list[str], subject: str, html_body: str) -> bool:
        """Send an email without blocking the event loop.

        Returns:
            True if sent successfully, False otherwise
        """
        recipients = [addr for addr in to_emails if addr]
        if not recipients:
            logger.debug("email_skipped_no_recipients", subject=subject)
            return False
        return await asyncio.to_thread(self._send_sync, recipients, subject, html_body)

    async def send_expert_submission(self, estimate: dict[str, Any]) -> bool:
        """Notify admins that a customer submitted an estimate for expert review."""
        html_body = self.render_template("expert_submission.html", {"estimate": estimate})
        subject = f"[Expert review] {estimate.get('title', 'Estimate')}"
        return await self.send(self.config.admin_emails, subject, html_body)

    async def send_customer_submission(self, estimate: dict[str, Any]) -> bool | None:
        """Confirm to the customer that their request reached an expert.

        Returns:
            None for guest sessions without an email address
        """
        customer_email = estimate.get("customer_email")
        if not customer_email:
            return None
        html_body = self.render_template("customer_submission.html", {"estimate": estimate})
        subject = "We received your tour request"
        return await self.send([customer_email], subject, html_body)
