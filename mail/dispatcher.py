"""
mail/dispatcher.py -- Template rendering, SMTP transport and fire-and-forget dispatch.

SmtpMailer renders a Jinja2 template pair (<name>.html + <name>.txt) and sends
it over SMTP. With no SMTP host configured it logs a redacted summary instead
of sending (dev mode).

MailDispatcher hands each send to a ThreadPoolExecutor and returns at once.
The password-reset response must not wait for delivery, and a delivery
failure must not fail that response. Failures are logged from a done-callback;
there is no retry. This is a known reliability gap: a user whose reset email
bounced gets a success response anyway.

SMS delivery is not implemented. send_sms() only logs.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from concurrent.futures import Future, ThreadPoolExecutor
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger("authgate.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates"


class MailTemplate(str, Enum):
    RESET_PASSWORD = "reset_password"


_SUBJECTS = {
    MailTemplate.RESET_PASSWORD: "Reset password",
}


def redact_email(email: str | None) -> str:
    """Keep the first two characters of the local part, for logs."""
    if not email or "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """Render and send one message synchronously. Raises on SMTP failure."""

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        mail_from: str = "no-reply@localhost",
        template_dir: Path = _TEMPLATE_DIR,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.mail_from = mail_from
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"]),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.mail_from)

    def render(self, template: MailTemplate, context: dict[str, Any]) -> tuple[str, str]:
        """Return (html_body, text_body) for template rendered with context."""
        html_body = self._env.get_template(f"{template.value}.html").render(**context)
        text_body = self._env.get_template(f"{template.value}.txt").render(**context)
        return html_body, text_body

    def send(self, to: str, template: MailTemplate, context: dict[str, Any]) -> None:
        subject = _SUBJECTS[template]
        html_body, text_body = self.render(template, context)

        if not self.is_configured:
            logger.info("Mail (dev mode, not sent) to=%s subject=%r", redact_email(to), subject)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = to
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context_ssl = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.starttls(context=context_ssl)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.mail_from, to, msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context_ssl, timeout=30) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.mail_from, to, msg.as_string())
        logger.info("Mail sent to=%s subject=%r", redact_email(to), subject)


class MailDispatcher:
    """Non-blocking notifier used by AuthService.

    Usage:
        dispatcher = MailDispatcher(SmtpMailer(smtp_host="smtp.example.com"))
        dispatcher.send_reset_password("a@x.com", "https://app.example.com/reset")
        dispatcher.shutdown()
    """

    def __init__(self, mailer: SmtpMailer, max_workers: int = 2) -> None:
        self.mailer = mailer
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="authgate-mail")

    def dispatch(self, to: str, template: MailTemplate, context: dict[str, Any]) -> Future | None:
        """Queue one message. Returns the Future, or None if it could not be queued."""
        try:
            future = self._executor.submit(self.mailer.send, to, template, context)
        except RuntimeError:
            # Executor already shut down (app stopping).
            logger.error("Mail not queued to=%s template=%s: dispatcher is shut down", redact_email(to), template.value)
            return None
        future.add_done_callback(lambda f: _log_delivery_failure(f, to, template))
        return future

    def send_reset_password(self, to: str, redirect_to: str | None) -> Future | None:
        # The reset code itself is not part of the template context; the caller
        # receives it in the forgot-password response.
        return self.dispatch(to, MailTemplate.RESET_PASSWORD, {"redirect_to": redirect_to})

    def send_sms(self, phone_number: str | None) -> None:
        logger.warning("SMS delivery is not implemented; nothing sent for a phone-number reset request")

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_delivery_failure(future: Future, to: str, template: MailTemplate) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(
            "Mail delivery failed to=%s template=%s: %s: %s",
            redact_email(to),
            template.value,
            type(exc).__name__,
            exc,
        )
