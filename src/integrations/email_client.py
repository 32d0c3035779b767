"""SMTP email delivery using aiosmtplib."""

from __future__ import annotations

import logging
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

import aiosmtplib

from config.settings import Settings

LOGGER = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465


class EmailSender:
    """Sends HTML emails through a single SMTP account."""

    def __init__(
        self,
        host: str,
        *,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        from_email: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> EmailSender:
        if not settings.smtp_host:
            raise ValueError("SMTP_HOST is not configured")
        return cls(
            settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.sender_from_email,
        )

    def build_message(
        self,
        *,
        to_email: str,
        subject: str,
        body_html: str,
        from_email: str | None = None,
    ) -> EmailMessage:
        sender = from_email or self.from_email
        if not sender:
            raise ValueError("No sender email configured")

        message = EmailMessage()
        message["From"] = sender
        message["To"] = to_email
        message["Subject"] = subject
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid()
        message["X-From-Ai-Assistant"] = "true"
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(body_html, subtype="html")
        return message

    async def send_html(self, *, to_email: str, subject: str, body_html: str) -> dict[str, object]:
        message = self.build_message(to_email=to_email, subject=subject, body_html=body_html)
        implicit_tls = self.port == IMPLICIT_TLS_PORT

        async with aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            use_tls=self.use_tls and implicit_tls,
            start_tls=self.use_tls and not implicit_tls,
            timeout=self.timeout,
        ) as smtp:
            if self.username and self.password:
                await smtp.login(self.username, self.password)
            errors, response = await smtp.send_message(message)

        rejected = sorted(errors)
        LOGGER.info("Email sent: message_id=%s rejected=%d", message["Message-ID"], len(rejected))
        return {
            "messageId": message["Message-ID"],
            "accepted": [to_email] if to_email not in errors else [],
            "rejected": rejected,
            "response": response,
        }
