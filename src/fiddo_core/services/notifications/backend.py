"""Delivery backends for loyalty notifications."""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import List, Optional, Protocol


class EmailBackend(Protocol):
    """Minimal protocol for sending notification emails."""

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        ...


class PushBackend(Protocol):
    """Protocol for push notification connectors."""

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        ...


class SMTPEmailBackend:
    """SMTP-powered backend that sends emails via standard library."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        sender_email: str,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._sender_email = sender_email

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        """Send email asynchronously by offloading blocking call."""

        message = EmailMessage()
        message["From"] = self._sender_email
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body_text)
        if body_html:
            message.add_alternative(body_html, subtype="html")

        await asyncio.to_thread(self._send, message)

    def _send(self, message: EmailMessage) -> None:
        smtp = smtplib.SMTP(self._host, self._port, timeout=10)
        try:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)
        finally:
            smtp.quit()


@dataclass
class InMemoryEmailBackend:
    """Test backend storing outbound messages in memory."""

    sent_messages: List[EmailMessage]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        message = EmailMessage()
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body_text)
        if body_html:
            message.add_alternative(body_html, subtype="html")
        self.sent_messages.append(message)


@dataclass
class InMemoryPushBackend:
    """In-memory push dispatcher for validation."""

    sent_messages: List[dict[str, object]]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        self.sent_messages.append(
            {
                "recipient": recipient,
                "title": title,
                "body": body,
                "metadata": metadata or {},
            }
        )


__all__ = [
    "EmailBackend",
    "InMemoryEmailBackend",
    "InMemoryPushBackend",
    "PushBackend",
    "SMTPEmailBackend",
]
