"""Fire-and-forget dispatch of loyalty notifications."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional

from loguru import logger

from fiddo_core.core.settings import get_settings
from fiddo_core.models import Merchant

from .backend import EmailBackend, PushBackend, SMTPEmailBackend
from .templates import (
    RenderedPush,
    RenderedTemplate,
    render_credit_push,
    render_gift_claimed_push,
    render_gift_refunded_push,
    render_points_credited,
    render_reward_available_push,
    render_reward_redeemed_push,
    render_validation_email,
)


class NotificationDispatcher:
    """Schedules deliveries as background tasks once a mutation has committed.

    Delivery failures are logged and swallowed; they never reach the caller of
    the ledger operation that triggered them.
    """

    def __init__(
        self,
        *,
        email_backend: Optional[EmailBackend] = None,
        push_backend: Optional[PushBackend] = None,
        enabled: bool | None = None,
        base_url: str | None = None,
    ) -> None:
        settings = get_settings()
        self._email = email_backend if email_backend is not None else self._build_default_email_backend()
        self._push = push_backend
        self._enabled = settings.notifications_enabled if enabled is None else enabled
        self._base_url = (base_url or settings.app_base_url).rstrip("/")
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight delivery (used by tests and on shutdown)."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def credit_recorded(
        self,
        merchant: Merchant,
        *,
        end_user_id: int,
        email: str | None,
        email_validated: bool,
        validation_token: str | None,
        is_new_client: bool,
        points_delta: int,
        balance: int,
    ) -> None:
        if email and is_new_client and validation_token:
            template = render_validation_email(
                merchant.business_name,
                f"{self._base_url}/validate?token={validation_token}",
            )
            self._send_email(email, template, event_type="validation")
        if email and email_validated:
            template = render_points_credited(
                merchant.business_name,
                points_earned=points_delta,
                balance=balance,
                points_for_reward=merchant.points_for_reward,
                reward_description=merchant.reward_description,
            )
            self._send_email(email, template, event_type="points_credited")

        self._send_push(
            end_user_id,
            render_credit_push(merchant.business_name, points_delta, balance),
            event_type="credit",
        )
        if balance >= merchant.points_for_reward > balance - points_delta:
            self._send_push(
                end_user_id,
                render_reward_available_push(merchant.business_name, merchant.reward_description),
                event_type="reward_available",
            )

    def reward_redeemed(self, merchant: Merchant, *, end_user_id: int, reward_label: str, balance: int) -> None:
        self._send_push(
            end_user_id,
            render_reward_redeemed_push(merchant.business_name, reward_label, balance),
            event_type="reward_redeemed",
        )

    def gift_claimed(self, merchant: Merchant, *, sender_end_user_id: int, points: int) -> None:
        self._send_push(
            sender_end_user_id,
            render_gift_claimed_push(merchant.business_name, points),
            event_type="gift_claimed",
        )

    def gift_refunded(self, merchant: Merchant, *, sender_end_user_id: int, points: int) -> None:
        self._send_push(
            sender_end_user_id,
            render_gift_refunded_push(merchant.business_name, points),
            event_type="gift_refunded",
        )

    def _send_email(self, recipient: str, template: RenderedTemplate, *, event_type: str) -> None:
        if not self._enabled or self._email is None:
            return
        self._spawn(
            self._email.send_email(
                recipient,
                template.subject,
                template.text_body,
                body_html=template.html_body,
            ),
            event_type=event_type,
            channel="email",
        )

    def _send_push(self, end_user_id: int, push: RenderedPush, *, event_type: str) -> None:
        if not self._enabled or self._push is None:
            return
        self._spawn(
            self._push.send_push(
                str(end_user_id),
                push.title,
                push.body,
                metadata={"type": event_type},
            ),
            event_type=event_type,
            channel="push",
        )

    def _spawn(self, delivery: Awaitable[Any], *, event_type: str, channel: str) -> None:
        task = asyncio.get_running_loop().create_task(self._guard(delivery, event_type=event_type, channel=channel))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guard(delivery: Awaitable[Any], *, event_type: str, channel: str) -> None:
        try:
            await delivery
        except Exception:  # noqa: BLE001
            logger.exception("Notification delivery failed", event_type=event_type, channel=channel)
        else:
            logger.debug("Notification delivered", event_type=event_type, channel=channel)

    @staticmethod
    def _build_default_email_backend() -> Optional[EmailBackend]:
        settings = get_settings()
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None
        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.smtp_sender_email,
        )


__all__ = ["NotificationDispatcher"]
