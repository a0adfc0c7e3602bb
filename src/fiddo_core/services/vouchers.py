"""Gift vouchers: turn a balance into a bearer token another client can claim."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger

from fiddo_core.core.clock import ensure_utc, utcnow
from fiddo_core.core.settings import get_settings
from fiddo_core.db.session import SessionFactory
from fiddo_core.db.unit_of_work import UnitOfWork, with_session, with_transaction
from fiddo_core.errors import (
    ClientBlocked,
    EndUserNotFound,
    GiftsDisabled,
    MerchantClientNotFound,
    MerchantNotFound,
    NothingToGift,
    SelfClaim,
    VoucherAlreadyClaimed,
    VoucherExpired,
    VoucherNotFound,
)
from fiddo_core.models import (
    LedgerEntry,
    LedgerEntryType,
    Merchant,
    MerchantClient,
    MerchantStatus,
    PointVoucher,
    VoucherStatus,
)
from fiddo_core.services.identity.linker import MerchantClientLinker
from fiddo_core.services.ledger.engine import post_entry
from fiddo_core.services.notifications import NotificationDispatcher


@dataclass(slots=True, frozen=True)
class VoucherToken:
    token: str
    points: int
    merchant_id: int
    sender_mc_id: int
    expires_at: datetime
    gift_url: str


@dataclass(slots=True, frozen=True)
class VoucherInfo:
    points: int
    merchant_id: int
    merchant_name: str
    expires_at: datetime


@dataclass(slots=True)
class ClaimResult:
    voucher_id: int
    points: int
    merchant_id: int
    merchant_client: MerchantClient
    transaction: LedgerEntry
    is_new_relation: bool


@dataclass(slots=True)
class SweepSummary:
    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0
    refunded_points: int = 0
    voucher_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "expired": self.expired,
            "skipped": self.skipped,
            "failed": self.failed,
            "refunded_points": self.refunded_points,
        }


@dataclass(slots=True)
class _Refund:
    merchant: Merchant
    sender_end_user_id: int
    points: int


def _short(token: str) -> str:
    return token[:8]


class GiftVoucherService:
    """Create, describe, claim and expire point vouchers."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        linker: Optional[MerchantClientLinker] = None,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._linker = linker or MerchantClientLinker()

    async def create_gift(self, merchant_client_id: int, *, ttl: timedelta | None = None) -> VoucherToken:
        settings = get_settings()
        lifetime = ttl or timedelta(seconds=settings.gift_voucher_ttl_seconds)

        async def _create(uow: UnitOfWork) -> VoucherToken:
            sender = await uow.merchant_clients.get(merchant_client_id)
            if sender is None:
                raise MerchantClientNotFound(merchant_client_id=merchant_client_id)
            merchant = await uow.merchants.get(sender.merchant_id)
            if merchant is None or merchant.status != MerchantStatus.ACTIVE:
                raise MerchantNotFound(merchant_id=sender.merchant_id)
            if not merchant.allow_gifts:
                raise GiftsDisabled(merchant_id=merchant.id)
            end_user = await uow.end_users.get(sender.end_user_id)
            if sender.is_blocked or end_user is None or end_user.is_blocked:
                raise ClientBlocked(merchant_client_id=sender.id)

            sender = await uow.merchant_clients.get_for_merchant(merchant.id, sender.id, for_update=True)
            points = int(sender.points_balance)
            if points <= 0:
                raise NothingToGift(balance=points)

            now = utcnow()
            token = await self._fresh_token(uow)
            if not await uow.merchant_clients.drain_balance(sender.id, points, at=now):
                raise NothingToGift("Balance changed while creating the gift", balance=points)
            await uow.ledger.append(
                LedgerEntry(
                    merchant_id=merchant.id,
                    merchant_client_id=sender.id,
                    points_delta=-points,
                    transaction_type=LedgerEntryType.GIFT_OUT,
                    source="gift",
                    notes=f"Gift of {points} pts - voucher {_short(token)}",
                    created_at=now,
                )
            )
            expires_at = now + lifetime
            await uow.vouchers.add(
                PointVoucher(
                    token=token,
                    merchant_id=merchant.id,
                    sender_mc_id=sender.id,
                    sender_eu_id=sender.end_user_id,
                    points=points,
                    status=VoucherStatus.PENDING,
                    expires_at=expires_at,
                    created_at=now,
                )
            )
            return VoucherToken(
                token=token,
                points=points,
                merchant_id=merchant.id,
                sender_mc_id=sender.id,
                expires_at=expires_at,
                gift_url=f"{settings.app_base_url.rstrip('/')}/app?gift={token}",
            )

        voucher = await with_transaction(self._session_factory, _create)
        logger.info(
            "Created gift voucher",
            merchant_id=voucher.merchant_id,
            sender_mc_id=voucher.sender_mc_id,
            points=voucher.points,
            voucher=_short(voucher.token),
        )
        return voucher

    async def describe(self, token: str, *, now: datetime | None = None) -> VoucherInfo:
        moment = now or utcnow()

        async def _describe(uow: UnitOfWork) -> VoucherInfo:
            voucher = await uow.vouchers.get_by_token(token)
            if voucher is None:
                raise VoucherNotFound()
            self._ensure_claimable(voucher, moment)
            merchant = await uow.merchants.get(voucher.merchant_id)
            return VoucherInfo(
                points=voucher.points,
                merchant_id=voucher.merchant_id,
                merchant_name=merchant.business_name if merchant is not None else "",
                expires_at=ensure_utc(voucher.expires_at),
            )

        return await with_session(self._session_factory, _describe)

    async def claim_gift(self, token: str, recipient_end_user_id: int, *, now: datetime | None = None) -> ClaimResult:
        moment = now or utcnow()

        async def _claim(uow: UnitOfWork) -> tuple[ClaimResult, Merchant, int]:
            voucher = await uow.vouchers.get_by_token(token, for_update=True)
            if voucher is None:
                raise VoucherNotFound()
            self._ensure_claimable(voucher, moment)
            if voucher.sender_eu_id == recipient_end_user_id:
                raise SelfClaim()

            merchant = await uow.merchants.get(voucher.merchant_id)
            if merchant is None:
                raise MerchantNotFound(merchant_id=voucher.merchant_id)
            if not merchant.allow_gifts:
                raise GiftsDisabled(merchant_id=merchant.id)
            recipient = await uow.end_users.get(recipient_end_user_id)
            if recipient is None or recipient.deleted_at is not None:
                raise EndUserNotFound(end_user_id=recipient_end_user_id)
            if recipient.is_blocked:
                raise ClientBlocked(end_user_id=recipient_end_user_id)

            link = await self._linker.ensure_link(uow, voucher.merchant_id, recipient.id)
            if link.merchant_client.is_blocked:
                raise ClientBlocked(merchant_client_id=link.merchant_client.id)

            if not await uow.vouchers.mark_claimed(
                voucher.id,
                claimer_mc_id=link.merchant_client.id,
                claimer_eu_id=recipient.id,
                at=moment,
            ):
                raise VoucherAlreadyClaimed()
            entry = await post_entry(
                uow,
                merchant_id=voucher.merchant_id,
                merchant_client_id=link.merchant_client.id,
                entry_type=LedgerEntryType.GIFT_IN,
                points_delta=int(voucher.points),
                at=moment,
                source="gift",
                notes=f"Gift received - voucher {_short(voucher.token)}",
            )
            await uow.merchant_clients.refresh(link.merchant_client)
            result = ClaimResult(
                voucher_id=voucher.id,
                points=int(voucher.points),
                merchant_id=voucher.merchant_id,
                merchant_client=link.merchant_client,
                transaction=entry,
                is_new_relation=link.is_new,
            )
            return result, merchant, voucher.sender_eu_id

        result, merchant, sender_eu_id = await with_transaction(self._session_factory, _claim, retries=1)
        logger.info(
            "Claimed gift voucher",
            merchant_id=result.merchant_id,
            voucher_id=result.voucher_id,
            claimer_mc_id=result.merchant_client.id,
            points=result.points,
        )
        if self._notifier is not None:
            self._notifier.gift_claimed(merchant, sender_end_user_id=sender_eu_id, points=result.points)
        return result

    async def sweep_expired(self, *, now: datetime | None = None, limit: int | None = None) -> SweepSummary:
        """Expire pending vouchers past their deadline and refund their senders.

        Each voucher is handled in its own transaction behind a guarded
        ``pending -> expired`` update, so a second run finds nothing to do.
        """

        moment = now or utcnow()
        batch = limit or get_settings().gift_voucher_sweep_batch_size
        due = await with_session(self._session_factory, lambda uow: uow.vouchers.list_due_ids(moment, limit=batch))
        summary = SweepSummary(scanned=len(due))

        for voucher_id in due:
            try:
                refund = await with_transaction(
                    self._session_factory,
                    lambda uow, voucher_id=voucher_id: self._expire_one(uow, voucher_id, moment),
                )
            except Exception:  # noqa: BLE001
                summary.failed += 1
                logger.exception("Failed to expire gift voucher", voucher_id=voucher_id)
                continue

            if refund is None:
                summary.skipped += 1
                continue
            summary.expired += 1
            summary.refunded_points += refund.points
            summary.voucher_ids.append(voucher_id)
            if self._notifier is not None:
                self._notifier.gift_refunded(
                    refund.merchant,
                    sender_end_user_id=refund.sender_end_user_id,
                    points=refund.points,
                )

        logger.bind(summary=summary.as_dict()).info("Gift voucher sweep completed")
        return summary

    async def _expire_one(self, uow: UnitOfWork, voucher_id: int, moment: datetime) -> _Refund | None:
        voucher = await uow.vouchers.get(voucher_id)
        if voucher is None or not await uow.vouchers.mark_expired(voucher_id, at=moment):
            return None

        points = int(voucher.points)
        if voucher.sender_mc_id is None:
            logger.warning("Expired voucher has no sender client to refund", voucher_id=voucher_id)
        else:
            await post_entry(
                uow,
                merchant_id=voucher.merchant_id,
                merchant_client_id=voucher.sender_mc_id,
                entry_type=LedgerEntryType.GIFT_REFUND,
                points_delta=points,
                at=moment,
                source="gift",
                notes=f"Expired gift refund - voucher {_short(voucher.token)}",
            )
        merchant = await uow.merchants.get(voucher.merchant_id)
        return _Refund(merchant=merchant, sender_end_user_id=voucher.sender_eu_id, points=points)

    @staticmethod
    def _ensure_claimable(voucher: PointVoucher, moment: datetime) -> None:
        if voucher.status == VoucherStatus.CLAIMED:
            raise VoucherAlreadyClaimed()
        if voucher.status == VoucherStatus.CANCELLED:
            raise VoucherExpired("Gift voucher was cancelled")
        if voucher.status == VoucherStatus.EXPIRED or ensure_utc(voucher.expires_at) < moment:
            raise VoucherExpired()

    @staticmethod
    async def _fresh_token(uow: UnitOfWork) -> str:
        while True:
            token = secrets.token_urlsafe(16)
            if not await uow.vouchers.token_taken(token):
                return token


__all__ = [
    "ClaimResult",
    "GiftVoucherService",
    "SweepSummary",
    "VoucherInfo",
    "VoucherToken",
]
