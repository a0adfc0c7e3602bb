"""Persistence helpers for gift vouchers."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fiddo_core.models import PointVoucher, VoucherStatus


class VoucherRepository:
    """Status changes are guarded on ``pending`` so replays are no-ops."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, voucher_id: int) -> PointVoucher | None:
        return await self._session.get(PointVoucher, voucher_id)

    async def get_by_token(self, token: str, *, for_update: bool = False) -> PointVoucher | None:
        stmt = select(PointVoucher).where(PointVoucher.token == token)
        if for_update:
            stmt = stmt.with_for_update()
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def token_taken(self, token: str) -> bool:
        stmt = select(exists().where(PointVoucher.token == token))
        return bool((await self._session.execute(stmt)).scalar())

    async def add(self, voucher: PointVoucher) -> PointVoucher:
        self._session.add(voucher)
        await self._session.flush()
        return voucher

    async def refresh(self, voucher: PointVoucher) -> PointVoucher:
        await self._session.refresh(voucher)
        return voucher

    async def list_due_ids(self, now: datetime, *, limit: int) -> list[int]:
        stmt = (
            select(PointVoucher.id)
            .where(PointVoucher.status == VoucherStatus.PENDING, PointVoucher.expires_at < now)
            .order_by(PointVoucher.expires_at.asc(), PointVoucher.id.asc())
            .limit(limit)
        )
        return [int(value) for value in (await self._session.execute(stmt)).scalars().all()]

    async def list_pending_for_sender(self, sender_mc_id: int) -> Sequence[PointVoucher]:
        stmt = select(PointVoucher).where(
            PointVoucher.sender_mc_id == sender_mc_id,
            PointVoucher.status == VoucherStatus.PENDING,
        )
        return (await self._session.execute(stmt)).scalars().all()

    async def mark_claimed(
        self,
        voucher_id: int,
        *,
        claimer_mc_id: int,
        claimer_eu_id: int,
        at: datetime,
    ) -> bool:
        stmt = (
            update(PointVoucher)
            .where(PointVoucher.id == voucher_id, PointVoucher.status == VoucherStatus.PENDING)
            .values(
                status=VoucherStatus.CLAIMED,
                claimer_mc_id=claimer_mc_id,
                claimer_eu_id=claimer_eu_id,
                claimed_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def mark_expired(self, voucher_id: int, *, at: datetime) -> bool:
        stmt = (
            update(PointVoucher)
            .where(PointVoucher.id == voucher_id, PointVoucher.status == VoucherStatus.PENDING)
            .values(status=VoucherStatus.EXPIRED, refunded_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def mark_cancelled(self, voucher_id: int) -> bool:
        stmt = (
            update(PointVoucher)
            .where(PointVoucher.id == voucher_id, PointVoucher.status == VoucherStatus.PENDING)
            .values(status=VoucherStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def reassign_sender(self, from_mc_id: int, *, to_mc_id: int, to_eu_id: int) -> int:
        stmt = (
            update(PointVoucher)
            .where(PointVoucher.sender_mc_id == from_mc_id)
            .values(sender_mc_id=to_mc_id, sender_eu_id=to_eu_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def reassign_end_user(self, from_eu_id: int, to_eu_id: int) -> None:
        for column in (PointVoucher.sender_eu_id, PointVoucher.claimer_eu_id):
            await self._session.execute(
                update(PointVoucher)
                .where(column == from_eu_id)
                .values({column.key: to_eu_id})
                .execution_options(synchronize_session=False)
            )

    async def detach_client(self, merchant_client_id: int) -> None:
        """Drop references to a client row that is about to be deleted."""

        for column in (PointVoucher.sender_mc_id, PointVoucher.claimer_mc_id):
            await self._session.execute(
                update(PointVoucher)
                .where(column == merchant_client_id)
                .values({column.key: None})
                .execution_options(synchronize_session=False)
            )

    async def reassign_claimer(self, from_mc_id: int, *, to_mc_id: int, to_eu_id: int) -> int:
        stmt = (
            update(PointVoucher)
            .where(PointVoucher.claimer_mc_id == from_mc_id)
            .values(claimer_mc_id=to_mc_id, claimer_eu_id=to_eu_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0


__all__ = ["VoucherRepository"]
