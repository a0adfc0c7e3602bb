"""Persistence helpers for merchants and merchant clients."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fiddo_core.models import Merchant, MerchantClient


class MerchantRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, merchant_id: int) -> Merchant | None:
        return await self._session.get(Merchant, merchant_id)

    async def get_for_update(self, merchant_id: int) -> Merchant | None:
        stmt = select(Merchant).where(Merchant.id == merchant_id).with_for_update()
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_by_vat(self, vat_number: str) -> Merchant | None:
        stmt = select(Merchant).where(Merchant.vat_number == vat_number)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def add(self, merchant: Merchant) -> Merchant:
        self._session.add(merchant)
        await self._session.flush()
        return merchant

    async def refresh(self, merchant: Merchant) -> Merchant:
        await self._session.refresh(merchant)
        return merchant


class MerchantClientRepository:
    """Balance rows are only ever changed through SQL-side arithmetic here."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, merchant_client_id: int) -> MerchantClient | None:
        return await self._session.get(MerchantClient, merchant_client_id)

    async def get_for_merchant(
        self,
        merchant_id: int,
        merchant_client_id: int,
        *,
        for_update: bool = False,
    ) -> MerchantClient | None:
        stmt = select(MerchantClient).where(
            MerchantClient.id == merchant_client_id,
            MerchantClient.merchant_id == merchant_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_link(self, merchant_id: int, end_user_id: int) -> MerchantClient | None:
        stmt = select(MerchantClient).where(
            MerchantClient.merchant_id == merchant_id,
            MerchantClient.end_user_id == end_user_id,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_for_end_user(self, end_user_id: int) -> Sequence[MerchantClient]:
        stmt = select(MerchantClient).where(MerchantClient.end_user_id == end_user_id).order_by(MerchantClient.id)
        return (await self._session.execute(stmt)).scalars().all()

    async def add(self, merchant_client: MerchantClient) -> MerchantClient:
        self._session.add(merchant_client)
        await self._session.flush()
        return merchant_client

    async def refresh(self, merchant_client: MerchantClient) -> MerchantClient:
        await self._session.refresh(merchant_client)
        return merchant_client

    async def apply_visit(
        self,
        merchant_client_id: int,
        *,
        points_delta: int,
        amount: Decimal,
        visited_at: datetime,
    ) -> None:
        stmt = (
            update(MerchantClient)
            .where(MerchantClient.id == merchant_client_id)
            .values(
                points_balance=MerchantClient.points_balance + points_delta,
                total_spent=MerchantClient.total_spent + amount,
                visit_count=MerchantClient.visit_count + 1,
                last_visit=visited_at,
                updated_at=visited_at,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def increment_balance(self, merchant_client_id: int, points_delta: int, *, at: datetime) -> None:
        stmt = (
            update(MerchantClient)
            .where(MerchantClient.id == merchant_client_id)
            .values(points_balance=MerchantClient.points_balance + points_delta, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def debit_if_covered(self, merchant_client_id: int, points: int, *, at: datetime) -> bool:
        """Subtract ``points`` only when the stored balance covers them."""

        stmt = (
            update(MerchantClient)
            .where(MerchantClient.id == merchant_client_id, MerchantClient.points_balance >= points)
            .values(points_balance=MerchantClient.points_balance - points, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def shift_if_non_negative(self, merchant_client_id: int, points_delta: int, *, at: datetime) -> bool:
        stmt = (
            update(MerchantClient)
            .where(
                MerchantClient.id == merchant_client_id,
                MerchantClient.points_balance + points_delta >= 0,
            )
            .values(points_balance=MerchantClient.points_balance + points_delta, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def drain_balance(self, merchant_client_id: int, expected: int, *, at: datetime) -> bool:
        """Zero the balance if it still equals ``expected``."""

        stmt = (
            update(MerchantClient)
            .where(MerchantClient.id == merchant_client_id, MerchantClient.points_balance == expected)
            .values(points_balance=0, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def absorb_totals(
        self,
        merchant_client_id: int,
        *,
        points: int,
        spent: Decimal,
        visits: int,
        first_visit: datetime,
        last_visit: datetime,
        at: datetime,
    ) -> None:
        stmt = (
            update(MerchantClient)
            .where(MerchantClient.id == merchant_client_id)
            .values(
                points_balance=MerchantClient.points_balance + points,
                total_spent=MerchantClient.total_spent + spent,
                visit_count=MerchantClient.visit_count + visits,
                first_visit=first_visit,
                last_visit=last_visit,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def relink(self, merchant_client_id: int, end_user_id: int, *, at: datetime) -> None:
        stmt = (
            update(MerchantClient)
            .where(MerchantClient.id == merchant_client_id)
            .values(end_user_id=end_user_id, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def set_flags(self, merchant_client_id: int, *, at: datetime, **values: object) -> None:
        stmt = (
            update(MerchantClient)
            .where(MerchantClient.id == merchant_client_id)
            .values(updated_at=at, **values)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def set_balance(self, merchant_client_id: int, balance: int, *, at: datetime) -> None:
        stmt = (
            update(MerchantClient)
            .where(MerchantClient.id == merchant_client_id)
            .values(points_balance=balance, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def delete(self, merchant_client_id: int) -> None:
        await self._session.execute(
            delete(MerchantClient)
            .where(MerchantClient.id == merchant_client_id)
            .execution_options(synchronize_session=False)
        )


__all__ = ["MerchantClientRepository", "MerchantRepository"]
