"""Persistence helpers for ledger entries."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fiddo_core.models import LedgerEntry, MerchantClient


class LedgerRepository:
    """Append-mostly access to the ``transactions`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Insert an entry and flush so uniqueness violations surface immediately.

        The entry is reloaded afterwards so callers see the stored row.
        """

        self._session.add(entry)
        await self._session.flush()
        await self._session.refresh(entry)
        return entry

    async def find_by_idempotency_key(self, merchant_id: int, idempotency_key: str) -> LedgerEntry | None:
        stmt = select(LedgerEntry).where(
            LedgerEntry.merchant_id == merchant_id,
            LedgerEntry.idempotency_key == idempotency_key,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_for_client(self, merchant_client_id: int, *, limit: int | None = None) -> Sequence[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.merchant_client_id == merchant_client_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return (await self._session.execute(stmt)).scalars().all()

    async def sum_for_client(self, merchant_client_id: int) -> int:
        stmt = select(func.coalesce(func.sum(LedgerEntry.points_delta), 0)).where(
            LedgerEntry.merchant_client_id == merchant_client_id
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def balance_drift(self, merchant_id: int) -> list[tuple[int, int, int]]:
        """Return ``(merchant_client_id, cached_balance, ledger_sum)`` rows that disagree."""

        ledger_sum = (
            select(
                LedgerEntry.merchant_client_id.label("merchant_client_id"),
                func.sum(LedgerEntry.points_delta).label("total"),
            )
            .group_by(LedgerEntry.merchant_client_id)
            .subquery()
        )
        computed = func.coalesce(ledger_sum.c.total, 0)
        stmt = (
            select(MerchantClient.id, MerchantClient.points_balance, computed)
            .outerjoin(ledger_sum, ledger_sum.c.merchant_client_id == MerchantClient.id)
            .where(MerchantClient.merchant_id == merchant_id, MerchantClient.points_balance != computed)
            .order_by(MerchantClient.id)
        )
        rows = (await self._session.execute(stmt)).all()
        return [(int(row[0]), int(row[1]), int(row[2])) for row in rows]

    async def reassign_client(self, from_client_id: int, to_client_id: int) -> int:
        stmt = (
            update(LedgerEntry)
            .where(LedgerEntry.merchant_client_id == from_client_id)
            .values(merchant_client_id=to_client_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def delete_for_client(self, merchant_client_id: int) -> int:
        stmt = (
            delete(LedgerEntry)
            .where(LedgerEntry.merchant_client_id == merchant_client_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0


__all__ = ["LedgerRepository"]
