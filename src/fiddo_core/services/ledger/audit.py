"""Re-derive cached balances from the ledger for audit and repair."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from loguru import logger

from fiddo_core.core.clock import utcnow
from fiddo_core.db.session import SessionFactory
from fiddo_core.db.unit_of_work import UnitOfWork, with_session, with_transaction
from fiddo_core.errors import MerchantClientNotFound
from fiddo_core.models import LedgerEntry


@dataclass(slots=True, frozen=True)
class BalanceCheck:
    merchant_client_id: int
    cached_balance: int
    ledger_balance: int

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.ledger_balance

    @property
    def drift(self) -> int:
        return self.cached_balance - self.ledger_balance


class LedgerAuditor:
    """Compare ``points_balance`` against ``SUM(points_delta)``."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def verify(self, merchant_client_id: int) -> BalanceCheck:
        return await with_session(self._session_factory, lambda uow: self._check(uow, merchant_client_id))

    async def find_discrepancies(self, merchant_id: int) -> list[BalanceCheck]:
        async def _scan(uow: UnitOfWork) -> list[BalanceCheck]:
            rows = await uow.ledger.balance_drift(merchant_id)
            return [
                BalanceCheck(merchant_client_id=mc_id, cached_balance=cached, ledger_balance=total)
                for mc_id, cached, total in rows
            ]

        checks = await with_session(self._session_factory, _scan)
        if checks:
            logger.warning("Ledger drift detected", merchant_id=merchant_id, clients=len(checks))
        return checks

    async def repair(self, merchant_client_id: int) -> BalanceCheck:
        """Overwrite the cached balance with the ledger sum; returns the pre-repair check."""

        async def _repair(uow: UnitOfWork) -> BalanceCheck:
            check = await self._check(uow, merchant_client_id, for_update=True)
            if not check.consistent:
                await uow.merchant_clients.set_balance(merchant_client_id, check.ledger_balance, at=utcnow())
            return check

        check = await with_transaction(self._session_factory, _repair)
        if not check.consistent:
            logger.warning(
                "Repaired merchant client balance",
                merchant_client_id=merchant_client_id,
                cached_balance=check.cached_balance,
                ledger_balance=check.ledger_balance,
            )
        return check

    async def history(self, merchant_client_id: int, *, limit: int | None = None) -> Sequence[LedgerEntry]:
        return await with_session(
            self._session_factory,
            lambda uow: uow.ledger.list_for_client(merchant_client_id, limit=limit),
        )

    @staticmethod
    async def _check(uow: UnitOfWork, merchant_client_id: int, *, for_update: bool = False) -> BalanceCheck:
        merchant_client = await uow.merchant_clients.get(merchant_client_id)
        if merchant_client is None:
            raise MerchantClientNotFound(merchant_client_id=merchant_client_id)
        if for_update:
            merchant_client = await uow.merchant_clients.get_for_merchant(
                merchant_client.merchant_id, merchant_client_id, for_update=True
            )
        total = await uow.ledger.sum_for_client(merchant_client_id)
        return BalanceCheck(
            merchant_client_id=merchant_client_id,
            cached_balance=int(merchant_client.points_balance),
            ledger_balance=total,
        )


__all__ = ["BalanceCheck", "LedgerAuditor"]
