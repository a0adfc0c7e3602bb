"""Unit of work binding every repository to one transaction."""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fiddo_core.db.session import SessionFactory, open_session
from fiddo_core.repositories import (
    AliasRepository,
    EndUserRepository,
    LedgerRepository,
    MergeRecordRepository,
    MerchantClientRepository,
    MerchantRepository,
    VoucherRepository,
)

T = TypeVar("T")


class UnitOfWork:
    """Repositories sharing one session; never opens or commits a transaction itself."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.end_users = EndUserRepository(session)
        self.aliases = AliasRepository(session)
        self.merges = MergeRecordRepository(session)
        self.merchants = MerchantRepository(session)
        self.merchant_clients = MerchantClientRepository(session)
        self.ledger = LedgerRepository(session)
        self.vouchers = VoucherRepository(session)


async def with_transaction(
    session_factory: SessionFactory,
    fn: Callable[[UnitOfWork], Awaitable[T]],
    *,
    retries: int = 0,
) -> T:
    """Run ``fn`` inside one atomic transaction.

    Any exception rolls the whole unit of work back. When ``retries`` is set, a
    uniqueness violation (a concurrent writer created the same end user, link or
    alias first) re-runs ``fn`` from scratch in a fresh transaction.
    """

    attempt = 0
    while True:
        session = await open_session(session_factory)
        async with session:
            try:
                async with session.begin():
                    return await fn(UnitOfWork(session))
            except IntegrityError as exc:
                if attempt >= retries:
                    raise
                attempt += 1
                logger.warning(
                    "Retrying unit of work after uniqueness conflict",
                    attempt=attempt,
                    error=str(exc.orig),
                )


async def with_session(
    session_factory: SessionFactory,
    fn: Callable[[UnitOfWork], Awaitable[T]],
) -> T:
    """Run a read-only ``fn`` against a short-lived session."""

    session = await open_session(session_factory)
    async with session:
        return await fn(UnitOfWork(session))


__all__ = ["UnitOfWork", "with_session", "with_transaction"]
