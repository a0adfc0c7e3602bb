"""Merchant-side administration of client relationships."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from fiddo_core.core.clock import utcnow
from fiddo_core.db.session import SessionFactory
from fiddo_core.db.unit_of_work import UnitOfWork, with_transaction
from fiddo_core.errors import MerchantClientNotFound
from fiddo_core.models import MerchantClient


@dataclass(slots=True, frozen=True)
class ClientDeletion:
    merchant_client_id: int
    end_user_id: int
    points_forfeited: int
    entries_deleted: int
    vouchers_cancelled: int


class ClientAdmin:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def block(self, merchant_id: int, merchant_client_id: int) -> MerchantClient:
        client = await self._update(merchant_id, merchant_client_id, is_blocked=True)
        logger.info("Blocked merchant client", merchant_id=merchant_id, merchant_client_id=merchant_client_id)
        return client

    async def unblock(self, merchant_id: int, merchant_client_id: int) -> MerchantClient:
        client = await self._update(merchant_id, merchant_client_id, is_blocked=False)
        logger.info("Unblocked merchant client", merchant_id=merchant_id, merchant_client_id=merchant_client_id)
        return client

    async def set_custom_reward(
        self,
        merchant_id: int,
        merchant_client_id: int,
        custom_reward: str | None,
    ) -> MerchantClient:
        """Override the merchant's reward label for one client; blank clears it."""

        return await self._update(
            merchant_id,
            merchant_client_id,
            custom_reward=(custom_reward or "").strip() or None,
        )

    async def set_notes(self, merchant_id: int, merchant_client_id: int, notes: str | None) -> MerchantClient:
        return await self._update(
            merchant_id,
            merchant_client_id,
            notes_private=(notes or "").strip() or None,
        )

    async def delete_client(self, merchant_id: int, merchant_client_id: int) -> ClientDeletion:
        """Remove a relationship together with its ledger history.

        Pending vouchers it sent are cancelled rather than refunded; voucher
        rows keep their end user references but lose the client link.
        """

        async def _delete(uow: UnitOfWork) -> ClientDeletion:
            client = await uow.merchant_clients.get_for_merchant(merchant_id, merchant_client_id, for_update=True)
            if client is None:
                raise MerchantClientNotFound(merchant_id=merchant_id, merchant_client_id=merchant_client_id)

            cancelled = 0
            for voucher in await uow.vouchers.list_pending_for_sender(client.id):
                if await uow.vouchers.mark_cancelled(voucher.id):
                    cancelled += 1
            await uow.vouchers.detach_client(client.id)
            entries = await uow.ledger.delete_for_client(client.id)
            await uow.merchant_clients.delete(client.id)
            return ClientDeletion(
                merchant_client_id=client.id,
                end_user_id=client.end_user_id,
                points_forfeited=int(client.points_balance or 0),
                entries_deleted=entries,
                vouchers_cancelled=cancelled,
            )

        deletion = await with_transaction(self._session_factory, _delete)
        logger.warning(
            "Deleted merchant client",
            merchant_id=merchant_id,
            merchant_client_id=merchant_client_id,
            points_forfeited=deletion.points_forfeited,
            entries_deleted=deletion.entries_deleted,
            vouchers_cancelled=deletion.vouchers_cancelled,
        )
        return deletion

    async def _update(self, merchant_id: int, merchant_client_id: int, **values: object) -> MerchantClient:
        async def _apply(uow: UnitOfWork) -> MerchantClient:
            client = await uow.merchant_clients.get_for_merchant(merchant_id, merchant_client_id)
            if client is None:
                raise MerchantClientNotFound(merchant_id=merchant_id, merchant_client_id=merchant_client_id)
            await uow.merchant_clients.set_flags(client.id, at=utcnow(), **values)
            return await uow.merchant_clients.refresh(client)

        return await with_transaction(self._session_factory, _apply)


__all__ = ["ClientAdmin", "ClientDeletion"]
