"""Ledger transaction engine: the only writer of balance-affecting rows."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from functools import partial
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger
from sqlalchemy.exc import IntegrityError

from fiddo_core.core.clock import utcnow
from fiddo_core.core.settings import get_settings
from fiddo_core.db.session import SessionFactory
from fiddo_core.db.unit_of_work import UnitOfWork, with_session, with_transaction
from fiddo_core.errors import (
    ClientBlocked,
    IdempotencyKeyConflict,
    InsufficientBalance,
    InvalidAmount,
    MerchantClientNotFound,
    MerchantNotFound,
    NegativeBalance,
    PinIncorrect,
    PinRequired,
    ReasonRequired,
    SpendCapExceeded,
    ZeroAdjustment,
)
from fiddo_core.models import EndUser, LedgerEntry, LedgerEntryType, Merchant, MerchantClient
from fiddo_core.services.identity.linker import MerchantClientLinker
from fiddo_core.services.identity.resolver import (
    ActiveEndUser,
    EndUserSnapshot,
    IdentityResolver,
    snapshot_end_user,
)
from fiddo_core.services.notifications import NotificationDispatcher

T = TypeVar("T")

CASHIER_ROLE = "cashier"
CENT = Decimal("0.01")


@dataclass(slots=True, frozen=True)
class RedeemVerification:
    """Proof that the client is entitled to redeem.

    ``presence_verified`` is asserted by the caller after a QR scan and stands
    in for the PIN.
    """

    pin_hash: str | None = None
    presence_verified: bool = False


@dataclass(slots=True)
class CreditResult:
    end_user: EndUserSnapshot
    merchant_client: MerchantClient
    transaction: LedgerEntry
    is_new_client: bool
    is_new_relation: bool
    idempotent: bool = False

    @property
    def points_delta(self) -> int:
        return int(self.transaction.points_delta)

    @property
    def balance(self) -> int:
        return int(self.merchant_client.points_balance)


@dataclass(slots=True)
class RedeemResult:
    merchant_client: MerchantClient
    transaction: LedgerEntry
    reward_label: str | None
    idempotent: bool = False


@dataclass(slots=True)
class AdjustResult:
    merchant_client: MerchantClient
    transaction: LedgerEntry


def coerce_amount(value: Any) -> Decimal:
    """Parse a strictly positive, finite monetary amount, rounded to the cent.

    The rounded value is what gets stored and what points are computed from,
    so a replay reports exactly what the first call did.
    """

    if isinstance(value, bool) or value is None:
        raise InvalidAmount(amount=value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(amount=str(value)) from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount(amount=str(value))
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise InvalidAmount(amount=str(value))
    return amount


def compute_points(amount: Decimal, points_per_euro: Decimal | float | int) -> int:
    ratio = points_per_euro if isinstance(points_per_euro, Decimal) else Decimal(str(points_per_euro))
    return int((amount * ratio).to_integral_value(rounding=ROUND_FLOOR))


def reward_label_for(merchant: Merchant, merchant_client: MerchantClient) -> str | None:
    return merchant_client.custom_reward or merchant.reward_description


async def post_entry(
    uow: UnitOfWork,
    *,
    merchant_id: int,
    merchant_client_id: int,
    entry_type: LedgerEntryType,
    points_delta: int,
    at: datetime,
    staff_id: int | None = None,
    amount: Decimal | None = None,
    idempotency_key: str | None = None,
    source: str | None = None,
    notes: str | None = None,
) -> LedgerEntry:
    """Append a ledger entry and move the cached balance by the same delta."""

    entry = await uow.ledger.append(
        LedgerEntry(
            merchant_id=merchant_id,
            merchant_client_id=merchant_client_id,
            staff_id=staff_id,
            amount=amount,
            points_delta=points_delta,
            transaction_type=entry_type,
            idempotency_key=idempotency_key,
            source=source,
            notes=notes,
            created_at=at,
        )
    )
    if points_delta:
        await uow.merchant_clients.increment_balance(merchant_client_id, points_delta, at=at)
    return entry


class LedgerEngine:
    """Credit, redeem and adjust merchant client balances atomically."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        resolver: Optional[IdentityResolver] = None,
        linker: Optional[MerchantClientLinker] = None,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._resolver = resolver or IdentityResolver()
        self._linker = linker or MerchantClientLinker()

    async def credit(
        self,
        merchant_id: int,
        *,
        amount: Decimal | int | float | str,
        email: str | None = None,
        phone: str | None = None,
        name: str | None = None,
        staff_id: int | None = None,
        staff_role: str | None = None,
        idempotency_key: str | None = None,
        source: str = "manual",
        notes: str | None = None,
        pin_hash: str | None = None,
    ) -> CreditResult:
        value = coerce_amount(amount)
        cap = get_settings().cashier_max_credit_amount
        if staff_role == CASHIER_ROLE and value > cap:
            raise SpendCapExceeded(amount=str(value), limit=str(cap), staff_role=staff_role)

        merchant, replay = await self._precheck(merchant_id, idempotency_key, self._load_credit_replay)
        if replay is not None:
            logger.info("Replayed idempotent credit", merchant_id=merchant_id, idempotency_key=idempotency_key)
            return replay

        points_delta = compute_points(value, merchant.points_per_euro)

        async def _credit(uow: UnitOfWork) -> CreditResult:
            resolved = await self._resolver.resolve(
                uow,
                email=email,
                phone=phone,
                name=name,
                pin_hash=pin_hash,
                in_person_credit=True,
            )
            end_user = resolved.end_user
            if end_user.is_blocked:
                raise ClientBlocked("Client is blocked", end_user_id=end_user.id)

            link = await self._linker.ensure_link(uow, merchant_id, end_user.id)
            merchant_client = link.merchant_client
            if merchant_client.is_blocked:
                raise ClientBlocked("Client is blocked at this merchant", merchant_client_id=merchant_client.id)

            now = utcnow()
            entry = await uow.ledger.append(
                LedgerEntry(
                    merchant_id=merchant_id,
                    merchant_client_id=merchant_client.id,
                    staff_id=staff_id,
                    amount=value,
                    points_delta=points_delta,
                    transaction_type=LedgerEntryType.CREDIT,
                    idempotency_key=idempotency_key,
                    source=source,
                    notes=notes,
                    created_at=now,
                )
            )
            await uow.merchant_clients.apply_visit(
                merchant_client.id,
                points_delta=points_delta,
                amount=value,
                visited_at=now,
            )
            await uow.merchant_clients.refresh(merchant_client)
            return CreditResult(
                end_user=snapshot_end_user(end_user),
                merchant_client=merchant_client,
                transaction=entry,
                is_new_client=resolved.is_new,
                is_new_relation=link.is_new,
            )

        result = await self._run_keyed(
            _credit,
            merchant_id=merchant_id,
            idempotency_key=idempotency_key,
            load_replay=self._load_credit_replay,
        )
        if result.idempotent:
            return result

        logger.info(
            "Credited loyalty points",
            merchant_id=merchant_id,
            merchant_client_id=result.merchant_client.id,
            end_user_id=result.end_user.id,
            points_delta=points_delta,
            balance=result.balance,
            is_new_client=result.is_new_client,
            is_new_relation=result.is_new_relation,
        )
        if self._notifier is not None and isinstance(result.end_user, ActiveEndUser):
            self._notifier.credit_recorded(
                merchant,
                end_user_id=result.end_user.id,
                email=result.end_user.email,
                email_validated=result.end_user.email_validated,
                validation_token=result.end_user.validation_token,
                is_new_client=result.is_new_client,
                points_delta=points_delta,
                balance=result.balance,
            )
        return result

    async def redeem(
        self,
        merchant_id: int,
        merchant_client_id: int,
        *,
        verification: RedeemVerification | None = None,
        staff_id: int | None = None,
        idempotency_key: str | None = None,
        notes: str | None = None,
    ) -> RedeemResult:
        proof = verification or RedeemVerification()
        load_replay = partial(self._load_redeem_replay, merchant_client_id=merchant_client_id)
        merchant, replay = await self._precheck(merchant_id, idempotency_key, load_replay)
        if replay is not None:
            logger.info("Replayed idempotent redemption", merchant_id=merchant_id, idempotency_key=idempotency_key)
            return replay

        async def _redeem(uow: UnitOfWork) -> RedeemResult:
            current = await uow.merchants.get(merchant_id)
            if current is None:
                raise MerchantNotFound(merchant_id=merchant_id)
            merchant_client = await uow.merchant_clients.get_for_merchant(
                merchant_id, merchant_client_id, for_update=True
            )
            if merchant_client is None:
                raise MerchantClientNotFound(merchant_id=merchant_id, merchant_client_id=merchant_client_id)
            end_user = await uow.end_users.get(merchant_client.end_user_id)
            self._verify(end_user, proof)

            cost = int(current.points_for_reward)
            label = reward_label_for(current, merchant_client)
            now = utcnow()
            if not await uow.merchant_clients.debit_if_covered(merchant_client.id, cost, at=now):
                await uow.merchant_clients.refresh(merchant_client)
                raise InsufficientBalance(
                    f"Insufficient balance ({merchant_client.points_balance}/{cost} points)",
                    balance=merchant_client.points_balance,
                    required=cost,
                )
            entry = await uow.ledger.append(
                LedgerEntry(
                    merchant_id=merchant_id,
                    merchant_client_id=merchant_client.id,
                    staff_id=staff_id,
                    amount=None,
                    points_delta=-cost,
                    transaction_type=LedgerEntryType.REWARD,
                    idempotency_key=idempotency_key,
                    source="manual",
                    notes=notes or f"Reward: {label}",
                    created_at=now,
                )
            )
            await uow.merchant_clients.refresh(merchant_client)
            return RedeemResult(merchant_client=merchant_client, transaction=entry, reward_label=label)

        result = await self._run_keyed(
            _redeem,
            merchant_id=merchant_id,
            idempotency_key=idempotency_key,
            load_replay=load_replay,
        )
        if result.idempotent:
            return result

        logger.info(
            "Redeemed loyalty reward",
            merchant_id=merchant_id,
            merchant_client_id=merchant_client_id,
            points_delta=result.transaction.points_delta,
            balance=result.merchant_client.points_balance,
            presence_verified=proof.presence_verified,
        )
        if self._notifier is not None:
            self._notifier.reward_redeemed(
                merchant,
                end_user_id=result.merchant_client.end_user_id,
                reward_label=result.reward_label or "",
                balance=result.merchant_client.points_balance,
            )
        return result

    async def adjust(
        self,
        merchant_id: int,
        merchant_client_id: int,
        *,
        points_delta: int,
        staff_id: int | None = None,
        reason: str | None,
    ) -> AdjustResult:
        if not points_delta:
            raise ZeroAdjustment()
        reason_text = (reason or "").strip()
        if not reason_text:
            raise ReasonRequired()
        delta = int(points_delta)

        async def _adjust(uow: UnitOfWork) -> AdjustResult:
            merchant_client = await uow.merchant_clients.get_for_merchant(
                merchant_id, merchant_client_id, for_update=True
            )
            if merchant_client is None:
                raise MerchantClientNotFound(merchant_id=merchant_id, merchant_client_id=merchant_client_id)

            now = utcnow()
            if not await uow.merchant_clients.shift_if_non_negative(merchant_client.id, delta, at=now):
                await uow.merchant_clients.refresh(merchant_client)
                resulting = merchant_client.points_balance + delta
                raise NegativeBalance(
                    f"Adjustment would leave a negative balance ({resulting})",
                    balance=merchant_client.points_balance,
                    points_delta=delta,
                )
            entry = await uow.ledger.append(
                LedgerEntry(
                    merchant_id=merchant_id,
                    merchant_client_id=merchant_client.id,
                    staff_id=staff_id,
                    points_delta=delta,
                    transaction_type=LedgerEntryType.ADJUSTMENT,
                    source="manual",
                    notes=reason_text,
                    created_at=now,
                )
            )
            await uow.merchant_clients.refresh(merchant_client)
            return AdjustResult(merchant_client=merchant_client, transaction=entry)

        result = await with_transaction(self._session_factory, _adjust)
        logger.info(
            "Adjusted loyalty points",
            merchant_id=merchant_id,
            merchant_client_id=merchant_client_id,
            points_delta=delta,
            balance=result.merchant_client.points_balance,
            staff_id=staff_id,
        )
        return result

    @staticmethod
    def _verify(end_user: EndUser | None, proof: RedeemVerification) -> None:
        if proof.presence_verified:
            return
        stored = end_user.pin_hash if end_user is not None else None
        if not stored:
            raise PinRequired()
        if not proof.pin_hash or not hmac.compare_digest(stored.encode(), proof.pin_hash.encode()):
            raise PinIncorrect()

    async def _precheck(
        self,
        merchant_id: int,
        idempotency_key: str | None,
        load_replay: Callable[[UnitOfWork, int, str], Awaitable[T | None]],
    ) -> tuple[Merchant, T | None]:
        """Check the merchant exists and look for a stored result, outside any transaction."""

        async def _load(uow: UnitOfWork) -> tuple[Merchant, T | None]:
            merchant = await uow.merchants.get(merchant_id)
            if merchant is None:
                raise MerchantNotFound(merchant_id=merchant_id)
            if not idempotency_key:
                return merchant, None
            return merchant, await load_replay(uow, merchant_id, idempotency_key)

        return await with_session(self._session_factory, _load)

    async def _run_keyed(
        self,
        fn: Callable[[UnitOfWork], Awaitable[T]],
        *,
        merchant_id: int,
        idempotency_key: str | None,
        load_replay: Callable[[UnitOfWork, int, str], Awaitable[T | None]],
    ) -> T:
        """Run ``fn`` once more after a uniqueness conflict.

        A conflict on the idempotency key means a concurrent request with the
        same key committed first; its stored result is returned instead.
        """

        for attempt in (1, 2):
            try:
                return await with_transaction(self._session_factory, fn)
            except IntegrityError as exc:
                if idempotency_key:
                    replay = await with_session(
                        self._session_factory,
                        lambda uow: load_replay(uow, merchant_id, idempotency_key),
                    )
                    if replay is not None:
                        logger.info(
                            "Idempotency key already committed by a concurrent request",
                            merchant_id=merchant_id,
                            idempotency_key=idempotency_key,
                        )
                        return replay
                if attempt == 2:
                    raise
                logger.warning(
                    "Retrying ledger operation after uniqueness conflict",
                    merchant_id=merchant_id,
                    error=str(exc.orig),
                )
        raise RuntimeError("unreachable")  # pragma: no cover

    @staticmethod
    async def _load_credit_replay(uow: UnitOfWork, merchant_id: int, idempotency_key: str) -> CreditResult | None:
        entry = await uow.ledger.find_by_idempotency_key(merchant_id, idempotency_key)
        if entry is None:
            return None
        if entry.transaction_type != LedgerEntryType.CREDIT:
            raise IdempotencyKeyConflict(
                merchant_id=merchant_id,
                idempotency_key=idempotency_key,
                stored_type=entry.transaction_type.value,
                requested_type=LedgerEntryType.CREDIT.value,
            )
        merchant_client = await uow.merchant_clients.get(entry.merchant_client_id)
        end_user = await uow.end_users.get(merchant_client.end_user_id)
        return CreditResult(
            end_user=snapshot_end_user(end_user),
            merchant_client=merchant_client,
            transaction=entry,
            is_new_client=False,
            is_new_relation=False,
            idempotent=True,
        )

    @staticmethod
    async def _load_redeem_replay(
        uow: UnitOfWork,
        merchant_id: int,
        idempotency_key: str,
        *,
        merchant_client_id: int,
    ) -> RedeemResult | None:
        entry = await uow.ledger.find_by_idempotency_key(merchant_id, idempotency_key)
        if entry is None:
            return None
        if entry.transaction_type != LedgerEntryType.REWARD or entry.merchant_client_id != merchant_client_id:
            raise IdempotencyKeyConflict(
                merchant_id=merchant_id,
                idempotency_key=idempotency_key,
                stored_type=entry.transaction_type.value,
                requested_type=LedgerEntryType.REWARD.value,
                stored_client_id=entry.merchant_client_id,
                requested_client_id=merchant_client_id,
            )
        merchant_client = await uow.merchant_clients.get(entry.merchant_client_id)
        merchant = await uow.merchants.get(merchant_id)
        return RedeemResult(
            merchant_client=merchant_client,
            transaction=entry,
            reward_label=reward_label_for(merchant, merchant_client),
            idempotent=True,
        )


__all__ = [
    "AdjustResult",
    "CASHIER_ROLE",
    "CreditResult",
    "LedgerEngine",
    "RedeemResult",
    "RedeemVerification",
    "compute_points",
    "coerce_amount",
    "post_entry",
    "reward_label_for",
]
