"""Resolve raw contact details into one durable end user."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from loguru import logger

from fiddo_core.core.clock import ensure_utc, utcnow
from fiddo_core.db.unit_of_work import UnitOfWork
from fiddo_core.errors import EndUserNotFound, InvalidIdentifier
from fiddo_core.models import AliasType, EndUser
from fiddo_core.services.normalizer import canonicalize_email, normalize_email, normalize_phone

IN_PERSON_CONSENT_METHOD = "merchant_credit"


@dataclass(slots=True, frozen=True)
class ActiveEndUser:
    """Live identity; the only variant that exposes contact details."""

    id: int
    email: str | None
    phone: str | None
    email_lower: str | None
    email_canonical: str | None
    phone_e164: str | None
    name: str | None
    email_validated: bool
    is_blocked: bool
    has_pin: bool
    qr_token: str | None
    validation_token: str | None
    created_at: datetime | None


@dataclass(slots=True, frozen=True)
class DeletedEndUser:
    """Retired identity. Carries no personal data by construction."""

    id: int
    deleted_at: datetime


EndUserSnapshot = Union[ActiveEndUser, DeletedEndUser]


def snapshot_end_user(row: EndUser) -> EndUserSnapshot:
    if row.deleted_at is not None:
        return DeletedEndUser(id=row.id, deleted_at=ensure_utc(row.deleted_at))
    return ActiveEndUser(
        id=row.id,
        email=row.email,
        phone=row.phone,
        email_lower=row.email_lower,
        email_canonical=row.email_canonical,
        phone_e164=row.phone_e164,
        name=row.name,
        email_validated=bool(row.email_validated),
        is_blocked=bool(row.is_blocked),
        has_pin=row.pin_hash is not None,
        qr_token=row.qr_token,
        validation_token=row.validation_token,
        created_at=ensure_utc(row.created_at),
    )


@dataclass(slots=True)
class NormalizedIdentity:
    email_lower: str | None
    email_canonical: str | None
    phone_e164: str | None

    @property
    def empty(self) -> bool:
        return self.email_lower is None and self.phone_e164 is None


@dataclass(slots=True)
class ResolvedIdentity:
    end_user: EndUser
    is_new: bool
    matched_by: str


def normalize_identity(email: str | None, phone: str | None) -> NormalizedIdentity:
    return NormalizedIdentity(
        email_lower=normalize_email(email),
        email_canonical=canonicalize_email(email),
        phone_e164=normalize_phone(phone),
    )


class IdentityResolver:
    """Map raw email/phone input onto an existing or freshly created end user.

    Lookup order, first match wins: direct identifier, canonical email, alias
    by email then phone. Aliases are never written here; only merges create
    them.
    """

    async def lookup(
        self,
        uow: UnitOfWork,
        *,
        email: str | None = None,
        phone: str | None = None,
    ) -> ResolvedIdentity | None:
        identity = normalize_identity(email, phone)
        if identity.empty:
            raise InvalidIdentifier()
        return await self._match(uow, identity)

    async def resolve(
        self,
        uow: UnitOfWork,
        *,
        email: str | None = None,
        phone: str | None = None,
        name: str | None = None,
        pin_hash: str | None = None,
        in_person_credit: bool = False,
    ) -> ResolvedIdentity:
        identity = normalize_identity(email, phone)
        if identity.empty:
            raise InvalidIdentifier()

        matched = await self._match(uow, identity)
        if matched is not None:
            return matched

        now = utcnow()
        end_user = EndUser(
            email=email.strip() if identity.email_lower and email else None,
            phone=phone.strip() if identity.phone_e164 and phone else None,
            email_lower=identity.email_lower,
            email_canonical=identity.email_canonical,
            phone_e164=identity.phone_e164,
            name=(name or "").strip() or None,
            validation_token=secrets.token_urlsafe(32),
            qr_token=await self._fresh_qr_token(uow),
            pin_hash=pin_hash,
        )
        if in_person_credit:
            end_user.email_validated = True
            end_user.consent_method = IN_PERSON_CONSENT_METHOD
            end_user.consent_date = now

        await uow.end_users.add(end_user)
        logger.info(
            "Created end user",
            end_user_id=end_user.id,
            has_email=identity.email_lower is not None,
            has_phone=identity.phone_e164 is not None,
            in_person_credit=in_person_credit,
        )
        return ResolvedIdentity(end_user=end_user, is_new=True, matched_by="created")

    async def get(self, uow: UnitOfWork, end_user_id: int) -> EndUserSnapshot:
        row = await uow.end_users.get(end_user_id)
        if row is None:
            raise EndUserNotFound(end_user_id=end_user_id)
        return snapshot_end_user(row)

    async def soft_delete(self, uow: UnitOfWork, end_user_id: int) -> DeletedEndUser:
        """Transition an end user to the deleted state, dropping every identifier."""

        row = await uow.end_users.get_for_update(end_user_id)
        if row is None:
            raise EndUserNotFound(end_user_id=end_user_id)
        if row.deleted_at is not None:
            return DeletedEndUser(id=row.id, deleted_at=ensure_utc(row.deleted_at))

        now = utcnow()
        for field in (
            "email",
            "phone",
            "email_lower",
            "email_canonical",
            "phone_e164",
            "name",
            "validation_token",
            "qr_token",
            "pin_hash",
        ):
            setattr(row, field, None)
        row.email_validated = False
        row.deleted_at = now
        row.updated_at = now
        removed = await uow.aliases.delete_for_end_user(row.id)
        await uow.session.flush()

        logger.info("Soft-deleted end user", end_user_id=row.id, aliases_removed=removed)
        return DeletedEndUser(id=row.id, deleted_at=now)

    async def _match(self, uow: UnitOfWork, identity: NormalizedIdentity) -> ResolvedIdentity | None:
        if identity.email_lower:
            found = await uow.end_users.find_by_email_lower(identity.email_lower)
            if found is not None:
                return ResolvedIdentity(found, False, "email")
        if identity.phone_e164:
            found = await uow.end_users.find_by_phone(identity.phone_e164)
            if found is not None:
                return ResolvedIdentity(found, False, "phone")

        # Always consulted, so a tagged address finds an untagged registration and vice versa.
        if identity.email_canonical:
            found = await uow.end_users.find_by_canonical_email(identity.email_canonical)
            if found is not None:
                return ResolvedIdentity(found, False, "canonical_email")

        if identity.email_lower:
            found = await uow.aliases.find_owner(AliasType.EMAIL, identity.email_lower)
            if found is not None:
                return ResolvedIdentity(found, False, "alias_email")
        if identity.phone_e164:
            found = await uow.aliases.find_owner(AliasType.PHONE, identity.phone_e164)
            if found is not None:
                return ResolvedIdentity(found, False, "alias_phone")
        return None

    @staticmethod
    async def _fresh_qr_token(uow: UnitOfWork) -> str:
        while True:
            token = secrets.token_urlsafe(8)
            if not await uow.end_users.qr_token_taken(token):
                return token


__all__ = [
    "ActiveEndUser",
    "DeletedEndUser",
    "EndUserSnapshot",
    "IdentityResolver",
    "NormalizedIdentity",
    "ResolvedIdentity",
    "normalize_identity",
    "snapshot_end_user",
]
