"""Persistence helpers for end users and their aliases."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import and_, delete, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from fiddo_core.models import AliasType, EndUser, EndUserAlias, EndUserMerge


class EndUserRepository:
    """Lookups and inserts for global customer identities."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, end_user_id: int) -> EndUser | None:
        return await self._session.get(EndUser, end_user_id)

    async def get_for_update(self, end_user_id: int) -> EndUser | None:
        stmt = select(EndUser).where(EndUser.id == end_user_id).with_for_update()
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_by_email_lower(self, email_lower: str) -> EndUser | None:
        stmt = select(EndUser).where(EndUser.email_lower == email_lower, EndUser.deleted_at.is_(None))
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_by_phone(self, phone_e164: str) -> EndUser | None:
        stmt = select(EndUser).where(EndUser.phone_e164 == phone_e164, EndUser.deleted_at.is_(None))
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_by_canonical_email(self, email_canonical: str) -> EndUser | None:
        """Several rows may share a canonical form; the oldest one wins."""

        stmt = (
            select(EndUser)
            .where(EndUser.email_canonical == email_canonical, EndUser.deleted_at.is_(None))
            .order_by(EndUser.id.asc())
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def qr_token_taken(self, qr_token: str) -> bool:
        stmt = select(exists().where(EndUser.qr_token == qr_token))
        return bool((await self._session.execute(stmt)).scalar())

    async def add(self, end_user: EndUser) -> EndUser:
        self._session.add(end_user)
        await self._session.flush()
        return end_user


class AliasRepository:
    """Alias rows redirecting retired identifiers to a surviving end user."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, alias_type: AliasType, alias_value: str) -> EndUserAlias | None:
        stmt = select(EndUserAlias).where(
            EndUserAlias.alias_type == alias_type,
            EndUserAlias.alias_value == alias_value,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_owner(self, alias_type: AliasType, alias_value: str) -> EndUser | None:
        """Return the live end user behind an alias, skipping deleted owners."""

        stmt = (
            select(EndUser)
            .join(EndUserAlias, EndUserAlias.end_user_id == EndUser.id)
            .where(
                EndUserAlias.alias_type == alias_type,
                EndUserAlias.alias_value == alias_value,
                EndUser.deleted_at.is_(None),
            )
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def add_if_absent(
        self,
        alias_type: AliasType,
        alias_value: str,
        end_user_id: int,
    ) -> tuple[EndUserAlias, bool]:
        """Insert an alias unless one already exists; existing aliases are never reassigned."""

        existing = await self.get(alias_type, alias_value)
        if existing is not None:
            return existing, False
        alias = EndUserAlias(alias_type=alias_type, alias_value=alias_value, end_user_id=end_user_id)
        self._session.add(alias)
        await self._session.flush()
        return alias, True

    async def list_for_end_user(self, end_user_id: int) -> Sequence[EndUserAlias]:
        stmt = select(EndUserAlias).where(EndUserAlias.end_user_id == end_user_id).order_by(EndUserAlias.id)
        return (await self._session.execute(stmt)).scalars().all()

    async def reassign_owner(self, from_end_user_id: int, to_end_user_id: int) -> int:
        stmt = (
            update(EndUserAlias)
            .where(EndUserAlias.end_user_id == from_end_user_id)
            .values(end_user_id=to_end_user_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def delete_for_end_user(self, end_user_id: int) -> int:
        result = await self._session.execute(
            delete(EndUserAlias).where(EndUserAlias.end_user_id == end_user_id)
        )
        return result.rowcount or 0

    async def list_orphans(self) -> Sequence[EndUserAlias]:
        """Aliases whose owner is deleted or whose value is now a live identifier of another user."""

        owner = aliased(EndUser)
        shadow = aliased(EndUser)
        shadowed = exists().where(
            shadow.id != EndUserAlias.end_user_id,
            shadow.deleted_at.is_(None),
            or_(
                and_(EndUserAlias.alias_type == AliasType.EMAIL, shadow.email_lower == EndUserAlias.alias_value),
                and_(EndUserAlias.alias_type == AliasType.PHONE, shadow.phone_e164 == EndUserAlias.alias_value),
            ),
        )
        stmt = (
            select(EndUserAlias)
            .join(owner, owner.id == EndUserAlias.end_user_id)
            .where(or_(owner.deleted_at.is_not(None), shadowed))
            .order_by(EndUserAlias.id)
        )
        return (await self._session.execute(stmt)).scalars().all()

    async def delete_ids(self, alias_ids: Sequence[int]) -> int:
        if not alias_ids:
            return 0
        result = await self._session.execute(delete(EndUserAlias).where(EndUserAlias.id.in_(alias_ids)))
        return result.rowcount or 0


class MergeRecordRepository:
    """Append-only audit of identity merges."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, record: EndUserMerge) -> EndUserMerge:
        self._session.add(record)
        await self._session.flush()
        return record


__all__ = ["AliasRepository", "EndUserRepository", "MergeRecordRepository"]
