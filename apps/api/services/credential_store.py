"""Durable credential records keyed by user id."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credential import CredentialRecord
from services.errors import StorageError


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"provider_key", "provider_key_id", "remaining_credits", "daily_usage_cap"})


class CredentialStore:
    """Thin async repository over the ``credentials`` table.

    Every write commits immediately. SQLAlchemy failures roll the session back
    and surface as :class:`StorageError`.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, user_id: str) -> Optional[CredentialRecord]:
        try:
            result = await self.db.execute(
                select(CredentialRecord)
                .where(CredentialRecord.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise await self._storage_error("read", user_id, exc) from exc

    async def create(self, record: CredentialRecord) -> CredentialRecord:
        try:
            self.db.add(record)
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._storage_error("create", record.user_id, exc) from exc
        return record

    async def update(self, user_id: str, **fields: Any) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported credential fields: {sorted(unknown)}")
        if ("provider_key" in fields) != ("provider_key_id" in fields):
            raise ValueError("provider_key and provider_key_id must be replaced together")
        if not fields:
            return

        try:
            await self.db.execute(
                update(CredentialRecord)
                .where(CredentialRecord.user_id == user_id)
                .values(**fields, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._storage_error("update", user_id, exc) from exc

    async def delete(self, user_id: str) -> None:
        try:
            await self.db.execute(delete(CredentialRecord).where(CredentialRecord.user_id == user_id))
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._storage_error("delete", user_id, exc) from exc

    async def list_recent(self, limit: int = 100) -> List[CredentialRecord]:
        """Return the newest records first, for operator inspection."""
        try:
            result = await self.db.execute(
                select(CredentialRecord).order_by(CredentialRecord.created_at.desc()).limit(max(int(limit), 1))
            )
            return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise await self._storage_error("list", "*", exc) from exc

    async def _storage_error(self, action: str, user_id: str, exc: SQLAlchemyError) -> StorageError:
        logger.error("Credential %s failed for user %s: %s", action, user_id, exc)
        await self.db.rollback()
        return StorageError(f"Credential {action} failed for user {user_id}")
