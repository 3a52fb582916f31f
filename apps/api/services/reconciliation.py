"""Credential lifecycle and credit reconciliation.

A user's credential moves through four transitions:

* provisioned: no record yet, a key is created and a full ledger stored
* unchanged: the key still has quota, the ledger absorbs what was consumed
* rotated: the key is nearly spent (or gone), it is replaced in place
* reset: the ledger is exhausted, the account is closed and reopened

None of the multi-step transitions is atomic. Each step runs inside a named
:class:`LifecycleStage` so a failure can be traced to the exact intermediate
state it left behind. Every such state recovers on the next request: a record
pointing at a deleted key is rotated when the provider reports the key
missing, and a deleted record is provisioned from scratch.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple, Type

from models.credential import CredentialRecord
from services.credential_store import CredentialStore
from services.errors import CredentialServiceError, InvariantViolation, ProviderKeyNotFound
from services.identity_token import Identity
from services.provider_client import CreatedKey, ProviderClient


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class CredentialOutcome(str, Enum):
    PROVISIONED = "provisioned"
    UNCHANGED = "unchanged"
    ROTATED = "rotated"
    RESET = "reset"


class LifecycleStage(str, Enum):
    LOOKUP = "lookup"
    PROVISION_CREATE_KEY = "provision.create_key"
    PROVISION_PERSIST = "provision.persist"
    STATUS_FETCH = "reconcile.status_fetch"
    LEDGER_UPDATE = "reconcile.ledger_update"
    RESET_DELETE_RECORD = "reset.delete_record"
    ROTATE_DELETE_OLD_KEY = "rotate.delete_old_key"
    ROTATE_CREATE_KEY = "rotate.create_key"
    ROTATE_PERSIST = "rotate.persist"


@dataclass(frozen=True)
class ReconciliationPolicy:
    initial_credits: Decimal = Decimal("10.0")
    key_daily_limit: Decimal = Decimal("1.0")
    credit_reset_threshold: Decimal = Decimal("0.1")
    key_rotation_threshold: Decimal = Decimal("0.5")

    @classmethod
    def from_settings(cls, source: Any) -> "ReconciliationPolicy":
        return cls(
            initial_credits=_as_decimal(source.INITIAL_CREDITS),
            key_daily_limit=_as_decimal(source.KEY_DAILY_LIMIT),
            credit_reset_threshold=_as_decimal(source.CREDIT_RESET_THRESHOLD),
            key_rotation_threshold=_as_decimal(source.KEY_ROTATION_THRESHOLD),
        )


@dataclass(frozen=True)
class CredentialGrant:
    key: str
    remaining_credits: Decimal
    total_credits: Decimal
    daily_limit: Decimal
    outcome: CredentialOutcome

    def as_payload(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "remaining_credits": float(self.remaining_credits),
            "total_credits": float(self.total_credits),
            "daily_limit": float(self.daily_limit),
        }


class UserLockRegistry:
    """Per-user asyncio locks; an entry lives only while someone holds or awaits it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if self._holders[user_id] == 0:
                del self._holders[user_id]
                del self._locks[user_id]

    def __len__(self) -> int:
        return len(self._locks)


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def key_name_for(display_name: Optional[str], user_id: str) -> str:
    handle = (display_name or "").strip() or user_id
    return f"user-{handle}"


class ReconciliationEngine:
    """Decide and apply the next credential state for one verified caller."""

    def __init__(
        self,
        store: CredentialStore,
        provider: ProviderClient,
        policy: Optional[ReconciliationPolicy] = None,
        locks: Optional[UserLockRegistry] = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.policy = policy or ReconciliationPolicy()
        self.locks = locks if locks is not None else UserLockRegistry()

    async def obtain_credential(self, identity: Identity) -> CredentialGrant:
        async with self.locks.hold(identity.user_id):
            async with self._stage(LifecycleStage.LOOKUP, identity.user_id):
                record = await self.store.get(identity.user_id)
            if record is None:
                return await self._provision(identity, CredentialOutcome.PROVISIONED)
            return await self._reconcile_existing(record, identity)

    async def _provision(self, identity: Identity, outcome: CredentialOutcome) -> CredentialGrant:
        logger.info("Provisioning credential for user %s", identity.user_id)
        limit = self.policy.key_daily_limit
        credits = self.policy.initial_credits

        async with self._stage(LifecycleStage.PROVISION_CREATE_KEY, identity.user_id):
            created = await self._require_complete(
                await self.provider.create_key(key_name_for(identity.display_name, identity.user_id), limit),
                identity.user_id,
            )

        async with self._stage(LifecycleStage.PROVISION_PERSIST, identity.user_id):
            try:
                await self.store.create(
                    CredentialRecord(
                        user_id=identity.user_id,
                        display_name=identity.display_name,
                        contact=identity.contact,
                        provider_key=created.secret,
                        provider_key_id=created.handle,
                        total_credits=credits,
                        remaining_credits=credits,
                        daily_usage_cap=limit,
                    )
                )
            except CredentialServiceError:
                await self._discard_key(created.handle, identity.user_id, "unpersisted provisioning")
                raise

        logger.info("Credential %s for user %s", outcome.value, identity.user_id)
        return CredentialGrant(
            key=created.secret,
            remaining_credits=credits,
            total_credits=credits,
            daily_limit=limit,
            outcome=outcome,
        )

    async def _reconcile_existing(self, record: CredentialRecord, identity: Identity) -> CredentialGrant:
        remaining = _as_decimal(record.remaining_credits)
        if remaining <= self.policy.credit_reset_threshold:
            logger.info("User %s has depleted credits (%s), resetting", record.user_id, remaining)
            return await self._reset(record, identity)

        try:
            async with self._stage(LifecycleStage.STATUS_FETCH, record.user_id, expected=(ProviderKeyNotFound,)):
                status = await self.provider.get_key_status(record.provider_key_id)
        except ProviderKeyNotFound:
            logger.warning("Key %s for user %s is gone at the provider, rotating", record.provider_key_id, record.user_id)
            return await self._rotate(record, ZERO, old_key_absent=True)

        if status.limit_remaining is None:
            raise InvariantViolation(
                f"Provider status for key {record.provider_key_id} has no limit_remaining",
                stage=LifecycleStage.STATUS_FETCH.value,
            )

        limit_remaining = _as_decimal(status.limit_remaining)
        consumed = _as_decimal(record.daily_usage_cap) - limit_remaining
        logger.info(
            "User %s key status: limit_remaining=%s usage_cap=%s consumed=%s",
            record.user_id,
            limit_remaining,
            record.daily_usage_cap,
            consumed,
        )

        if limit_remaining <= self.policy.key_rotation_threshold:
            logger.info("Key for user %s is below rotation threshold (%s), rotating", record.user_id, limit_remaining)
            return await self._rotate(record, consumed)

        balance = self._ledger_balance(remaining - consumed, record.total_credits)
        async with self._stage(LifecycleStage.LEDGER_UPDATE, record.user_id):
            await self.store.update(record.user_id, remaining_credits=balance, daily_usage_cap=limit_remaining)

        return CredentialGrant(
            key=record.provider_key,
            remaining_credits=max(ZERO, balance),
            total_credits=_as_decimal(record.total_credits),
            daily_limit=self.policy.key_daily_limit,
            outcome=CredentialOutcome.UNCHANGED,
        )

    async def _reset(self, record: CredentialRecord, identity: Identity) -> CredentialGrant:
        await self._discard_key(record.provider_key_id, record.user_id, "credit reset")
        async with self._stage(LifecycleStage.RESET_DELETE_RECORD, record.user_id):
            await self.store.delete(record.user_id)
        return await self._provision(identity, CredentialOutcome.RESET)

    async def _rotate(
        self,
        record: CredentialRecord,
        consumed: Decimal,
        *,
        old_key_absent: bool = False,
    ) -> CredentialGrant:
        user_id = record.user_id
        limit = self.policy.key_daily_limit
        balance = self._ledger_balance(_as_decimal(record.remaining_credits) - consumed, record.total_credits)

        if old_key_absent:
            await self._discard_key(record.provider_key_id, user_id, "rotation of missing key")
        else:
            async with self._stage(LifecycleStage.ROTATE_DELETE_OLD_KEY, user_id):
                try:
                    await self.provider.delete_key(record.provider_key_id)
                except ProviderKeyNotFound:
                    logger.info("Old key %s was already deleted", record.provider_key_id)

        async with self._stage(LifecycleStage.ROTATE_CREATE_KEY, user_id):
            created = await self._require_complete(
                await self.provider.create_key(key_name_for(record.display_name, user_id), limit),
                user_id,
            )

        async with self._stage(LifecycleStage.ROTATE_PERSIST, user_id):
            try:
                await self.store.update(
                    user_id,
                    provider_key=created.secret,
                    provider_key_id=created.handle,
                    remaining_credits=balance,
                    daily_usage_cap=limit,
                )
            except CredentialServiceError:
                await self._discard_key(created.handle, user_id, "unpersisted rotation")
                raise

        logger.info("Key rotated for user %s, remaining credits %s", user_id, balance)
        return CredentialGrant(
            key=created.secret,
            remaining_credits=max(ZERO, balance),
            total_credits=_as_decimal(record.total_credits),
            daily_limit=limit,
            outcome=CredentialOutcome.ROTATED,
        )

    def _ledger_balance(self, value: Decimal, total: Any) -> Decimal:
        # persisted balances stay within [0, total_credits]
        return max(ZERO, min(_as_decimal(total), value))

    async def _require_complete(self, created: CreatedKey, user_id: str) -> CreatedKey:
        if not created.secret or not created.handle:
            await self._discard_key(created.handle, user_id, "incomplete provider response")
            raise InvariantViolation("Provider did not return both a key and its handle")
        return created

    async def _discard_key(self, handle: Optional[str], user_id: str, reason: str) -> None:
        if not handle:
            return
        try:
            await self.provider.delete_key(handle)
            logger.info("Deleted provider key %s for user %s (%s)", handle, user_id, reason)
        except CredentialServiceError as exc:
            logger.warning("Could not delete provider key %s for user %s (%s): %s", handle, user_id, reason, exc)

    @asynccontextmanager
    async def _stage(
        self,
        stage: LifecycleStage,
        user_id: str,
        expected: Tuple[Type[Exception], ...] = (),
    ) -> AsyncIterator[None]:
        try:
            yield
        except expected:
            raise
        except CredentialServiceError as exc:
            if exc.stage is None:
                exc.stage = stage.value
            logger.error("Credential lifecycle for user %s halted at %s: %s", user_id, exc.stage, exc)
            raise
