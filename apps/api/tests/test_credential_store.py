from decimal import Decimal

import pytest

from models.credential import CredentialRecord
from services.credential_store import CredentialStore
from services.errors import StorageError


def _record(user_id="store-user", remaining="10.0"):
    return CredentialRecord(
        user_id=user_id,
        display_name="store",
        contact="store@example.com",
        provider_key=f"sk-{user_id}",
        provider_key_id=f"hash-{user_id}",
        total_credits=Decimal("10.0"),
        remaining_credits=Decimal(remaining),
        daily_usage_cap=Decimal("1.0"),
    )


@pytest.mark.asyncio
async def test_create_get_update_delete_roundtrip(session_maker):
    async with session_maker() as session:
        store = CredentialStore(session)
        assert await store.get("store-user") is None

        await store.create(_record())
        await store.update("store-user", remaining_credits=Decimal("7.25"), daily_usage_cap=Decimal("0.75"))

    async with session_maker() as session:
        store = CredentialStore(session)
        record = await store.get("store-user")
        assert record.remaining_credits == Decimal("7.25")
        assert record.daily_usage_cap == Decimal("0.75")
        assert record.provider_key == "sk-store-user"
        assert record.updated_at is not None

        await store.delete("store-user")
        assert await store.get("store-user") is None


@pytest.mark.asyncio
async def test_get_sees_writes_from_other_sessions(session_maker):
    async with session_maker() as reader_session, session_maker() as writer_session:
        reader = CredentialStore(reader_session)
        await CredentialStore(writer_session).create(_record())

        first = await reader.get("store-user")
        assert first.remaining_credits == Decimal("10")

        await CredentialStore(writer_session).update("store-user", remaining_credits=Decimal("3"))
        second = await reader.get("store-user")
        assert second.remaining_credits == Decimal("3")


@pytest.mark.asyncio
async def test_update_replaces_key_pair_together(session_maker):
    async with session_maker() as session:
        store = CredentialStore(session)
        await store.create(_record())

        with pytest.raises(ValueError):
            await store.update("store-user", provider_key="sk-new")
        with pytest.raises(ValueError):
            await store.update("store-user", total_credits=Decimal("99"))

        await store.update("store-user", provider_key="sk-new", provider_key_id="hash-new")
        record = await store.get("store-user")
        assert (record.provider_key, record.provider_key_id) == ("sk-new", "hash-new")


@pytest.mark.asyncio
async def test_duplicate_create_raises_storage_error(session_maker):
    async with session_maker() as session:
        await CredentialStore(session).create(_record())

    async with session_maker() as session:
        store = CredentialStore(session)
        with pytest.raises(StorageError):
            await store.create(_record())
        # the session is usable again after the rollback
        assert (await store.get("store-user")).user_id == "store-user"


@pytest.mark.asyncio
async def test_remaining_above_total_is_rejected(session_maker):
    async with session_maker() as session:
        store = CredentialStore(session)
        await store.create(_record())
        with pytest.raises(StorageError):
            await store.update("store-user", remaining_credits=Decimal("10.5"))


@pytest.mark.asyncio
async def test_list_recent_returns_records(session_maker):
    async with session_maker() as session:
        store = CredentialStore(session)
        for user_id in ("a", "b", "c"):
            await store.create(_record(user_id))

        records = await store.list_recent(limit=2)
        assert len(records) == 2
        assert {record.user_id for record in await store.list_recent()} == {"a", "b", "c"}
