from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base
from models.credential import CredentialRecord
from services.errors import ProviderKeyNotFound
from services.provider_client import CreatedKey, KeyStatus


TEST_JWT_SECRET = "identity-secret-for-tests-0123456789"
TEST_PROVISIONING_KEY = "sk-provisioning-test"


class FakeProviderClient:
    """In-memory stand-in for the key provider that records every call."""

    def __init__(self):
        self.keys = {}
        self.created_names = []
        self.status_calls = []
        self.deleted_handles = []
        self.create_error = None
        self.status_error = None
        self.delete_error = None
        self.omit_secret = False
        self._counter = 0

    def add_key(self, handle, secret, limit=1.0, limit_remaining=1.0):
        self.keys[handle] = {"secret": secret, "limit": limit, "limit_remaining": limit_remaining}

    def set_limit_remaining(self, handle, value):
        self.keys[handle]["limit_remaining"] = value

    async def create_key(self, name, daily_limit):
        self.created_names.append(name)
        if self.create_error is not None:
            raise self.create_error
        self._counter += 1
        handle = f"hash-{self._counter}"
        secret = f"sk-user-{self._counter}"
        self.add_key(handle, secret, limit=float(daily_limit), limit_remaining=float(daily_limit))
        return CreatedKey(secret=None if self.omit_secret else secret, handle=handle)

    async def get_key_status(self, handle):
        self.status_calls.append(handle)
        if self.status_error is not None:
            raise self.status_error
        if handle not in self.keys:
            raise ProviderKeyNotFound(f"Failed to get key status: 404 - {handle}", status=404)
        key = self.keys[handle]
        usage = None
        if key["limit_remaining"] is not None:
            usage = key["limit"] - key["limit_remaining"]
        return KeyStatus(
            handle=handle,
            limit=key["limit"],
            limit_remaining=key["limit_remaining"],
            usage=usage,
        )

    async def delete_key(self, handle):
        self.deleted_handles.append(handle)
        if self.delete_error is not None:
            raise self.delete_error
        if handle not in self.keys:
            raise ProviderKeyNotFound(f"Failed to delete key: 404 - {handle}", status=404)
        del self.keys[handle]
        return True


@pytest.fixture(autouse=True)
def configured_secrets(monkeypatch):
    """Run every test with identity and provider secrets configured."""
    monkeypatch.setattr(settings, "JWT_SECRET_CLOUD", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "PROVISIONING_API_KEY", TEST_PROVISIONING_KEY)


@pytest.fixture
def token_factory():
    def _make(
        uid="user-1",
        username="alice",
        email="alice@example.com",
        *,
        secret=TEST_JWT_SECRET,
        algorithm="HS256",
        expires_in=timedelta(hours=1),
        **extra_claims,
    ):
        now = datetime.now(timezone.utc)
        claims = {
            "uid": uid,
            "username": username,
            "email": email,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_in).timestamp()),
        }
        claims.update(extra_claims)
        return jwt.encode(claims, secret, algorithm=algorithm)

    return _make


@pytest.fixture
def fake_provider():
    return FakeProviderClient()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "credentials.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker

    await engine.dispose()


@pytest.fixture
def seed_credential(session_maker, fake_provider):
    """Store a credential record and register its key with the fake provider."""

    async def _seed(
        user_id="user-1",
        *,
        remaining="5.0",
        total="10.0",
        usage_cap="1.0",
        handle="hash-existing",
        secret="sk-existing",
        limit_remaining=None,
        register_key=True,
    ):
        async with session_maker() as session:
            session.add(
                CredentialRecord(
                    user_id=user_id,
                    display_name="alice",
                    contact="alice@example.com",
                    provider_key=secret,
                    provider_key_id=handle,
                    total_credits=Decimal(total),
                    remaining_credits=Decimal(remaining),
                    daily_usage_cap=Decimal(usage_cap),
                )
            )
            await session.commit()
        if register_key:
            fake_provider.add_key(
                handle,
                secret,
                limit=float(usage_cap),
                limit_remaining=float(usage_cap if limit_remaining is None else limit_remaining),
            )

    return _seed
