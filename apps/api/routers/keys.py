"""Provider key issuance router."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import get_verified_identity
from services.credential_store import CredentialStore
from services.identity_token import Identity
from services.provider_client import ProviderClient
from services.reconciliation import ReconciliationEngine, ReconciliationPolicy, UserLockRegistry

router = APIRouter()

_user_locks = UserLockRegistry()


class KeyGrantData(BaseModel):
    key: str
    remaining_credits: float
    total_credits: float
    daily_limit: float


class KeyGrantResponse(BaseModel):
    success: bool = True
    data: KeyGrantData


def get_provider_client() -> ProviderClient:
    return ProviderClient(
        settings.PROVISIONING_API_KEY,
        base_url=settings.PROVIDER_KEYS_URL,
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
    )


def get_reconciliation_policy() -> ReconciliationPolicy:
    return ReconciliationPolicy.from_settings(settings)


@router.post("/key", response_model=KeyGrantResponse)
async def obtain_api_key(
    identity: Identity = Depends(get_verified_identity),
    provider: ProviderClient = Depends(get_provider_client),
    policy: ReconciliationPolicy = Depends(get_reconciliation_policy),
    db: AsyncSession = Depends(get_db),
):
    """Return the caller's provider key, provisioning or rotating it as needed."""
    engine = ReconciliationEngine(CredentialStore(db), provider, policy, locks=_user_locks)
    grant = await engine.obtain_credential(identity)
    return KeyGrantResponse(data=KeyGrantData(**grant.as_payload()))
