"""Client for the upstream metered-key provisioning API."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from services.errors import (
    ConfigurationError,
    InvariantViolation,
    ProviderKeyNotFound,
    UpstreamProviderError,
)


logger = logging.getLogger(__name__)

DEFAULT_KEYS_URL = "https://openrouter.ai/api/v1/keys"


class ProviderKeyData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hash: Optional[str] = None
    name: Optional[str] = None
    disabled: bool = False
    limit: Optional[float] = None
    limit_remaining: Optional[float] = None
    usage: Optional[float] = None


class CreateKeyResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: Optional[str] = None
    data: ProviderKeyData = Field(default_factory=ProviderKeyData)


class KeyStatusResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: ProviderKeyData


class DeleteKeyResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    deleted: bool = True


@dataclass(frozen=True)
class CreatedKey:
    secret: Optional[str]
    handle: Optional[str]


@dataclass(frozen=True)
class KeyStatus:
    handle: str
    limit: Optional[float]
    limit_remaining: Optional[float]
    usage: Optional[float]
    disabled: bool = False


class ProviderClient:
    """Async client for creating, inspecting and deleting metered provider keys."""

    def __init__(
        self,
        provisioning_key: str,
        *,
        base_url: str = DEFAULT_KEYS_URL,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the provider client.

        Args:
            provisioning_key: Management key allowed to provision child keys
            base_url: Keys collection endpoint of the provider API
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport, used to stub the provider
        """
        if not (provisioning_key or "").strip():
            raise ConfigurationError("PROVISIONING_API_KEY is not configured")
        self._provisioning_key = provisioning_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    async def create_key(self, name: str, daily_limit: Decimal) -> CreatedKey:
        payload = {
            "name": name,
            "limit": float(daily_limit),
            "include_byok_in_limit": False,
        }
        body = await self._request("POST", self._base_url, action="create key", json=payload)
        parsed = self._parse(CreateKeyResponse, body, action="create key")
        return CreatedKey(secret=parsed.key or None, handle=parsed.data.hash or None)

    async def get_key_status(self, handle: str) -> KeyStatus:
        body = await self._request(
            "GET",
            f"{self._base_url}/{handle}",
            action="get key status",
            not_found_is_absent=True,
        )
        data = self._parse(KeyStatusResponse, body, action="get key status").data
        return KeyStatus(
            handle=data.hash or handle,
            limit=data.limit,
            limit_remaining=data.limit_remaining,
            usage=data.usage,
            disabled=data.disabled,
        )

    async def delete_key(self, handle: str) -> bool:
        body = await self._request(
            "DELETE",
            f"{self._base_url}/{handle}",
            action="delete key",
            not_found_is_absent=True,
        )
        return self._parse(DeleteKeyResponse, body, action="delete key").deleted

    async def _request(
        self,
        method: str,
        url: str,
        *,
        action: str,
        json: Optional[Dict[str, Any]] = None,
        not_found_is_absent: bool = False,
    ) -> Any:
        headers = {"Authorization": f"Bearer {self._provisioning_key}"}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.request(method, url, headers=headers, json=json)
            except httpx.HTTPError as exc:
                logger.warning("Provider request to %s failed: %s", action, exc)
                raise UpstreamProviderError(f"Failed to {action}: {exc}") from exc

        if response.status_code == 404 and not_found_is_absent:
            raise ProviderKeyNotFound(
                f"Failed to {action}: 404 - {response.text}",
                status=404,
                body=response.text,
            )
        if not response.is_success:
            raise UpstreamProviderError(
                f"Failed to {action}: {response.status_code} - {response.text}",
                status=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise InvariantViolation(f"Provider returned a non-JSON body for {action}") from exc

    @staticmethod
    def _parse(model, body: Any, *, action: str):
        try:
            return model.model_validate(body)
        except ValidationError as exc:
            raise InvariantViolation(f"Provider returned a malformed body for {action}: {exc}") from exc
